"""
Prompt to label normalization.
"""

import re
from typing import Iterable, List, Optional

from .config import DEFAULT_STOPWORDS
from .models import CanonicalMetadata

MIN_LABEL_LENGTH = 2

_WEIGHT_SUFFIX_RE = re.compile(r":\d+(\.\d+)?")
_EMPHASIS_RE = re.compile(r"\(.*?:.*?\)")
_BRACKETS_RE = re.compile(r"[()\[\]{}]")
_WHITESPACE_RE = re.compile(r"\s+")
_MODEL_RE = re.compile(r"(?:^|[,\r\n])\s*Model:[ \t]*([^,\n\r]+)", re.IGNORECASE)
_NEGATIVE_RE = re.compile(r"Negative prompt:", re.IGNORECASE)


def clean_token(token: str) -> str:
    """Normalize one prompt segment into label form."""
    token = _WEIGHT_SUFFIX_RE.sub("", token.strip())
    token = token.replace(".", "")
    token = _EMPHASIS_RE.sub("", token)
    token = _BRACKETS_RE.sub("", token)
    token = _WHITESPACE_RE.sub(" ", token)
    return token.lower().strip()


def _strip_stopwords(label: str, stopwords: frozenset) -> str:
    """Drop stopwords hanging off either end ("a cat" -> "cat")."""
    words = label.split(" ")
    while words and words[0] in stopwords:
        words.pop(0)
    while words and words[-1] in stopwords:
        words.pop()
    return " ".join(words)


def positive_prompt_text(prompt: str) -> str:
    """Everything before ``Negative prompt:``, with empty comma segments removed."""
    before = _NEGATIVE_RE.split(prompt, maxsplit=1)[0]
    return ",".join(part.strip() for part in before.split(",") if part.strip())


def prompt_to_labels(
    positive: str,
    stopwords: Iterable[str] = DEFAULT_STOPWORDS,
    limit: Optional[int] = None,
) -> List[str]:
    """Split a positive prompt into distinct labels, keeping first-seen order.

    Segments are comma separated; ``a|b`` alternation yields both ``a`` and
    ``b``. Labels shorter than two characters or listed as stopwords are
    dropped.
    """
    stop = frozenset(word.lower() for word in stopwords)
    labels: List[str] = []
    seen = set()

    for segment in positive.split(","):
        for alternative in clean_token(segment).split("|"):
            label = _strip_stopwords(alternative.strip(), stop)
            if len(label) < MIN_LABEL_LENGTH or label in stop:
                continue
            key = label.casefold()
            if key in seen:
                continue
            seen.add(key)
            labels.append(label)

    if limit:
        labels = labels[:limit]
    return labels


def model_label(source_text: str) -> Optional[str]:
    """Label for the checkpoint named by a ``Model: <name>`` field, if any."""
    match = _MODEL_RE.search(source_text)
    if not match:
        return None
    label = clean_token(match.group(1))
    return label or None


def derive_labels(
    metadata: CanonicalMetadata,
    stopwords: Iterable[str] = DEFAULT_STOPWORDS,
    limit: Optional[int] = None,
    include_model: bool = True,
) -> List[str]:
    """Full label set for an image: prompt labels, then the model label."""
    labels = prompt_to_labels(metadata.positive, stopwords)

    if include_model:
        extra = model_label(metadata.source_text())
        if extra and extra.casefold() not in {label.casefold() for label in labels}:
            labels.append(extra)

    if limit:
        labels = labels[:limit]
    return labels
