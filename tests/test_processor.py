"""
Tests for the per-candidate processing body.
"""

import pytest

from conftest import STANDARD_PARAMETERS
from prompt_tagger.config import DEFAULT_MARKER_LABEL
from prompt_tagger.models import Photo
from prompt_tagger.photoprism_client import PhotoPrismAPIError
from prompt_tagger.processor import PromptTagger


class FakeClient:
    """In-memory stand-in for PhotoPrismClient."""

    def __init__(self, labels=None, uid="pq1", fail_labels=(), fail_has_label=False):
        self.labels = {key: list(value) for key, value in (labels or {}).items()}
        self.uid = uid
        self.fail_labels = set(fail_labels)
        self.fail_has_label = fail_has_label
        self.added = []
        self.updates = []
        self.uid_lookups = []

    async def has_label(self, uid, label):
        if self.fail_has_label:
            raise PhotoPrismAPIError("GET /api/v1/photos failed: HTTP 502")
        return label.lower() in {name.lower() for name in self.labels.get(uid, [])}

    async def add_label(self, uid, name, priority=0, uncertainty=0):
        if name in self.fail_labels:
            raise PhotoPrismAPIError(f"POST label {name} failed")
        self.added.append((uid, name, priority))
        self.labels.setdefault(uid, []).append(name)

    async def update_photo(self, uid, description, caption):
        self.updates.append((uid, description, caption))

    async def wait_for_photo_uid(self, filename, folder, attempts=20, interval=3.0):
        self.uid_lookups.append((filename, folder))
        return self.uid

    async def test_connection(self):
        return True

    async def close(self):
        pass


class FakeExtractor:
    def __init__(self, text_map=None):
        self.text_map = text_map
        self.calls = []

    async def __call__(self, path):
        self.calls.append(path)
        return self.text_map


def candidate(tmp_path, folder="2024", name="cat.png"):
    path = tmp_path / folder / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"png bytes")
    return Photo(UID="pq1", Path=folder, FileName=f"{folder}/{name}")


@pytest.mark.asyncio
async def test_candidate_is_labeled_then_marked(settings, tmp_path):
    client = FakeClient()
    extractor = FakeExtractor({"parameters": STANDARD_PARAMETERS})
    tagger = PromptTagger(client, settings, extractor=extractor)

    result = await tagger.process_candidate(candidate(tmp_path))

    assert result.success and not result.skipped
    assert result.labels_assigned == ["cat", "tree", "foosafetensors"]
    assert client.added == [
        ("pq1", "cat", 0),
        ("pq1", "tree", 0),
        ("pq1", "foosafetensors", 0),
        ("pq1", DEFAULT_MARKER_LABEL, 10),
    ]
    assert client.updates == [("pq1", STANDARD_PARAMETERS, "a cat, (tree)")]
    assert extractor.calls == [tmp_path / "2024" / "cat.png"]


@pytest.mark.asyncio
async def test_marker_present_skips_before_file_lookup(settings, tmp_path):
    client = FakeClient(labels={"pq1": [DEFAULT_MARKER_LABEL]})
    extractor = FakeExtractor({"parameters": STANDARD_PARAMETERS})
    tagger = PromptTagger(client, settings, extractor=extractor)

    # No file on disk: the marker check must short-circuit first
    photo = Photo(UID="pq1", Path="2024", FileName="2024/missing.png")
    result = await tagger.process_candidate(photo)

    assert result.skipped
    assert result.reason == "already processed"
    assert extractor.calls == []
    assert client.added == []


@pytest.mark.asyncio
async def test_second_run_is_idempotent(settings, tmp_path):
    client = FakeClient()
    tagger = PromptTagger(client, settings, extractor=FakeExtractor({"parameters": STANDARD_PARAMETERS}))
    photo = candidate(tmp_path)

    await tagger.process_candidate(photo)
    writes = len(client.added)
    second = await tagger.process_candidate(photo)

    assert second.skipped
    assert len(client.added) == writes


@pytest.mark.asyncio
async def test_empty_metadata_is_a_soft_skip(settings, tmp_path):
    client = FakeClient()
    tagger = PromptTagger(client, settings, extractor=FakeExtractor({}))

    result = await tagger.process_candidate(candidate(tmp_path))

    assert result.success and result.skipped
    assert result.reason == "no metadata"
    assert client.added == []
    assert client.updates == []


@pytest.mark.asyncio
async def test_prompt_without_labels_is_a_soft_skip(settings, tmp_path):
    client = FakeClient()
    tagger = PromptTagger(client, settings, extractor=FakeExtractor({"parameters": "a, of, x"}))
    settings.include_model_label = False

    result = await tagger.process_candidate(candidate(tmp_path))

    assert result.skipped
    assert result.reason == "no labels"
    assert client.added == []


@pytest.mark.asyncio
async def test_missing_local_file_is_skipped(settings, tmp_path):
    client = FakeClient()
    extractor = FakeExtractor({"parameters": STANDARD_PARAMETERS})
    tagger = PromptTagger(client, settings, extractor=extractor)

    result = await tagger.process_candidate(Photo(UID="pq1", Path="2024", FileName="2024/nowhere.png"))

    assert result.skipped
    assert result.reason == "file not found"
    assert extractor.calls == []


@pytest.mark.asyncio
async def test_single_label_failure_does_not_abort_the_rest(settings, tmp_path):
    client = FakeClient(fail_labels={"tree"})
    tagger = PromptTagger(client, settings, extractor=FakeExtractor({"parameters": STANDARD_PARAMETERS}))

    result = await tagger.process_candidate(candidate(tmp_path))

    assert result.success
    assert result.labels_assigned == ["cat", "foosafetensors"]
    assert client.added[-1] == ("pq1", DEFAULT_MARKER_LABEL, 10)


@pytest.mark.asyncio
async def test_unreadable_label_set_skips_the_candidate(settings, tmp_path):
    client = FakeClient(fail_has_label=True)
    extractor = FakeExtractor({"parameters": STANDARD_PARAMETERS})
    tagger = PromptTagger(client, settings, extractor=extractor)

    result = await tagger.process_candidate(candidate(tmp_path))

    assert not result.success
    assert "marker check failed" in result.error
    assert extractor.calls == []
    assert client.added == []


@pytest.mark.asyncio
async def test_marker_write_failure_is_reported(settings, tmp_path):
    client = FakeClient(fail_labels={DEFAULT_MARKER_LABEL})
    tagger = PromptTagger(client, settings, extractor=FakeExtractor({"parameters": STANDARD_PARAMETERS}))

    result = await tagger.process_candidate(candidate(tmp_path))

    assert not result.success
    assert tagger.get_metrics()["basic_metrics"]["failures"] == 1


@pytest.mark.asyncio
async def test_caption_update_can_be_disabled(settings, tmp_path):
    settings.update_caption = False
    client = FakeClient()
    tagger = PromptTagger(client, settings, extractor=FakeExtractor({"parameters": STANDARD_PARAMETERS}))

    await tagger.process_candidate(candidate(tmp_path))

    assert client.updates == []


@pytest.mark.asyncio
async def test_process_file_resolves_uid_from_relative_path(settings, tmp_path):
    client = FakeClient(uid="pq7")
    tagger = PromptTagger(client, settings, extractor=FakeExtractor({"parameters": STANDARD_PARAMETERS}))
    path = tmp_path / "upload" / "new.png"
    path.parent.mkdir()
    path.write_bytes(b"png bytes")

    result = await tagger.process_file(path)

    assert client.uid_lookups == [("new.png", "upload")]
    assert result.uid == "pq7"
    assert result.success
    assert ("pq7", DEFAULT_MARKER_LABEL, 10) in client.added


@pytest.mark.asyncio
async def test_process_file_without_uid_is_skipped(settings, tmp_path):
    client = FakeClient(uid=None)
    extractor = FakeExtractor({"parameters": STANDARD_PARAMETERS})
    tagger = PromptTagger(client, settings, extractor=extractor)
    path = tmp_path / "new.png"
    path.write_bytes(b"png bytes")

    result = await tagger.process_file(path)

    assert result.skipped
    assert result.reason == "photo UID not found"
    assert extractor.calls == []


@pytest.mark.asyncio
async def test_process_file_that_vanished(settings, tmp_path):
    client = FakeClient()
    tagger = PromptTagger(client, settings, extractor=FakeExtractor({"parameters": STANDARD_PARAMETERS}))

    result = await tagger.process_file(tmp_path / "gone.png")

    assert result.skipped
    assert result.reason == "file disappeared"
    assert client.uid_lookups == []


@pytest.mark.asyncio
async def test_describe_file(settings, tmp_path):
    tagger = PromptTagger(FakeClient(), settings, extractor=FakeExtractor({"parameters": STANDARD_PARAMETERS}))
    info = await tagger.describe_file(tmp_path / "any.png")
    assert info.positive == "a cat, (tree)"

    empty = PromptTagger(FakeClient(), settings, extractor=FakeExtractor(None))
    assert await empty.describe_file(tmp_path / "any.png") is None
