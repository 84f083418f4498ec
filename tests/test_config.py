"""
Tests for configuration loading and validation.
"""

import pytest
from pydantic import ValidationError

from prompt_tagger.config import DEFAULT_MARKER_LABEL, DEFAULT_STOPWORDS, Settings


def make_settings(tmp_path, **overrides):
    values = {
        "photoprism_url": "https://photos.example.com/",
        "photoprism_token": "token",
        "originals_path": tmp_path,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_defaults(tmp_path):
    settings = make_settings(tmp_path)

    assert settings.photoprism_url == "https://photos.example.com"
    assert settings.marker_label == DEFAULT_MARKER_LABEL
    assert settings.marker_priority == 10
    assert settings.stopwords == DEFAULT_STOPWORDS
    assert settings.label_limit is None
    assert settings.concurrency == 5
    assert settings.poll_query == 'caption:""'


def test_environment_variables(tmp_path, monkeypatch):
    monkeypatch.setenv("PHOTOPRISM_URL", "http://photoprism:2342")
    monkeypatch.setenv("PHOTOPRISM_TOKEN", "env-token")
    monkeypatch.setenv("ORIGINALS_PATH", str(tmp_path))
    monkeypatch.setenv("STOPWORDS", "Foo, bar ,,baz")
    monkeypatch.setenv("LABEL_LIMIT", "0")

    settings = Settings(_env_file=None)

    assert settings.photoprism_url == "http://photoprism:2342"
    assert settings.photoprism_token == "env-token"
    assert settings.stopwords == ["foo", "bar", "baz"]
    assert settings.label_limit is None


def test_stopwords_json_array(tmp_path):
    settings = make_settings(tmp_path, stopwords='["The", "of"]')
    assert settings.stopwords == ["the", "of"]


def test_label_limit(tmp_path):
    assert make_settings(tmp_path, label_limit="15").label_limit == 15
    assert make_settings(tmp_path, label_limit="").label_limit is None


@pytest.mark.parametrize("field, value", [
    ("photoprism_url", "photos.example.com"),
    ("photoprism_token", "   "),
    ("marker_label", ""),
    ("log_level", "LOUD"),
])
def test_invalid_values(tmp_path, field, value):
    with pytest.raises(ValidationError):
        make_settings(tmp_path, **{field: value})


def test_missing_required_settings(tmp_path, monkeypatch):
    for name in ("PHOTOPRISM_URL", "PHOTOPRISM_TOKEN", "ORIGINALS_PATH"):
        monkeypatch.delenv(name, raising=False)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_resolve_watch_path(tmp_path):
    settings = make_settings(tmp_path)
    assert settings.resolve_watch_path() == (tmp_path / "temp").resolve()

    (tmp_path / "import").mkdir()
    assert settings.resolve_watch_path() == (tmp_path / "import").resolve()

    (tmp_path / "upload").mkdir()
    assert settings.resolve_watch_path() == (tmp_path / "upload").resolve()

    explicit = tmp_path / "inbox"
    assert make_settings(tmp_path, watch_path=str(explicit)).resolve_watch_path() == explicit.resolve()
