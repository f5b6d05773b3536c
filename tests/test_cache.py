import asyncio
import json
from pathlib import Path

import pytest

from repochat.errors import CacheIOError, InputValidationError
from repochat.storage import ContentCache, make_cache_key


def test_cache_key_is_deterministic() -> None:
    first = make_cache_key("https://github.com/octo/demo", "abc123")
    second = make_cache_key("https://github.com/octo/demo", "abc123")
    other = make_cache_key("https://github.com/octo/demo", "def456")

    assert first == second
    assert first != other
    assert len(first) == 64


def test_write_then_read_round_trip(cache: ContentCache) -> None:
    key = make_cache_key("https://github.com/octo/demo", "abc123")
    content = "line one\r\nline two\nünïcode ✓\n"

    path = asyncio.run(
        cache.write(key, content, repo_url="https://github.com/octo/demo", commit_sha="abc123")
    )
    entry = asyncio.run(cache.read(key))

    assert path == cache.cache_dir / f"{key}.txt"
    assert entry is not None
    assert entry.content == content
    assert entry.metadata.size == len(content)
    assert entry.metadata.repo_url == "https://github.com/octo/demo"
    assert entry.metadata.commit_sha == "abc123"
    assert entry.metadata.cached_at
    assert asyncio.run(cache.exists(key)) is True


def test_sidecar_uses_camel_case_fields(cache: ContentCache) -> None:
    key = make_cache_key("https://github.com/octo/demo", "abc123")
    asyncio.run(cache.write(key, "hello", repo_url="https://github.com/octo/demo", commit_sha="abc123"))

    sidecar = json.loads((cache.cache_dir / f"{key}.json").read_text(encoding="utf-8"))

    assert sidecar["repoUrl"] == "https://github.com/octo/demo"
    assert sidecar["commitSha"] == "abc123"
    assert sidecar["size"] == 5
    assert "cachedAt" in sidecar


def test_read_missing_entry_returns_none(cache: ContentCache) -> None:
    key = make_cache_key("https://github.com/octo/demo", "missing")
    assert asyncio.run(cache.read(key)) is None
    assert asyncio.run(cache.exists(key)) is False


def test_delete_is_idempotent(cache: ContentCache) -> None:
    key = make_cache_key("https://github.com/octo/demo", "abc123")
    asyncio.run(cache.write(key, "hello"))

    asyncio.run(cache.delete(key))
    asyncio.run(cache.delete(key))

    assert asyncio.run(cache.read(key)) is None
    assert not list(cache.cache_dir.iterdir())


@pytest.mark.parametrize("sidecar", ['{"repoUrl": "https://github.com/oc', "", "[]", '{"size": 3}'])
def test_corrupt_metadata_degrades_to_synthesized_record(cache: ContentCache, sidecar: str) -> None:
    key = make_cache_key("https://github.com/octo/demo", "abc123")
    asyncio.run(cache.write(key, "valid content", repo_url="https://github.com/octo/demo"))
    (cache.cache_dir / f"{key}.json").write_text(sidecar, encoding="utf-8")

    entry = asyncio.run(cache.read(key))

    assert entry is not None
    assert entry.content == "valid content"
    assert entry.metadata.size == len("valid content")
    assert entry.metadata.repo_url == ""
    assert entry.metadata.cached_at


def test_missing_metadata_still_returns_content(cache: ContentCache) -> None:
    key = make_cache_key("https://github.com/octo/demo", "abc123")
    (cache.cache_dir / f"{key}.txt").write_text("content only", encoding="utf-8")

    entry = asyncio.run(cache.read(key))

    assert entry is not None
    assert entry.content == "content only"
    assert entry.metadata.commit_sha == ""


@pytest.mark.parametrize("key", ["../../etc/passwd", "ABC", "", "g" * 64])
def test_malformed_keys_are_rejected(cache: ContentCache, key: str) -> None:
    with pytest.raises(InputValidationError):
        asyncio.run(cache.read(key))
    with pytest.raises(InputValidationError):
        asyncio.run(cache.delete(key))


def test_cache_directory_is_created(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "cache"
    store = ContentCache(cache_dir=target)
    assert store.cache_dir == target
    assert target.is_dir()


def test_undecodable_content_raises_cache_io_error(cache: ContentCache) -> None:
    key = make_cache_key("https://github.com/octo/demo", "abc123")
    (cache.cache_dir / f"{key}.txt").write_bytes(b"\xff\xfe not utf-8")

    with pytest.raises(CacheIOError, match="Failed to read cached content"):
        asyncio.run(cache.read(key))
