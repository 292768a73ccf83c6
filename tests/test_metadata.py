"""Tests for the metadata key-value stores and document records."""

import asyncio
import json
from datetime import timezone

import pytest

from quota_service.metadata import (
    DocumentRecord,
    InMemoryKVStore,
    JsonFileKVStore,
    SourceMetadata,
    is_reserved_key,
    list_documents,
)


class TestJsonFileStore:
    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "meta" / "metadata.json"
        store = JsonFileKVStore(path)
        asyncio.run(store.put("doc-1", '{"name": "a"}'))
        asyncio.run(store.put("__vector_count__", "3"))

        reopened = JsonFileKVStore(path)

        assert asyncio.run(reopened.get("doc-1")) == '{"name": "a"}'
        assert asyncio.run(reopened.list()) == ["__vector_count__", "doc-1"]

    def test_delete_persists(self, tmp_path):
        path = tmp_path / "metadata.json"
        store = JsonFileKVStore(path)
        asyncio.run(store.put("doc-1", "x"))
        asyncio.run(store.delete("doc-1"))

        assert json.loads(path.read_text(encoding="utf-8")) == {}
        assert asyncio.run(JsonFileKVStore(path).get("doc-1")) is None

    def test_missing_key_is_none(self, tmp_path):
        store = JsonFileKVStore(tmp_path / "metadata.json")
        assert asyncio.run(store.get("nope")) is None

    def test_concurrent_puts_all_persist(self, tmp_path):
        path = tmp_path / "metadata.json"
        store = JsonFileKVStore(path)

        async def write_all():
            return await asyncio.gather(
                *(store.put(f"doc-{i}", str(i)) for i in range(200)),
                return_exceptions=True,
            )

        outcomes = asyncio.run(write_all())

        assert [o for o in outcomes if isinstance(o, Exception)] == []
        on_disk = json.loads(path.read_text(encoding="utf-8"))
        assert len(on_disk) == 200
        assert on_disk["doc-199"] == "199"
        assert len(asyncio.run(JsonFileKVStore(path).list())) == 200
        assert list(tmp_path.glob("*.tmp")) == []

    def test_interleaved_put_and_delete(self, tmp_path):
        path = tmp_path / "metadata.json"
        store = JsonFileKVStore(path)
        asyncio.run(store.put("old", "x"))

        async def mixed():
            await asyncio.gather(
                store.put("a", "1"),
                store.delete("old"),
                store.put("b", "2"),
            )

        asyncio.run(mixed())

        assert json.loads(path.read_text(encoding="utf-8")) == {"a": "1", "b": "2"}

    def test_failed_flush_rolls_back(self, tmp_path, monkeypatch):
        path = tmp_path / "metadata.json"
        store = JsonFileKVStore(path)
        asyncio.run(store.put("doc-1", "v1"))

        def broken_flush(snapshot):
            raise OSError("disk full")

        monkeypatch.setattr(store, "_flush", broken_flush)

        with pytest.raises(OSError):
            asyncio.run(store.put("doc-1", "v2"))
        with pytest.raises(OSError):
            asyncio.run(store.put("doc-2", "new"))
        with pytest.raises(OSError):
            asyncio.run(store.delete("doc-1"))

        assert asyncio.run(store.get("doc-1")) == "v1"
        assert asyncio.run(store.list()) == ["doc-1"]
        assert json.loads(path.read_text(encoding="utf-8")) == {"doc-1": "v1"}


class TestInMemoryStore:
    def test_delete_missing_key_is_silent(self):
        store = InMemoryKVStore()
        asyncio.run(store.delete("nope"))
        assert asyncio.run(store.list()) == []


class TestDocumentRecord:
    def test_stored_shape_is_camel_case(self):
        record = DocumentRecord(
            name="a.md",
            type="markdown",
            chunks_count=2,
            uploaded_at="2026-10-01T00:00:00+00:00",
            vector_ids=["a-1-0", "a-1-1"],
        )
        assert json.loads(record.to_json()) == {
            "name": "a.md",
            "type": "markdown",
            "chunksCount": 2,
            "uploadedAt": "2026-10-01T00:00:00+00:00",
            "vectorIds": ["a-1-0", "a-1-1"],
        }

    def test_parses_zulu_timestamps(self):
        record = DocumentRecord.from_json('{"uploadedAt": "2026-01-02T03:04:05.000Z"}')
        parsed = record.uploaded_datetime()
        assert parsed is not None
        assert parsed.tzinfo is not None
        assert parsed.year == 2026

    def test_naive_timestamp_taken_as_utc(self):
        record = DocumentRecord.from_json('{"uploadedAt": "2026-01-02T03:04:05"}')
        assert record.uploaded_datetime().tzinfo == timezone.utc

    def test_garbage_timestamp_is_none(self):
        assert DocumentRecord.from_json('{"uploadedAt": "yesterday"}').uploaded_datetime() is None


class TestSourceMetadata:
    def test_untitled_defaults(self):
        source = SourceMetadata.untitled()
        assert source.document_id.startswith("doc-")
        assert source.document_id[4:].isdigit()
        assert source.document_name == "Untitled Document"
        assert source.document_type == "text"

    def test_payload_includes_extra_and_page(self):
        source = SourceMetadata("d", "n", "pdf", page_number=2, extra={"author": "x"})
        assert source.to_payload() == {
            "author": "x",
            "documentId": "d",
            "documentName": "n",
            "documentType": "pdf",
            "pageNumber": 2,
        }

    def test_payload_omits_missing_page(self):
        assert "pageNumber" not in SourceMetadata("d", "n", "pdf").to_payload()


class TestListDocuments:
    def test_skips_reserved_and_unreadable(self):
        store = InMemoryKVStore(
            {
                "__vector_count__": "4",
                "doc-1": '{"name": "a", "vectorIds": ["x"]}',
                "broken": "{not json",
            }
        )
        documents = asyncio.run(list_documents(store))
        assert [key for key, _ in documents] == ["doc-1"]

    def test_reserved_key_pattern(self):
        assert is_reserved_key("__vector_count__")
        assert not is_reserved_key("doc-1")
