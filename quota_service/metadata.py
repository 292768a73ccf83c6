"""
Document metadata and the key-value store that holds it.

The vector store knows nothing about documents. The only link from a
document to its vectors is the `vectorIds` list on its metadata record, so
that record has to be written after the vectors exist and removed only
after they are gone. Losing it orphans the vectors: they still count
against the quota but can no longer be deleted by document ID.

The same store also carries the quota counter under a reserved key, which
is why `list_documents` filters reserved keys out.
"""

import asyncio
import contextlib
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class KVStore(Protocol):
    """Async key-value store. Values are strings; JSON is encoded by callers."""

    async def get(self, key: str) -> str | None: ...

    async def put(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def list(self) -> list[str]: ...


class InMemoryKVStore:
    """Process-local store, used in tests and single-process development."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def put(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def list(self) -> list[str]:
        return sorted(self._data)


class JsonFileKVStore:
    """
    Key-value store persisted as one JSON object on disk.

    Each write goes to its own temp file that is renamed over the old one,
    so a crash mid-write leaves the previous version intact. Writes are
    serialized by a lock held across the flush: the in-memory state and the
    file only ever move together, and a failed flush rolls the change back.
    File I/O runs in a worker thread to keep the event loop free.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        os.makedirs(self.path.parent, exist_ok=True)
        self._data: dict[str, str] = self._load()
        self._lock = asyncio.Lock()
        logger.info(f"Metadata store at {self.path} ({len(self._data)} keys)")

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        text = self.path.read_text(encoding="utf-8")
        return json.loads(text) if text.strip() else {}

    def _flush(self, snapshot: dict[str, str]) -> None:
        tmp = tempfile.NamedTemporaryFile(
            "w",
            dir=self.path.parent,
            prefix=self.path.name + ".",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        try:
            with tmp:
                json.dump(snapshot, tmp, indent=2)
            os.replace(tmp.name, self.path)
        except Exception:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp.name)
            raise

    async def _write(self, key: str, value: str | None) -> None:
        async with self._lock:
            previous = self._data.get(key)
            if value is None:
                if previous is None:
                    return
                del self._data[key]
            else:
                self._data[key] = value
            try:
                await asyncio.to_thread(self._flush, dict(self._data))
            except Exception:
                if previous is None:
                    self._data.pop(key, None)
                else:
                    self._data[key] = previous
                raise

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def put(self, key: str, value: str) -> None:
        await self._write(key, value)

    async def delete(self, key: str) -> None:
        await self._write(key, None)

    async def list(self) -> list[str]:
        return sorted(self._data)


@dataclass
class SourceMetadata:
    """Caller-supplied description of the document being ingested."""

    document_id: str
    document_name: str
    document_type: str
    page_number: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def untitled(cls) -> "SourceMetadata":
        """Defaults used when an upload carries no metadata."""
        return cls(
            document_id=f"doc-{int(time.time() * 1000)}",
            document_name="Untitled Document",
            document_type="text",
        )

    def to_payload(self) -> dict:
        """Flatten to the camelCase dict copied onto every vector."""
        payload = {
            **self.extra,
            "documentId": self.document_id,
            "documentName": self.document_name,
            "documentType": self.document_type,
        }
        if self.page_number is not None:
            payload["pageNumber"] = self.page_number
        return payload


@dataclass
class DocumentRecord:
    """The stored record for one ingested document."""

    name: str
    type: str
    chunks_count: int
    uploaded_at: str  # ISO format
    vector_ids: list[str] = field(default_factory=list)

    def to_json(self) -> str:
        return json.dumps(
            {
                "name": self.name,
                "type": self.type,
                "chunksCount": self.chunks_count,
                "uploadedAt": self.uploaded_at,
                "vectorIds": self.vector_ids,
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "DocumentRecord":
        data = json.loads(raw)
        return cls(
            name=data.get("name", ""),
            type=data.get("type", ""),
            chunks_count=data.get("chunksCount", 0),
            uploaded_at=data.get("uploadedAt", ""),
            vector_ids=list(data.get("vectorIds") or []),
        )

    def uploaded_datetime(self) -> datetime | None:
        """Parse `uploaded_at`; naive timestamps are taken as UTC."""
        if not self.uploaded_at:
            return None
        try:
            parsed = datetime.fromisoformat(self.uploaded_at.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed


async def load_document(store: KVStore, document_id: str) -> DocumentRecord | None:
    raw = await store.get(document_id)
    if raw is None:
        return None
    return DocumentRecord.from_json(raw)


async def save_document(store: KVStore, document_id: str, record: DocumentRecord) -> None:
    await store.put(document_id, record.to_json())


def is_reserved_key(key: str) -> bool:
    """Reserved keys (like the vector counter) are wrapped in double underscores."""
    return key.startswith("__") and key.endswith("__")


async def list_documents(store: KVStore) -> list[tuple[str, DocumentRecord]]:
    """All document records, skipping reserved keys and unreadable entries."""
    documents: list[tuple[str, DocumentRecord]] = []
    for key in await store.list():
        if is_reserved_key(key):
            continue
        raw = await store.get(key)
        if raw is None:
            continue
        try:
            documents.append((key, DocumentRecord.from_json(raw)))
        except (json.JSONDecodeError, AttributeError) as e:
            logger.warning(f"Skipping unreadable metadata record {key!r}: {e}")
    return documents
