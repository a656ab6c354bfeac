from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(frozen=True)
class DocumentRecord:
    id: str
    name: str
    text: str
    sequence: int
    ingested_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class DocumentStore:
    """In-memory map of document id to extracted text.

    Records are immutable, so every read hands out whole records. All mutation
    goes through one lock; ``snapshot`` copies under that lock and is therefore
    a consistent point-in-time view.
    """

    def __init__(self) -> None:
        self._records: dict[str, DocumentRecord] = {}
        self._lock = threading.RLock()
        self._sequence = itertools.count(1)

    def new_record(self, name: str, text: str) -> DocumentRecord:
        with self._lock:
            seq = next(self._sequence)
        return DocumentRecord(id=f"{seq}-{name}", name=name, text=text, sequence=seq)

    def upsert(self, record: DocumentRecord) -> None:
        with self._lock:
            self._records[record.id] = record

    def replace(self, record: DocumentRecord) -> list[DocumentRecord]:
        """Make ``record`` the only record carrying its file name.

        Returns the records that lost out. When the store already holds a newer
        record for the name, ``record`` itself is discarded and returned.
        """
        with self._lock:
            same_name = [r for r in self._records.values() if r.name == record.name and r.id != record.id]
            if any(r.sequence > record.sequence for r in same_name):
                return [record]
            for r in same_name:
                del self._records[r.id]
            self._records[record.id] = record
            return same_name

    def latest(self, name: str) -> DocumentRecord | None:
        with self._lock:
            matches = [r for r in self._records.values() if r.name == name]
        return max(matches, key=lambda r: r.sequence) if matches else None

    def remove_by_file_name(self, name: str) -> DocumentRecord | None:
        with self._lock:
            matches = [r for r in self._records.values() if r.name == name]
            if not matches:
                return None
            newest = max(matches, key=lambda r: r.sequence)
            del self._records[newest.id]
            return newest

    def get(self, doc_id: str) -> DocumentRecord | None:
        with self._lock:
            return self._records.get(doc_id)

    def snapshot(self) -> tuple[DocumentRecord, ...]:
        with self._lock:
            records = list(self._records.values())
        return tuple(sorted(records, key=lambda r: r.sequence))

    def is_empty(self) -> bool:
        with self._lock:
            return not self._records

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
