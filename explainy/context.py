from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from explainy.errors import NoDocumentsAvailable
from explainy.store import DocumentRecord


SEPARATOR = "\n\n"


@dataclass(frozen=True)
class ContextWindow:
    text: str
    documents: tuple[DocumentRecord, ...]
    truncated: bool = False

    @property
    def document_names(self) -> list[str]:
        return [d.name for d in self.documents]


def assemble_context(
    records: Sequence[DocumentRecord],
    target: DocumentRecord | None = None,
    max_chars: int | None = None,
) -> ContextWindow:
    """Build the text handed to the answer stage.

    A resolved ``target`` contributes its text alone; otherwise every record is
    joined in store order. ``max_chars`` of ``None`` or ``0`` means unbounded.
    """
    documents = (target,) if target is not None else tuple(records)
    text = SEPARATOR.join(d.text for d in documents)
    if not documents or not text.strip():
        raise NoDocumentsAvailable()
    truncated = False
    if max_chars and len(text) > max_chars:
        text = text[:max_chars]
        truncated = True
    return ContextWindow(text=text, documents=documents, truncated=truncated)
