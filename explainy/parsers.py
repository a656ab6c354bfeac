import re
import zipfile
from pathlib import Path
from typing import Callable, Mapping

from docx import Document as DocxDocument
from pypdf import PdfReader

from explainy.errors import ExtractionError, UnsupportedFormat


SUPPORTED_EXTS = {".pdf", ".doc", ".docx"}

EMPTY_PLACEHOLDER = "[Empty or unreadable document: {name}]"

Extractor = Callable[[Path], str]


def is_supported(path: Path | str) -> bool:
    return Path(path).suffix.lower() in SUPPORTED_EXTS


def document_type(name: str) -> str:
    return "pdf" if name.lower().endswith(".pdf") else "word"


def placeholder_text(name: str) -> str:
    return EMPTY_PLACEHOLDER.format(name=name)


def parse_pdf(path: Path) -> str:
    reader = PdfReader(str(path))
    pages: list[str] = []
    for page in reader.pages:
        text = (page.extract_text() or "").strip()
        if text:
            pages.append(text)
    return "\n\n".join(pages)


def parse_docx(path: Path) -> str:
    doc = DocxDocument(str(path))
    paragraphs = [para.text.strip() for para in doc.paragraphs if para.text.strip()]
    return "\n\n".join(paragraphs)


def parse_doc(path: Path) -> str:
    # Some .doc uploads are really OOXML packages with the old extension.
    if zipfile.is_zipfile(path):
        return parse_docx(path)
    return parse_doc_legacy(path.read_bytes())


def parse_doc_legacy(data: bytes) -> str:
    """Best-effort text from a binary Word 97-2003 file.

    Pulls long printable runs out of the OLE stream. Low fidelity, but it keeps
    the document searchable without an external converter.
    """
    parts = re.findall(rb"[\x09\x0A\x0D\x20-\x7E]{4,}", data or b"")
    if not parts:
        return ""
    text = "\n".join(p.decode("latin-1", errors="ignore") for p in parts)
    text = re.sub(r"[ \t]{2,}", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


DEFAULT_EXTRACTORS: dict[str, Extractor] = {
    ".pdf": parse_pdf,
    ".docx": parse_docx,
    ".doc": parse_doc,
}


def extract_text(path: Path, extractors: Mapping[str, Extractor] | None = None) -> str:
    """Dispatch ``path`` to the extractor for its extension.

    Raises ``UnsupportedFormat`` for extensions outside ``SUPPORTED_EXTS`` and
    ``ExtractionError`` when the extractor itself fails. An empty result comes
    back as the placeholder string, never as an empty value.
    """
    path = Path(path)
    ext = path.suffix.lower()
    table = DEFAULT_EXTRACTORS if extractors is None else extractors
    if ext not in SUPPORTED_EXTS or ext not in table:
        raise UnsupportedFormat(path.name, ext)
    try:
        text = table[ext](path)
    except Exception as exc:
        raise ExtractionError(path.name, exc) from exc
    if not text or not text.strip():
        return placeholder_text(path.name)
    return text
