"""Shared fixtures for the explainy test suite."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Callable

# Loggers attach file handlers at import time; keep them out of the working tree.
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="explainy-logs-"))

import pytest

from explainy.store import DocumentRecord, DocumentStore


def read_as_text(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def broken_extractor(path: Path) -> str:
    raise ValueError(f"corrupt file {path.name}")


TEXT_EXTRACTORS = {".pdf": read_as_text, ".doc": read_as_text, ".docx": read_as_text}


@pytest.fixture
def store() -> DocumentStore:
    return DocumentStore()


@pytest.fixture
def text_extractors() -> dict:
    return dict(TEXT_EXTRACTORS)


@pytest.fixture
def add_doc(store: DocumentStore) -> Callable[[str, str], DocumentRecord]:
    def _add(name: str, text: str) -> DocumentRecord:
        record = store.new_record(name, text)
        store.upsert(record)
        return record

    return _add


@pytest.fixture
def docs_dir(tmp_path: Path) -> Path:
    path = tmp_path / "documents"
    path.mkdir()
    return path
