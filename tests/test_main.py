"""HTTP surface tests using FastAPI's TestClient."""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from watchdog.observers.polling import PollingObserver

from explainy.config import Settings
from explainy.errors import CompletionError
from explainy.main import create_app
from explainy.store import DocumentStore
from explainy.watcher import DocumentWatcher

from conftest import TEXT_EXTRACTORS


class FakeCompleter:
    def __init__(self, reply: str | None = "Generated answer.") -> None:
        self.reply = reply
        self.calls = 0

    def __call__(self, system_prompt: str, user_prompt: str, timeout: float = 30.0) -> str:
        self.calls += 1
        if self.reply is None:
            raise CompletionError("provider down")
        return self.reply


@pytest.fixture
def cfg(tmp_path: Path) -> Settings:
    return Settings(
        DOCUMENTS_DIR=str(tmp_path / "documents"),
        SQLITE_PATH=str(tmp_path / "db" / "chat.db"),
        LOG_DIR=str(tmp_path / "logs"),
        GROQ_API_KEY="",
    )


@pytest.fixture
def make_client(cfg: Settings):
    def _make(completer=None, *, start_watcher: bool = False, store: DocumentStore | None = None) -> TestClient:
        if store is None:
            store = DocumentStore()
        watcher = DocumentWatcher(
            store,
            cfg.documents_dir,
            extractors=TEXT_EXTRACTORS,
            settle_delay=0.05,
            poll_interval=0.05,
            observer_factory=lambda: PollingObserver(timeout=0.1),
        )
        app = create_app(
            cfg,
            store=store,
            watcher=watcher,
            completer=completer or FakeCompleter(),
            start_watcher=start_watcher,
        )
        return TestClient(app)

    return _make


def _upload(client: TestClient, *files: tuple[str, bytes, str]):
    return client.post("/api/upload", files=[("documents", f) for f in files])


class TestRootAndHealth:
    def test_root_lists_endpoints(self, make_client) -> None:
        with make_client() as client:
            body = client.get("/").json()
        assert body["endpoints"]["chat"]["sendMessage"] == "POST /api/chat"

    def test_health(self, make_client) -> None:
        with make_client() as client:
            assert client.get("/health").json() == {"status": "ok"}


class TestUpload:
    """Uploads are written to the documents folder and ingested immediately."""

    def test_upload_and_list(self, make_client, cfg: Settings) -> None:
        with make_client() as client:
            resp = _upload(
                client,
                ("notes.pdf", b"latency notes for the quarter", "application/pdf"),
                ("plan.docx", b"project plan text", "application/octet-stream"),
            )
            assert resp.status_code == 200
            body = resp.json()
            assert body["success"] is True
            assert body["message"] == "2 files uploaded successfully"
            assert [f["type"] for f in body["files"]] == ["pdf", "word"]
            assert body["files"][0]["name"].endswith("-notes.pdf")
            assert "uploadDate" in body["files"][0]

            listed = client.get("/api/documents").json()["documents"]
        assert [d["name"] for d in listed] == [f["name"] for f in body["files"]]
        on_disk = sorted(p.name for p in Path(cfg.documents_dir).iterdir())
        assert len(on_disk) == 2

    def test_mime_only_upload_gets_extension(self, make_client) -> None:
        with make_client() as client:
            body = _upload(client, ("scan", b"scanned text body", "application/pdf")).json()
        assert body["files"][0]["name"].endswith("-scan.pdf")

    def test_rejects_unsupported(self, make_client, cfg: Settings) -> None:
        with make_client() as client:
            resp = _upload(
                client,
                ("notes.pdf", b"fine", "application/pdf"),
                ("tool.exe", b"MZ", "application/octet-stream"),
            )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Only PDF and Word documents are allowed"
        assert list(Path(cfg.documents_dir).iterdir()) == []

    def test_path_components_are_stripped(self, make_client, cfg: Settings) -> None:
        with make_client() as client:
            body = _upload(client, ("../../etc/evil.pdf", b"text", "application/pdf")).json()
        name = body["files"][0]["name"]
        assert "/" not in name
        assert (Path(cfg.documents_dir) / name).is_file()


class TestChat:
    """POST /api/chat and the session endpoints."""

    def test_chat_without_documents(self, make_client) -> None:
        completer = FakeCompleter()
        with make_client(completer) as client:
            resp = client.post("/api/chat", json={"message": "anything there?"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["answer"].startswith("No documents have been uploaded yet")
        assert completer.calls == 0

    def test_blank_message(self, make_client) -> None:
        with make_client() as client:
            resp = client.post("/api/chat", json={"message": "   "})
        assert resp.status_code == 400

    def test_unknown_mention(self, make_client, store, add_doc) -> None:
        add_doc("Report.pdf", "numbers")
        with make_client(store=store) as client:
            resp = client.post("/api/chat", json={"message": "@invoice total"})
        assert resp.status_code == 400
        assert "invoice" in resp.json()["answer"]

    def test_chat_creates_session_and_history(self, make_client, store, add_doc) -> None:
        add_doc("Report.pdf", "quarterly numbers")
        with make_client(FakeCompleter("Revenue grew."), store=store) as client:
            body = client.post("/api/chat", json={"message": "@report how did revenue do?"}).json()
            assert body["success"] is True
            assert body["usedFallback"] is False
            assert body["contextDocuments"] == ["Report.pdf"]
            assert body["answer"].startswith("Revenue grew.")
            assert body["note"] is None
            chat_id = body["chatId"]

            follow = client.post("/api/chat", json={"message": "and costs?", "chatId": chat_id}).json()
            assert follow["chatId"] == chat_id

            sessions = client.get("/api/chats").json()["sessions"]
            assert [s["id"] for s in sessions] == [chat_id]
            assert sessions[0]["title"] == "how did revenue do?"

            history = client.get(f"/api/chat/{chat_id}/history").json()["history"]
            assert [h["user_message"] for h in history] == ["how did revenue do?", "and costs?"]

            assert client.delete(f"/api/chats/{chat_id}").json()["success"] is True
            assert client.get("/api/chats").json()["sessions"] == []
            assert client.delete(f"/api/chats/{chat_id}").status_code == 404

    def test_fallback_answer(self, make_client, store, add_doc) -> None:
        add_doc("perf.pdf", "Latency and throughput were measured during the nightly load test.")
        with make_client(FakeCompleter(reply=None), store=store) as client:
            body = client.post("/api/chat", json={"message": "latency figures"}).json()
        assert body["success"] is True
        assert body["usedFallback"] is True
        assert body["contextDocuments"] == ["perf.pdf"]
        assert "nightly load test" in body["answer"]


class TestDiagnostics:
    def test_counts_and_watcher(self, make_client, store, add_doc, cfg: Settings) -> None:
        add_doc("a.pdf", "x" * 10)
        add_doc("b.docx", "y" * 30)
        with make_client(store=store) as client:
            body = client.get("/api/diagnostics").json()
        status = body["documentStoreStatus"]
        assert status["totalDocuments"] == 2
        assert status["pdfDocuments"] == 1
        assert status["wordDocuments"] == 1
        assert status["totalTextLength"] == 40
        assert status["averageTextLength"] == 20
        assert body["watcherState"] == "idle"
        assert body["apiStatus"]["llm"]["configured"] is False

    def test_startup_bootstraps_folder(self, make_client, cfg: Settings) -> None:
        docs = Path(cfg.documents_dir)
        docs.mkdir(parents=True, exist_ok=True)
        (docs / "existing.pdf").write_text("already here", encoding="utf-8")
        (docs / "ignored.txt").write_text("skip me", encoding="utf-8")

        with make_client(start_watcher=True) as client:
            body = client.get("/api/diagnostics").json()
            names = [d["name"] for d in client.get("/api/documents").json()["documents"]]
        assert names == ["existing.pdf"]
        assert body["documentsInFolder"] == ["existing.pdf"]
        assert body["watcherState"] == "watching"
