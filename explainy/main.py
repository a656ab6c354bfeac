from pathlib import Path
import os
import re
import socket
import sys
import time
from typing import Callable

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

# Allow running as `python explainy/main.py` in addition to module mode.
if __package__ is None or __package__ == "":
    sys.path.append(str(Path(__file__).resolve().parents[1]))

from explainy.config import Settings, ensure_runtime_dirs, settings
from explainy.database import SessionStore
from explainy.errors import PersistenceError
from explainy.llm import CompletionClient
from explainy.models import (
    ChatHistoryItem,
    ChatHistoryResponse,
    ChatRequest,
    ChatResponse,
    ChatSessionItem,
    ChatSessionsResponse,
    DeleteChatResponse,
    DiagnosticsResponse,
    DocumentItem,
    DocumentsResponse,
    StoreStatus,
    UploadResponse,
)
from explainy.parsers import SUPPORTED_EXTS, document_type, is_supported
from explainy.pipeline import AnswerPipeline
from explainy.store import DocumentRecord, DocumentStore
from explainy.watcher import DocumentWatcher


ALLOWED_MIME_TYPES = {
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/msword",
}

PERSISTENCE_NOTE = "Chat history not saved due to a database error"


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _document_item(record: DocumentRecord) -> DocumentItem:
    return DocumentItem(
        id=record.id,
        name=record.name,
        type=document_type(record.name),
        upload_date=record.ingested_at,
    )


def _safe_upload_name(original: str) -> str:
    name = Path((original or "").replace("\\", "/")).name
    name = re.sub(r"[^\w.\- ]", "_", name).strip() or "document"
    return f"{int(time.time() * 1000)}-{name}"


def _accepts(upload: UploadFile) -> bool:
    return (upload.content_type or "") in ALLOWED_MIME_TYPES or is_supported(upload.filename or "")


async def _write_upload_file(upload: UploadFile, target_path: Path, chunk_size: int = 1024 * 1024) -> None:
    with target_path.open("wb") as out:
        while True:
            chunk = await upload.read(chunk_size)
            if not chunk:
                break
            out.write(chunk)


def create_app(
    cfg: Settings | None = None,
    *,
    store: DocumentStore | None = None,
    watcher: DocumentWatcher | None = None,
    sessions: SessionStore | None = None,
    completer: Callable[..., str] | None = None,
    start_watcher: bool = True,
) -> FastAPI:
    cfg = cfg or settings
    ensure_runtime_dirs(cfg)

    if store is None:
        store = DocumentStore()
    documents_dir = Path(cfg.documents_dir)
    if watcher is None:
        watcher = DocumentWatcher(
            store,
            documents_dir,
            settle_delay=cfg.watch_settle_sec,
            restart_initial=cfg.watch_restart_initial_sec,
            restart_max=cfg.watch_restart_max_sec,
            poll_interval=cfg.watch_poll_sec,
        )
    if sessions is None:
        sessions = SessionStore(cfg.sqlite_path)
        sessions.init_schema()
    llm = CompletionClient.from_settings(cfg)
    pipeline = AnswerPipeline(
        store,
        completer or llm.complete,
        sessions=sessions,
        completion_timeout=cfg.completion_timeout_sec,
        completion_context_chars=cfg.completion_context_chars,
        fallback_context_chars=cfg.fallback_context_chars,
        top_k=cfg.fallback_top_k,
    )

    app = FastAPI(title="Explainy Chatbox API", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = cfg
    app.state.store = store
    app.state.watcher = watcher
    app.state.sessions = sessions
    app.state.llm = llm
    app.state.pipeline = pipeline

    @app.on_event("startup")
    def start_ingestion() -> None:
        if start_watcher:
            watcher.start()

    @app.on_event("shutdown")
    def stop_ingestion() -> None:
        if start_watcher:
            watcher.stop()
        pipeline.close()

    @app.get("/")
    def root():
        return {
            "message": "Welcome to Explainy Chatbox API",
            "endpoints": {
                "documents": {
                    "upload": "POST /api/upload",
                    "list": "GET /api/documents",
                    "diagnostics": "GET /api/diagnostics",
                },
                "chat": {
                    "sendMessage": "POST /api/chat",
                    "listSessions": "GET /api/chats",
                    "getHistory": "GET /api/chat/:chatId/history",
                    "deleteSession": "DELETE /api/chats/:chatId",
                },
            },
        }

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/upload", response_model=UploadResponse)
    async def upload_documents(documents: list[UploadFile] = File(...)) -> UploadResponse:
        if not documents:
            raise HTTPException(status_code=400, detail="No files uploaded")
        rejected = [d.filename or "" for d in documents if not _accepts(d)]
        if rejected:
            raise HTTPException(status_code=400, detail="Only PDF and Word documents are allowed")

        documents_dir.mkdir(parents=True, exist_ok=True)
        stored: list[DocumentItem] = []
        skipped: list[str] = []
        for upload in documents:
            target = documents_dir / _safe_upload_name(upload.filename or "")
            if not is_supported(target):
                # Accepted by MIME type alone; give the file the extension its type implies.
                suffix = ".pdf" if upload.content_type == "application/pdf" else ".docx"
                target = target.with_name(target.name + suffix)
            await _write_upload_file(upload, target)
            await upload.close()
            record = await run_in_threadpool(watcher.ingest_path, target)
            if record is None:
                skipped.append(upload.filename or target.name)
                continue
            stored.append(_document_item(record))

        return UploadResponse(
            success=bool(stored),
            message=f"{len(stored)} files uploaded successfully",
            files=stored,
            skipped=skipped,
        )

    @app.get("/api/documents", response_model=DocumentsResponse)
    def list_documents() -> DocumentsResponse:
        return DocumentsResponse(documents=[_document_item(r) for r in store.snapshot()])

    @app.get("/api/diagnostics", response_model=DiagnosticsResponse)
    def diagnostics() -> DiagnosticsResponse:
        records = store.snapshot()
        total_text = sum(len(r.text) for r in records)
        pdf_count = sum(1 for r in records if document_type(r.name) == "pdf")
        try:
            in_folder = sorted(p.name for p in documents_dir.iterdir() if p.is_file() and is_supported(p))
        except OSError as exc:
            raise HTTPException(status_code=500, detail=f"Cannot read documents folder: {exc}") from exc
        return DiagnosticsResponse(
            document_store_status=StoreStatus(
                total_documents=len(records),
                pdf_documents=pdf_count,
                word_documents=len(records) - pdf_count,
                total_text_length=total_text,
                average_text_length=total_text / (len(records) or 1),
            ),
            documents_in_folder=in_folder,
            watcher_state=watcher.state.value,
            watcher_restarts=watcher.restart_count,
            api_status={
                "llm": llm.get_runtime_config(),
                "sessionStoreConfigured": sessions is not None,
                "supportedExtensions": sorted(SUPPORTED_EXTS),
            },
        )

    @app.get("/api/chats", response_model=ChatSessionsResponse)
    def list_chats() -> ChatSessionsResponse:
        try:
            rows = sessions.list_sessions()
        except PersistenceError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return ChatSessionsResponse(sessions=[ChatSessionItem(**r) for r in rows])

    @app.get("/api/chat/{chat_id}/history", response_model=ChatHistoryResponse)
    def chat_history(chat_id: str) -> ChatHistoryResponse:
        try:
            rows = sessions.get_history(chat_id)
        except PersistenceError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return ChatHistoryResponse(history=[ChatHistoryItem(**r) for r in rows])

    @app.delete("/api/chats/{chat_id}", response_model=DeleteChatResponse)
    def delete_chat(chat_id: str) -> DeleteChatResponse:
        try:
            if not sessions.session_exists(chat_id):
                raise HTTPException(status_code=404, detail="chat_id not found")
            sessions.delete_session(chat_id)
        except PersistenceError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return DeleteChatResponse(success=True, message="Chat session deleted successfully")

    @app.post("/api/chat", response_model=ChatResponse)
    def chat(request: ChatRequest):
        if not (request.message or "").strip():
            raise HTTPException(status_code=400, detail="message is required")
        result = pipeline.answer(request.message, request.chat_id)
        body = ChatResponse(
            success=result.success,
            answer=result.answer_text,
            chat_id=result.chat_id,
            used_fallback=result.used_fallback,
            context_documents=result.context_document_names,
            note=PERSISTENCE_NOTE if result.persistence_error else None,
        )
        if not result.success:
            return JSONResponse(status_code=400, content=body.model_dump(by_alias=True, mode="json"))
        return body

    return app


if __name__ == "__main__":
    import uvicorn

    host = settings.host
    start_port = settings.port
    port_tries = max(1, _env_int("EXPLAINY_PORT_TRIES", 20))

    chosen_port: int | None = None
    for offset in range(port_tries):
        candidate = start_port + offset
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((host, candidate))
                chosen_port = candidate
                break
            except OSError:
                continue

    if chosen_port is None:
        print(
            f"Unable to bind any port in range {start_port}-{start_port + port_tries - 1} "
            f"on host {host}."
        )
        raise SystemExit(1)

    print(f"Server running on http://{host}:{chosen_port}")
    uvicorn.run("explainy.main:create_app", host=host, port=chosen_port, factory=True)
