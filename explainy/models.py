from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    message: str
    chat_id: str | None = Field(default=None, alias="chatId")

    model_config = {"populate_by_name": True}


class ChatResponse(BaseModel):
    model_config = {"populate_by_name": True}

    success: bool
    answer: str
    chat_id: str | None = Field(default=None, alias="chatId")
    used_fallback: bool = Field(default=False, alias="usedFallback")
    context_documents: list[str] = Field(default_factory=list, alias="contextDocuments")
    note: str | None = None


class DocumentItem(BaseModel):
    model_config = {"populate_by_name": True}

    id: str
    name: str
    type: Literal["pdf", "word"]
    upload_date: datetime = Field(alias="uploadDate")


class DocumentsResponse(BaseModel):
    documents: list[DocumentItem]


class UploadResponse(BaseModel):
    success: bool
    message: str
    files: list[DocumentItem]
    skipped: list[str] = Field(default_factory=list)


class StoreStatus(BaseModel):
    model_config = {"populate_by_name": True}

    total_documents: int = Field(alias="totalDocuments")
    pdf_documents: int = Field(alias="pdfDocuments")
    word_documents: int = Field(alias="wordDocuments")
    total_text_length: int = Field(alias="totalTextLength")
    average_text_length: float = Field(alias="averageTextLength")


class DiagnosticsResponse(BaseModel):
    model_config = {"populate_by_name": True}

    status: str = "ok"
    document_store_status: StoreStatus = Field(alias="documentStoreStatus")
    documents_in_folder: list[str] = Field(alias="documentsInFolder")
    watcher_state: str = Field(alias="watcherState")
    watcher_restarts: int = Field(default=0, alias="watcherRestarts")
    api_status: dict[str, Any] = Field(alias="apiStatus")


class ChatSessionItem(BaseModel):
    id: str
    created_at: str
    title: str | None = None


class ChatSessionsResponse(BaseModel):
    success: bool = True
    sessions: list[ChatSessionItem]


class ChatHistoryItem(BaseModel):
    id: str
    chat_id: str
    user_message: str
    assistant_message: str
    timestamp: str


class ChatHistoryResponse(BaseModel):
    success: bool = True
    history: list[ChatHistoryItem]


class DeleteChatResponse(BaseModel):
    success: bool
    message: str
