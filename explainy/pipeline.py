from __future__ import annotations

import json
import logging
import operator
import time
import traceback
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Callable, Protocol, Sequence, TypedDict

from langchain_core.runnables import RunnableLambda
from langgraph.graph import END, START, StateGraph

from explainy.config import settings
from explainy.context import ContextWindow, assemble_context
from explainy.errors import NoDocumentsAvailable, NoMatchingDocument, SearchInternalError
from explainy.mentions import MentionQuery, parse_mention, select_target
from explainy.search import DEFAULT_TOP_K, SEARCH_ERROR_MESSAGE, compose_answer, rank_passages
from explainy.store import DocumentRecord, DocumentStore


def _build_answer_logger() -> logging.Logger:
    logger = logging.getLogger("explainy.answer")
    logger.setLevel(logging.INFO)
    logger.propagate = False
    if logger.handlers:
        return logger
    log_path = Path(settings.log_dir) / "answer_logs.txt"
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
    logger.addHandler(handler)
    return logger


ANSWER_LOGGER = _build_answer_logger()

SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions based on document content. "
    "Your task is to provide clear, accurate responses based solely on the information "
    "in the provided documents. If the documents do not contain the answer, say so."
)

COMPLETION_FOOTER = "This response was generated by the language model based on information from your documents."


class Completer(Protocol):
    def __call__(self, system_prompt: str, user_prompt: str, timeout: float = ...) -> str: ...


class SessionRecorder(Protocol):
    def create_session(self) -> str: ...

    def append_exchange(self, chat_id: str, question: str, answer: str) -> Any: ...


class PipelineState(str, Enum):
    INIT = "init"
    RESOLVING_CONTEXT = "resolving_context"
    ATTEMPTING_COMPLETION = "attempting_completion"
    FALLING_BACK = "falling_back"
    ATTEMPTING_SEARCH = "attempting_search"
    COMPLETED = "completed"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class CompletionOutcome:
    ok: bool
    text: str = ""
    error: str | None = None


@dataclass
class AnswerResult:
    answer_text: str
    used_fallback: bool
    context_document_names: list[str]
    status: str
    chat_id: str | None = None
    persistence_error: str | None = None
    trace: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status in {"completed", "exhausted"}


class AnswerState(TypedDict, total=False):
    question: str
    records: tuple[DocumentRecord, ...]
    query: MentionQuery
    window: ContextWindow
    outcome: CompletionOutcome
    result: AnswerResult
    trace: Annotated[list[str], operator.add]


def build_user_prompt(context: str, question: str) -> str:
    return (
        "I have the following document content:\n"
        f"{context}\n\n"
        f"My question is: {question}\n\n"
        "Please answer based only on the information in these documents."
    )


def limit_documents(documents: Sequence[DocumentRecord], max_chars: int | None) -> list[DocumentRecord]:
    """Trim a document list so the summed text stays within ``max_chars``."""
    if not max_chars:
        return list(documents)
    out: list[DocumentRecord] = []
    used = 0
    for doc in documents:
        remaining = max_chars - used
        if remaining <= 0:
            break
        if len(doc.text) > remaining:
            out.append(replace(doc, text=doc.text[:remaining]))
            break
        out.append(doc)
        used += len(doc.text)
    return out


class AnswerPipeline:
    """Answers one question against the current document store.

    Each request walks a small langgraph state graph: resolve context, try the
    completion service, and fall back to local keyword ranking whenever that
    attempt fails. Completion failures never reach the caller.
    """

    def __init__(
        self,
        store: DocumentStore,
        complete: Completer | Callable[..., str],
        *,
        sessions: SessionRecorder | None = None,
        completion_timeout: float = 30.0,
        completion_context_chars: int = 1500,
        fallback_context_chars: int = 0,
        top_k: int = DEFAULT_TOP_K,
        max_workers: int = 8,
    ) -> None:
        self.store = store
        self.complete = complete
        self.sessions = sessions
        self.completion_timeout = max(0.1, float(completion_timeout))
        self.completion_context_chars = max(0, int(completion_context_chars))
        self.fallback_context_chars = max(0, int(fallback_context_chars))
        self.top_k = max(1, int(top_k))
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="explainy-completion")
        self._graph = self._build_graph()

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def answer(self, question: str, chat_id: str | None = None) -> AnswerResult:
        call_id = uuid.uuid4().hex[:12]
        started = time.perf_counter()
        result = self._run(question)
        if result.success:
            query = parse_mention(question)
            result.chat_id, result.persistence_error = self._record(chat_id, query.cleaned, result.answer_text)
        else:
            result.chat_id = chat_id
        self._log_metrics(call_id, question, result, time.perf_counter() - started)
        return result

    def _build_graph(self):
        graph = StateGraph(AnswerState)
        graph.add_node("resolve_context", RunnableLambda(self._node_resolve))
        graph.add_node("attempt_completion", RunnableLambda(self._node_complete))
        graph.add_node("search", RunnableLambda(self._node_search))
        graph.add_edge(START, "resolve_context")
        graph.add_conditional_edges(
            "resolve_context",
            lambda s: "end" if s.get("result") is not None else "complete",
            {"end": END, "complete": "attempt_completion"},
        )
        graph.add_conditional_edges(
            "attempt_completion",
            lambda s: "end" if s.get("result") is not None else "search",
            {"end": END, "search": "search"},
        )
        graph.add_edge("search", END)
        return graph.compile()

    def _run(self, question: str) -> AnswerResult:
        final = self._graph.invoke(
            {"question": question, "records": self.store.snapshot(), "trace": [PipelineState.INIT.value]}
        )
        result = final["result"]
        result.trace = list(final.get("trace", []))
        return result

    def _node_resolve(self, s: AnswerState) -> dict[str, Any]:
        trace = [PipelineState.RESOLVING_CONTEXT.value]
        records = s.get("records") or ()
        if not records:
            return {"result": self._precondition_failure(NoDocumentsAvailable(), "no_documents"), "trace": trace}
        query = parse_mention(s.get("question", ""))
        try:
            target = select_target(query, records)
            window = assemble_context(records, target, self.completion_context_chars)
        except NoMatchingDocument as exc:
            return {"result": self._precondition_failure(exc, "not_found"), "trace": trace}
        except NoDocumentsAvailable as exc:
            return {"result": self._precondition_failure(exc, "no_documents"), "trace": trace}
        return {"query": query, "window": window, "trace": trace}

    def _node_complete(self, s: AnswerState) -> dict[str, Any]:
        window = s["window"]
        outcome = self._attempt_completion(window, s["query"])
        if outcome.ok:
            result = AnswerResult(
                answer_text=f"{outcome.text}\n\n{COMPLETION_FOOTER}",
                used_fallback=False,
                context_document_names=window.document_names,
                status="completed",
            )
            return {
                "outcome": outcome,
                "result": result,
                "trace": [PipelineState.ATTEMPTING_COMPLETION.value, PipelineState.COMPLETED.value],
            }
        ANSWER_LOGGER.info("completion_failed | error=%s | falling back to document search", outcome.error)
        return {
            "outcome": outcome,
            "trace": [PipelineState.ATTEMPTING_COMPLETION.value, PipelineState.FALLING_BACK.value],
        }

    @staticmethod
    def _precondition_failure(exc: Exception, status: str) -> AnswerResult:
        ANSWER_LOGGER.info("precondition_failed | status=%s | detail=%s", status, exc)
        return AnswerResult(
            answer_text=str(exc),
            used_fallback=False,
            context_document_names=[],
            status=status,
        )

    def _attempt_completion(self, window: ContextWindow, query: MentionQuery) -> CompletionOutcome:
        user_prompt = build_user_prompt(window.text, query.cleaned)
        try:
            future = self._executor.submit(
                self.complete, SYSTEM_PROMPT, user_prompt, timeout=self.completion_timeout
            )
        except RuntimeError as exc:
            return CompletionOutcome(ok=False, error=f"executor unavailable: {exc}")
        try:
            text = future.result(timeout=self.completion_timeout)
        except FutureTimeout:
            future.cancel()
            return CompletionOutcome(ok=False, error=f"timed out after {self.completion_timeout:.1f}s")
        except Exception as exc:
            return CompletionOutcome(ok=False, error=f"{type(exc).__name__}: {exc}")
        text = str(text or "").strip()
        if not text:
            return CompletionOutcome(ok=False, error="empty completion")
        return CompletionOutcome(ok=True, text=text)

    def _node_search(self, s: AnswerState) -> dict[str, Any]:
        query = s["query"]
        trace = [PipelineState.ATTEMPTING_SEARCH.value]
        try:
            documents = limit_documents(s.get("records") or (), self.fallback_context_chars)
            passages = rank_passages(documents, query.cleaned, top_k=self.top_k)
            text = compose_answer(query.cleaned, passages)
        except Exception as exc:
            err = SearchInternalError(f"{type(exc).__name__}: {exc}")
            ANSWER_LOGGER.error("search_failed | error=%s | traceback=%s", err, traceback.format_exc())
            result = AnswerResult(
                answer_text=SEARCH_ERROR_MESSAGE,
                used_fallback=True,
                context_document_names=[],
                status="exhausted",
            )
            return {"result": result, "trace": trace + [PipelineState.EXHAUSTED.value]}
        result = AnswerResult(
            answer_text=text,
            used_fallback=True,
            context_document_names=list(dict.fromkeys(p.source for p in passages)),
            status="completed",
        )
        return {"result": result, "trace": trace + [PipelineState.COMPLETED.value]}

    def _record(self, chat_id: str | None, question: str, answer: str) -> tuple[str | None, str | None]:
        if self.sessions is None:
            return chat_id, None
        try:
            if not chat_id:
                chat_id = self.sessions.create_session()
            self.sessions.append_exchange(chat_id, question, answer)
        except Exception as exc:
            ANSWER_LOGGER.error(
                "persist_failed | chat_id=%s | error=%s | traceback=%s",
                chat_id,
                exc,
                traceback.format_exc(),
            )
            return chat_id, str(exc)
        return chat_id, None

    @staticmethod
    def _log_metrics(call_id: str, question: str, result: AnswerResult, elapsed: float) -> None:
        payload = {
            "event": "answer",
            "call_id": call_id,
            "status": result.status,
            "used_fallback": result.used_fallback,
            "question_chars": len(question or ""),
            "answer_chars": len(result.answer_text),
            "documents": result.context_document_names,
            "chat_id": result.chat_id,
            "trace": result.trace,
            "elapsed_sec": round(elapsed, 3),
        }
        try:
            ANSWER_LOGGER.info(json.dumps(payload, ensure_ascii=False))
        except (TypeError, ValueError):
            ANSWER_LOGGER.info("answer | call_id=%s | status=%s", call_id, result.status)
