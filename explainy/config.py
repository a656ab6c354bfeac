from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    documents_dir: str = Field(default="documents", alias="DOCUMENTS_DIR")
    sqlite_path: str = Field(default=".rag/explainy.db", alias="SQLITE_PATH")
    log_dir: str = Field(default=".rag", alias="LOG_DIR")

    llm_provider: str = Field(default="groq", alias="LLM_PROVIDER")

    groq_base_url: str = Field(default="https://api.groq.com/openai/v1", alias="GROQ_BASE_URL")
    groq_model: str = Field(default="llama3-70b-8192", alias="GROQ_MODEL")
    groq_api_key: str = Field(default="", alias="GROQ_API_KEY")

    openai_base_url: str = Field(default="https://api.openai.com/v1", alias="OPENAI_BASE_URL")
    openai_model: str = Field(default="gpt-4o-mini", alias="OPENAI_MODEL")
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")

    ollama_base_url: str = Field(default="http://127.0.0.1:11434", alias="OLLAMA_BASE_URL")
    ollama_model: str = Field(default="llama3.2:1b", alias="OLLAMA_MODEL")

    llm_temperature: float = Field(default=0.7, alias="LLM_TEMPERATURE")
    llm_max_tokens: int = Field(default=1000, alias="LLM_MAX_TOKENS")
    llm_top_p: float = Field(default=0.95, alias="LLM_TOP_P")

    completion_timeout_sec: float = Field(default=30.0, alias="COMPLETION_TIMEOUT_SEC")
    completion_context_chars: int = Field(default=1500, alias="COMPLETION_CONTEXT_CHARS")
    fallback_context_chars: int = Field(default=0, alias="FALLBACK_CONTEXT_CHARS")
    fallback_top_k: int = Field(default=5, alias="FALLBACK_TOP_K")

    watch_settle_sec: float = Field(default=1.0, alias="WATCH_SETTLE_SEC")
    watch_restart_initial_sec: float = Field(default=1.0, alias="WATCH_RESTART_INITIAL_SEC")
    watch_restart_max_sec: float = Field(default=30.0, alias="WATCH_RESTART_MAX_SEC")
    watch_poll_sec: float = Field(default=1.0, alias="WATCH_POLL_SEC")

    host: str = Field(default="127.0.0.1", alias="EXPLAINY_HOST")
    port: int = Field(default=5001, alias="EXPLAINY_PORT")


settings = Settings()


def ensure_runtime_dirs(cfg: Settings | None = None) -> None:
    cfg = cfg or settings
    Path(cfg.documents_dir).mkdir(parents=True, exist_ok=True)
    Path(cfg.sqlite_path).parent.mkdir(parents=True, exist_ok=True)
    Path(cfg.log_dir).mkdir(parents=True, exist_ok=True)
