from typing import Any

import httpx

from explainy.errors import CompletionError


OPENAI_COMPATIBLE = {"groq", "openai"}


class CompletionClient:
    def __init__(
        self,
        *,
        provider: str = "groq",
        groq_base_url: str = "https://api.groq.com/openai/v1",
        groq_model: str = "llama3-70b-8192",
        groq_api_key: str = "",
        openai_base_url: str = "https://api.openai.com/v1",
        openai_model: str = "gpt-4o-mini",
        openai_api_key: str = "",
        ollama_base_url: str = "http://127.0.0.1:11434",
        ollama_model: str = "llama3.2:1b",
        temperature: float = 0.7,
        max_tokens: int = 1000,
        top_p: float = 0.95,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.provider = (provider or "groq").strip().lower()

        self.groq_base_url = (groq_base_url or "https://api.groq.com/openai/v1").rstrip("/")
        self.groq_model = (groq_model or "").strip()
        self.groq_api_key = (groq_api_key or "").strip()

        self.openai_base_url = (openai_base_url or "https://api.openai.com/v1").rstrip("/")
        self.openai_model = (openai_model or "").strip()
        self.openai_api_key = (openai_api_key or "").strip()

        self.ollama_base_url = (ollama_base_url or "http://127.0.0.1:11434").rstrip("/")
        self.ollama_model = (ollama_model or "").strip()

        self.temperature = float(temperature)
        self.max_tokens = int(max_tokens)
        self.top_p = float(top_p)
        self._transport = transport

    @classmethod
    def from_settings(cls, cfg: Any, transport: httpx.BaseTransport | None = None) -> "CompletionClient":
        return cls(
            provider=cfg.llm_provider,
            groq_base_url=cfg.groq_base_url,
            groq_model=cfg.groq_model,
            groq_api_key=cfg.groq_api_key,
            openai_base_url=cfg.openai_base_url,
            openai_model=cfg.openai_model,
            openai_api_key=cfg.openai_api_key,
            ollama_base_url=cfg.ollama_base_url,
            ollama_model=cfg.ollama_model,
            temperature=cfg.llm_temperature,
            max_tokens=cfg.llm_max_tokens,
            top_p=cfg.llm_top_p,
            transport=transport,
        )

    def is_configured(self) -> bool:
        if self.provider == "groq":
            return bool(self.groq_model and self.groq_api_key)
        if self.provider == "openai":
            return bool(self.openai_model and self.openai_api_key)
        if self.provider == "ollama":
            return bool(self.ollama_model)
        return False

    def get_runtime_config(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "configured": self.is_configured(),
            "model": self._model(),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "top_p": self.top_p,
        }

    def _model(self) -> str:
        if self.provider == "groq":
            return self.groq_model
        if self.provider == "openai":
            return self.openai_model
        return self.ollama_model

    def _client(self, timeout: float) -> httpx.Client:
        return httpx.Client(timeout=timeout, transport=self._transport)

    @staticmethod
    def _openai_headers(api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _complete_openai_compatible(
        self,
        *,
        base_url: str,
        api_key: str,
        model: str,
        system_prompt: str,
        user_prompt: str,
        timeout: float,
    ) -> str:
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "top_p": self.top_p,
        }
        with self._client(timeout) as client:
            resp = client.post(
                f"{base_url}/chat/completions",
                headers=self._openai_headers(api_key),
                json=payload,
            )
        resp.raise_for_status()
        data = resp.json()
        choices = data.get("choices") or []
        if not choices:
            raise ValueError("response has no choices")
        return str((choices[0].get("message") or {}).get("content") or "").strip()

    def _complete_ollama(self, system_prompt: str, user_prompt: str, timeout: float) -> str:
        payload = {
            "model": self.ollama_model,
            "stream": False,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "options": {
                "temperature": self.temperature,
                "top_p": self.top_p,
                "num_predict": self.max_tokens,
            },
        }
        with self._client(timeout) as client:
            resp = client.post(f"{self.ollama_base_url}/api/chat", json=payload)
        resp.raise_for_status()
        data = resp.json()
        return str((data.get("message") or {}).get("content") or "").strip()

    def complete(self, system_prompt: str, user_prompt: str, timeout: float = 30.0) -> str:
        """Run one chat completion and return the assistant text.

        Every failure mode (not configured, transport error, non-2xx status,
        malformed or empty body) surfaces as ``CompletionError``.
        """
        if not self.is_configured():
            raise CompletionError(f"LLM provider '{self.provider}' is not configured.")

        try:
            if self.provider == "groq":
                content = self._complete_openai_compatible(
                    base_url=self.groq_base_url,
                    api_key=self.groq_api_key,
                    model=self.groq_model,
                    system_prompt=system_prompt,
                    user_prompt=user_prompt,
                    timeout=timeout,
                )
            elif self.provider == "openai":
                content = self._complete_openai_compatible(
                    base_url=self.openai_base_url,
                    api_key=self.openai_api_key,
                    model=self.openai_model,
                    system_prompt=system_prompt,
                    user_prompt=user_prompt,
                    timeout=timeout,
                )
            elif self.provider == "ollama":
                content = self._complete_ollama(system_prompt, user_prompt, timeout)
            else:
                raise CompletionError(f"Unsupported provider: {self.provider}")
        except CompletionError:
            raise
        except httpx.HTTPStatusError as exc:
            raise CompletionError(
                f"{self.provider} request failed with status {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError, AttributeError, TypeError) as exc:
            raise CompletionError(f"{self.provider} request failed: {exc}") from exc

        if not content:
            raise CompletionError(f"{self.provider} returned an empty completion")
        return content
