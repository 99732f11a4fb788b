"""Summariser backends: an OpenAI-compatible HTTP client and a host callback."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Optional, Protocol

import requests

from summary_errors import TransportFailure


__all__ = [
    "ChatClient",
    "ChatCompletionsClient",
    "HostGenerateClient",
    "build_summarizer",
    "chat_completions_url",
    "list_models",
    "models_url",
]


log = logging.getLogger("AutoSummary.llm")

CHAT_COMPLETIONS_PATH: str = "/v1/chat/completions"
MODELS_PATH: str = "/v1/models"
DEFAULT_MODEL: str = "gpt-3.5-turbo"


class ChatClient(Protocol):
    """Protocol describing the behaviour expected from chat clients."""

    def chat(self, messages: list[dict[str, Any]]) -> str:
        ...


def chat_completions_url(base_url: str) -> str:
    url = (base_url or "").strip()
    if url.endswith(CHAT_COMPLETIONS_PATH):
        return url
    url = url.rstrip("/")
    if CHAT_COMPLETIONS_PATH in url:
        return url
    if url.endswith("/v1"):
        return url + "/chat/completions"
    return url + CHAT_COMPLETIONS_PATH


def models_url(base_url: str) -> str:
    url = (base_url or "").strip()
    if url.endswith(MODELS_PATH):
        return url
    url = url.rstrip("/")
    if url.endswith(CHAT_COMPLETIONS_PATH):
        url = url[: -len(CHAT_COMPLETIONS_PATH)]
    if url.endswith("/v1"):
        return url + "/models"
    return url + MODELS_PATH


class _MessageUtils:
    """Helpers shared by both summariser backends."""

    @staticmethod
    def _dry_stub(messages: list[dict[str, Any]]) -> str:
        """Echo the last line of the latest user turn instead of calling a model."""
        user_turns = [
            msg["content"]
            for msg in messages
            if msg.get("role") == "user" and isinstance(msg.get("content"), str)
        ]
        lines = user_turns[-1].strip().splitlines() if user_turns else []
        return f"[dry-run] {lines[-1][:120]}" if lines else "[dry-run]"

    @staticmethod
    def _normalise_content(content: Any) -> str:
        """Plain text of a message: a string, or a list of ``{"text": ...}`` parts."""
        if isinstance(content, list):
            texts = [part.get("text") for part in content if isinstance(part, dict)]
            return "\n".join(t.strip() for t in texts if isinstance(t, str) and t.strip())
        return content.strip() if isinstance(content, str) else ""

    @classmethod
    def _prepare_messages(cls, messages: list[dict[str, Any]]) -> list[dict[str, str]]:
        prepared: list[dict[str, str]] = []
        for raw in messages:
            role = str(raw.get("role") or "user").strip().lower()
            prepared.append(
                {
                    "role": role if role in {"system", "user", "assistant"} else "user",
                    "content": cls._normalise_content(raw.get("content")),
                }
            )
        return prepared


def _extract_error_message(response: requests.Response) -> str:
    """Best human-readable reason from an error reply, falling back to its body."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            error = error.get("message") or error.get("code")
        for candidate in (error, data.get("message")):
            if isinstance(candidate, str) and candidate.strip():
                return candidate.strip()
    return (response.text or "").strip()


def _auth_headers(api_key: Optional[str]) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_key or ''}"}


class ChatCompletionsClient(_MessageUtils):
    """Client for any OpenAI-compatible ``/v1/chat/completions`` endpoint.

    Failures are raised as :class:`TransportFailure` and never retried; a new
    summarisation cycle is the retry.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: Optional[str],
        model: Optional[str] = None,
        max_tokens: int = 2000,
        temperature: float = 0.7,
        timeout: float = 120.0,
        dry_run: bool = False,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not (base_url or "").strip():
            raise ValueError("base_url is required for ChatCompletionsClient")
        self.url = chat_completions_url(base_url)
        self.api_key = api_key or ""
        self.model = (model or "").strip() or DEFAULT_MODEL
        self.max_tokens = int(max_tokens)
        self.temperature = float(temperature)
        self.timeout = timeout
        self.dry_run = dry_run
        self._http = session or requests

    def chat(self, messages: list[dict[str, Any]]) -> str:
        if self.dry_run:
            return self._dry_stub(messages)

        prepared = self._prepare_messages(messages)
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": prepared,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        log.debug("[LLM] POST %s model=%s messages=%d", self.url, self.model, len(prepared))
        if prepared and log.isEnabledFor(logging.DEBUG):
            preview = json.dumps(prepared[-1], ensure_ascii=False)
            log.debug("[LLM] Last message preview: %s", preview[:500])

        headers = {"Content-Type": "application/json", **_auth_headers(self.api_key)}
        try:
            resp = self._http.post(self.url, headers=headers, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise TransportFailure(f"Summariser request failed: {exc}") from exc

        if not resp.ok:
            message = _extract_error_message(resp)
            details = f" {message}" if message else ""
            raise TransportFailure(
                f"Summariser HTTP error {resp.status_code}.{details}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise TransportFailure("Summariser responded with invalid JSON payload.") from exc

        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices:
            raise TransportFailure("Summariser returned no choices.")
        first = choices[0]
        message = first.get("message") if isinstance(first, dict) else None
        text = self._normalise_content(message.get("content")) if isinstance(message, dict) else ""
        if not text:
            raise TransportFailure("Summariser returned an empty message.")
        return text


class HostGenerateClient(_MessageUtils):
    """Wrap a host-provided ``generate(prompt) -> str`` function.

    The host takes one flat prompt, so all turns are joined with blank lines.
    """

    def __init__(self, generate: Callable[[str], Optional[str]], *, dry_run: bool = False) -> None:
        self._generate = generate
        self.dry_run = dry_run

    @classmethod
    def flatten(cls, messages: list[dict[str, Any]]) -> str:
        parts = [cls._normalise_content(msg.get("content")) for msg in messages]
        return "\n\n".join(part for part in parts if part)

    def chat(self, messages: list[dict[str, Any]]) -> str:
        if self.dry_run:
            return self._dry_stub(messages)
        prompt = self.flatten(messages)
        try:
            result = self._generate(prompt)
        except Exception as exc:
            raise TransportFailure(f"Host generation failed: {exc}") from exc
        text = (result or "").strip() if isinstance(result, str) else ""
        if not text:
            raise TransportFailure("Host generation returned no text.")
        return text


def build_summarizer(
    api,
    host_generate: Optional[Callable[[str], Optional[str]]] = None,
    *,
    timeout: float = 120.0,
    dry_run: bool = False,
) -> ChatClient:
    """Pick the HTTP client when ``api.url`` is set, else the host function."""
    if (api.url or "").strip():
        return ChatCompletionsClient(
            base_url=api.url,
            api_key=api.key,
            model=api.model,
            timeout=timeout,
            dry_run=dry_run,
        )
    if host_generate is not None:
        return HostGenerateClient(host_generate, dry_run=dry_run)
    if dry_run:
        return HostGenerateClient(lambda prompt: prompt, dry_run=True)
    raise TransportFailure(
        "No summariser configured: set [api] url or provide a host generation function."
    )


def list_models(
    base_url: str,
    api_key: Optional[str] = None,
    *,
    timeout: float = 30.0,
) -> list[str]:
    """Return model ids from ``/v1/models``; also serves as a connection test."""
    if not (base_url or "").strip():
        raise ValueError("API url is empty")
    url = models_url(base_url)
    try:
        resp = requests.get(url, headers=_auth_headers(api_key), timeout=timeout)
    except requests.RequestException as exc:
        raise TransportFailure(f"Model list request failed: {exc}") from exc
    if not resp.ok:
        message = _extract_error_message(resp)
        details = f" {message}" if message else ""
        raise TransportFailure(
            f"Model list HTTP error {resp.status_code}.{details}",
            status_code=resp.status_code,
        )
    try:
        data = resp.json()
    except ValueError as exc:
        raise TransportFailure("Model list responded with invalid JSON payload.") from exc
    items = data.get("data") if isinstance(data, dict) else None
    if not isinstance(items, list):
        return []
    names: list[str] = []
    for item in items:
        if isinstance(item, dict):
            name = item.get("id") or item.get("name")
        else:
            name = item
        if isinstance(name, str) and name.strip():
            names.append(name.strip())
    return names
