from __future__ import annotations

import json
import os
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

import requests

from profseg.secrets import get_api_key


class LLMError(RuntimeError):
    pass


_RETRY_AFTER_HINT_RE = re.compile(r"try again in\s+([0-9]+(?:\.[0-9]+)?)s", re.IGNORECASE)


def _parse_retry_after_seconds(msg: str) -> Optional[float]:
    if not msg:
        return None
    m = _RETRY_AFTER_HINT_RE.search(msg)
    if not m:
        return None
    try:
        return float(m.group(1))
    except ValueError:
        return None


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, "") or default)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, "") or default)
    except ValueError:
        return default


@dataclass(frozen=True)
class LLMConfig:
    """Per-call configuration bag sent alongside the messages."""

    model: str = "gpt-4.1-mini"
    temperature: float = 0.3
    max_tokens: int = 2000
    thinking: Optional[str] = "disabled"

    @classmethod
    def from_env(cls) -> "LLMConfig":
        return cls(
            model=os.getenv("PROFSEG_MODEL") or cls.model,
            temperature=_env_float("PROFSEG_TEMPERATURE", cls.temperature),
            max_tokens=_env_int("PROFSEG_MAX_TOKENS", cls.max_tokens),
            thinking=os.getenv("PROFSEG_THINKING") or cls.thinking,
        )


@dataclass(frozen=True)
class Message:
    role: str
    content: str


@dataclass(frozen=True)
class OpenAIChatClient:
    """Small OpenAI-compatible chat client using plain HTTP.

    Requires: PROFSEG_API_KEY or OPENAI_API_KEY in environment (or passed in).
    Any endpoint exposing `/chat/completions` works via PROFSEG_BASE_URL.
    """

    api_key: Optional[str] = None
    base_url: str = field(default_factory=lambda: os.getenv("PROFSEG_BASE_URL") or "https://api.openai.com/v1")
    timeout_s: int = 120
    max_retries: int = 3
    rate_limit_rpm: Optional[float] = 60.0
    # Mutable single-element list used for tracking last call time even in frozen dataclass.
    _last_call_ts: list[float] = field(default_factory=list, repr=False)
    # Serializes the throttle when one client is shared by worker threads.
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def _key(self) -> str:
        k = self.api_key or get_api_key()
        if not k:
            raise LLMError("OPENAI_API_KEY is not set")
        return k

    def _session(self) -> requests.Session:
        s = requests.Session()
        s.headers.update(
            {
                "Authorization": f"Bearer {self._key()}",
                "Content-Type": "application/json",
            }
        )
        return s

    def _throttle(self) -> None:
        if not self.rate_limit_rpm or self.rate_limit_rpm <= 0:
            return
        min_interval = 60.0 / float(self.rate_limit_rpm)
        with self._lock:
            now = time.time()
            if self._last_call_ts and (now - self._last_call_ts[0]) < min_interval:
                time.sleep(min_interval - (now - self._last_call_ts[0]) + 0.05)
            if self._last_call_ts:
                self._last_call_ts[0] = time.time()
            else:
                self._last_call_ts.append(time.time())

    def build_payload(self, messages: Sequence[Message], config: LLMConfig) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": config.model,
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
        }
        if config.thinking:
            payload["thinking"] = {"type": config.thinking}
        return payload

    def complete(self, messages: Sequence[Message], config: Optional[LLMConfig] = None) -> str:
        """Send the messages and return the assistant's free text."""
        config = config or LLMConfig.from_env()
        self._throttle()
        payload = self.build_payload(messages, config)

        url = f"{self.base_url.rstrip('/')}/chat/completions"
        s = self._session()

        last_err: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                r = s.post(url, data=json.dumps(payload), timeout=self.timeout_s)
                if r.status_code == 429:
                    # Honor server hint if present, otherwise exponential backoff.
                    hint = _parse_retry_after_seconds(r.text)
                    sleep_s = (hint + 0.5) if hint is not None else (1.5 * (2 ** (attempt - 1)))
                    if attempt < self.max_retries:
                        time.sleep(sleep_s)
                        continue
                    raise LLMError(f"HTTP 429: {r.text[:2000]}")
                if r.status_code >= 400:
                    raise LLMError(f"HTTP {r.status_code}: {r.text[:2000]}")
                data = r.json()
                content = (
                    (data.get("choices") or [{}])[0]
                    .get("message", {})
                    .get("content", "")
                )
                if not content or not isinstance(content, str):
                    raise LLMError(f"Model returned empty content: {str(data)[:2000]}")
                return content
            except (requests.RequestException, ValueError, LLMError) as e:
                last_err = e
                if attempt < self.max_retries:
                    time.sleep(0.8 * (2 ** (attempt - 1)))
                    continue
                if isinstance(e, LLMError):
                    raise
                raise LLMError(f"Chat call failed: {e}") from e

        raise LLMError(f"Chat call failed: {last_err}")
