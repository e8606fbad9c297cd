"""Chat client payload, retries and configuration."""
import threading
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace

import pytest
import requests

from profseg import llm_client
from profseg.llm_client import LLMConfig, LLMError, Message, OpenAIChatClient


class _Response:
    def __init__(self, status_code, data=None, text=""):
        self.status_code = status_code
        self._data = data
        self.text = text

    def json(self):
        if self._data is None:
            raise ValueError("no json")
        return self._data


class _Session:
    def __init__(self, responses):
        self.responses = list(responses)
        self.posts = []

    def post(self, url, data=None, timeout=None):
        self.posts.append((url, data))
        r = self.responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r


@pytest.fixture
def no_sleep(monkeypatch):
    monkeypatch.setattr(llm_client.time, "sleep", lambda s: None)


def _client(monkeypatch, session):
    monkeypatch.setattr(OpenAIChatClient, "_session", lambda self: session)
    return OpenAIChatClient(api_key="k", base_url="http://llm.local/v1/", rate_limit_rpm=None)


MESSAGES = [Message(role="system", content="s"), Message(role="user", content="u")]


class TestPayload:
    def test_thinking_flag(self):
        p = OpenAIChatClient(api_key="k").build_payload(MESSAGES, LLMConfig(thinking="disabled"))
        assert p["thinking"] == {"type": "disabled"}
        assert p["messages"][1] == {"role": "user", "content": "u"}

    def test_no_thinking_flag(self):
        p = OpenAIChatClient(api_key="k").build_payload(MESSAGES, LLMConfig(thinking=None))
        assert "thinking" not in p

    def test_config_from_env(self, monkeypatch):
        monkeypatch.setenv("PROFSEG_MODEL", "my-model")
        monkeypatch.setenv("PROFSEG_TEMPERATURE", "0.7")
        monkeypatch.setenv("PROFSEG_MAX_TOKENS", "not-a-number")
        cfg = LLMConfig.from_env()
        assert cfg.model == "my-model"
        assert cfg.temperature == 0.7
        assert cfg.max_tokens == 2000


class TestComplete:
    def test_returns_content(self, monkeypatch):
        session = _Session([_Response(200, {"choices": [{"message": {"content": "hello"}}]})])
        out = _client(monkeypatch, session).complete(MESSAGES, LLMConfig())
        assert out == "hello"
        assert session.posts[0][0] == "http://llm.local/v1/chat/completions"

    def test_retries_then_succeeds(self, monkeypatch, no_sleep):
        session = _Session(
            [
                requests.ConnectionError("down"),
                _Response(429, text="Rate limit. Please try again in 0.2s"),
                _Response(200, {"choices": [{"message": {"content": "ok"}}]}),
            ]
        )
        assert _client(monkeypatch, session).complete(MESSAGES, LLMConfig()) == "ok"
        assert len(session.posts) == 3

    def test_http_error_raises_after_retries(self, monkeypatch, no_sleep):
        session = _Session([_Response(500, text="boom")] * 3)
        with pytest.raises(LLMError, match="HTTP 500"):
            _client(monkeypatch, session).complete(MESSAGES, LLMConfig())

    def test_empty_content(self, monkeypatch, no_sleep):
        session = _Session([_Response(200, {"choices": []})] * 3)
        with pytest.raises(LLMError, match="empty content"):
            _client(monkeypatch, session).complete(MESSAGES, LLMConfig())

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("PROFSEG_API_KEY", raising=False)
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(LLMError, match="not set"):
            OpenAIChatClient(rate_limit_rpm=None).complete(MESSAGES, LLMConfig())


class TestThrottle:
    def test_shared_client_spaces_calls_across_threads(self, monkeypatch):
        clock = {"now": 0.0}
        sleeps = []
        guard = threading.Lock()

        def fake_sleep(s):
            with guard:
                sleeps.append(s)
                clock["now"] += s

        fake_time = SimpleNamespace(time=lambda: clock["now"], sleep=fake_sleep)
        monkeypatch.setattr(llm_client, "time", fake_time)

        client = OpenAIChatClient(api_key="k", rate_limit_rpm=60)
        with ThreadPoolExecutor(max_workers=3) as pool:
            list(pool.map(lambda _: client._throttle(), range(3)))

        assert len(sleeps) == 2
        assert all(s == pytest.approx(1.05) for s in sleeps)
        assert client._last_call_ts == [pytest.approx(2.1)]
