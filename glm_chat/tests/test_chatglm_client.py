import asyncio
import logging

import httpx
import jwt
import pytest

from glm_chat.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from glm_chat.domain.models import ChatCompletionRequest, ChatGLMMessage
from glm_chat.providers.chatglm_client import ChatGLMClient

SECRET = "0123456789abcdef0123456789abcdef"


class SettingsStub:
    chatglm_api_key = f"key-id.{SECRET}"
    chatglm_base_url = "https://open.bigmodel.cn/api/paas/v3/model-api"
    chatglm_model = "chatglm_turbo"
    chatglm_exp_seconds = 60
    http_timeout = 1.0


RESPONSE = {
    "code": 200,
    "success": True,
    "msg": "操作成功",
    "data": {
        "request_id": "req-1",
        "task_id": "task-1",
        "task_status": "SUCCESS",
        "choices": [{"role": "assistant", "content": "ok"}],
        "usage": {"prompt_tokens": 1, "completion_tokens": 1, "total_tokens": 2},
    },
}


def _request():
    return ChatCompletionRequest(prompt=[ChatGLMMessage(role="user", content="hi")])


class Resp:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        return self._payload


def _fake_client(resp, calls):
    class Client:
        def __init__(self, *a, **kw):
            calls.append(("init", kw))

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, url, json=None, headers=None):
            calls.append(("post", url, json, headers))
            if isinstance(resp, Exception):
                raise resp
            return resp

    return Client


def test_completion_basic(monkeypatch):
    calls = []
    monkeypatch.setattr("httpx.Client", _fake_client(Resp(payload=RESPONSE), calls))
    client = ChatGLMClient(SettingsStub())

    res = client.completion(_request())

    assert res.success is True
    assert res.text == "ok"
    assert res.data.task_id == "task-1"
    assert res.data.usage.total_tokens == 2

    _, url, body, headers = calls[1]
    assert url == "https://open.bigmodel.cn/api/paas/v3/model-api/chatglm_turbo/invoke"
    assert body == {"prompt": [{"role": "user", "content": "hi"}]}
    assert headers["accept"] == "application/json"
    assert headers["Content-Type"] == "application/json"
    claims = jwt.decode(headers["Authorization"], SECRET, algorithms=["HS256"], options={"verify_exp": False})
    assert claims["api_key"] == "key-id"
    assert claims["exp"] - claims["timestamp"] == 60_000


def test_completion_missing_api_key():
    class NoKey(SettingsStub):
        chatglm_api_key = None

    with pytest.raises(ValidationError) as exc:
        ChatGLMClient(NoKey())
    assert exc.value.code == "MISSING_API_KEY"


def test_completion_explicit_args_override_settings():
    client = ChatGLMClient(SettingsStub(), api_key="other.secret", exp_seconds=10)
    assert client.api_key == "other.secret"
    assert client.exp_seconds == 10


def test_completion_rate_limit(monkeypatch):
    monkeypatch.setattr("httpx.Client", _fake_client(Resp(status_code=429), []))
    with pytest.raises(RateLimitError):
        ChatGLMClient(SettingsStub()).completion(_request())


def test_completion_api_error(monkeypatch):
    monkeypatch.setattr("httpx.Client", _fake_client(Resp(status_code=500, text="boom"), []))
    with pytest.raises(ApiError) as exc:
        ChatGLMClient(SettingsStub()).completion(_request())
    assert exc.value.http_status == 500
    assert exc.value.message == "boom"


def test_completion_network_error(monkeypatch):
    monkeypatch.setattr("httpx.Client", _fake_client(httpx.ConnectError("unreachable"), []))
    with pytest.raises(NetworkError):
        ChatGLMClient(SettingsStub()).completion(_request())


def test_completion_stream(monkeypatch):
    calls = []

    class FakeResponse:
        status_code = 200

        def iter_bytes(self):
            yield b"event: add\ndata: a\n\n"
            yield b"event: finish\ndata: b\n\n"

    class StreamContext:
        def __enter__(self):
            return FakeResponse()

        def __exit__(self, *args):
            return False

    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, *a, **kw):
            raise AssertionError("post should not be called in stream test")

        def stream(self, method, url, json=None, headers=None):
            calls.append((method, url, json, headers))
            return StreamContext()

    monkeypatch.setattr("httpx.Client", Client)
    chunks = list(ChatGLMClient(SettingsStub()).completion(_request(), stream=True))

    assert chunks == [b"event: add\ndata: a\n\n", b"event: finish\ndata: b\n\n"]
    method, _, body, headers = calls[0]
    assert method == "POST"
    assert body == {"prompt": [{"role": "user", "content": "hi"}]}
    assert headers["accept"] == "text/event-stream"


def test_completion_stream_error_status(monkeypatch):
    class FakeResponse:
        status_code = 401
        text = "unauthorized"

        def read(self):
            return b"unauthorized"

    class StreamContext:
        def __enter__(self):
            return FakeResponse()

        def __exit__(self, *args):
            return False

    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def stream(self, *a, **kw):
            return StreamContext()

    monkeypatch.setattr("httpx.Client", Client)
    with pytest.raises(ApiError) as exc:
        list(ChatGLMClient(SettingsStub()).completion(_request(), stream=True))
    assert exc.value.http_status == 401


def test_acompletion_basic(monkeypatch):
    calls = []

    class AsyncResp(Resp):
        pass

    class AsyncClient:
        def __init__(self, *a, **kw):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, *a):
            return False

        async def post(self, url, json=None, headers=None):
            calls.append((url, json, headers))
            return AsyncResp(payload=RESPONSE)

    monkeypatch.setattr("httpx.AsyncClient", AsyncClient)
    res = asyncio.run(ChatGLMClient(SettingsStub()).acompletion(_request()))

    assert res.text == "ok"
    assert calls[0][2]["accept"] == "application/json"


def test_acompletion_stream(monkeypatch):
    class FakeResponse:
        status_code = 200

        async def aiter_bytes(self):
            yield b"event: add\ndata: a\n\n"

    class StreamContext:
        async def __aenter__(self):
            return FakeResponse()

        async def __aexit__(self, *args):
            return False

    class AsyncClient:
        def __init__(self, *a, **kw):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, *a):
            return False

        def stream(self, *a, **kw):
            assert kw["headers"]["accept"] == "text/event-stream"
            return StreamContext()

    monkeypatch.setattr("httpx.AsyncClient", AsyncClient)

    async def collect():
        stream = await ChatGLMClient(SettingsStub()).acompletion(_request(), stream=True)
        return [chunk async for chunk in stream]

    assert asyncio.run(collect()) == [b"event: add\ndata: a\n\n"]


def test_create_client_uses_settings(monkeypatch):
    from glm_chat.providers import create_client

    monkeypatch.setattr("glm_chat.providers.settings", SettingsStub())
    client = create_client(exp_seconds=5)
    assert isinstance(client, ChatGLMClient)
    assert client.api_key == SettingsStub.chatglm_api_key
    assert client.exp_seconds == 5
    assert client.url.endswith("/chatglm_turbo/invoke")


def _fake_async_client(post=None, stream=None, closed=None):
    class AsyncClient:
        def __init__(self, *a, **kw):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, *a):
            if closed is not None:
                closed.append(True)
            return False

        async def post(self, *a, **kw):
            return await post()

        def stream(self, *a, **kw):
            return stream()

    return AsyncClient


def test_acompletion_network_error(monkeypatch):
    async def post():
        raise httpx.ConnectError("unreachable")

    monkeypatch.setattr("httpx.AsyncClient", _fake_async_client(post=post))
    with pytest.raises(NetworkError) as exc:
        asyncio.run(ChatGLMClient(SettingsStub()).acompletion(_request()))
    assert exc.value.code == "NETWORK_ERROR"


def test_acompletion_api_error(monkeypatch):
    async def post():
        return Resp(status_code=502, text="bad gateway")

    monkeypatch.setattr("httpx.AsyncClient", _fake_async_client(post=post))
    with pytest.raises(ApiError) as exc:
        asyncio.run(ChatGLMClient(SettingsStub()).acompletion(_request()))
    assert exc.value.http_status == 502


def test_acompletion_stream_error_status(monkeypatch):
    class FakeResponse:
        status_code = 429
        text = "slow down"

        async def aread(self):
            return b"slow down"

    class StreamContext:
        async def __aenter__(self):
            return FakeResponse()

        async def __aexit__(self, *args):
            return False

    monkeypatch.setattr("httpx.AsyncClient", _fake_async_client(stream=StreamContext))

    async def collect():
        stream = await ChatGLMClient(SettingsStub()).acompletion(_request(), stream=True)
        return [chunk async for chunk in stream]

    with pytest.raises(RateLimitError) as exc:
        asyncio.run(collect())
    assert exc.value.http_status == 429


def test_acompletion_cancel_closes_client(monkeypatch):
    started = []
    closed = []

    async def post():
        started.append(True)
        await asyncio.sleep(60)

    monkeypatch.setattr("httpx.AsyncClient", _fake_async_client(post=post, closed=closed))

    async def run():
        task = asyncio.create_task(ChatGLMClient(SettingsStub()).acompletion(_request()))
        while not started:
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(run())
    assert closed == [True]


def test_stream_logs_response_event(monkeypatch, caplog):
    class FakeResponse:
        status_code = 200

        def iter_bytes(self):
            yield b"event: add\ndata:a\n\n"

    class StreamContext:
        def __enter__(self):
            return FakeResponse()

        def __exit__(self, *args):
            return False

    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def stream(self, *a, **kw):
            return StreamContext()

    monkeypatch.setattr("httpx.Client", Client)
    with caplog.at_level(logging.INFO, logger="glm_chat"):
        list(ChatGLMClient(SettingsStub()).completion(_request(), stream=True))

    responses = [r for r in caplog.records if r.getMessage() == "chatglm.response"]
    assert len(responses) == 1
    assert responses[0].extra == {"model": "chatglm_turbo", "stream": True, "status": 200}


def test_http_error_logged_with_code(monkeypatch, caplog):
    monkeypatch.setattr("httpx.Client", _fake_client(Resp(status_code=500, text="boom"), []))
    with caplog.at_level(logging.WARNING, logger="glm_chat"), pytest.raises(ApiError):
        ChatGLMClient(SettingsStub()).completion(_request())

    errors = [r for r in caplog.records if r.getMessage() == "chatglm.error"]
    assert errors[0].extra["code"] == "API_ERROR"
    assert errors[0].extra["http_status"] == 500
