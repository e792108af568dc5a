"""ChatGLM model-api 客户端。

接口约定（v3 model-api）：
- URL: {base_url}/{model}/invoke
- 认证: Authorization: <JWT>（由 API Key 现签，见 auth.generate_token）
- 请求体: {"prompt": [{"role": "user", "content": "..."}]}
- 流式/非流式通过 accept 头协商：text/event-stream 或 application/json。

非流式返回解析后的 ChatCompletionResponse；流式直接返回原始字节迭代器，
由调用方（如 sse.iter_sse_events）自行解码。
"""

from typing import AsyncIterator, Iterator, Optional, Union

import httpx

from glm_chat.config.settings import settings
from glm_chat.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from glm_chat.domain.models import ChatCompletionRequest, ChatCompletionResponse
from glm_chat.infrastructure.logging.logger import logger
from glm_chat.providers.auth import generate_token, split_api_key
from glm_chat.providers.registry import CHATGLM_CONFIG


class ChatGLMClient:
    """ChatGLM HTTP 客户端实现。

    - name: Provider 名称（供日志使用）。
    - completion / acompletion: 同步/异步调用入口，stream 参数决定返回形态。
    """

    name = "chatglm"

    def __init__(
        self,
        cfg=settings,
        api_key: Optional[str] = None,
        exp_seconds: Optional[int] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._settings = cfg
        self.api_key = api_key or getattr(cfg, "chatglm_api_key", None)
        if not self.api_key:
            raise ValidationError(code="MISSING_API_KEY", message="ChatGLM API key not found")
        split_api_key(self.api_key)
        self.exp_seconds = exp_seconds or getattr(cfg, "chatglm_exp_seconds", 3600)
        self.model = model or getattr(cfg, "chatglm_model", None) or "chatglm_turbo"
        self.timeout = timeout or getattr(cfg, "http_timeout", 30.0)

    @property
    def url(self) -> str:
        base = getattr(self._settings, "chatglm_base_url", None) or CHATGLM_CONFIG.base_url
        return CHATGLM_CONFIG.invoke_url(self.model, base)

    # ---- 同步 ----

    def completion(
        self, request: ChatCompletionRequest, stream: bool = False
    ) -> Union[ChatCompletionResponse, Iterator[bytes]]:
        if stream:
            return self._stream_bytes(request)
        logger.info(
            "chatglm.request",
            extra={"extra": {"model": self.model, "stream": False, "messages": len(request.prompt)}},
        )
        try:
            with httpx.Client(timeout=self.timeout, trust_env=False) as client:
                resp = client.post(self.url, json=request.to_payload(), headers=self._headers(stream=False))
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        self._raise_for_status(resp.status_code, resp.text)
        return self._parse_response(resp.json())

    def _stream_bytes(self, request: ChatCompletionRequest) -> Iterator[bytes]:
        logger.info(
            "chatglm.request",
            extra={"extra": {"model": self.model, "stream": True, "messages": len(request.prompt)}},
        )
        try:
            with httpx.Client(timeout=self.timeout, trust_env=False) as client:
                with client.stream(
                    "POST",
                    self.url,
                    json=request.to_payload(),
                    headers=self._headers(stream=True),
                ) as resp:
                    if resp.status_code >= 400:
                        resp.read()
                        self._raise_for_status(resp.status_code, resp.text)
                    self._log_stream_opened(resp.status_code)
                    yield from resp.iter_bytes()
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))

    # ---- 异步 ----

    async def acompletion(
        self, request: ChatCompletionRequest, stream: bool = False
    ) -> Union[ChatCompletionResponse, AsyncIterator[bytes]]:
        """异步调用；取消等待中的 task 即中止请求。"""

        if stream:
            return self._astream_bytes(request)
        logger.info(
            "chatglm.request",
            extra={"extra": {"model": self.model, "stream": False, "messages": len(request.prompt)}},
        )
        try:
            async with httpx.AsyncClient(timeout=self.timeout, trust_env=False) as client:
                resp = await client.post(self.url, json=request.to_payload(), headers=self._headers(stream=False))
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        self._raise_for_status(resp.status_code, resp.text)
        return self._parse_response(resp.json())

    async def _astream_bytes(self, request: ChatCompletionRequest) -> AsyncIterator[bytes]:
        logger.info(
            "chatglm.request",
            extra={"extra": {"model": self.model, "stream": True, "messages": len(request.prompt)}},
        )
        try:
            async with httpx.AsyncClient(timeout=self.timeout, trust_env=False) as client:
                async with client.stream(
                    "POST",
                    self.url,
                    json=request.to_payload(),
                    headers=self._headers(stream=True),
                ) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                        self._raise_for_status(resp.status_code, resp.text)
                    self._log_stream_opened(resp.status_code)
                    async for chunk in resp.aiter_bytes():
                        yield chunk
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))

    # ---- 辅助方法 ----

    def _headers(self, stream: bool) -> dict:
        return {
            "Authorization": generate_token(self.api_key, self.exp_seconds),
            "accept": "text/event-stream" if stream else "application/json",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _raise_for_status(status_code: int, body: str) -> None:
        if status_code < 400:
            return
        if status_code == 429:
            err: ApiError = RateLimitError(code="RATE_LIMIT", message="ChatGLM rate limit", http_status=429)
        else:
            err = ApiError(code="API_ERROR", message=body, http_status=status_code)
        logger.warning("chatglm.error", extra={"extra": err.to_dict()})
        raise err

    def _log_stream_opened(self, status_code: int) -> None:
        logger.info(
            "chatglm.response",
            extra={"extra": {"model": self.model, "stream": True, "status": status_code}},
        )

    def _parse_response(self, data: dict) -> ChatCompletionResponse:
        result = ChatCompletionResponse.from_payload(data)
        logger.info(
            "chatglm.response",
            extra={
                "extra": {
                    "code": result.code,
                    "success": result.success,
                    "task_id": result.data.task_id if result.data else None,
                    "usage": result.data.usage.to_dict() if result.data and result.data.usage else None,
                }
            },
        )
        return result
