"""LangChain ChatGLM 聊天模型。

本模块把 ChatGLM 接入 LangChain 的 BaseChatModel：

1. 把 LangChain 消息（AIMessage/HumanMessage/ChatMessage）映射为 ChatGLM 的 assistant/user 角色。
2. 通过 ChatGLMClient 发起调用（非流式或 SSE 流式）。
3. 把厂商响应转换为 ChatResult / ChatGenerationChunk。

SystemMessage 与 FunctionMessage 不被 ChatGLM 接受，直接抛 ValidationError。
"""

from typing import Any, AsyncIterator, Dict, Iterator, List, Optional

from langchain_core.callbacks import AsyncCallbackManagerForLLMRun, CallbackManagerForLLMRun
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    AIMessageChunk,
    BaseMessage,
    ChatMessage,
    FunctionMessage,
    HumanMessage,
    SystemMessage,
)
from langchain_core.outputs import ChatGeneration, ChatGenerationChunk, ChatResult
from langchain_core.utils import get_from_dict_or_env
from pydantic import Field, PrivateAttr, SecretStr, model_validator

from glm_chat.config.settings import settings
from glm_chat.domain.exceptions import ApiError, StreamError, ValidationError
from glm_chat.domain.models import (
    KNOWN_ROLES,
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatCompletionUsage,
    ChatGLMMessage,
    ChatGLMMessageRole,
    ServerSentEvent,
)
from glm_chat.infrastructure.logging.logger import logger
from glm_chat.providers.auth import split_api_key
from glm_chat.providers.base import CompletionClient
from glm_chat.providers import create_client
from glm_chat.providers.sse import aiter_sse_events, iter_sse_events


def _extract_custom_role(message: ChatMessage) -> ChatGLMMessageRole:
    if message.role not in KNOWN_ROLES:
        logger.warning(
            f"Unknown message role: {message.role}",
            extra={"extra": {"role": message.role}},
        )
    return message.role  # type: ignore[return-value]


def message_to_chatglm_role(message: BaseMessage) -> ChatGLMMessageRole:
    """把 LangChain 消息类型映射为 ChatGLM 角色。"""

    if isinstance(message, AIMessage):
        return "assistant"
    if isinstance(message, HumanMessage):
        return "user"
    if isinstance(message, SystemMessage):
        raise ValidationError(code="UNSUPPORTED_MESSAGE", message="System messages should not be here")
    if isinstance(message, FunctionMessage):
        raise ValidationError(code="UNSUPPORTED_MESSAGE", message="Function messages not supported")
    if isinstance(message, ChatMessage):
        return _extract_custom_role(message)
    raise ValidationError(code="UNSUPPORTED_MESSAGE", message=f"Unknown message type: {message.type}")


def _message_text(message: BaseMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def convert_messages(messages: List[BaseMessage]) -> ChatCompletionRequest:
    return ChatCompletionRequest(
        prompt=[ChatGLMMessage(role=message_to_chatglm_role(m), content=_message_text(m)) for m in messages]
    )


def _usage_metadata(usage: Optional[ChatCompletionUsage]) -> Optional[Dict[str, int]]:
    if usage is None:
        return None
    return {
        "input_tokens": usage.prompt_tokens,
        "output_tokens": usage.completion_tokens,
        "total_tokens": usage.total_tokens,
    }


class ChatGLM(BaseChatModel):
    """ChatGLM 聊天模型。

    API Key 依次从构造参数、环境变量 CHATGLM_API_KEY、settings（.env / config.yaml）读取，
    都没有时构造即失败。

    Example:
        .. code-block:: python

            from langchain_core.messages import HumanMessage
            from glm_chat import ChatGLM

            model = ChatGLM(exp_seconds=600)
            model.invoke([HumanMessage(content="Nice to meet you!")])
    """

    chatglm_api_key: Optional[SecretStr] = Field(default=None, alias="api_key")
    """API Key，格式为 id.secret。"""
    exp_seconds: int = Field(default=3600, ge=1)
    """JWT 有效期（秒）。"""
    model_name: str = Field(default="chatglm_turbo", alias="model")
    timeout: Optional[float] = None

    _client: Optional[CompletionClient] = PrivateAttr(default=None)

    model_config = {"populate_by_name": True}

    @model_validator(mode="before")
    @classmethod
    def validate_environment(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        values = dict(values)
        if values.get("api_key") and not values.get("chatglm_api_key"):
            values["chatglm_api_key"] = values.pop("api_key")
        raw = values.get("chatglm_api_key")
        if isinstance(raw, SecretStr):
            raw = raw.get_secret_value()
        if raw:
            values["chatglm_api_key"] = raw
        api_key = get_from_dict_or_env(
            values,
            "chatglm_api_key",
            "CHATGLM_API_KEY",
            default=getattr(settings, "chatglm_api_key", None) or "",
        )
        if not api_key:
            raise ValidationError(code="MISSING_API_KEY", message="ChatGLM API key not found")
        split_api_key(api_key)
        values["chatglm_api_key"] = api_key
        if "exp_seconds" not in values and getattr(settings, "chatglm_exp_seconds", None):
            values["exp_seconds"] = settings.chatglm_exp_seconds
        return values

    @classmethod
    def is_lc_serializable(cls) -> bool:
        return True

    @property
    def lc_secrets(self) -> Dict[str, str]:
        return {"chatglm_api_key": "CHATGLM_API_KEY"}

    @property
    def _llm_type(self) -> str:
        return "chatglm"

    @property
    def _identifying_params(self) -> Dict[str, Any]:
        return {"model_name": self.model_name, "exp_seconds": self.exp_seconds}

    @property
    def client(self) -> CompletionClient:
        if self._client is None:
            self._client = create_client(
                api_key=self.chatglm_api_key.get_secret_value(),
                exp_seconds=self.exp_seconds,
                model=self.model_name,
                timeout=self.timeout,
            )
        return self._client

    def _combine_llm_output(self, llm_outputs: List[Optional[dict]]) -> dict:
        outputs = [o for o in llm_outputs if o]
        if len(outputs) == 1:
            return dict(outputs[0])
        return {}

    # ---- 调用 ----

    def completion(self, request: ChatCompletionRequest, stream: bool = False):
        return self.client.completion(request, stream=stream)

    async def acompletion(self, request: ChatCompletionRequest, stream: bool = False):
        return await self.client.acompletion(request, stream=stream)

    def _generate(
        self,
        messages: List[BaseMessage],
        stop: Optional[List[str]] = None,
        run_manager: Optional[CallbackManagerForLLMRun] = None,
        **kwargs: Any,
    ) -> ChatResult:
        result = self.completion(convert_messages(messages), stream=False)
        return self._create_chat_result(result)

    async def _agenerate(
        self,
        messages: List[BaseMessage],
        stop: Optional[List[str]] = None,
        run_manager: Optional[AsyncCallbackManagerForLLMRun] = None,
        **kwargs: Any,
    ) -> ChatResult:
        result = await self.acompletion(convert_messages(messages), stream=False)
        return self._create_chat_result(result)

    def _stream(
        self,
        messages: List[BaseMessage],
        stop: Optional[List[str]] = None,
        run_manager: Optional[CallbackManagerForLLMRun] = None,
        **kwargs: Any,
    ) -> Iterator[ChatGenerationChunk]:
        byte_stream = self.completion(convert_messages(messages), stream=True)
        for event in iter_sse_events(byte_stream):
            chunk = self._event_to_chunk(event)
            if chunk is None:
                continue
            if run_manager and chunk.text:
                run_manager.on_llm_new_token(chunk.text, chunk=chunk)
            yield chunk

    async def _astream(
        self,
        messages: List[BaseMessage],
        stop: Optional[List[str]] = None,
        run_manager: Optional[AsyncCallbackManagerForLLMRun] = None,
        **kwargs: Any,
    ) -> AsyncIterator[ChatGenerationChunk]:
        byte_stream = await self.acompletion(convert_messages(messages), stream=True)
        async for event in aiter_sse_events(byte_stream):
            chunk = self._event_to_chunk(event)
            if chunk is None:
                continue
            if run_manager and chunk.text:
                await run_manager.on_llm_new_token(chunk.text, chunk=chunk)
            yield chunk

    # ---- 响应转换 ----

    def _create_chat_result(self, result: ChatCompletionResponse) -> ChatResult:
        if not result.success:
            raise ApiError(
                code="CHATGLM_ERROR",
                message=result.msg or "ChatGLM request failed",
                vendor_code=result.code,
            )
        data = result.data
        usage = data.usage if data else None
        message = AIMessage(content=result.text, usage_metadata=_usage_metadata(usage))
        generation = ChatGeneration(
            message=message,
            generation_info={"task_status": data.task_status} if data else None,
        )
        return ChatResult(
            generations=[generation],
            llm_output={
                "token_usage": usage.to_dict() if usage else None,
                "model_name": self.model_name,
                "request_id": data.request_id if data else None,
                "task_id": data.task_id if data else None,
            },
        )

    def _event_to_chunk(self, event: ServerSentEvent) -> Optional[ChatGenerationChunk]:
        if event.event in ("add", "message"):
            if not event.data:
                return None
            return ChatGenerationChunk(message=AIMessageChunk(content=event.data))
        if event.event == "finish":
            usage_raw = event.meta.get("usage")
            usage = ChatCompletionUsage.from_payload(usage_raw) if isinstance(usage_raw, dict) else None
            return ChatGenerationChunk(
                message=AIMessageChunk(content=event.data, usage_metadata=_usage_metadata(usage)),
                generation_info={
                    "finish_reason": "stop",
                    "token_usage": usage.to_dict() if usage else None,
                    "task_id": event.meta.get("task_id") or event.id,
                },
            )
        if event.event in ("error", "interrupted"):
            raise StreamError(code="CHATGLM_STREAM_ERROR", message=event.data or event.event, event=event.event)
        return None
