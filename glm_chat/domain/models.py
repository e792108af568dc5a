"""ChatGLM 请求/响应数据模型。

本模块定义了与 ChatGLM model-api 交互时使用的数据结构：

- ChatGLMMessage: 一条对话消息（role 只能是 assistant/user）。
- ChatCompletionRequest: 请求体，序列化为 {"prompt": [...]}。
- ChatCompletionResponse: 解析后的响应体（code/success/msg/data）。
- ServerSentEvent: 流式模式下解析出的一个 SSE 事件。

HTTP 客户端与 LangChain 适配层都只依赖这些模型，
由它们负责在厂商 JSON 与本包模型之间做转换。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional


# ChatGLM 支持的消息角色
ChatGLMMessageRole = Literal["assistant", "user"]

KNOWN_ROLES = ("assistant", "user")


@dataclass
class ChatGLMMessage:
    """一条对话消息，既用于请求的 prompt，也用于响应的 choices。"""

    role: ChatGLMMessageRole
    content: str

    def to_payload(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ChatGLMMessage":
        return cls(role=payload.get("role") or "assistant", content=payload.get("content") or "")


@dataclass
class ChatCompletionRequest:
    """一次完整的对话请求，消息按时间顺序排列。"""

    prompt: List[ChatGLMMessage]

    def to_payload(self) -> Dict[str, Any]:
        return {"prompt": [m.to_payload() for m in self.prompt]}


@dataclass
class ChatCompletionUsage:
    """厂商返回的 token 统计信息，原样透传。"""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ChatCompletionUsage":
        return cls(
            prompt_tokens=payload.get("prompt_tokens", 0),
            completion_tokens=payload.get("completion_tokens", 0),
            total_tokens=payload.get("total_tokens", 0),
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class ChatCompletionData:
    request_id: str = ""
    task_id: str = ""
    task_status: str = ""
    choices: List[ChatGLMMessage] = field(default_factory=list)
    usage: Optional[ChatCompletionUsage] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ChatCompletionData":
        usage_raw = payload.get("usage")
        return cls(
            request_id=payload.get("request_id") or "",
            task_id=payload.get("task_id") or "",
            task_status=payload.get("task_status") or "",
            choices=[ChatGLMMessage.from_payload(c) for c in payload.get("choices") or []],
            usage=ChatCompletionUsage.from_payload(usage_raw) if usage_raw else None,
        )


@dataclass
class ChatCompletionResponse:
    """非流式调用的响应。

    - code / success / msg: 厂商状态字段，success=false 时 data 通常为空。
    - data: 任务信息、候选回答与 token 统计。
    - raw: 原始响应 JSON，用于调试或日志记录。
    """

    code: int
    success: bool
    msg: str
    data: Optional[ChatCompletionData] = None
    raw: Optional[dict] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ChatCompletionResponse":
        data_raw = payload.get("data")
        return cls(
            code=payload.get("code", 0),
            success=bool(payload.get("success", False)),
            msg=payload.get("msg") or "",
            data=ChatCompletionData.from_payload(data_raw) if isinstance(data_raw, dict) else None,
            raw=payload,
        )

    @property
    def text(self) -> str:
        """第一条候选回答的文本，没有候选时为空串。"""
        if self.data and self.data.choices:
            return self.data.choices[0].content
        return ""


@dataclass
class ServerSentEvent:
    """流式响应中的一个事件。

    ChatGLM 使用 event 区分 add/finish/error/interrupted，
    finish 事件的 meta 中携带 usage 等信息。
    """

    event: str = "message"
    data: str = ""
    id: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)
