"""ChatGLM HTTP 集成层。

该包下的模块负责：
- 定义 completion 客户端抽象接口 (base)。
- 维护模型与 URL 配置 (registry)。
- 生成 JWT 鉴权令牌 (auth)。
- 发起 HTTP 调用 (chatglm_client) 并解码 SSE 流 (sse)。
"""

from typing import Optional

from glm_chat.config.settings import settings
from glm_chat.providers.base import CompletionClient
from glm_chat.providers.chatglm_client import ChatGLMClient


def create_client(
    api_key: Optional[str] = None,
    exp_seconds: Optional[int] = None,
    model: Optional[str] = None,
    timeout: Optional[float] = None,
) -> CompletionClient:
    """按配置创建 ChatGLM 客户端，显式参数优先于配置。"""

    return ChatGLMClient(settings, api_key=api_key, exp_seconds=exp_seconds, model=model, timeout=timeout)
