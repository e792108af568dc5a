"""Completion 客户端抽象接口。

LangChain 适配层（chat_models.chatglm）不直接依赖 httpx，而是依赖此协议，
测试中可以替换为任意实现了 completion/acompletion 的对象。
"""

from typing import AsyncIterator, Iterator, Protocol, Union

from glm_chat.domain.models import ChatCompletionRequest, ChatCompletionResponse


class CompletionClient(Protocol):
    """ChatGLM completion 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志。
    - completion(request, stream): stream=False 返回 ChatCompletionResponse，
      stream=True 返回原始字节迭代器。
    """

    name: str

    def completion(
        self, request: ChatCompletionRequest, stream: bool = False
    ) -> Union[ChatCompletionResponse, Iterator[bytes]]:
        ...

    async def acompletion(
        self, request: ChatCompletionRequest, stream: bool = False
    ) -> Union[ChatCompletionResponse, AsyncIterator[bytes]]:
        """异步版本，stream=True 时返回异步字节迭代器。"""

        ...
