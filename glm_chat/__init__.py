"""glm_chat 顶层包。

该包把 ChatGLM（智谱 BigModel）对话接口接入 LangChain 的聊天模型抽象，
包括配置加载、JWT 鉴权、HTTP/SSE 调用以及消息与结果的格式转换。
"""

from glm_chat.chat_models import ChatGLM

__all__ = ["ChatGLM"]
