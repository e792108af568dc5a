"""LangChain 聊天模型适配。"""

from glm_chat.chat_models.chatglm import ChatGLM, message_to_chatglm_role

__all__ = ["ChatGLM", "message_to_chatglm_role"]
