"""领域层模型与异常。

包含：
- models: ChatGLM 请求/响应与流式事件模型。
- exceptions: 业务异常类型定义。
"""
