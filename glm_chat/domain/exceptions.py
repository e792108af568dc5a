"""ChatGLM 调用过程中的异常。

- ValidationError: 构造或消息转换阶段即失败，不会发出 HTTP 请求。
- NetworkError / RateLimitError / ApiError: HTTP 调用失败。
- StreamError: 流式响应中途收到 error/interrupted 事件。

都带有机器可读的 code，调用方可按 code 分支处理；本包不做任何重试。
"""


class BusinessError(Exception):
    """异常基类。

    Attributes:
        code: 机器可读错误码（如 "MISSING_API_KEY"）。
        message: 可读错误信息（HTTP 失败时为响应体原文）。
        http_status: 对应的 HTTP 状态码，非 HTTP 错误时为 400。
        extra: 其他补充字段（例如 vendor_code、event）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)

    def to_dict(self) -> dict:
        """日志用的扁平字段。"""
        return {"code": self.code, "message": self.message, "http_status": self.http_status, **self.extra}


class ValidationError(BusinessError):
    """缺少/格式错误的 API Key，或不被 ChatGLM 接受的消息类型。"""


class NetworkError(BusinessError):
    """httpx 传输层错误：连接失败、超时等。"""


class ApiError(BusinessError):
    """HTTP 状态码 >= 400（429 除外），或响应体 success=false。"""


class RateLimitError(ApiError):
    """HTTP 429。"""


class StreamError(ApiError):
    """SSE 流中的 error / interrupted 事件，extra["event"] 为事件名。"""
