"""ChatGLM 鉴权令牌生成。

ChatGLM 的 API Key 形如 ``<id>.<secret>``，每次请求用 secret 对
``{api_key, exp, timestamp}`` 做 HS256 签名，得到的 JWT 直接放进 Authorization 头。
exp/timestamp 均为毫秒时间戳。
"""

import time
from typing import Optional, Tuple

import jwt

from glm_chat.domain.exceptions import ValidationError

JWT_ALGORITHM = "HS256"
JWT_HEADERS = {"alg": JWT_ALGORITHM, "sign_type": "SIGN"}


def split_api_key(api_key: str) -> Tuple[str, str]:
    key_id, sep, secret = (api_key or "").partition(".")
    if not sep or not key_id or not secret:
        raise ValidationError(code="INVALID_API_KEY", message="ChatGLM API key must look like '<id>.<secret>'")
    return key_id, secret


def generate_token(api_key: str, exp_seconds: int, now_ms: Optional[int] = None) -> str:
    key_id, secret = split_api_key(api_key)
    if now_ms is None:
        now_ms = int(round(time.time() * 1000))
    payload = {
        "api_key": key_id,
        "exp": now_ms + exp_seconds * 1000,
        "timestamp": now_ms,
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM, headers=JWT_HEADERS)
