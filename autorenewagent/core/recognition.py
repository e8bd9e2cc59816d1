"""
验证码识别服务客户端

职责：
- 将图片 data URI 原文 POST 给识别服务，读取纯文本结果
- 非 2xx / 空响应 / 网络异常统一归为 RecognitionFailure
- 结果长度低于阈值视为识别失败，而不是一个“短的正确答案”
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

from ..config import get_setting
from .errors import RecognitionFailure

MIN_CODE_LENGTH = 4


@dataclass(frozen=True)
class RecognitionResult:
    code: str
    length: int

    @classmethod
    def from_text(cls, text: str) -> "RecognitionResult":
        code = (text or "").strip()
        return cls(code=code, length=len(code))

    def is_valid(self, min_length: int = MIN_CODE_LENGTH) -> bool:
        return self.length >= min_length


class RecognitionClient:
    def __init__(
        self,
        endpoint: Optional[str] = None,
        *,
        timeout_seconds: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.endpoint = endpoint or get_setting("recognition.endpoint")
        self.timeout_seconds = float(
            timeout_seconds
            if timeout_seconds is not None
            else get_setting("recognition.timeout_seconds", 20.0)
        )
        self._client = client

    def recognize(self, payload: str) -> RecognitionResult:
        """同步调用识别服务；失败抛 RecognitionFailure。"""
        if not self.endpoint:
            raise RecognitionFailure("识别服务地址未配置")
        try:
            if self._client is not None:
                resp = self._client.post(
                    self.endpoint, content=payload, timeout=self.timeout_seconds
                )
            else:
                resp = httpx.post(
                    self.endpoint, content=payload, timeout=self.timeout_seconds
                )
        except httpx.HTTPError as exc:
            raise RecognitionFailure(f"识别服务请求失败: {exc}") from exc

        if resp.status_code >= 400:
            raise RecognitionFailure(f"识别服务返回 {resp.status_code}")
        if not resp.text:
            raise RecognitionFailure("识别服务返回空结果")
        return RecognitionResult.from_text(resp.text)
