"""
DashScope 调用错误类型（可分类、可回归）。

说明：
- DashScope 的错误 body 形如 `{"code": "...", "message": "...", "request_id": "..."}`；
- 这些字段被原样挂在异常上，便于上层按 `code` 做程序化处理。
"""

from __future__ import annotations

from typing import Optional

from dashscope_runtime.core.errors import LlmError


class DashScopeApiError(LlmError):
    """DashScope 返回非 2xx（或 body 中带错误码）时抛出。"""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> None:
        """
        创建 `DashScopeApiError`。

        参数：
        - `message`：provider 返回的错误信息（缺失时为 HTTP 描述）
        - `status_code`：HTTP 状态码
        - `code`：DashScope 错误码（例如 `InvalidApiKey`、`Throttling`）
        - `request_id`：DashScope request_id（排障用）
        """

        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.request_id = request_id

    def __str__(self) -> str:
        prefix = f"[{self.status_code}] " if self.status_code is not None else ""
        if self.code:
            return f"{prefix}{self.code}: {self.message}"
        return f"{prefix}{self.message}"


class ContextLengthExceededError(DashScopeApiError):
    """
    上下文长度超限（provider 明确报错）。

    说明：
    - 该错误通常不可通过“重试同一请求”解决；
    - 上层可选择压缩历史或减少注入内容。
    """
