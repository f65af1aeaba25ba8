"""
DashScope Runtime 异常层级。

说明：
- `DashScopeSdkError` 是本包所有异常的根；
- 配置/CLI 类失败使用 `FrameworkError`，其 `code` 是稳定的机器可读标识，CLI 以 `{"error": {...}}` 输出；
- 网络与 provider 返回的失败归入 `LlmError` 分支（具体类型见 `dashscope_runtime.llm.errors`）；
- endpoint 解析与请求 DTO 不会抛出这里的任何异常。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class DashScopeSdkError(Exception):
    """本包异常的公共基类。"""


@dataclass(frozen=True)
class FrameworkIssue:
    """`FrameworkError` 的纯数据快照（可直接放进 JSON 输出）。"""

    code: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": dict(self.details)}


class FrameworkError(DashScopeSdkError):
    """
    配置加载、CLI 参数等本地可诊断的失败。

    参数：
    - `code`：英文大写下划线错误码，例如 `CLI_CONFIG_INVALID`
    - `message`：面向使用者的英文描述
    - `details`：定位问题所需的上下文（路径、原始取值等）
    """

    def __init__(self, *, code: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def to_issue(self) -> FrameworkIssue:
        return FrameworkIssue(code=self.code, message=self.message, details=dict(self.details))


class LlmError(DashScopeSdkError):
    """调用 DashScope 过程中的失败（HTTP 状态、错误 body、响应解析）。"""
