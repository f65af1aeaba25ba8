"""
DashScope Runtime SDK（Python）。

说明：
- 本包提供 DashScope（通义千问）请求 DTO、endpoint 路由决策与 HTTP 调用层。
- 当前已包含：
  - EndpointType / ResolvedEndpoint 与 endpoint 解析（纯函数，可离线回归）
  - DashScopeRequest（不可变 DTO + builder；routing hint 不进入 wire body）
  - DashScopeHttpClient（httpx，非 streaming；retry/backoff）
  - 配置加载器（YAML overlay + pydantic 校验）
"""

from __future__ import annotations

from dashscope_runtime.llm.dashscope_http import DashScopeHttpClient, DashScopeResponse
from dashscope_runtime.llm.endpoint import (
    EndpointType,
    MultimodalModelMarkers,
    ResolvedEndpoint,
    is_multimodal_model,
    resolve_endpoint_type,
)
from dashscope_runtime.llm.protocol import (
    DashScopeInput,
    DashScopeParameters,
    DashScopeRequest,
    DashScopeRequestBuilder,
)

__all__ = [
    "DashScopeHttpClient",
    "DashScopeInput",
    "DashScopeParameters",
    "DashScopeRequest",
    "DashScopeRequestBuilder",
    "DashScopeResponse",
    "EndpointType",
    "MultimodalModelMarkers",
    "ResolvedEndpoint",
    "is_multimodal_model",
    "resolve_endpoint_type",
    "__version__",
]

__version__ = "0.3.0"
