"""
DashScope generation HTTP 调用层（非 streaming）。

说明：
- 依据 `DashScopeRequest.endpoint_type` 与模型名选择 text-generation 或 multimodal-generation URL；
- wire body 只来自 `DashScopeRequest.to_payload()`（routing hint 不会被发送）；
- 429/5xx 与网络错误按配置做指数退避重试（优先遵循 `Retry-After`）。
"""

from __future__ import annotations

import asyncio
import logging
import os
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import httpx

from dashscope_runtime.config.loader import DashScopeEndpointsConfig, DashScopeLlmConfig
from dashscope_runtime.llm.endpoint import ResolvedEndpoint
from dashscope_runtime.llm.errors import ContextLengthExceededError, DashScopeApiError
from dashscope_runtime.llm.protocol import DashScopeRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DashScopeResponse:
    """
    DashScope generation 响应（最小解析）。

    字段：
    - request_id：DashScope request_id
    - output：`output` 原样 dict（text 或 choices 形态）
    - usage：token 用量原样 dict
    - code/message：body 中的错误码与信息（成功时通常为空）
    - status_code：HTTP 状态码
    """

    request_id: Optional[str] = None
    output: Dict[str, Any] = field(default_factory=dict)
    usage: Dict[str, Any] = field(default_factory=dict)
    code: Optional[str] = None
    message: Optional[str] = None
    status_code: int = 200

    @classmethod
    def from_json(cls, obj: Any, *, status_code: int = 200) -> "DashScopeResponse":
        data = obj if isinstance(obj, dict) else {}
        output = data.get("output")
        usage = data.get("usage")
        return cls(
            request_id=data.get("request_id"),
            output=dict(output) if isinstance(output, dict) else {},
            usage=dict(usage) if isinstance(usage, dict) else {},
            code=data.get("code") or None,
            message=data.get("message") or None,
            status_code=int(status_code),
        )

    def text(self) -> str:
        """
        提取 assistant 文本。

        说明：
        - `result_format=text` 时取 `output.text`；
        - `result_format=message` 时取第一个 choice 的 message.content；
          multimodal 响应的 content 是 `[{"text": ...}, ...]`，此时拼接全部 text 片段。
        """

        text = self.output.get("text")
        if isinstance(text, str):
            return text
        choices = self.output.get("choices")
        if not isinstance(choices, list) or not choices:
            return ""
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return "".join(str(part.get("text", "")) for part in content if isinstance(part, dict))
        return ""


def _retryable_status(code: int) -> bool:
    """判断 HTTP status 是否适合重试（保守）。"""

    if code == 429:
        return True
    if 500 <= code <= 599:
        return True
    return False


def _retry_after_ms_from_headers(headers: httpx.Headers) -> Optional[int]:
    """
    从 `Retry-After` 头解析等待毫秒数。

    约束：
    - 仅支持整数秒；无法解析则返回 None。
    """

    ra = headers.get("Retry-After")
    if not ra:
        return None
    try:
        sec = int(str(ra).strip())
    except (ValueError, TypeError):
        return None
    if sec <= 0:
        return None
    return sec * 1000


def _error_from_response(resp: httpx.Response) -> DashScopeApiError:
    """把非 2xx 响应映射为 `DashScopeApiError`（尽量解析 DashScope 错误 body）。"""

    code: Optional[str] = None
    message: Optional[str] = None
    request_id: Optional[str] = None
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        code = body.get("code") or None
        message = body.get("message") or None
        request_id = body.get("request_id") or None
    if not message:
        message = f"HTTP {resp.status_code}"

    err_cls = DashScopeApiError
    if resp.status_code == 400 and "length" in f"{code or ''} {message}".lower():
        err_cls = ContextLengthExceededError
    return err_cls(message, status_code=resp.status_code, code=code, request_id=request_id)


class DashScopeHttpClient:
    """
    DashScope generation API 客户端（网络层）。

    用法：
        client = DashScopeHttpClient(cfg.llm, endpoints=cfg.endpoints)
        resp = await client.call(request)
    """

    def __init__(
        self,
        cfg: DashScopeLlmConfig,
        *,
        api_key: Optional[str] = None,
        endpoints: Optional[DashScopeEndpointsConfig] = None,
    ) -> None:
        """
        创建 DashScope HTTP client。

        参数：
        - `cfg`：连接配置（base_url、api_key_env、timeout、retry）
        - `api_key`：可选的 API key 覆盖（仅内存；优先于环境变量）
        - `endpoints`：endpoint 路径与多模态 marker（缺省使用内置默认值）
        """

        self._cfg = cfg
        self._api_key_override = api_key
        self._endpoints = endpoints or DashScopeEndpointsConfig()
        self._markers = self._endpoints.to_markers()

    def resolve(self, request: DashScopeRequest) -> ResolvedEndpoint:
        """按请求的 routing hint 与模型名解析 endpoint（使用本 client 配置的 marker）。"""

        return request.resolved_endpoint(self._markers)

    def endpoint_url(self, resolved: ResolvedEndpoint) -> str:
        """返回解析后 endpoint 的完整 URL（基于 cfg.base_url 拼接）。"""

        base = self._cfg.base_url.rstrip("/")
        if resolved is ResolvedEndpoint.MULTIMODAL:
            path = self._endpoints.multimodal_path
        else:
            path = self._endpoints.text_path
        return f"{base}/{path.lstrip('/')}"

    def _auth_header(self) -> Dict[str, str]:
        """
        构造 Authorization header。

        异常：
        - 若缺少 API key（override 与 env 均为空）则抛 `ValueError`，由上层分类为配置错误。
        """

        key = self._api_key_override or os.environ.get(self._cfg.api_key_env, "")
        if not key:
            raise ValueError(f"缺少 API key 环境变量：{self._cfg.api_key_env}")
        return {"Authorization": f"Bearer {key}"}

    def _backoff_delay_sec(self, *, attempt: int, retry_after_ms: Optional[int]) -> float:
        """计算退避时间：优先 `Retry-After`，否则指数退避 + 抖动（不超过 cap）。"""

        if retry_after_ms is not None:
            return retry_after_ms / 1000.0
        retry = self._cfg.retry
        base = min(retry.cap_delay_sec, retry.base_delay_sec * (2 ** attempt))
        jitter = random.uniform(0.0, base * retry.jitter_ratio)
        return min(retry.cap_delay_sec, base + jitter)

    async def call(
        self,
        request: DashScopeRequest,
        *,
        on_retry: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> DashScopeResponse:
        """
        发起一次非 streaming generation 调用。

        参数：
        - `request`：请求 DTO（endpoint 在此处解析，AUTO 不会进入 URL 选择之后的流程）
        - `on_retry`：可选回调；每次重试前以结构化 dict 通知（provider/error_kind/attempt/delay_ms 等）

        异常：
        - ValueError：缺少 API key
        - DashScopeApiError / ContextLengthExceededError：provider 返回错误，或 2xx 响应 body 不是 JSON
        - httpx.RequestError：网络错误且重试耗尽
        """

        resolved = self.resolve(request)
        url = self.endpoint_url(resolved)
        payload = request.to_payload()
        headers = {"Content-Type": "application/json"}
        headers.update(self._auth_header())
        timeout = httpx.Timeout(self._cfg.timeout_sec)
        max_retries = int(self._cfg.retry.max_retries)

        logger.debug(
            "dashscope call: model=%s requested=%s resolved=%s url=%s",
            request.model,
            getattr(request.endpoint_type, "value", request.endpoint_type),
            resolved.value,
            url,
        )

        attempt = 0
        while True:
            info: Dict[str, Any]
            try:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    resp = await client.post(url, json=payload, headers=headers)
                if resp.status_code >= 400:
                    if attempt < max_retries and _retryable_status(resp.status_code):
                        retry_after_ms = _retry_after_ms_from_headers(resp.headers)
                        info = {
                            "provider": "dashscope",
                            "error_kind": "http_status",
                            "status_code": int(resp.status_code),
                            "retry_after_ms": retry_after_ms,
                        }
                    else:
                        raise _error_from_response(resp)
                else:
                    try:
                        body = resp.json()
                    except ValueError as exc:
                        # 网关/代理可能返回 HTML 等非 JSON 内容
                        raise DashScopeApiError(
                            "invalid JSON response body",
                            status_code=resp.status_code,
                            code="InvalidResponseBody",
                        ) from exc
                    parsed = DashScopeResponse.from_json(body, status_code=resp.status_code)
                    if parsed.code:
                        raise DashScopeApiError(
                            parsed.message or parsed.code,
                            status_code=resp.status_code,
                            code=parsed.code,
                            request_id=parsed.request_id,
                        )
                    return parsed
            except (httpx.TimeoutException, httpx.RequestError) as exc:
                if attempt >= max_retries:
                    raise
                info = {
                    "provider": "dashscope",
                    "error_kind": "request_error",
                    "reason": type(exc).__name__,
                    "retry_after_ms": None,
                }

            delay = self._backoff_delay_sec(attempt=attempt, retry_after_ms=info["retry_after_ms"])
            info.update({"attempt": attempt, "max_retries": max_retries, "delay_ms": int(delay * 1000)})
            logger.warning("dashscope call retry: %s", info)
            if on_retry is not None:
                try:
                    on_retry(info)
                except Exception:
                    # on_retry 由外部注入，其异常不影响退避与重试。
                    logger.exception("dashscope on_retry callback failed")
            await asyncio.sleep(delay)
            attempt += 1
