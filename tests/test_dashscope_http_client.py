from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import httpx
import pytest

from dashscope_runtime.config.loader import DashScopeEndpointsConfig, DashScopeLlmConfig
from dashscope_runtime.llm.dashscope_http import DashScopeHttpClient, DashScopeResponse
from dashscope_runtime.llm.endpoint import EndpointType, ResolvedEndpoint
from dashscope_runtime.llm.errors import ContextLengthExceededError, DashScopeApiError
from dashscope_runtime.llm.protocol import DashScopeInput, DashScopeParameters, DashScopeRequest

_BASE = "http://example.test/api/v1"
_TEXT_URL = f"{_BASE}/services/aigc/text-generation/generation"
_MM_URL = f"{_BASE}/services/aigc/multimodal-generation/generation"


class _Scenario:
    """
    以“每次创建 AsyncClient 代表一次 attempt”的方式组织响应序列。

    说明：
    - client 的 retry 循环每次都会创建一个新的 `httpx.AsyncClient`；
    - 每个条目是 `httpx.Response` 或要抛出的异常。
    """

    def __init__(self, outcomes: List[Any]) -> None:
        self.outcomes = outcomes
        self.client_creations = 0
        self.posts: List[Dict[str, Any]] = []

    def make_client(self, *args: Any, **kwargs: Any) -> "_FakeAsyncClient":
        idx = self.client_creations
        self.client_creations += 1
        return _FakeAsyncClient(self, idx)


class _FakeAsyncClient:
    def __init__(self, scenario: _Scenario, idx: int) -> None:
        self._scenario = scenario
        self._idx = idx

    async def post(self, url: str, *, json: Any = None, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        self._scenario.posts.append({"url": url, "json": json, "headers": dict(headers or {})})
        outcome = self._scenario.outcomes[self._idx]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def __aenter__(self) -> "_FakeAsyncClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        return None


def _resp(status: int, body: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> httpx.Response:
    return httpx.Response(
        status_code=status,
        json=body,
        headers=headers or {},
        request=httpx.Request("POST", _TEXT_URL),
    )


def _ok(text: str = "hello") -> httpx.Response:
    return _resp(
        200,
        {
            "request_id": "req-1",
            "output": {"choices": [{"finish_reason": "stop", "message": {"role": "assistant", "content": text}}]},
            "usage": {"input_tokens": 3, "output_tokens": 1},
        },
    )


def _cfg(max_retries: int = 3) -> DashScopeLlmConfig:
    return DashScopeLlmConfig(
        base_url=_BASE,
        api_key_env="DASHSCOPE_API_KEY",
        timeout_sec=1,
        retry=DashScopeLlmConfig.Retry(max_retries=max_retries),
    )


def _request(model: str, endpoint_type: EndpointType = EndpointType.AUTO) -> DashScopeRequest:
    return (
        DashScopeRequest.builder()
        .model(model)
        .input(DashScopeInput(messages=[{"role": "user", "content": "hi"}]))
        .parameters(DashScopeParameters(temperature=0.2))
        .endpoint_type(endpoint_type)
        .build()
    )


def _install(monkeypatch, scenario: _Scenario) -> List[float]:  # type: ignore[no-untyped-def]
    import dashscope_runtime.llm.dashscope_http as mod

    sleeps: List[float] = []

    async def _fake_sleep(delay: float) -> None:
        sleeps.append(float(delay))

    monkeypatch.setattr(mod.httpx, "AsyncClient", scenario.make_client)
    monkeypatch.setattr(mod.asyncio, "sleep", _fake_sleep)
    return sleeps


def test_endpoint_url_per_resolved_endpoint() -> None:
    client = DashScopeHttpClient(_cfg(), api_key="sk-test")

    assert client.endpoint_url(ResolvedEndpoint.TEXT) == _TEXT_URL
    assert client.endpoint_url(ResolvedEndpoint.MULTIMODAL) == _MM_URL


@pytest.mark.parametrize(
    ("model", "endpoint_type", "url"),
    [
        ("qwen-plus", EndpointType.AUTO, _TEXT_URL),
        ("qwen-vl-max", EndpointType.AUTO, _MM_URL),
        ("qwen-vl-max", EndpointType.TEXT, _TEXT_URL),
        ("qwen3.5-plus", EndpointType.MULTIMODAL, _MM_URL),
    ],
)
def test_call_routes_by_endpoint_type(monkeypatch, model: str, endpoint_type: EndpointType, url: str) -> None:  # type: ignore[no-untyped-def]
    scenario = _Scenario([_ok()])
    _install(monkeypatch, scenario)

    client = DashScopeHttpClient(_cfg(), api_key="sk-test")
    resp = asyncio.run(client.call(_request(model, endpoint_type)))

    assert resp.text() == "hello"
    assert scenario.posts[0]["url"] == url
    body = scenario.posts[0]["json"]
    assert set(body.keys()) == {"model", "input", "parameters"}
    assert scenario.posts[0]["headers"]["Authorization"] == "Bearer sk-test"


def test_call_uses_configured_markers(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    scenario = _Scenario([_ok()])
    _install(monkeypatch, scenario)

    endpoints = DashScopeEndpointsConfig(multimodal_markers={"prefixes": ["acme-see"], "substrings": []})
    client = DashScopeHttpClient(_cfg(), api_key="sk-test", endpoints=endpoints)
    asyncio.run(client.call(_request("ACME-See-2")))

    assert scenario.posts[0]["url"] == _MM_URL


def test_call_retries_on_429_with_retry_after(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    scenario = _Scenario([_resp(429, {"code": "Throttling", "message": "slow down"}, {"Retry-After": "1"}), _ok()])
    sleeps = _install(monkeypatch, scenario)
    retries: List[Dict[str, Any]] = []

    client = DashScopeHttpClient(_cfg(), api_key="sk-test")
    resp = asyncio.run(client.call(_request("qwen-plus"), on_retry=retries.append))

    assert scenario.client_creations == 2, "expected one retry (two attempts)"
    assert sleeps and abs(sleeps[0] - 1.0) < 1e-6, "expected Retry-After=1s to be respected"
    assert retries[0]["error_kind"] == "http_status"
    assert retries[0]["status_code"] == 429
    assert resp.request_id == "req-1"


def test_call_retries_on_request_error(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    err = httpx.ConnectError("boom", request=httpx.Request("POST", _TEXT_URL))
    scenario = _Scenario([err, _ok("again")])
    sleeps = _install(monkeypatch, scenario)

    client = DashScopeHttpClient(_cfg(), api_key="sk-test")
    resp = asyncio.run(client.call(_request("qwen-plus")))

    assert scenario.client_creations == 2
    assert len(sleeps) == 1
    assert 0.5 <= sleeps[0] <= 0.55
    assert resp.text() == "again"


def test_call_raises_after_retries_exhausted(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    scenario = _Scenario([_resp(503, {"code": "ServiceUnavailable"}), _resp(503, {"code": "ServiceUnavailable"})])
    _install(monkeypatch, scenario)

    client = DashScopeHttpClient(_cfg(max_retries=1), api_key="sk-test")
    with pytest.raises(DashScopeApiError) as ei:
        asyncio.run(client.call(_request("qwen-plus")))

    assert scenario.client_creations == 2
    assert ei.value.status_code == 503
    assert ei.value.code == "ServiceUnavailable"


def test_call_does_not_retry_client_errors(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    body = {"code": "InvalidApiKey", "message": "Invalid API-key provided.", "request_id": "req-9"}
    scenario = _Scenario([_resp(401, body)])
    sleeps = _install(monkeypatch, scenario)

    client = DashScopeHttpClient(_cfg(), api_key="sk-bad")
    with pytest.raises(DashScopeApiError) as ei:
        asyncio.run(client.call(_request("qwen-plus")))

    assert scenario.client_creations == 1
    assert sleeps == []
    assert ei.value.code == "InvalidApiKey"
    assert ei.value.request_id == "req-9"
    assert "Invalid API-key" in str(ei.value)


def test_context_length_error_is_classified(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    body = {"code": "InvalidParameter", "message": "Range of input length should be [1, 30720]"}
    scenario = _Scenario([_resp(400, body)])
    _install(monkeypatch, scenario)

    client = DashScopeHttpClient(_cfg(), api_key="sk-test")
    with pytest.raises(ContextLengthExceededError):
        asyncio.run(client.call(_request("qwen-plus")))


def test_missing_api_key_fails_before_network(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    scenario = _Scenario([_ok()])
    _install(monkeypatch, scenario)
    monkeypatch.delenv("DASHSCOPE_API_KEY", raising=False)

    client = DashScopeHttpClient(_cfg())
    with pytest.raises(ValueError):
        asyncio.run(client.call(_request("qwen-plus")))
    assert scenario.client_creations == 0


def test_api_key_read_from_env(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    scenario = _Scenario([_ok()])
    _install(monkeypatch, scenario)
    monkeypatch.setenv("DASHSCOPE_API_KEY", "sk-env")

    asyncio.run(DashScopeHttpClient(_cfg()).call(_request("qwen-plus")))
    assert scenario.posts[0]["headers"]["Authorization"] == "Bearer sk-env"


def test_response_text_from_multimodal_content_parts() -> None:
    resp = DashScopeResponse.from_json(
        {
            "request_id": "r",
            "output": {"choices": [{"message": {"role": "assistant", "content": [{"text": "a"}, {"text": "b"}]}}]},
        }
    )
    assert resp.text() == "ab"
    assert DashScopeResponse.from_json({"output": {"text": "plain"}}).text() == "plain"
    assert DashScopeResponse.from_json(None).text() == ""


def test_non_json_success_body_raises_api_error(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    html = httpx.Response(
        status_code=200,
        text="<html>gateway</html>",
        request=httpx.Request("POST", _TEXT_URL),
    )
    scenario = _Scenario([html])
    _install(monkeypatch, scenario)

    client = DashScopeHttpClient(_cfg(), api_key="sk-test")
    with pytest.raises(DashScopeApiError) as ei:
        asyncio.run(client.call(_request("qwen-plus")))

    assert ei.value.status_code == 200
    assert ei.value.code == "InvalidResponseBody"
    assert scenario.client_creations == 1


def test_failing_on_retry_callback_does_not_break_retry(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    scenario = _Scenario([_resp(503, {"code": "ServiceUnavailable"}), _ok("recovered")])
    sleeps = _install(monkeypatch, scenario)

    def _bad_callback(info: Dict[str, Any]) -> None:
        raise RuntimeError("callback exploded")

    client = DashScopeHttpClient(_cfg(), api_key="sk-test")
    resp = asyncio.run(client.call(_request("qwen-plus"), on_retry=_bad_callback))

    assert resp.text() == "recovered"
    assert scenario.client_creations == 2
    assert len(sleeps) == 1
