"""
DashScope 请求协议：DashScopeRequest（DTO）与 builder。

wire body 形态（text-generation 与 multimodal-generation 相同）：

    {
      "model": "qwen-plus",
      "input": {"messages": [...]},
      "parameters": {"result_format": "message", "temperature": 0.7}
    }

设计目标：
- 用单一不可变参数对象承载一次 API 调用的全部信息；
- `endpoint_type` 是仅供路由层消费的 hint：它不属于 wire body，`to_payload()` 只从 wire 字段构造；
- DTO 不做校验（接受任意值，包括 None），正确性检查交给消费者（HTTP 层）。
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Union

from dashscope_runtime.llm.endpoint import (
    DEFAULT_MULTIMODAL_MARKERS,
    EndpointType,
    MultimodalModelMarkers,
    ResolvedEndpoint,
    resolve_endpoint_type,
)


@dataclass(frozen=True)
class DashScopeInput:
    """
    DashScope `input` 字段。

    说明：
    - messages 的具体结构（text/image/audio content parts）由上层 formatter 负责，本层原样透传。
    """

    messages: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"messages": [dict(m) for m in self.messages]}


@dataclass(frozen=True)
class DashScopeParameters:
    """
    DashScope `parameters` 字段（常见推理参数 + provider 扩展）。

    字段：
    - result_format：默认 `message`（返回 choices[].message 形态）
    - temperature/top_p/top_k/max_tokens/seed/stop：常见采样参数（可选）
    - enable_search/incremental_output：DashScope 特有开关（可选）
    - tools：tool 定义列表（结构由上层负责）
    - extra：provider 特有扩展字段；序列化时最后合并（可覆盖同名字段）
    """

    result_format: Optional[str] = "message"
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    max_tokens: Optional[int] = None
    seed: Optional[int] = None
    stop: Optional[List[str]] = None
    enable_search: Optional[bool] = None
    incremental_output: Optional[bool] = None
    tools: Optional[List[Dict[str, Any]]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """序列化为 wire dict（省略值为 None 的字段）。"""

        out: Dict[str, Any] = {}
        for key in (
            "result_format",
            "temperature",
            "top_p",
            "top_k",
            "max_tokens",
            "seed",
            "stop",
            "enable_search",
            "incremental_output",
            "tools",
        ):
            value = getattr(self, key)
            if value is not None:
                out[key] = list(value) if isinstance(value, list) else value
        for key, value in self.extra.items():
            if value is not None:
                out[key] = value
        return out


InputLike = Union[DashScopeInput, Mapping[str, Any], None]
ParametersLike = Union[DashScopeParameters, Mapping[str, Any], None]


def _drop_none(obj: Mapping[str, Any]) -> Dict[str, Any]:
    """浅层移除值为 None 的键（与 wire 的 NON_NULL 口径一致）。"""

    return {k: v for k, v in obj.items() if v is not None}


def _section_to_wire(value: Any) -> Any:
    """把 input/parameters 转为可 JSON 序列化的 wire 值。"""

    if value is None:
        return None
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(value, Mapping):
        return _drop_none(value)
    return value


@dataclass(frozen=True)
class DashScopeRequest:
    """
    DashScopeRequest：一次 DashScope generation 调用的参数包。

    字段：
    - model：模型名（例如 `qwen-plus`、`qwen-vl-max`）
    - input：消息输入（DashScopeInput 或 mapping）
    - parameters：生成参数（DashScopeParameters 或 mapping）
    - endpoint_type：routing hint（默认 AUTO；不会被序列化）
    """

    model: Optional[str] = None
    input: InputLike = None
    parameters: ParametersLike = None
    endpoint_type: EndpointType = EndpointType.AUTO

    @staticmethod
    def builder() -> "DashScopeRequestBuilder":
        return DashScopeRequestBuilder()

    def to_payload(self) -> Dict[str, Any]:
        """
        构造发送给 DashScope 的 JSON body。

        约束：
        - 仅包含 `model/input/parameters` 三个 wire 字段，值为 None 的字段省略；
        - `endpoint_type` 不是 wire 字段，任何情况下都不会出现在 body 中。
        """

        body: Dict[str, Any] = {
            "model": self.model,
            "input": _section_to_wire(self.input),
            "parameters": _section_to_wire(self.parameters),
        }
        return _drop_none(body)

    def resolved_endpoint(self, markers: MultimodalModelMarkers = DEFAULT_MULTIMODAL_MARKERS) -> ResolvedEndpoint:
        """按 `endpoint_type` 与模型名解析具体 endpoint。"""

        return resolve_endpoint_type(self.endpoint_type, self.model or "", markers=markers)

    def with_endpoint_type(self, endpoint_type: EndpointType) -> "DashScopeRequest":
        """返回替换了 routing hint 的副本（请求对象本身不可变）。"""

        return replace(self, endpoint_type=endpoint_type)


class DashScopeRequestBuilder:
    """
    DashScopeRequest 的链式 builder。

    说明：
    - 每个方法只设置对应字段并返回 builder 自身；
    - 未调用 `endpoint_type(...)` 时默认 AUTO；
    - 不做任何校验（与 DTO 口径一致）。
    """

    def __init__(self) -> None:
        self._model: Optional[str] = None
        self._input: InputLike = None
        self._parameters: ParametersLike = None
        self._endpoint_type: EndpointType = EndpointType.AUTO

    def model(self, model: Optional[str]) -> "DashScopeRequestBuilder":
        self._model = model
        return self

    def input(self, input: InputLike) -> "DashScopeRequestBuilder":  # noqa: A002
        self._input = input
        return self

    def parameters(self, parameters: ParametersLike) -> "DashScopeRequestBuilder":
        self._parameters = parameters
        return self

    def endpoint_type(self, endpoint_type: EndpointType) -> "DashScopeRequestBuilder":
        """设置 routing hint（只影响 endpoint 选择，不进入 wire body）。"""

        self._endpoint_type = endpoint_type
        return self

    def build(self) -> DashScopeRequest:
        return DashScopeRequest(
            model=self._model,
            input=self._input,
            parameters=self._parameters,
            endpoint_type=self._endpoint_type,
        )
