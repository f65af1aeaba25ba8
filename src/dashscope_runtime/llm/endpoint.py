"""
DashScope endpoint 路由决策（text-generation vs multimodal-generation）。

说明：
- DashScope 对纯文本模型与多模态模型（VL/Omni/Audio/QVQ 等）提供两个不同的 generation API；
- 调用方通过 `EndpointType` 显式指定，或使用 `AUTO` 按模型名推断；
- 解析结果使用独立的 `ResolvedEndpoint` 类型表达：`AUTO` 在进入传输层之前必须被消除。

约束：
- `resolve_endpoint_type` 是纯函数：无 I/O、无缓存、无可变全局状态，可被任意并发调用；
- 任意输入都有确定输出（不会抛异常）；未知/空模型名保守地落到 `TEXT`。
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional, Tuple


class EndpointType(str, Enum):
    """
    调用方声明的 endpoint 类型（routing hint）。

    - `AUTO`：按模型名推断（默认）
    - `TEXT`：强制使用 text-generation API
    - `MULTIMODAL`：强制使用 multimodal-generation API
    """

    AUTO = "auto"
    TEXT = "text"
    MULTIMODAL = "multimodal"


class ResolvedEndpoint(str, Enum):
    """解析后的 endpoint（不包含 `AUTO`）。"""

    TEXT = "text"
    MULTIMODAL = "multimodal"


def _normalize_markers(values: Iterable[str]) -> Tuple[str, ...]:
    """把 marker 列表规范化为小写、去空白、去空串、保序去重的 tuple。"""

    out = []
    for v in values:
        s = str(v or "").strip().lower()
        if s and s not in out:
            out.append(s)
    return tuple(out)


@dataclass(frozen=True)
class MultimodalModelMarkers:
    """
    多模态模型名识别规则（配置数据，而非硬编码逻辑）。

    字段：
    - prefixes：模型名（小写）以其中任一开头即视为多模态
    - substrings：模型名（小写）包含其中任一即视为多模态
    """

    prefixes: Tuple[str, ...] = ()
    substrings: Tuple[str, ...] = ()

    @classmethod
    def of(cls, *, prefixes: Iterable[str] = (), substrings: Iterable[str] = ()) -> "MultimodalModelMarkers":
        """从任意可迭代对象构造（自动做小写/去空白规范化）。"""

        return cls(prefixes=_normalize_markers(prefixes), substrings=_normalize_markers(substrings))

    def matches(self, model_name: Optional[str]) -> bool:
        """判断模型名是否命中任一 marker（大小写不敏感）。"""

        name = str(model_name or "").strip().lower()
        if not name:
            return False
        if any(name.startswith(p) for p in self.prefixes):
            return True
        return any(s in name for s in self.substrings)


# 内置默认值与 `assets/default.yaml` 中的 `endpoints.multimodal_markers` 保持一致。
DEFAULT_MULTIMODAL_MARKERS = MultimodalModelMarkers.of(
    prefixes=("qvq", "qwen-vl", "qwen2-vl", "qwen2.5-vl", "qwen3-vl", "qwen-omni", "qwen-audio"),
    substrings=("-vl", "-omni", "-audio", "-image"),
)


def is_multimodal_model(
    model_name: Optional[str], markers: MultimodalModelMarkers = DEFAULT_MULTIMODAL_MARKERS
) -> bool:
    """判断模型是否需要走 multimodal-generation API。"""

    return markers.matches(model_name)


def resolve_endpoint_type(
    requested: EndpointType,
    model_name: Optional[str],
    *,
    markers: MultimodalModelMarkers = DEFAULT_MULTIMODAL_MARKERS,
) -> ResolvedEndpoint:
    """
    把 `(requested, model_name)` 解析为具体 endpoint。

    规则：
    1) `TEXT`/`MULTIMODAL`：显式指定优先，不检查模型名；
    2) `AUTO`（或任何非显式值）：命中多模态 marker 返回 `MULTIMODAL`，否则 `TEXT`。
    """

    if requested == EndpointType.TEXT:
        return ResolvedEndpoint.TEXT
    if requested == EndpointType.MULTIMODAL:
        return ResolvedEndpoint.MULTIMODAL
    if markers.matches(model_name):
        return ResolvedEndpoint.MULTIMODAL
    return ResolvedEndpoint.TEXT


def coerce_endpoint_type(value: Any) -> EndpointType:
    """
    把配置/CLI 输入解析为 `EndpointType`。

    说明：
    - 接受 `EndpointType`、枚举值（`"multimodal"`）或枚举名（`"MULTIMODAL"`），大小写不敏感；
    - `None` 视为 `AUTO`。

    异常：
    - ValueError：未知取值（fail-fast，不静默降级）
    """

    if value is None:
        return EndpointType.AUTO
    if isinstance(value, EndpointType):
        return value
    raw = str(value).strip().lower()
    for item in EndpointType:
        if raw == item.value:
            return item
    allowed = "|".join(item.value for item in EndpointType)
    raise ValueError(f"endpoint_type must be one of: {allowed}; got: {value!r}")
