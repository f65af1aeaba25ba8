"""
配置加载器（YAML）。

参考：
- 默认配置：`src/dashscope_runtime/assets/default.yaml`

设计目标：
- 支持加载多个 YAML，并按顺序做深度合并（后者覆盖前者）。
- 使用 pydantic 做 schema 校验；默认拒绝未知字段（避免拼写错误与误配置被静默吞掉）。
- 多模态模型 marker 属于配置数据：新模型家族上线时只需追加 overlay，无需改代码。
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, MutableMapping

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from dashscope_runtime.llm.endpoint import DEFAULT_MULTIMODAL_MARKERS, EndpointType, MultimodalModelMarkers


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    深度合并两个 dict（overlay 覆盖 base）。

    合并规则：
    - dict + dict：递归合并
    - 其它类型：overlay 直接覆盖
    - list：整体覆盖（不做去重/拼接）
    """

    for key, overlay_value in overlay.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(overlay_value, Mapping)
        ):
            _deep_merge(base[key], overlay_value)  # type: ignore[arg-type]
            continue
        base[key] = deepcopy(overlay_value)
    return base


class DashScopeLlmConfig(BaseModel):
    """DashScope 连接配置（最小集合）。"""

    model_config = ConfigDict(extra="forbid")

    class Retry(BaseModel):
        """
        重试/退避策略。

        说明：
        - base/cap/jitter 只影响“无 Retry-After 头”时的指数退避计算。
        """

        model_config = ConfigDict(extra="forbid")

        max_retries: int = Field(default=3, ge=0)
        base_delay_sec: float = Field(default=0.5, ge=0.0)
        cap_delay_sec: float = Field(default=8.0, ge=0.0)
        jitter_ratio: float = Field(default=0.1, ge=0.0, le=1.0)

    base_url: str = "https://dashscope.aliyuncs.com/api/v1"
    api_key_env: str = "DASHSCOPE_API_KEY"
    timeout_sec: int = Field(default=60, ge=1)
    retry: Retry = Field(default_factory=Retry)


class DashScopeEndpointsConfig(BaseModel):
    """
    Endpoint 路由配置。

    说明：
    - `text_path`/`multimodal_path` 相对 `llm.base_url` 拼接；
    - `default_endpoint_type` 仅作为 CLI/上层未显式指定时的默认 hint；
    - `multimodal_markers` 决定 AUTO 模式下哪些模型名走 multimodal API。
    """

    model_config = ConfigDict(extra="forbid")

    class Markers(BaseModel):
        """多模态模型名 marker（小写；前缀匹配 + 子串匹配）。"""

        model_config = ConfigDict(extra="forbid")

        prefixes: List[str] = Field(default_factory=lambda: list(DEFAULT_MULTIMODAL_MARKERS.prefixes))
        substrings: List[str] = Field(default_factory=lambda: list(DEFAULT_MULTIMODAL_MARKERS.substrings))

        @field_validator("prefixes", "substrings")
        @classmethod
        def _normalize(cls, value: List[str]) -> List[str]:
            """marker 统一小写去空白；空串直接拒绝（空串会匹配任意模型名）。"""

            out: List[str] = []
            for raw in value:
                s = str(raw).strip().lower()
                if not s:
                    raise ValueError("endpoints.multimodal_markers entries must be non-empty")
                out.append(s)
            return out

    text_path: str = "/services/aigc/text-generation/generation"
    multimodal_path: str = "/services/aigc/multimodal-generation/generation"
    default_endpoint_type: Literal["auto", "text", "multimodal"] = Field(default="auto")
    multimodal_markers: Markers = Field(default_factory=Markers)

    def to_markers(self) -> MultimodalModelMarkers:
        """转换为解析器使用的不可变 marker 对象。"""

        return MultimodalModelMarkers.of(
            prefixes=self.multimodal_markers.prefixes,
            substrings=self.multimodal_markers.substrings,
        )

    def default_type(self) -> EndpointType:
        return EndpointType(self.default_endpoint_type)


class DashScopeSdkConfig(BaseModel):
    """SDK 配置根对象。"""

    model_config = ConfigDict(extra="forbid")

    config_version: int = Field(default=1, ge=1)
    llm: DashScopeLlmConfig = Field(default_factory=DashScopeLlmConfig)
    endpoints: DashScopeEndpointsConfig = Field(default_factory=DashScopeEndpointsConfig)


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """读取 YAML 文件为 dict；空文件返回空 dict。"""

    if not path.exists():
        raise FileNotFoundError(f"配置文件不存在：{path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"配置文件根节点必须为 mapping(dict)：{path}")
    return data


def load_config_dicts(config_dicts: list[Dict[str, Any]]) -> DashScopeSdkConfig:
    """
    加载并合并多个 dict 配置，返回校验后的 `DashScopeSdkConfig`。

    参数：
    - config_dicts：按顺序做深度合并（后者覆盖前者）
    """

    merged: Dict[str, Any] = {}
    for overlay in config_dicts:
        if not overlay:
            continue
        _deep_merge(merged, overlay)
    return DashScopeSdkConfig.model_validate(merged)


def load_config(config_paths: list[Path]) -> DashScopeSdkConfig:
    """
    加载并合并多个配置文件，返回校验后的 `DashScopeSdkConfig`。

    参数：
    - config_paths：YAML 路径列表；按顺序合并（后者覆盖前者）
    """

    overlays: list[Dict[str, Any]] = []
    for path in config_paths:
        overlays.append(_load_yaml_file(Path(path)))
    return load_config_dicts(overlays)
