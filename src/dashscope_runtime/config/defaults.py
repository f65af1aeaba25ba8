"""
默认配置加载器。

设计目标：
- SDK 作为通用库被引用时，不依赖 repo 相对路径即可运行
- 默认配置通过 `importlib.resources` 随 package 分发
"""

from __future__ import annotations

from importlib.resources import files
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from dashscope_runtime.config.loader import DashScopeSdkConfig, _load_yaml_file, load_config_dicts


def load_default_config_dict() -> Dict[str, Any]:
    """
    读取 SDK 内置默认配置（YAML）并返回 dict。

    返回：
    - dict：用于与 overlays 做深度合并（overlay 语义由 `dashscope_runtime.config.loader` 定义）

    异常：
    - RuntimeError：内容不是 mapping(dict)
    """

    text = files("dashscope_runtime.assets").joinpath("default.yaml").read_text(encoding="utf-8")
    obj = yaml.safe_load(text) or {}
    if not isinstance(obj, dict):
        raise RuntimeError("embedded default config root must be a mapping(dict)")
    return obj


def load_effective_config(overlay_paths: Optional[Sequence[Path]] = None) -> DashScopeSdkConfig:
    """内置默认配置 + overlays（按顺序合并）后的最终配置。"""

    dicts: List[Dict[str, Any]] = [load_default_config_dict()]
    for path in overlay_paths or []:
        dicts.append(_load_yaml_file(Path(path)))
    return load_config_dicts(dicts)
