"""
DashScope Runtime CLI（resolve/payload）。

约束：
- 使用 argparse（不引入第三方 CLI 依赖）
- stdout 输出机器可读 JSON；失败时也输出 JSON（`{"error": {...}}`）
- 不发起任何网络请求：只展示路由决策与 wire body
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml
from pydantic import ValidationError

from dashscope_runtime.config.defaults import load_effective_config
from dashscope_runtime.config.loader import DashScopeSdkConfig
from dashscope_runtime.core.errors import FrameworkError, FrameworkIssue
from dashscope_runtime.llm.dashscope_http import DashScopeHttpClient
from dashscope_runtime.llm.endpoint import EndpointType, coerce_endpoint_type
from dashscope_runtime.llm.protocol import DashScopeInput, DashScopeParameters, DashScopeRequest


def _dump_json_to_stdout(obj: Dict[str, Any], *, pretty: bool) -> None:
    """
    将 dict 输出为 JSON 到 stdout（末尾包含换行）。

    参数：
    - obj：待输出对象（必须可 JSON dumps）
    - pretty：是否启用 pretty-print（indent=2）
    """

    if pretty:
        text = json.dumps(obj, ensure_ascii=False, indent=2)
    else:
        text = json.dumps(obj, ensure_ascii=False, separators=(",", ":"))
    print(text)


def _issue_to_json(issue: FrameworkIssue) -> Dict[str, Any]:
    return {"error": issue.to_json()}


def _load_cli_config(raw_paths: List[str]) -> DashScopeSdkConfig:
    """
    加载内置默认配置 + `--config` overlays。

    异常：
    - FrameworkError：overlay 不存在或校验失败（英文结构化）
    """

    paths = [Path(p).expanduser().resolve() for p in raw_paths]
    try:
        return load_effective_config(paths)
    except FileNotFoundError as exc:
        raise FrameworkError(
            code="CLI_CONFIG_NOT_FOUND",
            message="Overlay config not found.",
            details={"paths": [str(p) for p in paths], "reason": str(exc)},
        ) from exc
    except (ValueError, ValidationError) as exc:
        raise FrameworkError(
            code="CLI_CONFIG_INVALID",
            message="Overlay config is invalid.",
            details={"paths": [str(p) for p in paths], "reason": str(exc)},
        ) from exc
    except (yaml.YAMLError, OSError) as exc:
        # YAML 语法错误、路径是目录、无读权限等
        raise FrameworkError(
            code="CLI_CONFIG_LOAD_FAILED",
            message="Overlay config load failed.",
            details={"paths": [str(p) for p in paths], "reason": str(exc)},
        ) from exc


def _parse_endpoint_type(raw: Optional[str], cfg: DashScopeSdkConfig) -> EndpointType:
    if raw is None:
        return cfg.endpoints.default_type()
    try:
        return coerce_endpoint_type(raw)
    except ValueError as exc:
        raise FrameworkError(
            code="CLI_ENDPOINT_TYPE_INVALID",
            message="Endpoint type is invalid.",
            details={"endpoint_type": raw, "allowed": [t.value for t in EndpointType]},
        ) from exc


def _build_request(args: argparse.Namespace, cfg: DashScopeSdkConfig) -> DashScopeRequest:
    builder = DashScopeRequest.builder().model(args.model).endpoint_type(_parse_endpoint_type(args.endpoint_type, cfg))
    messages = [{"role": "user", "content": m} for m in getattr(args, "message", None) or []]
    if messages:
        builder.input(DashScopeInput(messages=messages))
    temperature = getattr(args, "temperature", None)
    if messages or temperature is not None:
        builder.parameters(DashScopeParameters(temperature=temperature))
    return builder.build()


def _handle_resolve(args: argparse.Namespace) -> int:
    cfg = _load_cli_config(args.config)
    request = _build_request(args, cfg)
    client = DashScopeHttpClient(cfg.llm, endpoints=cfg.endpoints)
    resolved = client.resolve(request)
    _dump_json_to_stdout(
        {
            "model": request.model,
            "requested": request.endpoint_type.value,
            "resolved": resolved.value,
            "url": client.endpoint_url(resolved),
        },
        pretty=args.pretty,
    )
    return 0


def _handle_payload(args: argparse.Namespace) -> int:
    cfg = _load_cli_config(args.config)
    request = _build_request(args, cfg)
    client = DashScopeHttpClient(cfg.llm, endpoints=cfg.endpoints)
    resolved = client.resolve(request)
    _dump_json_to_stdout(
        {"endpoint": resolved.value, "url": client.endpoint_url(resolved), "payload": request.to_payload()},
        pretty=args.pretty,
    )
    return 0


def _build_parser() -> argparse.ArgumentParser:
    """构造 argparse parser（子命令：resolve/payload）。"""

    parser = argparse.ArgumentParser(prog="dashscope-runtime", description="DashScope Runtime SDK CLI")
    root_sub = parser.add_subparsers(dest="command", required=True)

    def _add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--model", required=True, help="Model name (e.g. qwen-plus, qwen-vl-max).")
        p.add_argument(
            "--endpoint-type",
            default=None,
            help="auto|text|multimodal (default: endpoints.default_endpoint_type from config).",
        )
        p.add_argument("--config", action="append", default=[], help="Overlay config YAML path (repeatable).")
        p.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")

    resolve = root_sub.add_parser("resolve", help="Show which DashScope endpoint a model is routed to")
    _add_common(resolve)

    payload = root_sub.add_parser("payload", help="Show the wire body and endpoint for a request")
    _add_common(payload)
    payload.add_argument("--message", action="append", default=[], help="User message text (repeatable).")
    payload.add_argument("--temperature", type=float, default=None, help="Sampling temperature.")

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    CLI 入口函数（用于 console_scripts 与测试）。

    参数：
    - argv：命令行参数列表（不含程序名）；为 None 时读取 sys.argv[1:]。

    返回：
    - int：exit code（不会直接 sys.exit，便于测试）。
    """

    parser = _build_parser()
    try:
        args = parser.parse_args(list(argv) if argv is not None else None)
    except SystemExit as exc:
        # argparse：`--help` 为 0，参数错误为 2
        code = getattr(exc, "code", 2)
        if code is None:
            return 2
        return int(code)

    try:
        if args.command == "resolve":
            return _handle_resolve(args)
        if args.command == "payload":
            return _handle_payload(args)
    except FrameworkError as exc:
        _dump_json_to_stdout(_issue_to_json(exc.to_issue()), pretty=getattr(args, "pretty", False))
        return 2

    parser.print_help()
    return 2
