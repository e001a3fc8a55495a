from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

CONFIG_PATH = Path.home() / ".config" / "coderagent" / "config.yml"

EXECUTION_MODES = {"launch", "connect"}


@dataclass(frozen=True)
class AppConfig:
    host: str = "localhost"
    port: int = 0                      # 0 = pick a free port at startup
    workspace_path: str = ""
    checkpointing: bool = False
    log_level: str = "INFO"
    native_host_mode: bool = False     # log to a file instead of stderr
    # Browser agent
    browser_enabled: bool = True
    browser_execution_mode: str = "launch"
    browser_headless: bool = True
    browser_url: str = ""              # used in "connect" mode
    browser_mcp_server: str = "chrome-devtools"
    browser_mcp_command: str = "npx"
    browser_mcp_package: str = "chrome-devtools-mcp@latest"
    # Tool-call correlation
    correlation_max_entries: int = 1024
    correlation_ttl_seconds: float = 600.0
    config_version: int = 1


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    port = os.environ.get("CODER_AGENT_PORT", "").strip()
    if port.isdigit():
        overrides["port"] = int(port)
    workspace = os.environ.get("CODER_AGENT_WORKSPACE_PATH", "").strip()
    if workspace:
        overrides["workspace_path"] = workspace
    if os.environ.get("NATIVE_HOST_MODE") == "true":
        overrides["native_host_mode"] = True
    return overrides


def _validate(cfg: dict[str, Any]) -> dict[str, Any]:
    defaults = AppConfig().__dict__.copy()
    merged = {**defaults, **cfg}
    for key in ("host", "browser_mcp_server", "browser_mcp_command", "browser_mcp_package"):
        if not isinstance(merged.get(key), str) or not merged[key].strip():
            merged[key] = defaults[key]
    raw_port = merged.get("port", defaults["port"])
    merged["port"] = int(raw_port) if isinstance(raw_port, int) and 0 <= raw_port <= 65535 else defaults["port"]
    merged["workspace_path"] = str(merged.get("workspace_path") or "")
    merged["checkpointing"] = bool(merged.get("checkpointing", defaults["checkpointing"]))
    level = str(merged.get("log_level", defaults["log_level"])).upper()
    merged["log_level"] = level if level in {"DEBUG", "INFO", "WARNING", "ERROR"} else defaults["log_level"]
    merged["native_host_mode"] = bool(merged.get("native_host_mode", defaults["native_host_mode"]))
    merged["browser_enabled"] = bool(merged.get("browser_enabled", defaults["browser_enabled"]))
    if merged.get("browser_execution_mode") not in EXECUTION_MODES:
        merged["browser_execution_mode"] = defaults["browser_execution_mode"]
    merged["browser_headless"] = bool(merged.get("browser_headless", defaults["browser_headless"]))
    merged["browser_url"] = str(merged.get("browser_url") or "")
    raw_max = merged.get("correlation_max_entries", defaults["correlation_max_entries"])
    merged["correlation_max_entries"] = (
        int(raw_max) if isinstance(raw_max, (int, float)) and int(raw_max) > 0 else defaults["correlation_max_entries"]
    )
    raw_ttl = merged.get("correlation_ttl_seconds", defaults["correlation_ttl_seconds"])
    merged["correlation_ttl_seconds"] = (
        float(raw_ttl) if isinstance(raw_ttl, (int, float)) and float(raw_ttl) > 0 else defaults["correlation_ttl_seconds"]
    )
    merged["config_version"] = defaults["config_version"]
    return {key: merged[key] for key in defaults}


def load_config(path: Path = CONFIG_PATH) -> AppConfig:
    """Read the YAML config (creating it on first run) and apply env overrides."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        cfg = _validate({})
        save_config(cfg, path)
    else:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        cfg = _validate(raw if isinstance(raw, dict) else {})
        if cfg != raw:
            save_config(cfg, path)
    return AppConfig(**_validate({**cfg, **_env_overrides()}))


def save_config(cfg: dict[str, Any], path: Path = CONFIG_PATH) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    validated = _validate(cfg)
    tmp_path = path.with_suffix(".tmp")
    tmp_path.write_text(yaml.safe_dump(validated, sort_keys=True), encoding="utf-8")
    tmp_path.replace(path)
