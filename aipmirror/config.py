"""Runtime configuration loaded from config.yaml."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

BASE_URL = "https://www.ais.pansa.pl/publikacje/aip-polska/"
CATALOG_PREFIXES = {
    "VFR": "https://ais.pansa.pl/eAIPVFR",
    "IFR": "https://ais.pansa.pl/eAIPIFR",
}
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)


@dataclass(slots=True)
class Config:
    """Runtime configuration loaded from config.yaml."""

    base_url: str = BASE_URL
    catalogs: dict[str, str] = field(default_factory=lambda: dict(CATALOG_PREFIXES))
    output_dir: str = "AIP"
    language: str = "pl-PL"
    user_agent: str = USER_AGENT
    concurrency: int = 1
    delay_sec: float = 0.0
    timeout_sec: int = 300
    max_depth: int = 64
    dry_run: bool = False
    download_log: str = ""


def _get(data: dict[str, Any], key: str, default: Any) -> Any:
    """Value for ``key``, or ``default`` when the key is missing or left empty."""
    value = data.get(key)
    return default if value is None else value


def load_config(config_path: Path) -> Config:
    """Load config.yaml and apply defaults for missing keys."""
    data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError("config.yaml must be a mapping")

    catalogs = _get(data, "catalogs", CATALOG_PREFIXES)
    if not isinstance(catalogs, dict) or not catalogs:
        raise ValueError("config.yaml 'catalogs' must be a non-empty mapping")

    return Config(
        base_url=str(_get(data, "base_url", BASE_URL)),
        catalogs={str(k): str(v) for k, v in catalogs.items()},
        output_dir=str(_get(data, "output_dir", "AIP")),
        language=str(_get(data, "language", "pl-PL")),
        user_agent=str(_get(data, "user_agent", USER_AGENT)),
        concurrency=max(1, int(_get(data, "concurrency", 1))),
        delay_sec=float(_get(data, "delay_sec", 0.0)),
        timeout_sec=int(_get(data, "timeout_sec", 300)),
        max_depth=int(_get(data, "max_depth", 64)),
        dry_run=bool(_get(data, "dry_run", False)),
        download_log=str(data.get("download_log") or ""),
    )
