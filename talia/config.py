from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field, fields
from typing import Any, Mapping, Optional


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "talia.toml"
LICHESS_TABLEBASE_URL = "https://tablebase.lichess.ovh/standard"


@dataclass
class SearchConfig:
    depth: int = 5  # used when a budget names no limit
    max_depth: int = 64
    q_max_depth: int = 16
    tt_entries: int = 1 << 18
    poll_interval: int = 32
    use_tt: bool = True
    use_quiescence: bool = True


@dataclass
class TablebaseConfig:
    syzygy_path: Optional[str] = None
    max_pieces: int = 7
    online: bool = False
    online_url: str = LICHESS_TABLEBASE_URL
    timeout_s: float = 5.0
    cache_size: int = 4096


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8000


@dataclass
class Config:
    search: SearchConfig = field(default_factory=SearchConfig)
    tablebase: TablebaseConfig = field(default_factory=TablebaseConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    log_level: str = "INFO"

    @staticmethod
    def load_from_toml(path: str = DEFAULT_CONFIG_PATH) -> "Config":
        """Read ``path`` into a Config; a missing file yields the defaults.

        Unknown keys are ignored with a warning.
        """
        cfg = Config()
        if not os.path.exists(path):
            return cfg
        with open(path, "rb") as f:
            raw = tomllib.load(f)
        for section in ("search", "tablebase", "server"):
            if section in raw:
                _merge(getattr(cfg, section), raw[section], section)
        if "log_level" in raw:
            cfg.log_level = str(raw["log_level"]).upper()
        return cfg


def _merge(target: Any, values: Mapping[str, Any], section: str) -> None:
    known = {f.name for f in fields(target)}
    for k, v in values.items():
        if k in known:
            setattr(target, k, v)
        else:
            logger.warning("Ignoring unknown config key", extra={"key": f"{section}.{k}"})


def _parse_bool(name: str, raw: str) -> bool:
    val = raw.strip().lower()
    if val in ("1", "true", "yes", "on"):
        return True
    if val in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def apply_env_overrides(cfg: Config, env: Optional[Mapping[str, str]] = None) -> Config:
    """Apply ``TALIA_*`` environment overrides onto ``cfg`` in place.

    Raises:
        ValueError: If an override cannot be parsed; the message names the
            variable.
    """
    env = os.environ if env is None else env
    depth = env.get("TALIA_SEARCH_DEPTH")
    if depth:
        try:
            cfg.search.depth = int(depth)
        except ValueError as e:
            raise ValueError(f"TALIA_SEARCH_DEPTH must be an integer, got {depth!r}") from e
        if cfg.search.depth < 1:
            raise ValueError("TALIA_SEARCH_DEPTH must be >= 1")
    path = env.get("TALIA_SYZYGY_PATH")
    if path:
        cfg.tablebase.syzygy_path = path
    online = env.get("TALIA_ONLINE_TABLEBASE")
    if online:
        cfg.tablebase.online = _parse_bool("TALIA_ONLINE_TABLEBASE", online)
    level = env.get("TALIA_LOG_LEVEL")
    if level:
        if level.upper() not in logging.getLevelNamesMapping():
            raise ValueError(f"TALIA_LOG_LEVEL is not a logging level: {level!r}")
        cfg.log_level = level.upper()
    return cfg


def load_config(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Config:
    """Load configuration from TOML then environment.

    Args:
        path (Optional[str]): TOML file; defaults to ``$TALIA_CONFIG`` or
            ``talia.toml``.
        env (Optional[Mapping[str, str]]): Environment to read; defaults to
            ``os.environ``.
    """
    env = os.environ if env is None else env
    cfg = Config.load_from_toml(path or env.get("TALIA_CONFIG", DEFAULT_CONFIG_PATH))
    return apply_env_overrides(cfg, env)
