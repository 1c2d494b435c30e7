"""
config.py
Load and validate settings from TOML (Python 3.11+ tomllib).
Search order:
  1) explicit --config path
  2) csbackup.toml at the project root
  3) /etc/csbackup.toml
A missing default file means built-in defaults; CLI flags are applied on top.
"""

from __future__ import annotations
import tomllib
from pathlib import Path
from typing import Any, Dict
from .types import Config
from .errors import ConfigError

DEFAULT_CONFIG_PATH: str = str(Path(__file__).resolve().parent.parent / "csbackup.toml")
SYSTEM_CONFIG_PATH = "/etc/csbackup.toml"

MAX_CONCURRENCY = 100
MAX_GENERATIONS = 20


def _gv(d: Dict[str, Any], path: list[str], default=None):
    cur = d
    for k in path:
        if not isinstance(cur, dict) or k not in cur:
            return default
        cur = cur[k]
    return cur


def _load_toml(path: Path) -> Dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def find_config(path_arg: str | None) -> Path | None:
    """Pick the config path based on CLI arg and availability; None means defaults."""
    if path_arg:
        p = Path(path_arg)
        if not p.exists():
            raise ConfigError(f"Specified config file does not exist: {path_arg}")
        return p
    for candidate in (DEFAULT_CONFIG_PATH, SYSTEM_CONFIG_PATH):
        p = Path(candidate)
        if p.exists():
            return p
    return None


def load_config(path: Path | None) -> Config:
    if path is None:
        return Config()
    try:
        cfg = _load_toml(path)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Invalid configuration file {path}: {e}")

    def gv(keys, default=None):
        return _gv(cfg, keys, default)

    d = Config()
    try:
        return Config(
            user=gv(["remote", "user"], d.user),
            ssh_options=list(gv(["remote", "ssh_options"], d.ssh_options)),
            connect_timeout=int(gv(["remote", "connect_timeout"], d.connect_timeout)),
            install_dir=gv(["paths", "install_dir"], d.install_dir),
            concurrency=int(gv(["transfer", "concurrency"], d.concurrency)),
            compress=bool(gv(["transfer", "compress"], d.compress)),
            rsync_path=gv(["transfer", "rsync_path"], d.rsync_path),
            rsync_options=list(gv(["transfer", "rsync_options"], d.rsync_options)),
            generations=int(gv(["backup", "generations"], d.generations)),
            strict_addresses=bool(gv(["restore", "strict_addresses"], d.strict_addresses)),
            interval_sec=float(gv(["progress", "interval_sec"], d.interval_sec)),
            window=int(gv(["progress", "window"], d.window)),
            stall_limit=int(gv(["progress", "stall_limit"], d.stall_limit)),
            log_level=gv(["runtime", "log_level"], d.log_level),
            log_file=gv(["runtime", "log_file"], None) or None,
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value in {path}: {e}")


def validate_config(cfg: Config) -> None:
    if not 1 <= cfg.concurrency <= MAX_CONCURRENCY:
        raise ConfigError(f"concurrency must be between 1 and {MAX_CONCURRENCY}, got {cfg.concurrency}")
    if not 1 <= cfg.generations <= MAX_GENERATIONS:
        raise ConfigError(f"generations must be between 1 and {MAX_GENERATIONS}, got {cfg.generations}")
    if cfg.interval_sec <= 0:
        raise ConfigError(f"progress interval must be positive, got {cfg.interval_sec}")
    if cfg.window < 1 or cfg.stall_limit < 1:
        raise ConfigError("progress window and stall_limit must be positive")
    if not cfg.user:
        raise ConfigError("remote user must not be empty")
    if not cfg.install_dir.startswith("/"):
        raise ConfigError(f"install dir must be an absolute path, got {cfg.install_dir}")
