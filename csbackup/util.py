"""
util.py
Cross-cutting utilities:
- Process execution (list-of-args or bash -lc string) with dry-run support
- Required tool check (rsync, ssh)
- Logging setup for both programs
- Small helpers: clamp, byte/duration formatting, JSON writing
"""

from __future__ import annotations
import json, logging, shlex, shutil, subprocess, sys
from pathlib import Path
from typing import Iterable, Optional

from .errors import MissingToolError

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def run(cmd, capture=False, env=None, dry=False):
    """
    Execute a command.
    - If cmd is a string, run via /bin/bash -lc.
    - Returns (rc, output_str); never raises for a non-zero exit.
    """
    if isinstance(cmd, str):
        cmd_list = ["/bin/bash", "-lc", cmd]
    else:
        cmd_list = cmd
    if dry:
        print(
            "[dry-run]",
            cmd if isinstance(cmd, str) else " ".join(shlex.quote(c) for c in cmd_list),
        )
        return 0, ""
    try:
        if capture:
            out = subprocess.check_output(cmd_list, stderr=subprocess.STDOUT, env=env)
            return 0, out.decode("utf-8", "replace")
        else:
            rc = subprocess.call(cmd_list, env=env)
            return rc, ""
    except subprocess.CalledProcessError as e:
        return e.returncode, e.output.decode("utf-8", "replace") if e.output else ""
    except FileNotFoundError as e:
        return 127, str(e)


def which_quiet(name: str) -> bool:
    """Check if command exists silently."""
    return bool(shutil.which(name))


def require_tools(names: Iterable[str]) -> None:
    missing = [n for n in names if not which_quiet(n)]
    if missing:
        raise MissingToolError(f"required tool(s) not found in PATH: {', '.join(missing)}")


def setup_logging(level: str = "INFO", log_file: str | None = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        ensure_dir(Path(log_file).parent)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        handlers=handlers,
        force=True,
    )


def du_total(out: str) -> Optional[int]:
    """Byte total from `du -sb` output; complaint lines du prints along the way are skipped."""
    for line in reversed(out.splitlines()):
        tokens = line.split()
        if tokens and tokens[0].isdigit():
            return int(tokens[0])
    return None


def clamp(lo, x, hi):
    return max(lo, min(x, hi))


def human_bytes(n: int) -> str:
    size = float(n)
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if abs(size) < 1024 or unit == "TiB":
            return f"{size:.1f}{unit}" if unit != "B" else f"{int(size)}B"
        size /= 1024
    return f"{size:.1f}TiB"


def format_duration(seconds: float) -> str:
    seconds = int(max(0, seconds))
    h, rem = divmod(seconds, 3600)
    m, s = divmod(rem, 60)
    return f"{h:02d}:{m:02d}:{s:02d}"


def ensure_dir(p: Path):
    """Create directory with better error reporting."""
    try:
        p.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        raise PermissionError(f"Cannot create directory {p} - insufficient permissions")
    except OSError as e:
        raise OSError(f"Cannot create directory {p}: {e}")


def write_json(path: Path, obj):
    ensure_dir(path.parent)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(obj, indent=2, sort_keys=True, default=str))
    tmp.replace(path)
