"""
remote.py
Remote command client: runs commands on cluster nodes over pre-authenticated ssh.
- exec / reachable / check_session
- Read-only probes used by the planner and safety gate: du, df, ps, find, test -e
ssh exits with 255 when it cannot establish the session; that maps to ConnectivityError.
"""

from __future__ import annotations
import logging, shlex
from typing import List, Set, Tuple
from .types import Config
from .util import du_total, run
from .errors import ConfigError, ConnectivityError

log = logging.getLogger(__name__)

SSH_SESSION_FAILURE = 255


class RemoteClient:
    def __init__(self, cfg: Config, runner=run):
        self.cfg = cfg
        self._run = runner

    def target(self, address: str) -> str:
        return f"{self.cfg.user}@{address}"

    def remote_path(self, address: str, path: str) -> str:
        return f"{self.target(address)}:{path}"

    def ssh_argv(self, address: str, command: str) -> List[str]:
        return [
            "ssh",
            *self.cfg.ssh_options,
            "-o",
            f"ConnectTimeout={self.cfg.connect_timeout}",
            self.target(address),
            command,
        ]

    def exec(self, address: str, command: str) -> tuple[int, str]:
        log.debug("ssh %s: %s", address, command)
        return self._run(self.ssh_argv(address, command), capture=True)

    def reachable(self, address: str) -> bool:
        rc, _ = self.exec(address, "true")
        return rc == 0

    def check_session(self, address: str) -> None:
        if not self.reachable(address):
            raise ConnectivityError(
                f"cannot establish an authenticated session to {self.target(address)}"
            )

    def _checked(self, address: str, command: str, what: str) -> str:
        rc, out = self.exec(address, command)
        if rc == SSH_SESSION_FAILURE:
            raise ConnectivityError(f"lost session to {address} while reading {what}")
        if rc != 0:
            raise ConfigError(f"cannot read {what} on {address}: {out.strip() or f'rc={rc}'}")
        return out

    def read_file(self, address: str, path: str) -> str:
        return self._checked(address, f"cat {shlex.quote(path)}", path)

    def du_bytes(self, address: str, path: str, missing_ok: bool = False) -> int:
        """
        Bytes used under path. du may exit non-zero while files under it are
        renamed away (a running rsync); its total is still used then.
        With missing_ok a path that does not exist counts as 0.
        """
        q = shlex.quote(path)
        command = f"if [ -e {q} ]; then du -sb {q}; else echo 0; fi" if missing_ok else f"du -sb {q}"
        rc, out = self.exec(address, command)
        if rc == SSH_SESSION_FAILURE:
            raise ConnectivityError(f"lost session to {address} while reading size of {path}")
        total = du_total(out)
        if total is None:
            raise ConfigError(f"cannot read size of {path} on {address}: {out.strip() or f'rc={rc}'}")
        if rc != 0:
            log.debug("du on %s:%s exited %d, using its total %d", address, path, rc, total)
        return total

    def filesystem(self, address: str, path: str) -> Tuple[str, int]:
        """(mount point, free bytes) of the filesystem holding path or its nearest existing parent."""
        q = shlex.quote(path)
        out = self._checked(
            address,
            f'p={q}; while [ ! -e "$p" ]; do p=$(dirname "$p"); done; '
            f'df -B1 --output=target,avail "$p"',
            f"free space of {path}",
        )
        lines = [l for l in out.splitlines() if l.strip()]
        parts = lines[-1].rsplit(None, 1) if len(lines) > 1 else []
        if len(parts) != 2 or not parts[1].isdigit():
            raise ConfigError(f"unexpected df output for {path}: {out.strip()!r}")
        return parts[0].strip(), int(parts[1])

    def processes(self, address: str) -> Set[str]:
        out = self._checked(address, "ps -e -o comm=", "process list")
        return {l.strip() for l in out.splitlines() if l.strip()}

    def list_subdirs(self, address: str, path: str) -> List[str]:
        """Names of the directories directly under path; a missing path lists as empty."""
        q = shlex.quote(path)
        out = self._checked(
            address,
            f"if [ -d {q} ]; then find {q} -mindepth 1 -maxdepth 1 -type d -printf '%f\\n'; fi",
            f"listing of {path}",
        )
        return [l.strip() for l in out.splitlines() if l.strip()]

    def exists(self, address: str, path: str) -> bool:
        rc, _ = self.exec(address, f"test -e {shlex.quote(path)}")
        if rc == SSH_SESSION_FAILURE:
            raise ConnectivityError(f"lost session to {address} while checking {path}")
        return rc == 0
