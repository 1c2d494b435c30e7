"""
syncer.py
Build the rsync command for one TransferJob.
Remote ends are user@host:/path strings reached over the same ssh options the
remote client uses; --link-dest points at the previous generation so unchanged
files are hard-linked instead of copied.
"""

from __future__ import annotations
import shlex
from typing import List
from .types import Config, TransferJob


def ssh_transport(cfg: Config) -> str:
    parts = ["ssh", *cfg.ssh_options, "-o", f"ConnectTimeout={cfg.connect_timeout}"]
    return " ".join(shlex.quote(p) for p in parts)


def rsync_cmd(cfg: Config, job: TransferJob) -> List[str]:
    cmd = [cfg.rsync_path, *cfg.rsync_options]
    if cfg.compress:
        cmd.append("-z")
    if job.link_dest:
        cmd.append(f"--link-dest={job.link_dest}")
    cmd += ["-e", ssh_transport(cfg), job.source, job.destination]
    return cmd
