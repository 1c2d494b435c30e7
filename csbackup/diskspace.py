"""
diskspace.py
Disk space planner. Sizes every tree a run will copy and compares the total
against what the destination can hold. Nothing here mutates state; the checks
run before rotation and before writes are suspended.

Restore headroom is checked per (node, filesystem) as free + used: rsync rewrites
trees that already occupy the space.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Tuple
import psutil
from .types import ClusterTopology
from .layout import Artifact, backup_artifacts
from .remote import RemoteClient
from .util import du_total, human_bytes, run
from .errors import ConfigError, InsufficientSpaceError

log = logging.getLogger(__name__)


@dataclass
class SpacePlan:
    artifacts: List[Artifact] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(a.size for a in self.artifacts)

    def sizes(self) -> Dict[str, int]:
        return {a.name: a.size for a in self.artifacts}


def check_space(required: int, available: int, where: str) -> None:
    """Pure predicate: raises InsufficientSpaceError when required > available."""
    if required > available:
        raise InsufficientSpaceError(where, required, available)
    log.debug("space ok at %s: need %s, have %s", where, human_bytes(required), human_bytes(available))


def plan_backup(topo: ClusterTopology, client: RemoteClient, install_dir: str) -> SpacePlan:
    """Size each PM DBRoot, each co-located metadata store, and each separate UM store."""
    plan = SpacePlan(backup_artifacts(topo, install_dir))
    for a in plan.artifacts:
        a.size = client.du_bytes(a.module.resolved_address, a.node_path)
        log.debug("%s: %s (%s)", a.name, human_bytes(a.size), a.node_path)
    log.info("backup will copy %s in %d tree(s)", human_bytes(plan.total), len(plan.artifacts))
    return plan


def local_free(path: Path) -> int:
    """Free bytes on the filesystem holding path (or its nearest existing parent)."""
    p = Path(path).resolve()
    while not p.exists() and p != p.parent:
        p = p.parent
    return psutil.disk_usage(str(p)).free


def local_size(path: Path) -> int:
    rc, out = run(["du", "-sb", str(path)], capture=True)
    total = du_total(out)
    if total is None:
        raise ConfigError(f"cannot size {path}: {out.strip() or f'rc={rc}'}")
    if rc != 0:
        log.debug("du on %s exited %d, using its total %d", path, rc, total)
    return total


def check_backup_space(plan: SpacePlan, backup_root: Path, free=local_free) -> None:
    check_space(plan.total, free(backup_root), str(backup_root))


def plan_restore(artifacts: List[Artifact], backup_root: Path, size=local_size) -> SpacePlan:
    plan = SpacePlan(artifacts)
    for a in plan.artifacts:
        src = Path(backup_root) / a.name
        if not src.is_dir():
            raise ConfigError(f"backup is missing {a.name} (expected {src})")
        a.size = size(src)
    log.info("restore will copy %s in %d tree(s)", human_bytes(plan.total), len(plan.artifacts))
    return plan


def check_restore_space(plan: SpacePlan, client: RemoteClient) -> None:
    """
    Trees that land on the same filesystem of the same node are summed; the sum
    must fit into that filesystem's free bytes plus what its destinations use now.
    Destinations that do not exist yet use nothing.
    """
    groups: Dict[Tuple[str, str], List[Artifact]] = {}
    free: Dict[Tuple[str, str], int] = {}
    for a in plan.artifacts:
        address = a.module.resolved_address
        mount, avail = client.filesystem(address, a.node_path)
        groups.setdefault((address, mount), []).append(a)
        free[(address, mount)] = avail
    for (address, mount), arts in groups.items():
        required = sum(a.size for a in arts)
        used = sum(client.du_bytes(address, a.node_path, missing_ok=True) for a in arts)
        names = ", ".join(sorted({a.module.name for a in arts}))
        check_space(required, free[(address, mount)] + used, f"{names} {address}:{mount}")
