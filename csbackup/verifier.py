"""
verifier.py
Consistency verifier for restore: the backup and the target cluster must have the
same release and the same shape before any data moves.
"""

from __future__ import annotations
import logging
from typing import List
from .types import ClusterTopology
from .errors import IncompatibleConfigError

log = logging.getLogger(__name__)


def structural_mismatches(backup: ClusterTopology, target: ClusterTopology) -> List[str]:
    out = []

    def cmp(what, a, b):
        if a != b:
            out.append(f"{what}: backup={a} target={b}")

    cmp("install mode", backup.install_mode.value, target.install_mode.value)
    cmp("server type", backup.server_type.value, target.server_type.value)
    cmp("PM with UM", backup.pm_has_um, target.pm_has_um)
    cmp("UM module count", backup.um_module_count, target.um_module_count)
    cmp("PM module count", backup.pm_module_count, target.pm_module_count)
    cmp("DBRoot count", backup.dbroot_count, target.dbroot_count)
    for b, t in zip(backup.pm_modules, target.pm_modules):
        cmp(f"{t.name} DBRoot count", len(b.dbroot_ids), len(t.dbroot_ids))
    return out


def address_mismatches(backup: ClusterTopology, target: ClusterTopology) -> List[str]:
    if target.single:
        return []
    out = []
    backup_mods = {(m.role, m.module_id): m for m in backup.all_modules()}
    for m in target.all_modules():
        b = backup_mods.get((m.role, m.module_id))
        if b is None:
            continue
        if m.resolved_address not in b.candidates:
            out.append(
                f"{m.name}: target {m.resolved_address} not in backup ({', '.join(b.candidates)})"
            )
    return out


def verify_consistency(
    backup: ClusterTopology, target: ClusterTopology, strict_addresses: bool = False
) -> None:
    if backup.version is None or target.version is None:
        raise IncompatibleConfigError("release of backup or target is unknown")
    if (backup.version.version, backup.version.release) != (
        target.version.version,
        target.version.release,
    ):
        raise IncompatibleConfigError(
            f"version mismatch: backup is {backup.version}, target is {target.version}"
        )

    problems = structural_mismatches(backup, target)
    for p in problems:
        log.error("topology mismatch: %s", p)
    if problems:
        raise IncompatibleConfigError(
            f"backup and target topologies differ ({len(problems)} mismatch(es)): {problems[0]}"
        )

    moved = address_mismatches(backup, target)
    for p in moved:
        log.warning("address mismatch: %s", p)
    if moved and strict_addresses:
        raise IncompatibleConfigError(f"module addresses differ from the backup: {moved[0]}")
    log.info("backup and target topologies are consistent")
