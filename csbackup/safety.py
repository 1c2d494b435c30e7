"""
safety.py
Restore safety gate. Both checks raise and leave the target untouched:
- no cluster service process may be running on any node
- metadata stores hold only system databases, DBRoots hold no internal state
"""

from __future__ import annotations
import logging, posixpath
from typing import List
from .types import ClusterTopology
from .remote import RemoteClient
from .layout import SYSTEM_DATABASES, metadata_modules, metadata_path
from .errors import ClusterRunningError, TargetNotPristineError

log = logging.getLogger(__name__)

CLUSTER_PROCESSES = frozenset(
    {
        "ProcMon",
        "ProcMgr",
        "controllernode",
        "workernode",
        "PrimProc",
        "ExeMgr",
        "DDLProc",
        "DMLProc",
        "WriteEngineServ",
        "WriteEngineServer",
        "StorageManager",
        "mysqld",
        "mariadbd",
    }
)

# relative to a DBRoot
DBROOT_STATE_MARKERS = ("000.dir", "systemFiles/dbrm/BRM_saves_current")


def check_processes_stopped(topo: ClusterTopology, client: RemoteClient) -> None:
    running: List[str] = []
    for m in topo.all_modules():
        found = sorted(client.processes(m.resolved_address) & CLUSTER_PROCESSES)
        if found:
            log.error("%s (%s) still runs: %s", m.name, m.resolved_address, ", ".join(found))
            running.append(f"{m.name}: {', '.join(found)}")
    if running:
        raise ClusterRunningError(
            "cluster processes are still running; stop the cluster before restoring ("
            + "; ".join(running)
            + ")"
        )


def check_targets_pristine(topo: ClusterTopology, client: RemoteClient, install_dir: str) -> None:
    residue: List[str] = []
    store = metadata_path(install_dir)
    for m in metadata_modules(topo):
        user_dbs = [
            d
            for d in client.list_subdirs(m.resolved_address, store)
            if d not in SYSTEM_DATABASES and d != "lost+found" and not d.startswith(".")
        ]
        if user_dbs:
            residue.append(f"{m.name}:{store} has database(s) {', '.join(sorted(user_dbs))}")
    for m in topo.pm_modules:
        for i in m.dbroot_ids:
            for marker in DBROOT_STATE_MARKERS:
                path = posixpath.join(topo.dbroot_paths[i], marker)
                if client.exists(m.resolved_address, path):
                    residue.append(f"{m.name}:{path} exists")
    for r in residue:
        log.error("restore target not pristine: %s", r)
    if residue:
        raise TargetNotPristineError(
            f"restore target holds existing data ({len(residue)} location(s)); restore needs a fresh install"
        )
