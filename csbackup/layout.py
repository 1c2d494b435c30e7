"""
layout.py
Naming of artifacts at the backup location and of their paths on cluster nodes.

  Columnstore.xml, releasenum     descriptor and version file
  cnf/<module>/                   node config (my.cnf)
  pm<N>dbroot<M>/                 DBRoot M as held by PM N
  pm<N>DB/                        metadata store co-located on PM N
  um<N>/                          metadata store of UM N
  backup.<i>/                     retained generations, same shape
"""

from __future__ import annotations
import posixpath
from dataclasses import dataclass
from typing import List, Optional
from .types import ClusterTopology, ModuleNode, Role

CNF_DIR = "cnf"
GENERATION_PREFIX = "backup."
RUN_SUMMARY_NAME = "last-run.json"

METADATA_REL_PATH = "mysql/db"
MYCNF_REL_PATH = "mysql/my.cnf"

# databases every metadata store ships with
SYSTEM_DATABASES = {
    "mysql",
    "performance_schema",
    "information_schema",
    "sys",
    "test",
    "calpontsys",
    "infinidb_vtable",
    "columnstore_info",
}


def dbroot_artifact(module: ModuleNode, dbroot_id: int) -> str:
    return f"pm{module.module_id}dbroot{dbroot_id}"


def metadata_artifact(module: ModuleNode) -> str:
    if module.role is Role.PM:
        return f"pm{module.module_id}DB"
    return f"um{module.module_id}"


def metadata_path(install_dir: str) -> str:
    return posixpath.join(install_dir, METADATA_REL_PATH)


def mycnf_path(install_dir: str) -> str:
    return posixpath.join(install_dir, MYCNF_REL_PATH)


def generation_name(index: int) -> str:
    return f"{GENERATION_PREFIX}{index}"


@dataclass
class Artifact:
    """One tree copied between a node and the backup location."""
    name: str
    module: ModuleNode
    node_path: str
    dbroot_id: Optional[int] = None
    size: int = 0


def metadata_modules(topo: ClusterTopology) -> List[ModuleNode]:
    """Modules whose metadata store is backed up, in layout order (pm<N>DB, then um<N>)."""
    mods = list(topo.pm_modules) if topo.pm_carries_metadata() else []
    return mods + topo.separate_um_modules()


def backup_artifacts(topo: ClusterTopology, install_dir: str) -> List[Artifact]:
    """Every data tree of a topology: DBRoots first, then metadata stores."""
    out = [
        Artifact(dbroot_artifact(m, i), m, topo.dbroot_paths[i], dbroot_id=i)
        for m in topo.pm_modules
        for i in m.dbroot_ids
    ]
    out += [
        Artifact(metadata_artifact(m), m, metadata_path(install_dir))
        for m in metadata_modules(topo)
    ]
    return out


def dbroot_owner(topo: ClusterTopology, dbroot_id: int) -> Optional[ModuleNode]:
    for m in topo.pm_modules:
        if dbroot_id in m.dbroot_ids:
            return m
    return None


def restore_artifacts(backup: ClusterTopology, target: ClusterTopology, install_dir: str) -> List[Artifact]:
    """
    Map target trees to the backup artifacts that feed them. DBRoots follow their
    global id (the backup PM that held the id names the artifact); metadata stores
    follow the module number.
    """
    out: List[Artifact] = []
    for m in target.pm_modules:
        for i in m.dbroot_ids:
            owner = dbroot_owner(backup, i) or m
            out.append(Artifact(f"pm{owner.module_id}dbroot{i}", m, target.dbroot_paths[i], dbroot_id=i))
    for m in metadata_modules(target):
        out.append(Artifact(metadata_artifact(m), m, metadata_path(install_dir)))
    return out
