"""
topology.py
Topology reader: turns the cluster descriptor (Columnstore.xml) and the version
file (releasenum) into a ClusterTopology.

Descriptor keys are addressed as (section, key), e.g. ("SystemConfig", "DBRootCount").
Module keys follow <Name><moduleID>-<nic>-<type>, type 2 = UM, 3 = PM, nic 1 = primary.
"""

from __future__ import annotations
import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Dict, List, Optional
from .types import (
    ClusterTopology,
    InstallMode,
    ModuleNode,
    ReleaseInfo,
    Role,
    ServerType,
)
from .errors import ConfigError, IncompatibleConfigError

log = logging.getLogger(__name__)

DESCRIPTOR_NAME = "Columnstore.xml"
VERSION_FILE_NAME = "releasenum"
DESCRIPTOR_REL_PATH = "etc/" + DESCRIPTOR_NAME

UM_TYPE = 2
PM_TYPE = 3

SERVER_TYPES = {"1": ServerType.PM_ONLY, "2": ServerType.COMBINED}
UNSET_ADDRESSES = {"", "0.0.0.0", "unassigned"}


class XmlDescriptor:
    """Key lookup over a parsed descriptor document."""

    def __init__(self, root: ET.Element):
        self._root = root

    @classmethod
    def from_string(cls, text: str) -> "XmlDescriptor":
        try:
            return cls(ET.fromstring(text))
        except ET.ParseError as e:
            raise ConfigError(f"cluster descriptor is not valid XML: {e}")

    @classmethod
    def from_file(cls, path: Path) -> "XmlDescriptor":
        try:
            return cls.from_string(Path(path).read_text())
        except OSError as e:
            raise ConfigError(f"cannot read cluster descriptor {path}: {e}")

    def get(self, section: str, key: str, default: Optional[str] = None) -> Optional[str]:
        node = self._root.find(f"{section}/{key}")
        if node is None or node.text is None:
            return default
        return node.text.strip()


def read_release(text: str) -> ReleaseInfo:
    values: Dict[str, str] = {}
    for line in text.splitlines():
        if "=" in line:
            k, v = line.split("=", 1)
            values[k.strip()] = v.strip()
    if "version" not in values or "release" not in values:
        raise ConfigError(f"version file is missing version/release entries: {text.strip()!r}")
    return ReleaseInfo(values["version"], values["release"])


def _require(desc: XmlDescriptor, section: str, key: str) -> str:
    value = desc.get(section, key)
    if value is None or value == "":
        raise ConfigError(f"cluster descriptor has no value for {section}/{key}")
    return value


def _int(desc: XmlDescriptor, section: str, key: str, default: Optional[int] = None) -> int:
    raw = desc.get(section, key)
    if raw is None or raw == "":
        if default is not None:
            return default
        raise ConfigError(f"cluster descriptor has no value for {section}/{key}")
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"cluster descriptor value {section}/{key} is not a number: {raw!r}")


def _address(desc: XmlDescriptor, module_id: int, nic: int, mtype: int) -> Optional[str]:
    value = desc.get("SystemModuleConfig", f"ModuleIPAddr{module_id}-{nic}-{mtype}")
    if value is None or value in UNSET_ADDRESSES:
        return None
    return value


def _module(
    desc: XmlDescriptor,
    module_id: int,
    role: Role,
    install_address: Optional[str],
    single: bool = False,
) -> ModuleNode:
    mtype = PM_TYPE if role is Role.PM else UM_TYPE
    primary = _address(desc, module_id, 1, mtype)
    secondary = _address(desc, module_id, 2, mtype)
    hostname = desc.get("SystemModuleConfig", f"ModuleHostName{module_id}-1-{mtype}")
    node = ModuleNode(
        module_id=module_id,
        role=role,
        primary_address=primary or (install_address or ""),
        secondary_address=secondary,
        hostname=hostname,
    )
    if install_address is not None:
        node.resolved_address = install_address
    if role is Role.PM:
        count = _int(desc, "SystemModuleConfig", f"ModuleDBRootCount{module_id}-{PM_TYPE}", 0)
        node.dbroot_ids = [
            _int(desc, "SystemModuleConfig", f"ModuleDBRootID{module_id}-{slot}-{PM_TYPE}")
            for slot in range(1, count + 1)
        ]
    if not single and not node.candidates:
        raise ConfigError(f"cluster descriptor has no address for module {node.name}")
    return node


def load_topology(
    desc: XmlDescriptor,
    release: Optional[ReleaseInfo] = None,
    install_address: Optional[str] = None,
) -> ClusterTopology:
    """
    Build the topology. For single-server installs every module resolves to
    install_address (the node the operator named on the command line).
    """
    server_raw = _require(desc, "Installation", "ServerTypeInstall")
    if server_raw not in SERVER_TYPES:
        raise IncompatibleConfigError(f"unknown install type ServerTypeInstall={server_raw!r}")
    server_type = SERVER_TYPES[server_raw]
    single = desc.get("Installation", "SingleServerInstall", "n").lower() == "y"
    install_mode = InstallMode.SINGLE if single else InstallMode.MULTI
    pm_has_um = desc.get("Installation", "PMwithUM", "n").lower() == "y"

    pm_count = _int(desc, "SystemModuleConfig", f"ModuleCount{PM_TYPE}")
    um_count = _int(desc, "SystemModuleConfig", f"ModuleCount{UM_TYPE}", 0)
    dbroot_count = _int(desc, "SystemConfig", "DBRootCount")
    if pm_count < 1:
        raise ConfigError(f"cluster descriptor lists no PM modules (ModuleCount3={pm_count})")

    address = install_address if single else None
    pm_modules = [_module(desc, i, Role.PM, address, single) for i in range(1, pm_count + 1)]

    if server_type is ServerType.COMBINED:
        um_modules = pm_modules
        um_count = pm_count
    else:
        um_modules = [
            _module(desc, i, Role.UM, address, single)
            for i in range(1, (1 if single else um_count) + 1)
        ]
    if single:
        um_count = 1

    ids = set(range(1, dbroot_count + 1))
    for m in pm_modules:
        ids.update(m.dbroot_ids)
    dbroot_paths: Dict[int, str] = {}
    for dbroot_id in sorted(ids):
        path = desc.get("SystemConfig", f"DBRoot{dbroot_id}")
        if path:
            dbroot_paths[dbroot_id] = path
    assigned: List[int] = [i for m in pm_modules for i in m.dbroot_ids]
    missing = [i for i in assigned if i not in dbroot_paths]
    if missing:
        raise ConfigError(f"cluster descriptor has no path for DBRoot(s) {missing}")

    topo = ClusterTopology(
        system_name=desc.get("SystemConfig", "SystemName", "") or "",
        install_mode=install_mode,
        server_type=server_type,
        pm_has_um=pm_has_um,
        dbroot_storage_type=desc.get("Installation", "DBRootStorageType", "internal") or "internal",
        um_module_count=um_count,
        pm_module_count=pm_count,
        dbroot_count=dbroot_count,
        dbroot_paths=dbroot_paths,
        pm_modules=pm_modules,
        um_modules=um_modules,
        version=release,
    )
    log.debug(
        "topology %s: %s/%s, %d PM, %d UM, %d DBRoots",
        topo.system_name,
        topo.install_mode.value,
        topo.server_type.value,
        topo.pm_module_count,
        topo.um_module_count,
        topo.dbroot_count,
    )
    return topo


def describe(topo: ClusterTopology) -> List[str]:
    """Human-readable topology lines for verbose output."""
    lines = [
        f"system={topo.system_name} install={topo.install_mode.value} "
        f"server={topo.server_type.value} pm_has_um={topo.pm_has_um} "
        f"storage={topo.dbroot_storage_type} version={topo.version}"
    ]
    for m in topo.pm_modules:
        lines.append(
            f"  {m.name:<5} {m.resolved_address or m.primary_address:<16} "
            f"dbroots={','.join(str(i) for i in m.dbroot_ids) or '-'}"
        )
    for m in topo.separate_um_modules():
        lines.append(f"  {m.name:<5} {m.resolved_address or m.primary_address:<16}")
    return lines
