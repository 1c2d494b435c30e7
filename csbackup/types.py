"""
types.py
Dataclasses used across modules: Config, ClusterTopology, ModuleNode, ReleaseInfo,
BackupGeneration, TransferJob, JobBatch, ProgressSample.

Topology objects are built once per run by the orchestrator and passed by reference.
"""
from __future__ import annotations
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, List, Dict


class InstallMode(str, Enum):
    SINGLE = "single"
    MULTI = "multi"


class ServerType(str, Enum):
    PM_ONLY = "pm-only"
    COMBINED = "combined-pm-um"


class Role(str, Enum):
    PM = "pm"
    UM = "um"


class JobState(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class Config:
    # remote
    user: str = "root"
    ssh_options: List[str] = field(default_factory=lambda: ["-o", "BatchMode=yes"])
    connect_timeout: int = 10
    # paths
    install_dir: str = "/usr/local/mariadb/columnstore"
    # transfer
    concurrency: int = 4
    compress: bool = False
    rsync_path: str = "rsync"
    rsync_options: List[str] = field(default_factory=lambda: ["-a", "--delete"])
    # backup / restore
    generations: int = 3
    strict_addresses: bool = False
    # progress
    interval_sec: float = 5.0
    window: int = 5
    stall_limit: int = 5
    # runtime
    log_level: str = "INFO"
    log_file: Optional[str] = None
    dry_run: bool = False
    verbose: bool = False


@dataclass
class ReleaseInfo:
    version: str
    release: str

    def __str__(self) -> str:
        return f"{self.version}-{self.release}"


@dataclass
class ModuleNode:
    module_id: int
    role: Role
    primary_address: str
    secondary_address: Optional[str] = None
    hostname: Optional[str] = None
    resolved_address: Optional[str] = None
    # local slot order -> global DBRoot id (PM only)
    dbroot_ids: List[int] = field(default_factory=list)

    @property
    def name(self) -> str:
        return f"{self.role.value}{self.module_id}"

    @property
    def candidates(self) -> List[str]:
        return [a for a in (self.primary_address, self.secondary_address) if a]


@dataclass
class ClusterTopology:
    system_name: str
    install_mode: InstallMode
    server_type: ServerType
    pm_has_um: bool
    dbroot_storage_type: str
    um_module_count: int
    pm_module_count: int
    dbroot_count: int
    dbroot_paths: Dict[int, str]
    pm_modules: List[ModuleNode] = field(default_factory=list)
    um_modules: List[ModuleNode] = field(default_factory=list)
    version: Optional[ReleaseInfo] = None

    @property
    def combined(self) -> bool:
        return self.server_type is ServerType.COMBINED

    @property
    def single(self) -> bool:
        return self.install_mode is InstallMode.SINGLE

    def pm_carries_metadata(self) -> bool:
        """True when every PM also hosts a metadata store (saved as pm<N>DB)."""
        return self.combined or self.pm_has_um

    def separate_um_modules(self) -> List[ModuleNode]:
        """UM modules that are hosts of their own (saved as um<N>)."""
        if self.combined:
            return []
        return list(self.um_modules)

    def all_modules(self) -> List[ModuleNode]:
        seen = set()
        out = []
        for m in self.pm_modules + self.um_modules:
            if id(m) not in seen:
                seen.add(id(m))
                out.append(m)
        return out


@dataclass
class BackupGeneration:
    index: int
    path: Path


@dataclass
class TransferJob:
    source: str
    destination: str
    label: str = ""
    link_dest: Optional[str] = None
    dry_run: bool = False
    expected_bytes: int = 0
    result: JobState = JobState.PENDING
    returncode: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.result is JobState.SUCCESS


@dataclass
class JobBatch:
    jobs: List[TransferJob] = field(default_factory=list)
    futures: List[Future] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.jobs)

    @property
    def expected_bytes(self) -> int:
        return sum(j.expected_bytes for j in self.jobs)

    def done(self) -> bool:
        return all(f.done() for f in self.futures)

    def failed(self) -> List[TransferJob]:
        return [j for j in self.jobs if j.result is not JobState.SUCCESS]


@dataclass
class ProgressSample:
    timestamp: float
    observed_bytes: int
