"""
orchestrator.py
Sequences the components into the two flows.

backup:
  session check -> topology + resolution -> space check -> rotate generations
  -> [writes suspended: descriptor/version/cnf -> PM DBRoots (batched) -> metadata stores]
  -> run summary
restore:
  session check -> backup topology + target topology -> consistency check
  -> processes stopped -> targets pristine -> space check
  -> PM DBRoots (batched) -> metadata stores
Every fatal condition is raised as a CSBackupError; the CLI turns it into an exit code.
"""

from __future__ import annotations
import logging, posixpath, time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional
from .types import ClusterTopology, Config, JobBatch, TransferJob
from .topology import (
    DESCRIPTOR_NAME,
    DESCRIPTOR_REL_PATH,
    VERSION_FILE_NAME,
    XmlDescriptor,
    describe,
    load_topology,
    read_release,
)
from .resolver import resolve_modules
from .remote import RemoteClient
from .diskspace import (
    SpacePlan,
    check_backup_space,
    check_restore_space,
    local_free,
    local_size,
    plan_backup,
    plan_restore,
)
from .retention import rotate, stage_artifact
from .dispatcher import TransferDispatcher, dispatch_batches
from .progress import ProgressMonitor
from .verifier import verify_consistency
from .safety import check_processes_stopped, check_targets_pristine
from .suspend import suspended_writes
from .layout import (
    CNF_DIR,
    RUN_SUMMARY_NAME,
    Artifact,
    metadata_modules,
    mycnf_path,
    restore_artifacts,
)
from .util import ensure_dir, run, write_json
from .errors import ConfigError, TransferError

log = logging.getLogger(__name__)


def _dir(path: str) -> str:
    return path.rstrip("/") + "/"


def discover(cfg: Config, client: RemoteClient, address: str) -> ClusterTopology:
    """Read descriptor and release from a live node, then resolve every module."""
    desc = XmlDescriptor.from_string(
        client.read_file(address, posixpath.join(cfg.install_dir, DESCRIPTOR_REL_PATH))
    )
    release = read_release(
        client.read_file(address, posixpath.join(cfg.install_dir, VERSION_FILE_NAME))
    )
    topo = load_topology(desc, release, install_address=address)
    resolve_modules(topo, client)
    for line in describe(topo):
        log.debug(line)
    return topo


def load_backup_topology(backup_root: Path) -> ClusterTopology:
    root = Path(backup_root)
    desc_path = root / DESCRIPTOR_NAME
    version_path = root / VERSION_FILE_NAME
    if not desc_path.is_file() or not version_path.is_file():
        raise ConfigError(f"{root} is not a backup location (missing {DESCRIPTOR_NAME} or {VERSION_FILE_NAME})")
    return load_topology(XmlDescriptor.from_file(desc_path), read_release(version_path.read_text()))


class _Run:
    """Shared state for one run: config, client, dispatcher and the sleep used by progress."""

    def __init__(self, cfg: Config, client: RemoteClient, dispatcher: TransferDispatcher, sleep=time.sleep):
        self.cfg = cfg
        self.client = client
        self.dispatcher = dispatcher
        self.sleep = sleep

    def job(self, source: str, destination: str, label: str, link_dest: Optional[str] = None, size: int = 0) -> TransferJob:
        return TransferJob(
            source=source,
            destination=destination,
            label=label,
            link_dest=link_dest,
            dry_run=self.cfg.dry_run,
            expected_bytes=size,
        )

    def must(self, job: TransferJob) -> None:
        if not self.dispatcher.run_sync(job):
            raise TransferError(f"sync of {job.label} failed (rc={job.returncode})")

    def watcher(self, measure_for: Callable[[JobBatch], Callable[[], int]]):
        if self.cfg.dry_run:
            return None

        def watch(batch: JobBatch):
            ProgressMonitor(
                batch.expected_bytes,
                measure_for(batch),
                batch.done,
                interval=self.cfg.interval_sec,
                window=self.cfg.window,
                stall_limit=self.cfg.stall_limit,
                label=f"{len(batch)} job(s)",
                sleep=self.sleep,
            ).run()

        return watch


# ---------------------------------------------------------------- backup


def _link_dest(staged: Path) -> Optional[str]:
    return str(staged) if staged.exists() else None


def _backup_config(r: _Run, topo: ClusterTopology, active: str, root: Path) -> None:
    cfg, client = r.cfg, r.client
    dry = cfg.dry_run
    for name, rel in ((DESCRIPTOR_NAME, DESCRIPTOR_REL_PATH), (VERSION_FILE_NAME, VERSION_FILE_NAME)):
        staged = stage_artifact(root, name, dry=dry)
        r.must(
            r.job(
                client.remote_path(active, posixpath.join(cfg.install_dir, rel)),
                _dir(str(root)),
                name,
                _link_dest(staged.parent) if staged.exists() else None,
            )
        )
    staged_cnf = stage_artifact(root, CNF_DIR, dry=dry)
    for m in metadata_modules(topo):
        dest = root / CNF_DIR / m.name
        if not dry:
            ensure_dir(dest)
        r.must(
            r.job(
                client.remote_path(m.resolved_address, mycnf_path(cfg.install_dir)),
                _dir(str(dest)),
                f"{CNF_DIR}/{m.name}",
                _link_dest(staged_cnf / m.name),
            )
        )


def _backup_dbroots(r: _Run, artifacts: List[Artifact], root: Path, size=local_size) -> List[TransferJob]:
    jobs = []
    for a in artifacts:
        staged = stage_artifact(root, a.name, dry=r.cfg.dry_run)
        jobs.append(
            r.job(
                _dir(r.client.remote_path(a.module.resolved_address, a.node_path)),
                _dir(str(root / a.name)),
                a.name,
                _link_dest(staged),
                a.size,
            )
        )
    dests: Dict[int, Path] = {id(j): Path(j.destination) for j in jobs}

    def measure_for(batch: JobBatch):
        return lambda: sum(size(dests[id(j)]) for j in batch.jobs if dests[id(j)].exists())

    return dispatch_batches(r.dispatcher, jobs, r.cfg.concurrency, r.watcher(measure_for))


def _backup_metadata(r: _Run, artifacts: List[Artifact], root: Path) -> None:
    for a in artifacts:
        staged = stage_artifact(root, a.name, dry=r.cfg.dry_run)
        r.must(
            r.job(
                _dir(r.client.remote_path(a.module.resolved_address, a.node_path)),
                _dir(str(root / a.name)),
                a.name,
                _link_dest(staged),
                a.size,
            )
        )


def run_backup(
    cfg: Config,
    active_node: str,
    backup_root: Path,
    client: Optional[RemoteClient] = None,
    runner=run,
    free=local_free,
    size=local_size,
    sleep=time.sleep,
) -> int:
    started = time.time()
    backup_root = Path(backup_root)
    client = client or RemoteClient(cfg, runner)

    log.info("checking session to %s", active_node)
    client.check_session(active_node)

    log.info("reading cluster topology from %s", active_node)
    topo = discover(cfg, client, active_node)
    log.info(
        "system %s: %d PM, %d UM, %d DBRoot(s), release %s",
        topo.system_name, topo.pm_module_count, topo.um_module_count, topo.dbroot_count, topo.version,
    )

    log.info("checking disk space at %s", backup_root)
    plan: SpacePlan = plan_backup(topo, client, cfg.install_dir)
    check_backup_space(plan, backup_root, free)

    if not cfg.dry_run:
        ensure_dir(backup_root)
    rotate(backup_root, cfg.generations, dry=cfg.dry_run)

    dbroots = [a for a in plan.artifacts if a.dbroot_id is not None]
    stores = [a for a in plan.artifacts if a.dbroot_id is None]
    jobs: List[TransferJob] = []
    with TransferDispatcher(cfg, runner) as dispatcher:
        r = _Run(cfg, client, dispatcher, sleep)
        with suspended_writes(client, active_node, cfg.install_dir, dry=cfg.dry_run):
            log.info("backing up descriptor, version file and node configs")
            _backup_config(r, topo, active_node, backup_root)
            log.info("backing up %d DBRoot(s), %d at a time", len(dbroots), cfg.concurrency)
            jobs += _backup_dbroots(r, dbroots, backup_root, size)
            log.info("backing up %d metadata store(s)", len(stores))
            _backup_metadata(r, stores, backup_root)

    if not cfg.dry_run:
        write_json(
            backup_root / RUN_SUMMARY_NAME,
            {
                "finished_utc": datetime.now(timezone.utc).isoformat(),
                "duration_sec": round(time.time() - started, 2),
                "active_node": active_node,
                "system": topo.system_name,
                "release": str(topo.version),
                "generations": cfg.generations,
                "bytes_planned": plan.total,
                "artifacts": plan.sizes(),
                "jobs": [
                    {"label": j.label, "result": j.result.value, "returncode": j.returncode}
                    for j in jobs
                ],
            },
        )
    return 0


# ---------------------------------------------------------------- restore


def run_restore(
    cfg: Config,
    backup_root: Path,
    restore_node: str,
    client: Optional[RemoteClient] = None,
    runner=run,
    size=local_size,
    sleep=time.sleep,
) -> int:
    backup_root = Path(backup_root)
    client = client or RemoteClient(cfg, runner)

    log.info("reading backup topology from %s", backup_root)
    backup = load_backup_topology(backup_root)

    log.info("checking session to %s", restore_node)
    client.check_session(restore_node)

    log.info("reading cluster topology from %s", restore_node)
    target = discover(cfg, client, restore_node)

    log.info("verifying backup %s against target %s", backup.version, target.version)
    verify_consistency(backup, target, strict_addresses=cfg.strict_addresses)

    log.info("checking that cluster processes are stopped")
    check_processes_stopped(target, client)
    log.info("checking that restore targets are empty")
    check_targets_pristine(target, client, cfg.install_dir)

    log.info("checking disk space on target nodes")
    plan = plan_restore(restore_artifacts(backup, target, cfg.install_dir), backup_root, size)
    check_restore_space(plan, client)

    dbroots = [a for a in plan.artifacts if a.dbroot_id is not None]
    stores = [a for a in plan.artifacts if a.dbroot_id is None]
    with TransferDispatcher(cfg, runner) as dispatcher:
        r = _Run(cfg, client, dispatcher, sleep)
        jobs = []
        where: Dict[int, Artifact] = {}
        for a in dbroots:
            job = r.job(
                _dir(str(backup_root / a.name)),
                _dir(client.remote_path(a.module.resolved_address, a.node_path)),
                f"{a.name} -> {a.module.name}",
                size=a.size,
            )
            where[id(job)] = a
            jobs.append(job)

        def measure_for(batch: JobBatch):
            return lambda: sum(
                client.du_bytes(where[id(j)].module.resolved_address, where[id(j)].node_path, missing_ok=True)
                for j in batch.jobs
            )

        log.info("restoring %d DBRoot(s), %d at a time", len(dbroots), cfg.concurrency)
        dispatch_batches(dispatcher, jobs, cfg.concurrency, r.watcher(measure_for))
        log.info("restoring %d metadata store(s)", len(stores))
        for a in stores:
            r.must(
                r.job(
                    _dir(str(backup_root / a.name)),
                    _dir(client.remote_path(a.module.resolved_address, a.node_path)),
                    f"{a.name} -> {a.module.name}",
                    size=a.size,
                )
            )
    return 0
