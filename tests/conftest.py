"""
Pytest configuration and shared fixtures.
"""
import threading
from pathlib import Path

import pytest

from csbackup.remote import RemoteClient
from csbackup.types import Config

INSTALL = "/usr/local/mariadb/columnstore"


def make_descriptor(
    pm_dbroots=None,
    um_count=1,
    server_type="1",
    single=False,
    pm_has_um=False,
    dbroot_count=None,
    pm_addresses=None,
    um_addresses=None,
    secondary=None,
    system_name="columnstore-1",
):
    """Build a Columnstore.xml document. pm_dbroots maps PM module id -> DBRoot ids."""
    pm_dbroots = pm_dbroots or {1: [1, 2]}
    all_ids = sorted({i for ids in pm_dbroots.values() for i in ids})
    if dbroot_count is None:
        dbroot_count = len(all_ids)
    pm_addresses = pm_addresses or {m: f"10.0.0.{m}" for m in pm_dbroots}
    um_addresses = um_addresses or {m: f"10.0.1.{m}" for m in range(1, um_count + 1)}
    secondary = secondary or {}

    mods = [f"<ModuleCount2>{um_count}</ModuleCount2>", f"<ModuleCount3>{len(pm_dbroots)}</ModuleCount3>"]
    for m, ids in pm_dbroots.items():
        mods.append(f"<ModuleIPAddr{m}-1-3>{pm_addresses[m]}</ModuleIPAddr{m}-1-3>")
        mods.append(f"<ModuleHostName{m}-1-3>pm{m}-host</ModuleHostName{m}-1-3>")
        if ("pm", m) in secondary:
            mods.append(f"<ModuleIPAddr{m}-2-3>{secondary[('pm', m)]}</ModuleIPAddr{m}-2-3>")
        else:
            mods.append(f"<ModuleIPAddr{m}-2-3>0.0.0.0</ModuleIPAddr{m}-2-3>")
        mods.append(f"<ModuleDBRootCount{m}-3>{len(ids)}</ModuleDBRootCount{m}-3>")
        for slot, i in enumerate(ids, start=1):
            mods.append(f"<ModuleDBRootID{m}-{slot}-3>{i}</ModuleDBRootID{m}-{slot}-3>")
    for m in range(1, um_count + 1):
        mods.append(f"<ModuleIPAddr{m}-1-2>{um_addresses[m]}</ModuleIPAddr{m}-1-2>")
        mods.append(f"<ModuleHostName{m}-1-2>um{m}-host</ModuleHostName{m}-1-2>")
        if ("um", m) in secondary:
            mods.append(f"<ModuleIPAddr{m}-2-2>{secondary[('um', m)]}</ModuleIPAddr{m}-2-2>")

    dbroots = "".join(f"<DBRoot{i}>{INSTALL}/data{i}</DBRoot{i}>" for i in range(1, dbroot_count + 1))
    return f"""<Columnstore Version="V1.0.0">
  <SystemConfig>
    <SystemName>{system_name}</SystemName>
    <DBRootCount>{dbroot_count}</DBRootCount>
    {dbroots}
  </SystemConfig>
  <SystemModuleConfig>
    {''.join(mods)}
  </SystemModuleConfig>
  <Installation>
    <ServerTypeInstall>{server_type}</ServerTypeInstall>
    <PMwithUM>{'y' if pm_has_um else 'n'}</PMwithUM>
    <SingleServerInstall>{'y' if single else 'n'}</SingleServerInstall>
    <DBRootStorageType>internal</DBRootStorageType>
  </Installation>
</Columnstore>
"""


RELEASE = "version=1.2.5\nrelease=1\n"


class FakeClient(RemoteClient):
    """RemoteClient with canned answers instead of ssh."""

    def __init__(self, cfg, files=None, sizes=None, free=None, unreachable=(), procs=None,
                 subdirs=None, existing=(), exec_rc=None, mounts=None):
        super().__init__(cfg, runner=None)
        self.files = files or {}
        self.sizes = sizes or {}
        self.free = free or {}
        self.mounts = mounts or {}
        self.unreachable = set(unreachable)
        self.procs = procs or {}
        self.subdirs = subdirs or {}
        self.existing = set(existing)
        self.exec_rc = exec_rc or {}
        self.commands = []
        self.probed = []

    def exec(self, address, command):
        self.commands.append((address, command))
        for needle, rc in self.exec_rc.items():
            if needle in command:
                return rc, "boom"
        return 0, ""

    def reachable(self, address):
        self.probed.append(address)
        return address not in self.unreachable

    def read_file(self, address, path):
        return self.files[path]

    def du_bytes(self, address, path, missing_ok=False):
        return self.sizes.get((address, path), 0)

    def filesystem(self, address, path):
        mount = self.mounts.get((address, path), path)
        return mount, self.free.get((address, mount), 10**12)

    def processes(self, address):
        return set(self.procs.get(address, ()))

    def list_subdirs(self, address, path):
        return list(self.subdirs.get(address, ["mysql", "performance_schema", "calpontsys"]))

    def exists(self, address, path):
        return (address, path) in self.existing


class FakeRsync:
    """Stands in for util.run: records rsync argv, materializes local destinations."""

    def __init__(self, fail=(), delay=0.0):
        self.fail = set(fail)
        self.delay = delay
        self.calls = []
        self.lock = threading.Lock()
        self.active = 0
        self.peak = 0

    def __call__(self, cmd, capture=False, env=None, dry=False):
        with self.lock:
            self.calls.append(list(cmd))
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                threading.Event().wait(self.delay)
            source, dest = cmd[-2], cmd[-1]
            if any(f in source for f in self.fail):
                return 23, "rsync error: some files could not be transferred"
            if not dry and ":" not in dest:
                d = Path(dest)
                if source.endswith("/"):
                    d.mkdir(parents=True, exist_ok=True)
                    (d / "data").write_text(source)
                else:
                    d.mkdir(parents=True, exist_ok=True)
                    (d / Path(source.split(":", 1)[-1]).name).write_text(source)
            return 0, ""
        finally:
            with self.lock:
                self.active -= 1


@pytest.fixture
def cfg():
    return Config(install_dir=INSTALL, concurrency=4, generations=3, interval_sec=0.01)


def cluster_files(descriptor, release=RELEASE):
    return {
        f"{INSTALL}/etc/Columnstore.xml": descriptor,
        f"{INSTALL}/releasenum": release,
    }


@pytest.fixture
def no_sleep():
    return lambda seconds: None
