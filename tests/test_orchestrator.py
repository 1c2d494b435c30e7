"""
End-to-end backup and restore flows with fake ssh and rsync.
"""
import json

import pytest

from conftest import INSTALL, FakeClient, FakeRsync, cluster_files, make_descriptor, RELEASE
from csbackup.errors import (
    ClusterRunningError,
    ConfigError,
    ConnectivityError,
    IncompatibleConfigError,
    InsufficientSpaceError,
    TargetNotPristineError,
    TransferError,
)
from csbackup.orchestrator import run_backup, run_restore
from csbackup.retention import list_generations

ACTIVE = "10.0.0.1"
DB = f"{INSTALL}/mysql/db"


def _suspends(client):
    return [c for _, c in client.commands if "DatabaseWrites" in c]


def _backup(cfg, root, client, rsync=None, free=10**12, sleep=lambda s: None):
    rsync = rsync or FakeRsync()
    rc = run_backup(cfg, ACTIVE, root, client=client, runner=rsync, free=lambda p: free,
                    size=lambda p: 0, sleep=sleep)
    return rc, rsync


def test_first_backup_of_small_cluster(cfg, tmp_path):
    cfg.generations = 1
    root = tmp_path / "bk"
    client = FakeClient(cfg, files=cluster_files(make_descriptor(pm_dbroots={1: [1, 2]}, um_count=1)))

    rc, rsync = _backup(cfg, root, client)

    assert rc == 0
    assert [g.index for g in list_generations(root)] == [1]
    assert list((root / "backup.1").iterdir()) == []
    assert sorted(p.name for p in root.iterdir()) == [
        "Columnstore.xml", "backup.1", "cnf", "last-run.json",
        "pm1dbroot1", "pm1dbroot2", "releasenum", "um1",
    ]
    assert (root / "cnf" / "um1" / "my.cnf").exists()
    assert (root / "um1" / "data").read_text() == f"root@10.0.1.1:{DB}/"
    assert len(rsync.calls) == 6
    assert not any(a.startswith("--link-dest") for call in rsync.calls for a in call)
    suspends = _suspends(client)
    assert suspends[0].endswith("suspendDatabaseWrites y")
    assert suspends[-1].endswith("resumeDatabaseWrites y")
    summary = json.loads((root / "last-run.json").read_text())
    assert summary["release"] == "1.2.5-1"
    assert {j["label"] for j in summary["jobs"]} == {"pm1dbroot1", "pm1dbroot2"}


def test_rerun_links_against_previous_generation(cfg, tmp_path):
    root = tmp_path / "bk"
    files = cluster_files(make_descriptor(pm_dbroots={1: [1, 2]}, um_count=1))
    _backup(cfg, root, FakeClient(cfg, files=files))

    rc, rsync = _backup(cfg, root, FakeClient(cfg, files=files))

    assert rc == 0
    assert [g.index for g in list_generations(root)] == [1, 2]
    gen1 = root / "backup.1"
    assert (gen1 / "pm1dbroot1" / "data").exists()
    assert (gen1 / "Columnstore.xml").exists()
    assert (root / "pm1dbroot1" / "data").exists()
    by_label = {c[-1]: c for c in rsync.calls}
    assert f"--link-dest={gen1}/pm1dbroot1" in by_label[f"{root}/pm1dbroot1/"]
    assert f"--link-dest={gen1}/um1" in by_label[f"{root}/um1/"]
    assert f"--link-dest={gen1}/cnf/um1" in by_label[f"{root}/cnf/um1/"]
    assert f"--link-dest={gen1}" in rsync.calls[0]


def test_insufficient_space_stops_before_rotation_and_suspend(cfg, tmp_path):
    root = tmp_path / "bk"
    (root / "backup.1").mkdir(parents=True)
    client = FakeClient(
        cfg,
        files=cluster_files(make_descriptor(pm_dbroots={1: [1]}, um_count=1)),
        sizes={(ACTIVE, f"{INSTALL}/data1"): 6, ("10.0.1.1", DB): 5},
    )
    with pytest.raises(InsufficientSpaceError) as exc:
        _backup(cfg, root, client, free=10)
    assert exc.value.exit_code == 3
    assert exc.value.required == 11 and exc.value.available == 10
    assert not (root / "backup.2").exists()
    assert _suspends(client) == []


def test_failed_dbroot_job_aborts_after_batch(cfg, tmp_path):
    cfg.concurrency = 5
    root = tmp_path / "bk"
    client = FakeClient(cfg, files=cluster_files(make_descriptor(pm_dbroots={1: [1, 2, 3, 4, 5]}, um_count=1)))
    rsync = FakeRsync(fail={"/data3/"})
    with pytest.raises(TransferError) as exc:
        _backup(cfg, root, client, rsync)
    assert exc.value.exit_code == 5
    dbroot_calls = [c for c in rsync.calls if "/data" in c[-2]]
    assert len(dbroot_calls) == 5
    # metadata store never started, writes were resumed anyway
    assert not (root / "um1").exists()
    assert _suspends(client)[-1].endswith("resumeDatabaseWrites y")


def test_unreachable_module_is_fatal_before_any_copy(cfg, tmp_path):
    root = tmp_path / "bk"
    client = FakeClient(
        cfg,
        files=cluster_files(make_descriptor(pm_dbroots={1: [1], 2: [2]})),
        unreachable={"10.0.0.2"},
    )
    with pytest.raises(ConnectivityError):
        _backup(cfg, root, client)
    assert not root.exists()


def test_dry_run_backup_changes_nothing(cfg, tmp_path, capsys):
    cfg.dry_run = True
    root = tmp_path / "bk"
    client = FakeClient(cfg, files=cluster_files(make_descriptor()))
    rc, rsync = _backup(cfg, root, client)
    assert rc == 0
    assert not root.exists()
    assert _suspends(client) == []
    assert len(rsync.calls) == 6
    assert "[dry-run]" in capsys.readouterr().out


def test_combined_install_layout(cfg, tmp_path):
    root = tmp_path / "bk"
    client = FakeClient(cfg, files=cluster_files(make_descriptor(pm_dbroots={1: [1], 2: [2]}, server_type="2")))
    rc, _ = _backup(cfg, root, client)
    assert rc == 0
    names = {p.name for p in root.iterdir()}
    assert {"pm1dbroot1", "pm2dbroot2", "pm1DB", "pm2DB"} <= names
    assert not any(n.startswith("um") for n in names)
    assert {p.name for p in (root / "cnf").iterdir()} == {"pm1", "pm2"}


# ---------------------------------------------------------------- restore


def _backup_location(tmp_path, descriptor, names, release=RELEASE):
    root = tmp_path / "bk"
    root.mkdir()
    (root / "Columnstore.xml").write_text(descriptor)
    (root / "releasenum").write_text(release)
    for n in names:
        (root / n).mkdir()
    return root


def _restore(cfg, root, client, rsync=None):
    rsync = rsync or FakeRsync()
    rc = run_restore(cfg, root, ACTIVE, client=client, runner=rsync, size=lambda p: 1, sleep=lambda s: None)
    return rc, rsync


def test_restore_pushes_every_tree(cfg, tmp_path):
    desc = make_descriptor(pm_dbroots={1: [1, 2]}, um_count=1)
    root = _backup_location(tmp_path, desc, ["pm1dbroot1", "pm1dbroot2", "um1"])
    client = FakeClient(cfg, files=cluster_files(desc))

    rc, rsync = _restore(cfg, root, client)

    assert rc == 0
    pairs = {(c[-2], c[-1]) for c in rsync.calls}
    assert pairs == {
        (f"{root}/pm1dbroot1/", f"root@{ACTIVE}:{INSTALL}/data1/"),
        (f"{root}/pm1dbroot2/", f"root@{ACTIVE}:{INSTALL}/data2/"),
        (f"{root}/um1/", f"root@10.0.1.1:{DB}/"),
    }
    assert _suspends(client) == []


def test_restore_refuses_dbroot_count_mismatch(cfg, tmp_path):
    backup_desc = make_descriptor(pm_dbroots={1: [1, 2], 2: [3, 4]})
    root = _backup_location(tmp_path, backup_desc, ["pm1dbroot1", "pm1dbroot2", "pm2dbroot3", "pm2dbroot4", "um1"])
    client = FakeClient(cfg, files=cluster_files(make_descriptor(pm_dbroots={1: [1], 2: [2]})))
    rsync = FakeRsync()
    with pytest.raises(IncompatibleConfigError) as exc:
        _restore(cfg, root, client, rsync)
    assert exc.value.exit_code == 4
    assert rsync.calls == []


def test_restore_refuses_other_release(cfg, tmp_path):
    desc = make_descriptor()
    root = _backup_location(tmp_path, desc, ["pm1dbroot1", "pm1dbroot2", "um1"], release="version=1.1.6\nrelease=1\n")
    client = FakeClient(cfg, files=cluster_files(desc))
    with pytest.raises(IncompatibleConfigError, match="version"):
        _restore(cfg, root, client)


def test_restore_refuses_running_cluster(cfg, tmp_path):
    desc = make_descriptor()
    root = _backup_location(tmp_path, desc, ["pm1dbroot1", "pm1dbroot2", "um1"])
    client = FakeClient(cfg, files=cluster_files(desc), procs={ACTIVE: {"controllernode"}})
    with pytest.raises(ClusterRunningError):
        _restore(cfg, root, client)


def test_restore_refuses_populated_target(cfg, tmp_path):
    desc = make_descriptor()
    root = _backup_location(tmp_path, desc, ["pm1dbroot1", "pm1dbroot2", "um1"])
    client = FakeClient(cfg, files=cluster_files(desc), subdirs={"10.0.1.1": ["mysql", "orders"]})
    with pytest.raises(TargetNotPristineError):
        _restore(cfg, root, client)


def test_restore_from_non_backup_directory(cfg, tmp_path):
    with pytest.raises(ConfigError, match="not a backup location"):
        _restore(cfg, tmp_path, FakeClient(cfg))


def test_restore_job_failure_is_fatal(cfg, tmp_path):
    desc = make_descriptor()
    root = _backup_location(tmp_path, desc, ["pm1dbroot1", "pm1dbroot2", "um1"])
    client = FakeClient(cfg, files=cluster_files(desc))
    with pytest.raises(TransferError):
        _restore(cfg, root, client, FakeRsync(fail={"pm1dbroot2"}))
