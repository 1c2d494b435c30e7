"""
suspend.py
Write suspension around the backup copy phase. suspended_writes() is a context
manager: writes are resumed on every way out of the block, including errors.
"""

from __future__ import annotations
import logging, posixpath
from contextlib import contextmanager
from .remote import RemoteClient
from .errors import CSBackupError

log = logging.getLogger(__name__)


def admin_cmd(install_dir: str, action: str) -> str:
    return f"{posixpath.join(install_dir, 'bin', 'mcsadmin')} {action} y"


def suspend_writes(client: RemoteClient, address: str, install_dir: str) -> None:
    rc, out = client.exec(address, admin_cmd(install_dir, "suspendDatabaseWrites"))
    if rc != 0:
        raise CSBackupError(f"suspend writes failed on {address}: {out.strip() or f'rc={rc}'}")
    log.info("database writes suspended on %s", address)


def resume_writes(client: RemoteClient, address: str, install_dir: str) -> bool:
    rc, out = client.exec(address, admin_cmd(install_dir, "resumeDatabaseWrites"))
    if rc != 0:
        log.error("resume writes failed on %s: %s", address, out.strip() or f"rc={rc}")
        return False
    log.info("database writes resumed on %s", address)
    return True


@contextmanager
def suspended_writes(client: RemoteClient, address: str, install_dir: str, dry: bool = False):
    if dry:
        print(f"[dry-run] {admin_cmd(install_dir, 'suspendDatabaseWrites')} on {address}")
        yield
        print(f"[dry-run] {admin_cmd(install_dir, 'resumeDatabaseWrites')} on {address}")
        return
    suspend_writes(client, address, install_dir)
    try:
        yield
    except BaseException:
        resume_writes(client, address, install_dir)
        raise
    if not resume_writes(client, address, install_dir):
        raise CSBackupError(
            f"writes are still suspended on {address}; run "
            f"'{admin_cmd(install_dir, 'resumeDatabaseWrites')}' there"
        )
