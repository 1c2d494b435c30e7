"""
csbackup package
- Backup and restore of a multi-node columnar database cluster through rsync over ssh.
"""
__all__ = [
    "cli",
    "config",
    "orchestrator",
    "topology",
    "resolver",
    "diskspace",
    "retention",
    "dispatcher",
    "syncer",
    "progress",
    "verifier",
    "safety",
    "suspend",
    "remote",
    "layout",
    "util",
    "types",
    "errors",
]
__version__ = "0.1.0"
