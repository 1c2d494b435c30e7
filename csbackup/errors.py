"""
errors.py
Failure taxonomy. Each error carries the process exit code the CLI maps it to:
  1 config/arguments, 2 missing tool, 3 space, 4 incompatible config,
  5 sync job failed, 6 target not pristine, 7 cluster running, 255 unreachable.
"""

from __future__ import annotations


class CSBackupError(Exception):
    exit_code = 1


class ConfigError(CSBackupError):
    exit_code = 1


class MissingToolError(CSBackupError):
    exit_code = 2


class InsufficientSpaceError(CSBackupError):
    exit_code = 3

    def __init__(self, where: str, required: int, available: int):
        self.where = where
        self.required = required
        self.available = available
        super().__init__(
            f"insufficient disk space at {where}: required {required} bytes, available {available} bytes"
        )


class IncompatibleConfigError(CSBackupError):
    exit_code = 4


class TransferError(CSBackupError):
    exit_code = 5


class TargetNotPristineError(CSBackupError):
    exit_code = 6


class ClusterRunningError(CSBackupError):
    exit_code = 7


class ConnectivityError(CSBackupError):
    exit_code = 255
