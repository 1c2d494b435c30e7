"""
retention.py
Incremental generations at the backup location (backup.1 newest .. backup.N oldest).

rotate():
  backup.N is set aside, backup.i -> backup.i+1 for i = N-1..1, an empty backup.1
  is created, and only then is the old backup.N deleted. If any rename fails the
  completed renames are undone, so the layout is never left half-rotated.
stage_artifact():
  moves a top-level artifact into backup.1; its new location is the link-dest
  reference for the fresh copy, so unchanged files become hard links.
"""

from __future__ import annotations
import logging, re, shutil
from pathlib import Path
from typing import List, Optional
from .types import BackupGeneration
from .layout import generation_name, GENERATION_PREFIX
from .errors import CSBackupError

log = logging.getLogger(__name__)

_GEN_RE = re.compile(r"^" + re.escape(GENERATION_PREFIX) + r"(\d+)$")


def list_generations(root: Path) -> List[BackupGeneration]:
    root = Path(root)
    if not root.is_dir():
        return []
    gens = []
    for p in root.iterdir():
        m = _GEN_RE.match(p.name)
        if m and p.is_dir():
            gens.append(BackupGeneration(int(m.group(1)), p))
    return sorted(gens, key=lambda g: g.index)


def rotate(root: Path, generations: int, dry: bool = False) -> BackupGeneration:
    root = Path(root)
    newest = root / generation_name(1)
    if dry:
        print(f"[dry-run] rotate {generations} generation(s) under {root}")
        return BackupGeneration(1, newest)

    stray = [g for g in list_generations(root) if g.index > generations]
    if stray:
        log.warning(
            "generation(s) beyond the configured %d are left untouched: %s",
            generations,
            ", ".join(g.path.name for g in stray),
        )

    oldest = root / generation_name(generations)
    scratch: Optional[Path] = None
    done: List[tuple[Path, Path]] = []
    try:
        if oldest.exists():
            scratch = root / f".{oldest.name}.discard"
            if scratch.exists():
                shutil.rmtree(scratch)
            oldest.rename(scratch)
            done.append((oldest, scratch))
        for i in range(generations - 1, 0, -1):
            src = root / generation_name(i)
            if src.exists():
                dst = root / generation_name(i + 1)
                src.rename(dst)
                done.append((src, dst))
        newest.mkdir()
    except OSError as e:
        for src, dst in reversed(done):
            dst.rename(src)
        raise CSBackupError(f"generation rotation failed under {root}: {e}")

    if scratch is not None:
        shutil.rmtree(scratch)
    log.info("rotated generations under %s (keeping %d)", root, generations)
    return BackupGeneration(1, newest)


def stage_artifact(root: Path, name: str, dry: bool = False) -> Path:
    """Move root/<name> into backup.1/<name>; returns that generation-1 path."""
    root = Path(root)
    top = root / name
    staged = root / generation_name(1) / name
    if dry:
        if top.exists():
            print(f"[dry-run] mv {top} {staged}")
        return staged
    if top.exists() or top.is_symlink():
        staged.parent.mkdir(parents=True, exist_ok=True)
        top.rename(staged)
        log.debug("staged %s into %s", name, staged.parent)
    return staged
