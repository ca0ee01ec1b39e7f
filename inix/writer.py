"""
writer.py

Responsibility: Apply a `ConflictPlan` to the destination directory.

Every entry is attempted. Failures are collected and reported together with the
entries that did succeed; nothing already written is rolled back.
"""

from __future__ import annotations

import logging
import os
import stat
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from inix.conflicts import Action, ConflictPlan, PlanEntry
from inix.store import INIX_DIR

logger = logging.getLogger(__name__)


class PartialWriteError(RuntimeError):
    def __init__(self, succeeded: list[str], failed: Mapping[str, OSError]) -> None:
        self.succeeded = list(succeeded)
        self.failed = dict(failed)
        lines = [f"{len(self.failed)} of {len(self.failed) + len(self.succeeded)} file(s) could not be written:"]
        lines += [f"- {path}: {err}" for path, err in self.failed.items()]
        if self.succeeded:
            lines += ["These were written and have not been rolled back:"]
            lines += [f"- {path}" for path in self.succeeded]
        super().__init__("\n".join(lines))


@dataclass
class CommitReport:
    written: list[str] = field(default_factory=list)
    backed_up: dict[str, str] = field(default_factory=dict)
    removed: list[str] = field(default_factory=list)


def _current_umask() -> int:
    old = os.umask(0)
    os.umask(old)
    return old


def _default_mode(path: Path) -> int:
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        return 0o666 & ~_current_umask()


def atomic_write_bytes(path: Path, data: bytes, mode: int | None = None) -> None:
    """
    Write data to path through a temp file in the same directory and `os.replace`.
    The temp file is removed if anything fails.

    The result gets `mode` when given, else the mode of the file it replaces, else
    the usual umask-derived mode of a new file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if mode is None:
        mode = _default_mode(path)
    fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(temp_name, mode)
        os.replace(temp_name, path)
    except BaseException:
        try:
            os.unlink(temp_name)
        except FileNotFoundError:
            pass
        raise


def _prune_empty_dirs(base: Path) -> None:
    if not base.is_dir():
        return
    for root, _dirs, _files in os.walk(base, topdown=False):
        root_path = Path(root)
        if root_path != base and not any(root_path.iterdir()):
            try:
                root_path.rmdir()
            except OSError:
                logger.debug("Could not remove directory %s", root_path)
                continue
            logger.debug("Removed empty directory %s", root_path)


def _apply(destination: Path, entry: PlanEntry, report: CommitReport) -> None:
    target = destination / entry.path

    if entry.action == Action.REMOVE:
        target.unlink()
        report.removed.append(entry.path)
        logger.info("Removed %s", target)
        return

    mode = entry.mode
    if entry.action == Action.BACKUP:
        if entry.backup_path is None:
            raise ValueError(f"Backup entry without a backup path: {entry.path}")
        backup = destination / entry.backup_path
        backup.parent.mkdir(parents=True, exist_ok=True)
        if mode is None:
            mode = stat.S_IMODE(target.stat().st_mode)
        os.replace(target, backup)
        report.backed_up[entry.path] = entry.backup_path
        logger.info("Moved %s to %s", target, backup)

    if entry.content is None:
        raise ValueError(f"Plan entry has no content to write: {entry.path}")
    atomic_write_bytes(target, entry.content, mode)
    report.written.append(entry.path)
    logger.info("Wrote %s", target)


def commit(destination_dir: str | Path, plan: ConflictPlan) -> CommitReport:
    """
    Apply every plan entry in order.

    Raises `PartialWriteError` if any entry failed; the error lists both sides.
    """
    destination = Path(destination_dir)
    try:
        destination.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise PartialWriteError([], {entry.path: e for entry in plan.entries}) from e

    report = CommitReport()
    succeeded: list[str] = []
    failed: dict[str, OSError] = {}

    for entry in plan.entries:
        try:
            _apply(destination, entry, report)
        except OSError as e:
            logger.error("Failed to apply %s for %s: %s", entry.action.value, entry.path, e)
            failed[entry.path] = e
            continue
        succeeded.append(entry.path)

    if report.removed:
        _prune_empty_dirs(destination / INIX_DIR)

    if failed:
        raise PartialWriteError(succeeded, failed)
    return report
