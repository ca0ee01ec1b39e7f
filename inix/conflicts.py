"""
conflicts.py

Responsibility: Decide what happens to every file a render would produce, given
what already exists in the destination directory and the chosen policy.

Each output path is classified on its own. Planning reads the destination but
never modifies it; the writer applies the resulting plan.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath

from inix.renderer import RenderResult
from inix.store import INIX_DIR

logger = logging.getLogger(__name__)

BACKUP_DIR = ".inix-backups"


class UserCancelled(RuntimeError):
    def __init__(self, message: str = "The operation was cancelled.") -> None:
        super().__init__(message)


class Policy(str, Enum):
    """What to do with files that already exist in the destination."""

    OVERWRITE = "overwrite"
    MERGE_KEEP = "merge-keep"
    MERGE_OVERWRITE = "merge-overwrite"
    CANCEL = "cancel"

    @property
    def description(self) -> str:
        descriptions: dict[Policy, str] = {
            Policy.OVERWRITE: "Replace existing files and clear out any other templates in the inix directory.",
            Policy.MERGE_KEEP: f"Move existing files to a new backup generation in {BACKUP_DIR}/, then write.",
            Policy.MERGE_OVERWRITE: "Replace existing files, leaving everything else untouched.",
            Policy.CANCEL: "Stop without writing any files.",
        }
        return descriptions[self]


class Action(str, Enum):
    WRITE = "write"
    OVERWRITE = "overwrite"
    BACKUP = "backup"
    REMOVE = "remove"


@dataclass(frozen=True)
class PlanEntry:
    path: str
    action: Action
    content: bytes | None = None
    backup_path: str | None = None
    mode: int | None = None

    def describe(self) -> str:
        if self.action == Action.BACKUP:
            return f"{self.path} (existing file moved to {self.backup_path})"
        return self.path


@dataclass(frozen=True)
class ConflictPlan:
    policy: Policy
    entries: tuple[PlanEntry, ...]
    generation: int | None = None

    @property
    def paths(self) -> list[str]:
        return [e.path for e in self.entries]


@dataclass(frozen=True)
class Conflicts:
    """Rendered paths that already exist, and inix-directory files the render would not produce."""

    existing: tuple[str, ...] = ()
    stale: tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.existing or self.stale)


def _check_relative(path: str) -> None:
    pure = PurePosixPath(path)
    if pure.is_absolute() or ".." in pure.parts or not pure.parts:
        raise ValueError(f"Output path escapes the destination directory: {path!r}")


def next_generation(backup_dir: str | Path) -> int:
    """
    Return one more than the highest numbered generation in backup_dir (1 if none).
    """
    base = Path(backup_dir)
    if not base.is_dir():
        return 1
    generations = [int(p.name) for p in base.iterdir() if p.is_dir() and p.name.isascii() and p.name.isdigit()]
    return max(generations, default=0) + 1


def _stale_inix_files(destination: Path, render_result: RenderResult) -> list[str]:
    inix_dir = destination / INIX_DIR
    if not inix_dir.is_dir():
        return []
    stale: list[str] = []
    for root, _dirs, filenames in os.walk(inix_dir):
        for name in filenames:
            rel = (Path(root) / name).relative_to(destination).as_posix()
            if rel not in render_result.files:
                stale.append(rel)
    return sorted(stale)


def find_conflicts(destination_dir: str | Path, render_result: RenderResult) -> Conflicts:
    destination = Path(destination_dir)
    existing = tuple(p for p in render_result.files if os.path.lexists(destination / p))
    return Conflicts(existing=existing, stale=tuple(_stale_inix_files(destination, render_result)))


def plan(destination_dir: str | Path, render_result: RenderResult, policy: Policy) -> ConflictPlan:
    """
    Build the plan for writing render_result into destination_dir.

    Raises `UserCancelled` for the cancel policy before looking at the disk.
    REMOVE entries (overwrite policy only) come first, then one entry per rendered path.
    """
    policy = Policy(policy)
    if policy == Policy.CANCEL:
        raise UserCancelled()

    destination = Path(destination_dir)
    for path in render_result.files:
        _check_relative(path)

    entries: list[PlanEntry] = []
    if policy == Policy.OVERWRITE:
        entries += [PlanEntry(p, Action.REMOVE) for p in _stale_inix_files(destination, render_result)]

    generation: int | None = None
    for path, content in render_result.files.items():
        mode = render_result.modes.get(path)
        if not os.path.lexists(destination / path):
            entries.append(PlanEntry(path, Action.WRITE, content, mode=mode))
        elif policy == Policy.MERGE_KEEP:
            if generation is None:
                generation = next_generation(destination / BACKUP_DIR)
            backup_path = f"{BACKUP_DIR}/{generation}/{path}"
            entries.append(PlanEntry(path, Action.BACKUP, content, backup_path, mode))
        else:
            entries.append(PlanEntry(path, Action.OVERWRITE, content, mode=mode))

    logger.debug(
        "Planned %d entries for %s with policy %s (generation %s)",
        len(entries),
        destination,
        policy.value,
        generation,
    )
    return ConflictPlan(policy=policy, entries=tuple(entries), generation=generation)
