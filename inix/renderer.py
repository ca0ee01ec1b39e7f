"""
renderer.py

Responsibility: Deterministically merge a selection of templates into output files.

Rules:
- Selection names are deduplicated, first occurrence wins.
- Package and input lists are concatenated in selection order, caller extras last.
  Entries are never deduplicated.
- Skeleton files with Jinja2 markers are rendered with the merged lists; other
  skeleton files are copied exactly.
- Each template's own files land under `inix/<name>/`, byte-for-byte.
- Template files keep the permission bits of their source; skeleton output has none
  recorded and is written with the default mode.
- Root files come from the first template defining them; differing content from a
  later template is a conflict, never silently resolved.

This module intentionally does NOT touch the destination directory.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from jinja2 import Environment, StrictUndefined, TemplateError as JinjaTemplateError

from inix.store import INIX_DIR, ROOT_FILES_DIR, TemplateStore

logger = logging.getLogger(__name__)

_MARKERS = ("{{", "{%", "{#")


class RenderError(RuntimeError):
    pass


class ConflictingAuxFileError(RenderError):
    def __init__(self, path: str, templates: Sequence[str]) -> None:
        self.path = path
        self.templates = tuple(templates)
        super().__init__(
            f"Templates {', '.join(repr(t) for t in self.templates)} define {path!r} with different content. "
            "Select only one of them."
        )


@dataclass(frozen=True)
class RenderResult:
    selection: tuple[str, ...]
    files: Mapping[str, bytes] = field(default_factory=dict)
    packages: tuple[str, ...] = ()
    inputs: tuple[str, ...] = ()
    modes: Mapping[str, int] = field(default_factory=dict)


def dedupe_selection(selection: Iterable[str]) -> tuple[str, ...]:
    """Drop repeated names, keeping the first occurrence."""
    return tuple(dict.fromkeys(selection))


def _environment() -> Environment:
    return Environment(
        autoescape=False,
        undefined=StrictUndefined,
        keep_trailing_newline=True,
    )


def render(
    store: TemplateStore,
    selection: Iterable[str],
    extra_packages: Iterable[str] = (),
    extra_inputs: Iterable[str] = (),
) -> RenderResult:
    """
    Merge the selected templates with the store's skeleton.

    Raises `UnknownTemplateError` if any name is missing from the store and
    `ConflictingAuxFileError` if two templates disagree on a root file.
    """
    names = dedupe_selection(selection)
    templates = store.get_templates(names)

    packages: list[str] = []
    inputs: list[str] = []
    for template in templates:
        packages.extend(template.packages)
        inputs.extend(template.inputs)
    packages.extend(extra_packages)
    inputs.extend(extra_inputs)

    context = {
        "packages": list(packages),
        "inputs": list(inputs),
        "templates": list(names),
    }
    logger.debug(
        "Rendering %d template(s) with %d package(s) and %d input(s)",
        len(names),
        len(packages),
        len(inputs),
    )

    files: dict[str, bytes] = {}
    env = _environment()
    for rel, text in store.skeleton.items():
        if any(m in text for m in _MARKERS):
            try:
                out = env.from_string(text).render(**context)
            except JinjaTemplateError as e:
                raise RenderError(f"Failed rendering skeleton file: {rel}") from e
            files[rel] = out.encode("utf-8")
        else:
            files[rel] = text.encode("utf-8")

    modes: dict[str, int] = {}
    owners: dict[str, str] = {}
    for template in templates:
        for rel, content in template.files.items():
            out_path = f"{INIX_DIR}/{template.name}/{rel}"
            files[out_path] = content
            if rel in template.modes:
                modes[out_path] = template.modes[rel]
        for rel, content in template.root_files.items():
            if rel in owners:
                if files[rel] != content:
                    raise ConflictingAuxFileError(rel, [owners[rel], template.name])
                continue
            owners[rel] = template.name
            files[rel] = content
            source_mode = template.modes.get(f"{ROOT_FILES_DIR}/{rel}")
            if source_mode is not None:
                modes[rel] = source_mode

    return RenderResult(
        selection=names,
        files=dict(sorted(files.items())),
        packages=tuple(packages),
        inputs=tuple(inputs),
        modes=dict(sorted(modes.items())),
    )
