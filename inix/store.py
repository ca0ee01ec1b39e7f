"""
store.py

Responsibility: Load template bundles and the skeleton from disk into immutable values.

Bundle layout (one directory per template, named after the template):
- `template.yaml`: optional manifest with `description`, `packages` and `inputs`
- `root/...`: auxiliary files written verbatim to the destination root
- anything else: the template's own files, written verbatim under `inix/<name>/`

Bundles are read once when the store is built. File contents are never
interpreted; only the manifest is parsed.
"""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml

logger = logging.getLogger(__name__)

BUILTIN_DATA_DIR = Path(__file__).resolve().parent / "data"
BUILTIN_TEMPLATES_DIR = BUILTIN_DATA_DIR / "templates"
BUILTIN_SKELETON_DIR = BUILTIN_DATA_DIR / "skeleton"

MANIFEST_NAME = "template.yaml"
ROOT_FILES_DIR = "root"
INIX_DIR = "inix"


class TemplateError(ValueError):
    pass


class UnknownTemplateError(TemplateError, LookupError):
    def __init__(self, names: Iterable[str], search_paths: Iterable[Path] = ()) -> None:
        self.names = tuple(names)
        self.search_paths = tuple(search_paths)
        lines = ["I couldn't find these templates:"]
        lines += [f"- {n}" for n in self.names]
        if self.search_paths:
            lines += ["", "I looked in these places:"]
            lines += [f"- {p}" for p in self.search_paths]
        super().__init__("\n".join(lines))


@dataclass(frozen=True)
class Template:
    """A named bundle of opaque files plus the entries it contributes to the descriptor."""

    name: str
    description: str = ""
    packages: tuple[str, ...] = ()
    inputs: tuple[str, ...] = ()
    files: Mapping[str, bytes] = field(default_factory=dict)
    root_files: Mapping[str, bytes] = field(default_factory=dict)
    # permission bits keyed by bundle-relative path (root files under `root/`)
    modes: Mapping[str, int] = field(default_factory=dict)


def _iter_files(base_dir: Path) -> list[Path]:
    """
    Return all files under base_dir in deterministic order (POSIX relative path).
    """
    files: list[Path] = []
    for root, _dirs, filenames in os.walk(base_dir):
        root_path = Path(root)
        for name in filenames:
            files.append(root_path / name)
    files.sort(key=lambda p: p.relative_to(base_dir).as_posix())
    return files


def _string_list(data: Mapping[str, Any], key: str, source: Path) -> tuple[str, ...]:
    raw = data.get(key)
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise TemplateError(f"{source}: `{key}` must be a list of strings.")
    out: list[str] = []
    for item in raw:
        if isinstance(item, (dict, list)) or item is None:
            raise TemplateError(f"{source}: every entry of `{key}` must be a string, got {item!r}.")
        out.append(str(item))
    return tuple(out)


def _parse_manifest(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise TemplateError(f"{path}: invalid YAML: {e}") from e
    if not isinstance(data, dict):
        raise TemplateError(f"{path}: the manifest must be a mapping at the top level.")
    return data


def load_template(bundle_dir: str | Path, name: str | None = None) -> Template:
    """
    Load one bundle directory into a `Template`.

    The template name defaults to the directory name.
    """
    bundle = Path(bundle_dir)
    if not bundle.is_dir():
        raise TemplateError(f"Template bundle is not a directory: {bundle}")

    manifest_path = bundle / MANIFEST_NAME
    data = _parse_manifest(manifest_path) if manifest_path.is_file() else {}

    files: dict[str, bytes] = {}
    root_files: dict[str, bytes] = {}
    modes: dict[str, int] = {}
    for src in _iter_files(bundle):
        rel = src.relative_to(bundle)
        if rel.as_posix() == MANIFEST_NAME:
            continue
        if rel.parts[0] == ROOT_FILES_DIR and len(rel.parts) > 1:
            key = Path(*rel.parts[1:]).as_posix()
            root_files[key] = src.read_bytes()
            modes[f"{ROOT_FILES_DIR}/{key}"] = stat.S_IMODE(src.stat().st_mode)
        else:
            files[rel.as_posix()] = src.read_bytes()
            modes[rel.as_posix()] = stat.S_IMODE(src.stat().st_mode)

    return Template(
        name=name or bundle.name,
        description=str(data.get("description") or "").strip(),
        packages=_string_list(data, "packages", manifest_path),
        inputs=_string_list(data, "inputs", manifest_path),
        files=files,
        root_files=root_files,
        modes=modes,
    )


def load_skeleton(skeleton_dir: str | Path) -> dict[str, str]:
    """Read every skeleton file as UTF-8 text, keyed by POSIX relative path."""
    base = Path(skeleton_dir)
    out: dict[str, str] = {}
    for src in _iter_files(base):
        rel = src.relative_to(base).as_posix()
        try:
            out[rel] = src.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise TemplateError(f"Skeleton file is not valid UTF-8: {src}") from e
    return out


class TemplateStore:
    """
    Read-only collection of templates.

    `search_paths` are template directories in priority order: a name found in an
    earlier path hides the same name in later ones. The skeleton comes from the
    first existing directory in `skeleton_dirs`.

    A bundle that fails to load is logged and kept aside under its name; the error
    is raised only when that template is selected.
    """

    def __init__(
        self,
        search_paths: Iterable[str | Path],
        skeleton_dirs: Iterable[str | Path] = (BUILTIN_SKELETON_DIR,),
    ) -> None:
        self.search_paths = tuple(Path(p) for p in search_paths)
        self._templates: dict[str, Template] = {}
        self._invalid: dict[str, TemplateError] = {}

        self.skeleton_dir = self._find_skeleton_dir(skeleton_dirs)
        self.skeleton = load_skeleton(self.skeleton_dir)
        if not self.skeleton:
            raise TemplateError(f"Skeleton directory is empty: {self.skeleton_dir}")

        for location in self.search_paths:
            if not location.exists():
                logger.debug("Template directory %s does not exist, skipping", location)
                continue
            if not location.is_dir():
                logger.warning("Template location %s is not a directory, skipping", location)
                continue
            for child in sorted(location.iterdir(), key=lambda p: p.name):
                if not child.is_dir() or child.name.startswith((".", "_")):
                    continue
                if child.name in self._templates or child.name in self._invalid:
                    logger.debug("Template %r in %s is shadowed, skipping", child.name, location)
                    continue
                try:
                    template = load_template(child)
                    self._check_root_files(template)
                except TemplateError as e:
                    logger.warning("Skipping template %r: %s", child.name, e)
                    self._invalid[child.name] = e
                    continue
                self._templates[child.name] = template
                logger.debug("Loaded template %r from %s", child.name, child)

    def _check_root_files(self, template: Template) -> None:
        clash = sorted(
            rel
            for rel in template.root_files
            if rel in self.skeleton or rel.split("/", 1)[0] == INIX_DIR
        )
        if clash:
            raise TemplateError(
                f"Template {template.name!r} defines root files owned by inix itself: {', '.join(clash)}"
            )

    @staticmethod
    def _find_skeleton_dir(skeleton_dirs: Iterable[str | Path]) -> Path:
        candidates = [Path(p) for p in skeleton_dirs]
        for candidate in candidates:
            if candidate.is_dir():
                return candidate
        raise TemplateError(
            "No skeleton directory found. Looked in: " + ", ".join(str(c) for c in candidates)
        )

    @classmethod
    def default(
        cls,
        user_templates_dir: str | Path | None = None,
        user_skeleton_dir: str | Path | None = None,
    ) -> "TemplateStore":
        """Builtin templates, overlaid by the user's own directories when given."""
        search_paths: list[Path] = []
        skeleton_dirs: list[Path] = []
        if user_templates_dir is not None:
            search_paths.append(Path(user_templates_dir))
        if user_skeleton_dir is not None:
            skeleton_dirs.append(Path(user_skeleton_dir))
        search_paths.append(BUILTIN_TEMPLATES_DIR)
        skeleton_dirs.append(BUILTIN_SKELETON_DIR)
        return cls(search_paths, skeleton_dirs)

    def list_templates(self) -> set[str]:
        return set(self._templates)

    def get_template(self, name: str) -> Template:
        return self.get_templates([name])[0]

    def get_templates(self, names: Iterable[str]) -> list[Template]:
        """
        Resolve several names at once, reporting every unknown name together.

        A selected template whose bundle failed to load raises its load error.
        """
        names = list(names)
        missing = [n for n in names if n not in self._templates and n not in self._invalid]
        if missing:
            raise UnknownTemplateError(missing, self.search_paths)
        for n in names:
            if n in self._invalid:
                raise self._invalid[n]
        return [self._templates[n] for n in names]
