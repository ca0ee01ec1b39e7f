"""Shared fixtures: throwaway template stores built under tmp_path."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest
import yaml

from inix.store import TemplateStore

SKELETON_NIX = """\
{ pkgs ? import <nixpkgs> { } }:

pkgs.mkShell {
  inputsFrom = [
{%- for input in inputs %}
    {{ input }}
{%- endfor %}
  ];

  packages = with pkgs; [
{%- for package in packages %}
    {{ package }}
{%- endfor %}
  ];
}
"""


def write_bundle(
    base: Path,
    name: str,
    *,
    packages: list[str] | None = None,
    inputs: list[str] | None = None,
    description: str = "",
    files: dict[str, str] | None = None,
    root_files: dict[str, str] | None = None,
) -> Path:
    bundle = base / name
    bundle.mkdir(parents=True)
    manifest = {"description": description, "packages": packages or [], "inputs": inputs or []}
    (bundle / "template.yaml").write_text(yaml.safe_dump(manifest), encoding="utf-8")
    for rel, content in (files or {}).items():
        path = bundle / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    for rel, content in (root_files or {}).items():
        path = bundle / "root" / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return bundle


@pytest.fixture
def skeleton_dir(tmp_path: Path) -> Path:
    skeleton = tmp_path / "skeleton"
    skeleton.mkdir()
    (skeleton / "shell.nix").write_text(SKELETON_NIX, encoding="utf-8")
    (skeleton / ".envrc").write_text("use nix\n", encoding="utf-8")
    return skeleton


@pytest.fixture
def templates_dir(tmp_path: Path) -> Path:
    base = tmp_path / "templates"
    write_bundle(
        base,
        "rust",
        packages=["rustc", "cargo"],
        inputs=["(import ./inix/rust/shell.nix { })"],
        description="Rust toolchain",
        files={"shell.nix": "{ pkgs ? import <nixpkgs> { } }: pkgs.mkShell { }\n"},
    )
    write_bundle(
        base,
        "node",
        packages=["nodejs", "cargo"],
        inputs=["(import ./inix/node/shell.nix { })"],
        description="Node.js",
        files={"shell.nix": "{ pkgs ? import <nixpkgs> { } }: pkgs.mkShell { }\n"},
    )
    return base


@pytest.fixture
def make_store(templates_dir: Path, skeleton_dir: Path) -> Callable[[], TemplateStore]:
    def _make() -> TemplateStore:
        return TemplateStore([templates_dir], [skeleton_dir])

    return _make


@pytest.fixture
def store(make_store: Callable[[], TemplateStore]) -> TemplateStore:
    return make_store()


@pytest.fixture
def destination(tmp_path: Path) -> Path:
    dest = tmp_path / "project"
    dest.mkdir()
    return dest


def snapshot(directory: Path) -> dict[str, bytes]:
    """Every file under directory, keyed by POSIX relative path."""
    return {
        p.relative_to(directory).as_posix(): p.read_bytes()
        for p in sorted(directory.rglob("*"))
        if p.is_file()
    }
