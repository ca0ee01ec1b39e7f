"""
inix package

This package implements Inix, a CLI that bootstraps a Nix development
environment by combining named templates.

Key responsibilities are split across modules:
- `store.py`: load template bundles and the skeleton from disk
- `renderer.py`: deterministic merge of selected templates into output files
- `conflicts.py`: classify existing files and plan what happens to them
- `writer.py`: apply a plan to the destination directory
- `config.py`: optional user configuration (YAML)
- `cli.py`: CLI entrypoint and orchestration (store -> render -> plan -> commit)
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
