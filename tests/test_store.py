"""Unit tests for template loading."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest

from inix.store import (
    BUILTIN_TEMPLATES_DIR,
    TemplateError,
    TemplateStore,
    UnknownTemplateError,
    load_template,
)
from tests.conftest import write_bundle


class TestLoadTemplate:
    def test_reads_manifest_and_files(self, templates_dir: Path) -> None:
        template = load_template(templates_dir / "rust")

        assert template.name == "rust"
        assert template.description == "Rust toolchain"
        assert template.packages == ("rustc", "cargo")
        assert template.inputs == ("(import ./inix/rust/shell.nix { })",)
        assert list(template.files) == ["shell.nix"]
        assert "template.yaml" not in template.files
        assert template.root_files == {}

    def test_root_files_are_separate(self, tmp_path: Path) -> None:
        bundle = write_bundle(tmp_path, "web", root_files={".gitignore": "node_modules/\n"})
        template = load_template(bundle)

        assert template.root_files == {".gitignore": b"node_modules/\n"}
        assert template.files == {}

    def test_records_permission_bits(self, tmp_path: Path) -> None:
        bundle = write_bundle(
            tmp_path,
            "hook",
            files={"setup.sh": "#!/bin/sh\n", "shell.nix": "{ }\n"},
            root_files={"bin/dev": "#!/bin/sh\n"},
        )
        os.chmod(bundle / "setup.sh", 0o755)
        os.chmod(bundle / "shell.nix", 0o644)
        os.chmod(bundle / "root" / "bin" / "dev", 0o750)

        template = load_template(bundle)

        assert template.modes["setup.sh"] == 0o755
        assert template.modes["shell.nix"] == 0o644
        assert template.modes["root/bin/dev"] == 0o750

    def test_without_manifest(self, tmp_path: Path) -> None:
        bundle = tmp_path / "plain"
        bundle.mkdir()
        (bundle / "shell.nix").write_bytes(b"raw\x00bytes")

        template = load_template(bundle)
        assert template.packages == ()
        assert template.inputs == ()
        assert template.files == {"shell.nix": b"raw\x00bytes"}

    def test_manifest_must_be_mapping(self, tmp_path: Path) -> None:
        bundle = tmp_path / "bad"
        bundle.mkdir()
        (bundle / "template.yaml").write_text("- just\n- a list\n", encoding="utf-8")

        with pytest.raises(TemplateError, match="mapping"):
            load_template(bundle)

    def test_packages_must_be_a_list(self, tmp_path: Path) -> None:
        bundle = tmp_path / "bad"
        bundle.mkdir()
        (bundle / "template.yaml").write_text("packages: hello\n", encoding="utf-8")

        with pytest.raises(TemplateError, match="packages"):
            load_template(bundle)

    def test_nested_entries_rejected(self, tmp_path: Path) -> None:
        bundle = tmp_path / "bad"
        bundle.mkdir()
        (bundle / "template.yaml").write_text("inputs:\n  - {a: 1}\n", encoding="utf-8")

        with pytest.raises(TemplateError, match="inputs"):
            load_template(bundle)


class TestTemplateStore:
    def test_lists_templates(self, store: TemplateStore) -> None:
        assert store.list_templates() == {"rust", "node"}

    def test_get_template(self, store: TemplateStore) -> None:
        assert store.get_template("node").packages == ("nodejs", "cargo")

    def test_unknown_name(self, store: TemplateStore) -> None:
        with pytest.raises(UnknownTemplateError) as exc:
            store.get_template("haskell")
        assert exc.value.names == ("haskell",)
        assert "haskell" in str(exc.value)

    def test_get_templates_reports_every_unknown_name(self, store: TemplateStore) -> None:
        with pytest.raises(UnknownTemplateError) as exc:
            store.get_templates(["rust", "go", "zig"])
        assert exc.value.names == ("go", "zig")

    def test_earlier_path_takes_precedence(self, tmp_path: Path, templates_dir: Path, skeleton_dir: Path) -> None:
        user = tmp_path / "user"
        write_bundle(user, "rust", packages=["my-rust"])

        store = TemplateStore([user, templates_dir], [skeleton_dir])
        assert store.get_template("rust").packages == ("my-rust",)
        assert "node" in store.list_templates()

    def test_missing_search_path_is_skipped(self, tmp_path: Path, templates_dir: Path, skeleton_dir: Path) -> None:
        store = TemplateStore([tmp_path / "nope", templates_dir], [skeleton_dir])
        assert store.list_templates() == {"rust", "node"}

    def test_hidden_and_private_dirs_ignored(self, templates_dir: Path, skeleton_dir: Path) -> None:
        write_bundle(templates_dir, ".git")
        write_bundle(templates_dir, "_drafts")

        store = TemplateStore([templates_dir], [skeleton_dir])
        assert store.list_templates() == {"rust", "node"}

    def test_root_file_may_not_shadow_skeleton(self, templates_dir: Path, skeleton_dir: Path) -> None:
        write_bundle(templates_dir, "direnv", root_files={".envrc": "use flake\n"})

        store = TemplateStore([templates_dir], [skeleton_dir])

        assert store.list_templates() == {"rust", "node"}
        with pytest.raises(TemplateError, match=".envrc"):
            store.get_template("direnv")

    def test_root_file_may_not_write_into_inix_dir(self, templates_dir: Path, skeleton_dir: Path) -> None:
        write_bundle(templates_dir, "sneaky", root_files={"inix/rust/shell.nix": "x\n"})

        store = TemplateStore([templates_dir], [skeleton_dir])

        assert "sneaky" not in store.list_templates()
        with pytest.raises(TemplateError, match="inix/rust/shell.nix"):
            store.get_templates(["rust", "sneaky"])

    def test_broken_manifest_does_not_hide_other_templates(
        self, templates_dir: Path, skeleton_dir: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        broken = templates_dir / "broken"
        broken.mkdir()
        (broken / "template.yaml").write_text("packages: [unclosed\n", encoding="utf-8")

        with caplog.at_level(logging.WARNING, logger="inix.store"):
            store = TemplateStore([templates_dir], [skeleton_dir])

        assert store.list_templates() == {"rust", "node"}
        assert store.get_template("rust").packages == ("rustc", "cargo")
        assert "broken" in caplog.text
        with pytest.raises(TemplateError, match="invalid YAML"):
            store.get_template("broken")

    def test_broken_user_template_still_shadows_builtin(self, tmp_path: Path, templates_dir: Path, skeleton_dir: Path) -> None:
        user = tmp_path / "user"
        write_bundle(user, "rust", root_files={".envrc": "use flake\n"})

        store = TemplateStore([user, templates_dir], [skeleton_dir])

        assert store.list_templates() == {"node"}
        with pytest.raises(TemplateError, match=".envrc"):
            store.get_template("rust")

    def test_skeleton_required(self, tmp_path: Path, templates_dir: Path) -> None:
        with pytest.raises(TemplateError, match="skeleton"):
            TemplateStore([templates_dir], [tmp_path / "missing"])

    def test_first_existing_skeleton_dir_wins(self, tmp_path: Path, templates_dir: Path, skeleton_dir: Path) -> None:
        store = TemplateStore([templates_dir], [tmp_path / "missing", skeleton_dir])
        assert set(store.skeleton) == {"shell.nix", ".envrc"}


class TestBuiltinTemplates:
    def test_default_store_has_builtins(self) -> None:
        store = TemplateStore.default()
        assert {"rust", "node", "python"} <= store.list_templates()
        assert set(store.skeleton) == {"shell.nix", ".envrc"}

    @pytest.mark.parametrize("name", ["rust", "node", "python"])
    def test_builtins_have_description_and_inputs(self, name: str) -> None:
        template = load_template(BUILTIN_TEMPLATES_DIR / name)
        assert template.description
        assert template.inputs == (f"(import ./inix/{name}/shell.nix {{ }})",)
        assert "shell.nix" in template.files

    def test_user_dir_overlays_builtins(self, tmp_path: Path) -> None:
        write_bundle(tmp_path / "mine", "rust", packages=["custom"])

        store = TemplateStore.default(tmp_path / "mine")
        assert store.get_template("rust").packages == ("custom",)
        assert "python" in store.list_templates()
