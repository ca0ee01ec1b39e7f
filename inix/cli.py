"""
cli.py

Responsibility: CLI entrypoint for Inix.

High-level flow:
1) Load user config and the template store
2) Render the selected templates -> `RenderResult`
3) Pick a conflict policy (flag, config, or interactive prompt)
4) Plan -> commit (or print the plan for --dry-run)
5) (Optional) `direnv allow`

This module should orchestrate behavior but keep concerns isolated:
- Template loading: `store.py`
- Rendering: `renderer.py`
- Conflict planning: `conflicts.py`
- File writes: `writer.py`
"""

from __future__ import annotations

import argparse
import logging
import subprocess
import sys
from pathlib import Path

from rich.console import Console
from simple_term_menu import TerminalMenu

from inix import __version__
from inix.config import ConfigError, load_config
from inix.conflicts import Action, ConflictPlan, Conflicts, Policy, UserCancelled, find_conflicts, plan
from inix.renderer import ConflictingAuxFileError, RenderError, render
from inix.store import TemplateError, TemplateStore, UnknownTemplateError
from inix.writer import CommitReport, PartialWriteError, commit

logger = logging.getLogger(__name__)

_console = Console()

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_UNKNOWN_TEMPLATE = 3
EXIT_CONFLICTING_AUX_FILE = 4
EXIT_CANCELLED = 5
EXIT_PARTIAL_WRITE = 6


class CLIError(RuntimeError):
    pass


def _run(cmd: list[str], *, cwd: Path) -> None:
    """
    Run a subprocess command, raising a CLIError on failure.
    """
    try:
        subprocess.run(cmd, cwd=str(cwd), check=True, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
    except FileNotFoundError as e:
        raise CLIError(f"Command not found: {cmd[0]}") from e
    except subprocess.CalledProcessError as e:
        raise CLIError(f"Command failed: {' '.join(cmd)}\n\n{e.stdout}") from e


def _target_dir(directory: str | None) -> Path:
    if directory is None:
        return Path.cwd()
    path = Path(directory).expanduser()
    if path.exists() and not path.is_dir():
        raise CLIError(f'"{path}" is not a directory, so I cannot place any files there.')
    return path


def _interactive() -> bool:
    return sys.stdin.isatty()


def _conflict_description(destination: Path, conflicts: Conflicts) -> str:
    lines: list[str] = []
    if conflicts.existing:
        lines.append(f'These files already exist in "{destination}":')
        lines += [f"- {p}" for p in conflicts.existing]
    if conflicts.stale:
        lines.append(f'The inix directory in "{destination}" also holds files from other templates:')
        lines += [f"- {p}" for p in conflicts.stale]
    return "\n".join(lines)


def _prompt_options(conflicts: Conflicts) -> list[Policy]:
    if not conflicts.existing:
        return [Policy.MERGE_OVERWRITE, Policy.OVERWRITE, Policy.CANCEL]
    return [Policy.OVERWRITE, Policy.MERGE_OVERWRITE, Policy.MERGE_KEEP, Policy.CANCEL]


def prompt_for_policy(destination: Path, conflicts: Conflicts) -> Policy:
    """
    Ask which policy to apply with a terminal menu. Esc or Ctrl-C cancels.
    """
    options = _prompt_options(conflicts)
    labels = [f"{policy.value}: {policy.description}" for policy in options]

    _console.print()
    _console.print(_conflict_description(destination, conflicts), markup=False, highlight=False)
    _console.print()
    _console.print("[bold cyan]◆[/]  How would you like to proceed?")
    _console.print("[dim]│[/]")

    menu = TerminalMenu(
        labels,
        menu_cursor="│  ● ",
        menu_cursor_style=("fg_cyan", "bold"),
        menu_highlight_style=("fg_cyan",),
    )
    raw_index = menu.show()

    if raw_index is None:
        _console.print("[bold red]■[/]  Understood. I'll cancel the operation.")
        return Policy.CANCEL

    choice = options[int(raw_index)]
    _console.print(f"[bold green]◇[/]  {choice.value}", highlight=False)
    return choice


def _print_templates(store: TemplateStore) -> None:
    names = sorted(store.list_templates())
    if not names:
        print("No templates available.")
        return
    width = max(len(n) for n in names)
    print("Available templates:")
    for name in names:
        description = store.get_template(name).description
        print(f"  {name:<{width}}  {description}".rstrip())


def _print_plan(destination: Path, the_plan: ConflictPlan) -> None:
    print("So here's the plan:")
    print(f'Destination: "{destination}" (policy: {the_plan.policy.value})')
    labels = {
        Action.REMOVE: "remove",
        Action.WRITE: "create",
        Action.OVERWRITE: "overwrite",
        Action.BACKUP: "back up and replace",
    }
    for entry in the_plan.entries:
        print(f"  {labels[entry.action]:<20} {entry.describe()}")
    if the_plan.generation is not None:
        print(f"Existing files will be kept in backup generation {the_plan.generation}.")


def _print_report(destination: Path, report: CommitReport) -> None:
    for path in report.removed:
        print(f"  removed  {path}")
    for path in report.written:
        backup = report.backed_up.get(path)
        suffix = f" (previous version in {backup})" if backup else ""
        print(f"  wrote    {path}{suffix}")
    print(f'Done! Your environment is ready in "{destination}".')


def init_cmd(args: argparse.Namespace) -> int:
    config = load_config(args.config)

    templates_dir = Path(args.templates_dir) if args.templates_dir else config.templates_dir
    store = TemplateStore.default(templates_dir, config.skeleton_dir)

    if args.list:
        _print_templates(store)
        return EXIT_OK

    destination = _target_dir(args.directory)

    result = render(
        store,
        args.templates,
        extra_packages=[*config.packages, *args.packages],
        extra_inputs=[*config.inputs, *args.inputs],
    )

    policy = args.on_conflict or config.on_conflict
    if policy is None:
        conflicts = find_conflicts(destination, result)
        if not conflicts:
            policy = Policy.MERGE_OVERWRITE
        elif _interactive():
            policy = prompt_for_policy(destination, conflicts)
        else:
            raise CLIError(
                _conflict_description(destination, conflicts)
                + "\n\nUse --on-conflict to choose what to do when not running interactively."
            )

    logger.debug("Using conflict policy %s for %s", Policy(policy).value, destination)
    the_plan = plan(destination, result, Policy(policy))

    if args.dry_run:
        _print_plan(destination, the_plan)
        return EXIT_OK

    report = commit(destination, the_plan)
    _print_report(destination, report)

    auto_allow = config.auto_allow if args.auto_allow is None else args.auto_allow
    if auto_allow and ".envrc" in report.written:
        _run(["direnv", "allow", str(destination)], cwd=destination)
        print("direnv allow: done.")

    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="inix", description="Inix - initialize a Nix development environment from templates")
    p.add_argument("templates", nargs="*", help="Templates to combine (none: a blank environment)")
    p.add_argument("-d", "--directory", default=None, help="Directory to initialize (default: current directory)")
    p.add_argument(
        "-p",
        "--package",
        dest="packages",
        action="append",
        default=[],
        help="Extra package for the environment (repeatable)",
    )
    p.add_argument(
        "-i",
        "--input",
        dest="inputs",
        action="append",
        default=[],
        help="Extra shell input for the environment (repeatable)",
    )
    p.add_argument(
        "--on-conflict",
        type=Policy,
        choices=list(Policy),
        metavar="{" + ",".join(pol.value for pol in Policy) + "}",
        default=None,
        help="What to do with existing files (default: prompt if there are any)",
    )
    p.add_argument("-n", "--dry-run", action="store_true", help="Print what would be done, but don't do anything")
    p.add_argument(
        "-a",
        "--auto-allow",
        dest="auto_allow",
        action="store_true",
        default=None,
        help="Run `direnv allow` afterwards (only if you trust the templates)",
    )
    p.add_argument(
        "--no-auto-allow",
        dest="auto_allow",
        action="store_false",
        help="Do not run `direnv allow`, even if the config enables it",
    )
    p.add_argument("-l", "--list", action="store_true", help="List available templates and exit")
    p.add_argument("--templates-dir", default=None, help="Your own templates directory (takes precedence over builtins)")
    p.add_argument("--config", default=None, help="Config file (default: $INIX_CONFIG or ~/.config/inix/config.yaml)")
    p.add_argument("-v", "--verbose", action="store_true", help="Log what inix is doing")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.set_defaults(func=init_cmd)
    return p


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        return int(args.func(args))
    except UnknownTemplateError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_UNKNOWN_TEMPLATE
    except ConflictingAuxFileError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_CONFLICTING_AUX_FILE
    except UserCancelled as e:
        print(str(e), file=sys.stderr)
        return EXIT_CANCELLED
    except PartialWriteError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_PARTIAL_WRITE
    except (CLIError, ConfigError, TemplateError, RenderError, OSError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
