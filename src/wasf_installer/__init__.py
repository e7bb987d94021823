#!/usr/bin/env python3
"""
WASF Installer - create new WASF Framework projects

Usage:
    wasf new <project-name>

Runs ``composer create-project`` for the WASF skeleton, then generates the
application key and fixes storage permissions in the new project.
"""

import shutil
import sys
from pathlib import Path
from typing import Optional

import click
import typer
from rich.markup import escape
from rich.panel import Panel
from typer.core import TyperGroup

from wasf_installer.postinstall import PostInstallError, run_post_install
from wasf_installer.runner import SPAWN_FAILED, run_with_progress
from wasf_installer.ui import (
    ProgressBar,
    Styles,
    clear_screen,
    console,
    show_banner,
    show_success,
    show_usage,
)

DEFAULT_PACKAGE = "wasframework/wasf-app"
DEFAULT_COMPOSER = "composer"


def first_missing_ancestor(path: Path) -> Path:
    """Return the outermost directory that ``path.mkdir(parents=True)`` would create."""
    while not path.parent.exists():
        path = path.parent
    return path


def _usage_error(error: click.UsageError):
    show_banner()
    console.print(f"[{Styles.error}]Error:[/{Styles.error}] {escape(error.format_message())}")
    show_usage()
    raise typer.Exit(1)


class InstallerGroup(TyperGroup):
    """Command group that answers every usage error with usage and exit 1.

    Top-level options are parsed in ``make_context``; unknown commands and
    the subcommand's own arguments fail inside ``invoke``.
    """

    def format_help(self, ctx, formatter):
        show_banner()
        super().format_help(ctx, formatter)

    def make_context(self, info_name, args, parent=None, **extra):
        try:
            return super().make_context(info_name, args, parent=parent, **extra)
        except click.UsageError as e:
            _usage_error(e)

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except click.UsageError as e:
            _usage_error(e)


app = typer.Typer(
    name="wasf",
    help="Installer for WASF Framework projects",
    add_completion=False,
    invoke_without_command=True,
    cls=InstallerGroup,
)


@app.callback()
def callback(ctx: typer.Context):
    """Show usage when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        show_banner()
        show_usage()
        raise typer.Exit(1)


def composer_command(composer: str, package: str, project_path: Path) -> list[str]:
    return [composer, "create-project", package, str(project_path)]


def _print_debug_environment(cmd: list[str]):
    _env_pairs = [
        ("Python", sys.version.split()[0]),
        ("Platform", sys.platform),
        ("CWD", str(Path.cwd())),
        ("Command", " ".join(cmd)),
    ]
    _label_width = max(len(k) for k, _ in _env_pairs)
    env_lines = [f"{k.ljust(_label_width)} → [{Styles.muted}]{v}[/{Styles.muted}]" for k, v in _env_pairs]
    console.print(Panel("\n".join(env_lines), title="Debug Environment", border_style="magenta"))


@app.command()
def new(
    project_name: Optional[str] = typer.Argument(None, help="Name for your new project directory"),
    package: str = typer.Option(DEFAULT_PACKAGE, "--package", help="Composer package used as the project skeleton"),
    composer: str = typer.Option(DEFAULT_COMPOSER, "--composer", envvar="WASF_COMPOSER", help="Composer executable to run"),
    debug: bool = typer.Option(False, "--debug", help="Show diagnostic output when installation fails"),
):
    """
    Create a new WASF project.

    This command will:
    1. Create the project directory
    2. Download the WASF skeleton with composer create-project
    3. Generate WASF_KEY in the project's .env file
    4. Make the storage directory writable (POSIX only)

    Examples:
        wasf new blog
        wasf new blog --package wasframework/wasf-app
    """
    clear_screen()
    show_banner()

    if not project_name:
        console.print(f"[{Styles.error}]Error:[/{Styles.error}] Missing project name")
        show_usage()
        raise typer.Exit(1)

    project_path = Path(project_name).resolve()
    if project_path.exists():
        error_panel = Panel(
            f"Directory '[{Styles.accent}]{project_name}[/{Styles.accent}]' already exists\n"
            "Please choose a different project name or remove the existing directory.",
            title="[red]Directory Conflict[/red]",
            border_style=Styles.error,
            padding=(1, 2),
        )
        console.print()
        console.print(error_panel)
        raise typer.Exit(1)

    created_root = first_missing_ancestor(project_path)
    console.print(f"[{Styles.accent}]→ Creating project folder:[/{Styles.accent}] {project_name}")
    try:
        project_path.mkdir(parents=True)
    except OSError as e:
        console.print(Panel(f"Could not create {project_path}: {e}", title="Failure", border_style=Styles.error))
        raise typer.Exit(1)

    console.print(f"[{Styles.accent}]→ Downloading WASF Skeleton...[/{Styles.accent}]\n")
    cmd = composer_command(composer, package, project_path)
    try:
        with ProgressBar() as bar:
            exit_code = run_with_progress(cmd, render=bar, echo=bar.echo)
    except KeyboardInterrupt:
        console.print(f"\n[{Styles.warning}]Installation cancelled[/{Styles.warning}]")
        if created_root.exists():
            shutil.rmtree(created_root)
        raise typer.Exit(130)

    if exit_code != 0:
        reason = "composer could not be started" if exit_code == SPAWN_FAILED else f"composer exited with code {exit_code}"
        console.print(f"\n[{Styles.error}]Installation failed.[/{Styles.error}] [{Styles.muted}]({reason})[/{Styles.muted}]")
        if debug:
            _print_debug_environment(cmd)
        if created_root.exists():
            shutil.rmtree(created_root)
        raise typer.Exit(1)

    console.print()
    console.print(f"[{Styles.accent}]→ Finishing setup...[/{Styles.accent}]")
    try:
        run_post_install(project_path)
    except PostInstallError as e:
        console.print(Panel(
            f"{e.step.label} failed: {e.cause}\n"
            f"Remaining setup steps were not run. The project was left in [{Styles.accent}]{project_path}[/{Styles.accent}].",
            title="[red]Setup Failed[/red]",
            border_style=Styles.error,
            padding=(1, 2),
        ))
        if debug:
            _print_debug_environment(cmd)
        raise typer.Exit(1)

    show_success(project_name)


def main():
    app()


if __name__ == "__main__":
    main()
