"""Post-install fixups applied to a freshly scaffolded project."""

import base64
import os
import re
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from rich.console import Console

from wasf_installer.ui import Styles, console as default_console

ENV_FILE = ".env"
KEY_NAME = "WASF_KEY"
KEY_BYTES = 32
STORAGE_DIR = "storage"
STORAGE_MODE = 0o777

# Storage permissions are only widened on POSIX
IS_POSIX = os.name == "posix"

# Minimum time a step's spinner stays visible, in seconds
STEP_MIN_DURATION = 0.4


class PostInstallError(Exception):
    """A post-install step failed; the steps after it were not run."""

    def __init__(self, step: "PostInstallStep", cause: BaseException):
        self.step = step
        self.cause = cause
        super().__init__(f"{step.label} failed: {cause}")


@dataclass
class PostInstallStep:
    key: str
    label: str
    action: Callable[[Path], None]
    posix_only: bool = False

    def applies(self) -> bool:
        return IS_POSIX or not self.posix_only


def generate_secret(nbytes: int = KEY_BYTES) -> str:
    """Return ``nbytes`` of cryptographically random data, base64-encoded."""
    return base64.b64encode(secrets.token_bytes(nbytes)).decode("ascii")


def set_env_value(env_path: Path, key: str, value: str) -> None:
    """Set ``key`` in an env file, leaving exactly one line that defines it.

    The file is created when missing and always rewritten in full.
    """
    content = env_path.read_text(encoding="utf-8") if env_path.exists() else ""
    entry = f"{key}={value}"
    pattern = re.compile(rf"^[ \t]*{re.escape(key)}[ \t]*=.*$\n?", re.MULTILINE)

    matches = list(pattern.finditer(content))
    if matches:
        first = matches[0]
        newline = "\n" if first.group(0).endswith("\n") else ""
        pieces = [content[:first.start()], entry, newline]
        cursor = first.end()
        # Drop duplicate definitions further down
        for match in matches[1:]:
            pieces.append(content[cursor:match.start()])
            cursor = match.end()
        pieces.append(content[cursor:])
        content = "".join(pieces)
    else:
        if content and not content.endswith("\n"):
            content += "\n"
        content += entry + "\n"

    env_path.write_text(content, encoding="utf-8")


def generate_app_key(project_path: Path) -> None:
    set_env_value(project_path / ENV_FILE, KEY_NAME, generate_secret())


def widen_storage_permissions(project_path: Path) -> None:
    """chmod -R 777 on the storage directory; symlinks are left alone."""
    storage = project_path / STORAGE_DIR
    if not storage.is_dir():
        raise FileNotFoundError(f"Storage directory not found: {storage}")

    os.chmod(storage, STORAGE_MODE)
    for root, dirs, files in os.walk(storage):
        for name in dirs + files:
            path = os.path.join(root, name)
            if os.path.islink(path):
                continue
            os.chmod(path, STORAGE_MODE)


def default_steps() -> List[PostInstallStep]:
    return [
        PostInstallStep("key", f"Generating {KEY_NAME}", generate_app_key),
        PostInstallStep("chmod", "Setting permissions", widen_storage_permissions, posix_only=True),
    ]


def run_step(
    label: str,
    operation: Callable[[], object],
    *,
    console: Console = default_console,
    min_duration: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
):
    """Run ``operation`` behind a spinner and return its result.

    Prints a check mark once the operation returns. Errors are marked with a
    cross and re-raised unchanged.
    """
    if min_duration is None:
        min_duration = STEP_MIN_DURATION

    with console.status(f"[{Styles.warning}]{label}...[/{Styles.warning}]"):
        start = clock()
        try:
            result = operation()
        except Exception:
            console.print(f"[{Styles.error}]✘ {label}[/{Styles.error}]")
            raise
        remaining = min_duration - (clock() - start)
        if remaining > 0:
            sleep(remaining)

    console.print(f"[{Styles.success}]✔ {label}[/{Styles.success}]")
    return result


def run_post_install(
    project_path: Path,
    steps: Optional[List[PostInstallStep]] = None,
    *,
    console: Console = default_console,
    min_duration: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> List[str]:
    """Run the post-install steps in order, stopping at the first failure.

    Steps flagged ``posix_only`` are skipped without output elsewhere.
    Returns the keys of the steps that ran.
    """
    if steps is None:
        steps = default_steps()

    completed: List[str] = []
    for step in steps:
        if not step.applies():
            continue
        try:
            run_step(
                step.label,
                lambda: step.action(project_path),
                console=console,
                min_duration=min_duration,
                clock=clock,
                sleep=sleep,
            )
        except Exception as e:
            raise PostInstallError(step, e) from e
        completed.append(step.key)
    return completed
