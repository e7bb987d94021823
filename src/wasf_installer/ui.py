"""Console, banner and progress rendering shared by the installer."""

from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.text import Text

console = Console()

# ASCII Art Banner
BANNER = r"""
 __          ___     ______  ______
 \ \        / _ \   |  ____||  ____|
  \ \  /\  / / \ \  | |____ | |__
   \ \/  \/ /___\ \ |____  ||  __|
    \  /\  /_____\ \ ____| || |
     \/  \/       \_\______||_|
"""

TAGLINE = "WASF Framework Installer"


class Styles:
    """Rich style names used across the installer output."""
    accent = "cyan"
    success = "green"
    warning = "yellow"
    error = "red"
    muted = "bright_black"


def show_banner():
    """Display the ASCII art banner."""
    styled_banner = Text()
    for line in BANNER.strip("\n").split("\n"):
        styled_banner.append(line + "\n", style=f"bold {Styles.accent}")

    console.print(Align.center(styled_banner))
    console.print(Align.center(Text(TAGLINE, style=f"bold {Styles.success}")))
    console.print(Align.center(Text("=" * 44, style=Styles.accent)))
    console.print()


def show_usage():
    console.print(f"[{Styles.warning}]Usage:[/{Styles.warning}]")
    console.print(f"  wasf new [{Styles.success}]project-name[/{Styles.success}]")
    console.print()


def clear_screen():
    # Console.clear is a no-op when output is not a terminal
    console.clear()


def show_success(project_name: str):
    steps_lines = [
        f"1. Go to the project folder: [{Styles.accent}]cd {project_name}[/{Styles.accent}]",
        f"2. Start the development server: [{Styles.accent}]php wasf serve[/{Styles.accent}]",
    ]
    console.print()
    console.print(Panel(
        Align.center(f"[bold {Styles.accent}]WASF Installed Successfully![/bold {Styles.accent}]"),
        border_style=Styles.accent,
        padding=(1, 2),
    ))
    console.print()
    console.print(Panel("\n".join(steps_lines), title="Next Steps", border_style=Styles.accent, padding=(1, 2)))
    console.print("\n[bold blue]Happy coding with WASF Framework[/bold blue]\n")


def last_redraw(line: str) -> str:
    """Collapse carriage-return redraws to what a terminal would leave visible.

    Rich drops bare \\r characters, which would otherwise glue every frame of
    a child's in-place progress output onto one line.
    """
    text = line.rstrip("\n").rstrip("\r")
    ending = line[len(text):].replace("\r", "")
    return text.rsplit("\r", 1)[-1] + ending


class ProgressBar:
    """Live progress bar for the scaffolding subprocess.

    Call the instance with a percentage to redraw the bar; use ``echo`` to
    print child output above it without breaking the in-place redraw.
    """

    def __init__(self, description: str = "Downloading WASF skeleton", *, console: Console = console):
        self.description = description
        self.console = console
        self._progress = None
        self._task = None

    def __enter__(self):
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(bar_width=40, complete_style=f"bold {Styles.accent}"),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            console=self.console,
        )
        self._progress.start()
        self._task = self._progress.add_task(self.description, total=100)
        return self

    def __exit__(self, exc_type, exc, tb):
        self._progress.stop()
        self._progress = None
        return False

    def __call__(self, percent: int):
        self._progress.update(self._task, completed=percent)

    def echo(self, line: str):
        self._progress.console.print(last_redraw(line), end="", markup=False, highlight=False, soft_wrap=True)
