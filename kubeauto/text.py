"""
Output formatting.

Every line kubeauto prints goes through Printer: status lines for watched
resources and prefixed lines for pod logs and port forwards. Each line is
colored with a 256-color code derived from a name, so all lines about one
resource type share a color.
"""

from typing import Optional, TextIO

from rich.console import Console
from rich.text import Text

from kubeauto.state import Status

PALETTE_START = 16
PALETTE_SIZE = 216


def delim(text: str, prefix: str, suffix: str) -> str:
    """Wrap text in prefix/suffix, or return "" for empty text."""
    if not text:
        return ""
    return prefix + text + suffix


def join(*texts: str) -> str:
    """Space-join the non-empty texts."""
    return " ".join(t for t in texts if t)


def color_code(name: str) -> int:
    """Map a name onto the 6x6x6 color cube (codes 16 to 231)."""
    return PALETTE_START + sum(ord(c) for c in name) % PALETTE_SIZE


def status_line(resource: str, name: str, status: Status) -> str:
    return join(
        delim(f"{resource}/{name}", "[", "]"),
        delim(status.phase, "(", ")"),
        delim(status.reason, "", ":"),
        status.message,
    )


def log_prefix(pod: str, container: str) -> str:
    return f"[pods/{pod}] {container}:  "


class Printer:
    """Thread-safe colored line sink."""

    def __init__(
        self,
        console: Optional[Console] = None,
        file: Optional[TextIO] = None,
        force_terminal: Optional[bool] = None,
    ):
        # force_terminal=True keeps the 256-color codes when stdout is piped
        self.console = console or Console(
            file=file,
            force_terminal=force_terminal,
            color_system="256" if force_terminal else "auto",
            highlight=False,
            soft_wrap=True,
        )

    def line(self, color: str, text: str) -> None:
        self.console.print(
            Text(text, style=f"color({color_code(color)})"),
            markup=False,
            emoji=False,
        )

    def status(self, resource: str, name: str, status: Status) -> None:
        self.line(resource, status_line(resource, name, status))

    def log(self, pod: str, container: str, line: str) -> None:
        self.line("pods", log_prefix(pod, container) + line)

    def pod_event(self, pod: str, container: str, message: str) -> None:
        self.line("pods", f"[pods/{pod}/{container}] {message}")
