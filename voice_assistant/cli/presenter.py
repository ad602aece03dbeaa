"""Console rendering of conversation events."""

import threading
from typing import Optional
import click

from ..core.events import SessionListener
from ..core.state import Activity
from ..state.history import USER


STATUS_COLORS = {
    Activity.IDLE: "white",
    Activity.LISTENING: "red",
    Activity.PROCESSING: "yellow",
    Activity.SPEAKING: "green",
}


class ConsolePresenter(SessionListener):
    """Prints messages and status changes to the terminal."""

    def __init__(self, show_status: bool = True):
        self.show_status = show_status
        self.last_status: Optional[str] = None
        self._lock = threading.Lock()

    def _echo(self, text: str, **style) -> None:
        with self._lock:
            click.echo(click.style(text, **style) if style else text)

    def message_appended(self, role: str, text: str) -> None:
        if role == USER:
            label = click.style("You", fg="cyan", bold=True)
        else:
            label = click.style("Assistant", fg="green", bold=True)
        self._echo(f"\n{label}\n{text}")

    def status_changed(self, label: str, activity: Activity) -> None:
        if not self.show_status or label == self.last_status:
            return
        self.last_status = label
        self._echo(f"[{label}]", fg=STATUS_COLORS.get(activity, "white"), dim=True)

    def error_shown(self, text: str) -> None:
        self._echo(f"❌ {text}", fg="red")

    def notice_shown(self, text: str) -> None:
        self._echo(f"💬 {text}", fg="yellow")

    def conversation_cleared(self) -> None:
        self._echo("\n👋 Conversation cleared. Press Enter and start speaking.", bold=True)
