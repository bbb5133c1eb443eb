"""Operator console view of the round, using rich."""
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from server.protocol import Message, ServerMessageType


console = Console()

PHASE_COLORS = {
    "lobby": "cyan",
    "voting": "magenta",
    "build": "yellow",
    "run": "green",
    "results": "bright_yellow",
    "cleanup": "blue",
}


class StatusView:
    """Prints a panel whenever the round status text changes.

    Fed with every broadcast message; only ROUND_STATUS, PLAYER_FINISHED
    and LEADERBOARD_UPDATE are rendered.
    """

    def __init__(self, out: Optional[Console] = None):
        self.console = out or console
        self.last_status: Optional[Dict[str, Any]] = None
        self.board: List[Dict[str, Any]] = []

    def observe(self, message: Message) -> None:
        if message.type == ServerMessageType.ROUND_STATUS.value:
            previous = self.last_status
            self.last_status = message.data
            if previous is None or previous.get("text") != message.data.get("text"):
                self.render()
        elif message.type == ServerMessageType.PLAYER_FINISHED.value:
            data = message.data
            self.console.print(
                f"[bold green]{data['player_id']}[/bold green] finished "
                f"#{data['rank']} (+{data['reward']} coins)"
            )
        elif message.type == ServerMessageType.LEADERBOARD_UPDATE.value:
            self.board = message.data.get("entries", [])

    def render(self) -> None:
        status = self.last_status or {}
        phase = status.get("phase", "lobby")
        color = PHASE_COLORS.get(phase, "white")
        body = f"[bold {color}]{status.get('text', '')}[/bold {color}]"
        if status.get("seconds_remaining"):
            body += f"\n{status['seconds_remaining']}s remaining"
        finishers = status.get("finishers") or []
        if finishers:
            body += "\nFinished: " + ", ".join(finishers)
        self.console.print(Panel(body, title=phase.upper(), border_style=color))
        if self.board:
            self.console.print(self.leaderboard_table())

    def leaderboard_table(self) -> Table:
        table = Table(title="Wins", show_header=True)
        table.add_column("Rank", style="cyan", width=6)
        table.add_column("Player", style="green")
        table.add_column("Wins", justify="right", style="yellow")
        table.add_column("Title", style="magenta")
        for i, entry in enumerate(self.board, 1):
            table.add_row(f"{i}.", entry["player_id"], str(entry["value"]), entry.get("title") or "-")
        return table
