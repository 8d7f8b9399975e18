"""
plugins/server_shutdown/wording.py

Shutdown vs restart vocabulary.

Everything the plugin says to players, every admin command name it
registers, and the terminal console command all depend on a single
flag (ServerShutdownAutoRestart). Keeping the two vocabularies side by
side here means the rest of the plugin never branches on the flag.
"""

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class Wording:
    """
    Vocabulary for one mode.

    Attributes:
        noun: "shutdown" or "restart" (used in command names and replies).
        progressive: "shutting down" or "restarting" (used in warnings).
        vote_prompt: Question put to players when a vote starts.
        terminal_command: Console command executed at T-0.
    """
    noun: str
    progressive: str
    vote_prompt: str
    terminal_command: str

    @property
    def vote_command(self) -> str:
        return f"vote{self.noun}"

    @property
    def cancel_command(self) -> str:
        return f"cancel{self.noun}"

    @property
    def commands(self) -> Tuple[str, str]:
        """The (vote, cancel) admin command pair for this mode."""
        return (self.vote_command, self.cancel_command)

    def warning(self, minutes: int) -> str:
        """Countdown ladder broadcast for ``minutes`` remaining."""
        plural = "" if minutes == 1 else "s"
        return (
            f"[FF0000]Warning: Server {self.progressive} in "
            f"[b]{minutes} minute{plural}[/b][-]"
        )

    def imminent(self, seconds: int) -> str:
        """Announcement sent after a successful vote."""
        return f"{self.progressive.capitalize()} in {seconds} seconds..."

    def no_countdown(self) -> str:
        return f"No {self.noun} in progress."

    def cancelled(self) -> str:
        return f"{self.noun.capitalize()} cancelled."

    def vote_description(self) -> str:
        return f"Starts a vote to {self.vote_prompt[:-1].lower()}"

    def cancel_description(self) -> str:
        return f"Cancels an automatic or voted {self.noun} in progress"


SHUTDOWN = Wording(
    noun="shutdown",
    progressive="shutting down",
    vote_prompt="Shut down the server?",
    terminal_command="shutdown",
)

RESTART = Wording(
    noun="restart",
    progressive="restarting",
    vote_prompt="Restart the server?",
    terminal_command="restart",
)


def wording_for(auto_restart: bool) -> Wording:
    """Pick the vocabulary for the current ServerShutdownAutoRestart value."""
    return RESTART if auto_restart else SHUTDOWN


def all_commands() -> Tuple[str, ...]:
    """Every command name the plugin may ever register, across both modes."""
    return SHUTDOWN.commands + RESTART.commands
