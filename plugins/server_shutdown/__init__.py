"""
plugins/server_shutdown/__init__.py

Server shutdown plugin.

Provides scheduled and voted shutdowns for a game server with:
- Daily HH:MM schedule, validated and re-armed on every config change
- Per-minute warning ladder with a world save at T-1
- Player vote that triggers a 30 second countdown
- Shutdown or restart wording/commands selected by one flag
"""

from .bridge import (
    ChatService,
    CommandRegistry,
    NatsServerBridge,
    ServerConsole,
    VoteResult,
    VoteService,
)
from .controller import ShutdownController
from .engine import CountdownMode, CountdownState, ShutdownEngine
from .errors import ServerCommandError, ShutdownPluginError, VoteError
from .plugin import ServerShutdownPlugin
from .schedule import ScheduleParseResult, format_slot, next_countdown_start, parse_schedule
from .settings import ShutdownSettings
from .vote import VoteTrigger
from .wording import RESTART, SHUTDOWN, Wording, wording_for

__all__ = [
    "ChatService",
    "CommandRegistry",
    "CountdownMode",
    "CountdownState",
    "NatsServerBridge",
    "RESTART",
    "SHUTDOWN",
    "ScheduleParseResult",
    "ServerCommandError",
    "ServerConsole",
    "ServerShutdownPlugin",
    "ShutdownController",
    "ShutdownEngine",
    "ShutdownPluginError",
    "ShutdownSettings",
    "VoteError",
    "VoteResult",
    "VoteService",
    "VoteTrigger",
    "Wording",
    "format_slot",
    "next_countdown_start",
    "parse_schedule",
    "wording_for",
]
__version__ = "1.0.0"
