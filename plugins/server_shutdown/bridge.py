"""
plugins/server_shutdown/bridge.py

Collaborators the shutdown scheduler talks to, and their NATS implementation.

The scheduler never reaches for a global: chat, the server console, the
vote system and the admin command registry are handed in at construction
as the interfaces below. NatsServerBridge implements all four over NATS so
the plugin can run as its own process next to the game server bridge.

NATS Subjects:
    Publish:
        server.chat.broadcast - Send a message to every player
        server.command.register - Expose an admin command
        server.command.unregister - Withdraw an admin command
    Request:
        server.console.execute - Run a console command synchronously
        server.vote.start - Start a player vote
    Subscribe:
        server.vote.ended.<vote_id> - Final result of a started vote
        shutdown.command.<name> - Invocations of a registered admin command
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from nats.aio.client import Client as NATS
from nats.errors import NoRespondersError

from .errors import ServerCommandError, VoteError


@dataclass
class VoteResult:
    """
    Final tally of a player vote.

    Attributes:
        percents: Fraction of votes per option; index 0 is "yes".
    """
    percents: List[float] = field(default_factory=list)

    @property
    def yes_fraction(self) -> float:
        return self.percents[0] if self.percents else 0.0


# Called with the issuing user's name; returns the reply text, if any
CommandHandler = Callable[[str], Awaitable[Optional[str]]]

VoteEndedCallback = Callable[[VoteResult], Awaitable[None]]


# =============================================================================
# Collaborator Interfaces
# =============================================================================

class ChatService(ABC):
    """Delivers text to every connected player."""

    @abstractmethod
    async def broadcast(self, message: str, name: Optional[str] = None) -> None:
        """
        Send a message to all players.

        Args:
            message: Text to send (may contain game color markup).
            name: Optional sender label shown in chat.
        """


class ServerConsole(ABC):
    """Runs console commands on the game server."""

    @abstractmethod
    async def execute(self, command: str) -> None:
        """
        Execute a console command and wait for it to finish.

        Raises:
            ServerCommandError: If the command failed or never answered.
        """


class VoteService(ABC):
    """The player vote subsystem."""

    @abstractmethod
    async def start_vote(self, prompt: str, on_ended: VoteEndedCallback) -> bool:
        """
        Start a yes/no vote.

        Args:
            prompt: Question shown to players.
            on_ended: Awaited with the VoteResult once voting closes.

        Returns:
            False if the vote could not start (e.g. one is already running).

        Raises:
            VoteError: If the vote system could not be reached.
        """


class CommandRegistry(ABC):
    """Admin command registration and dispatch."""

    @abstractmethod
    async def register(self, name: str, description: str, handler: CommandHandler) -> None:
        """Expose an admin command; invocations are routed to ``handler``."""

    @abstractmethod
    async def unregister(self, name: str) -> bool:
        """
        Withdraw an admin command.

        Returns:
            True if the command was registered, False otherwise.
        """


# =============================================================================
# NATS Implementation
# =============================================================================

class NatsServerBridge(ChatService, ServerConsole, VoteService, CommandRegistry):
    """
    All four collaborators backed by a single NATS connection.

    Args:
        nats_client: Connected NATS client.
        plugin: Plugin name sent along with command registrations.
        command_timeout: Seconds to wait for console command replies.
        request_timeout: Seconds to wait for other request/reply calls.
    """

    SUBJECT_BROADCAST = "server.chat.broadcast"
    SUBJECT_CONSOLE = "server.console.execute"
    SUBJECT_VOTE_START = "server.vote.start"
    SUBJECT_VOTE_ENDED = "server.vote.ended"
    SUBJECT_REGISTER = "server.command.register"
    SUBJECT_UNREGISTER = "server.command.unregister"
    COMMAND_PREFIX = "shutdown.command"

    def __init__(
        self,
        nats_client: NATS,
        plugin: str = "server_shutdown",
        command_timeout: float = 30.0,
        request_timeout: float = 2.0,
    ):
        self.nats = nats_client
        self.plugin = plugin
        self.command_timeout = command_timeout
        self.request_timeout = request_timeout
        self.logger = logging.getLogger(f"{__name__}.NatsServerBridge")
        self._commands: Dict[str, Any] = {}  # command name -> subscription
        self._vote_sub: Optional[Any] = None  # pending vote result subscription

    # -------------------------------------------------------------------------
    # ChatService
    # -------------------------------------------------------------------------

    async def broadcast(self, message: str, name: Optional[str] = None) -> None:
        payload = {"message": message, "name": name}
        await self.nats.publish(self.SUBJECT_BROADCAST, json.dumps(payload).encode())
        self.logger.debug(f"Broadcast: {message}")

    # -------------------------------------------------------------------------
    # ServerConsole
    # -------------------------------------------------------------------------

    async def execute(self, command: str) -> None:
        try:
            response = await self.nats.request(
                self.SUBJECT_CONSOLE,
                json.dumps({"command": command}).encode(),
                timeout=self.command_timeout,
            )
        except NoRespondersError as e:
            raise ServerCommandError(command, "no console bridge is listening") from e
        except asyncio.TimeoutError as e:
            raise ServerCommandError(
                command, f"no answer within {self.command_timeout}s"
            ) from e

        try:
            result = json.loads(response.data.decode())
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ServerCommandError(command, "malformed reply") from e

        if not result.get("success"):
            raise ServerCommandError(command, result.get("error", "unknown error"))

        self.logger.info(f"Executed server command: {command}")

    # -------------------------------------------------------------------------
    # VoteService
    # -------------------------------------------------------------------------

    async def start_vote(self, prompt: str, on_ended: VoteEndedCallback) -> bool:
        try:
            response = await self.nats.request(
                self.SUBJECT_VOTE_START,
                json.dumps({"prompt": prompt}).encode(),
                timeout=self.request_timeout,
            )
            result = json.loads(response.data.decode())
        except asyncio.TimeoutError as e:
            raise VoteError("Vote service did not answer") from e
        except json.JSONDecodeError as e:
            raise VoteError("Vote service sent a malformed reply") from e

        if not result.get("success"):
            self.logger.info(f"Vote not started: {result.get('error', 'rejected')}")
            return False

        vote_id = result.get("vote_id")
        if not vote_id:
            raise VoteError("Vote service did not return a vote id")

        # Only the latest vote is still of interest
        await self.drop_vote_subscription()

        async def _on_message(msg) -> None:
            if self._vote_sub is sub:
                self._vote_sub = None
            try:
                data = json.loads(msg.data.decode())
                percents = [float(p) for p in data.get("percents", [])]
            except (json.JSONDecodeError, AttributeError, TypeError, ValueError) as e:
                self.logger.error(f"Invalid vote result for {vote_id}: {e}")
                return
            await on_ended(VoteResult(percents=percents))

        sub = await self.nats.subscribe(
            f"{self.SUBJECT_VOTE_ENDED}.{vote_id}", cb=_on_message, max_msgs=1
        )
        self._vote_sub = sub
        self.logger.info(f"Vote {vote_id} started: {prompt}")
        return True

    async def drop_vote_subscription(self) -> None:
        """Stop listening for the result of a vote still pending."""
        sub, self._vote_sub = self._vote_sub, None
        if sub is None:
            return
        try:
            await sub.unsubscribe()
        except Exception as e:
            self.logger.warning(f"Error unsubscribing vote result: {e}")

    # -------------------------------------------------------------------------
    # CommandRegistry
    # -------------------------------------------------------------------------

    def command_subject(self, name: str) -> str:
        return f"{self.COMMAND_PREFIX}.{name}"

    async def register(self, name: str, description: str, handler: CommandHandler) -> None:
        if name in self._commands:
            await self.unregister(name)

        async def _on_command(msg) -> None:
            try:
                data = json.loads(msg.data.decode()) if msg.data else {}
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                self.logger.error(f"Invalid message format for {name}: {e}")
                if msg.reply:
                    await self._respond(msg, {"success": False, "error": "Invalid message format"})
                return

            user = data.get("user", "console") if isinstance(data, dict) else "console"
            try:
                reply = await handler(user)
            except Exception as e:
                self.logger.exception(f"Error handling {name} from {user}: {e}")
                if msg.reply:
                    await self._respond(msg, {"success": False, "error": f"Error running {name}"})
                return

            if msg.reply:
                await self._respond(msg, {"success": True, "message": reply})

        subject = self.command_subject(name)
        self._commands[name] = await self.nats.subscribe(subject, cb=_on_command)
        await self.nats.publish(
            self.SUBJECT_REGISTER,
            json.dumps({
                "plugin": self.plugin,
                "command": name,
                "subject": subject,
                "description": description,
            }).encode(),
        )
        self.logger.info(f"Registered admin command: {name}")

    async def unregister(self, name: str) -> bool:
        sub = self._commands.pop(name, None)
        if sub is None:
            return False

        try:
            await sub.unsubscribe()
        except Exception as e:
            self.logger.warning(f"Error unsubscribing {name}: {e}")

        await self.nats.publish(
            self.SUBJECT_UNREGISTER,
            json.dumps({"plugin": self.plugin, "command": name}).encode(),
        )
        self.logger.info(f"Unregistered admin command: {name}")
        return True

    @property
    def registered_commands(self) -> List[str]:
        return list(self._commands.keys())

    async def _respond(self, msg, data: Dict[str, Any]) -> None:
        """Send JSON response to NATS message."""
        try:
            await msg.respond(json.dumps(data).encode())
        except Exception as e:
            self.logger.error(f"Error sending response: {e}")
