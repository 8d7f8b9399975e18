"""
plugins/server_shutdown/controller.py

Reacts to configuration changes and owns the admin command surface.

Configuration change notifications are queued and applied one at a time
by a single worker task, so two edits arriving back to back can never
interleave their re-registration or re-arming steps.
"""

import asyncio
import logging
from typing import Any, Optional, Tuple

from .bridge import ChatService, CommandRegistry, VoteService
from .engine import ShutdownEngine
from .schedule import format_slot, parse_schedule
from .settings import (
    KEY_AUTO_RESTART,
    KEY_COUNTDOWN_TIME,
    KEY_SCHEDULE,
    ShutdownSettings,
)
from .vote import VoteTrigger
from .wording import all_commands, wording_for


class ShutdownController:
    """
    Mode and command controller.

    - ServerShutdownAutoRestart: swaps voteshutdown/cancelshutdown for
      voterestart/cancelrestart (never both registered at once)
    - ServerShutdownSchedule: re-parses and re-arms the engine
    - ServerShutdownCountdownTime: new ladder length, then re-arms
    - ServerShutdownEnableVote / ServerShutdownVotePercent: read at use

    Args:
        engine: Countdown engine to configure.
        registry: Where admin commands are registered.
        votes: Vote subsystem for the vote command.
        chat: Broadcast target for vote results.
        settings: Initial settings.
    """

    def __init__(
        self,
        engine: ShutdownEngine,
        registry: CommandRegistry,
        votes: VoteService,
        chat: ChatService,
        settings: Optional[ShutdownSettings] = None,
    ):
        self.engine = engine
        self.registry = registry
        self.settings = settings or ShutdownSettings()
        self.vote_trigger = VoteTrigger(votes, chat, engine, lambda: self.settings)
        self.logger = logging.getLogger(__name__)

        self._queue: "asyncio.Queue[Tuple[str, Any]]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._registered: Tuple[str, ...] = ()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Register commands, arm the schedule and start applying changes."""
        self.engine.auto_restart = self.settings.auto_restart
        await self._register_commands()
        await self._apply_schedule()
        self._worker = asyncio.create_task(self._process_changes())

    async def stop(self) -> None:
        """Stop the change worker, withdraw commands and disarm the engine."""
        if self._worker:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        for name in all_commands():
            await self.registry.unregister(name)
        self._registered = ()

        await self.engine.stop()

    @property
    def registered_commands(self) -> Tuple[str, ...]:
        return self._registered

    # =========================================================================
    # Configuration Changes
    # =========================================================================

    def notify(self, key: str, value: Any) -> None:
        """Queue a configuration change; applied in arrival order."""
        self._queue.put_nowait((key, value))

    async def wait_idle(self) -> None:
        """Wait until every queued change has been applied."""
        await self._queue.join()

    async def _process_changes(self) -> None:
        while True:
            key, value = await self._queue.get()
            try:
                await self.apply(key, value)
            except Exception as e:
                self.logger.exception(f"Error applying {key}: {e}")
            finally:
                self._queue.task_done()

    async def apply(self, key: str, value: Any) -> None:
        """
        Apply one configuration change immediately.

        Invalid values are logged and the previous value is kept.
        """
        if not ShutdownSettings.is_known_key(key):
            self.logger.debug(f"Ignoring unrelated config key: {key}")
            return

        try:
            updated = self.settings.updated(key, value)
        except ValueError as e:
            self.logger.warning(f"Ignoring invalid value for {key} ({value!r}): {e}")
            return

        previous, self.settings = self.settings, updated
        self.logger.info(f"{key} changed to {value!r}")

        if key == KEY_AUTO_RESTART:
            self.engine.auto_restart = updated.auto_restart
            if updated.auto_restart != previous.auto_restart:
                await self._register_commands()
        elif key == KEY_SCHEDULE:
            await self._apply_schedule()
        elif key == KEY_COUNTDOWN_TIME:
            if updated.countdown_minutes != previous.countdown_minutes:
                await self._apply_schedule()

    async def _apply_schedule(self) -> None:
        minutes = self.settings.countdown_minutes
        result = parse_schedule(self.settings.schedule_text, min_gap=minutes)

        self.engine.countdown_minutes = minutes
        await self.engine.set_schedule(result.slots)

        if result.slots:
            self.logger.info(
                f"Schedule: {', '.join(format_slot(s) for s in result.slots)}"
            )

    async def _register_commands(self) -> None:
        for name in all_commands():
            await self.registry.unregister(name)
        self._registered = ()

        wording = wording_for(self.settings.auto_restart)
        await self.registry.register(
            wording.vote_command, wording.vote_description(), self.vote_trigger.request
        )
        await self.registry.register(
            wording.cancel_command, wording.cancel_description(), self.handle_cancel
        )
        self._registered = wording.commands

    # =========================================================================
    # Commands
    # =========================================================================

    async def handle_cancel(self, user: str) -> str:
        """Handle the cancelshutdown/cancelrestart admin command."""
        wording = self.engine.wording
        if not await self.engine.cancel():
            return wording.no_countdown()

        self.logger.info(f"{user} cancelled the {wording.noun}")
        return wording.cancelled()
