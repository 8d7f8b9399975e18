"""
plugins/server_shutdown/engine.py

Countdown engine: the single-timer state machine behind automatic and
voted shutdowns.

Exactly one asyncio task is armed at a time. Every operation that touches
the timer or the countdown state (arming, ticking, cancelling,
reconfiguring, arming after a vote) runs under one asyncio.Lock, and a
timer task only acts if it is still the engine's current timer once it
holds that lock. That is what keeps a tick from racing a cancel or a
schedule edit into a double shutdown.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .bridge import ChatService, ServerConsole
from .errors import ServerCommandError
from .schedule import DEFAULT_MIN_GAP, next_countdown_start
from .wording import Wording, wording_for


logger = logging.getLogger(__name__)

SAVE_COMMAND = "saveworld"

# Async callback: (event name, event data)
EngineEventCallback = Callable[[str, Dict[str, Any]], Awaitable[None]]


class CountdownMode(Enum):
    """What the armed timer (if any) is counting towards."""
    IDLE = "idle"
    SCHEDULED = "scheduled"
    VOTE_TRIGGERED = "vote_triggered"


@dataclass
class CountdownState:
    """
    Snapshot of the engine.

    Attributes:
        remaining_minutes: Warnings still to broadcast before T-0.
        mode: Why the timer is armed.
        active: True once a countdown is underway (the first warning went
                out, or a vote armed the 30 second countdown). Only an
                active countdown can be cancelled.
        fires_at: When the armed timer next elapses.
    """
    remaining_minutes: int = 0
    mode: CountdownMode = CountdownMode.IDLE
    active: bool = False
    fires_at: Optional[datetime] = None


class ShutdownEngine:
    """
    Drives the countdown ladder and the terminal shutdown/restart.

    Scheduled flow (countdown_minutes = 5):
        T-5 warn 5 -> T-4 warn 4 -> T-3 warn 3 -> T-2 warn 2
        -> T-1 warn 1 + saveworld -> T-0 shutdown -> arm next slot

    Voted flow:
        +30s shutdown -> arm next slot

    Args:
        chat: Broadcast target for warnings.
        console: Runs saveworld and the terminal command.
        countdown_minutes: Length of the warning ladder (lead-in).
        auto_restart: Restart instead of shut down at T-0.
        tick_interval: Seconds between warnings.
        vote_delay: Seconds between a successful vote and T-0.
        command_timeout: Seconds a console command may take before the
                         cycle is halted.
        clock: Returns the current local time.
        on_event: Optional async callback for engine events.
    """

    TICK_INTERVAL = 60.0
    VOTE_DELAY = 30.0
    COMMAND_TIMEOUT = 30.0

    def __init__(
        self,
        chat: ChatService,
        console: ServerConsole,
        countdown_minutes: int = DEFAULT_MIN_GAP,
        auto_restart: bool = True,
        tick_interval: float = TICK_INTERVAL,
        vote_delay: float = VOTE_DELAY,
        command_timeout: float = COMMAND_TIMEOUT,
        clock: Callable[[], datetime] = datetime.now,
        on_event: Optional[EngineEventCallback] = None,
    ):
        self.chat = chat
        self.console = console
        self.countdown_minutes = countdown_minutes
        self.auto_restart = auto_restart
        self.tick_interval = tick_interval
        self.vote_delay = vote_delay
        self.command_timeout = command_timeout
        self.on_event = on_event
        self.last_error: Optional[ServerCommandError] = None

        self._clock = clock
        self._lock = asyncio.Lock()
        self._timer: Optional[asyncio.Task] = None
        self._schedule: List[int] = []
        self._state = CountdownState()

    # =========================================================================
    # Inspection
    # =========================================================================

    @property
    def state(self) -> CountdownState:
        """Copy of the current countdown state."""
        return replace(self._state)

    @property
    def schedule(self) -> List[int]:
        return list(self._schedule)

    @property
    def wording(self) -> Wording:
        return wording_for(self.auto_restart)

    @property
    def is_armed(self) -> bool:
        return self._timer is not None and not self._timer.done()

    # =========================================================================
    # Operations
    # =========================================================================

    async def set_schedule(self, schedule: List[int]) -> Optional[datetime]:
        """
        Replace the schedule and re-arm from scratch.

        Any countdown in flight is dropped, including warnings already sent.
        Clears a previous command failure.

        Returns:
            When the next countdown starts, or None if the schedule is empty.
        """
        async with self._lock:
            self._schedule = list(schedule)
            self.last_error = None
            return await self._schedule_next()

    async def start_vote_countdown(self) -> None:
        """Replace whatever is armed with a 30 second, warning-free countdown."""
        async with self._lock:
            self._dispose()
            self._state = CountdownState(
                remaining_minutes=0,
                mode=CountdownMode.VOTE_TRIGGERED,
                active=True,
            )
            self._arm(self.vote_delay)
            logger.info(f"Vote countdown armed: {self.wording.noun} in {self.vote_delay:g}s")

    async def cancel(self) -> bool:
        """
        Cancel the countdown in progress.

        Returns:
            True if a countdown was cancelled (the engine is then re-armed
            for the next scheduled slot), False if none was active.
        """
        async with self._lock:
            if not self._state.active:
                return False

            cancelled_mode = self._state.mode
            self._dispose()
            logger.info(f"Cancelled {cancelled_mode.value} {self.wording.noun}")
            await self._emit("cancelled", {"mode": cancelled_mode.value})
            await self._schedule_next()
            return True

    async def stop(self) -> None:
        """Disarm without re-arming; used when the plugin unloads."""
        async with self._lock:
            self._dispose()
            self._state = CountdownState()

    # =========================================================================
    # Timer Management (callers hold the lock)
    # =========================================================================

    async def _schedule_next(self) -> Optional[datetime]:
        """Arm the long wait for the next slot, or go idle."""
        self._dispose()

        now = self._clock()
        start = next_countdown_start(now, self._schedule, self.countdown_minutes)
        if start is None:
            self._state = CountdownState()
            logger.info("No shutdown schedule configured; scheduler idle")
            return None

        self._state = CountdownState(
            remaining_minutes=self.countdown_minutes,
            mode=CountdownMode.SCHEDULED,
        )
        self._arm((start - now).total_seconds())

        slot = (start + timedelta(minutes=self.countdown_minutes)).strftime("%H:%M")
        logger.info(
            f"Next automatic {self.wording.noun} at {slot}; "
            f"countdown starts {start.isoformat(sep=' ', timespec='minutes')}"
        )
        await self._emit("scheduled", {
            "slot": slot,
            "countdown_starts_at": start.isoformat(),
            "action": self.wording.noun,
        })
        return start

    def _arm(self, delay: float) -> None:
        self._dispose()
        delay = max(0.0, delay)
        self._state.fires_at = self._clock() + timedelta(seconds=delay)
        self._timer = asyncio.create_task(self._wait(delay))

    def _dispose(self) -> None:
        timer, self._timer = self._timer, None
        self._state.fires_at = None
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()

    async def _wait(self, delay: float) -> None:
        await asyncio.sleep(delay)
        async with self._lock:
            if self._timer is not asyncio.current_task():
                return  # superseded while waiting for the lock
            self._timer = None
            self._state.fires_at = None
            await self._on_elapsed()

    # =========================================================================
    # Tick Handling
    # =========================================================================

    async def _on_elapsed(self) -> None:
        wording = self.wording
        minutes = self._state.remaining_minutes

        if minutes > 0:
            self._state.active = True
            self._arm(self.tick_interval)

            message = wording.warning(minutes)
            await self._broadcast(message)
            await self._emit("warning", {"minutes_remaining": minutes, "message": message})

            if minutes == 1:
                await self._broadcast("Saving world state...")
                if not await self._run_command(SAVE_COMMAND):
                    return

            self._state.remaining_minutes = minutes - 1
            return

        mode = self._state.mode
        if not await self._run_command(wording.terminal_command):
            return

        logger.info(f"Executed {mode.value} {wording.noun}")
        await self._emit("executed", {"command": wording.terminal_command, "mode": mode.value})
        await self._schedule_next()

    async def _run_command(self, command: str) -> bool:
        """
        Run a console command inline, bounded by command_timeout.

        A failure halts the cycle: the timer is disposed, the engine goes
        idle and stays there until the schedule is set again.
        """
        try:
            await asyncio.wait_for(self.console.execute(command), timeout=self.command_timeout)
            return True
        except ServerCommandError as e:
            error = e
        except asyncio.TimeoutError:
            error = ServerCommandError(command, f"no answer within {self.command_timeout:g}s")
        except Exception as e:
            error = ServerCommandError(command, repr(e))

        self._dispose()
        self._state = CountdownState()
        self.last_error = error
        logger.critical(
            f"{error}. Automatic {self.wording.noun}s are halted until the "
            "schedule is reconfigured."
        )
        await self._emit("failed", {"command": command, "error": error.reason})
        return False

    async def _broadcast(self, message: str) -> None:
        try:
            await self.chat.broadcast(message)
        except Exception as e:
            logger.error(f"Failed to broadcast '{message}': {e}")

    async def _emit(self, event: str, data: Dict[str, Any]) -> None:
        if not self.on_event:
            return
        try:
            await self.on_event(event, data)
        except Exception as e:
            logger.error(f"Error in engine event callback ({event}): {e}")
