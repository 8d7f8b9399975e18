"""
plugins/server_shutdown/plugin.py

Server shutdown plugin using NATS-based architecture.

NATS Subjects:
    Subscribe:
        shutdown.config.changed - A ServerShutdown* config value changed
        shutdown.status - Request/reply snapshot of the scheduler
        shutdown.command.<name> - Admin commands (see bridge.py)

    Events (Published):
        shutdown.event.scheduled - Next automatic countdown armed
        shutdown.event.warning - Countdown warning broadcast
        shutdown.event.executed - Shutdown/restart command sent
        shutdown.event.cancelled - Countdown cancelled by an admin
        shutdown.event.failed - saveworld/shutdown failed; cycle halted
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from nats.aio.client import Client as NATS

from .bridge import NatsServerBridge
from .controller import ShutdownController
from .engine import ShutdownEngine
from .errors import ShutdownPluginError
from .schedule import format_slot
from .settings import ShutdownSettings


class ServerShutdownPlugin:
    """
    Scheduled and voted server shutdowns.

    Commands (names follow ServerShutdownAutoRestart):
        voteshutdown / voterestart - Start a vote to end the session early
        cancelshutdown / cancelrestart - Cancel a countdown in progress

    Features:
        - Daily HH:MM schedule with a per-minute warning ladder
        - World save one minute before T-0
        - Player vote with configurable pass percentage
        - Live reconfiguration without restarting the plugin
        - Loud failure event if the server stops answering
    """

    # Plugin metadata
    NAMESPACE = "server_shutdown"
    VERSION = "1.0.0"
    DESCRIPTION = "Schedules automatic server shutdowns and enables shutdown votes"

    # NATS subjects
    SUBJECT_CONFIG_CHANGED = "shutdown.config.changed"
    SUBJECT_STATUS = "shutdown.status"

    # NATS subjects - Events
    EVENT_PREFIX = "shutdown.event"
    EVENT_SCHEDULED = "shutdown.event.scheduled"
    EVENT_WARNING = "shutdown.event.warning"
    EVENT_EXECUTED = "shutdown.event.executed"
    EVENT_CANCELLED = "shutdown.event.cancelled"
    EVENT_FAILED = "shutdown.event.failed"

    def __init__(self, nats_client: NATS, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the server shutdown plugin.

        Args:
            nats_client: Connected NATS client for messaging.
            config: Optional configuration dictionary holding the
                    ServerShutdown* keys and plugin options.

        Raises:
            ShutdownPluginError: If a ServerShutdown* value is invalid.
        """
        self.nats = nats_client
        self.config = config or {}
        self.logger = logging.getLogger(f"plugin.{self.NAMESPACE}")

        # Configuration with defaults
        self.emit_events = self.config.get("emit_events", True)
        self.command_timeout = self.config.get("command_timeout", ShutdownEngine.COMMAND_TIMEOUT)
        self.tick_interval = self.config.get("tick_interval", ShutdownEngine.TICK_INTERVAL)
        self.vote_delay = self.config.get("vote_delay", ShutdownEngine.VOTE_DELAY)

        try:
            self.settings = ShutdownSettings.from_config(self.config)
        except ValueError as e:
            raise ShutdownPluginError(f"Invalid {self.NAMESPACE} configuration: {e}") from e

        self.bridge = NatsServerBridge(
            nats_client,
            plugin=self.NAMESPACE,
            command_timeout=self.command_timeout,
        )
        self.engine: Optional[ShutdownEngine] = None
        self.controller: Optional[ShutdownController] = None

        # Subscription tracking
        self._subscriptions: List[Any] = []
        self._initialized = False

    async def initialize(self) -> None:
        """
        Initialize the plugin.

        - Builds the engine and controller
        - Registers admin commands and arms the schedule
        - Subscribes to configuration changes and status requests
        """
        self.logger.info(f"Initializing {self.NAMESPACE} plugin v{self.VERSION}")

        self.engine = ShutdownEngine(
            chat=self.bridge,
            console=self.bridge,
            countdown_minutes=self.settings.countdown_minutes,
            auto_restart=self.settings.auto_restart,
            tick_interval=self.tick_interval,
            vote_delay=self.vote_delay,
            command_timeout=self.command_timeout,
            on_event=self._on_engine_event,
        )
        self.controller = ShutdownController(
            engine=self.engine,
            registry=self.bridge,
            votes=self.bridge,
            chat=self.bridge,
            settings=self.settings,
        )
        await self.controller.start()

        sub = await self.nats.subscribe(self.SUBJECT_CONFIG_CHANGED, cb=self._handle_config_changed)
        self._subscriptions.append(sub)

        sub = await self.nats.subscribe(self.SUBJECT_STATUS, cb=self._handle_status)
        self._subscriptions.append(sub)

        self._initialized = True
        self.logger.info(
            f"{self.NAMESPACE} plugin loaded; commands: "
            f"{', '.join(self.controller.registered_commands)}"
        )

    async def shutdown(self) -> None:
        """
        Shutdown the plugin.

        - Stops the controller (withdraws commands, disarms the engine)
        - Drops any pending vote result subscription
        - Unsubscribes from NATS subjects
        """
        if self.controller:
            await self.controller.stop()
        await self.bridge.drop_vote_subscription()

        for sub in self._subscriptions:
            try:
                await sub.unsubscribe()
            except Exception as e:
                self.logger.warning(f"Error unsubscribing: {e}")
        self._subscriptions.clear()

        self._initialized = False
        self.logger.info(f"{self.NAMESPACE} plugin unloaded")

    # =========================================================================
    # NATS Handlers
    # =========================================================================

    async def _handle_config_changed(self, msg) -> None:
        """
        Queue a configuration change.

        Message format:
        {
            "key": "ServerShutdownSchedule",
            "value": "04:00,16:00"
        }
        """
        try:
            data = json.loads(msg.data.decode())
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            self.logger.error(f"Invalid JSON in config change: {e}")
            return

        if not isinstance(data, dict):
            self.logger.error(f"Config change must be a JSON object: {data!r}")
            return

        key = data.get("key")
        if not key or "value" not in data:
            self.logger.error(f"Config change missing key or value: {data}")
            return

        self.controller.notify(key, data["value"])

    async def _handle_status(self, msg) -> None:
        """Reply with the current scheduler status."""
        if msg.reply:
            try:
                await msg.respond(json.dumps({"success": True, "status": self.get_status()}).encode())
            except Exception as e:
                self.logger.error(f"Error sending status response: {e}")

    def get_status(self) -> Dict[str, Any]:
        """
        Current scheduler status.

        Returns:
            Dict with mode, countdown progress, next timer expiry,
            schedule, registered commands and the last command failure.
        """
        state = self.engine.state
        last_error = self.engine.last_error
        return {
            "mode": state.mode.value,
            "active": state.active,
            "remaining_minutes": state.remaining_minutes,
            "fires_at": state.fires_at.isoformat() if state.fires_at else None,
            "schedule": [format_slot(s) for s in self.engine.schedule],
            "auto_restart": self.controller.settings.auto_restart,
            "commands": list(self.controller.registered_commands),
            "last_error": str(last_error) if last_error else None,
        }

    # =========================================================================
    # Events
    # =========================================================================

    async def _on_engine_event(self, event: str, data: Dict[str, Any]) -> None:
        if event == "failed":
            # Always published: an operator has to step in
            await self._emit_event(self.EVENT_FAILED, data)
            return
        if self.emit_events:
            await self._emit_event(f"{self.EVENT_PREFIX}.{event}", data)

    async def _emit_event(self, event_type: str, data: dict) -> None:
        """
        Emit an event via NATS.

        Args:
            event_type: The event subject.
            data: Event data.
        """
        event = {
            "event": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **data
        }
        await self.nats.publish(event_type, json.dumps(event).encode())
