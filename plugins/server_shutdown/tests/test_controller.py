"""
tests/test_controller.py

Unit tests for the ShutdownController.

Tests cover:
- Command registration per mode
- Configuration change handling
- Serialized change queue
- The cancel command
"""

import logging
import pytest
from datetime import datetime

from plugins.server_shutdown.controller import ShutdownController
from plugins.server_shutdown.engine import CountdownMode
from plugins.server_shutdown.settings import (
    KEY_AUTO_RESTART,
    KEY_COUNTDOWN_TIME,
    KEY_ENABLE_VOTE,
    KEY_SCHEDULE,
    KEY_VOTE_PERCENT,
    ShutdownSettings,
)


@pytest.fixture
def make_controller(make_engine, registry, votes, chat, clock):
    """Factory for controllers; the clock is parked well before 03:55."""
    clock.now = datetime(2025, 6, 1, 3, 0)

    def _make(**settings):
        engine = make_engine(vote_delay=5.0)
        return ShutdownController(
            engine=engine,
            registry=registry,
            votes=votes,
            chat=chat,
            settings=ShutdownSettings(**settings),
        )

    return _make


# =============================================================================
# Lifecycle Tests
# =============================================================================

class TestControllerLifecycle:
    """Tests for start()/stop()."""

    @pytest.mark.asyncio
    async def test_start_registers_restart_commands(self, make_controller, registry):
        """Auto restart on registers the restart pair."""
        controller = make_controller(auto_restart=True)

        await controller.start()

        assert set(registry.commands) == {"voterestart", "cancelrestart"}
        assert controller.registered_commands == ("voterestart", "cancelrestart")

        await controller.stop()

    @pytest.mark.asyncio
    async def test_start_registers_shutdown_commands(self, make_controller, registry):
        """Auto restart off registers the shutdown pair."""
        controller = make_controller(auto_restart=False)

        await controller.start()

        assert set(registry.commands) == {"voteshutdown", "cancelshutdown"}
        assert controller.engine.auto_restart is False

        await controller.stop()

    @pytest.mark.asyncio
    async def test_start_arms_schedule(self, make_controller):
        """The configured schedule is parsed and armed."""
        controller = make_controller(schedule_text="16:00,04:00,bad")

        await controller.start()

        assert controller.engine.schedule == [240, 960]
        assert controller.engine.state.fires_at == datetime(2025, 6, 1, 3, 55)

        await controller.stop()

    @pytest.mark.asyncio
    async def test_start_without_schedule(self, make_controller):
        """No schedule leaves the engine idle."""
        controller = make_controller()

        await controller.start()

        assert controller.engine.is_armed is False

        await controller.stop()

    @pytest.mark.asyncio
    async def test_stop_withdraws_everything(self, make_controller, registry):
        """stop() unregisters commands and disarms the engine."""
        controller = make_controller(schedule_text="04:00")
        await controller.start()

        await controller.stop()

        assert registry.commands == {}
        assert controller.registered_commands == ()
        assert controller.engine.is_armed is False
        assert controller._worker is None


# =============================================================================
# Mode Toggle Tests
# =============================================================================

class TestControllerModeToggle:
    """Tests for ServerShutdownAutoRestart changes."""

    @pytest.mark.asyncio
    async def test_toggle_swaps_pairs(self, make_controller, registry):
        """false -> true replaces the shutdown pair with the restart pair."""
        controller = make_controller(auto_restart=False)
        await controller.start()

        await controller.apply(KEY_AUTO_RESTART, "True")

        assert set(registry.commands) == {"voterestart", "cancelrestart"}
        assert controller.engine.auto_restart is True
        assert registry.peak == 2

        await controller.stop()

    @pytest.mark.asyncio
    async def test_toggle_unregisters_before_registering(self, make_controller, registry):
        """All four names are withdrawn before the new pair goes in."""
        controller = make_controller(auto_restart=True)
        await controller.start()
        registry.history.clear()

        await controller.apply(KEY_AUTO_RESTART, False)

        actions = [action for action, _ in registry.history]
        assert actions == ["unregister"] * 4 + ["register"] * 2
        assert {name for action, name in registry.history if action == "unregister"} == {
            "voteshutdown", "cancelshutdown", "voterestart", "cancelrestart",
        }

        await controller.stop()

    @pytest.mark.asyncio
    async def test_same_value_does_not_reregister(self, make_controller, registry):
        """Setting the current value again leaves the commands alone."""
        controller = make_controller(auto_restart=True)
        await controller.start()
        registry.history.clear()

        await controller.apply(KEY_AUTO_RESTART, "true")

        assert registry.history == []

        await controller.stop()

    @pytest.mark.asyncio
    async def test_invalid_bool_ignored(self, make_controller, registry, caplog):
        """A non-boolean value is logged and the old mode is kept."""
        controller = make_controller(auto_restart=True)
        await controller.start()

        with caplog.at_level(logging.WARNING):
            await controller.apply(KEY_AUTO_RESTART, "maybe")

        assert controller.settings.auto_restart is True
        assert set(registry.commands) == {"voterestart", "cancelrestart"}
        assert "Ignoring invalid value" in caplog.text

        await controller.stop()


# =============================================================================
# Schedule Change Tests
# =============================================================================

class TestControllerScheduleChanges:
    """Tests for schedule and countdown length changes."""

    @pytest.mark.asyncio
    async def test_new_schedule_rearms(self, make_controller):
        """A schedule change re-arms the engine."""
        controller = make_controller(schedule_text="04:00")
        await controller.start()

        await controller.apply(KEY_SCHEDULE, "12:00")

        assert controller.engine.schedule == [720]
        assert controller.engine.state.fires_at == datetime(2025, 6, 1, 11, 55)

        await controller.stop()

    @pytest.mark.asyncio
    async def test_empty_schedule_disarms(self, make_controller):
        """Clearing the schedule disarms the engine."""
        controller = make_controller(schedule_text="04:00")
        await controller.start()

        await controller.apply(KEY_SCHEDULE, "")

        assert controller.engine.is_armed is False
        assert controller.engine.state.mode == CountdownMode.IDLE

        await controller.stop()

    @pytest.mark.asyncio
    async def test_countdown_time_change(self, make_controller):
        """A longer countdown moves the lead-in and the ladder length."""
        controller = make_controller(schedule_text="04:00")
        await controller.start()

        await controller.apply(KEY_COUNTDOWN_TIME, "10")

        assert controller.engine.countdown_minutes == 10
        state = controller.engine.state
        assert state.remaining_minutes == 10
        assert state.fires_at == datetime(2025, 6, 1, 3, 50)

        await controller.stop()

    @pytest.mark.asyncio
    async def test_countdown_time_widens_spacing(self, make_controller):
        """The minimum slot gap follows the countdown length."""
        controller = make_controller(schedule_text="04:00,04:08")
        await controller.start()
        assert controller.engine.schedule == [240, 248]

        await controller.apply(KEY_COUNTDOWN_TIME, 10)

        assert controller.engine.schedule == [240]

        await controller.stop()

    @pytest.mark.asyncio
    async def test_invalid_countdown_time_ignored(self, make_controller):
        """Zero minutes is rejected and the old length kept."""
        controller = make_controller(schedule_text="04:00")
        await controller.start()

        await controller.apply(KEY_COUNTDOWN_TIME, 0)

        assert controller.settings.countdown_minutes == 5
        assert controller.engine.countdown_minutes == 5

        await controller.stop()

    @pytest.mark.asyncio
    async def test_unknown_key_ignored(self, make_controller):
        """Unrelated keys do not change settings."""
        controller = make_controller(schedule_text="04:00")
        await controller.start()
        before = controller.settings

        await controller.apply("SomeOtherSetting", "x")

        assert controller.settings == before

        await controller.stop()


# =============================================================================
# Queue Tests
# =============================================================================

class TestControllerQueue:
    """Tests for notify() and the change worker."""

    @pytest.mark.asyncio
    async def test_changes_applied_in_order(self, make_controller):
        """The last queued schedule wins."""
        controller = make_controller()
        await controller.start()

        controller.notify(KEY_SCHEDULE, "04:00")
        controller.notify(KEY_SCHEDULE, "16:00")
        await controller.wait_idle()

        assert controller.engine.schedule == [960]

        await controller.stop()

    @pytest.mark.asyncio
    async def test_worker_survives_errors(self, make_controller, caplog):
        """A failing change is logged and the next one still applies."""
        controller = make_controller()
        await controller.start()

        original = controller.engine.set_schedule
        calls = []

        async def flaky_set_schedule(schedule):
            calls.append(schedule)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return await original(schedule)

        controller.engine.set_schedule = flaky_set_schedule

        controller.notify(KEY_SCHEDULE, "04:00")
        controller.notify(KEY_SCHEDULE, "16:00")
        await controller.wait_idle()

        assert controller.engine.schedule == [960]
        assert "Error applying ServerShutdownSchedule" in caplog.text

        await controller.stop()

    @pytest.mark.asyncio
    async def test_vote_settings_update(self, make_controller):
        """Vote settings are stored for use at vote time."""
        controller = make_controller()
        await controller.start()

        controller.notify(KEY_ENABLE_VOTE, "false")
        controller.notify(KEY_VOTE_PERCENT, "0.75")
        await controller.wait_idle()

        assert controller.settings.enable_vote is False
        assert controller.settings.vote_percent == 0.75

        await controller.stop()


# =============================================================================
# Command Tests
# =============================================================================

class TestControllerCommands:
    """Tests for the registered admin commands."""

    @pytest.mark.asyncio
    async def test_cancel_nothing_in_progress(self, make_controller, registry):
        """Cancel with nothing running replies accordingly."""
        controller = make_controller(auto_restart=False, schedule_text="04:00")
        await controller.start()

        reply = await registry.invoke("cancelshutdown")

        assert reply == "No shutdown in progress."
        assert controller.engine.is_armed is True

        await controller.stop()

    @pytest.mark.asyncio
    async def test_cancel_restart_nothing_in_progress(self, make_controller, registry):
        """Restart wording for the inactive reply."""
        controller = make_controller(auto_restart=True)
        await controller.start()

        assert await registry.invoke("cancelrestart") == "No restart in progress."

        await controller.stop()

    @pytest.mark.asyncio
    async def test_cancel_active_countdown(self, make_controller, registry):
        """Cancelling an armed vote countdown succeeds."""
        controller = make_controller(auto_restart=True)
        await controller.start()
        await controller.engine.start_vote_countdown()

        reply = await registry.invoke("cancelrestart", user="bob")

        assert reply == "Restart cancelled."
        assert controller.engine.state.active is False

        await controller.stop()

    @pytest.mark.asyncio
    async def test_vote_command(self, make_controller, registry, votes):
        """The vote command starts a vote."""
        controller = make_controller(auto_restart=True)
        await controller.start()

        await registry.invoke("voterestart")

        assert votes.prompts == ["Restart the server?"]

        await controller.stop()

    @pytest.mark.asyncio
    async def test_vote_command_disabled_live(self, make_controller, registry, votes):
        """Disabling votes takes effect without re-registering."""
        controller = make_controller(auto_restart=True)
        await controller.start()

        await controller.apply(KEY_ENABLE_VOTE, False)
        await registry.invoke("voterestart")

        assert votes.prompts == []

        await controller.stop()
