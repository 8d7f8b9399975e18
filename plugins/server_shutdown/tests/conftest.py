"""
tests/conftest.py

Shared fixtures for server shutdown plugin tests.
"""

import asyncio
import json
from datetime import datetime, timedelta

import pytest
from unittest.mock import AsyncMock, MagicMock

from plugins.server_shutdown.bridge import (
    ChatService,
    CommandRegistry,
    ServerConsole,
    VoteResult,
    VoteService,
)
from plugins.server_shutdown.engine import ShutdownEngine
from plugins.server_shutdown.errors import ServerCommandError


# =============================================================================
# NATS
# =============================================================================

@pytest.fixture
def mock_nats():
    """Create a mock NATS client for testing."""
    nats = AsyncMock()
    nats.publish = AsyncMock()

    # Track subscriptions
    nats._subscriptions = []

    async def mock_subscribe(subject, cb=None, max_msgs=0):
        sub = MagicMock()
        sub.subject = subject
        sub.callback = cb
        sub.max_msgs = max_msgs
        sub.unsubscribe = AsyncMock()
        nats._subscriptions.append(sub)
        return sub

    nats.subscribe = mock_subscribe

    # Replies keyed by subject; tests override entries as needed
    nats._replies = {
        "server.console.execute": {"success": True},
        "server.vote.start": {"success": True, "vote_id": "vote-1"},
    }
    nats._requests = []

    async def mock_request(subject, data, timeout=2.0):
        nats._requests.append((subject, json.loads(data.decode()), timeout))
        reply = nats._replies.get(subject, {})
        if isinstance(reply, BaseException):
            raise reply
        response = MagicMock()
        response.data = reply if isinstance(reply, bytes) else json.dumps(reply).encode()
        return response

    nats.request = mock_request

    def find_subscription(subject):
        """Most recent subscription to ``subject``."""
        for sub in reversed(nats._subscriptions):
            if sub.subject == subject:
                return sub
        raise AssertionError(f"No subscription to {subject}")

    def published(subject):
        """Decoded payloads published to ``subject``, in order."""
        return [
            json.loads(call.args[1].decode())
            for call in nats.publish.call_args_list
            if call.args[0] == subject
        ]

    nats.find_subscription = find_subscription
    nats.published = published

    return nats


@pytest.fixture
def mock_message():
    """Factory for creating mock NATS messages."""
    def _make_message(data: dict, reply_to: str = None):
        msg = MagicMock()
        msg.data = json.dumps(data).encode()
        msg.reply = reply_to
        msg.respond = AsyncMock()
        return msg
    return _make_message


# =============================================================================
# Collaborator Fakes
# =============================================================================

class FakeClock:
    """Settable wall clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeChat(ChatService):
    def __init__(self):
        self.messages = []

    async def broadcast(self, message, name=None):
        self.messages.append((message, name))

    @property
    def texts(self):
        return [message for message, _ in self.messages]


class FakeConsole(ServerConsole):
    """Records commands; can be told to fail or hang on specific ones."""

    def __init__(self):
        self.commands = []
        self.fail_on = set()
        self.hang_on = set()

    async def execute(self, command):
        self.commands.append(command)
        if command in self.hang_on:
            await asyncio.Event().wait()
        if command in self.fail_on:
            raise ServerCommandError(command, "refused")


class FakeVotes(VoteService):
    def __init__(self):
        self.prompts = []
        self.callbacks = []
        self.accept = True
        self.error = None

    async def start_vote(self, prompt, on_ended):
        if self.error:
            raise self.error
        if not self.accept:
            return False
        self.prompts.append(prompt)
        self.callbacks.append(on_ended)
        return True

    async def finish(self, *percents):
        """Close the latest vote with the given per-option fractions."""
        await self.callbacks[-1](VoteResult(percents=list(percents)))


class FakeRegistry(CommandRegistry):
    def __init__(self):
        self.commands = {}  # name -> (description, handler)
        self.history = []
        self.peak = 0

    async def register(self, name, description, handler):
        self.history.append(("register", name))
        self.commands[name] = (description, handler)
        self.peak = max(self.peak, len(self.commands))

    async def unregister(self, name):
        self.history.append(("unregister", name))
        return self.commands.pop(name, None) is not None

    async def invoke(self, name, user="admin"):
        return await self.commands[name][1](user)


class EventRecorder:
    """Engine on_event callback that records events and runs hooks."""

    def __init__(self):
        self.events = []
        self.hooks = {}

    async def __call__(self, event, data):
        self.events.append((event, data))
        hook = self.hooks.get(event)
        if hook:
            hook(data)

    def names(self):
        return [event for event, _ in self.events]

    def count(self, event):
        return self.names().count(event)

    def last(self, event):
        return [data for name, data in self.events if name == event][-1]

    async def wait_for(self, event, count=1, timeout=2.0):
        async def _poll():
            while self.count(event) < count:
                await asyncio.sleep(0.001)
        await asyncio.wait_for(_poll(), timeout)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock():
    """Clock set 50ms before a 04:00 slot's five minute lead-in begins."""
    return FakeClock(datetime(2025, 6, 1, 3, 54, 59, 950000))


@pytest.fixture
def chat():
    return FakeChat()


@pytest.fixture
def console():
    return FakeConsole()


@pytest.fixture
def votes():
    return FakeVotes()


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def make_engine(chat, console, clock, recorder):
    """Factory for engines with fast timers."""

    def _make(**kwargs):
        options = {
            "countdown_minutes": 5,
            "auto_restart": True,
            "tick_interval": 0.01,
            "vote_delay": 0.01,
            "command_timeout": 1.0,
            "clock": clock,
            "on_event": recorder,
        }
        options.update(kwargs)
        return ShutdownEngine(chat, console, **options)

    return _make
