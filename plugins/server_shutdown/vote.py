"""
plugins/server_shutdown/vote.py

Player vote to shut down (or restart) the server early.

The vote itself (who may vote, how long it runs, one vote at a time) is
the vote service's business. This adapter only asks for a vote with the
right prompt and, when the tally comes back, compares the yes fraction to
ServerShutdownVotePercent and arms the engine's 30 second countdown.
"""

import logging
from typing import Callable, Optional

from .bridge import ChatService, VoteResult, VoteService
from .engine import ShutdownEngine
from .errors import VoteError
from .settings import ShutdownSettings


logger = logging.getLogger(__name__)


class VoteTrigger:
    """
    Starts shutdown votes and acts on their outcome.

    Args:
        votes: Vote subsystem.
        chat: Broadcast target for the result.
        engine: Engine to arm on success.
        settings: Returns the current settings; read when a vote starts
                  and again when it ends, so threshold edits apply to a
                  vote already running.
    """

    def __init__(
        self,
        votes: VoteService,
        chat: ChatService,
        engine: ShutdownEngine,
        settings: Callable[[], ShutdownSettings],
    ):
        self.votes = votes
        self.chat = chat
        self.engine = engine
        self._settings = settings

    async def request(self, user: str) -> Optional[str]:
        """
        Handle the voteshutdown/voterestart admin command.

        Returns:
            Reply text for the issuing admin, or None for no reply.
        """
        settings = self._settings()
        if not settings.enable_vote:
            logger.debug(f"Vote requested by {user} but voting is disabled")
            return None

        prompt = self.engine.wording.vote_prompt
        try:
            started = await self.votes.start_vote(prompt, self.on_vote_ended)
        except VoteError as e:
            logger.error(f"Could not start vote for {user}: {e}")
            return "The vote system is unavailable."

        if not started:
            logger.info(f"Vote requested by {user} was not started")
            return None

        logger.info(f"{user} started a vote: {prompt}")
        return None

    async def on_vote_ended(self, result: VoteResult) -> None:
        """Compare the tally to the threshold and arm or report failure."""
        threshold = self._settings().vote_percent
        fraction = result.yes_fraction

        if fraction >= threshold:
            await self._broadcast(f"Vote succeeded with {fraction:.2%} of the vote.", "Vote")
            await self._broadcast(self.engine.wording.imminent(int(self.engine.vote_delay)))
            await self.engine.start_vote_countdown()
            logger.info(f"Vote passed ({fraction:.2%} >= {threshold:.2%})")
        else:
            await self._broadcast(f"Vote failed with {fraction:.2%} of the vote.", "Vote")
            logger.info(f"Vote failed ({fraction:.2%} < {threshold:.2%})")

    async def _broadcast(self, message: str, name: Optional[str] = None) -> None:
        try:
            await self.chat.broadcast(message, name)
        except Exception as e:
            logger.error(f"Failed to broadcast '{message}': {e}")
