"""
plugins/server_shutdown/errors.py

Server shutdown plugin exceptions.
"""


class ShutdownPluginError(Exception):
    """Base exception for server shutdown plugin errors."""
    pass


class ServerCommandError(ShutdownPluginError):
    """A server console command failed or did not answer in time."""

    def __init__(self, command: str, reason: str):
        super().__init__(f"Server command '{command}' failed: {reason}")
        self.command = command
        self.reason = reason


class VoteError(ShutdownPluginError):
    """The vote service could not be reached or returned garbage."""
    pass
