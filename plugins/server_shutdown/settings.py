"""
plugins/server_shutdown/settings.py

Typed view of the ServerShutdown* configuration values.

The configuration store hands values over as whatever the config file
or the change notification carried (usually strings such as "True" or
"0.60"), so every key has a coercion step that also enforces bounds.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict


KEY_AUTO_RESTART = "ServerShutdownAutoRestart"
KEY_SCHEDULE = "ServerShutdownSchedule"
KEY_ENABLE_VOTE = "ServerShutdownEnableVote"
KEY_VOTE_PERCENT = "ServerShutdownVotePercent"
KEY_COUNTDOWN_TIME = "ServerShutdownCountdownTime"

DEFAULT_COUNTDOWN_MINUTES = 5
DEFAULT_VOTE_PERCENT = 0.60

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off"}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise ValueError(f"Expected a boolean, got {value!r}")


def _to_percent(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"Expected a number between 0 and 1, got {value!r}")
    try:
        percent = float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Expected a number between 0 and 1, got {value!r}") from e
    if not 0.0 <= percent <= 1.0:
        raise ValueError(f"Vote percent must be between 0 and 1, got {percent}")
    return percent


def _to_minutes(value: Any) -> int:
    try:
        minutes = int(str(value).strip())
    except (TypeError, ValueError) as e:
        raise ValueError(f"Expected a whole number of minutes, got {value!r}") from e
    if minutes < 1:
        raise ValueError(f"Countdown time must be at least 1 minute, got {minutes}")
    return minutes


def _to_schedule_text(value: Any) -> str:
    return "" if value is None else str(value)


# key -> (dataclass field, coercion)
_FIELDS = {
    KEY_AUTO_RESTART: ("auto_restart", _to_bool),
    KEY_SCHEDULE: ("schedule_text", _to_schedule_text),
    KEY_ENABLE_VOTE: ("enable_vote", _to_bool),
    KEY_VOTE_PERCENT: ("vote_percent", _to_percent),
    KEY_COUNTDOWN_TIME: ("countdown_minutes", _to_minutes),
}


@dataclass(frozen=True)
class ShutdownSettings:
    """
    Current plugin settings.

    Attributes:
        auto_restart: Restart (True) or shut down (False) at T-0.
        schedule_text: Raw "HH:MM,HH:MM" schedule as configured.
        enable_vote: Whether the vote command does anything.
        vote_percent: Fraction of yes votes needed (inclusive).
        countdown_minutes: Length of the warning ladder before a slot.
    """
    auto_restart: bool = True
    schedule_text: str = ""
    enable_vote: bool = True
    vote_percent: float = DEFAULT_VOTE_PERCENT
    countdown_minutes: int = DEFAULT_COUNTDOWN_MINUTES

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'ShutdownSettings':
        """
        Build settings from a config section.

        Unknown keys are ignored; missing keys take their defaults.

        Raises:
            ValueError: If a present value fails coercion.
        """
        settings = cls()
        for key in _FIELDS:
            if key in config:
                settings = settings.updated(key, config[key])
        return settings

    @staticmethod
    def is_known_key(key: str) -> bool:
        return key in _FIELDS

    def updated(self, key: str, value: Any) -> 'ShutdownSettings':
        """
        Return a copy with one configuration key changed.

        Raises:
            KeyError: If key is not a ServerShutdown* key.
            ValueError: If value fails coercion or bounds.
        """
        field_name, coerce = _FIELDS[key]
        return replace(self, **{field_name: coerce(value)})
