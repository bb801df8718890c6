"""Player messages for the Kodi JSON-RPC API.

This module contains the parameters sent with Player.* methods and the results
Kodi returns for them. Only the properties needed to keep players in sync are
modelled: the elapsed time of the current item and the playback speed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

from .types import DEFAULT_PLAYER_ID


# Player.GetProperties
@dataclass
class GetPropertiesParams(DataClassORJSONMixin):
    """Parameters of Player.GetProperties."""

    playerid: int = DEFAULT_PLAYER_ID
    properties: list[str] = field(default_factory=lambda: ["time"])


@dataclass
class PlayerTime(DataClassORJSONMixin):
    """Global.Time structure returned for the time property."""

    hours: int = 0
    minutes: int = 0
    seconds: int = 0
    milliseconds: int = 0

    def total_seconds(self) -> float:
        """Return the time as a single duration in seconds."""
        return (
            self.hours * 3600
            + self.minutes * 60
            + self.seconds
            + self.milliseconds / 1_000
        )


@dataclass
class PlayerPropertiesResult(DataClassORJSONMixin):
    """Result of Player.GetProperties and Player.PlayPause."""

    time: PlayerTime | None = None
    """Elapsed time of the current item."""
    speed: int | None = None
    """Playback speed, 0 when paused."""


# Player.PlayPause
@dataclass
class PlayPauseParams(DataClassORJSONMixin):
    """Parameters of Player.PlayPause."""

    play: bool
    """True to play, False to pause; never toggle."""
    playerid: int = DEFAULT_PLAYER_ID

    class Config(BaseConfig):
        """Config for serializing json messages."""

        omit_none = True
