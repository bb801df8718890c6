"""Models for enum types used by aiokodisync."""

from enum import Enum

DEFAULT_PLAYER_ID = 1
"""Player id of the video player on a stock Kodi installation."""


class PlayerMethod(Enum):
    """JSON-RPC methods sent to Kodi."""

    GET_PROPERTIES = "Player.GetProperties"
    PLAY_PAUSE = "Player.PlayPause"


class PlayerNotification(Enum):
    """JSON-RPC notifications pushed by Kodi."""

    ON_PAUSE = "Player.OnPause"
    """Playback was paused on the node."""
    ON_RESUME = "Player.OnResume"
    """Playback was resumed on the node."""


class Operation(Enum):
    """What to do with the response to a request once it arrives."""

    NONE = "none"
    """Plain acknowledgment, nothing is recorded."""
    ELAPSED_TIME = "elapsed_time"
    """Record the elapsed playback time of the node."""
    SPEED = "speed"
    """Record the play/pause speed of the node."""


class PlaybackState(Enum):
    """Global playback state of a pool of nodes."""

    PLAYING = "playing"
    PAUSED = "paused"
    BUSY = "busy"
    """
    A synchronization pass is issuing its own pause/resume commands.

    Resume notifications are not treated as user actions while busy.
    """
