# SPDX-License-Identifier: GPL-2.0-or-later
"""Errors raised by the matchmaking core.

Bookkeeping misses (unknown ticket, unknown server) are not errors: the
components return None or False and let the caller decide.
"""


class MatchmakingError(Exception):
    """Base class for all the matchmaking errors."""

    pass


class AuthorizationError(MatchmakingError):
    """Raised when a game server registers with a wrong shared secret."""

    pass


class InvalidFormatError(MatchmakingError):
    """Raised when a bucket id cannot be parsed."""

    pass


class UnknownPlaylistError(MatchmakingError):
    """Raised when a playlist does not resolve to any configured game mode."""

    def __init__(self, playlist):
        self.playlist = playlist
        super().__init__(f"Unknown playlist: {playlist}")
