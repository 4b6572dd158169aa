# SPDX-License-Identifier: GPL-2.0-or-later
"""Matchmaking tickets: one per account, from creation to server assignment.

A ticket is created by the HTTP ticket route from a *bucket id*
(``buildId:unused:region:playlist``) and then driven by the matchmaking
WebSocket flow through the ``connecting``, ``queued`` and
``session_assigned`` statuses.
"""

import dataclasses
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from .errors import InvalidFormatError, UnknownPlaylistError

CONNECTING = 'connecting'
QUEUED = 'queued'
SESSION_ASSIGNED = 'session_assigned'

DEFAULT_TIME_BETWEEN_GAMES = 25


@dataclasses.dataclass(frozen=True)
class GameMode:
    name: str
    playlist: str
    playlist_id: str = ''
    legacy_id: str = ''
    time_between_games: float = DEFAULT_TIME_BETWEEN_GAMES

    @property
    def aliases(self):
        return {
            alias.lower()
            for alias in (
                self.name,
                self.playlist,
                self.playlist_id,
                self.legacy_id,
            )
            if alias
        }


class GameModeTable:
    """Maps playlist names, short ids and legacy ids to game modes."""

    def __init__(self, modes=()):
        self.modes: Dict[str, GameMode] = {mode.name: mode for mode in modes}
        self._by_alias: Dict[str, GameMode] = {}
        for mode in self.modes.values():
            for alias in mode.aliases:
                self._by_alias.setdefault(alias, mode)

    @classmethod
    def from_config(kls, game_modes) -> 'GameModeTable':
        """Builds the table from the ``game_modes`` configuration section."""
        modes = []
        for name, cfg in (game_modes or {}).items():
            cfg = cfg or {}
            modes.append(
                GameMode(
                    name=name,
                    playlist=str(cfg.get('playlist') or name),
                    playlist_id=str(cfg.get('playlist_id') or ''),
                    legacy_id=str(cfg.get('legacy_id') or ''),
                    time_between_games=float(
                        cfg.get(
                            'time_between_games', DEFAULT_TIME_BETWEEN_GAMES
                        )
                    ),
                )
            )
        return kls(modes)

    def __len__(self):
        return len(self.modes)

    def get(self, name) -> Optional[GameMode]:
        return self.modes.get(name)

    def resolve(self, playlist) -> Optional[GameMode]:
        """Returns the game mode `playlist` refers to, case insensitively."""
        if not playlist:
            return None
        return self._by_alias.get(str(playlist).lower())

    def canonical_playlist(self, playlist) -> str:
        """Returns the canonical playlist name, or `playlist` if unknown."""
        mode = self.resolve(playlist)
        return mode.playlist if mode else playlist


class Bucket(NamedTuple):
    build_id: str
    region: str
    playlist: str


def parse_bucket_id(bucket_id) -> Bucket:
    """Splits a ``buildId:unused:region:playlist`` bucket id.

    Raises InvalidFormatError when the region segment is missing.
    """
    parts = str(bucket_id or '').split(':')
    if len(parts) < 3 or not parts[2]:
        raise InvalidFormatError(f"Invalid bucketId format: {bucket_id!r}")
    playlist = parts[3] if len(parts) > 3 else ''
    return Bucket(build_id=parts[0], region=parts[2].upper(), playlist=playlist)


def new_id() -> str:
    return uuid.uuid4().hex


@dataclasses.dataclass
class AssignedServer:
    """The game server a ticket was bound to."""

    server_id: str
    server_name: str
    ip: str
    port: int
    playlist_name: str
    region: str

    def as_payload(self) -> Dict[str, Any]:
        """Returns the descriptor in the format game clients expect."""
        return {
            'gameserverIP': self.ip,
            'gameserverPort': self.port,
            'PLAYLISTNAME_s': self.playlist_name,
            'REGION_s': self.region,
            'serverName': self.server_name,
            'serverId': self.server_id,
        }


@dataclasses.dataclass
class MatchTicket:
    account_id: str
    region: str
    playlist: str
    gamemode: str
    build_id: str = ''
    attributes: Dict[str, Any] = dataclasses.field(default_factory=dict)
    ticket_id: str = dataclasses.field(default_factory=new_id)
    match_id: str = dataclasses.field(default_factory=new_id)
    session_id: str = dataclasses.field(default_factory=new_id)
    created_at: float = dataclasses.field(default_factory=time.time)
    status: str = CONNECTING
    assigned_server: Optional[AssignedServer] = None

    @property
    def partition(self):
        """The ``(region, playlist)`` queue partition of this ticket."""
        return self.region, self.playlist


class TicketStore:
    """Tickets indexed by account id, at most one per account.

    Callables in :attr:`removal_hooks` are called with the account id right
    before a ticket is deleted or replaced, while it can still be looked up.
    """

    def __init__(self, game_modes: GameModeTable):
        self.game_modes = game_modes
        self.tickets: Dict[str, MatchTicket] = {}
        self.removal_hooks: List[Callable[[str], Any]] = []

    def __len__(self):
        return len(self.tickets)

    def __contains__(self, account_id):
        return account_id in self.tickets

    def _run_removal_hooks(self, account_id):
        for hook in self.removal_hooks:
            hook(account_id)

    def create_ticket(self, account_id, bucket_id, attributes=None):
        """Creates the ticket of `account_id`, replacing any previous one.

        Raises InvalidFormatError for a bucket id without region and
        UnknownPlaylistError when the playlist matches no game mode.
        """
        bucket = parse_bucket_id(bucket_id)
        mode = self.game_modes.resolve(bucket.playlist)
        if mode is None:
            raise UnknownPlaylistError(bucket.playlist)

        if account_id in self.tickets:
            logging.debug("replacing ticket of %s", account_id)
            self._run_removal_hooks(account_id)

        ticket = MatchTicket(
            account_id=account_id,
            region=bucket.region,
            playlist=mode.playlist,
            gamemode=mode.name,
            build_id=bucket.build_id,
            attributes=dict(attributes or {}),
        )
        self.tickets[account_id] = ticket
        logging.info(
            "matchmaking ticket created for %s - %s in %s",
            account_id,
            mode.name,
            bucket.region,
        )
        return ticket

    def get_ticket(self, account_id) -> Optional[MatchTicket]:
        return self.tickets.get(account_id)

    def find_by_session(self, session_id) -> Optional[MatchTicket]:
        for ticket in self.tickets.values():
            if ticket.session_id == session_id:
                return ticket
        return None

    def delete_ticket(self, account_id) -> bool:
        """Deletes the ticket of `account_id` and its queue membership."""
        if account_id not in self.tickets:
            return False
        self._run_removal_hooks(account_id)
        del self.tickets[account_id]
        logging.debug("ticket of %s deleted", account_id)
        return True

    def assigned_to(self, server_id) -> List[MatchTicket]:
        """Returns the tickets bound to `server_id`."""
        return [
            ticket
            for ticket in self.tickets.values()
            if ticket.assigned_server is not None
            and ticket.assigned_server.server_id == server_id
        ]
