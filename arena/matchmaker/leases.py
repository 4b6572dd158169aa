# SPDX-License-Identifier: GPL-2.0-or-later
"""Binds tickets to game servers.

A lease makes a game server unavailable for ``time_between_games`` minutes
(per game mode) after it has been handed out. The lease table is the only
source of truth for occupancy: player counts reported by heartbeats are not
looked at when allocating.
"""

import dataclasses
import logging
import time
from typing import Dict, List, Optional, Set

from .registry import GameServerRegistry
from .tickets import (
    DEFAULT_TIME_BETWEEN_GAMES,
    SESSION_ASSIGNED,
    AssignedServer,
    TicketStore,
)

DEFAULT_PLAYLIST = 'Playlist_DefaultSolo'


@dataclasses.dataclass
class ServerLease:
    server_id: str
    account_id: str
    match_id: str
    assigned_at: float
    recycle_at: float

    def expired(self, now) -> bool:
        return now >= self.recycle_at


class LeaseAllocator:
    def __init__(self, registry: GameServerRegistry, tickets: TicketStore):
        self.registry = registry
        self.tickets = tickets
        self.leases: Dict[str, ServerLease] = {}

    def __len__(self):
        return len(self.leases)

    def is_leased(self, server_id, now=None) -> bool:
        now = time.time() if now is None else now
        lease = self.leases.get(server_id)
        return lease is not None and not lease.expired(now)

    def leased_servers(self, now=None) -> Set[str]:
        """Ids of the servers under a lease that has not expired yet."""
        now = time.time() if now is None else now
        return {
            server_id
            for server_id, lease in self.leases.items()
            if not lease.expired(now)
        }

    def assign_server(self, account_id, now=None) -> Optional[AssignedServer]:
        """Leases a game server to the ticket of `account_id`.

        Servers of the ticket region are tried first, then any region.
        Returns None if the account has no ticket or no server is free.
        """
        ticket = self.tickets.get_ticket(account_id)
        if ticket is None:
            logging.warning("cannot assign a server to %s: no ticket", account_id)
            return None

        now = time.time() if now is None else now
        busy = self.leased_servers(now)
        server = self.registry.find_available(
            ticket.gamemode, ticket.region, exclude=busy
        )
        if server is None:
            server = self.registry.find_available(ticket.gamemode, exclude=busy)
        if server is None:
            logging.warning(
                "no available server for %s in %s",
                ticket.gamemode,
                ticket.region,
            )
            return None

        mode = self.tickets.game_modes.get(ticket.gamemode)
        minutes = mode.time_between_games if mode else DEFAULT_TIME_BETWEEN_GAMES
        self.leases[server.id] = ServerLease(
            server_id=server.id,
            account_id=account_id,
            match_id=ticket.match_id,
            assigned_at=now,
            recycle_at=now + minutes * 60,
        )

        ticket.assigned_server = AssignedServer(
            server_id=server.id,
            server_name=server.name or server.id,
            ip=server.ip,
            port=server.port,
            playlist_name=mode.playlist if mode else DEFAULT_PLAYLIST,
            region=ticket.region,
        )
        ticket.status = SESSION_ASSIGNED
        logging.info(
            "server %s assigned to %s for match %s",
            server.id,
            account_id,
            ticket.match_id,
        )
        return ticket.assigned_server

    def recycle_servers(self, now=None) -> List[ServerLease]:
        """Drops the expired leases and returns them."""
        now = time.time() if now is None else now
        expired = [lease for lease in self.leases.values() if lease.expired(now)]
        for lease in expired:
            del self.leases[lease.server_id]
            logging.info(
                "server %s recycled and available again", lease.server_id
            )
        if expired:
            logging.info("recycled %d server(s)", len(expired))
        return expired

    def release(self, server_id) -> Optional[ServerLease]:
        """Drops the lease of `server_id` whatever its expiration."""
        return self.leases.pop(server_id, None)
