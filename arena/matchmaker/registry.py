# SPDX-License-Identifier: GPL-2.0-or-later
"""Registry of the game server fleet.

Game servers register themselves with a shared secret and then send periodic
heartbeats. Servers that stop sending heartbeats are evicted by
:meth:`GameServerRegistry.sweep_inactive`. Servers declared in the
configuration file are registered at startup as static servers: they never
send heartbeats and are never evicted.
"""

import dataclasses
import hmac
import logging
import time
from typing import Any, Dict, Iterable, List, Optional

from .errors import AuthorizationError

ONLINE = 'online'
OFFLINE = 'offline'


@dataclasses.dataclass
class GameServerRecord:
    """One game server process known to the matchmaker."""

    id: str
    region: str
    gamemode: str
    ip: str
    port: int
    max_players: int
    current_players: int = 0
    status: str = ONLINE
    name: str = ''
    last_heartbeat: float = 0.0
    static: bool = False

    @classmethod
    def from_data(kls, server_id, data, **kwargs) -> 'GameServerRecord':
        """Returns a record from the JSON-like `data` a game server sends."""
        return kls(
            id=str(server_id),
            region=str(data.get('region', '')).upper(),
            gamemode=str(data.get('gamemode', '')),
            ip=str(data.get('ip', '127.0.0.1')),
            port=int(data.get('port', 7777)),
            max_players=int(data.get('max_players', 100)),
            current_players=int(data.get('current_players', 0)),
            name=str(data.get('name') or server_id),
            **kwargs,
        )

    @property
    def has_capacity(self) -> bool:
        return self.current_players < self.max_players

    @property
    def eligible(self) -> bool:
        """Online with spare capacity."""
        return self.status == ONLINE and self.has_capacity

    def as_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


class GameServerRegistry:
    """The game servers, indexed by server id."""

    def __init__(self, secret=None, timeout_secs=120):
        self.secret = secret
        self.timeout_secs = timeout_secs
        self.servers: Dict[str, GameServerRecord] = {}

    def __len__(self):
        return len(self.servers)

    def __contains__(self, server_id):
        return server_id in self.servers

    def get(self, server_id) -> Optional[GameServerRecord]:
        return self.servers.get(server_id)

    def load_static(self, regions) -> int:
        """Registers the servers of the ``regions`` configuration section.

        Returns the number of loaded servers.
        """
        count = 0
        for region, region_data in (regions or {}).items():
            for server in (region_data or {}).get('servers') or []:
                data = {'region': region, **server}
                record = GameServerRecord.from_data(
                    server['id'],
                    data,
                    status=server.get('status', ONLINE),
                    last_heartbeat=time.time(),
                    static=True,
                )
                self.servers[record.id] = record
                count += 1
        logging.info(
            "loaded %d static game servers across %d regions",
            count,
            len(regions or {}),
        )
        return count

    def register(self, server_id, server_data, secret) -> GameServerRecord:
        """Upserts a game server, marking it online with a fresh heartbeat.

        Raises AuthorizationError if `secret` is not the shared secret.
        """
        if self.secret is None or not hmac.compare_digest(
            str(secret or '').encode(), str(self.secret).encode()
        ):
            logging.warning(
                "refused registration of game server %s: bad secret",
                server_id,
            )
            raise AuthorizationError("Invalid gameserver secret")

        record = GameServerRecord.from_data(
            server_id, server_data, status=ONLINE, last_heartbeat=time.time()
        )
        self.servers[record.id] = record
        logging.info(
            "game server registered: %s (%s, %s)",
            record.id,
            record.region,
            record.gamemode,
        )
        return record

    def heartbeat(self, server_id, current_players, status=ONLINE) -> bool:
        """Refreshes a server liveness. Returns False for unknown servers."""
        record = self.servers.get(server_id)
        if record is None:
            return False
        record.last_heartbeat = time.time()
        record.current_players = int(current_players)
        record.status = status
        logging.debug(
            "heartbeat from %s: %s/%s players, %s",
            server_id,
            record.current_players,
            record.max_players,
            status,
        )
        return True

    def unregister(self, server_id) -> bool:
        """Removes a server. Returns whether it was known."""
        if self.servers.pop(server_id, None) is None:
            return False
        logging.info("game server unregistered: %s", server_id)
        return True

    def sweep_inactive(self, now=None) -> List[str]:
        """Evicts the servers whose last heartbeat is older than the timeout.

        Returns the ids of the evicted servers.
        """
        now = time.time() if now is None else now
        evicted = [
            server_id
            for server_id, record in self.servers.items()
            if not record.static
            and now - record.last_heartbeat > self.timeout_secs
        ]
        for server_id in evicted:
            logging.warning("game server %s timed out, removing", server_id)
            del self.servers[server_id]
        return evicted

    def find_best_server(
        self, gamemode, region=None, exclude: Iterable[str] = ()
    ) -> Optional[GameServerRecord]:
        """Returns the fullest online server of `gamemode` with spare capacity.

        Filling partially full servers first keeps empty servers for new
        matches. Servers in `exclude` are never returned. The registry does
        not know about leases: use :meth:`MatchmakingCore.find_best_server`.
        """
        exclude = set(exclude)
        candidates = [
            record
            for record in self.servers.values()
            if record.eligible
            and record.gamemode == gamemode
            and (region is None or record.region == region)
            and record.id not in exclude
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda record: record.current_players)

    def find_available(
        self, gamemode, region=None, exclude: Iterable[str] = ()
    ) -> Optional[GameServerRecord]:
        """Returns the first online server of `gamemode` not in `exclude`.

        Player counts are not looked at: once a server has been handed out,
        the lease table decides whether it is busy.
        """
        exclude = set(exclude)
        for record in self.servers.values():
            if (
                record.status == ONLINE
                and record.gamemode == gamemode
                and (region is None or record.region == region)
                and record.id not in exclude
            ):
                return record
        return None

    def total_players(self) -> int:
        return sum(record.current_players for record in self.servers.values())
