# SPDX-License-Identifier: GPL-2.0-or-later
"""The in-memory matchmaking state of one process.

:class:`MatchmakingCore` owns the four tables (game servers, tickets, queue
partitions, leases) and the background sweeps that keep them consistent. All
mutations happen on the event loop thread, so no locking is needed as long as
nothing blocks while a table is being updated.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List

import arena.config
from .leases import LeaseAllocator
from .monitoring import (
    matchmaker_evicted_servers,
    matchmaker_exception,
    matchmaker_leased_servers,
    matchmaker_queued_players,
    matchmaker_recycled_servers,
    matchmaker_registered_servers,
    matchmaker_tickets,
)
from .queue import QueueEngine
from .registry import GameServerRegistry
from .tickets import GameModeTable, TicketStore

MATCHMAKER_DEFAULTS = {
    'host': '0.0.0.0',
    'port': 8080,
    'service_url': 'ws://127.0.0.1:8080',
    'jwt_secret': None,
    'gameserver_secret': None,
    'gameserver_timeout_secs': 120,
    'sweep_interval_secs': 60,
    'recycle_interval_secs': 60,
    'monitoring_port': 9060,
}

SETTINGS_DEFAULTS = {
    'min_players_to_start': 2,
    'max_players_in_queue': 1000,
    'connecting_delay_ms': 800,
    'waiting_delay_ms': 1000,
    'queue_full_poll_ms': 500,
    'queued_delay_ms': 200,
    'queue_update_interval_ms': 1500,
    'match_start_delay_ms': 1500,
    'session_assignment_delay_ms': 2000,
    'join_delay_ms': 200,
    'join_delay_sec': 3,
    'join_token_ttl_secs': 3600,
    'ticket_ttl_secs': 600,
}


class MatchmakingCore:
    def __init__(self, config):
        self.config = config
        self.settings = arena.config.section(
            config, 'matchmaking_settings', SETTINGS_DEFAULTS
        )
        self.service = arena.config.section(
            config, 'matchmaker', MATCHMAKER_DEFAULTS
        )

        self.game_modes = GameModeTable.from_config(config.get('game_modes'))
        self.registry = GameServerRegistry(
            secret=self.service['gameserver_secret'],
            timeout_secs=self.service['gameserver_timeout_secs'],
        )
        self.registry.load_static(config.get('regions'))
        self.tickets = TicketStore(self.game_modes)
        self.queue = QueueEngine(
            self.tickets,
            max_players_in_queue=self.settings['max_players_in_queue'],
            min_players_to_start=self.settings['min_players_to_start'],
        )
        self.leases = LeaseAllocator(self.registry, self.tickets)

    def find_best_server(self, gamemode, region=None, now=None):
        """Fullest server of `gamemode` with spare capacity and no lease."""
        return self.registry.find_best_server(
            gamemode, region, exclude=self.leases.leased_servers(now)
        )

    def _forget_server(self, server_id):
        self.leases.release(server_id)
        for ticket in self.tickets.assigned_to(server_id):
            logging.warning(
                "dropping ticket of %s: server %s is gone",
                ticket.account_id,
                server_id,
            )
            self.tickets.delete_ticket(ticket.account_id)

    def sweep_inactive(self, now=None) -> List[str]:
        """Evicts silent game servers along with their leases and tickets."""
        evicted = self.registry.sweep_inactive(now)
        for server_id in evicted:
            matchmaker_evicted_servers.inc()
            self._forget_server(server_id)
        return evicted

    def unregister_server(self, server_id) -> bool:
        if not self.registry.unregister(server_id):
            return False
        self._forget_server(server_id)
        return True

    def recycle_servers(self, now=None) -> List[str]:
        """Ends the expired leases and the tickets that held them."""
        expired = self.leases.recycle_servers(now)
        for lease in expired:
            matchmaker_recycled_servers.inc()
            ticket = self.tickets.get_ticket(lease.account_id)
            if ticket is not None and ticket.match_id == lease.match_id:
                self.tickets.delete_ticket(lease.account_id)
        return [lease.server_id for lease in expired]

    def update_gauges(self):
        matchmaker_tickets.set(len(self.tickets))
        matchmaker_queued_players.set(self.queue.total_queued())
        matchmaker_leased_servers.set(len(self.leases.leased_servers()))
        matchmaker_registered_servers.set(len(self.registry))

    async def janitor_task(self):
        sweep_interval = self.service['sweep_interval_secs']
        recycle_interval = self.service['recycle_interval_secs']
        last_sweep = last_recycle = time.monotonic()
        while True:
            try:
                now = time.monotonic()
                if now - last_sweep >= sweep_interval:
                    last_sweep = now
                    self.sweep_inactive()
                if now - last_recycle >= recycle_interval:
                    last_recycle = now
                    self.recycle_servers()
                self.update_gauges()
            except asyncio.CancelledError:
                raise
            except Exception:
                matchmaker_exception.inc()
                logging.exception('Janitor task triggered an exception')
            await asyncio.sleep(1)

    def stats(self) -> Dict[str, Any]:
        return {
            'tickets': len(self.tickets),
            'queues': {
                f'{region}:{playlist}': len(members)
                for (region, playlist), members in self.queue.partitions.items()
            },
            'queuedPlayers': self.queue.total_queued(),
            'leases': len(self.leases.leased_servers()),
            'servers': len(self.registry),
            'onlinePlayers': self.registry.total_players(),
            'timestamp': time.time(),
        }
