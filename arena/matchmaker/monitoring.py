# SPDX-License-Identifier: GPL-2.0-or-later
from prometheus_client import start_http_server, Counter, Gauge

matchmaker_connected_clients = Gauge(
    'arena_matchmaker_connected_clients',
    'Number of open matchmaking sessions',
)

matchmaker_tickets = Gauge(
    'arena_matchmaker_tickets',
    'Number of matchmaking tickets held in memory',
)

matchmaker_queued_players = Gauge(
    'arena_matchmaker_queued_players',
    'Number of queued players across all partitions',
)

matchmaker_leased_servers = Gauge(
    'arena_matchmaker_leased_servers',
    'Number of game servers under a lease',
)

matchmaker_registered_servers = Gauge(
    'arena_matchmaker_registered_servers',
    'Number of game servers known to the registry',
)

matchmaker_tickets_created = Counter(
    'arena_matchmaker_tickets_created',
    'Number of tickets created by the ticket route',
)

matchmaker_matches_started = Counter(
    'arena_matchmaker_matches_started',
    'Number of quorums popped from a queue partition',
)

matchmaker_assignment_failures = Counter(
    'arena_matchmaker_assignment_failures',
    'Number of sessions closed because no server was available',
)

matchmaker_evicted_servers = Counter(
    'arena_matchmaker_evicted_servers',
    'Number of game servers evicted on heartbeat timeout',
)

matchmaker_recycled_servers = Counter(
    'arena_matchmaker_recycled_servers',
    'Number of game server leases recycled',
)

matchmaker_rejected_sessions = Counter(
    'arena_matchmaker_rejected_sessions',
    'Number of matchmaking sessions rejected at authentication',
)

matchmaker_exception = Counter(
    'arena_matchmaker_exception',
    'Number of exceptions raised in background tasks and session handlers',
)


def monitoring_start(port=9060):
    start_http_server(port)
