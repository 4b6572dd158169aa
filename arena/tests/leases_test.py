import pytest

from arena.matchmaker.leases import LeaseAllocator
from arena.matchmaker.registry import OFFLINE, GameServerRegistry
from arena.matchmaker.tickets import (
    SESSION_ASSIGNED,
    GameModeTable,
    TicketStore,
)

SECRET = 'hunter2'
NOW = 1_000_000


@pytest.fixture
def registry():
    return GameServerRegistry(secret=SECRET)


@pytest.fixture
def tickets(game_modes_config):
    return TicketStore(GameModeTable.from_config(game_modes_config))


@pytest.fixture
def leases(registry, tickets):
    return LeaseAllocator(registry, tickets)


def add_server(registry, server_id, region='NAE', gamemode='solo', **kwargs):
    data = dict(
        region=region,
        gamemode=gamemode,
        ip='10.0.0.1',
        port=7777,
        name=f'{server_id}-name',
        **kwargs,
    )
    return registry.register(server_id, data, SECRET)


def test_assign_server(registry, tickets, leases):
    add_server(registry, 'nae-1', current_players=5, max_players=10)
    ticket = tickets.create_ticket('acc1', '1:x:NAE:solo')

    server = leases.assign_server('acc1', now=NOW)
    assert server.server_id == 'nae-1'
    assert server.server_name == 'nae-1-name'
    assert server.playlist_name == 'Playlist_DefaultSolo'
    assert server.region == 'NAE'
    assert ticket.assigned_server is server
    assert ticket.status == SESSION_ASSIGNED

    lease = leases.leases['nae-1']
    assert lease.account_id == 'acc1'
    assert lease.match_id == ticket.match_id
    assert lease.recycle_at == NOW + 25 * 60


def test_leased_server_is_not_handed_twice(registry, tickets, leases):
    add_server(registry, 'nae-1', current_players=5, max_players=10)
    tickets.create_ticket('acc1', '1:x:NAE:solo')
    tickets.create_ticket('acc2', '1:x:NAE:solo')
    assert leases.assign_server('acc1', now=NOW) is not None
    assert leases.assign_server('acc2', now=NOW) is None
    assert tickets.get_ticket('acc2').assigned_server is None


def test_capacity_is_not_checked(registry, tickets, leases):
    add_server(registry, 'nae-1', current_players=10, max_players=10)
    tickets.create_ticket('acc1', '1:x:NAE:solo')
    assert leases.assign_server('acc1', now=NOW).server_id == 'nae-1'


def test_falls_back_to_other_regions(registry, tickets, leases):
    add_server(registry, 'eu-1', region='EU')
    add_server(registry, 'duo-1', gamemode='duo')
    add_server(registry, 'off-1').status = OFFLINE
    tickets.create_ticket('acc1', '1:x:NAE:solo')
    server = leases.assign_server('acc1', now=NOW)
    assert server.server_id == 'eu-1'
    assert server.region == 'NAE'


def test_same_region_first(registry, tickets, leases):
    add_server(registry, 'eu-1', region='EU')
    add_server(registry, 'nae-1')
    tickets.create_ticket('acc1', '1:x:NAE:solo')
    assert leases.assign_server('acc1', now=NOW).server_id == 'nae-1'


def test_assign_server_without_ticket(registry, leases):
    add_server(registry, 'nae-1')
    assert leases.assign_server('ghost', now=NOW) is None
    assert leases.leases == {}


def test_lease_duration_follows_game_mode(registry, tickets, leases):
    add_server(registry, 'duo-1', gamemode='duo')
    tickets.create_ticket('acc1', '1:x:NAE:duo')
    server = leases.assign_server('acc1', now=NOW)
    assert server.playlist_name == 'Playlist_DefaultDuo'
    assert leases.leases['duo-1'].recycle_at == NOW + 10 * 60


def test_recycle_servers(registry, tickets, leases):
    add_server(registry, 'nae-1')
    tickets.create_ticket('acc1', '1:x:NAE:solo')
    tickets.create_ticket('acc2', '1:x:NAE:solo')
    leases.assign_server('acc1', now=NOW)

    recycle_at = NOW + 25 * 60
    assert leases.recycle_servers(now=recycle_at - 1) == []
    assert leases.is_leased('nae-1', now=recycle_at - 1)
    assert not leases.is_leased('nae-1', now=recycle_at)

    # Expired leases do not block allocation even before being recycled.
    assert leases.assign_server('acc2', now=recycle_at) is not None
    assert leases.leases['nae-1'].account_id == 'acc2'

    expired = leases.recycle_servers(now=recycle_at + 25 * 60)
    assert [lease.account_id for lease in expired] == ['acc2']
    assert leases.leases == {}


def test_release(registry, tickets, leases):
    add_server(registry, 'nae-1')
    tickets.create_ticket('acc1', '1:x:NAE:solo')
    leases.assign_server('acc1', now=NOW)
    assert leases.release('nae-1').account_id == 'acc1'
    assert leases.release('nae-1') is None
    assert leases.leased_servers(now=NOW) == set()
