import pytest

from arena.matchmaker.errors import AuthorizationError
from arena.matchmaker.registry import OFFLINE, GameServerRegistry

SECRET = 'hunter2'


def server(region='NAE', gamemode='solo', **kwargs):
    return dict(region=region, gamemode=gamemode, ip='10.0.0.1', **kwargs)


@pytest.fixture
def registry():
    return GameServerRegistry(secret=SECRET, timeout_secs=60)


def test_register(registry):
    record = registry.register('nae-1', server(region='nae', port=7778), SECRET)
    assert 'nae-1' in registry
    assert record.region == 'NAE'
    assert record.port == 7778
    assert record.status == 'online'
    assert record.last_heartbeat > 0


def test_register_bad_secret(registry):
    with pytest.raises(AuthorizationError):
        registry.register('nae-1', server(), 'nope')
    assert len(registry) == 0


def test_register_without_configured_secret():
    registry = GameServerRegistry(secret=None)
    with pytest.raises(AuthorizationError):
        registry.register('nae-1', server(), None)


def test_register_upserts(registry):
    registry.register('nae-1', server(max_players=10), SECRET)
    registry.register('nae-1', server(max_players=20), SECRET)
    assert len(registry) == 1
    assert registry.get('nae-1').max_players == 20


def test_heartbeat(registry):
    record = registry.register('nae-1', server(), SECRET)
    record.last_heartbeat = 0
    assert registry.heartbeat('nae-1', 12, OFFLINE)
    assert record.current_players == 12
    assert record.status == OFFLINE
    assert record.last_heartbeat > 0


def test_heartbeat_unknown(registry):
    assert not registry.heartbeat('ghost', 1)


def test_unregister_idempotent(registry):
    registry.register('nae-1', server(), SECRET)
    assert registry.unregister('nae-1')
    assert not registry.unregister('nae-1')
    assert len(registry) == 0


def test_sweep_inactive(registry):
    registry.register('fresh', server(), SECRET).last_heartbeat = 1000
    registry.register('stale', server(), SECRET).last_heartbeat = 900
    assert registry.sweep_inactive(now=1030) == ['stale']
    assert 'fresh' in registry
    assert 'stale' not in registry


def test_sweep_keeps_static_servers(registry):
    registry.load_static(
        {'eu': {'servers': [{'id': 'eu-1', 'gamemode': 'solo'}]}}
    )
    assert registry.get('eu-1').region == 'EU'
    assert registry.sweep_inactive(now=10 ** 12) == []
    assert 'eu-1' in registry


def test_find_best_server_prefers_fullest(registry):
    registry.register('empty', server(current_players=0), SECRET)
    registry.register('half', server(current_players=50), SECRET)
    registry.register('full', server(current_players=100), SECRET)
    assert registry.find_best_server('solo', 'NAE').id == 'half'


def test_find_best_server_filters(registry):
    registry.register('eu', server(region='EU'), SECRET)
    registry.register('duo', server(gamemode='duo'), SECRET)
    registry.register('off', server(), SECRET).status = OFFLINE
    assert registry.find_best_server('solo', 'NAE') is None
    assert registry.find_best_server('solo').id == 'eu'
    assert registry.find_best_server('solo', exclude=['eu']) is None


def test_find_available_ignores_capacity(registry):
    registry.register('full', server(current_players=100), SECRET)
    assert registry.find_best_server('solo', 'NAE') is None
    assert registry.find_available('solo', 'NAE').id == 'full'
    assert registry.find_available('solo', 'NAE', exclude={'full'}) is None
