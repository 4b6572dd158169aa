import pytest

import arena.rpc.client

SECRET = 'test-gameserver-secret'
SERVER = {'region': 'nae', 'gamemode': 'solo', 'ip': '10.0.0.1', 'port': 7777}


@pytest.fixture
def rpc_client(matchmaker_client):
    return arena.rpc.client.Client(
        "/", secret=SECRET.encode(), http_client=matchmaker_client
    )


async def test_register_server(rpc_client, matchmaker_service):
    record = await rpc_client.register_server('nae-1', SERVER, SECRET)
    assert record['id'] == 'nae-1'
    assert record['region'] == 'NAE'
    assert record['status'] == 'online'
    assert 'nae-1' in matchmaker_service.core.registry


async def test_register_server_needs_no_token(matchmaker_client):
    rpc_client = arena.rpc.client.Client("/", http_client=matchmaker_client)
    record = await rpc_client.register_server('nae-1', SERVER, SECRET)
    assert record['id'] == 'nae-1'


async def test_register_server_bad_secret(rpc_client, matchmaker_service):
    with pytest.raises(arena.rpc.client.RemoteError) as e:
        await rpc_client.register_server('nae-1', SERVER, 'nope')
    assert e.value.type == 'AuthorizationError'
    assert len(matchmaker_service.core.registry) == 0


async def test_heartbeat(rpc_client, matchmaker_service):
    await rpc_client.register_server('nae-1', SERVER, SECRET)
    assert await rpc_client.heartbeat('nae-1', 42)
    assert await rpc_client.heartbeat('ghost', 1) is False
    record = matchmaker_service.core.registry.get('nae-1')
    assert record.current_players == 42

    assert await rpc_client.heartbeat('nae-1', 0, 'offline')
    assert record.status == 'offline'


async def test_heartbeat_needs_token(matchmaker_client):
    rpc_client = arena.rpc.client.Client("/", http_client=matchmaker_client)
    with pytest.raises(arena.rpc.client.RemoteError) as e:
        await rpc_client.heartbeat('nae-1', 42)
    assert e.value.type == 'MissingToken'


async def test_unregister_server(rpc_client, matchmaker_service):
    core = matchmaker_service.core
    await rpc_client.register_server('nae-1', SERVER, SECRET)
    core.tickets.create_ticket('acc1', '1:0:NAE:solo')
    core.leases.assign_server('acc1')

    assert await rpc_client.unregister_server('nae-1')
    assert core.tickets.get_ticket('acc1') is None
    assert core.leases.leases == {}
    assert not await rpc_client.unregister_server('nae-1')


async def test_list_servers(rpc_client, matchmaker_service):
    core = matchmaker_service.core
    await rpc_client.register_server('nae-1', SERVER, SECRET)
    await rpc_client.register_server('nae-2', SERVER, SECRET)
    core.tickets.create_ticket('acc1', '1:0:NAE:solo')
    core.leases.assign_server('acc1')

    servers = {s['id']: s for s in await rpc_client.list_servers()}
    assert servers['nae-1']['leased']
    assert not servers['nae-2']['leased']


async def test_xmpp_protocol_routed_to_relay(matchmaker_client):
    ws = await matchmaker_client.ws_connect('/', protocols=('xmpp',))
    assert ws.protocol == 'xmpp'
    await ws.send_str(
        '<open xmlns="urn:ietf:params:xml:ns:xmpp-framing" version="1.0"/>'
    )
    assert (await ws.receive_str(timeout=2)).startswith('<open ')
    await ws.close()


async def test_plain_http_on_websocket_route(matchmaker_client):
    resp = await matchmaker_client.get('/')
    assert resp.status == 400


async def test_state_page(matchmaker_client):
    resp = await matchmaker_client.get('/__state')
    assert resp.status == 200
    assert 'onlinePlayers' in await resp.text()
