import asyncio

import aiohttp
import pytest

import arena.rpc.client
from arena.gameserver.heartbeat import HeartbeatAgent, read_player_count


@pytest.fixture
def matchmaker(mocker):
    client = mocker.Mock()
    client.register_server = mocker.AsyncMock(return_value={})
    client.heartbeat = mocker.AsyncMock(return_value=True)
    client.unregister_server = mocker.AsyncMock(return_value=True)
    return client


@pytest.fixture
def players_file(tmp_path):
    path = tmp_path / 'players'
    path.write_text('17\n')
    return str(path)


@pytest.fixture
def agent(matchmaker, players_file):
    config = {
        'gameserver': {
            'server_id': 'nae-1',
            'secret': 's3cr3t',
            'heartbeat_secs': 5,
            'players_file': players_file,
            'server': {'region': 'NAE', 'gamemode': 'solo'},
        }
    }
    return HeartbeatAgent(config, client=matchmaker)


def test_read_player_count(tmp_path, players_file):
    assert read_player_count(players_file) == 17
    assert read_player_count(None) == 0
    assert read_player_count(str(tmp_path / 'nope')) == 0
    garbage = tmp_path / 'garbage'
    garbage.write_text('many')
    assert read_player_count(str(garbage)) == 0


def test_server_id_required():
    with pytest.raises(ValueError):
        HeartbeatAgent({'gameserver': {}})


def test_interval_defaults_to_half_timeout(matchmaker):
    agent = HeartbeatAgent(
        {'gameserver': {'server_id': 'a', 'timeout_secs': 60}},
        client=matchmaker,
    )
    assert agent.interval == 30


def test_default_client():
    agent = HeartbeatAgent(
        {'gameserver': {'server_id': 'a', 'secret': 's3cr3t'}}
    )
    assert isinstance(agent.matchmaker, arena.rpc.client.Client)
    assert agent.matchmaker._secret == b's3cr3t'


async def test_first_heartbeat_registers(agent, matchmaker):
    await agent.send_heartbeat()
    matchmaker.register_server.assert_awaited_once_with(
        'nae-1', {'region': 'NAE', 'gamemode': 'solo'}, 's3cr3t'
    )
    matchmaker.heartbeat.assert_awaited_once_with('nae-1', 17)

    await agent.send_heartbeat()
    assert matchmaker.register_server.await_count == 1


async def test_forgotten_server_registers_again(agent, matchmaker):
    await agent.send_heartbeat()
    matchmaker.heartbeat.return_value = False
    await agent.send_heartbeat()
    assert matchmaker.register_server.await_count == 2
    assert agent.registered


async def test_unregister(agent, matchmaker):
    await agent.unregister()
    matchmaker.unregister_server.assert_not_awaited()

    await agent.send_heartbeat()
    await agent.unregister()
    matchmaker.unregister_server.assert_awaited_once_with('nae-1')
    assert not agent.registered


async def test_unregister_matchmaker_down(agent, matchmaker):
    await agent.send_heartbeat()
    matchmaker.unregister_server.side_effect = aiohttp.ClientConnectionError()
    await agent.unregister()
    assert not agent.registered


async def test_run_survives_errors(agent, matchmaker, mocker):
    sleep = mocker.patch('asyncio.sleep')
    sleep.side_effect = [None, None, asyncio.CancelledError()]
    matchmaker.heartbeat.side_effect = [
        ConnectionRefusedError(),
        arena.rpc.client.RemoteError('BadToken', 'nae-1'),
        True,
    ]
    with pytest.raises(asyncio.CancelledError):
        await agent.run()
    assert matchmaker.heartbeat.await_count == 3
    assert matchmaker.register_server.await_count == 2
    sleep.assert_called_with(5)
