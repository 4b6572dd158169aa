import pytest

TICKET_URL = '/fortnite/api/game/v2/matchmakingservice/ticket/player/{}'
SESSION_URL = '/fortnite/api/matchmaking/session/{}'


async def request_ticket(client, account_id, bucket_id, **query):
    params = dict(query)
    if bucket_id is not None:
        params['bucketId'] = bucket_id
    return await client.get(TICKET_URL.format(account_id), params=params)


async def test_ticket(matchmaker_client, matchmaker_service):
    resp = await request_ticket(
        matchmaker_client,
        'acc1',
        '1234:0:nae:Playlist_DefaultSolo',
        **{'player.platform': 'XSX'},
    )
    assert resp.status == 200
    body = await resp.json()
    assert body['serviceUrl'] == 'ws://127.0.0.1:8080'
    assert body['ticketType'] == 'mms-player'
    assert body['signature'] == '420='

    claims = matchmaker_service.signer.verify(body['payload'])
    assert claims['playerId'] == 'acc1'
    assert claims['attributes']['player.mms.region'] == 'NAE'
    assert claims['attributes']['player.platform'] == 'XSX'

    ticket = matchmaker_service.core.tickets.get_ticket('acc1')
    assert ticket.region == 'NAE'
    assert ticket.attributes['player.platform'] == 'XSX'


@pytest.mark.parametrize(
    'bucket_id', [None, '', '1234:0:NAE', '1234:0:NAE:solo:extra']
)
async def test_ticket_invalid_bucket(matchmaker_client, bucket_id):
    resp = await request_ticket(matchmaker_client, 'acc1', bucket_id)
    assert resp.status == 400
    body = await resp.json()
    assert body['errorCode'] == (
        'errors.com.epicgames.matchmaking.invalid_bucket_id'
    )
    assert body['numericErrorCode'] == 1013
    assert body['originatingService'] == 'arena'


@pytest.mark.parametrize(
    'bucket_id', ['1234:0:NAE:Playlist_Nope', '1234:0::Playlist_DefaultSolo']
)
async def test_ticket_creation_failed(
    matchmaker_client, matchmaker_service, bucket_id
):
    resp = await request_ticket(matchmaker_client, 'acc1', bucket_id)
    assert resp.status == 400
    assert (await resp.json())['numericErrorCode'] == 4001
    assert matchmaker_service.core.tickets.get_ticket('acc1') is None


async def test_session_not_found(matchmaker_client):
    resp = await matchmaker_client.get(SESSION_URL.format('nope'))
    assert resp.status == 404
    body = await resp.json()
    assert body['numericErrorCode'] == 12101
    assert body['messageVars'] == ['nope']


async def test_session_without_server(matchmaker_client, matchmaker_service):
    tickets = matchmaker_service.core.tickets
    ticket = tickets.create_ticket('acc1', '1:0:NAE:solo')
    resp = await matchmaker_client.get(SESSION_URL.format(ticket.session_id))
    assert resp.status == 404


async def test_session(matchmaker_client, matchmaker_service):
    core = matchmaker_service.core
    core.registry.register(
        'nae-1',
        {
            'region': 'NAE',
            'gamemode': 'solo',
            'ip': '10.1.2.3',
            'port': 7777,
            'name': 'NAE One',
        },
        'test-gameserver-secret',
    )
    ticket = core.tickets.create_ticket('acc1', '42:0:NAE:solo')
    core.leases.assign_server('acc1')

    resp = await matchmaker_client.get(SESSION_URL.format(ticket.session_id))
    assert resp.status == 200
    body = await resp.json()
    assert body['id'] == ticket.session_id
    assert body['serverAddress'] == '10.1.2.3'
    assert body['serverPort'] == 7777
    assert body['serverName'] == 'NAE One'
    assert body['buildUniqueId'] == '42'
    assert body['attributes']['PLAYLISTNAME_s'] == 'Playlist_DefaultSolo'
    assert body['attributes']['REGION_s'] == 'NAE'
    assert body['attributes']['ADDRESS_s'] == '10.1.2.3'


async def test_join(matchmaker_client):
    resp = await matchmaker_client.post(SESSION_URL.format('any') + '/join')
    assert resp.status == 204


async def test_stats(matchmaker_client, matchmaker_service):
    matchmaker_service.core.tickets.create_ticket('acc1', '1:0:NAE:solo')
    resp = await matchmaker_client.get('/api/matchmaking/stats')
    body = await resp.json()
    assert body['success'] is True
    stats = body['stats']
    assert stats['tickets'] == 1
    assert stats['connectedClients'] == 0
    assert stats['queuedClients'] == 0
    assert stats['xmppClients'] == 0
    assert stats['partyRooms'] == 0
