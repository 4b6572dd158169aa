# SPDX-License-Identifier: GPL-2.0-or-later
"""HTTP routes game clients call around the matchmaking WebSocket."""

import datetime
import logging
import uuid

import aiohttp.web

from .errors import MatchmakingError
from .monitoring import matchmaker_tickets_created

ORIGINATING_SERVICE = 'arena'
MAX_PUBLIC_PLAYERS = 128


def epic_error(code, message, numeric_code, status=400, message_vars=()):
    """Error body in the format game clients parse."""
    return aiohttp.web.json_response(
        {
            'errorCode': code,
            'errorMessage': message,
            'messageVars': list(message_vars),
            'numericErrorCode': numeric_code,
            'originatingService': ORIGINATING_SERVICE,
            'intent': 'prod',
        },
        status=status,
    )


def _now():
    return (
        datetime.datetime.now(datetime.timezone.utc)
        .isoformat(timespec='milliseconds')
        .replace('+00:00', 'Z')
    )


def _upper_id():
    return uuid.uuid4().hex.upper()


def session_descriptor(session_id, ticket):
    """Describes the game session a ticket was assigned to."""
    server = ticket.assigned_server
    now = _now()
    return {
        'id': session_id,
        'ownerId': _upper_id(),
        'ownerName': server.server_name,
        'serverName': server.server_name,
        'serverAddress': server.ip,
        'serverPort': server.port,
        'maxPublicPlayers': MAX_PUBLIC_PLAYERS,
        'openPublicPlayers': MAX_PUBLIC_PLAYERS,
        'maxPrivatePlayers': 0,
        'openPrivatePlayers': 0,
        'attributes': {
            'ALLOWMIGRATION_s': 'false',
            'REJOINAFTERKICK_s': 'OPEN',
            'CHECKSANCTIONS_s': 'false',
            'DEPLOYMENT_s': 'Fortnite',
            'LASTUPDATED_s': now,
            'PLAYLISTNAME_s': server.playlist_name,
            'LINKID_s': f'{server.playlist_name.lower()}?v=95',
            'DCID_s': f'ARENA-{server.region}-{server.server_id}',
            'SERVERADDRESS_s': server.ip,
            'ALLOWBROADCASTING_b': True,
            'NETWORKMODULE_b': True,
            'HOTFIXVERSION_i': 1,
            'SUBREGION_s': server.region,
            'MATCHMAKINGPOOL_s': 'Any',
            'SESSIONKEY_s': _upper_id(),
            'REGION_s': server.region,
            'serverAddress_s': server.ip,
            'LINKTYPE_s': 'BR:Playlist',
            'GAMEMODE_s': 'FORTATHENA',
            'ADDRESS_s': server.ip,
            'lastUpdated_s': now,
        },
        'publicPlayers': [],
        'privatePlayers': [],
        'totalPlayers': 0,
        'allowJoinInProgress': False,
        'shouldAdvertise': False,
        'isDedicated': True,
        'usesStats': False,
        'allowInvites': False,
        'usesPresence': False,
        'allowJoinViaPresence': True,
        'allowJoinViaPresenceFriendsOnly': False,
        'buildUniqueId': ticket.build_id or '0',
        'lastUpdated': now,
        'started': False,
    }


class MatchmakingRoutes:
    def __init__(self, core, signer, sessions, relay, service_url):
        self.core = core
        self.signer = signer
        self.sessions = sessions
        self.relay = relay
        self.service_url = service_url

    def routes(self):
        return [
            (
                'GET',
                '/fortnite/api/game/v2/matchmakingservice/ticket/player'
                '/{accountId}',
                self.ticket_handler,
            ),
            (
                'GET',
                '/fortnite/api/matchmaking/session/{sessionId}',
                self.session_handler,
            ),
            (
                'POST',
                '/fortnite/api/matchmaking/session/{sessionId}/join',
                self.join_handler,
            ),
            ('GET', '/api/matchmaking/stats', self.stats_handler),
        ]

    async def ticket_handler(self, request):
        account_id = request.match_info['accountId']
        bucket_id = request.query.get('bucketId')
        if not bucket_id or len(bucket_id.split(':')) != 4:
            logging.warning(
                "invalid bucket id %r requested by %s", bucket_id, account_id
            )
            return epic_error(
                'errors.com.epicgames.matchmaking.invalid_bucket_id',
                f"Invalid bucketId: {bucket_id}",
                1013,
                message_vars=[bucket_id or ''],
            )

        try:
            ticket = self.core.tickets.create_ticket(
                account_id, bucket_id, dict(request.query)
            )
        except MatchmakingError as exn:
            logging.warning(
                "failed to create ticket of %s: %s", account_id, exn
            )
            return epic_error(
                'errors.com.epicgames.matchmaking.ticket_creation_failed',
                str(exn),
                4001,
            )
        matchmaker_tickets_created.inc()

        return aiohttp.web.json_response(
            {
                'serviceUrl': self.service_url,
                'ticketType': 'mms-player',
                'payload': self.signer.sign_ticket(
                    ticket, bucket_id, request.query
                ),
                'signature': '420=',
            }
        )

    async def session_handler(self, request):
        session_id = request.match_info['sessionId']
        ticket = self.core.tickets.find_by_session(session_id)
        if ticket is None or ticket.assigned_server is None:
            logging.warning("no assigned server for session %s", session_id)
            return epic_error(
                'errors.com.epicgames.common.matchmaking.session.not_found',
                f"Sorry, we couldn't find a session for id {session_id}",
                12101,
                status=404,
                message_vars=[session_id],
            )
        return aiohttp.web.json_response(
            session_descriptor(session_id, ticket)
        )

    async def join_handler(self, request):
        return aiohttp.web.Response(status=204)

    async def stats_handler(self, request):
        return aiohttp.web.json_response(
            {
                'success': True,
                'stats': {
                    **self.sessions.stats(),
                    **self.core.stats(),
                    'xmppClients': len(self.relay.clients),
                    'partyRooms': len(self.relay.rooms),
                },
            }
        )
