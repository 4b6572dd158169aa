# SPDX-License-Identifier: GPL-2.0-or-later
"""Signed payloads exchanged with game clients and game servers.

Two kinds of HS256 tokens are signed with the matchmaker ``jwt_secret``:

  * the ticket payload returned by the ticket route, which the client sends
    back in the ``Authorization`` header of the matchmaking WebSocket;
  * the join credential carried by the ``Play`` message, consumed by the
    game server to admit the player.
"""

import datetime
import logging
import time
import uuid
from typing import Any, Dict, Optional

import jwt

ALGORITHM = 'HS256'


def _query_value(query, key, default=''):
    value = query.get(key)
    return value if value else default


class TokenSigner:
    def __init__(self, secret, ticket_ttl_secs=600, join_ttl_secs=3600):
        if not secret:
            raise ValueError("a JWT secret is required")
        self.secret = secret
        self.ticket_ttl_secs = ticket_ttl_secs
        self.join_ttl_secs = join_ttl_secs

    def _sign(self, claims, ttl_secs, now=None):
        now = time.time() if now is None else now
        claims = dict(claims, iat=int(now), exp=int(now + ttl_secs))
        return jwt.encode(claims, self.secret, algorithm=ALGORITHM)

    def ticket_claims(self, ticket, bucket_id, query=None, now=None):
        """Returns the claims of the ticket payload.

        `query` holds the ``player.*`` parameters of the ticket request.
        """
        query = query or {}
        now = time.time() if now is None else now
        subregions = _query_value(query, 'player.subregions', ticket.region)
        link_code = _query_value(query, 'player.option.linkCode')
        expires_at = datetime.datetime.fromtimestamp(
            now + self.ticket_ttl_secs, tz=datetime.timezone.utc
        )
        return {
            'playerId': ticket.account_id,
            'partyPlayerId': _query_value(
                query, 'player.partyPlayerIds', ticket.account_id
            ),
            'bucketId': bucket_id,
            'serverPlaylist': link_code or ticket.playlist,
            'attributes': {
                'player.mms.region': ticket.region,
                'player.userAgent': _query_value(query, 'player.userAgent'),
                'player.preferredSubregion': subregions.split(',')[0],
                'player.option.spectator': 'false',
                'player.inputTypes': _query_value(query, 'player.inputTypes'),
                'player.revision': _query_value(query, 'player.revision', '1'),
                'player.teamFormat': 'fun',
                'player.subregions': subregions,
                'player.season': _query_value(query, 'player.season', '1'),
                'player.platform': _query_value(
                    query, 'player.platform', 'Windows'
                ),
                'player.option.linkCode': link_code.lower() or ticket.playlist,
                'player.option.linkType': 'DEFAULT',
                'player.input': _query_value(query, 'player.input', 'KBM'),
                'playlist.revision': _query_value(
                    query, 'playlist.revision', '1'
                ),
                'player.option.fillTeam': _query_value(
                    query, 'player.option.fillTeam', 'true'
                ),
                'player.option.uiLanguage': 'en',
                'player.option.microphoneEnabled': _query_value(
                    query, 'player.option.microphoneEnabled', 'false'
                ),
                'player.option.partyId': _query_value(
                    query, 'player.option.partyId', uuid.uuid4().hex
                ),
            },
            'expiresAt': expires_at.isoformat().replace('+00:00', 'Z'),
            'nonce': uuid.uuid4().hex,
        }

    def sign_ticket(self, ticket, bucket_id, query=None, now=None) -> str:
        claims = self.ticket_claims(ticket, bucket_id, query, now)
        return self._sign(claims, self.ticket_ttl_secs, now)

    def sign_join_credential(self, account_id, server, now=None) -> str:
        """Signs the credential a game server checks when the player joins."""
        claims = {'accountId': account_id, 'server': server.as_payload()}
        return self._sign(claims, self.join_ttl_secs, now)

    def verify(self, token) -> Optional[Dict[str, Any]]:
        """Returns the claims of `token`, or None if it does not verify."""
        try:
            return jwt.decode(token, self.secret, algorithms=[ALGORITHM])
        except jwt.ExpiredSignatureError:
            logging.warning("rejected expired matchmaking payload")
        except jwt.InvalidTokenError as exn:
            logging.warning("rejected matchmaking payload: %s", exn)
        return None


def payload_from_authorization(header) -> Optional[str]:
    """Extracts the signed payload of an ``Epic-Signed`` header.

    The header reads ``Epic-Signed mms-player <payload> <signature>``.
    Returns None when it has fewer than three space separated parts.
    """
    parts = (header or '').split(' ')
    if len(parts) < 3 or not parts[2]:
        return None
    return parts[2]
