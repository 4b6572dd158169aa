# SPDX-License-Identifier: GPL-2.0-or-later
"""The presence and messaging relay.

A connection goes through these states:

  * STREAM_OPEN: the WebSocket is up, nothing received yet;
  * UNAUTHENTICATED: ``<open>`` received, PLAIN mechanism offered;
  * AUTHENTICATED: ``<auth>`` accepted, the account is now registered and
    any other connection for it is refused;
  * BOUND: a resource was bound, the client has a full jid;
  * SESSION_ESTABLISHED: the presence of every other client was replayed.

Any protocol fault closes the stream with ``<close/>``.
"""

import base64
import binascii
import dataclasses
import datetime
import enum
import json
import logging
import urllib.parse
import uuid
from typing import Dict, Optional, Set

import aiohttp
import aiohttp.web

from . import stanza
from .monitoring import (
    xmpp_auth_failures,
    xmpp_connected_clients,
    xmpp_exception,
    xmpp_party_rooms,
    xmpp_relayed_messages,
)
from .rooms import RoomRegistry, room_name
from .stanza import MessageKind

DEFAULT_DOMAIN = 'prod.ol.epicgames.com'
MAX_CHAT_LENGTH = 300


class XmppState(enum.IntEnum):
    STREAM_OPEN = 0
    UNAUTHENTICATED = 1
    AUTHENTICATED = 2
    BOUND = 3
    SESSION_ESTABLISHED = 4


@dataclasses.dataclass(eq=False)
class PresenceClient:
    ws: aiohttp.web.WebSocketResponse
    stream_id: str = dataclasses.field(
        default_factory=lambda: uuid.uuid4().hex
    )
    state: XmppState = XmppState.STREAM_OPEN
    account_id: Optional[str] = None
    display_name: str = ''
    bare_jid: Optional[str] = None
    resource: Optional[str] = None
    jid: Optional[str] = None
    away: bool = False
    status: str = '{}'
    rooms: Set[str] = dataclasses.field(default_factory=set)

    @property
    def open(self) -> bool:
        return not self.ws.closed

    @property
    def nick(self) -> str:
        return '{}:{}:{}'.format(
            urllib.parse.quote(self.display_name or self.account_id or ''),
            self.account_id,
            self.resource,
        )

    def __repr__(self):
        return f"<PresenceClient {self.jid or self.account_id}>"


def party_id_of(status) -> Optional[str]:
    """Finds the party id in the ``party.joininfo*`` property of a status."""
    try:
        data = json.loads(status)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    properties = data.get('Properties')
    if not isinstance(properties, dict):
        return None
    for key, value in properties.items():
        if not key.lower().startswith('party.joininfo'):
            continue
        if isinstance(value, dict) and value.get('partyId'):
            return value['partyId']
    return None


class XmppRelay:
    def __init__(self, accounts, verifier, domain=DEFAULT_DOMAIN):
        self.accounts = accounts
        self.verifier = verifier
        self.domain = domain or DEFAULT_DOMAIN
        self.clients: Dict[str, PresenceClient] = {}
        self.rooms = RoomRegistry()
        self.handlers = {
            'open': self.handle_open,
            'auth': self.handle_auth,
            'iq': self.handle_iq,
            'message': self.handle_message,
            'presence': self.handle_presence,
        }

    def peers(self, client):
        """Registered clients with a jid, `client` excluded."""
        return [
            other
            for other in self.clients.values()
            if other is not client and other.jid is not None
        ]

    def find(self, to) -> Optional[PresenceClient]:
        """Returns the client addressed by the jid `to`, bare or full."""
        bare = (to or '').split('/', 1)[0]
        for client in self.clients.values():
            if client.jid is not None and client.bare_jid == bare:
                return client
        return None

    async def send(self, client, el):
        if not client.open:
            return
        try:
            await client.ws.send_str(stanza.serialize(el))
        except ConnectionResetError:
            logging.debug("dropped stanza for %r: connection reset", client)

    async def close_stream(self, client):
        await self.send(client, stanza.stream_close())
        await client.ws.close()

    async def handle(self, request, ws=None):
        """WebSocket handler of the ``xmpp`` sub-protocol."""
        if ws is None:
            ws = aiohttp.web.WebSocketResponse(protocols=('xmpp',))
            await ws.prepare(request)

        client = PresenceClient(ws=ws)
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self.dispatch(client, msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logging.warning(
                        "xmpp socket of %r failed: %s", client, ws.exception()
                    )
        finally:
            await self.disconnect(client)
        return ws

    async def dispatch(self, client, data):
        try:
            el = stanza.parse(data)
        except stanza.StanzaError as exn:
            logging.warning("closing stream of %r: %s", client, exn)
            await self.close_stream(client)
            return

        handler = self.handlers.get(el.tag)
        if handler is None:
            logging.warning("unknown stanza %s from %r", el.tag, client)
            await self.close_stream(client)
            return
        try:
            await handler(client, el)
        except Exception:
            xmpp_exception.inc()
            logging.exception("error handling %s stanza of %r", el.tag, client)
            await self.close_stream(client)

    async def handle_open(self, client, el):
        if client.state == XmppState.STREAM_OPEN:
            client.state = XmppState.UNAUTHENTICATED
        await self.send(
            client, stanza.stream_open(self.domain, client.stream_id)
        )
        await self.send(
            client,
            stanza.stream_features(client.state >= XmppState.AUTHENTICATED),
        )

    async def reject_auth(self, client, reason, account_id):
        xmpp_auth_failures.labels(reason=reason).inc()
        logging.warning(
            "xmpp authentication of %s refused: %s", account_id, reason
        )
        await self.close_stream(client)

    async def handle_auth(self, client, el):
        if client.state >= XmppState.AUTHENTICATED:
            return
        try:
            decoded = base64.b64decode(el.text or '', validate=True)
            parts = decoded.decode('utf-8').split('\0')
        except (binascii.Error, UnicodeDecodeError):
            await self.reject_auth(client, 'malformed', None)
            return
        if len(parts) != 3:
            await self.reject_auth(client, 'malformed', None)
            return

        _, account_id, token = parts
        if account_id in self.clients:
            await self.reject_auth(client, 'duplicate', account_id)
            return
        account = self.accounts.get(account_id)
        if account is None:
            await self.reject_auth(client, 'unknown_account', account_id)
            return
        claims = self.verifier.verify(token)
        if claims is None or claims.get('sub') != account_id:
            await self.reject_auth(client, 'bad_token', account_id)
            return

        client.account_id = account_id
        client.display_name = account.get('displayName') or account_id
        client.bare_jid = f'{account_id}@{self.domain}'
        client.state = XmppState.AUTHENTICATED
        self.clients[account_id] = client
        xmpp_connected_clients.set(len(self.clients))
        logging.info("xmpp client authenticated: %s", account_id)
        await self.send(client, stanza.sasl_success())

    async def handle_iq(self, client, el):
        if client.state < XmppState.AUTHENTICATED:
            logging.warning("iq before authentication from %r", client)
            await self.close_stream(client)
            return

        iq_id = el.get('id')
        if iq_id == '_xmpp_bind1':
            bind = stanza.child(el, 'bind')
            if bind is None:
                return
            resource = stanza.child_text(bind, 'resource')
            if not resource:
                return
            client.resource = resource
            client.jid = f'{client.bare_jid}/{resource}'
            if client.state < XmppState.BOUND:
                client.state = XmppState.BOUND
            await self.send(client, stanza.bind_result(client.jid))
        elif client.state < XmppState.BOUND:
            return
        elif iq_id == '_xmpp_session1':
            await self.send(
                client, stanza.iq_result(iq_id, client.jid, self.domain)
            )
            client.state = XmppState.SESSION_ESTABLISHED
            await self.replay_presence(client)
        else:
            await self.send(
                client, stanza.iq_result(iq_id, client.jid, self.domain)
            )

    async def replay_presence(self, client):
        """Sends the current presence of every other client to `client`."""
        for other in self.peers(client):
            await self.send(
                client,
                stanza.presence(
                    client.jid,
                    other.jid,
                    type='available',
                    away=other.away,
                    status=other.status,
                ),
            )

    async def handle_message(self, client, el):
        if client.state < XmppState.BOUND:
            return
        body = stanza.child_text(el, 'body')
        if body is None:
            return

        kind = el.get('type')
        if kind == 'chat':
            await self.relay_chat(client, el.get('to'), body)
        elif kind == 'groupchat':
            await self.relay_groupchat(client, el.get('to'), body)
        else:
            await self.route_json(client, el, body)

    async def relay_chat(self, client, to, body):
        if not to or len(body) >= MAX_CHAT_LENGTH:
            return
        receiver = self.find(to)
        if receiver is None or receiver is client:
            return
        xmpp_relayed_messages.labels(kind='chat').inc()
        await self.send(
            receiver,
            stanza.message(receiver.jid, client.jid, body, type='chat'),
        )

    async def route_json(self, client, el, body):
        kind = MessageKind.of(body)
        if kind is MessageKind.PARTY_INVITATION:
            receiver = self.find(el.get('to'))
            if receiver is None:
                return
            xmpp_relayed_messages.labels(kind='party_invitation').inc()
            await self.send(
                receiver,
                stanza.message(receiver.jid, client.jid, body, id=el.get('id')),
            )
        elif kind is MessageKind.OTHER:
            await self.send(
                client,
                stanza.message(client.jid, client.jid, body, id=el.get('id')),
            )

    def muc_jid(self, name, client):
        return f'{name}@muc.{self.domain}/{client.nick}'

    async def relay_groupchat(self, client, to, body):
        if not to or len(body) >= MAX_CHAT_LENGTH:
            return
        name = room_name(to)
        room = self.rooms.get(name)
        if room is None or client.account_id not in room.members:
            logging.warning("%r is not a member of room %s", client, name)
            return
        xmpp_relayed_messages.labels(kind='groupchat').inc()
        for account_id in room.members:
            member = self.clients.get(account_id)
            if member is None:
                continue
            await self.send(
                member,
                stanza.message(
                    member.jid,
                    self.muc_jid(name, client),
                    body,
                    type='groupchat',
                ),
            )

    async def handle_presence(self, client, el):
        if client.state < XmppState.BOUND:
            return
        to = el.get('to')
        if el.get('type') == 'unavailable':
            if to and '@muc.' in to:
                await self.leave_room(client, room_name(to))
        elif to and stanza.child(el, 'x') is not None:
            await self.join_room(client, room_name(to))
        else:
            await self.update_presence(client, el)

    async def update_presence(self, client, el):
        status = stanza.child_text(el, 'status')
        if not status:
            return
        try:
            if isinstance(json.loads(status), list):
                return
        except ValueError:
            logging.debug("ignored non JSON status of %r", client)
            return
        client.away = stanza.child(el, 'show') is not None
        client.status = status
        await self.broadcast_presence(client, 'available')

    async def broadcast_presence(self, client, type):
        available = type == 'available'
        for other in self.peers(client):
            await self.send(
                other,
                stanza.presence(
                    other.jid,
                    client.jid,
                    type=type,
                    away=available and client.away,
                    status=client.status if available else None,
                ),
            )

    async def join_room(self, client, name):
        room = self.rooms.join(name, client.account_id)
        if room is None:
            return
        client.rooms.add(name)
        xmpp_party_rooms.set(len(self.rooms))
        me = self.muc_jid(name, client)
        await self.send(
            client,
            stanza.muc_presence(
                client.jid,
                me,
                client.nick,
                client.jid,
                codes=('110', '100', '170', '201'),
            ),
        )
        for account_id in room.members:
            member = self.clients.get(account_id)
            if member is None or member is client:
                continue
            await self.send(
                client,
                stanza.muc_presence(
                    client.jid,
                    self.muc_jid(name, member),
                    member.nick,
                    member.jid,
                ),
            )
            await self.send(
                member,
                stanza.muc_presence(member.jid, me, client.nick, client.jid),
            )

    async def leave_room(self, client, name):
        if not self.rooms.leave(name, client.account_id):
            return
        client.rooms.discard(name)
        xmpp_party_rooms.set(len(self.rooms))
        await self.send(
            client,
            stanza.muc_presence(
                client.jid,
                self.muc_jid(name, client),
                client.nick,
                client.jid,
                role='none',
                codes=('110', '100', '170'),
                type='unavailable',
            ),
        )

    async def disconnect(self, client):
        if client.account_id is None:
            return
        if self.clients.get(client.account_id) is not client:
            return
        del self.clients[client.account_id]
        xmpp_connected_clients.set(len(self.clients))
        self.rooms.leave_all(client.account_id)
        xmpp_party_rooms.set(len(self.rooms))
        logging.info("xmpp client disconnected: %s", client.account_id)

        if client.jid is None:
            return
        await self.broadcast_presence(client, 'unavailable')
        party_id = party_id_of(client.status)
        if party_id:
            await self.broadcast_member_exit(client, party_id)

    async def broadcast_member_exit(self, client, party_id):
        body = json.dumps(
            {
                'type': stanza.PARTY_MEMBER_EXITED,
                'payload': {
                    'partyId': party_id,
                    'memberId': client.account_id,
                    'wasKicked': False,
                },
                'timestamp': datetime.datetime.now(datetime.timezone.utc)
                .isoformat(timespec='milliseconds')
                .replace('+00:00', 'Z'),
            }
        )
        for other in self.peers(client):
            await self.send(
                other,
                stanza.message(
                    other.jid,
                    client.jid,
                    body,
                    id=uuid.uuid4().hex.upper(),
                ),
            )

    def stats(self):
        return {
            'connectedClients': len(self.clients),
            'activeRooms': len(self.rooms),
            'clients': [
                {
                    'accountId': client.account_id,
                    'jid': client.jid,
                    'joinedRooms': sorted(client.rooms),
                }
                for client in self.clients.values()
            ],
        }
