# SPDX-License-Identifier: GPL-2.0-or-later
"""The matchmaker service: one aiohttp application serving

  * the WebSocket listener on ``/``, shared by the matchmaking flow and the
    XMPP relay (clients asking for the ``xmpp`` sub-protocol);
  * the HTTP routes of :mod:`arena.matchmaker.http`;
  * the game server registry RPC methods under ``/call/``.
"""

import logging

import aiohttp.web

import arena.config
import arena.rpc
import arena.rpc.server
from arena.accounts import JsonAccountStore, TokenVerifier
from arena.xmpp.server import XmppRelay

from .core import MatchmakingCore
from .http import MatchmakingRoutes
from .registry import ONLINE
from .session import MatchmakingSessions
from .tokens import TokenSigner

XMPP_PROTOCOL = 'xmpp'


def requested_protocols(request):
    header = request.headers.get('Sec-WebSocket-Protocol', '')
    return [proto.strip() for proto in header.split(',') if proto.strip()]


class MatchmakerService(arena.rpc.server.BaseRPCApp):
    def __init__(self, config, accounts=None, verifier=None):
        self.config = config
        self.core = MatchmakingCore(config)
        service = self.core.service
        settings = self.core.settings

        self.signer = TokenSigner(
            service['jwt_secret'],
            ticket_ttl_secs=settings['ticket_ttl_secs'],
            join_ttl_secs=settings['join_token_ttl_secs'],
        )
        self.sessions = MatchmakingSessions(self.core, self.signer)

        if accounts is None:
            accounts_cfg = arena.config.section(config, 'accounts')
            accounts = JsonAccountStore(
                accounts_cfg.get('path'),
                accounts_cfg.get('refresh_interval_secs', 5),
            )
        if verifier is None:
            verifier = TokenVerifier(service['jwt_secret'])
        self.relay = XmppRelay(
            accounts,
            verifier,
            domain=arena.config.section(config, 'xmpp').get('domain'),
        )

        self.http = MatchmakingRoutes(
            self.core,
            self.signer,
            self.sessions,
            self.relay,
            service['service_url'],
        )
        secret = service['gameserver_secret']
        super().__init__(
            secret=secret.encode('utf-8') if secret else None,
            routes=[('GET', '/', self.websocket_handler), *self.http.routes()],
        )
        self.add_background_task(self.core.janitor_task)
        if isinstance(accounts, JsonAccountStore):
            self.add_background_task(accounts.refresh_task)

    async def websocket_handler(self, request):
        """Routes a WebSocket on its negotiated sub-protocol."""
        xmpp = [
            proto
            for proto in requested_protocols(request)
            if proto.lower() == XMPP_PROTOCOL
        ]
        ws = aiohttp.web.WebSocketResponse(protocols=xmpp[:1])
        if not ws.can_prepare(request).ok:
            raise aiohttp.web.HTTPBadRequest(text="WebSocket expected\n")
        await ws.prepare(request)
        if xmpp:
            return await self.relay.handle(request, ws)
        return await self.sessions.handle(request, ws)

    @arena.rpc.remote_method(auth_required=False)
    async def register_server(self, server_id, data, secret):
        """Registers a game server, `secret` being the shared secret."""
        return self.core.registry.register(server_id, data, secret).as_dict()

    @arena.rpc.remote_method
    async def heartbeat(self, server_id, current_players, status=ONLINE):
        """Returns False if the server is unknown and must register again."""
        return self.core.registry.heartbeat(server_id, current_players, status)

    @arena.rpc.remote_method
    async def unregister_server(self, server_id):
        return self.core.unregister_server(server_id)

    @arena.rpc.remote_method
    async def list_servers(self):
        return [
            dict(record.as_dict(), leased=self.core.leases.is_leased(sid))
            for sid, record in self.core.registry.servers.items()
        ]

    async def exposed_state(self):
        return {
            'stats': self.core.stats(),
            'sessions': sorted(self.sessions.clients, key=repr),
            'servers': self.core.registry.servers,
            'leases': self.core.leases.leases,
            'xmpp': self.relay.stats(),
        }

    def run(self, **kwargs):
        host = self.core.service['host']
        port = self.core.service['port']
        logging.info("matchmaker listening on %s:%s", host, port)
        super().run(host=host, port=port, **kwargs)
