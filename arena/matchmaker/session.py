# SPDX-License-Identifier: GPL-2.0-or-later
"""The matchmaking WebSocket flow.

Once authenticated by the signed payload of its ``Authorization`` header, a
connection is driven by the server through the following statuses, pushed as
``StatusUpdate`` JSON messages:

    Connecting -> [QueueFull ...] -> Waiting -> Queued [...] ->
    SessionAssignment -> Play

Each step waits for a configured delay then checks that the connection is
still open: closing the socket is the only way to abandon the flow. The flow
runs in its own task so that the connection keeps being read meanwhile.
"""

import asyncio
import dataclasses
import logging
from typing import Optional, Set, Tuple

import aiohttp
import aiohttp.web

from .core import MatchmakingCore
from .monitoring import (
    matchmaker_assignment_failures,
    matchmaker_connected_clients,
    matchmaker_exception,
    matchmaker_matches_started,
    matchmaker_rejected_sessions,
)
from .tickets import SESSION_ASSIGNED, MatchTicket
from .tokens import TokenSigner, payload_from_authorization

ESTIMATED_WAIT_SEC = 5


@dataclasses.dataclass(eq=False)
class MatchmakingClient:
    ws: aiohttp.web.WebSocketResponse
    account_id: str
    ticket: MatchTicket
    queued: bool = False
    matched: bool = False
    closing: bool = False

    @property
    def open(self) -> bool:
        return not self.ws.closed and not self.closing

    @property
    def partition(self) -> Tuple[str, str]:
        return self.ticket.partition

    def __repr__(self):
        return f"<MatchmakingClient {self.account_id} {self.ticket.status}>"


def status_update(state, **payload):
    return {'payload': {'state': state, **payload}, 'name': 'StatusUpdate'}


class MatchmakingSessions:
    def __init__(self, core: MatchmakingCore, signer: TokenSigner):
        self.core = core
        self.signer = signer
        self.settings = core.settings
        self.clients: Set[MatchmakingClient] = set()

    def authenticate(self, authorization) -> Optional[Tuple[str, MatchTicket]]:
        """Returns the account id and ticket a connection is entitled to."""
        token = payload_from_authorization(authorization)
        if token is None:
            logging.warning("matchmaking connection without valid authorization")
            return None
        claims = self.signer.verify(token)
        if claims is None:
            return None

        account_id = claims.get('playerId')
        region = (claims.get('attributes') or {}).get('player.mms.region')
        if not account_id or not region:
            logging.warning("matchmaking payload misses playerId or region")
            return None

        ticket = self.core.tickets.get_ticket(account_id)
        if ticket is None:
            logging.warning(
                "no ticket found for %s, connection rejected", account_id
            )
            return None
        return account_id, ticket

    async def handle(self, request, ws=None):
        """WebSocket handler of the matchmaking protocol."""
        if ws is None:
            ws = aiohttp.web.WebSocketResponse()
            await ws.prepare(request)

        identity = self.authenticate(request.headers.get('Authorization'))
        if identity is None:
            matchmaker_rejected_sessions.inc()
            await ws.close()
            return ws

        account_id, ticket = identity
        client = MatchmakingClient(ws=ws, account_id=account_id, ticket=ticket)
        self.clients.add(client)
        matchmaker_connected_clients.set(len(self.clients))
        logging.info("matchmaking session connected: %s", account_id)

        flow = asyncio.create_task(self.run_flow(client))
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    logging.debug(
                        "matchmaking message from %s: %s", account_id, msg.data
                    )
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logging.warning(
                        "matchmaking socket of %s failed: %s",
                        account_id,
                        ws.exception(),
                    )
        finally:
            self.disconnect(client)
            # A flow busy closing the socket itself is left to finish.
            if not flow.done() and not client.closing:
                flow.cancel()
            try:
                await flow
            except asyncio.CancelledError:
                pass
        return ws

    def disconnect(self, client):
        """Forgets `client` and its queue membership.

        Its ticket is deleted too unless a server was already assigned, in
        which case the session lookup route still needs it.
        """
        self.clients.discard(client)
        matchmaker_connected_clients.set(len(self.clients))
        client.queued = False
        current = self.core.tickets.get_ticket(client.account_id)
        if current is client.ticket:
            self.core.queue.remove_from_queue(client.account_id)
            if current.status != SESSION_ASSIGNED:
                self.core.tickets.delete_ticket(client.account_id)
        logging.info("matchmaking session disconnected: %s", client.account_id)

    async def close(self, client):
        if client.closing or client.ws.closed:
            return
        client.closing = True
        await client.ws.close()

    async def send(self, client, message):
        if not client.open:
            return
        try:
            await client.ws.send_json(message)
        except ConnectionResetError:
            logging.debug("dropped message for %r: connection reset", client)

    async def send_status(self, client, state, **payload):
        await self.send(client, status_update(state, **payload))

    def queued_status(self, client):
        return status_update(
            'Queued',
            ticketId=client.ticket.ticket_id,
            queuedPlayers=self.core.queue.get_queued_player_count(
                *client.partition
            ),
            estimatedWaitSec=ESTIMATED_WAIT_SEC,
            status={
                'ticket.status.creative.islandCode': client.ticket.playlist
            },
        )

    async def update_queue_for_all(self, partition):
        """Pushes the queue size to every queued client of `partition`."""
        for client in list(self.clients):
            if client.queued and client.open and client.partition == partition:
                await self.send(client, self.queued_status(client))

    async def pause(self, client, delay_ms) -> bool:
        """Sleeps, then tells whether the flow of `client` may go on."""
        await asyncio.sleep(delay_ms / 1000)
        if not client.open:
            return False
        if self.core.tickets.get_ticket(client.account_id) is not client.ticket:
            logging.info(
                "ticket of %s is gone, closing session", client.account_id
            )
            await self.close(client)
            return False
        return True

    def start_match(self, client) -> bool:
        """Pops a quorum including `client` and flags the group as matched."""
        group = self.core.queue.pop_match(client.account_id)
        if not group:
            return False
        matchmaker_matches_started.inc()
        for other in self.clients:
            if other.account_id in group and other.partition == client.partition:
                other.queued = False
                other.matched = True
        client.queued = False
        client.matched = True
        return True

    async def run_flow(self, client):
        settings = self.settings
        queue = self.core.queue
        try:
            await self.send_status(client, 'Connecting')
            if not await self.pause(client, settings['connecting_delay_ms']):
                return

            while True:
                while queue.is_full(*client.partition):
                    await self.send_status(client, 'QueueFull')
                    if not await self.pause(
                        client, settings['queue_full_poll_ms']
                    ):
                        return
                await self.send_status(
                    client, 'Waiting', totalPlayers=1, connectedPlayers=1
                )
                if not await self.pause(client, settings['waiting_delay_ms']):
                    return
                if queue.add_to_queue(client.account_id):
                    break
                logging.warning(
                    "queue of %s filled up, waiting again", client.account_id
                )

            client.queued = True
            await self.send(client, self.queued_status(client))
            if not await self.pause(client, settings['queued_delay_ms']):
                return

            while not client.matched and not queue.can_start_match(
                *client.partition
            ):
                await self.update_queue_for_all(client.partition)
                if not await self.pause(
                    client, settings['queue_update_interval_ms']
                ):
                    return

            if not client.matched and not self.start_match(client):
                logging.warning(
                    "%s left the queue before its match started",
                    client.account_id,
                )
                await self.close(client)
                return

            if not await self.pause(client, settings['match_start_delay_ms']):
                return
            await self.send_status(
                client, 'SessionAssignment', matchId=client.ticket.match_id
            )
            if not await self.pause(
                client, settings['session_assignment_delay_ms']
            ):
                return

            server = self.core.leases.assign_server(client.account_id)
            if server is None:
                matchmaker_assignment_failures.inc()
                logging.error("no available server for %s", client.account_id)
                await self.send_status(
                    client, 'Error', errorMessage='No servers available'
                )
                await self.close(client)
                return

            if not await self.pause(client, settings['join_delay_ms']):
                return
            await self.send_play(client)
            logging.info(
                "player %s matched to %s", client.account_id, server.server_name
            )
        except asyncio.CancelledError:
            raise
        except Exception:
            matchmaker_exception.inc()
            logging.exception(
                "matchmaking flow of %s failed", client.account_id
            )
            await self.close(client)

    async def send_play(self, client):
        ticket = client.ticket
        await self.send(
            client,
            {
                'payload': {
                    'matchId': ticket.match_id,
                    'sessionId': ticket.session_id,
                    'playerId': client.account_id,
                    'joinDelaySec': self.settings['join_delay_sec'],
                    'payloadJwt': self.signer.sign_join_credential(
                        client.account_id, ticket.assigned_server
                    ),
                },
                'name': 'Play',
            },
        )

    def stats(self):
        return {
            'connectedClients': len(self.clients),
            'queuedClients': sum(1 for c in self.clients if c.queued),
        }
