# SPDX-License-Identifier: GPL-2.0-or-later

"""Sends periodic aliveness heartbeats to the matchmaker.

The matchmaker evicts the game servers it did not hear from for a while, so
that players are not sent to a crashed server. Heartbeats carry the current
player count, read from a file the game server keeps up to date.
"""

import asyncio
import logging

import aiohttp

import arena.config
import arena.rpc.client

DEFAULTS = {
    'server_id': None,
    'matchmaker_url': 'http://127.0.0.1:8080/',
    'secret': None,
    'timeout_secs': 120,
    'heartbeat_secs': None,
    'players_file': None,
    'server': {},
}


def read_player_count(path):
    """Reads the player count from `path`, 0 if it cannot."""
    if not path:
        return 0
    try:
        with open(path) as fp:
            return int(fp.read().strip() or 0)
    except (OSError, ValueError) as exn:
        logging.warning("cannot read player count from %s: %s", path, exn)
        return 0


class HeartbeatAgent:
    def __init__(self, config, client=None):
        cfg = arena.config.section(config, 'gameserver', DEFAULTS)
        if not cfg['server_id']:
            raise ValueError("gameserver.server_id is required")
        self.server_id = cfg['server_id']
        self.server_data = dict(cfg['server'])
        self.secret = cfg['secret']
        self.players_file = cfg['players_file']
        self.interval = cfg['heartbeat_secs'] or cfg['timeout_secs'] / 2
        if client is None:
            client = arena.rpc.client.Client(
                cfg['matchmaker_url'],
                secret=self.secret.encode('utf-8') if self.secret else None,
            )
        self.matchmaker = client
        self.registered = False

    async def register(self):
        await self.matchmaker.register_server(
            self.server_id, self.server_data, self.secret
        )
        self.registered = True
        logging.info("registered %s with the matchmaker", self.server_id)

    async def send_heartbeat(self):
        if not self.registered:
            await self.register()
        players = read_player_count(self.players_file)
        logging.debug("heartbeat: %s has %d players", self.server_id, players)
        if not await self.matchmaker.heartbeat(self.server_id, players):
            logging.warning(
                "matchmaker forgot %s, registering again", self.server_id
            )
            self.registered = False
            await self.register()

    async def unregister(self):
        if not self.registered:
            return
        try:
            await self.matchmaker.unregister_server(self.server_id)
        except (aiohttp.ClientError, OSError):
            logging.warning("matchmaker down, cannot unregister")
        self.registered = False

    async def run(self):
        while True:
            try:
                await self.send_heartbeat()
            except asyncio.CancelledError:
                raise
            except (aiohttp.ClientError, OSError):
                logging.warning(
                    "matchmaker down, retrying heartbeat in %ss", self.interval
                )
            except arena.rpc.client.BaseError as exn:
                logging.error("matchmaker refused the heartbeat: %s", exn)
                self.registered = False
            await asyncio.sleep(self.interval)
