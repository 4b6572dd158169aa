# SPDX-License-Identifier: GPL-2.0-or-later
"""Arena: matchmaking and presence backend for game clients.

The package is split per service:

* :mod:`arena.matchmaker` tracks game servers, matchmaking tickets, queues
  and server leases, and drives clients through the matchmaking flow.
* :mod:`arena.xmpp` relays presence, chat and party messages between
  connected clients.
* :mod:`arena.rpc` is the signed JSON RPC used by game servers to register
  and send heartbeats.
* :mod:`arena.gameserver` is the heartbeat agent running next to a game
  server process.
"""
