# SPDX-License-Identifier: GPL-2.0-or-later
"""JSON RPC over HTTP, authenticated with :mod:`arena.timeauth` tokens.

Game servers use it to register with the matchmaker and to send heartbeats.
"""

from arena.rpc.server import remote_method  # noqa: F401
