# SPDX-License-Identifier: GPL-2.0-or-later
"""Matchmaking service: game server registry, tickets, queues and leases.

Run it with ``python -m arena.matchmaker``; it reads the ``matchmaker``
configuration profile.
"""
