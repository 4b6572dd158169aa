# SPDX-License-Identifier: GPL-2.0-or-later
"""Agent keeping a game server registered with the matchmaker.

Run it next to the game server with ``python -m arena.gameserver``; it reads
the ``gameserver`` configuration profile.
"""
