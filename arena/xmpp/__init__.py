# SPDX-License-Identifier: GPL-2.0-or-later
"""Presence and messaging relay speaking XMPP over WebSocket.

Clients negotiate the ``xmpp`` WebSocket sub-protocol on the matchmaker
listener. The relay authenticates them against the account store, relays
chat and party messages between connected clients and broadcasts presence.
"""
