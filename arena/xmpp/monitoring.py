# SPDX-License-Identifier: GPL-2.0-or-later
from prometheus_client import Counter, Gauge

xmpp_connected_clients = Gauge(
    'arena_xmpp_connected_clients',
    'Number of authenticated presence connections',
)

xmpp_party_rooms = Gauge(
    'arena_xmpp_party_rooms',
    'Number of open party rooms',
)

xmpp_auth_failures = Counter(
    'arena_xmpp_auth_failures',
    'Number of rejected SASL authentications',
    ['reason'],
)

xmpp_relayed_messages = Counter(
    'arena_xmpp_relayed_messages',
    'Number of messages relayed between clients',
    ['kind'],
)

xmpp_exception = Counter(
    'arena_xmpp_exception',
    'Number of exceptions raised while handling stanzas',
)
