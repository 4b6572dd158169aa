# SPDX-License-Identifier: GPL-2.0-or-later
"""XMPP-over-WebSocket framing: one stanza per text frame.

Incoming stanzas are parsed with ElementTree and their tags are stripped of
namespaces, so handlers match on local names (``iq``, ``bind``...). Outgoing
stanzas are built with explicit ``xmlns`` attributes, the way game clients
expect them.
"""

import enum
import json
import xml.etree.ElementTree as ET
from typing import Iterable, Optional

FRAMING_NS = 'urn:ietf:params:xml:ns:xmpp-framing'
STREAM_NS = 'http://etherx.jabber.org/streams'
SASL_NS = 'urn:ietf:params:xml:ns:xmpp-sasl'
BIND_NS = 'urn:ietf:params:xml:ns:xmpp-bind'
SESSION_NS = 'urn:ietf:params:xml:ns:xmpp-session'
TLS_NS = 'urn:ietf:params:xml:ns:xmpp-tls'
ROSTERVER_NS = 'urn:xmpp:features:rosterver'
COMPRESS_NS = 'http://jabber.org/features/compress'
IQ_AUTH_NS = 'http://jabber.org/features/iq-auth'
CLIENT_NS = 'jabber:client'
MUC_USER_NS = 'http://jabber.org/protocol/muc#user'

PARTY_INVITATION = 'com.epicgames.party.invitation'
PARTY_MEMBER_EXITED = 'com.epicgames.party.memberexited'


class StanzaError(Exception):
    pass


def _local_name(tag):
    return tag.rsplit('}', 1)[-1] if isinstance(tag, str) else tag


def parse(data) -> ET.Element:
    """Parses one stanza. Raises StanzaError on malformed XML."""
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exn:
        raise StanzaError(f"malformed stanza: {exn}") from None
    for el in root.iter():
        el.tag = _local_name(el.tag)
    return root


def child(el, name) -> Optional[ET.Element]:
    return el.find(name)


def child_text(el, name) -> Optional[str]:
    found = el.find(name)
    if found is None:
        return None
    return found.text or ''


def serialize(el) -> str:
    return ET.tostring(el, encoding='unicode')


def element(tag, attrib=None, text=None, children: Iterable = ()):
    el = ET.Element(tag, {k: str(v) for k, v in (attrib or {}).items()})
    if text is not None:
        el.text = str(text)
    el.extend(children)
    return el


def stream_open(domain, stream_id):
    return element(
        'open',
        {
            'xmlns': FRAMING_NS,
            'from': domain,
            'id': stream_id,
            'version': '1.0',
            'xml:lang': 'en',
        },
    )


def _compression():
    return element(
        'compression',
        {'xmlns': COMPRESS_NS},
        children=[element('method', text='zlib')],
    )


def stream_features(authenticated):
    """Features offered before and after SASL authentication."""
    if authenticated:
        features = [
            element('ver', {'xmlns': ROSTERVER_NS}),
            element('starttls', {'xmlns': TLS_NS}),
            element('bind', {'xmlns': BIND_NS}),
            _compression(),
            element('session', {'xmlns': SESSION_NS}),
        ]
    else:
        features = [
            element(
                'mechanisms',
                {'xmlns': SASL_NS},
                children=[element('mechanism', text='PLAIN')],
            ),
            element('ver', {'xmlns': ROSTERVER_NS}),
            element('starttls', {'xmlns': TLS_NS}),
            _compression(),
            element('auth', {'xmlns': IQ_AUTH_NS}),
        ]
    return element(
        'stream:features', {'xmlns:stream': STREAM_NS}, children=features
    )


def stream_close():
    return element('close', {'xmlns': FRAMING_NS})


def sasl_success():
    return element('success', {'xmlns': SASL_NS})


def iq_result(iq_id, to, domain=None):
    attrib = {'to': to}
    if domain is not None:
        attrib['from'] = domain
    attrib.update({'id': iq_id, 'xmlns': CLIENT_NS, 'type': 'result'})
    return element('iq', attrib)


def bind_result(jid):
    iq = iq_result('_xmpp_bind1', jid)
    iq.append(
        element('bind', {'xmlns': BIND_NS}, children=[element('jid', text=jid)])
    )
    return iq


def message(to, from_, body, type=None, id=None):
    attrib = {}
    if id is not None:
        attrib['id'] = id
    attrib.update({'from': from_, 'to': to, 'xmlns': CLIENT_NS})
    if type is not None:
        attrib['type'] = type
    return element('message', attrib, children=[element('body', text=body)])


def presence(to, from_, type=None, away=False, status=None):
    attrib = {'to': to, 'xmlns': CLIENT_NS, 'from': from_}
    if type is not None:
        attrib['type'] = type
    children = []
    if away:
        children.append(element('show', text='away'))
    if status is not None:
        children.append(element('status', text=status))
    return element('presence', attrib, children=children)


def muc_presence(to, from_, nick, jid, role='participant', codes=(), type=None):
    """Presence of a party room occupant, with MUC status codes."""
    item = {'nick': nick, 'jid': jid, 'role': role}
    if role != 'none':
        item['affiliation'] = 'none'
    x = element(
        'x',
        {'xmlns': MUC_USER_NS},
        children=[element('item', item)]
        + [element('status', {'code': code}) for code in codes],
    )
    attrib = {'to': to, 'from': from_, 'xmlns': CLIENT_NS}
    if type is not None:
        attrib['type'] = type
    return element('presence', attrib, children=[x])


class MessageKind(enum.Enum):
    """Kinds of JSON message bodies the relay knows how to route."""

    PARTY_INVITATION = PARTY_INVITATION
    OTHER = 'other'

    @classmethod
    def of(kls, body) -> Optional['MessageKind']:
        """Classifies a message body, None if it is not a typed JSON object."""
        try:
            data = json.loads(body)
        except (TypeError, ValueError):
            return None
        if not isinstance(data, dict) or not isinstance(data.get('type'), str):
            return None
        if data['type'].lower() == PARTY_INVITATION:
            return kls.PARTY_INVITATION
        return kls.OTHER
