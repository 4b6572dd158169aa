# SPDX-License-Identifier: GPL-2.0-or-later
"""Authenticate RPC calls from game servers using the pre-shared game server
secret and time synchronisation between endpoints.

A token is ``<unix timestamp>:<hex HMAC-SHA256(secret, message + timestamp)>``
where the message is the name of the remote method being called, so a token
captured for ``heartbeat`` cannot be replayed against ``unregister_server``.
"""

import hashlib
import hmac
import time

import arena.config


# Default validity time (in seconds) of a generated token.
TOKEN_TIMEOUT = 120


def generate_token(secret: bytes, message=None, now=None):
    """Generates a token given some `secret`."""
    timestamp = str(int(time.time() if now is None else now))
    return '{}:{}'.format(
        timestamp, _get_hmac(secret, str(message) + timestamp),
    )


def check_token(token: str, secret: bytes, message=None, now=None):
    """Returns if `token` is valid according to `secret` and current time."""
    config = arena.config.load('timeauth')

    if not config.get('enabled', True):
        return True

    if not token:
        return False

    # Reject badly formatted tokens.
    try:
        timestamp, user_digest = token.split(':')
        int_timestamp = int(timestamp)
    except ValueError:
        return False

    # Reject outdated tokens, and tokens from a clock too far ahead.
    timeout = config.get('timeout_secs', TOKEN_TIMEOUT)
    now = time.time() if now is None else now
    if abs(now - int_timestamp) > timeout:
        return False

    expected_digest = _get_hmac(secret, str(message) + timestamp)
    return hmac.compare_digest(expected_digest, user_digest)


def _get_hmac(secret: bytes, message: str):
    """Returns the HMAC digest of `message` keyed by `secret`."""
    return hmac.new(
        secret, message.encode('utf-8'), digestmod=hashlib.sha256
    ).hexdigest()
