# SPDX-License-Identifier: GPL-2.0-or-later
"""Read-only access to player accounts and their access tokens.

Accounts are kept by the account service in a flat JSON file, either a list
of objects carrying an ``accountId`` or a mapping from account id to object.
Lookups only read the in-memory copy. The file is read again, off the event
loop, by :meth:`JsonAccountStore.refresh_task` whenever its modification time
changes.

Access tokens are ``eg1~`` prefixed HS256 JWTs whose claims carry the
account id (``sub``), an ISO ``creation_date`` and a lifetime in hours
(``hours_expire``).
"""

import asyncio
import datetime
import json
import logging
import os
from typing import Any, Dict, Optional

import jwt

TOKEN_PREFIX = 'eg1~'


class JsonAccountStore:
    def __init__(self, path, refresh_interval_secs=5):
        self.path = path
        self.refresh_interval_secs = refresh_interval_secs
        self._mtime = None
        self._accounts: Dict[str, Dict[str, Any]] = {}

    def reload(self):
        """Reads the file again if it changed. Blocking."""
        if not self.path:
            return
        try:
            mtime = os.stat(self.path).st_mtime
        except OSError:
            if self._mtime is not None:
                logging.warning("account store %s disappeared", self.path)
            self._mtime = None
            self._accounts = {}
            return
        if mtime == self._mtime:
            return

        with open(self.path, 'r') as fp:
            data = json.load(fp)
        if isinstance(data, dict):
            accounts = {
                str(account_id): dict(account, accountId=account_id)
                for account_id, account in data.items()
            }
        else:
            accounts = {
                str(account['accountId']): account
                for account in data
                if account.get('accountId')
            }
        self._accounts = accounts
        self._mtime = mtime
        logging.info(
            "loaded %d accounts from %s", len(self._accounts), self.path
        )

    async def refresh(self):
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.reload)

    async def refresh_task(self):
        while True:
            try:
                await self.refresh()
            except asyncio.CancelledError:
                raise
            except Exception:
                logging.exception("could not load accounts from %s", self.path)
            await asyncio.sleep(self.refresh_interval_secs)

    def get(self, account_id) -> Optional[Dict[str, Any]]:
        return self._accounts.get(account_id)

    def __contains__(self, account_id):
        return self.get(account_id) is not None

    def __len__(self):
        return len(self._accounts)


def _parse_date(value):
    if isinstance(value, (int, float)):
        return datetime.datetime.fromtimestamp(value, tz=datetime.timezone.utc)
    date = datetime.datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if date.tzinfo is None:
        date = date.replace(tzinfo=datetime.timezone.utc)
    return date


class TokenVerifier:
    def __init__(self, secret):
        self.secret = secret

    def verify(self, token, now=None) -> Optional[Dict[str, Any]]:
        """Returns the claims of an access token, None if it is not valid."""
        if not token or not token.startswith(TOKEN_PREFIX):
            return None
        try:
            claims = jwt.decode(
                token[len(TOKEN_PREFIX):], self.secret, algorithms=['HS256']
            )
        except jwt.InvalidTokenError as exn:
            logging.warning("rejected access token: %s", exn)
            return None

        try:
            created = _parse_date(claims['creation_date'])
            lifetime = datetime.timedelta(hours=float(claims['hours_expire']))
        except (KeyError, TypeError, ValueError):
            logging.warning("access token without a valid lifetime")
            return None
        now = now or datetime.datetime.now(tz=datetime.timezone.utc)
        if created + lifetime <= now:
            logging.info("access token of %s expired", claims.get('sub'))
            return None
        return claims
