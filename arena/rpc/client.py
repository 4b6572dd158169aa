# SPDX-License-Identifier: GPL-2.0-or-later

import asyncio
import contextlib
import json
import logging
from urllib.parse import urljoin

import aiohttp

import arena.timeauth
from arena.rpc import monitoring


class BaseError(Exception):
    """Base class for all exceptions here."""

    pass


class InternalError(BaseError):
    """Raised when there is a protocol failure somewhere."""

    pass


class RemoteError(BaseError):
    """Raised when the remote procedure raised an error."""

    def __init__(self, type, message):
        self.type = type
        self.message = message
        super().__init__(type, message)


class Client:
    """RPC client: connect to a server and perform remote calls.

    Remote methods are called as plain attributes::

        client = Client("http://matchmaker:8080/", secret=b"...")
        await client.heartbeat("nae-1", 12, "online")
    """

    def __init__(self, base_url, secret=None, http_client=None):
        self._base_url = base_url
        self._secret = secret
        # For testing, we have to use an existing client.
        self._http_client = http_client

    @contextlib.asynccontextmanager
    async def _client(self):
        if self._http_client is not None:
            # The lifecycle of existing clients are handled externally. It's
            # important not to close (__aexit__) them ourselves.
            yield self._http_client
            return

        async with aiohttp.ClientSession() as client:
            yield client

    def _call_params(self, method, args, kwargs):
        arguments = {"args": list(args), "kwargs": kwargs}
        if self._secret:
            arguments["hmac"] = arena.timeauth.generate_token(
                self._secret, method
            )
        url = urljoin(self._base_url, f"call/{method}")
        return url, arguments

    async def _call_method(self, method, args, kwargs):
        """Calls the remote `method` passing `args` and `kwargs` to it.

        `args` must be a JSON-serializable list of positional arguments while
        `kwargs` must be a JSON-serializable dictionary of keyword arguments.

        Returns the result or raises a RemoteError. Raises an InternalError
        for any error that isn't caused by the remote.
        """
        url, data = self._call_params(method, args, kwargs)
        try:
            body = json.dumps(data)
        except (TypeError, ValueError) as exn:
            raise ValueError(
                f"JSON cannot encode argument types: {args!r}, {kwargs!r}"
            ) from exn

        with monitoring.rpc_call_out.labels(method=method).time():
            async with self._client() as client:
                async with client.post(
                    url,
                    data=body,
                    headers={"Content-Type": "application/json"},
                ) as resp:
                    content_type = resp.headers.get("Content-Type", "")
                    if not content_type.startswith("application/json"):
                        raise InternalError(
                            f"Unknown Content-Type: '{content_type}'."
                        )
                    result = await resp.json()

        return self._parse_response(result)

    def _parse_response(self, result):
        result_type = result.get("type")
        if result_type == "result":
            return result["data"]
        elif result_type == "exception":
            raise RemoteError(result["exn_type"], result["exn_message"])
        else:
            raise InternalError(f"Invalid result type: {result_type}")

    def __getattr__(self, method):
        """Returns a callable to invoke a remote procedure."""
        if method.startswith("_"):
            raise AttributeError(method)

        async def proxy(*args, max_retries=0, retry_delay=10, **kwargs):
            for i in range(max_retries + 1):
                try:
                    return await self._call_method(method, args, kwargs)
                except (aiohttp.ClientConnectionError, OSError):
                    if i < max_retries:
                        logging.warning(
                            "<%s> down, cannot call %s. Retrying in %ss...",
                            self._base_url,
                            method,
                            retry_delay,
                        )
                        await asyncio.sleep(retry_delay)
                    else:
                        raise

        return proxy
