# SPDX-License-Identifier: GPL-2.0-or-later

import functools
import inspect
import json
import logging
import sys
import traceback

import aiohttp.web

import arena.timeauth
import arena.web
from arena.rpc import monitoring

RPC_SECRET = aiohttp.web.AppKey("rpc_secret", object)
RPC_OBJECT = aiohttp.web.AppKey("rpc_object", object)


class MethodError(Exception):
    """Exception used to notice the remote callers that the requested method
    does not exist.
    """

    pass


class BadToken(Exception):
    """Exception used to notice the remote callers that the timeauth token
    is wrong or has expired.
    """

    pass


class MissingToken(Exception):
    """Exception used to notice the remote callers that the timeauth token
    cannot be found in the request.
    """

    pass


def remote_method(func=None, *, auth_required=True):
    """Decorator for methods to be callable remotely."""
    if func is None:
        return functools.partial(remote_method, auth_required=auth_required)
    func.remote_method = True
    func.auth_required = auth_required
    return func


def is_remote_method(obj):
    """Return if a random object is a remote method."""
    return callable(obj) and getattr(obj, "remote_method", False)


class MethodCollection(type):
    """Metaclass for RPC objects: collect remote methods and store them in a
    class-wide REMOTE_METHODS dictionnary. Methods inherited from base RPC
    classes are collected too. Stored methods are not bound to an instance.
    """

    def __init__(cls, name, bases, dct):
        super().__init__(name, bases, dct)

        remote_methods = {}
        for base in reversed(cls.__mro__[1:]):
            remote_methods.update(getattr(base, "REMOTE_METHODS", {}))
        for name, obj in dct.items():
            if is_remote_method(obj):
                if not inspect.iscoroutinefunction(obj):
                    raise RuntimeError(
                        f"Remote method {obj} is not a coroutine."
                    )
                remote_methods[name] = obj
        cls.REMOTE_METHODS = remote_methods


class RemoteCallHandler:
    def __init__(self, request):
        self.request = request
        self.secret = self.request.app[RPC_SECRET]
        self.method_name = request.match_info["name"]

    @property
    def rpc_object(self):
        """RPC object: contains method that can be called remotely."""
        return self.request.app[RPC_OBJECT]

    def _get_method(self):
        try:
            return self.rpc_object.REMOTE_METHODS[self.method_name]
        except KeyError:
            monitoring.rpc_call_rejected.labels(
                method=self.method_name, reason="unknown"
            ).inc()
            self._raise_exception(
                MethodError(self.method_name),
                http_error=aiohttp.web.HTTPNotFound,
            )

    def _log_call(self, data):
        peername = self.request.transport.get_extra_info("peername")
        elide = 20

        def farg(a):
            if isinstance(a, str) and len(a) > elide:
                a = f"{a[:elide]}…"
            return repr(a)

        logging.debug(
            "RPC <%s> %s(%s%s)",
            peername,
            self.method_name,
            ", ".join(farg(a) for a in data["args"]),
            ", ".join(
                f"{farg(k)}={farg(v)}" for k, v in data["kwargs"].items()
            ),
        )

    def _check_secret(self, data):
        if self.secret is None:
            return
        token = data.get("hmac")
        if not token:
            monitoring.rpc_call_rejected.labels(
                method=self.method_name, reason="missing_token"
            ).inc()
            self._raise_exception(
                MissingToken(self.method_name),
                http_error=aiohttp.web.HTTPBadRequest,
            )
        if not arena.timeauth.check_token(
            token, self.secret, self.method_name
        ):
            monitoring.rpc_call_rejected.labels(
                method=self.method_name, reason="bad_token"
            ).inc()
            self._raise_exception(
                BadToken(self.method_name),
                http_error=aiohttp.web.HTTPForbidden,
            )

    @monitoring._observe_rpc_call_in
    async def __call__(self):
        data = {"args": [], "kwargs": {}}
        if self.request.method == "POST":
            try:
                r = await self.request.json()
            except json.decoder.JSONDecodeError as exn:
                self._raise_exception(
                    exn, http_error=aiohttp.web.HTTPBadRequest
                )
            if isinstance(r, dict):
                data.update(r)

        self._log_call(data)

        method = self._get_method()
        if method.auth_required:
            self._check_secret(data)

        try:
            result = await method(
                self.rpc_object, *data["args"], **data["kwargs"]
            )
        except Exception as exn:
            logging.exception("Remote method %s raised:", self.method_name)
            self._raise_exception(exn, sys.exc_info()[2])

        return aiohttp.web.Response(
            body=self._json_encode(self._format_result(result)),
            content_type="application/json",
        )

    def _format_exception(self, exn, tb=None):
        return {
            "type": "exception",
            "exn_type": type(exn).__name__,
            "exn_message": str(exn),
            "exn_traceback": traceback.format_tb(tb),
        }

    def _raise_exception(
        self, exn, tb=None, http_error=aiohttp.web.HTTPInternalServerError
    ):
        body = self._json_encode(self._format_exception(exn, tb))
        raise http_error(body=body, content_type="application/json")

    def _format_result(self, result):
        return {"type": "result", "data": result}

    def _json_encode(self, data):
        return json.dumps(data).encode() + b"\n"


class BaseRPCApp(arena.web.AiohttpApp, metaclass=MethodCollection):
    """RPC base application: let clients call remotely subclasses methods.

    Just subclass me, add some remote methods using the `remote_method`
    decorator and instantiate me! Extra aiohttp routes can be given with
    `routes`, they are served by the same application.
    """

    def __init__(self, secret=None, routes=(), **kwargs):
        async def handler(request):
            return await RemoteCallHandler(request)()

        super().__init__(
            [("*", r"/call/{name:[0-9a-zA-Z_]+}", handler), *routes],
            client_max_size=1024 * 1024,
            **kwargs,
        )
        self.app[RPC_SECRET] = secret
        self.app[RPC_OBJECT] = self
