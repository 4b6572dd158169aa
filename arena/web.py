# SPDX-License-Identifier: GPL-2.0-or-later
"""Provides utilities for Arena web applications. Every service exposing HTTP
or WebSocket endpoints is built like this:

    import arena.web
    application = arena.web.AiohttpApp(routes)

This maps some special URLs to debug pages (WARNING: no authentication is
done, this could leak secrets):
  * /__info
    Returns Python version, the number of asyncio tasks and the service class.
  * /__state
    Shows a state dump. Applications choose what to expose here.

Long running coroutines (janitors, watchers) are registered with
:meth:`AiohttpApp.add_background_task`: they are started with the application
and cancelled when it shuts down.
"""

import asyncio
import contextlib
import html
import os
import pprint
import sys
from typing import Any, Callable, Coroutine, List, Mapping, Set

import aiohttp.web


def html_response(text):
    return aiohttp.web.Response(
        text=text, content_type="text/html", charset="utf-8"
    )


def debug_header():
    return (
        "<style>body { font-family:monospace; white-space:pre-wrap; }</style>"
        + " ⋅ ".join(
            f"<a href='{url}'>{html.escape(text)}</a>"
            for url, text in (
                ("/__info", "Summary"),
                ("/__state", "State dump"),
            )
        )
        + "\n\n"
    )


class AiohttpApp:
    exposed_attributes: Set[str] = set()
    """Instance attributes to expose on the /__state page. For more control,
    override exposed_state()."""

    def __init__(self, routes, **kwargs):
        self.app = aiohttp.web.Application(**kwargs)
        for route in routes:
            self.app.router.add_route(*route)
        self.app.add_routes(
            [
                aiohttp.web.get("/__info", self.info_handler),
                aiohttp.web.get("/__state", self.state_handler),
            ]
        )
        self._background_factories: List[Callable[[], Coroutine]] = []
        self._background_tasks: List[asyncio.Task] = []
        self.app.on_startup.append(self._start_background_tasks)
        self.app.on_cleanup.append(self._stop_background_tasks)

    def add_background_task(self, factory: Callable[[], Coroutine]) -> None:
        """Runs ``factory()`` as a task for the lifetime of the application."""
        self._background_factories.append(factory)

    async def _start_background_tasks(self, app):
        for factory in self._background_factories:
            self._background_tasks.append(asyncio.create_task(factory()))

    async def _stop_background_tasks(self, app):
        for task in self._background_tasks:
            task.cancel()
        for task in self._background_tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._background_tasks.clear()

    async def info_handler(self, request):
        return html_response(
            debug_header()
            + html.escape(
                f"Python {sys.version}\n\n"
                f"Running {sys.executable} as {os.getuid()}:{os.getgid()}\n\n"
                f"{self.__class__.__name__} in module "
                f"{self.__class__.__module__}\n\n"
                f"{len(asyncio.all_tasks())} asyncio tasks"
            )
        )

    async def state_handler(self, request):
        state = html.escape(pprint.pformat(await self.exposed_state()))
        return html_response(debug_header() + state)

    async def exposed_state(self) -> Mapping[str, Any]:
        """Returns dict of str -> object to expose on the /__state page.

        By default, this exposes attributes from :attr:`exposed_attributes`.
        """
        return {
            attr: getattr(self, attr)
            for attr in self.exposed_attributes
            if hasattr(self, attr)
        }

    def run(self, **kwargs):
        aiohttp.web.run_app(self.app, print=lambda *_: None, **kwargs)
