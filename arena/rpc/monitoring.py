# SPDX-License-Identifier: GPL-2.0-or-later

import functools

from prometheus_client import Counter, Summary


rpc_call_in = Summary(
    'arena_rpc_call_in',
    'Summary of the rpc calls received',
    ['method'],
)

rpc_call_rejected = Counter(
    'arena_rpc_call_rejected',
    'Number of rpc calls rejected before reaching the method',
    ['method', 'reason'],
)

rpc_call_out = Summary(
    'arena_rpc_call_out',
    'Summary of the rpc calls sent',
    ['method'],
)


def _observe_rpc_call_in(f):
    @functools.wraps(f)
    async def _wrapper(self):
        with rpc_call_in.labels(method=self.method_name).time():
            return await f(self)

    return _wrapper

# Monitoring is started by the application using the rpc library
