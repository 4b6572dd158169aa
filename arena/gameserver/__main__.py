# SPDX-License-Identifier: GPL-2.0-or-later
import asyncio
import optparse

import arena.config
import arena.log

from .heartbeat import HeartbeatAgent


async def main(agent):
    try:
        await agent.run()
    finally:
        await agent.unregister()


if __name__ == "__main__":
    parser = optparse.OptionParser()
    parser.add_option(
        "-l",
        "--local-logging",
        action="store_true",
        dest="local_logging",
        default=False,
        help="Activate logging to stdout.",
    )
    parser.add_option(
        "-v",
        "--verbose",
        action="store_true",
        dest="verbose",
        default=False,
        help="Verbose mode.",
    )
    options, args = parser.parse_args()

    arena.log.setup_logging(
        "gameserver", verbose=options.verbose, local=options.local_logging
    )
    arena.log.quiet_third_party()

    agent = HeartbeatAgent(arena.config.load("gameserver"))
    try:
        asyncio.run(main(agent))
    except KeyboardInterrupt:
        pass
