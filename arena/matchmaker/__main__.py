# SPDX-License-Identifier: GPL-2.0-or-later
import optparse

import arena.config
import arena.log

from .monitoring import monitoring_start
from .service import MatchmakerService

if __name__ == "__main__":
    # Argument parsing
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

    # Config
    config = arena.config.load("matchmaker")

    # Logging
    arena.log.setup_logging(
        "matchmaker", verbose=options.verbose, local=options.local_logging
    )
    arena.log.quiet_third_party()

    s = MatchmakerService(config)

    # Monitoring
    monitoring_start(s.core.service["monitoring_port"])

    try:
        s.run()
    except KeyboardInterrupt:
        pass
