#!/usr/bin/env python3
"""
Meilisearch Update Management System
Copyright (C) 2024 HOMESERVER LLC

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU General Public License for more details.

You should have received a copy of the GNU General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""

"""
Command line entry point.

    meili-upgrade                 interactive upgrade to the latest release
    meili-upgrade --recover       restore the previous version and data
    meili-upgrade --silentcheck   one line iff an upgrade is available (cron)

Exit codes: 0 on success, no-op or a declined upgrade; 1 on any failure,
missing artifact or cancelled recovery; 130 when interrupted.
"""

import logging
import os
import sys
from .utils.index import log_message
from .modules.meilisearch.index import build_parser, run

def setup_update_logging(quiet: bool = False):
    """
    Log to stdout only; cron/shell wrappers own any file redirection.
    In quiet mode nothing is emitted at all.
    """
    root_logger = logging.getLogger()
    for h in list(root_logger.handlers):
        root_logger.removeHandler(h)

    if quiet:
        # NullHandler also keeps logging's last-resort stderr handler quiet
        root_logger.addHandler(logging.NullHandler())
        return

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    unified_format = logging.Formatter('[%(asctime)s] [%(levelname)s] %(message)s',
                                       datefmt='%Y-%m-%d %H:%M:%S')
    console_handler.setFormatter(unified_format)
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)
    logging.info("="*80)
    logging.info("MEILISEARCH UPDATE SESSION STARTED")
    logging.info(f"Command: {' '.join(sys.argv)}")
    logging.info(f"Working Directory: {os.getcwd()}")
    logging.info("="*80)

def main(argv=None):
    """
    Main entry point for the upgrade/recovery tool.
    """
    options = build_parser().parse_args(argv)

    try:
        setup_update_logging(quiet=options.silentcheck)
        result = run(options)
    except KeyboardInterrupt:
        log_message("Interrupted by user", "WARNING")
        sys.exit(130)

    sys.exit(0 if result.get("success") else 1)

if __name__ == "__main__":
    main()
