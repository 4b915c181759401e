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

import logging

logger = logging.getLogger("meili_updates")

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

def log_message(message, level="INFO"):
    """
    Unified logger used throughout the orchestrators and helpers.
    Args:
        message (str): The message to log.
        level (str): Log level name ('DEBUG', 'INFO', 'WARNING', 'ERROR').
    """
    logger.log(_LEVELS.get(level.upper(), logging.INFO), message)
