# Copyright (C) 2024 Collimator, Inc.
# SPDX-License-Identifier: AGPL-3.0-only
#
# This program is free software: you can redistribute it and/or modify it under
# the terms of the GNU Affero General Public License as published by the Free
# Software Foundation, version 3. This program is distributed in the hope that it
# will be useful, but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the GNU Affero General
# Public License for more details.  You should have received a copy of the GNU
# Affero General Public License along with this program. If not, see
# <https://www.gnu.org/licenses/>.

# https://www.firedrakeproject.org/_modules/firedrake/logging.html
import functools
import logging
import time
from logging import CRITICAL, DEBUG, ERROR, INFO, WARNING

RED = "\033[31m"
GREEN = "\033[32m"
BLUE = "\033[34m"
YELLOW = "\033[33m"
LIGHTGREY = "\033[37m"
RESET = "\033[0m"

__all__ = [
    "logger",
    "set_log_level",
    "set_file_handler",
    "set_stream_handler",
    "unset_stream_handler",
    "scope_logging",
    "logdata",
    "DEBUG",
    "INFO",
    "WARNING",
    "ERROR",
    "CRITICAL",
]

packages = [__package__]


class ColorFormatter(logging.Formatter):
    """Colored level names, followed by the `logdata` key/value pairs."""

    level_colors = [(ERROR, RED), (WARNING, YELLOW), (INFO, GREEN)]

    def _level_color(self, level):
        for threshold, color in self.level_colors:
            if level >= threshold:
                return color
        return BLUE

    def format(self, record):
        extras: dict | None = record.__dict__.get("extras")
        color = self._level_color(record.levelno)

        ftime = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(record.created))
        s = f"{ftime}.{(1000*record.created)%1000:.0f} - [{record.name}][{color}{record.levelname}{RESET}]: {record.getMessage()}{RESET}"

        if extras:
            s += " " + " ".join(f"{LIGHTGREY}{k}{RESET}={v}" for k, v in extras.items())

        return s


__fmt = "%(name)s:%(levelname)s %(message)s"
__formatter = logging.Formatter(fmt=__fmt)
__stream_handler = logging.StreamHandler()
__stream_handler.setFormatter(__formatter)


def set_file_handler(file, formatter=None):
    """Set a file handler to all packages."""
    if formatter is None:
        formatter = __formatter
    fh = logging.FileHandler(file, mode="w")
    fh.setFormatter(formatter)
    for package in packages:
        logger_ = logging.getLogger(package)
        logger_.addHandler(fh)
    return fh


def set_stream_handler(handler=None):
    """Set the stream handler to all packages."""
    for package in packages:
        logger_ = logging.getLogger(package)
        logger_.addHandler(handler if handler else __stream_handler)


def unset_stream_handler():
    """Remove the stream handler from all packages."""
    for package in packages:
        logger_ = logging.getLogger(package)
        logger_.removeHandler(__stream_handler)


def set_log_level(level, pkg: str | None = None):
    """Set the log level for the specified or all packages.

    Args:
        level: The log level to set.
        pkg: If set, apply the log level only to the specified package.
    """
    if pkg is not None:
        logger_ = logging.getLogger(pkg)
        logger_.setLevel(level)
        return

    for package in packages:
        logger_ = logging.getLogger(package)
        logger_.setLevel(level)


def scope_logging(func):
    """Decorator to log function entry and exit."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger_ = logging.getLogger(__package__)
        logger_.debug("*** Entering %s ***", func.__qualname__)
        result = func(*args, **kwargs)
        logger_.debug("*** Exiting %s ***", func.__qualname__)
        return result

    return wrapper


def logdata(**kwargs):
    """Use this in log.info() and other logging functions to attach key/value
    context to a record, rendered by `ColorFormatter`:

    logger.debug("alias found", **logdata(var=v, target=w))
    """
    if not kwargs:
        return {}
    return {"extra": {"extras": kwargs}}


logger = logging.getLogger(__package__)
