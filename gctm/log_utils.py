# log_utils.py -- Logging utilities for gctm
# Copyright (C) 2025 The gctm authors
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# gctm is dual-licensed under the Apache License, Version 2.0 and the GNU
# General Public License as published by the Free Software Foundation; version 2.0
# or (at your option) any later version. You can redistribute it and/or
# modify it under the terms of either of these two licenses.
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# You should have received a copy of the licenses; if not, see
# <http://www.gnu.org/licenses/> for a copy of the GNU General Public License
# and <http://www.apache.org/licenses/LICENSE-2.0> for a copy of the Apache
# License, Version 2.0.
#

"""Logging utilities for gctm.

gctm is used both as a library and from its command-line interface. Library
callers may not want to see any logging output, so a no-op handler is
attached to the ``gctm`` logger at import time; the CLI calls
:func:`default_logging_config` to route records to stderr.

For many modules, the only function from the logging module they need is
getLogger; this module exports that function for convenience.
"""

__all__ = [
    "LOG_FILE_FORMAT",
    "default_logging_config",
    "getLogger",
    "remove_null_handler",
]

import logging
import os
import sys

getLogger = logging.getLogger

LOG_FILE_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"


class _NullHandler(logging.Handler):
    """No-op logging handler to avoid unexpected logging warnings."""

    def emit(self, record: logging.LogRecord) -> None:
        pass


_NULL_HANDLER = _NullHandler()
_GCTM_LOGGER = getLogger("gctm")
_GCTM_LOGGER.addHandler(_NULL_HANDLER)


def _should_trace() -> bool:
    """Check if GCTM_TRACE is enabled."""
    trace_value = os.environ.get("GCTM_TRACE", "")
    if not trace_value or trace_value.lower() in ("0", "false"):
        return False
    return True


def _get_trace_target() -> str | int | None:
    """Get the trace target from the GCTM_TRACE environment variable.

    Returns:
        - None if tracing is disabled
        - 2 for stderr output (values "1", "2", "true")
        - int (3-9) for file descriptor
        - str for file path (absolute paths or directories)
    """
    trace_value = os.environ.get("GCTM_TRACE", "")

    if not trace_value or trace_value.lower() in ("0", "false"):
        return None

    if trace_value.lower() in ("1", "2", "true"):
        return 2

    try:
        fd = int(trace_value)
        if 3 <= fd <= 9:
            return fd
    except ValueError:
        pass

    if os.path.isabs(trace_value):
        return trace_value

    return None


TRACE_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"


def _open_trace_handler(target: str | int) -> logging.Handler | None:
    """Create the handler that trace records are written to.

    Returns: The handler, or None if the target could not be opened
    """
    try:
        if target == 2:
            return logging.StreamHandler(sys.stderr)
        if isinstance(target, int):
            return logging.StreamHandler(os.fdopen(target, "w", buffering=1))
        if os.path.isdir(target):
            target = os.path.join(target, f"trace.{os.getpid()}")
        return logging.FileHandler(target, mode="a")
    except OSError as e:
        sys.stderr.write(f"Warning: Could not open GCTM_TRACE target {target}: {e}\n")
        return None


def _configure_logging_from_trace() -> bool:
    """Send DEBUG records to the target named by GCTM_TRACE.

    Returns: Whether tracing was set up
    """
    target = _get_trace_target()
    if target is None:
        return False
    handler = _open_trace_handler(target)
    if handler is None:
        return False
    handler.setFormatter(logging.Formatter(TRACE_FORMAT))
    logging.basicConfig(level=logging.DEBUG, handlers=[handler])
    return True


def _add_log_file_handler(path: str) -> logging.Handler | None:
    """Append gctm records to a plain log file.

    Writes are synchronous: a record is on disk before the call that logged
    it returns.
    """
    try:
        handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    except OSError as e:
        sys.stderr.write(f"Warning: Could not open log file {path}: {e}\n")
        return None
    handler.setFormatter(logging.Formatter(LOG_FILE_FORMAT))
    _GCTM_LOGGER.addHandler(handler)
    return handler


def default_logging_config(verbose: bool = False) -> None:
    """Set up the default gctm loggers.

    Respects the GCTM_TRACE environment variable for trace output:
    - If GCTM_TRACE is set to "1", "2", or "true", trace to stderr
    - If GCTM_TRACE is set to an integer 3-9, trace to that file descriptor
    - If GCTM_TRACE is set to an absolute path, trace to that file
    - If the path is a directory, trace to files in that directory (per process)
    - Otherwise, use default stderr output

    If GCTM_LOG_FILE is set, records are additionally appended to that file.

    Args:
      verbose: Log at DEBUG rather than INFO level on stderr
    """
    remove_null_handler()

    if not _configure_logging_from_trace():
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            stream=sys.stderr,
            format="%(levelname)s: %(message)s",
        )

    log_file = os.environ.get("GCTM_LOG_FILE")
    if log_file:
        _add_log_file_handler(log_file)


def remove_null_handler() -> None:
    """Remove the null handler from the gctm loggers.

    If a caller wants to set up logging using something other than
    default_logging_config, calling this function first is a minor optimization
    to avoid the overhead of using the _NullHandler.
    """
    _GCTM_LOGGER.removeHandler(_NULL_HANDLER)
