# errors.py -- errors for gctm
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

"""gctm-related exception classes."""

__all__ = [
    "GctmError",
    "NotGitRepository",
    "ProcessError",
    "ResourceExhaustionWarning",
    "StateConflict",
    "ValidationError",
]

from collections.abc import Sequence


class GctmError(Exception):
    """Base class for errors raised by gctm."""


class ValidationError(GctmError, ValueError):
    """A hash, branch name, backup id, path or rule was malformed.

    Raised before any subprocess is started or any filesystem path is built
    from the offending value.
    """

    def __init__(self, kind: str, value: object) -> None:
        """Initialize a ValidationError.

        Args:
          kind: Human readable name of the identifier kind
          value: The rejected value
        """
        self.kind = kind
        self.value = value
        super().__init__(f"Invalid {kind}: {value!r}")


class ProcessError(GctmError):
    """An external command exited with a non-zero status or could not start."""

    def __init__(
        self,
        args: Sequence[str],
        returncode: int | None,
        stderr: str = "",
        message: str | None = None,
    ) -> None:
        """Initialize a ProcessError.

        Args:
          args: Argument vector of the failed command
          returncode: Exit status, or None if the command never started
          stderr: Captured standard error
          message: Optional message overriding the generated one
        """
        self.command = list(args)
        self.returncode = returncode
        self.stderr = stderr
        if message is None:
            message = f"{' '.join(self.command)} failed"
            if returncode is not None:
                message += f" with exit status {returncode}"
            if stderr.strip():
                message += f": {stderr.strip()}"
        super().__init__(message)


class StateConflict(GctmError):
    """The repository is in a state that blocks a destructive operation."""

    def __init__(self, message: str, paths: Sequence[str] = ()) -> None:
        """Initialize a StateConflict.

        Args:
          message: Description of the conflict
          paths: Paths involved in the conflict, if any
        """
        self.paths = list(paths)
        super().__init__(message)


class NotGitRepository(GctmError):
    """Indicates that no git repository was found."""


class ResourceExhaustionWarning(UserWarning):
    """The repository is larger than the configured comfort threshold."""
