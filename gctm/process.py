# process.py -- Running git as a subprocess
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

"""Timeout-bounded invocation of the git command-line client.

This is the only place where gctm starts external processes. Arguments are
always passed as a vector and never through a shell. A non-zero exit status
is reported, not raised: callers look at :attr:`CommandResult.returncode`
and decide what it means for them.
"""

__all__ = [
    "DEFAULT_TIMEOUT",
    "LONG_TIMEOUT",
    "CommandResult",
    "GitExecutor",
]

import logging
import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from .errors import ProcessError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
LONG_TIMEOUT = 300.0

TIMEOUT_RETURNCODE = -1


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a single git invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def check(self) -> "CommandResult":
        """Return self if the command succeeded.

        Raises:
          ProcessError: if the command exited with a non-zero status
        """
        if self.returncode != 0:
            raise ProcessError(self.args, self.returncode, self.stderr)
        return self

    def lines(self) -> list[str]:
        """Return the non-empty lines of stdout."""
        return [line for line in self.stdout.splitlines() if line.strip()]


class GitExecutor:
    """Runs git commands inside one repository."""

    def __init__(
        self,
        repo_path: str | os.PathLike[str],
        git_path: str = "git",
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Create a new executor.

        Args:
          repo_path: Working directory for every command
          git_path: Path to the git executable
          timeout: Default timeout in seconds for a single command
        """
        self.repo_path = os.fspath(repo_path)
        self.git_path = git_path
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.repo_path!r})"

    def run(
        self,
        args: Sequence[str],
        *,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
        input: str | None = None,
    ) -> CommandResult:
        """Run ``git <args>`` and capture its output.

        Args:
          args: Arguments to git, excluding the git executable itself
          timeout: Timeout in seconds; defaults to the executor timeout
          env: Extra environment variables, merged over os.environ
          input: Text to send on stdin
        Returns: A CommandResult; a timed out command is killed and reported
          with returncode -1 and timed_out set
        Raises:
          ProcessError: if the git executable could not be started
        """
        if isinstance(args, str):
            raise TypeError("args must be a sequence of arguments, not a string")
        argv = [self.git_path, *args]
        if timeout is None:
            timeout = self.timeout
        full_env = None
        if env:
            full_env = dict(os.environ)
            full_env.update(env)

        logger.debug("running %r in %s", argv, self.repo_path)
        try:
            p = subprocess.run(
                argv,
                cwd=self.repo_path,
                env=full_env,
                input=input,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                shell=False,
            )
        except subprocess.TimeoutExpired as e:
            logger.error("git %s timed out after %ss", args[0] if args else "", timeout)
            return CommandResult(
                tuple(args),
                TIMEOUT_RETURNCODE,
                _to_text(e.stdout),
                f"timed out after {timeout}s",
                timed_out=True,
            )
        except OSError as e:
            raise ProcessError(argv, None, message=f"Unable to run {argv[0]}: {e}") from e

        return CommandResult(tuple(args), p.returncode, p.stdout, p.stderr)

    def run_checked(
        self,
        args: Sequence[str],
        *,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
        input: str | None = None,
    ) -> CommandResult:
        """Run a git command and raise ProcessError if it fails."""
        return self.run(args, timeout=timeout, env=env, input=input).check()


def _to_text(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", "replace")
    return data
