# utils.py -- Test utilities for gctm
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

"""Utility functions common to gctm tests."""

import os
import shutil
import subprocess
import tempfile
from collections.abc import Callable, Mapping, Sequence

from gctm.process import CommandResult, GitExecutor
from gctm.repo import Repo

from . import SkipTest, TestCase

_DEFAULT_GIT = "git"


def run_git(
    cwd: str,
    args: Sequence[str],
    env: Mapping[str, str] | None = None,
    input: str | None = None,
) -> str:
    """Run a git command and return its output.

    Raises:
      subprocess.CalledProcessError: if git exits with a non-zero status
    """
    full_env = dict(os.environ)
    if env:
        full_env.update(env)
    p = subprocess.run(
        [_DEFAULT_GIT, *args],
        cwd=cwd,
        env=full_env,
        input=input,
        capture_output=True,
        text=True,
        check=True,
    )
    return p.stdout


class RecordingExecutor(GitExecutor):
    """Executor that remembers every argument vector it is given.

    Commands for which ``fail`` returns true are not run; they report exit
    status 128 instead.
    """

    def __init__(
        self,
        repo_path: str,
        fail: Callable[[Sequence[str]], bool] | None = None,
    ) -> None:
        super().__init__(repo_path)
        self.calls: list[list[str]] = []
        self._fail = fail

    def run(self, args, *, timeout=None, env=None, input=None) -> CommandResult:
        self.calls.append(list(args))
        if self._fail is not None and self._fail(args):
            return CommandResult(tuple(args), 128, "", "fatal: simulated failure")
        return super().run(args, timeout=timeout, env=env, input=input)


class GitTestCase(TestCase):
    """Test case that works on a throwaway repository made with real git."""

    def setUp(self) -> None:
        super().setUp()
        if shutil.which(_DEFAULT_GIT) is None:
            raise SkipTest("git is not installed")
        self.path = os.path.realpath(tempfile.mkdtemp())
        self.addCleanup(shutil.rmtree, self.path)
        self.git("init", "-q")
        self.git("symbolic-ref", "HEAD", "refs/heads/master")
        self.git("config", "user.name", "Test Author")
        self.git("config", "user.email", "author@example.com")
        self.git("config", "commit.gpgsign", "false")
        self.repo = Repo(self.path)

    def git(self, *args: str, env: Mapping[str, str] | None = None) -> str:
        return run_git(self.path, args, env=env)

    def write(self, name: str, content: str) -> None:
        path = os.path.join(self.path, name)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(content)

    def read(self, name: str) -> str:
        with open(os.path.join(self.path, name), encoding="utf-8", newline="") as f:
            return f.read()

    def commit(
        self,
        message: str,
        files: Mapping[str, str | None] | None = None,
        date: str = "2022-06-01T12:00:00+00:00",
    ) -> str:
        """Write (or, for None, remove) files and commit them.

        Returns: SHA of the new commit
        """
        for name, content in (files or {}).items():
            if content is None:
                self.git("rm", "-q", "--", name)
            else:
                self.write(name, content)
                self.git("add", "--", name)
        self.git(
            "commit",
            "-q",
            "--allow-empty",
            "-m",
            message,
            env={"GIT_AUTHOR_DATE": date, "GIT_COMMITTER_DATE": date},
        )
        return self.head()

    def head(self) -> str:
        return self.git("rev-parse", "HEAD").strip()

    def log(self, fmt: str, *extra: str) -> list[str]:
        return self.git("log", f"--format={fmt}", *extra).splitlines()
