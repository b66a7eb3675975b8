# repo.py -- Handle on a git working tree
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

"""Handle on a git working tree.

:class:`Repo` bundles a repository path with the :class:`GitExecutor` that
runs commands in it, and wraps the read-only queries the rewrite and
snapshot code need.
"""

__all__ = [
    "CommitInfo",
    "Repo",
    "StatusEntry",
]

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from .errors import NotGitRepository
from .process import LONG_TIMEOUT, GitExecutor

logger = logging.getLogger(__name__)

# Fields are NUL separated, records are separated by an ASCII record separator.
_LOG_FORMAT = "%H%x00%h%x00%an%x00%ae%x00%aI%x00%B%x1e"


@dataclass(frozen=True)
class CommitInfo:
    """Summary of one commit, as shown by ``git log``."""

    hash: str
    short_hash: str
    message: str
    author: str
    email: str
    date: datetime

    @property
    def subject(self) -> str:
        return self.message.split("\n", 1)[0]


@dataclass(frozen=True)
class StatusEntry:
    """One line of ``git status --porcelain``."""

    code: str
    path: str

    @property
    def untracked(self) -> bool:
        return self.code == "??"

    @property
    def staged(self) -> bool:
        return self.code[0] not in " ?!"

    @property
    def modified(self) -> bool:
        return self.code[1] not in " ?!"


class Repo:
    """A git working tree driven through the git command-line client."""

    def __init__(
        self, path: str | os.PathLike[str], executor: GitExecutor | None = None
    ) -> None:
        """Open a repository handle.

        No check is made that ``path`` is a repository; use :meth:`open` for
        that.

        Args:
          path: Path to the top of the working tree
          executor: Executor to use; one is created for ``path`` if omitted
        """
        self.path = os.path.abspath(os.fspath(path))
        if executor is None:
            executor = GitExecutor(self.path)
        self.executor = executor

    def __repr__(self) -> str:
        return f"<Repo at {self.path!r}>"

    @classmethod
    def open(
        cls, path: str | os.PathLike[str] = ".", executor: GitExecutor | None = None
    ) -> "Repo":
        """Open the repository whose working tree contains ``path``.

        Raises:
          NotGitRepository: if ``path`` is not inside a git working tree
        """
        if not os.path.isdir(path):
            raise NotGitRepository(f"No git repository was found at {path}")
        toplevel_executor = executor or GitExecutor(path)
        result = toplevel_executor.run(["rev-parse", "--show-toplevel"])
        if not result.ok:
            raise NotGitRepository(f"No git repository was found at {path}")
        toplevel = result.stdout.strip()
        if executor is None or os.path.abspath(executor.repo_path) != toplevel:
            executor = GitExecutor(
                toplevel,
                git_path=toplevel_executor.git_path,
                timeout=toplevel_executor.timeout,
            )
        return cls(toplevel, executor)

    def is_git_repo(self) -> bool:
        return self.executor.run(["rev-parse", "--git-dir"]).ok

    def git_path(self, name: str) -> str:
        """Return the absolute path of a file inside the git directory."""
        result = self.executor.run_checked(["rev-parse", "--git-path", name])
        return os.path.join(self.path, result.stdout.strip())

    def head(self) -> str | None:
        """Return the SHA of HEAD, or None in a repository without commits."""
        result = self.executor.run(["rev-parse", "--verify", "--quiet", "HEAD"])
        if not result.ok:
            return None
        return result.stdout.strip()

    def current_branch(self) -> str | None:
        """Return the checked out branch, or None if HEAD is detached."""
        result = self.executor.run(["symbolic-ref", "--short", "-q", "HEAD"])
        if not result.ok:
            return None
        return result.stdout.strip() or None

    def resolve_commit(self, rev: str) -> str | None:
        """Expand a revision to a full commit SHA.

        Args:
          rev: Revision; callers validate it before passing it in
        Returns: The full SHA, or None if rev does not name a commit
        """
        result = self.executor.run(
            ["rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}"]
        )
        if not result.ok:
            return None
        return result.stdout.strip()

    def status(self, include_untracked: bool = True) -> list[StatusEntry]:
        """Return the working tree status."""
        args = ["status", "--porcelain", "-z"]
        if not include_untracked:
            args.append("--untracked-files=no")
        result = self.executor.run_checked(args)
        entries = []
        fields = iter(result.stdout.split("\0"))
        for field in fields:
            if len(field) < 4:
                continue
            code = field[:2]
            entries.append(StatusEntry(code, field[3:]))
            if code[0] in "RC":
                # Renames and copies carry the source path as an extra field
                next(fields, None)
        return entries

    def has_uncommitted_changes(self, include_untracked: bool = False) -> bool:
        return any(
            include_untracked or not entry.untracked
            for entry in self.status(include_untracked=include_untracked)
        )

    def is_clean(self) -> bool:
        return not self.has_uncommitted_changes()

    def has_staged_changes(self) -> bool:
        return self.executor.run(["diff", "--cached", "--quiet"]).returncode == 1

    def has_working_changes(self) -> bool:
        return self.executor.run(["diff", "--quiet"]).returncode == 1

    def get_commits(
        self, limit: int | None = None, rev: str = "HEAD"
    ) -> list[CommitInfo]:
        """List commits reachable from a revision, newest first.

        Args:
          limit: Maximum number of commits to return
          rev: Revision to start from
        Returns: List of CommitInfo; empty for a repository without commits
        """
        if self.head() is None:
            return []
        args = ["log", f"--format={_LOG_FORMAT}"]
        if limit is not None:
            args.append(f"--max-count={int(limit)}")
        args.append(rev)
        result = self.executor.run_checked(args, timeout=LONG_TIMEOUT)
        commits = []
        for record in result.stdout.split("\x1e"):
            record = record.lstrip("\n")
            if not record:
                continue
            sha, short, author, email, date, message = record.split("\0", 5)
            commits.append(
                CommitInfo(
                    hash=sha,
                    short_hash=short,
                    message=message.rstrip("\n"),
                    author=author,
                    email=email,
                    date=datetime.fromisoformat(date),
                )
            )
        return commits

    def rev_list(
        self,
        rev: str = "HEAD",
        max_count: int | None = None,
        reverse: bool = False,
        timeout: float | None = LONG_TIMEOUT,
    ) -> list[str]:
        """List commit SHAs reachable from a revision.

        Raises:
          ProcessError: if git rev-list fails
        """
        args = ["rev-list"]
        if max_count is not None:
            args.append(f"--max-count={int(max_count)}")
        if reverse:
            args.append("--reverse")
        args.append(rev)
        return self.executor.run_checked(args, timeout=timeout).lines()

    def parents_map(
        self, rev: str = "HEAD", max_count: int | None = None
    ) -> list[tuple[str, list[str]]]:
        """Return ``(commit, parents)`` pairs for the history of rev, oldest first.

        Args:
          rev: Revision to start from
          max_count: Only include the newest ``max_count`` commits
        Raises:
          ProcessError: if git rev-list fails
        """
        args = ["rev-list", "--reverse", "--topo-order", "--parents"]
        if max_count is not None:
            args.append(f"--max-count={int(max_count)}")
        args.append(rev)
        result = self.executor.run_checked(args, timeout=LONG_TIMEOUT)
        pairs = []
        for line in result.lines():
            sha, *parents = line.split()
            pairs.append((sha, parents))
        return pairs

    def branches(self, pattern: str = "*") -> list[str]:
        """List local branch names matching a glob pattern."""
        result = self.executor.run_checked(
            ["for-each-ref", "--format=%(refname:short)", f"refs/heads/{pattern}"]
        )
        return result.lines()

    def tracked_files(self) -> list[str]:
        """List the files tracked in the index."""
        result = self.executor.run_checked(["ls-files", "-z"])
        return [name for name in result.stdout.split("\0") if name]

    def changed_files(self, cached: bool = True) -> list[str]:
        """List files with staged (or, without ``cached``, unstaged) changes."""
        args = ["diff", "--name-only", "-z"]
        if cached:
            args.insert(1, "--cached")
        result = self.executor.run_checked(args)
        return [name for name in result.stdout.split("\0") if name]

    def diff(self, cached: bool = True) -> str:
        args = ["diff", "--cached"] if cached else ["diff"]
        return self.executor.run_checked(args).stdout

    def ensure_excluded(self, patterns: Iterable[str]) -> None:
        """Add patterns to ``.git/info/exclude`` unless already present.

        Keeps gctm's own bookkeeping files out of ``git status`` and out of
        anything staged during a rewrite.
        """
        exclude_path = self.git_path("info/exclude")
        try:
            with open(exclude_path, encoding="utf-8") as f:
                existing = f.read()
        except FileNotFoundError:
            existing = ""
        present = {line.strip() for line in existing.splitlines()}
        missing = [p for p in patterns if p not in present]
        if not missing:
            return
        os.makedirs(os.path.dirname(exclude_path), exist_ok=True)
        with open(exclude_path, "a", encoding="utf-8") as f:
            if existing and not existing.endswith("\n"):
                f.write("\n")
            for pattern in missing:
                f.write(pattern + "\n")
        logger.debug("added %r to %s", missing, exclude_path)
