# rewrite.py -- Transactional rewriting of commit history
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

"""Transactional rewriting of commit history.

Both rewrite paths follow the same outer protocol:

1. A backup branch ``gctm-backup-<unix-ms>`` is created at HEAD.
2. History is walked oldest first. A commit whose parents were rewritten is
   replayed onto the new parents with ``git commit-tree``, keeping its
   tree, author, committer and message. A commit that is being changed is
   checked out with ``git reset --hard`` and amended.
3. HEAD is moved to the rewritten tip and the backup branch is deleted.

If an error escapes the walk, HEAD is reset to the backup branch, which is
kept, and the run is reported as failed. Problems with a single commit are
logged and that commit is skipped.
"""

__all__ = [
    "BACKUP_BRANCH_PREFIX",
    "CommitRef",
    "HistoryRewriter",
    "RewriteResult",
]

import logging
import os
import re
import shutil
import time
import warnings
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime

from .dates import to_git_date
from .errors import GctmError, ProcessError, ResourceExhaustionWarning, ValidationError
from .repo import Repo
from .sanitize import Literal, Regex, ReplacementRule, apply_to_file
from .snapshot import EXCLUDE_PATTERNS
from .validate import (
    check_branch_name,
    is_valid_hash,
    is_valid_path,
    validate_replacements,
)

logger = logging.getLogger(__name__)

BACKUP_BRANCH_PREFIX = "gctm-backup-"
TEMP_DIR_PREFIX = ".gctm-temp-"
DEFAULT_LARGE_HISTORY_THRESHOLD = 10000

_IDENT_RE = re.compile(r"(?P<name>.*) <(?P<email>.*)> (?P<date>\d+ [+-]\d{4})")

# Options common to every amend; hooks would run once per rewritten commit.
_AMEND = ["commit", "--amend", "--allow-empty", "--no-verify"]


@dataclass(frozen=True)
class CommitRef:
    """A commit to rewrite, with its new date and/or message."""

    hash: str
    new_date: datetime | date | str | None = None
    new_message: str | None = None


@dataclass
class RewriteResult:
    """Outcome of a history rewrite."""

    success: bool
    processed: int = 0
    total: int = 0
    error: str | None = None
    warnings: list[str] = field(default_factory=list)
    backup_branch: str | None = None
    snapshot_id: str | None = None

    def warn(self, message: str) -> None:
        logger.warning("%s", message)
        self.warnings.append(message)


@dataclass(frozen=True)
class _CommitData:
    tree: str
    author_name: str
    author_email: str
    author_date: str
    committer_name: str
    committer_email: str
    committer_date: str
    message: str

    def env(self) -> dict[str, str]:
        return {
            "GIT_AUTHOR_NAME": self.author_name,
            "GIT_AUTHOR_EMAIL": self.author_email,
            "GIT_AUTHOR_DATE": self.author_date,
            "GIT_COMMITTER_NAME": self.committer_name,
            "GIT_COMMITTER_EMAIL": self.committer_email,
            "GIT_COMMITTER_DATE": self.committer_date,
        }


def _parse_ident(value: str) -> tuple[str, str, str]:
    m = _IDENT_RE.fullmatch(value)
    if m is None:
        raise ValueError(f"malformed identity line {value!r}")
    return m.group("name"), m.group("email"), "@" + m.group("date")


# Regex tokens that can match a line break
_NEWLINE_TOKEN_RE = re.compile(r"\\[nsDWZ]|\\x0[aA]|\\0?12|\\u000[aA]|\[\^")


def _line_bound(pattern: Literal | Regex) -> bool:
    """Check whether every match of a pattern lies within one line.

    git grep matches line by line, so it can only narrow the candidate
    files for such patterns.
    """
    if isinstance(pattern, Literal):
        return "\n" not in pattern.text
    if pattern.flags & ~(re.IGNORECASE | re.UNICODE):
        return False
    return "\n" not in pattern.pattern and not _NEWLINE_TOKEN_RE.search(
        pattern.pattern
    )


class HistoryRewriter:
    """Rewrites the history of the branch checked out in a repository."""

    def __init__(
        self,
        repo: Repo,
        large_history_threshold: int = DEFAULT_LARGE_HISTORY_THRESHOLD,
    ) -> None:
        self.repo = repo
        self.executor = repo.executor
        self.large_history_threshold = large_history_threshold

    def create_backup_branch(self) -> str:
        """Create a branch at HEAD to roll back to.

        Returns: Name of the new branch
        Raises:
          ProcessError: if the branch could not be created
        """
        name = check_branch_name(f"{BACKUP_BRANCH_PREFIX}{int(time.time() * 1000)}")
        self.executor.run_checked(["branch", name])
        logger.info("Created backup branch: %s", name)
        return name

    def restore_from_branch(self, name: str) -> bool:
        """Hard-reset the current branch to a backup branch.

        Returns: Whether the reset succeeded
        """
        check_branch_name(name)
        result = self.executor.run(["reset", "--hard", name])
        if not result.ok:
            logger.error("Failed to restore from backup: %s", result.stderr.strip())
            return False
        logger.info("Restored from backup branch: %s", name)
        return True

    def cleanup_backup_branches(self, names: Iterable[str]) -> list[str]:
        """Delete backup branches.

        Returns: The names of the branches that were deleted
        """
        deleted = []
        for name in names:
            try:
                check_branch_name(name)
            except ValidationError as e:
                logger.warning("%s", e)
                continue
            if self.executor.run(["branch", "-D", name]).ok:
                deleted.append(name)
            else:
                logger.debug("could not delete branch %s", name)
        return deleted

    def list_backup_branches(self) -> list[str]:
        return self.repo.branches(BACKUP_BRANCH_PREFIX + "*")

    def _read_commit(self, sha: str) -> _CommitData:
        text = self.executor.run_checked(["cat-file", "commit", sha]).stdout
        header, _, message = text.partition("\n\n")
        fields: dict[str, str] = {}
        for line in header.split("\n"):
            if line.startswith(" "):
                # continuation of a multi-line header such as gpgsig
                continue
            key, _, value = line.partition(" ")
            fields.setdefault(key, value)
        try:
            author = _parse_ident(fields["author"])
            committer = _parse_ident(fields["committer"])
            tree = fields["tree"]
        except (KeyError, ValueError) as e:
            raise GctmError(f"Cannot parse commit {sha}: {e}") from e
        return _CommitData(tree, *author, *committer, message)

    def _replay(self, sha: str, parents: Sequence[str]) -> str:
        """Recreate a commit on top of new parents.

        Raises:
          ProcessError: if git commit-tree fails
        """
        data = self._read_commit(sha)
        args = ["commit-tree", data.tree]
        for parent in parents:
            args.extend(["-p", parent])
        result = self.executor.run_checked(args, env=data.env(), input=data.message)
        new_sha = result.stdout.strip()
        logger.debug("replayed %s as %s", sha, new_sha)
        return new_sha

    def _history(self, max_count: int | None = None) -> list[tuple[str, list[str]]]:
        return self.repo.parents_map("HEAD", max_count=max_count)

    def _check_size(self, count: int, result: RewriteResult) -> None:
        if count > self.large_history_threshold:
            message = (
                f"Repository has {count} commits to process, more than "
                f"{self.large_history_threshold}; this may take a long time"
            )
            result.warn(message)
            warnings.warn(message, ResourceExhaustionWarning, stacklevel=3)

    def _move_head(
        self, history: list[tuple[str, list[str]]], mapping: dict[str, str]
    ) -> None:
        if not history:
            return
        tip = history[-1][0]
        self.executor.run_checked(["reset", "--hard", mapping.get(tip, tip)])

    def _run(
        self, result: RewriteResult, body: Callable[[RewriteResult], None]
    ) -> RewriteResult:
        try:
            backup = self.create_backup_branch()
        except ProcessError as e:
            result.success = False
            result.error = f"Failed to create backup branch: {e}"
            logger.error("%s", result.error)
            return result
        result.backup_branch = backup
        try:
            body(result)
        except (GctmError, OSError) as e:
            logger.error("Failed to rewrite history: %s", e)
            self.restore_from_branch(backup)
            result.success = False
            result.error = str(e)
            return result
        self.cleanup_backup_branches([backup])
        result.backup_branch = None
        result.success = True
        return result

    def change_dates(self, commits: Sequence[CommitRef]) -> RewriteResult:
        """Change the dates and/or messages of a set of commits.

        Commits are processed in history order, oldest first, whatever the
        order of ``commits``. Author and committer dates are both set to the
        new date. A commit that cannot be reset to or amended is skipped.

        Args:
          commits: Commits to change, usually newest first as listed by git log
        Returns: A RewriteResult; ``processed`` counts the commits changed
        """
        commits = list(commits)
        result = RewriteResult(False, total=len(commits))
        logger.info("Starting history rewrite for %d commits", len(commits))

        targets: dict[str, tuple[str | None, str | None]] = {}
        for ref in commits:
            if not is_valid_hash(ref.hash):
                result.warn(f"Skipping invalid commit hash: {ref.hash!r}")
                continue
            new_date = None
            if ref.new_date is not None:
                try:
                    new_date = to_git_date(ref.new_date)
                except (TypeError, ValueError) as e:
                    result.warn(f"Skipping commit {ref.hash}: {e}")
                    continue
            sha = self.repo.resolve_commit(ref.hash)
            if sha is None:
                result.warn(f"Skipping unknown commit {ref.hash}")
                continue
            targets[sha] = (new_date, ref.new_message)

        if not targets:
            result.success = True
            return result

        def body(result: RewriteResult) -> None:
            history = self._history()
            self._check_size(len(history), result)
            mapping: dict[str, str] = {}
            seen = set()
            for sha, parents in history:
                new_parents = [mapping.get(p, p) for p in parents]
                base = sha
                if new_parents != parents:
                    base = self._replay(sha, new_parents)
                    mapping[sha] = base
                if sha not in targets:
                    continue
                seen.add(sha)
                new_date, new_message = targets[sha]
                new_sha = self._amend(sha, base, new_date, new_message, result)
                if new_sha is not None:
                    mapping[sha] = new_sha
                    result.processed += 1
            for sha in targets.keys() - seen:
                result.warn(f"Skipping commit {sha}: not in the history of HEAD")
            self._move_head(history, mapping)

        self._run(result, body)
        if result.success:
            logger.info("Successfully changed %d commits", result.processed)
        return result

    def _committer_env(
        self, sha: str, base: str, result: RewriteResult
    ) -> dict[str, str] | None:
        try:
            return {"GIT_COMMITTER_DATE": self._read_commit(base).committer_date}
        except GctmError as e:
            result.warn(f"Cannot read commit {sha}: {e}")
            return None

    def _amend(
        self,
        sha: str,
        base: str,
        new_date: str | None,
        new_message: str | None,
        result: RewriteResult,
    ) -> str | None:
        reset = self.executor.run(["reset", "--hard", base])
        if not reset.ok:
            result.warn(f"Cannot reset to commit {sha}: {reset.stderr.strip()}")
            return None
        args = list(_AMEND)
        if new_date is not None:
            args.append(f"--date={new_date}")
            env = {"GIT_AUTHOR_DATE": new_date, "GIT_COMMITTER_DATE": new_date}
        else:
            env = self._committer_env(sha, base, result)
            if env is None:
                return None
        if new_message is not None:
            args.extend(["-m", new_message])
        else:
            args.append("--no-edit")
        amend = self.executor.run(args, env=env)
        if not amend.ok:
            result.warn(f"Cannot amend commit {sha}: {amend.stderr.strip()}")
            return None
        return self.repo.head()

    def _grep(self, rule: ReplacementRule) -> set[str] | None:
        """List tracked files that may match a rule.

        Returns: File names, or None if git grep cannot evaluate the pattern
        """
        pattern = rule.pattern
        if not _line_bound(pattern):
            return None
        args = ["grep", "-l", "-z", "-I"]
        if isinstance(pattern, Literal):
            args.extend(["-F", "-e", pattern.text])
        elif isinstance(pattern, Regex):
            if pattern.flags & re.IGNORECASE:
                args.append("-i")
            args.extend(["-P", "-e", pattern.pattern])
        else:
            raise TypeError(f"unknown pattern type {type(pattern).__name__}")
        grep = self.executor.run(args)
        if grep.returncode == 1:
            return set()
        if not grep.ok:
            logger.debug("git grep failed for %s: %s", rule.describe(), grep.stderr.strip())
            return None
        return {name for name in grep.stdout.split("\0") if name}

    def _candidate_files(self, rules: Sequence[ReplacementRule]) -> list[str]:
        files: set[str] = set()
        for rule in rules:
            found = self._grep(rule)
            if found is None:
                # Fall back to letting the sanitizer look at every file
                return self.repo.tracked_files()
            files |= found
        return sorted(files)

    def _sanitize_commit(
        self,
        sha: str,
        base: str,
        rules: Sequence[ReplacementRule],
        temp_dir: str,
        result: RewriteResult,
    ) -> str | None:
        reset = self.executor.run(["reset", "--hard", base])
        if not reset.ok:
            result.warn(f"Cannot reset to commit {sha}: {reset.stderr.strip()}")
            return None
        changed = []
        for name in self._candidate_files(rules):
            if not is_valid_path(name):
                result.warn(f"Skipping file with unsupported name: {name!r}")
                continue
            full_path = os.path.join(self.repo.path, name)
            if os.path.islink(full_path) or not os.path.isfile(full_path):
                continue
            outcome = apply_to_file(full_path, rules, lock_dir=temp_dir)
            if outcome is not None and outcome.changed:
                changed.append(name)
        if not changed:
            return None
        logger.debug("commit %s: rewrote %s", sha, ", ".join(changed))
        add = self.executor.run(["add", "--", *changed])
        if not add.ok:
            result.warn(f"Cannot stage changes for commit {sha}: {add.stderr.strip()}")
            return None
        env = self._committer_env(sha, base, result)
        if env is None:
            return None
        amend = self.executor.run([*_AMEND, "--no-edit"], env=env)
        if not amend.ok:
            result.warn(f"Cannot amend commit {sha}: {amend.stderr.strip()}")
            return None
        return self.repo.head()

    def replace_content(
        self, rules: Sequence[ReplacementRule], limit: int | None = None
    ) -> RewriteResult:
        """Apply replacement rules to the files of every commit.

        Args:
          rules: Replacement rules, applied in order
          limit: Only rewrite the newest ``limit`` commits
        Returns: A RewriteResult; ``processed`` counts the commits whose
          content changed
        """
        rules = list(rules)
        errors = validate_replacements(rules)
        if errors:
            return RewriteResult(False, error="; ".join(errors))
        logger.info("Starting content replacement in history...")

        temp_dir = os.path.join(
            self.repo.path, f"{TEMP_DIR_PREFIX}{int(time.time() * 1000)}"
        )
        result = RewriteResult(False)

        def body(result: RewriteResult) -> None:
            self.repo.ensure_excluded(EXCLUDE_PATTERNS)
            os.makedirs(temp_dir, exist_ok=True)
            try:
                history = self._history(max_count=limit)
            except ProcessError as e:
                raise GctmError(f"Cannot get commit list: {e}") from e
            result.total = len(history)
            self._check_size(len(history), result)
            mapping: dict[str, str] = {}
            for sha, parents in history:
                new_parents = [mapping.get(p, p) for p in parents]
                base = sha
                if new_parents != parents:
                    base = self._replay(sha, new_parents)
                    mapping[sha] = base
                new_sha = self._sanitize_commit(sha, base, rules, temp_dir, result)
                if new_sha is not None:
                    mapping[sha] = new_sha
                    result.processed += 1
            self._move_head(history, mapping)

        try:
            self._run(result, body)
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)
        if result.success:
            logger.info(
                "Successfully processed %d commits for content replacement",
                result.processed,
            )
        return result
