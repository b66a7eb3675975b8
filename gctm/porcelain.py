# porcelain.py -- Porcelain-like layer on top of gctm
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

"""Simple wrapper that provides porcelain-like functions on top of gctm.

Currently implemented:
 * create_backup
 * delete_backup
 * edit_commit_message
 * history
 * list_backups
 * prune_backups
 * redact_files
 * redate_commits
 * replace_content
 * restore_backup
 * sanitize_history
 * scan_sensitive
 * suggest_commit_message

Functions take either a path or a :class:`gctm.repo.Repo`. Every rewrite
takes a snapshot first unless ``create_backup`` is false; rewrites refuse
to run over uncommitted changes that no snapshot has saved.
"""

__all__ = [
    "commit_stats",
    "create_backup",
    "delete_backup",
    "edit_commit_message",
    "history",
    "list_backups",
    "open_repo",
    "prune_backups",
    "redact_files",
    "redate_commits",
    "replace_content",
    "restore_backup",
    "sanitize_history",
    "scan_sensitive",
    "suggest_commit_message",
]

import logging
import os
import random
import re
from collections.abc import Callable, Sequence
from datetime import date, datetime

import urllib3

from .ai import CommitMessageAssistant, SuggestionResult
from .config import Settings, load_settings
from .dates import analyze_commit_days, analyze_commit_hours, generate_date_range
from .errors import GctmError, ValidationError
from .repo import CommitInfo, Repo
from .rewrite import CommitRef, HistoryRewriter, RewriteResult
from .sanitize import (
    REDACT_TOKENS,
    Literal,
    Regex,
    ReplacementRule,
    detect,
    redact_file,
)
from .snapshot import PruneResult, RestoreResult, Snapshot, SnapshotManager, SnapshotResult
from .validate import check_hash

logger = logging.getLogger(__name__)

DEFAULT_REDACTION = "***REDACTED***"

RepoLike = str | os.PathLike[str] | Repo


def open_repo(path_or_repo: RepoLike) -> tuple[Repo, Settings]:
    """Open a repository and load its settings.

    Raises:
      NotGitRepository: if the path is not in a git working tree
    """
    if isinstance(path_or_repo, Repo):
        repo = path_or_repo
    else:
        repo = Repo.open(path_or_repo)
    settings = load_settings(repo.path)
    repo.executor.timeout = settings.command_timeout
    return repo, settings


def _prepare(
    repo: Repo, create_backup: bool, description: str
) -> tuple[Snapshot | None, str | None]:
    """Take the pre-rewrite snapshot.

    Returns: Tuple with the snapshot, if one was taken, and an error message
    """
    if create_backup:
        try:
            snapshot = SnapshotManager(repo).create(
                description=description, include_uncommitted=True
            )
        except (GctmError, OSError) as e:
            logger.error("Could not create backup: %s", e)
            return None, f"Could not create backup: {e}"
        return snapshot, None
    if repo.has_uncommitted_changes():
        return None, (
            "Uncommitted changes would be lost; commit or stash them, "
            "or run with a backup"
        )
    return None, None


def _rewrite(
    repo: RepoLike,
    create_backup: bool | None,
    description: str,
    run: Callable[[HistoryRewriter], RewriteResult],
) -> RewriteResult:
    r, settings = open_repo(repo)
    if create_backup is None:
        create_backup = settings.create_backup
    snapshot, error = _prepare(r, create_backup, description)
    if error is not None:
        return RewriteResult(False, error=error)
    result = run(HistoryRewriter(r, settings.large_history_threshold))
    if snapshot is not None:
        result.snapshot_id = snapshot.id
        if snapshot.has_stash:
            result.warnings.append(
                f"Uncommitted changes were stashed with backup {snapshot.id}"
            )
        if not result.success:
            result.warnings.append(
                f"Repository state before the run is saved as backup {snapshot.id}"
            )
    return result


def redate_commits(
    repo: RepoLike,
    start: str | date | datetime,
    end: str | date | datetime,
    preserve_order: bool = True,
    randomize: bool = False,
    create_backup: bool | None = None,
    commit_filter: Callable[[CommitInfo], bool] | None = None,
    limit: int | None = None,
    rng: random.Random | None = None,
) -> RewriteResult:
    """Spread the dates of commits over an interval.

    The oldest commit receives the earliest date, so an ordered plan keeps
    the dates of the rewritten history non-decreasing.

    Args:
      repo: Path to repository or repository object
      start: First date of the interval
      end: Last date of the interval
      preserve_order: Spread dates evenly in history order
      randomize: Move each date by up to half an hour
      create_backup: Take a snapshot first; defaults to the configured value
      commit_filter: Only redate commits for which this returns true
      limit: Only consider the newest ``limit`` commits
      rng: Random number generator, for reproducible plans
    """
    r, settings = open_repo(repo)
    if limit is None:
        limit = settings.commit_limit
    commits = r.get_commits(limit=limit)
    if commit_filter is not None:
        commits = [c for c in commits if commit_filter(c)]
    if not commits:
        return RewriteResult(True, warnings=["No commits to redate"])
    try:
        dates = generate_date_range(
            start,
            end,
            len(commits),
            preserve_order=preserve_order,
            randomize=randomize,
            rng=rng,
        )
    except (TypeError, ValueError) as e:
        return RewriteResult(False, total=len(commits), error=str(e))

    # git log lists newest first; pair the oldest commit with the first date
    refs = [
        CommitRef(c.hash, new_date=d) for c, d in zip(reversed(commits), dates)
    ]
    refs.reverse()
    return _rewrite(
        r,
        create_backup,
        f"Before redating {len(refs)} commits",
        lambda rewriter: rewriter.change_dates(refs),
    )


def edit_commit_message(
    repo: RepoLike,
    commit: str,
    message: str,
    create_backup: bool | None = None,
) -> RewriteResult:
    """Replace the message of one commit.

    The latest commit is amended in place; an older commit is rewritten
    together with its descendants.
    """
    try:
        check_hash(commit)
    except ValidationError as e:
        return RewriteResult(False, total=1, error=str(e))
    if not message.strip():
        return RewriteResult(False, total=1, error="Commit message cannot be empty")

    r, _ = open_repo(repo)
    sha = r.resolve_commit(commit)
    if sha is None:
        return RewriteResult(False, total=1, error=f"Unknown commit: {commit}")

    if sha != r.head():
        return _rewrite(
            r,
            create_backup,
            f"Before editing message of {commit}",
            lambda rewriter: rewriter.change_dates(
                [CommitRef(sha, new_message=message)]
            ),
        )

    def amend_head(rewriter: HistoryRewriter) -> RewriteResult:
        result = r.executor.run(
            ["commit", "--amend", "--allow-empty", "--no-verify", "-m", message]
        )
        if not result.ok:
            return RewriteResult(False, 0, 1, error=result.stderr.strip())
        logger.info("Commit message updated")
        return RewriteResult(True, 1, 1)

    return _rewrite(r, create_backup, f"Before editing message of {commit}", amend_head)


def replace_content(
    repo: RepoLike,
    rules: Sequence[ReplacementRule],
    create_backup: bool | None = None,
    limit: int | None = None,
) -> RewriteResult:
    """Apply replacement rules to the files of every commit."""
    r, settings = open_repo(repo)
    if limit is None:
        limit = settings.commit_limit
    return _rewrite(
        r,
        create_backup,
        "Before content replacement",
        lambda rewriter: rewriter.replace_content(rules, limit=limit),
    )


def sanitize_history(
    repo: RepoLike,
    patterns: Sequence[str],
    replacement: str = DEFAULT_REDACTION,
    regex: bool = False,
    ignore_case: bool = False,
    create_backup: bool | None = None,
    limit: int | None = None,
) -> RewriteResult:
    """Replace sensitive strings throughout history.

    Args:
      repo: Path to repository or repository object
      patterns: Strings, or regular expressions with ``regex``, to remove
      replacement: Text to put in their place
    """
    try:
        rules = [
            ReplacementRule(
                Regex(p, re.IGNORECASE if ignore_case else 0)
                if regex
                else Literal(p),
                replacement,
            )
            for p in patterns
        ]
    except ValidationError as e:
        return RewriteResult(False, error=str(e))
    return replace_content(repo, rules, create_backup=create_backup, limit=limit)


def scan_sensitive(
    repo: RepoLike, limit: int | None = None
) -> dict[str, dict[str, set[str]]]:
    """Look for sensitive data in the tracked files of the working tree.

    Args:
      repo: Path to repository or repository object
      limit: Stop after reading this many files

    Returns: Dictionary mapping file name to the detections in that file
    """
    r, _ = open_repo(repo)
    findings = {}
    for name in r.tracked_files()[:limit]:
        path = os.path.join(r.path, name)
        if os.path.islink(path) or not os.path.isfile(path):
            continue
        try:
            with open(path, encoding="utf-8") as f:
                content = f.read()
        except (UnicodeDecodeError, OSError):
            continue
        found = detect(content)
        if found:
            findings[name] = found
    return findings


def redact_files(
    repo: RepoLike,
    categories: Sequence[str] | None = None,
    env_keys: Sequence[str] = (),
) -> dict[str, list[str]]:
    """Redact sensitive data in the tracked files of the working tree.

    Only the working tree is changed; history is left alone.

    Args:
      repo: Path to repository or repository object
      categories: Names of the categories to redact; defaults to e-mail
        addresses, phone numbers and API keys
      env_keys: Extra key names to hide in .env files

    Returns: Dictionary mapping file name to what was redacted in it
    """
    r, _ = open_repo(repo)
    enabled = None
    if categories is not None:
        unknown = sorted(set(categories) - set(REDACT_TOKENS))
        if unknown:
            raise ValidationError("category", ", ".join(unknown))
        enabled = {name: name in categories for name in REDACT_TOKENS}
    changed = {}
    for name in r.tracked_files():
        path = os.path.join(r.path, name)
        if os.path.islink(path) or not os.path.isfile(path):
            continue
        found = redact_file(path, enabled, env_keys)
        if found:
            changed[name] = found
    return changed


def history(repo: RepoLike, limit: int | None = 20) -> list[CommitInfo]:
    """List commits, newest first."""
    r, _ = open_repo(repo)
    return r.get_commits(limit=limit)


def commit_stats(repo: RepoLike, limit: int | None = None) -> dict[str, dict]:
    """Count commits per day and per hour of the day."""
    r, _ = open_repo(repo)
    commits = r.get_commits(limit=limit)
    return {
        "days": analyze_commit_days(commits),
        "hours": analyze_commit_hours(commits),
    }


def create_backup(
    repo: RepoLike, description: str = "Manual backup", include_uncommitted: bool = True
) -> Snapshot:
    """Take a snapshot of the repository.

    Raises:
      GctmError: if the snapshot could not be taken
    """
    r, _ = open_repo(repo)
    return SnapshotManager(r).create(
        description=description, include_uncommitted=include_uncommitted
    )


def list_backups(repo: RepoLike) -> list[Snapshot]:
    r, _ = open_repo(repo)
    return SnapshotManager(r).list()


def restore_backup(repo: RepoLike, backup_id: str, force: bool = False) -> RestoreResult:
    r, _ = open_repo(repo)
    return SnapshotManager(r).restore(backup_id, force=force)


def delete_backup(repo: RepoLike, backup_id: str) -> SnapshotResult:
    r, _ = open_repo(repo)
    return SnapshotManager(r).delete(backup_id)


def prune_backups(
    repo: RepoLike, keep_count: int | None = None, max_age_days: float | None = None
) -> PruneResult:
    """Delete snapshots outside the retention policy.

    Defaults come from the ``keepCount`` and ``maxAgeDays`` settings.
    """
    r, settings = open_repo(repo)
    return SnapshotManager(r).prune(
        keep_count=settings.keep_count if keep_count is None else keep_count,
        max_age_days=settings.max_age_days if max_age_days is None else max_age_days,
    )


def suggest_commit_message(
    repo: RepoLike,
    current_message: str = "",
    context: str = "",
    language: str | None = None,
    style: str | None = None,
    pool_manager: urllib3.PoolManager | None = None,
) -> SuggestionResult:
    """Ask the configured language model for commit message suggestions.

    Staged changes are described to the model; if nothing is staged the
    unstaged changes are used instead.
    """
    r, settings = open_repo(repo)
    files = r.changed_files(cached=True)
    cached = True
    if not files:
        files = r.changed_files(cached=False)
        cached = False
    if not files and not current_message:
        return SuggestionResult(False, error="No changes to describe")
    diff = r.diff(cached=cached)
    assistant = CommitMessageAssistant(settings.ai, pool_manager=pool_manager)
    return assistant.generate(
        changed_files=files,
        diff=diff,
        current_message=current_message,
        context=context,
        language=language,
        style=style,
    )
