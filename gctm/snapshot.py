# snapshot.py -- Recoverable snapshots of repository state
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

"""Recoverable snapshots of repository state.

A snapshot records the checked out branch and commit of a working tree,
and optionally its uncommitted changes, so that the repository can be put
back the way it was after a history rewrite. Snapshots live in
``<repo>/.gctm-backups``:

  <id>.json                 metadata, written in one step
  <id>/commit-log.json      the commit log at the time of the snapshot
  <id>/staged.patch         ``git diff --cached``, if anything was staged
  <id>/working.patch        ``git diff``, if the working tree was modified

Uncommitted changes are also pushed onto the stash with the message
``GCTM Backup: <id>``. On restore the stash entry is found by the commit
it points at, then by its message, and if neither is present the patch
files are applied instead.
"""

__all__ = [
    "BACKUP_DIR_NAME",
    "PruneResult",
    "RestoreResult",
    "Snapshot",
    "SnapshotManager",
    "SnapshotResult",
    "SnapshotState",
    "generate_backup_id",
]

import enum
import json
import logging
import os
import secrets
import shutil
import string
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from .errors import GctmError, StateConflict, ValidationError
from .file import ensure_dir_exists, write_atomic
from .repo import Repo
from .validate import check_backup_id, check_branch_name, check_hash, validate_retention

logger = logging.getLogger(__name__)

BACKUP_DIR_NAME = ".gctm-backups"
STASH_MESSAGE_PREFIX = "GCTM Backup: "
EXCLUDE_PATTERNS = (f"/{BACKUP_DIR_NAME}/", "/.gctm-temp-*/")

DEFAULT_KEEP_COUNT = 10
DEFAULT_MAX_AGE_DAYS = 30

_ID_ALPHABET = string.digits + string.ascii_lowercase


class SnapshotState(enum.Enum):
    """Lifecycle of a snapshot; metadata records the last state reached."""

    NONE = "none"
    CREATING = "creating"
    CREATED = "created"
    RESTORING = "restoring"
    RESTORED = "restored"
    DELETED = "deleted"


def generate_backup_id(now: datetime | None = None) -> str:
    """Generate a new snapshot identifier.

    The identifier is ``backup-`` followed by the UTC time in ISO 8601 form,
    with ``:`` and ``.`` replaced by ``-``, and six random base 36 characters.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    stamp = now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    stamp = stamp.replace(":", "-").replace(".", "-")
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"backup-{stamp}-{suffix}"


@dataclass
class Snapshot:
    """Metadata describing one snapshot."""

    id: str
    created_at: datetime
    description: str
    branch: str | None
    commit_hash: str
    repo_path: str
    stash_ref: str | None = None
    stash_commit: str | None = None
    has_stash: bool = False
    has_staged_changes: bool = False
    has_working_changes: bool = False
    changed_files: list[str] = field(default_factory=list)
    state: SnapshotState = SnapshotState.NONE

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        data["state"] = self.state.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Snapshot":
        """Build a Snapshot from its JSON form.

        Raises:
          KeyError: if a required field is missing
          ValueError: if a field has an invalid value
        """
        created_at = datetime.fromisoformat(data["created_at"])
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return cls(
            id=check_backup_id(data["id"]),
            created_at=created_at,
            description=data.get("description", ""),
            branch=data.get("branch"),
            commit_hash=data["commit_hash"],
            repo_path=data.get("repo_path", ""),
            stash_ref=data.get("stash_ref"),
            stash_commit=data.get("stash_commit"),
            has_stash=bool(data.get("has_stash", False)),
            has_staged_changes=bool(data.get("has_staged_changes", False)),
            has_working_changes=bool(data.get("has_working_changes", False)),
            changed_files=list(data.get("changed_files", [])),
            state=SnapshotState(data.get("state", SnapshotState.CREATED.value)),
        )


@dataclass
class SnapshotResult:
    """Outcome of a snapshot operation that may fail."""

    success: bool
    backup_id: str | None = None
    error: str | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class RestoreResult(SnapshotResult):
    restored_to: str | None = None
    branch: str | None = None


@dataclass
class PruneResult:
    success: bool
    deleted: list[str] = field(default_factory=list)
    remaining: int = 0
    error: str | None = None


def _directory_size(path: str) -> int:
    total = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for name in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, name)).st_size
            except OSError:
                pass
    return total


def _stash_conflict_message(stash_ref: str) -> str:
    return (
        "Stash restoration encountered merge conflicts.\n"
        "Please resolve conflicts manually:\n"
        "  1. Fix conflicts in affected files\n"
        "  2. Run: git add <resolved-files>\n"
        f"  3. Run: git stash drop {stash_ref}\n"
        f"Stash ref for manual recovery: {stash_ref}"
    )


class SnapshotManager:
    """Creates, lists, restores and prunes snapshots of one repository.

    Operations are not reentrant; callers serialise access per repository.
    """

    def __init__(self, repo: Repo) -> None:
        self.repo = repo
        self.executor = repo.executor
        self.backup_dir = os.path.join(repo.path, BACKUP_DIR_NAME)

    def _paths(self, backup_id: str) -> tuple[str, str]:
        check_backup_id(backup_id)
        return (
            os.path.join(self.backup_dir, backup_id),
            os.path.join(self.backup_dir, backup_id + ".json"),
        )

    def _write_metadata(self, snapshot: Snapshot) -> None:
        _, metadata_path = self._paths(snapshot.id)
        write_atomic(metadata_path, json.dumps(snapshot.to_dict(), indent=2) + "\n")

    def _read_metadata(self, backup_id: str) -> Snapshot:
        _, metadata_path = self._paths(backup_id)
        with open(metadata_path, encoding="utf-8") as f:
            return Snapshot.from_dict(json.load(f))

    def _write_commit_log(self, snapshot_path: str) -> None:
        commits = [
            {
                "hash": c.hash,
                "message": c.message,
                "author": c.author,
                "email": c.email,
                "date": c.date.isoformat(),
            }
            for c in self.repo.get_commits()
        ]
        write_atomic(
            os.path.join(snapshot_path, "commit-log.json"),
            json.dumps(commits, indent=2) + "\n",
        )

    def _push_stash(self, snapshot: Snapshot) -> None:
        message = STASH_MESSAGE_PREFIX + snapshot.id
        result = self.executor.run(["stash", "push", "-m", message])
        if not result.ok:
            logger.warning("Could not create stash: %s", result.stderr.strip())
            return
        sha = self.repo.resolve_commit("refs/stash")
        if sha is None:
            logger.warning("Stash was pushed but refs/stash could not be read")
            return
        # The entry just pushed is always at the top of the stash list.
        snapshot.stash_ref = "stash@{0}"
        snapshot.stash_commit = sha
        snapshot.has_stash = True

    def create(
        self,
        description: str = "Auto backup",
        include_uncommitted: bool = True,
        backup_id: str | None = None,
    ) -> Snapshot:
        """Take a snapshot of the repository.

        With ``include_uncommitted``, changes to tracked files are saved as
        patch files and pushed onto the stash, leaving a clean working tree.

        Args:
          description: Free-form description stored with the snapshot
          include_uncommitted: Whether to save uncommitted changes too
          backup_id: Identifier to use; generated if omitted
        Returns: The new Snapshot, in state CREATED
        Raises:
          ValidationError: if backup_id is malformed
          StateConflict: if the repository has no commits
          ProcessError: if git fails while recording the snapshot
        """
        if backup_id is None:
            backup_id = generate_backup_id()
        snapshot_path, _ = self._paths(backup_id)

        head = self.repo.head()
        if head is None:
            raise StateConflict("Cannot snapshot a repository without commits")

        logger.info("Creating backup: %s", backup_id)
        ensure_dir_exists(snapshot_path)
        self.repo.ensure_excluded(EXCLUDE_PATTERNS)

        snapshot = Snapshot(
            id=backup_id,
            created_at=datetime.now(timezone.utc),
            description=description,
            branch=self.repo.current_branch(),
            commit_hash=head,
            repo_path=self.repo.path,
            state=SnapshotState.CREATING,
        )

        changes = self.repo.status(include_untracked=False)
        snapshot.changed_files = [entry.path for entry in changes]
        if include_uncommitted and changes:
            logger.info("Backing up uncommitted changes...")
            if any(entry.staged for entry in changes):
                patch = self.executor.run_checked(["diff", "--cached", "--binary"])
                write_atomic(os.path.join(snapshot_path, "staged.patch"), patch.stdout)
                snapshot.has_staged_changes = True
            if any(entry.modified for entry in changes):
                patch = self.executor.run_checked(["diff", "--binary"])
                write_atomic(
                    os.path.join(snapshot_path, "working.patch"), patch.stdout
                )
                snapshot.has_working_changes = True
            self._push_stash(snapshot)

        self._write_commit_log(snapshot_path)
        snapshot.state = SnapshotState.CREATED
        self._write_metadata(snapshot)
        logger.info("Backup completed: %s", backup_id)
        return snapshot

    def get(self, backup_id: str) -> tuple[Snapshot, int]:
        """Load one snapshot and the size of its files on disk.

        Raises:
          ValidationError: if backup_id is malformed
          KeyError: if there is no such snapshot
        """
        snapshot_path, metadata_path = self._paths(backup_id)
        if not os.path.exists(metadata_path):
            raise KeyError(backup_id)
        return self._read_metadata(backup_id), _directory_size(snapshot_path)

    def _find_stash(self, snapshot: Snapshot) -> str | None:
        result = self.executor.run(["stash", "list", "--format=%gd%x00%H%x00%gs"])
        if not result.ok:
            return None
        entries = [line.split("\0", 2) for line in result.lines()]
        entries = [e for e in entries if len(e) == 3]
        if snapshot.stash_commit:
            for ref, sha, _subject in entries:
                if sha == snapshot.stash_commit:
                    logger.debug("Found stash by exact reference: %s", ref)
                    return ref
        elif snapshot.stash_ref:
            for ref, _sha, subject in entries:
                if ref == snapshot.stash_ref and snapshot.id in subject:
                    return ref
        message = STASH_MESSAGE_PREFIX + snapshot.id
        for ref, _sha, subject in entries:
            if subject.endswith(message):
                logger.debug("Found stash by message search: %s", ref)
                return ref
        return None

    def _apply_patches(self, snapshot_path: str) -> list[str]:
        warnings = []
        for name, args in (
            ("staged.patch", ["apply", "--cached"]),
            ("working.patch", ["apply"]),
        ):
            patch_path = os.path.join(snapshot_path, name)
            if not os.path.exists(patch_path) or os.path.getsize(patch_path) == 0:
                continue
            result = self.executor.run([*args, patch_path])
            if result.ok:
                logger.info("Restored changes from %s", name)
            else:
                message = f"Could not apply {name}: {result.stderr.strip()}"
                logger.warning("%s", message)
                warnings.append(message)
        return warnings

    def _restore_uncommitted(self, snapshot: Snapshot, snapshot_path: str) -> list[str]:
        if not snapshot.has_stash:
            return self._apply_patches(snapshot_path)

        stash_ref = self._find_stash(snapshot)
        if stash_ref is None:
            message = f"Could not find stash for backup: {snapshot.id}"
            logger.warning("%s", message)
            return [message, *self._apply_patches(snapshot_path)]

        result = self.executor.run(["stash", "pop", "--index", stash_ref])
        if result.ok:
            logger.info("Uncommitted changes restored from stash")
            return []
        output = result.stdout + result.stderr
        if "conflict" in output.lower():
            logger.error("Stash restoration failed due to conflicts")
            message = _stash_conflict_message(stash_ref)
        else:
            message = f"Could not restore stash: {result.stderr.strip()}"
            logger.warning("%s", message)
        return [message]

    def restore(
        self, backup_id: str, force: bool = False, skip_clean: bool = False
    ) -> RestoreResult:
        """Put the repository back into the state recorded by a snapshot.

        Args:
          backup_id: Snapshot to restore
          force: Discard uncommitted changes and untracked files instead of
            refusing
          skip_clean: Do not clean or hard-reset the working tree first
        Returns: A RestoreResult; a stash that could not be reapplied cleanly
          is reported in ``warnings`` rather than as a failure
        """
        try:
            snapshot_path, metadata_path = self._paths(backup_id)
        except ValidationError:
            return RestoreResult(False, error=f"Invalid backup ID format: {backup_id}")
        if not os.path.exists(metadata_path):
            return RestoreResult(
                False, backup_id, error=f"Backup not found: {backup_id}"
            )

        try:
            snapshot = self._read_metadata(backup_id)
            commit = check_hash(snapshot.commit_hash)
            branch = snapshot.branch
            if branch is not None:
                check_branch_name(branch)
        except (OSError, ValueError, KeyError) as e:
            return RestoreResult(
                False, backup_id, error=f"Corrupt backup metadata: {e}"
            )

        logger.info("Restoring backup: %s", backup_id)
        try:
            self.repo.ensure_excluded(EXCLUDE_PATTERNS)
            if not skip_clean and not force:
                changes = self.repo.status(include_untracked=True)
                if changes:
                    paths = [entry.path for entry in changes]
                    listed = ", ".join(paths[:5]) + ("..." if len(paths) > 5 else "")
                    logger.warning(
                        "%d uncommitted changes would be lost during restore",
                        len(paths),
                    )
                    raise StateConflict(
                        f"Uncommitted changes detected: {listed}. Commit or stash "
                        "changes first, or use the force option.",
                        paths,
                    )

            snapshot.state = SnapshotState.RESTORING
            self._write_metadata(snapshot)

            if not skip_clean:
                self.executor.run_checked(["clean", "-fd"])
                self.executor.run_checked(["reset", "--hard"])

            warnings = []
            if branch is not None:
                result = self.executor.run(["checkout", "-B", branch, commit])
                if not result.ok:
                    warnings.append(f"Could not return to branch: {branch}")
                    logger.warning("Could not return to branch: %s", branch)
                    branch = None
            if branch is None:
                self.executor.run_checked(["checkout", "--detach", commit])

            warnings.extend(self._restore_uncommitted(snapshot, snapshot_path))

            snapshot.state = SnapshotState.RESTORED
            self._write_metadata(snapshot)
        except (GctmError, OSError) as e:
            logger.error("Could not restore backup: %s", e)
            return RestoreResult(False, backup_id, error=str(e))

        logger.info(
            "Backup successfully restored: %s%s",
            backup_id,
            " (with warnings)" if warnings else "",
        )
        return RestoreResult(
            True, backup_id, warnings=warnings, restored_to=commit, branch=branch
        )

    def delete(self, backup_id: str) -> SnapshotResult:
        """Delete a snapshot's metadata and files."""
        try:
            snapshot_path, metadata_path = self._paths(backup_id)
        except ValidationError:
            return SnapshotResult(False, error=f"Invalid backup ID format: {backup_id}")
        path_exists = os.path.isdir(snapshot_path)
        metadata_exists = os.path.exists(metadata_path)
        if not path_exists and not metadata_exists:
            return SnapshotResult(
                False, backup_id, error=f"Backup not found: {backup_id}"
            )
        try:
            if path_exists:
                shutil.rmtree(snapshot_path)
            if metadata_exists:
                os.remove(metadata_path)
        except OSError as e:
            logger.error("Could not delete backup: %s", e)
            return SnapshotResult(False, backup_id, error=str(e))
        logger.info("Backup deleted: %s", backup_id)
        return SnapshotResult(True, backup_id)

    def cleanup(self, backup_ids: Iterable[str]) -> list[SnapshotResult]:
        """Delete several snapshots, reporting on each."""
        return [self.delete(backup_id) for backup_id in backup_ids]

    def prune(
        self,
        keep_count: int = DEFAULT_KEEP_COUNT,
        max_age_days: float = DEFAULT_MAX_AGE_DAYS,
        now: datetime | None = None,
    ) -> PruneResult:
        """Apply the retention policy.

        The newest ``keep_count`` snapshots are kept unless they are older
        than ``max_age_days``; everything else is deleted.
        """
        errors = validate_retention(keep_count, max_age_days)
        if errors:
            return PruneResult(False, error="; ".join(errors))
        if now is None:
            now = datetime.now(timezone.utc)
        max_age = timedelta(days=max_age_days)

        snapshots = self.list()
        doomed = [
            s.id
            for i, s in enumerate(snapshots)
            if i >= keep_count or now - s.created_at > max_age
        ]
        deleted = [r.backup_id for r in self.cleanup(doomed) if r.success]
        logger.info("%d old backups cleaned", len(deleted))
        return PruneResult(
            True,
            [d for d in deleted if d is not None],
            remaining=len(snapshots) - len(deleted),
        )

    def list(self) -> list[Snapshot]:
        """List snapshots, newest first.

        Metadata files that cannot be parsed are skipped with a warning.
        """
        try:
            names = os.listdir(self.backup_dir)
        except FileNotFoundError:
            return []
        snapshots = []
        for name in names:
            if not name.endswith(".json"):
                continue
            try:
                snapshots.append(self._read_metadata(name[: -len(".json")]))
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning("Could not read backup metadata %s: %s", name, e)
        snapshots.sort(key=lambda s: s.created_at, reverse=True)
        return snapshots
