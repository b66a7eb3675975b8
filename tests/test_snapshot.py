# test_snapshot.py -- Tests for snapshots
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

"""Tests for gctm.snapshot."""

import json
import os
from datetime import datetime, timedelta, timezone

from gctm.errors import StateConflict, ValidationError
from gctm.snapshot import (
    BACKUP_DIR_NAME,
    STASH_MESSAGE_PREFIX,
    Snapshot,
    SnapshotManager,
    SnapshotState,
    generate_backup_id,
)
from gctm.validate import is_valid_backup_id

from . import TestCase
from .utils import GitTestCase, RecordingExecutor


class BackupIdTests(TestCase):
    def test_format(self) -> None:
        now = datetime(2024, 3, 4, 5, 6, 7, tzinfo=timezone.utc)
        backup_id = generate_backup_id(now)
        self.assertTrue(backup_id.startswith("backup-2024-03-04T05-06-07Z-"))
        self.assertEqual(6, len(backup_id.rsplit("-", 1)[1]))
        self.assertTrue(is_valid_backup_id(backup_id))

    def test_unique(self) -> None:
        now = datetime(2024, 3, 4, tzinfo=timezone.utc)
        self.assertNotEqual(generate_backup_id(now), generate_backup_id(now))


class SnapshotSerializationTests(TestCase):
    def test_round_trip(self) -> None:
        snapshot = Snapshot(
            id="backup-2024-01-01T00-00-00Z-abcdef",
            created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            description="before redate",
            branch="master",
            commit_hash="a" * 40,
            repo_path="/tmp/repo",
            stash_ref="stash@{0}",
            stash_commit="b" * 40,
            has_stash=True,
            changed_files=["a.txt"],
            state=SnapshotState.CREATED,
        )
        data = json.loads(json.dumps(snapshot.to_dict()))
        self.assertEqual("created", data["state"])
        self.assertEqual(snapshot, Snapshot.from_dict(data))

    def test_rejects_bad_id(self) -> None:
        self.assertRaises(
            ValidationError,
            Snapshot.from_dict,
            {"id": "../x", "created_at": "2024-01-01T00:00:00", "commit_hash": "a" * 40},
        )


class SnapshotManagerTests(GitTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.first = self.commit("Initial", {"a.txt": "alpha\n", "b.txt": "beta\n"})
        self.manager = SnapshotManager(self.repo)

    def test_create_clean(self) -> None:
        snapshot = self.manager.create("clean tree")
        self.assertEqual(SnapshotState.CREATED, snapshot.state)
        self.assertEqual(self.first, snapshot.commit_hash)
        self.assertEqual("master", snapshot.branch)
        self.assertFalse(snapshot.has_stash)
        backup_dir = os.path.join(self.path, BACKUP_DIR_NAME)
        self.assertTrue(os.path.exists(os.path.join(backup_dir, snapshot.id + ".json")))
        with open(os.path.join(backup_dir, snapshot.id, "commit-log.json")) as f:
            log = json.load(f)
        self.assertEqual([self.first], [entry["hash"] for entry in log])
        # The snapshot directory does not show up as untracked
        self.assertEqual([], self.repo.status())

    def test_create_without_commits(self) -> None:
        self.git("update-ref", "-d", "HEAD")
        self.assertRaises(StateConflict, self.manager.create)

    def test_create_bad_id(self) -> None:
        self.assertRaises(ValidationError, self.manager.create, backup_id="../../evil")

    def test_create_stashes_changes(self) -> None:
        self.write("a.txt", "alpha modified\n")
        self.write("b.txt", "beta staged\n")
        self.git("add", "b.txt")
        snapshot = self.manager.create()
        self.assertTrue(snapshot.has_stash)
        self.assertTrue(snapshot.has_staged_changes)
        self.assertTrue(snapshot.has_working_changes)
        self.assertEqual("stash@{0}", snapshot.stash_ref)
        self.assertEqual(
            self.git("rev-parse", "refs/stash").strip(), snapshot.stash_commit
        )
        self.assertEqual(["a.txt", "b.txt"], sorted(snapshot.changed_files))
        self.assertIn(
            STASH_MESSAGE_PREFIX + snapshot.id, self.git("stash", "list")
        )
        self.assertTrue(self.repo.is_clean())
        patch_dir = os.path.join(self.path, BACKUP_DIR_NAME, snapshot.id)
        self.assertTrue(os.path.exists(os.path.join(patch_dir, "staged.patch")))
        self.assertTrue(os.path.exists(os.path.join(patch_dir, "working.patch")))

    def test_create_committed_only(self) -> None:
        self.write("a.txt", "alpha modified\n")
        snapshot = self.manager.create(include_uncommitted=False)
        self.assertFalse(snapshot.has_stash)
        self.assertEqual(["a.txt"], snapshot.changed_files)
        self.assertEqual("alpha modified\n", self.read("a.txt"))

    def test_restore_reproduces_uncommitted_files(self) -> None:
        self.write("a.txt", "alpha modified\n")
        self.write("b.txt", "beta staged\n")
        self.git("add", "b.txt")
        snapshot = self.manager.create()
        self.commit("Later", {"c.txt": "gamma\n"})

        result = self.manager.restore(snapshot.id)
        self.assertTrue(result.success, result.error)
        self.assertEqual([], result.warnings)
        self.assertEqual(self.first, result.restored_to)
        self.assertEqual("master", result.branch)
        self.assertEqual(self.first, self.head())
        self.assertEqual("master", self.repo.current_branch())
        self.assertEqual("alpha modified\n", self.read("a.txt"))
        self.assertEqual("beta staged\n", self.read("b.txt"))
        self.assertFalse(os.path.exists(os.path.join(self.path, "c.txt")))
        self.assertEqual(["b.txt"], self.repo.changed_files(cached=True))
        self.assertEqual("", self.git("stash", "list"))
        snapshot, _ = self.manager.get(snapshot.id)
        self.assertEqual(SnapshotState.RESTORED, snapshot.state)

    def test_restore_finds_stash_that_moved(self) -> None:
        self.write("a.txt", "alpha modified\n")
        snapshot = self.manager.create()
        self.write("b.txt", "unrelated\n")
        self.git("stash", "push", "-m", "someone else")
        result = self.manager.restore(snapshot.id)
        self.assertTrue(result.success, result.error)
        self.assertEqual("alpha modified\n", self.read("a.txt"))
        self.assertIn("someone else", self.git("stash", "list"))

    def test_restore_falls_back_to_patches(self) -> None:
        self.write("a.txt", "alpha modified\n")
        snapshot = self.manager.create()
        self.git("stash", "drop")
        result = self.manager.restore(snapshot.id)
        self.assertTrue(result.success, result.error)
        self.assertEqual(1, len(result.warnings))
        self.assertIn("Could not find stash", result.warnings[0])
        self.assertEqual("alpha modified\n", self.read("a.txt"))

    def test_restore_refuses_uncommitted_changes(self) -> None:
        snapshot = self.manager.create()
        self.write("a.txt", "precious\n")
        result = self.manager.restore(snapshot.id)
        self.assertFalse(result.success)
        self.assertIn("Uncommitted changes detected: a.txt", result.error)
        self.assertEqual("precious\n", self.read("a.txt"))

        result = self.manager.restore(snapshot.id, force=True)
        self.assertTrue(result.success, result.error)
        self.assertEqual("alpha\n", self.read("a.txt"))

    def test_restore_refuses_untracked_files(self) -> None:
        snapshot = self.manager.create()
        self.write("notes.txt", "my notes\n")
        result = self.manager.restore(snapshot.id)
        self.assertFalse(result.success)
        self.assertIn("Uncommitted changes detected: notes.txt", result.error)
        self.assertEqual("my notes\n", self.read("notes.txt"))

        result = self.manager.restore(snapshot.id, force=True)
        self.assertTrue(result.success, result.error)
        self.assertFalse(os.path.exists(os.path.join(self.path, "notes.txt")))

    def test_restore_stash_conflict(self) -> None:
        self.write("a.txt", "alpha from stash\n")
        snapshot = self.manager.create()
        later = self.commit("Change a", {"a.txt": "alpha committed\n"})
        # Point the snapshot at a commit that conflicts with its stash
        path = os.path.join(self.path, BACKUP_DIR_NAME, snapshot.id + ".json")
        with open(path) as f:
            data = json.load(f)
        data["commit_hash"] = later
        with open(path, "w") as f:
            json.dump(data, f)

        result = self.manager.restore(snapshot.id)
        self.assertTrue(result.success, result.error)
        self.assertEqual(1, len(result.warnings))
        self.assertIn("merge conflicts", result.warnings[0])
        self.assertIn("git stash drop stash@{", result.warnings[0])
        self.assertIn(STASH_MESSAGE_PREFIX + snapshot.id, self.git("stash", "list"))

    def test_restore_invalid_id_touches_nothing(self) -> None:
        executor = RecordingExecutor(self.path)
        self.repo.executor = executor
        manager = SnapshotManager(self.repo)
        result = manager.restore("../../../etc/passwd")
        self.assertFalse(result.success)
        self.assertIn("Invalid backup ID format", result.error)
        self.assertEqual([], executor.calls)

    def test_restore_missing(self) -> None:
        result = self.manager.restore("backup-2020-01-01T00-00-00Z-zzzzzz")
        self.assertFalse(result.success)
        self.assertIn("Backup not found", result.error)

    def test_restore_corrupt_metadata(self) -> None:
        snapshot = self.manager.create()
        path = os.path.join(self.path, BACKUP_DIR_NAME, snapshot.id + ".json")
        with open(path) as f:
            data = json.load(f)
        data["branch"] = "bad..branch"
        with open(path, "w") as f:
            json.dump(data, f)
        result = self.manager.restore(snapshot.id)
        self.assertFalse(result.success)
        self.assertIn("Corrupt backup metadata", result.error)

    def test_restore_detached(self) -> None:
        self.git("checkout", "-q", "--detach")
        snapshot = self.manager.create()
        self.assertIsNone(snapshot.branch)
        result = self.manager.restore(snapshot.id)
        self.assertTrue(result.success, result.error)
        self.assertIsNone(result.branch)
        self.assertIsNone(self.repo.current_branch())

    def test_get_and_delete(self) -> None:
        snapshot = self.manager.create()
        loaded, size = self.manager.get(snapshot.id)
        self.assertEqual(snapshot.id, loaded.id)
        self.assertGreater(size, 0)
        self.assertTrue(self.manager.delete(snapshot.id).success)
        self.assertRaises(KeyError, self.manager.get, snapshot.id)
        result = self.manager.delete(snapshot.id)
        self.assertFalse(result.success)
        self.assertIn("Backup not found", result.error)
        result = self.manager.delete("../x")
        self.assertIn("Invalid backup ID format", result.error)

    def _age(self, backup_id: str, days: int) -> None:
        snapshot, _ = self.manager.get(backup_id)
        snapshot.created_at = datetime.now(timezone.utc) - timedelta(days=days)
        self.manager._write_metadata(snapshot)

    def test_list_newest_first(self) -> None:
        ids = [self.manager.create(f"n{i}").id for i in range(3)]
        for days, backup_id in enumerate(ids):
            self._age(backup_id, days)
        with open(os.path.join(self.path, BACKUP_DIR_NAME, "junk.json"), "w") as f:
            f.write("{")
        with self.assertLogs("gctm.snapshot", level="WARNING"):
            listed = self.manager.list()
        self.assertEqual(ids, [s.id for s in listed])

    def test_prune(self) -> None:
        ids = [self.manager.create(f"n{i}").id for i in range(4)]
        for days, backup_id in zip([0, 1, 2, 40], ids):
            self._age(backup_id, days)
        result = self.manager.prune(keep_count=2, max_age_days=30)
        self.assertTrue(result.success)
        self.assertEqual(sorted(ids[2:]), sorted(result.deleted))
        self.assertEqual(2, result.remaining)
        self.assertEqual(ids[:2], [s.id for s in self.manager.list()])

    def test_prune_by_age(self) -> None:
        ids = [self.manager.create(f"n{i}").id for i in range(2)]
        self._age(ids[0], 1)
        self._age(ids[1], 45)
        result = self.manager.prune(keep_count=10, max_age_days=30)
        self.assertEqual([ids[1]], result.deleted)

    def test_prune_invalid(self) -> None:
        result = self.manager.prune(keep_count=0, max_age_days=30)
        self.assertFalse(result.success)
        self.assertIn("positive", result.error)
