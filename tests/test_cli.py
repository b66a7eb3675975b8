# test_cli.py -- Tests for the gctm command-line interface
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

"""Tests for gctm.cli."""

import io
import logging
import os
from contextlib import redirect_stderr, redirect_stdout

from gctm import cli, porcelain
from gctm.config import ConfigFile
from gctm.log_utils import _GCTM_LOGGER

from . import TestCase
from .utils import GitTestCase


class CliTestCase(GitTestCase):
    def setUp(self) -> None:
        super().setUp()
        root_logger = logging.getLogger()
        saved = (list(root_logger.handlers), root_logger.level, list(_GCTM_LOGGER.handlers))

        def restore() -> None:
            root_logger.handlers, root_logger.level, _GCTM_LOGGER.handlers = saved

        self.addCleanup(restore)
        self.first = self.commit("Add readme", {"README": "hello\n"})
        self.second = self.commit("Add app", {"app.py": "print('hi')\n"})

    def run_cli(self, *args: str) -> tuple[int, str]:
        stdout = io.StringIO()
        with redirect_stdout(stdout), redirect_stderr(io.StringIO()):
            code = cli.main(["--repo", self.path, *args])
        return code, stdout.getvalue()


class MainTests(CliTestCase):
    def test_no_command(self) -> None:
        stdout = io.StringIO()
        with redirect_stdout(stdout):
            self.assertEqual(1, cli.main([]))
        self.assertIn("usage: gctm", stdout.getvalue())

    def test_unknown_command(self) -> None:
        code, output = self.run_cli("frobnicate")
        self.assertEqual(1, code)
        self.assertEqual("", output)

    def test_not_a_repository(self) -> None:
        with redirect_stderr(io.StringIO()):
            code = cli.main(["--repo", os.path.join(self.path, "missing"), "history"])
        self.assertEqual(1, code)

    def test_history(self) -> None:
        code, output = self.run_cli("history")
        self.assertEqual(0, code)
        lines = output.splitlines()
        self.assertEqual(2, len(lines))
        self.assertTrue(lines[0].startswith(self.second[:7]))
        self.assertTrue(lines[0].endswith("Test Author  Add app"))

    def test_history_stats(self) -> None:
        code, output = self.run_cli("history", "--stats")
        self.assertEqual(0, code)
        self.assertEqual(["2022-06-01  2", "12:00  2"], output.splitlines())


class RewriteCommandTests(CliTestCase):
    def test_amend_message(self) -> None:
        code, _ = self.run_cli("amend-message", "--no-backup", self.first, "First")
        self.assertEqual(0, code)
        self.assertEqual(["Add app", "First"], self.log("%s"))
        self.assertFalse(os.path.exists(os.path.join(self.path, ".gctm-backups")))

    def test_amend_message_bad_hash(self) -> None:
        code, _ = self.run_cli("amend-message", "not-a-hash", "First")
        self.assertEqual(1, code)
        self.assertEqual(self.second, self.head())

    def test_redate(self) -> None:
        code, _ = self.run_cli(
            "redate",
            "--start", "2023-01-01T00:00:00+00:00",
            "--end", "2023-01-02T00:00:00+00:00",
        )
        self.assertEqual(0, code)
        self.assertEqual(["1672617600", "1672531200"], self.log("%at"))
        self.assertEqual(1, len(porcelain.list_backups(self.path)))

    def test_sanitize(self) -> None:
        self.commit("Add secret", {"app.py": "TOKEN = 'hunter2'\n"})
        code, _ = self.run_cli("sanitize", "--no-backup", "--pattern", "hunter2")
        self.assertEqual(0, code)
        self.assertEqual("TOKEN = '***REDACTED***'\n", self.read("app.py"))

    def test_replace_regex(self) -> None:
        self.commit("Add secret", {"app.py": "TOKEN = 'abc123'\n"})
        code, _ = self.run_cli(
            "replace",
            "--no-backup",
            "--regex",
            "--pattern", r"abc\d+",
            "--replacement", "xyz",
        )
        self.assertEqual(0, code)
        self.assertEqual("TOKEN = 'xyz'\n", self.read("app.py"))

    def test_scan(self) -> None:
        self.commit("Add contact", {"CONTACT": "mail dev@example.org\n"})
        code, output = self.run_cli("scan")
        self.assertEqual(0, code)
        self.assertEqual("CONTACT: email: dev@example.org\n", output)

    def test_redact(self) -> None:
        self.commit(
            "Add files",
            {"CONTACT": "mail dev@example.org\nhost 10.0.0.1\n", ".env": "DB_HOST=db\n"},
        )
        code, output = self.run_cli(
            "redact",
            "--category",
            "email",
            "--category",
            "ip_address",
            "--env-key",
            "DB_HOST",
        )
        self.assertEqual(0, code)
        self.assertEqual(".env: DB_HOST\nCONTACT: email, ip_address\n", output)
        self.assertEqual("mail ***EMAIL***\nhost ***IP***\n", self.read("CONTACT"))
        self.assertEqual("DB_HOST=***HIDDEN***\n", self.read(".env"))

    def test_redact_clean(self) -> None:
        self.commit("Add notes", {"NOTES": "nothing here\n"})
        code, output = self.run_cli("redact")
        self.assertEqual(0, code)
        self.assertEqual("", output)
        self.assertEqual("nothing here\n", self.read("NOTES"))


class BackupCommandTests(CliTestCase):
    def test_create_and_list(self) -> None:
        code, output = self.run_cli("backup", "create", "-m", "Checkpoint")
        self.assertEqual(0, code)
        backup_id = output.strip()
        self.assertTrue(backup_id.startswith("backup-"))

        code, output = self.run_cli("backup", "list", "--size")
        self.assertEqual(0, code)
        self.assertIn(backup_id, output)
        self.assertIn("Checkpoint", output)
        self.assertIn(self.second[:7], output)

    def test_default_subcommand_lists(self) -> None:
        _, created = self.run_cli("backup", "create")
        code, output = self.run_cli("backup")
        self.assertEqual(0, code)
        self.assertIn(created.strip(), output)

    def test_restore(self) -> None:
        _, created = self.run_cli("backup", "create")
        self.commit("More", {"app.py": "print('more')\n"})
        code, _ = self.run_cli("backup", "restore", created.strip())
        self.assertEqual(0, code)
        self.assertEqual(self.second, self.head())

    def test_restore_bad_id(self) -> None:
        code, _ = self.run_cli("backup", "restore", "../../etc")
        self.assertEqual(1, code)

    def test_delete_and_prune(self) -> None:
        _, first = self.run_cli("backup", "create")
        _, second = self.run_cli("backup", "create")
        code, _ = self.run_cli("backup", "delete", first.strip())
        self.assertEqual(0, code)
        self.run_cli("backup", "create")
        code, _ = self.run_cli("backup", "prune", "--keep", "0")
        self.assertEqual(1, code)
        code, output = self.run_cli("backup", "prune", "--keep", "1")
        self.assertEqual(0, code)
        self.assertEqual(f"Deleted {second.strip()}\n", output)

    def test_unknown_subcommand(self) -> None:
        code, _ = self.run_cli("backup", "explode")
        self.assertEqual(1, code)


class AIConfigCommandTests(CliTestCase):
    def test_saves_settings(self) -> None:
        code, _ = self.run_cli(
            "ai-config", "--provider", "local", "--model", "llama3", "--language", "fr"
        )
        self.assertEqual(0, code)
        config = ConfigFile.from_path(os.path.join(self.path, ".gctmconfig"))
        self.assertEqual("local", config.get(("gctm", "ai"), "provider"))
        self.assertEqual("llama3", config.get(("gctm", "ai"), "model"))
        self.assertEqual("fr", config.get(("gctm", "ai"), "language"))


class FormatBytesTests(TestCase):
    def test_units(self) -> None:
        self.assertEqual("512.0 B", cli.format_bytes(512))
        self.assertEqual("1.5 KB", cli.format_bytes(1536))
        self.assertEqual("2.0 MB", cli.format_bytes(2 * 1024 * 1024))
        self.assertEqual("1.0 TB", cli.format_bytes(1024**4))
