# cli.py -- Command-line interface to gctm
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

"""Command-line interface to gctm.

Each subcommand is a :class:`Command` subclass that parses its own
arguments and calls into :mod:`gctm.porcelain`. Commands return 0 on
success and 1 on failure.
"""

__all__ = [
    "Command",
    "SuperCommand",
    "commands",
    "format_bytes",
    "main",
    "signal_int",
]

import argparse
import logging
import signal
import sys
import types
from collections.abc import Sequence
from typing import ClassVar

from . import porcelain, version_string
from .config import save_ai_config
from .errors import GctmError
from .log_utils import default_logging_config
from .rewrite import RewriteResult
from .sanitize import REDACT_TOKENS, Literal, ReplacementRule
from .snapshot import SnapshotManager

logger = logging.getLogger(__name__)


def signal_int(signal: int, frame: types.FrameType | None) -> None:
    """Handle interrupt signal by exiting."""
    sys.exit(1)


def format_bytes(bytes: float) -> str:
    """Format bytes as human-readable string.

    Args:
        bytes: Number of bytes

    Returns:
        Human-readable string like "1.5 MB"
    """
    for unit in ["B", "KB", "MB", "GB"]:
        if bytes < 1024.0:
            return f"{bytes:.1f} {unit}"
        bytes /= 1024.0
    return f"{bytes:.1f} TB"


def _report(result: RewriteResult) -> int:
    for warning in result.warnings:
        logger.warning("%s", warning)
    if not result.success:
        logger.error("%s", result.error)
        if result.backup_branch:
            logger.error("Original history kept on branch %s", result.backup_branch)
        return 1
    logger.info("%d of %d commits rewritten", result.processed, result.total)
    if result.snapshot_id:
        logger.info("Backup: %s", result.snapshot_id)
    return 0


def _backup_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--no-backup",
        dest="create_backup",
        action="store_false",
        default=None,
        help="Do not take a snapshot before rewriting",
    )


class Command:
    """A gctm subcommand."""

    def __init__(self, repo: str = ".") -> None:
        self.repo = repo

    def run(self, args: Sequence[str]) -> int:
        """Run the command."""
        raise NotImplementedError(self.run)


class cmd_redate(Command):
    """Spread commit dates over a date range."""

    def run(self, args: Sequence[str]) -> int:
        parser = argparse.ArgumentParser(prog="gctm redate")
        parser.add_argument("--start", required=True, help="First date (YYYY-MM-DD)")
        parser.add_argument("--end", required=True, help="Last date (YYYY-MM-DD)")
        parser.add_argument(
            "--randomize", action="store_true", help="Add up to 30 minutes of jitter"
        )
        parser.add_argument(
            "--no-preserve-order",
            dest="preserve_order",
            action="store_false",
            help="Pick dates at random instead of spreading them evenly",
        )
        parser.add_argument("-n", "--limit", type=int, help="Only redate newest N commits")
        _backup_flag(parser)
        parsed_args = parser.parse_args(args)
        return _report(
            porcelain.redate_commits(
                self.repo,
                parsed_args.start,
                parsed_args.end,
                preserve_order=parsed_args.preserve_order,
                randomize=parsed_args.randomize,
                create_backup=parsed_args.create_backup,
                limit=parsed_args.limit,
            )
        )


class cmd_amend_message(Command):
    """Change the message of a commit."""

    def run(self, args: Sequence[str]) -> int:
        parser = argparse.ArgumentParser(prog="gctm amend-message")
        parser.add_argument("commit", help="Commit to change")
        parser.add_argument("message", help="New commit message")
        _backup_flag(parser)
        parsed_args = parser.parse_args(args)
        return _report(
            porcelain.edit_commit_message(
                self.repo,
                parsed_args.commit,
                parsed_args.message,
                create_backup=parsed_args.create_backup,
            )
        )


class cmd_replace(Command):
    """Replace text in the files of every commit."""

    def run(self, args: Sequence[str]) -> int:
        parser = argparse.ArgumentParser(prog="gctm replace")
        parser.add_argument(
            "--pattern", action="append", required=True, help="Text to replace"
        )
        parser.add_argument(
            "--replacement", required=True, help="Text to put in its place"
        )
        parser.add_argument(
            "--regex", action="store_true", help="Treat patterns as regular expressions"
        )
        parser.add_argument(
            "-i", "--ignore-case", action="store_true", help="Match regardless of case"
        )
        parser.add_argument("-n", "--limit", type=int, help="Only rewrite newest N commits")
        _backup_flag(parser)
        parsed_args = parser.parse_args(args)
        return _report(
            porcelain.sanitize_history(
                self.repo,
                parsed_args.pattern,
                replacement=parsed_args.replacement,
                regex=parsed_args.regex,
                ignore_case=parsed_args.ignore_case,
                create_backup=parsed_args.create_backup,
                limit=parsed_args.limit,
            )
        )


class cmd_sanitize(Command):
    """Redact sensitive strings throughout history."""

    def run(self, args: Sequence[str]) -> int:
        parser = argparse.ArgumentParser(prog="gctm sanitize")
        parser.add_argument(
            "--pattern",
            action="append",
            required=True,
            help="Sensitive string to remove; may be given more than once",
        )
        parser.add_argument("--replacement", default=porcelain.DEFAULT_REDACTION)
        parser.add_argument("-n", "--limit", type=int, help="Only rewrite newest N commits")
        _backup_flag(parser)
        parsed_args = parser.parse_args(args)
        rules = []
        try:
            for p in parsed_args.pattern:
                rules.append(ReplacementRule(Literal(p), parsed_args.replacement))
        except GctmError as e:
            logger.error("%s", e)
            return 1
        return _report(
            porcelain.replace_content(
                self.repo,
                rules,
                create_backup=parsed_args.create_backup,
                limit=parsed_args.limit,
            )
        )


class cmd_redact(Command):
    """Redact sensitive data in the working tree."""

    def run(self, args: Sequence[str]) -> int:
        parser = argparse.ArgumentParser(prog="gctm redact")
        parser.add_argument(
            "--category",
            action="append",
            choices=sorted(REDACT_TOKENS),
            help="Category to redact; may be given more than once",
        )
        parser.add_argument(
            "--env-key",
            action="append",
            default=[],
            help="Key to hide in .env files; may be given more than once",
        )
        parsed_args = parser.parse_args(args)
        changed = porcelain.redact_files(
            self.repo, categories=parsed_args.category, env_keys=parsed_args.env_key
        )
        for path, found in sorted(changed.items()):
            sys.stdout.write(f"{path}: {', '.join(found)}\n")
        if not changed:
            logger.info("No sensitive data found")
        return 0


class cmd_scan(Command):
    """Look for sensitive data in the working tree."""

    def run(self, args: Sequence[str]) -> int:
        parser = argparse.ArgumentParser(prog="gctm scan")
        parser.add_argument("-n", "--limit", type=int, help="Scan at most N files")
        parsed_args = parser.parse_args(args)
        findings = porcelain.scan_sensitive(self.repo, limit=parsed_args.limit)
        for path, found in sorted(findings.items()):
            for category, values in sorted(found.items()):
                for value in sorted(values):
                    sys.stdout.write(f"{path}: {category}: {value}\n")
        if not findings:
            logger.info("No sensitive data found")
        return 0


class cmd_backup_create(Command):
    """Take a snapshot of the repository."""

    def run(self, args: Sequence[str]) -> int:
        parser = argparse.ArgumentParser(prog="gctm backup create")
        parser.add_argument("-m", "--description", default="Manual backup")
        parser.add_argument(
            "--committed-only",
            dest="include_uncommitted",
            action="store_false",
            help="Do not save uncommitted changes",
        )
        parsed_args = parser.parse_args(args)
        snapshot = porcelain.create_backup(
            self.repo,
            description=parsed_args.description,
            include_uncommitted=parsed_args.include_uncommitted,
        )
        sys.stdout.write(f"{snapshot.id}\n")
        return 0


class cmd_backup_list(Command):
    """List snapshots, newest first."""

    def run(self, args: Sequence[str]) -> int:
        parser = argparse.ArgumentParser(prog="gctm backup list")
        parser.add_argument(
            "--size", action="store_true", help="Show the size of each snapshot"
        )
        parsed_args = parser.parse_args(args)
        repo, _ = porcelain.open_repo(self.repo)
        manager = SnapshotManager(repo)
        for snapshot in manager.list():
            line = (
                f"{snapshot.id}  {snapshot.created_at:%Y-%m-%d %H:%M}  "
                f"{snapshot.commit_hash[:7]}  {snapshot.description}"
            )
            if parsed_args.size:
                _, size = manager.get(snapshot.id)
                line += f"  ({format_bytes(size)})"
            sys.stdout.write(line + "\n")
        return 0


class cmd_backup_restore(Command):
    """Return the repository to a snapshot."""

    def run(self, args: Sequence[str]) -> int:
        parser = argparse.ArgumentParser(prog="gctm backup restore")
        parser.add_argument("backup_id")
        parser.add_argument(
            "-f", "--force", action="store_true", help="Discard uncommitted changes"
        )
        parsed_args = parser.parse_args(args)
        result = porcelain.restore_backup(
            self.repo, parsed_args.backup_id, force=parsed_args.force
        )
        for warning in result.warnings:
            logger.warning("%s", warning)
        if not result.success:
            logger.error("%s", result.error)
            return 1
        logger.info("Restored %s to %s", result.backup_id, result.restored_to)
        return 0


class cmd_backup_delete(Command):
    """Delete snapshots."""

    def run(self, args: Sequence[str]) -> int:
        parser = argparse.ArgumentParser(prog="gctm backup delete")
        parser.add_argument("backup_id", nargs="+")
        parsed_args = parser.parse_args(args)
        status = 0
        for backup_id in parsed_args.backup_id:
            result = porcelain.delete_backup(self.repo, backup_id)
            if not result.success:
                logger.error("%s: %s", backup_id, result.error)
                status = 1
        return status


class cmd_backup_prune(Command):
    """Delete snapshots outside the retention policy."""

    def run(self, args: Sequence[str]) -> int:
        parser = argparse.ArgumentParser(prog="gctm backup prune")
        parser.add_argument("--keep", type=int, help="Number of snapshots to keep")
        parser.add_argument("--max-age", type=float, help="Maximum age in days")
        parsed_args = parser.parse_args(args)
        result = porcelain.prune_backups(
            self.repo, keep_count=parsed_args.keep, max_age_days=parsed_args.max_age
        )
        if not result.success:
            logger.error("%s", result.error)
            return 1
        for backup_id in result.deleted:
            sys.stdout.write(f"Deleted {backup_id}\n")
        return 0


class SuperCommand(Command):
    """Base class for commands that have subcommands."""

    subcommands: ClassVar[dict[str, type[Command]]] = {}
    default_command: ClassVar[type[Command] | None] = None

    def run(self, args: Sequence[str]) -> int:
        if not args:
            if self.default_command:
                return self.default_command(self.repo).run(args)
            logger.info("Supported subcommands: %s", ", ".join(self.subcommands.keys()))
            return 1
        try:
            cmd_kls = self.subcommands[args[0]]
        except KeyError:
            logger.error("No such subcommand: %s", args[0])
            return 1
        return cmd_kls(self.repo).run(args[1:])


class cmd_backup(SuperCommand):
    """Manage snapshots."""

    subcommands: ClassVar[dict[str, type[Command]]] = {
        "create": cmd_backup_create,
        "delete": cmd_backup_delete,
        "list": cmd_backup_list,
        "prune": cmd_backup_prune,
        "restore": cmd_backup_restore,
    }
    default_command = cmd_backup_list


class cmd_suggest(Command):
    """Suggest a commit message for the pending changes."""

    def run(self, args: Sequence[str]) -> int:
        parser = argparse.ArgumentParser(prog="gctm suggest")
        parser.add_argument("-m", "--message", default="", help="Current message")
        parser.add_argument("--context", default="", help="Extra context for the model")
        parser.add_argument("--language", help="Language of the suggestions")
        parser.add_argument(
            "--style",
            choices=["conventional", "descriptive", "minimal", "humorous"],
        )
        parsed_args = parser.parse_args(args)
        result = porcelain.suggest_commit_message(
            self.repo,
            current_message=parsed_args.message,
            context=parsed_args.context,
            language=parsed_args.language,
            style=parsed_args.style,
        )
        if not result.success:
            logger.error("%s", result.error)
            return 1
        for i, suggestion in enumerate(result.suggestions, 1):
            sys.stdout.write(f"{i}. {suggestion}\n")
        return 0


class cmd_ai_config(Command):
    """Store commit message suggestion settings in .gctmconfig."""

    def run(self, args: Sequence[str]) -> int:
        parser = argparse.ArgumentParser(prog="gctm ai-config")
        parser.add_argument(
            "--provider", choices=["openai", "anthropic", "google", "local"]
        )
        parser.add_argument("--model")
        parser.add_argument("--language")
        parser.add_argument("--style")
        parser.add_argument("--max-tokens", type=int)
        parser.add_argument("--temperature", type=float)
        parser.add_argument("--base-url")
        parsed_args = parser.parse_args(args)
        repo, settings = porcelain.open_repo(self.repo)
        ai = settings.ai
        for attr in (
            "provider",
            "model",
            "language",
            "style",
            "max_tokens",
            "temperature",
            "base_url",
        ):
            value = getattr(parsed_args, attr)
            if value is not None:
                setattr(ai, attr, value)
        path = save_ai_config(repo.path, ai)
        logger.info("Saved AI settings to %s", path)
        return 0


class cmd_history(Command):
    """Show recent commits."""

    def run(self, args: Sequence[str]) -> int:
        parser = argparse.ArgumentParser(prog="gctm history")
        parser.add_argument("-n", "--limit", type=int, default=20)
        parser.add_argument(
            "--stats", action="store_true", help="Show commits per day and hour"
        )
        parsed_args = parser.parse_args(args)
        if parsed_args.stats:
            stats = porcelain.commit_stats(self.repo, limit=parsed_args.limit)
            for day, count in sorted(stats["days"].items()):
                sys.stdout.write(f"{day}  {count}\n")
            for hour, count in sorted(stats["hours"].items()):
                sys.stdout.write(f"{hour:02d}:00  {count}\n")
            return 0
        for commit in porcelain.history(self.repo, limit=parsed_args.limit):
            sys.stdout.write(
                f"{commit.short_hash} {commit.date:%Y-%m-%d %H:%M} "
                f"{commit.author}  {commit.subject}\n"
            )
        return 0


commands = {
    "ai-config": cmd_ai_config,
    "amend-message": cmd_amend_message,
    "backup": cmd_backup,
    "history": cmd_history,
    "redact": cmd_redact,
    "redate": cmd_redate,
    "replace": cmd_replace,
    "sanitize": cmd_sanitize,
    "scan": cmd_scan,
    "suggest": cmd_suggest,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the gctm CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(
        prog="gctm",
        description="Rewrite dates, messages and content of git history",
    )
    parser.add_argument("--repo", default=".", help="Path to the repository")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Show debug output"
    )
    parser.add_argument(
        "--version", action="version", version=f"gctm {version_string()}"
    )
    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help=f"Command to run. Available: {', '.join(sorted(commands.keys()))}",
    )
    global_args = parser.parse_args(argv)
    if not global_args.command:
        parser.print_help()
        return 1
    cmd, *remaining = global_args.command

    default_logging_config(verbose=global_args.verbose)

    try:
        cmd_kls = commands[cmd]
    except KeyError:
        logger.error("No such subcommand: %s", cmd)
        return 1
    try:
        return cmd_kls(global_args.repo).run(remaining)
    except GctmError as e:
        logger.error("%s", e)
        return 1


def _main() -> None:
    signal.signal(signal.SIGINT, signal_int)
    sys.exit(main())


if __name__ == "__main__":
    _main()
