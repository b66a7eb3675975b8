# validate.py -- Validation of identifiers handed to git
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

"""Validation of identifiers before they reach git or the filesystem.

Every string that is passed into a git argument vector or joined into a
filesystem path goes through one of the predicates in this module first.
The ``is_valid_*`` functions are pure and total: they never raise and
return False for anything that is not a ``str``. The ``check_*`` variants
raise :class:`gctm.errors.ValidationError` instead.
"""

__all__ = [
    "check_backup_id",
    "check_branch_name",
    "check_hash",
    "check_path",
    "is_valid_backup_id",
    "is_valid_branch_name",
    "is_valid_email",
    "is_valid_env_key",
    "is_valid_hash",
    "is_valid_path",
    "validate_replacements",
    "validate_retention",
]

import re
from collections.abc import Iterable
from typing import TYPE_CHECKING

from .errors import ValidationError

if TYPE_CHECKING:
    from .sanitize import ReplacementRule

_HASH_RE = re.compile(r"[a-f0-9]{7,40}", re.IGNORECASE)
_BRANCH_RE = re.compile(r"[A-Za-z0-9_][\w\-/.]*", re.ASCII)
_BACKUP_ID_RE = re.compile(r"backup-[\w-]+", re.ASCII)
_EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
_ENV_KEY_RE = re.compile(r"[A-Z][A-Z0-9_]*")
_INVALID_PATH_CHARS = frozenset('<>"|?*\x00')

MAX_REF_LENGTH = 256
MIN_BACKUP_ID_LENGTH = 8


def is_valid_hash(value: object) -> bool:
    """Check whether a value looks like an abbreviated or full commit hash.

    Args:
      value: Value to check
    Returns: True for 7 to 40 hexadecimal characters, in either case
    """
    return isinstance(value, str) and _HASH_RE.fullmatch(value) is not None


def is_valid_branch_name(value: object) -> bool:
    """Check whether a value is safe to use as a branch name.

    The name must start with an alphanumeric character or underscore, may
    only contain word characters, ``-``, ``/`` and ``.``, and may not
    contain ``..`` or ``//``.
    """
    if not isinstance(value, str):
        return False
    if not 0 < len(value) < MAX_REF_LENGTH:
        return False
    if value.startswith((".", "/")) or value.endswith(("/", ".lock")):
        return False
    if ".." in value or "//" in value:
        return False
    return _BRANCH_RE.fullmatch(value) is not None


def is_valid_backup_id(value: object) -> bool:
    """Check whether a value is a well-formed snapshot identifier.

    Snapshot identifiers are joined into filesystem paths, so anything that
    could escape the backup directory is rejected.
    """
    if not isinstance(value, str):
        return False
    if not MIN_BACKUP_ID_LENGTH <= len(value) < MAX_REF_LENGTH:
        return False
    if ".." in value or "/" in value or "\\" in value:
        return False
    return _BACKUP_ID_RE.fullmatch(value) is not None


def is_valid_path(value: object) -> bool:
    """Check whether a value is an acceptable file path.

    Rejects the characters ``<>"|?*`` and any colon other than a single
    drive-letter colon at the start (``C:``).
    """
    if not isinstance(value, str) or not value:
        return False
    if any(c in _INVALID_PATH_CHARS for c in value):
        return False
    colons = value.count(":")
    if colons == 0:
        return True
    return colons == 1 and len(value) >= 2 and value[0].isalpha() and value[1] == ":"


def is_valid_email(value: object) -> bool:
    """Check whether a value looks like an e-mail address."""
    return isinstance(value, str) and _EMAIL_RE.fullmatch(value) is not None


def is_valid_env_key(value: object) -> bool:
    """Check whether a value is a conventional ``.env`` key (``UPPER_CASE``)."""
    return isinstance(value, str) and _ENV_KEY_RE.fullmatch(value) is not None


def check_hash(value: object) -> str:
    """Return value unchanged if it is a valid commit hash.

    Raises:
      ValidationError: if the value is not a valid hash
    """
    if not is_valid_hash(value):
        raise ValidationError("commit hash", value)
    assert isinstance(value, str)
    return value


def check_branch_name(value: object) -> str:
    """Return value unchanged if it is a valid branch name.

    Raises:
      ValidationError: if the value is not a valid branch name
    """
    if not is_valid_branch_name(value):
        raise ValidationError("branch name", value)
    assert isinstance(value, str)
    return value


def check_backup_id(value: object) -> str:
    """Return value unchanged if it is a valid snapshot identifier.

    Raises:
      ValidationError: if the value is not a valid backup id
    """
    if not is_valid_backup_id(value):
        raise ValidationError("backup ID format", value)
    assert isinstance(value, str)
    return value


def check_path(value: object) -> str:
    """Return value unchanged if it is an acceptable path.

    Raises:
      ValidationError: if the value is not an acceptable path
    """
    if not is_valid_path(value):
        raise ValidationError("path", value)
    assert isinstance(value, str)
    return value


def validate_replacements(rules: Iterable["ReplacementRule"]) -> list[str]:
    """Validate a set of replacement rules.

    Args:
      rules: Rules to validate
    Returns: List of error messages; empty if the rules are usable
    """
    from .sanitize import Literal, Regex, ReplacementRule

    rules = list(rules)
    if not rules:
        return ["At least one replacement pattern must be specified"]

    errors = []
    for i, rule in enumerate(rules, 1):
        if not isinstance(rule, ReplacementRule):
            errors.append(f"{i}. replacement is not a ReplacementRule")
            continue
        if not isinstance(rule.replacement, str):
            errors.append(f"{i}. replacement pattern must specify replacement")
        pattern = rule.pattern
        if isinstance(pattern, Literal):
            if not pattern.text.strip():
                errors.append(f"{i}. replacement pattern cannot be empty")
        elif isinstance(pattern, Regex):
            if not pattern.pattern:
                errors.append(f"{i}. replacement pattern cannot be empty")
            else:
                try:
                    pattern.compiled()
                except re.error as e:
                    errors.append(f"{i}. replacement pattern has invalid regex: {e}")
        else:
            errors.append(f"{i}. replacement pattern must specify pattern")
    return errors


def validate_retention(keep_count: object, max_age_days: object) -> list[str]:
    """Validate snapshot retention settings.

    Returns: List of error messages; empty if the settings are usable
    """
    errors = []
    if (
        isinstance(keep_count, bool)
        or not isinstance(keep_count, int)
        or keep_count <= 0
    ):
        errors.append("Number of backups to keep must be a positive number")
    if (
        isinstance(max_age_days, bool)
        or not isinstance(max_age_days, (int, float))
        or max_age_days <= 0
    ):
        errors.append("Maximum age must be a positive number")
    return errors
