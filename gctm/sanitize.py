# sanitize.py -- Detection and replacement of sensitive content
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

"""Detection and replacement of sensitive strings in file content.

A replacement rule pairs a pattern with its replacement text. Patterns are
either a :class:`Literal`, which matches its text exactly, or a
:class:`Regex`, which is compiled with :mod:`re` and replaced globally.
Regex replacements may refer to groups with ``\\1`` or ``\\g<name>``.
"""

__all__ = [
    "API_KEY_RE",
    "DETECTORS",
    "REDACT_TOKENS",
    "Literal",
    "Regex",
    "ReplacementRule",
    "SanitizeResult",
    "apply",
    "apply_to_file",
    "detect",
    "hide_env_keys",
    "redact",
    "redact_file",
]

import logging
import os
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from .errors import ValidationError
from .file import write_atomic

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Literal:
    """Pattern matching a fixed string."""

    text: str

    def __post_init__(self) -> None:
        if not isinstance(self.text, str) or not self.text:
            raise ValidationError("replacement pattern", self.text)


@dataclass(frozen=True)
class Regex:
    """Pattern matching a regular expression."""

    pattern: str
    flags: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.pattern, str) or not self.pattern:
            raise ValidationError("replacement pattern", self.pattern)
        try:
            self.compiled()
        except re.error as e:
            raise ValidationError("regular expression", self.pattern) from e

    def compiled(self) -> re.Pattern[str]:
        return re.compile(self.pattern, self.flags)


Pattern = Literal | Regex


@dataclass(frozen=True)
class ReplacementRule:
    """Replace every match of ``pattern`` with ``replacement``."""

    pattern: Pattern
    replacement: str

    def describe(self) -> str:
        if isinstance(self.pattern, Literal):
            return self.pattern.text
        return f"/{self.pattern.pattern}/"


@dataclass(frozen=True)
class SanitizeResult:
    content: str
    applied_count: int
    changed: bool


API_KEY_RE = re.compile(
    r"([A-Z_]+_?(?:KEY|TOKEN|SECRET|PASSWORD|PASS|API_KEY|SECRET_KEY)=)(\S+)"
)

DETECTORS: dict[str, re.Pattern[str]] = {
    "email": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    "phone": re.compile(r"(?:\+?\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}"),
    "api_key": API_KEY_RE,
    "ip_address": re.compile(r"\b(?:[0-9]{1,3}\.){3}[0-9]{1,3}\b"),
    "url": re.compile(r"https?://\S+"),
    "credit_card": re.compile(r"\b(?:\d[ -]*?){13,16}\b"),
}

REDACT_TOKENS = {
    "email": "***EMAIL***",
    "phone": "***PHONE***",
    "api_key": "***API_KEY***",
    "ip_address": "***IP***",
    "url": "***URL***",
}

DEFAULT_REDACT_CATEGORIES = {
    "email": True,
    "phone": True,
    "api_key": True,
    "ip_address": False,
    "url": False,
}


def detect(content: str) -> dict[str, set[str]]:
    """Find sensitive-looking strings in a piece of text.

    Args:
      content: Text to scan
    Returns: Dictionary mapping detector name to the distinct matches;
      detectors without a match are omitted
    """
    found: dict[str, set[str]] = {}
    for name, regex in DETECTORS.items():
        matches = {m.group(0) for m in regex.finditer(content)}
        if matches:
            found[name] = matches
    return found


def _apply_rule(content: str, rule: ReplacementRule) -> tuple[str, int]:
    pattern = rule.pattern
    if isinstance(pattern, Literal):
        count = content.count(pattern.text)
        if count:
            content = content.replace(pattern.text, rule.replacement)
        return content, count
    elif isinstance(pattern, Regex):
        return pattern.compiled().subn(rule.replacement, content)
    else:
        raise TypeError(f"unknown pattern type {type(pattern).__name__}")


def apply(content: str, rules: Iterable[ReplacementRule]) -> SanitizeResult:
    """Apply replacement rules to a piece of text, in order.

    Args:
      content: Text to rewrite
      rules: Rules to apply
    Returns: A SanitizeResult with the new text and the number of
      substitutions made
    """
    original = content
    applied = 0
    for rule in rules:
        content, count = _apply_rule(content, rule)
        applied += count
    return SanitizeResult(content, applied, content != original)


def redact(
    content: str,
    categories: Mapping[str, bool] | None = None,
    replacements: Mapping[str, str] | None = None,
) -> tuple[str, list[str]]:
    """Replace detected sensitive data with placeholder tokens.

    API keys keep their ``NAME=`` prefix; only the value is replaced.

    Args:
      content: Text to redact
      categories: Which categories to redact; defaults to e-mail addresses,
        phone numbers and API keys
      replacements: Overrides for the placeholder tokens
    Returns: Tuple with the redacted text and the categories that matched
    """
    enabled = dict(DEFAULT_REDACT_CATEGORIES)
    if categories is not None:
        enabled.update(categories)
    tokens = dict(REDACT_TOKENS)
    if replacements is not None:
        tokens.update(replacements)

    redacted = []
    for name in REDACT_TOKENS:
        if not enabled.get(name):
            continue
        regex = DETECTORS[name]
        if name == "api_key":
            token = tokens[name].replace("\\", "\\\\")
            content, count = regex.subn(lambda m: m.group(1) + token, content)
        else:
            content, count = regex.subn(lambda m: tokens[name], content)
        if count:
            redacted.append(name)
    return content, redacted


def hide_env_keys(
    content: str, keys: Iterable[str] = (), replacement: str = "***HIDDEN***"
) -> tuple[str, list[str]]:
    """Hide the values of secrets in ``.env`` style content.

    Every named key is hidden, as is anything that looks like an API key,
    token, secret or password assignment.

    Args:
      content: Text of the file
      keys: Names of keys to hide
      replacement: Text to put in place of each value
    Returns: Tuple with the new text and the names of the keys hidden
    """
    hidden: list[str] = []
    for key in keys:
        regex = re.compile(rf"({re.escape(key)}=)([^\n\r]+)", re.IGNORECASE)
        content, count = regex.subn(lambda m: m.group(1) + replacement, content)
        if count:
            hidden.append(key)

    general = re.compile(API_KEY_RE.pattern, re.IGNORECASE)

    def _hide(m: re.Match[str]) -> str:
        name = m.group(1)[:-1]
        if m.group(2) != replacement and name not in hidden:
            hidden.append(name)
        return m.group(1) + replacement

    content = general.sub(_hide, content)
    return content, hidden


def apply_to_file(
    path: str | os.PathLike[str],
    rules: Iterable[ReplacementRule],
    lock_dir: str | None = None,
) -> SanitizeResult | None:
    """Apply replacement rules to a file on disk.

    The file is only written if its content changes; the write replaces the
    file in one step. Line endings are preserved.

    Args:
      path: File to rewrite
      rules: Rules to apply
      lock_dir: Directory to stage the rewritten file in
    Returns: The SanitizeResult, or None if the file is not UTF-8 text
    """
    try:
        with open(path, encoding="utf-8", newline="") as f:
            content = f.read()
    except UnicodeDecodeError:
        logger.debug("skipping %s: not UTF-8 text", path)
        return None
    result = apply(content, rules)
    if result.changed:
        write_atomic(path, result.content, lock_dir=lock_dir)
        logger.debug("rewrote %s (%d replacements)", path, result.applied_count)
    return result


def redact_file(
    path: str | os.PathLike[str],
    categories: Mapping[str, bool] | None = None,
    env_keys: Iterable[str] = (),
    lock_dir: str | None = None,
) -> list[str] | None:
    """Redact sensitive data in a file on disk.

    Files named ``.env`` or ``.env.*`` also have their secret values hidden.

    Args:
      path: File to rewrite
      categories: Which categories to redact, as for :func:`redact`
      env_keys: Extra key names to hide in ``.env`` files
      lock_dir: Directory to stage the rewritten file in
    Returns: The categories and keys that matched, or None if the file is
      not UTF-8 text
    """
    try:
        with open(path, encoding="utf-8", newline="") as f:
            original = f.read()
    except UnicodeDecodeError:
        logger.debug("skipping %s: not UTF-8 text", path)
        return None
    content, found = redact(original, categories)
    name = os.path.basename(os.fspath(path))
    if name == ".env" or name.startswith(".env."):
        content, hidden = hide_env_keys(content, env_keys)
        found.extend(hidden)
    if content != original:
        write_atomic(path, content, lock_dir=lock_dir)
        logger.debug("redacted %s: %s", path, ", ".join(found))
    return found
