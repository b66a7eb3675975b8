# config.py -- Reading and writing gctm configuration
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

"""Reading and writing gctm configuration.

Configuration uses git config syntax. Settings are read from the ``[gctm]``
and ``[gctm "ai"]`` sections of the repository's ``.git/config`` and then
from ``.gctmconfig`` at the top of the working tree, which takes precedence::

  [gctm]
      commandTimeout = 120
      largeHistoryThreshold = 5000
  [gctm "ai"]
      provider = anthropic
      model = claude-3-haiku-20240307

API keys are only ever read from the environment.
"""

__all__ = [
    "CONFIG_FILENAME",
    "AISettings",
    "Config",
    "ConfigDict",
    "ConfigFile",
    "Settings",
    "StackedConfig",
    "load_settings",
    "save_ai_config",
    "stacked_config",
]

import logging
import os
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import IO

from .file import AtomicFile

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".gctmconfig"

Section = tuple[str, ...]
SectionLike = str | tuple[str, ...]

API_KEY_ENVIRONMENT = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
}
GENERIC_API_KEY_ENVIRONMENT = "AI_API_KEY"


def _normalize_section(section: SectionLike) -> Section:
    if not isinstance(section, tuple):
        section = (section,)
    # Section names are case-insensitive, subsection names are not
    return (section[0].lower(), *section[1:])


class Config:
    """A configuration."""

    def get(self, section: SectionLike, name: str) -> str:
        """Retrieve the contents of a configuration setting.

        Args:
          section: Tuple with section name and optional subsection name
          name: Variable name
        Returns:
          Contents of the setting
        Raises:
          KeyError: if the value is not set
        """
        raise NotImplementedError(self.get)

    def get_boolean(
        self, section: SectionLike, name: str, default: bool | None = None
    ) -> bool | None:
        """Retrieve a configuration setting as boolean.

        Accepts the spellings git accepts: true/false, yes/no, on/off, 1/0.

        Raises:
          ValueError: if the value is not a valid boolean
        """
        try:
            value = self.get(section, name)
        except KeyError:
            return default
        if value.lower() in ("true", "yes", "on", "1"):
            return True
        elif value.lower() in ("false", "no", "off", "0", ""):
            return False
        raise ValueError(f"not a valid boolean string: {value!r}")

    def get_int(
        self, section: SectionLike, name: str, default: int | None = None
    ) -> int | None:
        """Retrieve a configuration setting as an integer.

        A ``k``, ``m`` or ``g`` suffix scales the value by 1024, 1024**2 or
        1024**3, as in git.

        Raises:
          ValueError: if the value is not a valid integer
        """
        try:
            value = self.get(section, name).strip()
        except KeyError:
            return default
        scale = {"k": 1024, "m": 1024**2, "g": 1024**3}.get(value[-1:].lower())
        if scale is not None:
            return int(value[:-1]) * scale
        return int(value)

    def get_float(
        self, section: SectionLike, name: str, default: float | None = None
    ) -> float | None:
        try:
            return float(self.get(section, name))
        except KeyError:
            return default

    def set(self, section: SectionLike, name: str, value: str | bool | int | float) -> None:
        raise NotImplementedError(self.set)

    def items(self, section: SectionLike) -> Iterator[tuple[str, str]]:
        raise NotImplementedError(self.items)

    def sections(self) -> Iterator[Section]:
        raise NotImplementedError(self.sections)

    def has_section(self, name: SectionLike) -> bool:
        return _normalize_section(name) in self.sections()


class ConfigDict(Config):
    """Configuration held in memory."""

    def __init__(self, values: Mapping[Section, Mapping[str, str]] | None = None) -> None:
        self._values: dict[Section, dict[str, str]] = {}
        if values is not None:
            for section, settings in values.items():
                for name, value in settings.items():
                    self.set(section, name, value)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._values!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, self.__class__) and other._values == self._values

    def get(self, section: SectionLike, name: str) -> str:
        return self._values[_normalize_section(section)][name.lower()]

    def set(self, section: SectionLike, name: str, value: str | bool | int | float) -> None:
        if isinstance(value, bool):
            value = "true" if value else "false"
        self._values.setdefault(_normalize_section(section), {})[name.lower()] = str(value)

    def remove(self, section: SectionLike, name: str) -> None:
        """Remove a configuration setting.

        Raises:
          KeyError: If the section or name doesn't exist
        """
        del self._values[_normalize_section(section)][name.lower()]

    def items(self, section: SectionLike) -> Iterator[tuple[str, str]]:
        return iter(self._values.get(_normalize_section(section), {}).items())

    def sections(self) -> Iterator[Section]:
        return iter(self._values.keys())


def _format_string(value: str) -> str:
    if value.startswith((" ", "\t")) or value.endswith((" ", "\t")) or "#" in value or ";" in value:
        return '"' + _escape_value(value) + '"'
    return _escape_value(value)


_ESCAPE_TABLE = {
    "\\": "\\",
    '"': '"',
    "n": "\n",
    "t": "\t",
    "b": "\b",
}
_COMMENT_CHARS = "#;"
_WHITESPACE_CHARS = "\t "


def _parse_string(value: str) -> str:
    value = value.strip()
    ret = []
    whitespace = ""
    in_quotes = False
    i = 0
    while i < len(value):
        c = value[i]
        if c == "\\":
            i += 1
            if i >= len(value):
                # Backslash at end of string - treat as literal backslash
                ret.append(whitespace + "\\")
                whitespace = ""
            elif value[i] in _ESCAPE_TABLE:
                ret.append(whitespace + _ESCAPE_TABLE[value[i]])
                whitespace = ""
            else:
                ret.append(whitespace + "\\")
                whitespace = ""
                i -= 1
        elif c == '"':
            in_quotes = not in_quotes
        elif c in _COMMENT_CHARS and not in_quotes:
            # the rest of the line is a comment
            break
        elif c in _WHITESPACE_CHARS and in_quotes:
            ret.append(whitespace + c)
            whitespace = ""
        elif c in _WHITESPACE_CHARS:
            whitespace += c
        else:
            ret.append(whitespace + c)
            whitespace = ""
        i += 1

    if in_quotes:
        raise ValueError("missing end quote")

    return "".join(ret)


def _escape_value(value: str) -> str:
    value = value.replace("\\", "\\\\")
    value = value.replace("\n", "\\n")
    value = value.replace("\t", "\\t")
    value = value.replace('"', '\\"')
    return value


def _check_variable_name(name: str) -> bool:
    return bool(name) and name[0].isalpha() and all(c.isalnum() or c == "-" for c in name)


def _check_section_name(name: str) -> bool:
    return all(c.isalnum() or c in "-." for c in name)


def _strip_comments(line: str) -> str:
    string_open = False
    for i, character in enumerate(line):
        # Comment characters outside balanced quotes denote comment start
        if character == '"':
            string_open = not string_open
        elif not string_open and character in _COMMENT_CHARS:
            return line[:i]
    return line


def _parse_section_header_line(line: str) -> tuple[Section, str]:
    line = _strip_comments(line).rstrip()
    in_quotes = False
    escaped = False
    for i, c in enumerate(line):
        if escaped:
            escaped = False
            continue
        if c == '"':
            in_quotes = not in_quotes
        if c == "\\":
            escaped = True
        if c == "]" and not in_quotes:
            last = i
            break
    else:
        raise ValueError("expected trailing ]")
    pts = line[1:last].split(" ", 1)
    line = line[last + 1 :]
    if not _check_section_name(pts[0]):
        raise ValueError(f"invalid section name {pts[0]!r}")
    if len(pts) == 2:
        if not (pts[1][:1] == '"' and pts[1][-1:] == '"'):
            raise ValueError(f"Invalid subsection {pts[1]!r}")
        return (pts[0].lower(), pts[1][1:-1]), line
    name, _, subsection = pts[0].partition(".")
    if subsection:
        return (name.lower(), subsection), line
    return (name.lower(),), line


class ConfigFile(ConfigDict):
    """A configuration file in git config syntax."""

    def __init__(self, values: Mapping[Section, Mapping[str, str]] | None = None) -> None:
        super().__init__(values=values)
        self.path: str | None = None

    @classmethod
    def from_file(cls, f: IO[str]) -> "ConfigFile":
        """Read configuration from a file-like object.

        Raises:
          ValueError: if the file is not valid git config syntax
        """
        ret = cls()
        section: Section | None = None
        setting: str | None = None
        continuation: str | None = None
        for lineno, line in enumerate(f.readlines()):
            if lineno == 0 and line.startswith("\ufeff"):
                line = line[1:]
            if setting is None:
                line = line.lstrip()
                if line[:1] == "[":
                    section, line = _parse_section_header_line(line)
                    ret._values.setdefault(section, {})
                if _strip_comments(line).strip() == "":
                    continue
                if section is None:
                    raise ValueError(f"setting {line!r} without section")
                try:
                    setting, value = line.split("=", 1)
                except ValueError:
                    setting = line
                    value = "true"
                setting = setting.strip()
                if not _check_variable_name(setting):
                    raise ValueError(f"invalid variable name {setting!r}")
                continuation = ""
            else:
                value = line
            value = value.rstrip("\r\n")
            if value.endswith("\\") and (len(value) - len(value.rstrip("\\"))) % 2 == 1:
                continuation = (continuation or "") + value[:-1]
                continue
            assert section is not None
            ret.set(section, setting, _parse_string((continuation or "") + value))
            setting = None
            continuation = None
        return ret

    @classmethod
    def from_path(cls, path: str | os.PathLike[str]) -> "ConfigFile":
        """Read configuration from a file on disk."""
        with open(path, encoding="utf-8") as f:
            ret = cls.from_file(f)
        ret.path = os.fspath(path)
        return ret

    def write_to_path(self, path: str | os.PathLike[str] | None = None) -> None:
        """Write configuration to a file on disk."""
        if path is None:
            if self.path is None:
                raise ValueError("No path specified and no default path available")
            path = self.path
        with AtomicFile(path) as f:
            f.write(self.to_string().encode("utf-8"))

    def to_string(self) -> str:
        lines = []
        for section, values in self._values.items():
            if len(section) == 1:
                lines.append(f"[{section[0]}]")
            else:
                lines.append(f'[{section[0]} "{section[1]}"]')
            for key, value in values.items():
                lines.append(f"\t{key} = {_format_string(value)}")
        return "".join(line + "\n" for line in lines)


class StackedConfig(Config):
    """Configuration which reads from multiple config files.

    Backends are consulted in order; the first one that has a value wins.
    """

    def __init__(self, backends: list[Config], writable: ConfigFile | None = None) -> None:
        self.backends = backends
        self.writable = writable

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} for {self.backends!r}>"

    def get(self, section: SectionLike, name: str) -> str:
        for backend in self.backends:
            try:
                return backend.get(section, name)
            except KeyError:
                pass
        raise KeyError(name)

    def set(self, section: SectionLike, name: str, value: str | bool | int | float) -> None:
        if self.writable is None:
            raise NotImplementedError(self.set)
        self.writable.set(section, name, value)

    def sections(self) -> Iterator[Section]:
        seen = set()
        for backend in self.backends:
            for section in backend.sections():
                if section not in seen:
                    seen.add(section)
                    yield section


@dataclass
class AISettings:
    """Settings for commit message suggestions."""

    provider: str = "openai"
    model: str | None = None
    api_key: str | None = field(default=None, repr=False)
    max_tokens: int = 150
    temperature: float = 0.7
    language: str = "en"
    style: str = "conventional"
    timeout: float = 60.0
    custom_instructions: str = ""
    base_url: str | None = None


@dataclass
class Settings:
    """Effective gctm settings for one repository."""

    command_timeout: float = 60.0
    scan_timeout: float = 300.0
    large_history_threshold: int = 10000
    commit_limit: int | None = None
    keep_count: int = 10
    max_age_days: float = 30.0
    create_backup: bool = True
    ai: AISettings = field(default_factory=AISettings)


# (attribute, config name, getter)
_CORE_KEYS = [
    ("command_timeout", "commandTimeout", "get_float"),
    ("scan_timeout", "scanTimeout", "get_float"),
    ("large_history_threshold", "largeHistoryThreshold", "get_int"),
    ("commit_limit", "commitLimit", "get_int"),
    ("keep_count", "keepCount", "get_int"),
    ("max_age_days", "maxAgeDays", "get_float"),
    ("create_backup", "createBackup", "get_boolean"),
]
_AI_KEYS = [
    ("provider", "provider", "get"),
    ("model", "model", "get"),
    ("max_tokens", "maxTokens", "get_int"),
    ("temperature", "temperature", "get_float"),
    ("language", "language", "get"),
    ("style", "style", "get"),
    ("timeout", "timeout", "get_float"),
    ("custom_instructions", "customInstructions", "get"),
    ("base_url", "baseUrl", "get"),
]


def _read_config(path: str) -> ConfigFile | None:
    try:
        return ConfigFile.from_path(path)
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError, ValueError) as e:
        logger.warning("Ignoring unreadable configuration %s: %s", path, e)
        return None


def _apply(config: Config, section: SectionLike, keys: list, target: object) -> None:
    for attr, name, getter in keys:
        try:
            value = getattr(config, getter)(section, name)
        except KeyError:
            continue
        except ValueError as e:
            logger.warning("Ignoring invalid value for %s: %s", name, e)
            continue
        if value is not None:
            setattr(target, attr, value)


def stacked_config(repo_path: str | os.PathLike[str]) -> StackedConfig:
    """Return the configuration stack for a repository, highest precedence first."""
    repo_path = os.fspath(repo_path)
    backends: list[Config] = []
    for path in (
        os.path.join(repo_path, CONFIG_FILENAME),
        os.path.join(repo_path, ".git", "config"),
    ):
        config = _read_config(path)
        if config is not None:
            backends.append(config)
    return StackedConfig(backends)


def load_settings(
    repo_path: str | os.PathLike[str], environ: Mapping[str, str] | None = None
) -> Settings:
    """Load the effective settings for a repository.

    Args:
      repo_path: Top of the working tree
      environ: Environment to read API keys from; defaults to os.environ
    Returns: A Settings instance
    """
    if environ is None:
        environ = os.environ
    config = stacked_config(repo_path)
    settings = Settings()
    _apply(config, "gctm", _CORE_KEYS, settings)
    _apply(config, ("gctm", "ai"), _AI_KEYS, settings.ai)

    provider_key = API_KEY_ENVIRONMENT.get(settings.ai.provider)
    settings.ai.api_key = (
        environ.get(provider_key) if provider_key else None
    ) or environ.get(GENERIC_API_KEY_ENVIRONMENT)
    return settings


def save_ai_config(repo_path: str | os.PathLike[str], ai: AISettings) -> str:
    """Store AI settings in the repository's ``.gctmconfig``.

    The API key is never written.

    Returns: Path of the file written
    """
    path = os.path.join(os.fspath(repo_path), CONFIG_FILENAME)
    config = _read_config(path) or ConfigFile()
    defaults = AISettings()
    for attr, name, _getter in _AI_KEYS:
        value = getattr(ai, attr)
        if value is None or (value == getattr(defaults, attr) and attr != "provider"):
            try:
                config.remove(("gctm", "ai"), name)
            except KeyError:
                pass
            continue
        config.set(("gctm", "ai"), name, value)
    config.write_to_path(path)
    logger.debug("AI configuration saved to %s", path)
    return path

