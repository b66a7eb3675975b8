# dates.py -- Planning of commit dates
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

"""Planning of new commit dates.

Dates given as plain ``YYYY-MM-DD`` strings or naive datetimes are taken to
be in local time, as git does for dates without a timezone.
"""

__all__ = [
    "DATE_FORMAT",
    "analyze_commit_days",
    "analyze_commit_hours",
    "filter_commits_after",
    "filter_commits_before",
    "filter_commits_between",
    "format_for_git",
    "generate_date_range",
    "parse_date",
    "sort_commits_by_date",
    "to_git_date",
    "validate_date_range",
]

import random
from collections import Counter
from collections.abc import Iterable
from datetime import date, datetime, timedelta
from typing import Protocol, TypeVar

DATE_FORMAT = "%Y-%m-%d"
GIT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S %z"

JITTER_MINUTES = 30


class _Dated(Protocol):
    date: datetime


T = TypeVar("T", bound=_Dated)


def parse_date(value: str | date | datetime) -> datetime:
    """Convert a date argument to a datetime.

    Args:
      value: ``YYYY-MM-DD`` or ISO 8601 string, date or datetime
    Returns: A datetime; dates map to midnight
    Raises:
      ValueError: if a string cannot be parsed
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        raise TypeError(f"expected a date, got {type(value).__name__}")
    try:
        return datetime.strptime(value.strip(), DATE_FORMAT)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value.strip())
    except ValueError:
        raise ValueError(
            f"Invalid date {value!r}. Please use YYYY-MM-DD format."
        ) from None


def _aware(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.astimezone()
    return dt


def validate_date_range(start: str | date | datetime, end: str | date | datetime) -> bool:
    """Check that both ends parse and that start is not after end."""
    try:
        return _aware(parse_date(start)) <= _aware(parse_date(end))
    except (TypeError, ValueError):
        return False


def generate_date_range(
    start: str | date | datetime,
    end: str | date | datetime,
    count: int,
    preserve_order: bool = True,
    randomize: bool = False,
    rng: random.Random | None = None,
) -> list[datetime]:
    """Spread ``count`` dates over an interval.

    With ``preserve_order`` the dates are spaced evenly from start to end at
    minute resolution, optionally moved by up to half an hour either way,
    and never decrease. Otherwise each date is picked at random within the
    interval.

    Raises:
      ValueError: if a date cannot be parsed or start is after end
    """
    start_dt = parse_date(start)
    end_dt = parse_date(end)
    if _aware(start_dt) > _aware(end_dt):
        raise ValueError("Start date cannot be after end date.")
    if count <= 0:
        return []
    if rng is None:
        rng = random.Random()

    total_minutes = int((end_dt - start_dt).total_seconds() // 60)
    dates: list[datetime] = []
    if preserve_order:
        for i in range(count):
            progress = i / max(count - 1, 1)
            target = start_dt + timedelta(minutes=int(total_minutes * progress))
            if randomize:
                target += timedelta(
                    minutes=rng.randint(-JITTER_MINUTES, JITTER_MINUTES - 1)
                )
                if dates and target < dates[-1]:
                    target = dates[-1]
            dates.append(target)
    else:
        for _ in range(count):
            minutes = rng.randrange(total_minutes) if total_minutes > 0 else 0
            dates.append(start_dt + timedelta(minutes=minutes))
    return dates


def format_for_git(dt: datetime) -> str:
    """Format a datetime as ``YYYY-MM-DD HH:MM:SS +ZZZZ``."""
    return _aware(dt).strftime(GIT_DATE_FORMAT)


def to_git_date(value: str | date | datetime) -> str:
    """Convert a new commit date to the form passed to git.

    Strings other than ``YYYY-MM-DD`` are passed through for git to parse.

    Raises:
      ValueError: if value is an empty string or contains a line break
    """
    if isinstance(value, str):
        value = value.strip()
        if not value or "\n" in value or "\0" in value:
            raise ValueError(f"Invalid date {value!r}")
        try:
            return format_for_git(datetime.strptime(value, DATE_FORMAT))
        except ValueError:
            return value
    return format_for_git(parse_date(value))


def filter_commits_before(commits: Iterable[T], before: str | date | datetime) -> list[T]:
    bound = _aware(parse_date(before))
    return [c for c in commits if _aware(c.date) < bound]


def filter_commits_after(commits: Iterable[T], after: str | date | datetime) -> list[T]:
    bound = _aware(parse_date(after))
    return [c for c in commits if _aware(c.date) > bound]


def filter_commits_between(
    commits: Iterable[T], start: str | date | datetime, end: str | date | datetime
) -> list[T]:
    """Return the commits dated within [start, end], both ends inclusive."""
    lower = _aware(parse_date(start))
    upper = _aware(parse_date(end))
    return [c for c in commits if lower <= _aware(c.date) <= upper]


def sort_commits_by_date(commits: Iterable[T], order: str = "asc") -> list[T]:
    if order not in ("asc", "desc"):
        raise ValueError(f"order must be 'asc' or 'desc', not {order!r}")
    return sorted(commits, key=lambda c: _aware(c.date), reverse=order == "desc")


def analyze_commit_days(commits: Iterable[_Dated]) -> dict[str, int]:
    """Count commits per calendar day (``YYYY-MM-DD``)."""
    return dict(Counter(c.date.strftime(DATE_FORMAT) for c in commits))


def analyze_commit_hours(commits: Iterable[_Dated]) -> dict[int, int]:
    """Count commits per hour of the day."""
    return dict(Counter(c.date.hour for c in commits))
