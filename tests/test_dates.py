# test_dates.py -- Tests for date planning
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

"""Tests for gctm.dates."""

import random
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from gctm.dates import (
    JITTER_MINUTES,
    analyze_commit_days,
    analyze_commit_hours,
    filter_commits_after,
    filter_commits_before,
    filter_commits_between,
    format_for_git,
    generate_date_range,
    parse_date,
    sort_commits_by_date,
    to_git_date,
    validate_date_range,
)

from . import TestCase


@dataclass
class Dated:
    name: str
    date: datetime


UTC = timezone.utc


class ParseDateTests(TestCase):
    def test_formats(self) -> None:
        self.assertEqual(datetime(2023, 1, 2), parse_date("2023-01-02"))
        self.assertEqual(datetime(2023, 1, 2), parse_date(date(2023, 1, 2)))
        self.assertEqual(
            datetime(2023, 1, 2, 3, 4, tzinfo=UTC), parse_date("2023-01-02T03:04:00+00:00")
        )

    def test_invalid(self) -> None:
        with self.assertRaises(ValueError) as cm:
            parse_date("01/02/2023")
        self.assertIn("YYYY-MM-DD", str(cm.exception))
        self.assertRaises(TypeError, parse_date, 20230102)

    def test_validate_range(self) -> None:
        self.assertTrue(validate_date_range("2023-01-01", "2023-01-01"))
        self.assertTrue(validate_date_range("2023-01-01", "2023-02-01"))
        self.assertFalse(validate_date_range("2023-02-01", "2023-01-01"))
        self.assertFalse(validate_date_range("garbage", "2023-01-01"))


class GenerateDateRangeTests(TestCase):
    def test_even_spread(self) -> None:
        dates = generate_date_range("2023-01-01", "2023-01-03", 3)
        self.assertEqual(
            [datetime(2023, 1, 1), datetime(2023, 1, 2), datetime(2023, 1, 3)], dates
        )

    def test_single(self) -> None:
        self.assertEqual(
            [datetime(2023, 1, 1)], generate_date_range("2023-01-01", "2023-01-05", 1)
        )

    def test_zero(self) -> None:
        self.assertEqual([], generate_date_range("2023-01-01", "2023-01-05", 0))

    def test_start_after_end(self) -> None:
        with self.assertRaises(ValueError) as cm:
            generate_date_range("2023-02-01", "2023-01-01", 3)
        self.assertEqual("Start date cannot be after end date.", str(cm.exception))

    def test_jitter_non_decreasing(self) -> None:
        rng = random.Random(42)
        dates = generate_date_range(
            "2023-01-01", "2023-01-01", 20, randomize=True, rng=rng
        )
        self.assertEqual(sorted(dates), dates)
        base = datetime(2023, 1, 1)
        for d in dates:
            self.assertLessEqual(abs(d - base), timedelta(minutes=JITTER_MINUTES))

    def test_random_within_range(self) -> None:
        rng = random.Random(1)
        dates = generate_date_range(
            "2023-01-01", "2023-01-31", 50, preserve_order=False, rng=rng
        )
        self.assertEqual(50, len(dates))
        for d in dates:
            self.assertTrue(datetime(2023, 1, 1) <= d <= datetime(2023, 1, 31))


class GitDateTests(TestCase):
    def test_format_for_git(self) -> None:
        dt = datetime(2023, 1, 2, 3, 4, 5, tzinfo=timezone(timedelta(hours=2)))
        self.assertEqual("2023-01-02 03:04:05 +0200", format_for_git(dt))

    def test_to_git_date(self) -> None:
        self.assertTrue(to_git_date("2023-01-02").startswith("2023-01-02 00:00:00 "))
        self.assertEqual("2 weeks ago", to_git_date("2 weeks ago"))
        self.assertEqual(
            "2023-01-02 00:00:00 +0000",
            to_git_date(datetime(2023, 1, 2, tzinfo=UTC)),
        )

    def test_to_git_date_rejects(self) -> None:
        self.assertRaises(ValueError, to_git_date, "")
        self.assertRaises(ValueError, to_git_date, "2023-01-01\n--all")


class CommitFilterTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.commits = [
            Dated("a", datetime(2023, 1, 1, 9, tzinfo=UTC)),
            Dated("b", datetime(2023, 1, 5, 14, tzinfo=UTC)),
            Dated("c", datetime(2023, 1, 5, 9, tzinfo=UTC)),
        ]

    def names(self, commits) -> list[str]:
        return [c.name for c in commits]

    def test_between_inclusive(self) -> None:
        start = datetime(2023, 1, 1, 9, tzinfo=UTC)
        end = datetime(2023, 1, 5, 9, tzinfo=UTC)
        self.assertEqual(
            ["a", "c"], self.names(filter_commits_between(self.commits, start, end))
        )

    def test_before_after(self) -> None:
        bound = datetime(2023, 1, 5, 9, tzinfo=UTC)
        self.assertEqual(["a"], self.names(filter_commits_before(self.commits, bound)))
        self.assertEqual(["b"], self.names(filter_commits_after(self.commits, bound)))

    def test_sort(self) -> None:
        self.assertEqual(["a", "c", "b"], self.names(sort_commits_by_date(self.commits)))
        self.assertEqual(
            ["b", "c", "a"], self.names(sort_commits_by_date(self.commits, "desc"))
        )
        self.assertRaises(ValueError, sort_commits_by_date, self.commits, "sideways")

    def test_analyze(self) -> None:
        self.assertEqual(
            {"2023-01-01": 1, "2023-01-05": 2}, analyze_commit_days(self.commits)
        )
        self.assertEqual({9: 2, 14: 1}, analyze_commit_hours(self.commits))
