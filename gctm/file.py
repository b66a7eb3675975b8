# file.py -- Safe writes of files in the working tree
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

"""Safe writes of files gctm produces or rewrites.

Files are written to a sibling ``.lock`` file which is renamed over the
target when the write completes, so readers either see the old content or
the new content, never a partial file.
"""

__all__ = [
    "FileLocked",
    "AtomicFile",
    "ensure_dir_exists",
    "write_atomic",
]

import os
import tempfile
import warnings
from types import TracebackType
from typing import IO


class FileLocked(Exception):
    """File is already locked."""

    def __init__(self, filename: str, lockfilename: str) -> None:
        """Initialize FileLocked.

        Args:
          filename: Name of the file that is locked
          lockfilename: Name of the lock file
        """
        self.filename = filename
        self.lockfilename = lockfilename
        super().__init__(filename, lockfilename)


def ensure_dir_exists(dirname: str | os.PathLike[str]) -> None:
    """Ensure a directory exists, creating if necessary."""
    try:
        os.makedirs(dirname)
    except FileExistsError:
        pass


class AtomicFile:
    """File that is written through a lock file and renamed into place.

    On successful close the lock file is renamed over the target. If an
    exception escapes the ``with`` block, the lock file is removed and the
    target is left untouched.

    If the target already exists its permission bits are carried over to
    the new file.
    """

    def __init__(
        self,
        filename: str | os.PathLike[str],
        mask: int = 0o644,
        fsync: bool = True,
        lock_dir: str | None = None,
    ) -> None:
        """Open a file for writing.

        Args:
          filename: Target path
          mask: Permission bits for a new file
          fsync: Whether to fsync before renaming
          lock_dir: Directory on the same filesystem to write the temporary
            file in; defaults to a sibling of the target
        """
        self._filename = os.fspath(filename)
        self._fsync = fsync
        try:
            mask = os.stat(self._filename).st_mode & 0o7777
        except FileNotFoundError:
            pass
        if lock_dir is not None:
            fd, self._lockfilename = tempfile.mkstemp(
                prefix=os.path.basename(self._filename) + ".", suffix=".lock", dir=lock_dir
            )
        else:
            self._lockfilename = self._filename + ".lock"
            try:
                fd = os.open(
                    self._lockfilename,
                    os.O_RDWR | os.O_CREAT | os.O_EXCL | getattr(os, "O_BINARY", 0),
                    mask,
                )
            except FileExistsError as exc:
                raise FileLocked(self._filename, self._lockfilename) from exc
        if mask != 0o644 or lock_dir is not None:
            # O_CREAT modes are filtered through the umask
            os.chmod(self._lockfilename, mask)
        self._file: IO[bytes] = os.fdopen(fd, "wb")
        self._closed = False

    def write(self, data: bytes) -> int:
        return self._file.write(data)

    def abort(self) -> None:
        """Close and discard the lock file without touching the target."""
        if self._closed:
            return
        self._file.close()
        try:
            os.remove(self._lockfilename)
        except FileNotFoundError:
            pass
        self._closed = True

    def close(self) -> None:
        """Close this file, moving the lock file over the target.

        Raises:
          OSError: if the target could not be replaced; the lock file is
            removed in that case
        """
        if self._closed:
            return
        self._file.flush()
        if self._fsync:
            os.fsync(self._file.fileno())
        self._file.close()
        try:
            os.replace(self._lockfilename, self._filename)
        finally:
            self.abort()

    @property
    def closed(self) -> bool:
        return self._closed

    def __del__(self) -> None:
        if not getattr(self, "_closed", True):
            warnings.warn(f"unclosed {self!r}", ResourceWarning, stacklevel=2)
            self.abort()

    def __enter__(self) -> "AtomicFile":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            self.abort()
        else:
            self.close()


def write_atomic(
    filename: str | os.PathLike[str],
    data: bytes | str,
    lock_dir: str | None = None,
) -> None:
    """Replace the contents of a file in one step.

    Args:
      filename: Target path
      data: New contents; text is encoded as UTF-8
      lock_dir: Directory to stage the new contents in
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    with AtomicFile(filename, lock_dir=lock_dir) as f:
        f.write(data)
