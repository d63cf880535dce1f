from __future__ import annotations

import errno
import mmap
import stat
from pathlib import Path
from typing import BinaryIO, Optional, Union


class ByteSource:
    """Random-access byte provider backing a parsed File."""

    def __init__(self) -> None:
        self._data: Union[bytes, bytearray, memoryview, mmap.mmap] = b""
        self._closed = False

    @property
    def data(self):
        return self._data

    @property
    def size(self) -> int:
        return len(self._data)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True


class BytesSource(ByteSource):
    def __init__(self, data: Union[bytes, bytearray, memoryview]) -> None:
        super().__init__()
        self._data = data


class HandleSource(ByteSource):
    """Reads a caller-owned binary handle once; never closes it."""

    def __init__(self, handle: BinaryIO, *, max_bytes: Optional[int] = None) -> None:
        super().__init__()
        if hasattr(handle, "seek"):
            handle.seek(0)
        self._data = handle.read() if max_bytes is None else handle.read(max_bytes)


class PathSource(ByteSource):
    """Owns the file handle opened from ``path`` and releases it on close()."""

    def __init__(self, path: Union[str, Path]) -> None:
        super().__init__()
        p = Path(path)
        st = p.stat()
        if stat.S_ISDIR(st.st_mode):
            raise IsADirectoryError(errno.EISDIR, "is a directory", str(p))
        if not stat.S_ISREG(st.st_mode):
            raise OSError(errno.EINVAL, "not a regular file", str(p))

        self.path = p
        self._fh: Optional[BinaryIO] = p.open("rb")
        self._map: Optional[mmap.mmap] = None
        if st.st_size > 0:
            try:
                self._map = mmap.mmap(self._fh.fileno(), 0, access=mmap.ACCESS_READ)
            except (OSError, ValueError):
                self._fh.close()
                self._fh = None
                raise
            self._data = self._map

    def close(self) -> None:
        if self._closed:
            return
        if self._map is not None:
            self._map.close()
            self._map = None
        if self._fh is not None:
            self._fh.close()
            self._fh = None
        self._data = b""
        super().close()
