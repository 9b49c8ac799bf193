"""
File handles used by notebook documents for reading and writing content.
"""

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Protocol, Union


class FileHandle(Protocol):
    """Opaque storage location a document reads from and writes to."""

    path: str

    async def read(self) -> str: ...

    async def write(self, content: str) -> None: ...

    def exists(self) -> bool: ...


class LocalFile:
    """A file on the local disk. Blocking I/O runs in a worker thread."""

    def __init__(self, path: Union[str, Path]):
        self.path = str(path)

    def exists(self) -> bool:
        return os.path.isfile(self.path)

    async def read(self) -> str:
        return await asyncio.to_thread(Path(self.path).read_text, encoding="utf-8")

    async def write(self, content: str) -> None:
        await asyncio.to_thread(self._write, content)

    def _write(self, content: str):
        """Write to a sibling temp file and swap it in with os.replace."""
        path = Path(self.path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def __repr__(self):
        return f"LocalFile({self.path!r})"
