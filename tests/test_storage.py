"""
Tests for LocalFile.
"""

from unittest.mock import patch

import pytest

from cellbook.storage import LocalFile


class TestLocalFile:
    """Test cases for reading and writing notebook files."""

    @pytest.mark.asyncio
    async def test_write_then_read(self, tmp_path):
        """Writing creates missing parent directories."""
        handle = LocalFile(tmp_path / "nested" / "nb.ipynb")
        assert not handle.exists()

        await handle.write('{"cells": []}')

        assert handle.exists()
        assert await handle.read() == '{"cells": []}'
        assert [p.name for p in (tmp_path / "nested").iterdir()] == ["nb.ipynb"]

    @pytest.mark.asyncio
    async def test_failed_write_keeps_old_content(self, tmp_path):
        path = tmp_path / "nb.ipynb"
        path.write_text("old")
        handle = LocalFile(path)

        with patch("cellbook.storage.os.replace", side_effect=PermissionError("denied")):
            with pytest.raises(PermissionError):
                await handle.write("new")

        assert path.read_text() == "old"
        assert [p.name for p in tmp_path.iterdir()] == ["nb.ipynb"]

    @pytest.mark.asyncio
    async def test_read_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            await LocalFile(tmp_path / "missing.ipynb").read()
