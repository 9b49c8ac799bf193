"""
Tests for NotebookDocumentRegistry.
"""

import asyncio
import json
from unittest.mock import patch

import pytest

from cellbook.document import NotebookDocument
from cellbook.registry import NotebookDocumentRegistry, normalize_path

PATH = "/notebooks/shared.ipynb"
NOTEBOOK = {"cells": [{"cell_type": "code", "source": "1 + 1", "metadata": {}}], "metadata": {}}


@pytest.fixture
def registry(kernel_manager, config, notifications, file_factory, file_store):
    file_store[PATH] = json.dumps(NOTEBOOK)
    return NotebookDocumentRegistry(kernel_manager, config, notifications, file_factory)


class TestNotebookDocumentRegistry:
    """Test cases for document sharing by path."""

    @pytest.mark.asyncio
    async def test_same_path_same_document(self, registry):
        first = await registry.get_or_create_document(PATH)
        second = await registry.get_or_create_document("/notebooks/../notebooks/shared.ipynb")

        assert first is second
        assert first.cells[0].source == "1 + 1"
        assert registry.has_document(PATH)
        assert registry.get_documents() == [first]

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_load(self, registry):
        first, second = await asyncio.gather(
            registry.get_or_create_document(PATH),
            registry.get_or_create_document(PATH),
        )
        assert first is second
        assert first.is_loaded()

    @pytest.mark.asyncio
    async def test_destroyed_document_leaves_registry(self, registry):
        document = await registry.get_or_create_document(PATH)

        document.destroy()

        assert not registry.has_document(PATH)
        assert (await registry.get_or_create_document(PATH)) is not document

    @pytest.mark.asyncio
    async def test_set_path_rekeys(self, registry):
        document = await registry.get_or_create_document(PATH)

        document.set_path("/notebooks/renamed.ipynb")

        assert registry.get_document(PATH) is None
        assert registry.get_document("/notebooks/renamed.ipynb") is document

    @pytest.mark.asyncio
    async def test_untitled_documents_are_keyed_on_save_as(self, registry):
        first = await registry.create_untitled_document()
        second = await registry.create_untitled_document()

        assert first is not second
        assert registry.get_documents() == []
        assert first.is_modified()

        first.set_path("/notebooks/new.ipynb")
        assert registry.get_document("/notebooks/new.ipynb") is first

    @pytest.mark.asyncio
    async def test_create_from_data(self, registry):
        document = await registry.create_document_from_data(NOTEBOOK, "/notebooks/draft.ipynb")

        assert document.is_modified()
        assert registry.get_document("/notebooks/draft.ipynb") is document
        assert document.file_path == normalize_path("/notebooks/draft.ipynb")

    @pytest.mark.asyncio
    async def test_create_from_data_prefers_open_document(self, registry):
        open_document = await registry.get_or_create_document(PATH)

        restored = await registry.create_document_from_data({"cells": []}, PATH)

        assert restored is open_document
        assert restored.cells[0].source == "1 + 1"

    @pytest.mark.asyncio
    async def test_malformed_file_still_opens(self, registry, file_store, notifications):
        file_store[PATH] = json.dumps({"metadata": "abc", "cells": []})

        first = await registry.get_or_create_document(PATH)
        second = await asyncio.wait_for(registry.get_or_create_document(PATH), 1)

        assert first is second
        assert first.is_loaded()
        assert notifications.notifications[-1].message == "Failed to load notebook"

    @pytest.mark.asyncio
    async def test_failed_load_leaves_registry(self, registry):
        with patch.object(NotebookDocument, "load", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                await registry.get_or_create_document(PATH)

        assert not registry.has_document(PATH)
        document = await asyncio.wait_for(registry.get_or_create_document(PATH), 1)
        assert document.cells[0].source == "1 + 1"

    @pytest.mark.asyncio
    async def test_create_from_bad_data_still_opens(self, registry, notifications):
        draft = "/notebooks/draft.ipynb"
        restored = await registry.create_document_from_data(
            {"cells": [{"cell_type": "code", "outputs": 5}]}, draft
        )

        reopened = await asyncio.wait_for(registry.get_or_create_document(draft), 1)

        assert reopened is restored
        assert restored.is_loaded()
        assert notifications.notifications[-1].message == "Failed to restore notebook"

    @pytest.mark.asyncio
    async def test_destroy(self, registry):
        document = await registry.get_or_create_document(PATH)
        registry.destroy()
        assert document.destroyed
        assert registry.documents == {}

    def test_normalize_path(self, tmp_path):
        path = str(tmp_path / "a" / ".." / "b.ipynb")
        assert normalize_path(path) == str(tmp_path / "b.ipynb")
