"""
Tests for Workspace and the notebook service.
"""

import json
import logging
from unittest.mock import patch

import pytest

from cellbook.workspace import Workspace

from conftest import FakeDiscovery, FakeProvider, ok_script

PATH = "/notebooks/report.ipynb"
NOTEBOOK = {"cells": [{"cell_type": "code", "source": "print(1)", "metadata": {}}], "metadata": {}}


@pytest.fixture
def workspace(discovery, config, notifications, file_factory, file_store):
    file_store[PATH] = json.dumps(NOTEBOOK)
    workspace = Workspace(discovery, config, notifications=notifications, file_factory=file_factory)
    yield workspace
    workspace.destroy()


class TestEditors:
    """Test cases for opening and tracking editors."""

    @pytest.mark.asyncio
    async def test_open_same_path_twice_shares_document(self, workspace):
        first = await workspace.open_notebook(PATH)
        second = await workspace.open_notebook(PATH)

        assert first is not second
        assert first.document is second.document
        assert first.document.ref_count == 2
        assert workspace.get_active_notebook() is second

    @pytest.mark.asyncio
    async def test_closing_active_editor_activates_previous(self, workspace):
        first = await workspace.open_notebook(PATH)
        second = await workspace.new_notebook()

        second.destroy()

        assert workspace.get_active_notebook() is first
        assert workspace.editors == [first]

    @pytest.mark.asyncio
    async def test_new_notebook_is_untitled(self, workspace):
        editor = await workspace.new_notebook()
        assert editor.get_title() == "Untitled.ipynb"
        assert editor.is_modified()

    @pytest.mark.asyncio
    async def test_restore_editor(self, workspace):
        editor = await workspace.new_notebook()
        editor.update_cell_source(0, "draft")
        state = editor.serialize()

        restored = await workspace.restore_editor(state)

        assert restored.document.cells[0].source == "draft"
        assert workspace.get_active_notebook() is restored

    @pytest.mark.asyncio
    async def test_restore_empty_state(self, workspace):
        assert await workspace.restore_editor({}) is None
        assert await workspace.restore_editor({"deserializer": "NotebookEditor"}) is None


class TestKernels:
    """Test cases for kernel access through the workspace."""

    @pytest.mark.asyncio
    async def test_run_code_reuses_kernel(self, workspace, discovery):
        discovery.provider_factory = lambda: FakeProvider(ok_script("2\n"))
        outputs = []

        result = await workspace.run_code("print(2)", on_output=outputs.append)
        await workspace.run_code("print(2)")

        assert result.status == "ok"
        assert outputs[0]["text"] == "2\n"
        assert len(discovery.started) == 1
        assert discovery.providers[0].executed == ["print(2)", "print(2)"]

    @pytest.mark.asyncio
    async def test_show_kernel_picker_uses_chooser(self, config, notifications, file_factory):
        discovery = FakeDiscovery([
            {"name": "python3", "display_name": "Python 3", "language": "python"},
            {"name": "venv", "display_name": "Python (venv)", "language": "python"},
        ])
        offered = []

        def chooser(specs):
            offered.append([spec.name for spec in specs])
            return specs[1]

        workspace = Workspace(discovery, config, notifications=notifications,
                              chooser=chooser, file_factory=file_factory)
        editor = await workspace.new_notebook()

        assert await workspace.show_kernel_picker()

        assert offered == [["python3", "venv"]]
        assert editor.get_kernel().name == "venv"
        workspace.destroy()

    @pytest.mark.asyncio
    async def test_show_kernel_picker_without_notebook(self, workspace):
        assert not await workspace.show_kernel_picker()

    @pytest.mark.asyncio
    async def test_service(self, workspace, discovery):
        editor = await workspace.open_notebook(PATH)
        service = workspace.provide_service()
        statuses = []
        service.on_did_change_kernel_status(statuses.append)

        result = await service.run_code("1")
        discovery.providers[0].set_execution_state("busy")

        assert service.get_active_notebook() is editor
        assert service.get_kernel_manager() is workspace.kernel_manager
        assert service.get_document_registry().get_document(PATH) is editor.document
        assert result.success
        assert statuses == [{"kernel_name": "python3", "status": "busy"}]


class TestDestroy:
    """Test cases for workspace teardown."""

    @pytest.mark.asyncio
    async def test_teardown_order(self, workspace, discovery):
        editor = await workspace.open_notebook(PATH)
        document = editor.document
        await editor.run_cell()
        order = []
        editor.on_did_destroy(lambda: order.append("editor"))
        document.on_did_destroy(lambda: order.append("document"))
        workspace.kernel_manager.on_did_terminate_kernel(lambda name: order.append("kernel"))

        workspace.destroy()

        assert order == ["editor", "document", "kernel"]
        assert discovery.providers[0].shut_down
        assert workspace.get_active_notebook() is None
        assert workspace.registry.documents == {}

    @pytest.mark.asyncio
    async def test_teardown_continues_after_failure(self, workspace, discovery, caplog):
        await workspace.run_code("1")

        with patch.object(workspace.registry, "destroy", side_effect=RuntimeError("boom")):
            with caplog.at_level(logging.ERROR, logger="cellbook.workspace"):
                workspace.destroy()

        assert "Error destroying document registry" in caplog.text
        assert discovery.providers[0].shut_down
