"""
Tests for the Cell model.
"""

from cellbook.cell import Cell, CellStatus, CellType


class TestCellCreation:
    """Test cases for creating cells."""

    def test_defaults(self):
        cell = Cell()
        assert cell.type == CellType.CODE
        assert cell.source == ""
        assert cell.outputs == []
        assert cell.execution_count is None
        assert cell.status == CellStatus.IDLE
        assert not cell.running

    def test_ids_are_unique(self):
        assert Cell().id != Cell().id


class TestCellState:
    """Test cases for type, status and output changes."""

    def test_set_type_to_markdown_drops_outputs(self):
        cell = Cell(outputs=[{"output_type": "stream", "name": "stdout", "text": "x"}], execution_count=3)

        assert cell.set_type("markdown")
        assert cell.type == CellType.MARKDOWN
        assert cell.outputs == []
        assert cell.execution_count is None

    def test_set_type_rejects_unknown(self):
        cell = Cell()
        assert not cell.set_type("bogus")
        assert cell.type == CellType.CODE

    def test_set_running_records_execution_time(self):
        cell = Cell()
        cell.set_running(True)
        assert cell.running
        assert cell.status == CellStatus.RUNNING
        assert cell.get_formatted_execution_time() is not None

        cell.set_running(False)
        assert not cell.running
        assert cell.status == CellStatus.IDLE
        assert cell.execution_time is not None

    def test_add_output_merges_streams(self):
        cell = Cell()
        cell.add_output({"output_type": "stream", "name": "stdout", "text": "a"})
        cell.add_output({"output_type": "stream", "name": "stdout", "text": "b"})

        assert cell.outputs == [{"output_type": "stream", "name": "stdout", "text": "ab"}]
        assert cell.has_output()
        assert cell.get_output_text() == "ab"

    def test_clear_outputs(self):
        cell = Cell(execution_count=2)
        cell.add_output({"output_type": "stream", "name": "stdout", "text": "a"})
        cell.set_status(CellStatus.ERROR)

        cell.clear_outputs()

        assert cell.outputs == []
        assert cell.execution_count is None
        assert cell.status == CellStatus.IDLE

    def test_toggles(self):
        cell = Cell()
        cell.toggle_output_visibility()
        cell.toggle_input_visibility()
        assert not cell.output_visible
        assert not cell.input_visible


class TestCellEvents:
    """Test cases for cell observers."""

    def test_change_and_status_notifications(self):
        cell = Cell()
        changes, statuses = [], []
        cell.on_did_change(lambda: changes.append(True))
        cell.on_did_change_status(statuses.append)

        cell.set_source("x = 1")
        cell.set_running(True)
        cell.set_running(False)

        assert len(changes) == 1
        assert statuses == [CellStatus.RUNNING, CellStatus.IDLE]

    def test_destroy_stops_notifications(self):
        cell = Cell()
        changes = []
        cell.on_did_change(lambda: changes.append(True))
        cell.destroy()
        cell.set_source("y")
        assert changes == []


class TestCellSerialization:
    """Test cases for the on-disk cell shape."""

    def test_code_cell_to_json(self):
        cell = Cell(id="c1", source="a = 1\nb = 2\n", execution_count=4)
        cell.add_output({"output_type": "stream", "name": "stdout", "text": "hi\n"})

        data = cell.to_json()

        assert data == {
            "id": "c1",
            "cell_type": "code",
            "metadata": {},
            "source": ["a = 1\n", "b = 2\n"],
            "execution_count": 4,
            "outputs": [{"output_type": "stream", "name": "stdout", "text": ["hi\n"]}],
        }

    def test_markdown_cell_has_no_outputs_key(self):
        data = Cell(type=CellType.MARKDOWN, source="# Title").to_json()
        assert "outputs" not in data
        assert "execution_count" not in data
        assert data["source"] == ["# Title"]

    def test_from_json_round_trip(self):
        original = Cell(id="c2", source="print(1)\n", execution_count=1, metadata={"tags": ["t"]})
        original.add_output({"output_type": "stream", "name": "stdout", "text": "1\n"})

        restored = Cell.from_json(original.to_json())

        assert restored.id == "c2"
        assert restored.source == original.source
        assert restored.outputs == original.outputs
        assert restored.execution_count == 1
        assert restored.metadata == {"tags": ["t"]}

    def test_from_json_fresh_gets_new_identity(self):
        data = Cell(id="c3", source="x", execution_count=5).to_json()
        copy = Cell.from_json(data, fresh=True)

        assert copy.id != "c3"
        assert copy.execution_count is None
        assert copy.source == "x"

    def test_from_json_unknown_type_falls_back_to_code(self):
        cell = Cell.from_json({"cell_type": "widget", "source": "x"})
        assert cell.type == CellType.CODE

    def test_from_json_markdown_ignores_outputs(self):
        cell = Cell.from_json({
            "cell_type": "markdown",
            "source": ["# a"],
            "outputs": [{"output_type": "stream", "name": "stdout", "text": "x"}],
        })
        assert cell.outputs == []
