"""
Tests for display helpers in cellbook.utils.
"""

from rich.syntax import Syntax
from rich.text import Text

from cellbook.cell import Cell, CellStatus, CellType
from cellbook.utils import format_rich_output, get_cell_status, get_cell_type_icon


class TestFormatRichOutput:
    """Test cases for format_rich_output function."""

    def test_stderr_is_yellow(self):
        result = format_rich_output({"output_type": "stream", "name": "stderr", "text": "warn\n"})
        assert isinstance(result, Text)
        assert result.plain == "warn"
        assert result.style == "yellow"

    def test_execute_result_plain_is_syntax(self):
        result = format_rich_output({"output_type": "execute_result", "data": {"text/plain": "42"}})
        assert isinstance(result, Syntax)

    def test_error_includes_traceback(self):
        result = format_rich_output({
            "output_type": "error",
            "ename": "ValueError",
            "evalue": "bad",
            "traceback": ["line 1", "line 2"],
        })
        assert result.plain == "ValueError: bad\nline 1\nline 2"

    def test_display_data_prefers_html(self):
        result = format_rich_output({
            "output_type": "display_data",
            "data": {"text/plain": "<DataFrame>", "text/html": "<table></table>"},
        })
        assert result.plain == "<table></table>"

    def test_execute_result_json_is_syntax(self):
        result = format_rich_output({"output_type": "execute_result", "data": {"application/json": {"a": 1}}})
        assert isinstance(result, Syntax)
        assert result.code == '{\n  "a": 1\n}'


class TestCellHelpers:
    """Test cases for cell display helpers."""

    def test_cell_type_icon(self):
        assert get_cell_type_icon(CellType.CODE) == "py"
        assert get_cell_type_icon("markdown") == "md"
        assert get_cell_type_icon("raw") == "raw"

    def test_status_of_new_cell(self):
        assert get_cell_status(Cell()) == ("--", "dim")

    def test_status_while_running(self):
        cell = Cell()
        cell.set_running(True)
        assert get_cell_status(cell) == ("..", "yellow")

    def test_status_after_error(self):
        cell = Cell()
        cell.set_status(CellStatus.ERROR)
        assert get_cell_status(cell) == ("err", "red")

    def test_status_after_success(self):
        cell = Cell(execution_count=1)
        assert get_cell_status(cell) == ("ok", "green")
