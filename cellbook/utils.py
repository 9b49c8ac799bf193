"""
Utility functions for cellbook.
"""

import json
from typing import Any

from rich.syntax import Syntax
from rich.text import Text

from cellbook.outputs import join_source


def _preferred_text(data: dict[str, Any]) -> str:
    """Pick the most readable text representation from a MIME bundle."""
    if "text/html" in data:
        return join_source(data["text/html"])
    if "text/markdown" in data:
        return join_source(data["text/markdown"])
    if "application/json" in data:
        val = data["application/json"]
        return json.dumps(val, indent=2) if not isinstance(val, str) else val
    if "text/plain" in data:
        return join_source(data["text/plain"])
    return str(data)


def format_rich_output(output: dict[str, Any]):
    """
    Format an output dictionary as a Rich renderable.

    Args:
        output: Output dictionary in notebook shape

    Returns:
        Rich renderable object for console display
    """
    output_type = output.get("output_type", "")

    if output_type == "stream":
        text = join_source(output.get("text", ""))
        if output.get("name") == "stderr":
            return Text(text.rstrip("\n"), style="yellow")
        return Text(text.rstrip("\n"))

    elif output_type == "execute_result":
        data = output.get("data", {})
        if "text/html" in data or "text/markdown" in data:
            return Text(_preferred_text(data), style="cyan")
        if "application/json" in data:
            return Syntax(_preferred_text(data), "json", theme="monokai", line_numbers=False)
        return Syntax(join_source(data.get("text/plain", "")), "python", theme="monokai", line_numbers=False)

    elif output_type == "error":
        error_text = Text()
        error_text.append(f"{output.get('ename', 'Error')}", style="bold red")
        error_text.append(f": {output.get('evalue', '')}", style="red")
        for tb_line in output.get("traceback", []):
            if isinstance(tb_line, str):
                error_text.append(f"\n{tb_line}", style="dim red")
        return error_text

    elif output_type == "display_data":
        return Text(_preferred_text(output.get("data", {})), style="cyan")

    return Text(str(output), style="dim")


def get_cell_type_icon(cell_type) -> str:
    """Get a short label for the cell type."""
    if hasattr(cell_type, "value"):
        cell_type = cell_type.value
    return {"code": "py", "markdown": "md"}.get(cell_type, "raw")


def get_cell_status(cell) -> tuple[str, str]:
    """
    Get status indicator and style for a cell.

    Returns:
        Tuple of (indicator_string, rich_style)
    """
    if cell.running:
        return ("..", "yellow")
    if cell.status == "error" or any(o.get("output_type") == "error" for o in cell.outputs):
        return ("err", "red")
    if cell.outputs or cell.execution_count is not None:
        return ("ok", "green")
    return ("--", "dim")
