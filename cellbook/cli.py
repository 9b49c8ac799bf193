"""
CLI interface for cellbook with Rich output.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.status import Status
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from cellbook.cell import Cell, CellType
from cellbook.config import CellbookConfig, load_config
from cellbook.errors import NotebookError
from cellbook.ipython_kernel import IPythonKernelDiscovery
from cellbook.kernel import KernelSpec
from cellbook.utils import format_rich_output, get_cell_status, get_cell_type_icon
from cellbook.workspace import Workspace


console = Console()


def choose_kernel(specs: list[KernelSpec]) -> Optional[KernelSpec]:
    """Ask on the console which kernel to use; an empty answer declines."""
    table = Table(title="Available Kernels", border_style="blue")
    table.add_column("#", style="bold cyan", justify="right")
    table.add_column("Name", style="white")
    table.add_column("Language", style="dim")
    for i, spec in enumerate(specs):
        table.add_row(str(i), spec.display_name, spec.language or "")
    console.print(table)

    answer = Prompt.ask("Kernel", choices=[str(i) for i in range(len(specs))] + [""], default="")
    if answer == "":
        return None
    return specs[int(answer)]


def render_cell(index: int, cell: Cell):
    """Print one cell and its outputs."""
    status_char, status_style = get_cell_status(cell)
    type_icon = get_cell_type_icon(cell.type)

    if cell.type == CellType.CODE:
        title_label = f"In [{cell.execution_count or ' '}]"
    elif cell.type == CellType.MARKDOWN:
        title_label = "Markdown"
    else:
        title_label = "Raw"

    if not cell.source.strip():
        content = Text("(empty)", style="dim italic")
    elif cell.type == CellType.CODE:
        content = Syntax(cell.source, "python", theme="monokai", line_numbers=True, word_wrap=True)
    elif cell.type == CellType.MARKDOWN:
        content = Markdown(cell.source)
    else:
        content = Text(cell.source)

    subtitle = f"[{status_style}]{status_char}[/{status_style}]" if status_char != "--" else None
    execution_time = cell.get_formatted_execution_time()
    if execution_time and subtitle:
        subtitle = f"{subtitle} [dim]{execution_time}[/dim]"

    console.print(Panel(
        content,
        title=f"[{status_style}]{index}  {type_icon}  {title_label}[/{status_style}]",
        title_align="left",
        subtitle=subtitle,
        subtitle_align="right",
        border_style="dim" if status_char == "--" else status_style,
        padding=(0, 1),
    ))

    if cell.type != CellType.CODE or not cell.output_visible:
        return
    for output in cell.outputs:
        rich_output = format_rich_output(output)
        if output.get("output_type") == "error":
            console.print(Panel(
                rich_output,
                title="[red]Error[/red]",
                title_align="left",
                border_style="red",
                padding=(0, 1),
            ))
        else:
            console.print(Panel(
                rich_output,
                title=f"[blue]Out [{cell.execution_count or ''}][/blue]",
                title_align="left",
                border_style="blue",
                padding=(0, 1),
            ))


def _make_workspace(config: CellbookConfig) -> Workspace:
    return Workspace(IPythonKernelDiscovery(), config=config, chooser=choose_kernel)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.option("--config", "config_file", type=click.Path(dir_okay=False), default=None,
              help="Config file (default: ~/.cellbook/config.json)")
@click.pass_context
def main(ctx: click.Context, verbose: bool, config_file: Optional[str]):
    """cellbook: run and inspect Jupyter notebooks from the terminal."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=verbose)],
    )
    ctx.obj = load_config(Path(config_file) if config_file else None)


@main.command()
@click.argument("path", type=click.Path(dir_okay=False), default="notebook.ipynb")
@click.pass_obj
def new(config: CellbookConfig, path: str):
    """Create a new notebook."""
    if Path(path).exists():
        console.print(f"[red]Already exists:[/red] {path}")
        sys.exit(1)

    async def create() -> bool:
        workspace = _make_workspace(config)
        try:
            editor = await workspace.new_notebook()
            editor.update_cell_source(0, "# Welcome to cellbook!\n# Start writing Python code here.\n")
            editor.insert_cell_below(CellType.MARKDOWN)
            editor.update_cell_source(1, "## Notes\n\nAdd your notes here.")
            return await editor.save_as(path)
        finally:
            workspace.destroy()

    if not asyncio.run(create()):
        console.print(f"[red]Could not write {path}[/red]")
        sys.exit(1)

    console.print(Panel(
        f"[green]Created:[/green] {path}\n"
        f"[dim]Cells:[/dim] 2 (1 code, 1 markdown)",
        title="[bold blue]cellbook[/bold blue]",
        border_style="green",
    ))
    console.print(f"\n[dim]Run with:[/dim] cellbook run {path}")


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--no-save", is_flag=True, help="Do not write outputs back to the notebook")
@click.option("--timeout", "timeout_ms", type=click.IntRange(min=0), default=None,
              help="Per-cell timeout in milliseconds (0 = no limit)")
@click.option("--keep-going", is_flag=True, help="Continue after a cell fails")
@click.pass_obj
def run(config: CellbookConfig, path: str, no_save: bool, timeout_ms: Optional[int], keep_going: bool):
    """Run a notebook non-interactively."""
    if timeout_ms is not None:
        config = config.model_copy(deep=True)
        config.execution.timeout_ms = timeout_ms

    async def execute() -> tuple[int, int]:
        workspace = _make_workspace(config)
        try:
            editor = await workspace.open_notebook(path)
            document = editor.document

            console.print(Panel(
                f"[bold]{editor.get_title()}[/bold]  [dim]{path}[/dim]",
                title="[bold blue]cellbook[/bold blue]",
                border_style="blue",
            ))
            console.print()

            code_cells = [
                i for i, c in enumerate(document.cells)
                if c.type == CellType.CODE and c.source.strip()
            ]
            if not code_cells:
                console.print("[yellow]No code cells to execute[/yellow]")
                return 0, 0

            kernel_spec = await document.request_kernel_connection()
            if kernel_spec is None:
                console.print("[yellow]No kernel selected[/yellow]")
                return 0, len(code_cells)
            await document.connect_to_kernel(kernel_spec)

            success_count = 0
            for cell_idx in code_cells:
                cell = document.cells[cell_idx]
                console.print(f"[dim]--- Cell {cell_idx} ---[/dim]")
                console.print(Syntax(cell.source, "python", theme="monokai", line_numbers=True))

                failed = False
                try:
                    with Status("Executing...", console=console, spinner="dots"):
                        result = await document.execute_cell(cell_idx)
                    failed = result is not None and result.status == "error"
                except NotebookError as e:
                    failed = True
                    console.print(f"[red]Error: {e}[/red]")

                for output in cell.outputs:
                    console.print(format_rich_output(output))
                console.print()

                if not failed:
                    success_count += 1
                elif not keep_going:
                    break

            if not no_save:
                await document.save()
            return success_count, len(code_cells)
        finally:
            workspace.destroy()

    try:
        success_count, total = asyncio.run(execute())
    except NotebookError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    if success_count == total:
        if total:
            console.print(f"[green]All {total} cells executed successfully[/green]")
    else:
        console.print(f"[yellow]Executed {success_count}/{total} cells[/yellow]")
        sys.exit(1)


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def show(config: CellbookConfig, path: str):
    """Display a notebook's cells and saved outputs."""
    async def load():
        workspace = _make_workspace(config)
        try:
            editor = await workspace.open_notebook(path)
            kernelspec = editor.document.metadata.get("kernelspec") or {}
            console.print(Panel(
                f"[bold]{editor.get_title()}[/bold]  [dim]{kernelspec.get('display_name', '')}[/dim]",
                title="[bold blue]cellbook[/bold blue]",
                border_style="blue",
            ))
            for i, cell in enumerate(editor.document.cells):
                render_cell(i, cell)
        finally:
            workspace.destroy()

    asyncio.run(load())


@main.command()
@click.option("--language", "-l", default=None, help="Only kernels for this language")
@click.pass_obj
def kernels(config: CellbookConfig, language: Optional[str]):
    """List available kernels."""
    async def list_specs() -> list[KernelSpec]:
        workspace = _make_workspace(config)
        try:
            return await workspace.get_kernel_manager().get_kernel_specs_for_language(language)
        finally:
            workspace.destroy()

    try:
        specs = asyncio.run(list_specs())
    except NotebookError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    if not specs:
        console.print(f"[yellow]No kernels found for language {language}[/yellow]")
        return

    table = Table(title="Kernels", border_style="blue", show_lines=True)
    table.add_column("Name", style="bold cyan")
    table.add_column("Display Name", style="white")
    table.add_column("Language", style="green")
    for spec in specs:
        table.add_row(spec.name, spec.display_name, spec.language or "")
    console.print(table)


if __name__ == "__main__":
    main()
