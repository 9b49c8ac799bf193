"""
Tests for the command line interface using Click's CliRunner.
"""

import json
from pathlib import Path

from click.testing import CliRunner

from cellbook.cli import main


def write_notebook(path, *sources):
    cells = [{"cell_type": "code", "source": source, "metadata": {}, "outputs": [], "execution_count": None}
             for source in sources]
    notebook = {
        "nbformat": 4,
        "nbformat_minor": 5,
        "metadata": {"kernelspec": {"name": "python3", "display_name": "Python 3", "language": "python"}},
        "cells": cells,
    }
    Path(path).write_text(json.dumps(notebook))


def invoke(runner, *args):
    return runner.invoke(main, ["--config", "cellbook.json", *args])


class TestNewCommand:
    """Test `cellbook new`."""

    def test_new_default_path(self):
        """Create notebook at default path (notebook.ipynb)."""
        runner = CliRunner()
        with runner.isolated_filesystem():
            result = invoke(runner, "new")

            assert result.exit_code == 0, result.output
            data = json.loads(Path("notebook.ipynb").read_text())
            assert data["nbformat"] == 4
            assert [c["cell_type"] for c in data["cells"]] == ["code", "markdown"]
            assert data["metadata"]["kernelspec"]["name"] == "python3"

    def test_new_refuses_existing_file(self):
        runner = CliRunner()
        with runner.isolated_filesystem():
            Path("taken.ipynb").write_text("{}")

            result = invoke(runner, "new", "taken.ipynb")

            assert result.exit_code == 1
            assert "Already exists" in result.output
            assert Path("taken.ipynb").read_text() == "{}"


class TestRunCommand:
    """Test `cellbook run`."""

    def test_run_saves_outputs(self):
        """Outputs and execution counts are written back to the file."""
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_notebook("nb.ipynb", "greeting = 'hello'", "print(greeting)")

            result = invoke(runner, "run", "nb.ipynb")

            assert result.exit_code == 0, result.output
            assert "All 2 cells executed successfully" in result.output
            cells = json.loads(Path("nb.ipynb").read_text())["cells"]
            assert [c["execution_count"] for c in cells] == [1, 2]
            assert cells[1]["outputs"][0]["text"] == ["hello\n"]

    def test_run_no_save(self):
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_notebook("nb.ipynb", "print('x')")
            before = Path("nb.ipynb").read_text()

            result = invoke(runner, "run", "nb.ipynb", "--no-save")

            assert result.exit_code == 0, result.output
            assert Path("nb.ipynb").read_text() == before

    def test_run_stops_at_first_error(self):
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_notebook("nb.ipynb", "raise ValueError('nope')", "print('after')")

            result = invoke(runner, "run", "nb.ipynb")

            assert result.exit_code == 1
            assert "Executed 0/2 cells" in result.output
            cells = json.loads(Path("nb.ipynb").read_text())["cells"]
            assert cells[1]["outputs"] == []

    def test_run_keep_going(self):
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_notebook("nb.ipynb", "raise ValueError('nope')", "print('after')")

            result = invoke(runner, "run", "nb.ipynb", "--keep-going")

            assert result.exit_code == 1
            assert "Executed 1/2 cells" in result.output
            cells = json.loads(Path("nb.ipynb").read_text())["cells"]
            assert cells[1]["outputs"][0]["text"] == ["after\n"]

    def test_run_without_code(self):
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_notebook("nb.ipynb", "   ")

            result = invoke(runner, "run", "nb.ipynb")

            assert result.exit_code == 0, result.output
            assert "No code cells to execute" in result.output


class TestShowAndKernels:
    """Test `cellbook show` and `cellbook kernels`."""

    def test_show(self):
        runner = CliRunner()
        with runner.isolated_filesystem():
            write_notebook("report.ipynb", "total = 1 + 2")

            result = invoke(runner, "show", "report.ipynb")

            assert result.exit_code == 0, result.output
            assert "report.ipynb" in result.output
            assert "total" in result.output

    def test_kernels(self):
        runner = CliRunner()
        with runner.isolated_filesystem():
            result = invoke(runner, "kernels")

            assert result.exit_code == 0, result.output
            assert "python3" in result.output

    def test_kernels_unknown_language(self):
        runner = CliRunner()
        with runner.isolated_filesystem():
            result = invoke(runner, "kernels", "--language", "cobol")

            assert result.exit_code == 0, result.output
            assert "No kernels found for language cobol" in result.output
