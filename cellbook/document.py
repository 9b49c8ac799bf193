"""
NotebookDocument: the shared data model behind every view of a notebook.

Several editors may show the same document at once. They all hold the
same instance (reference counted through retain/release) and observe
each other's edits through change notifications.
"""

import asyncio
import hashlib
import json
import logging
from typing import Any, Callable, Iterable, Optional, Union

from cellbook.cell import Cell, CellStatus, CellType
from cellbook.config import CellbookConfig
from cellbook.errors import KernelConnectError, KernelUnavailable, LoadParseError, NotebookError, SaveIOError
from cellbook.events import CompositeDisposable, Disposable, Emitter
from cellbook.kernel import ExecutionResult, KernelSession, KernelSpec
from cellbook.kernel_manager import KernelManager
from cellbook.kernel_picker import KernelPicker
from cellbook.notifications import NotificationManager
from cellbook.outputs import error_output
from cellbook.storage import FileHandle, LocalFile

logger = logging.getLogger(__name__)


NBFORMAT = 4
NBFORMAT_MINOR = 5

FileFactory = Callable[[str], FileHandle]
PickerFactory = Callable[["NotebookDocument"], Any]


def default_metadata() -> dict[str, Any]:
    return {
        "kernelspec": {
            "display_name": "Python 3",
            "language": "python",
            "name": "python3",
        },
        "language_info": {
            "name": "python",
            "version": "3.x",
        },
    }


class NotebookDocument:
    """
    Ordered cells, metadata, modification state and the attached kernel.

    Structural operations validate their indices and do nothing when an
    index is out of range. A document always keeps at least one cell:
    deleting the last one clears it instead.
    """

    def __init__(
        self,
        file_path: Optional[str] = None,
        kernel_manager: Optional[KernelManager] = None,
        config: Optional[CellbookConfig] = None,
        notifications: Optional[NotificationManager] = None,
        file_factory: FileFactory = LocalFile,
        picker_factory: Optional[PickerFactory] = None,
    ):
        self.file_path = file_path
        self.kernel_manager = kernel_manager
        self.config = config or CellbookConfig()
        self.notifications = notifications or NotificationManager()
        self.emitter = Emitter()
        self.disposables = CompositeDisposable()
        self.ref_count = 0
        self.destroyed = False

        self.cells: list[Cell] = []
        self.metadata: dict[str, Any] = {}
        self.modified = False
        self.kernel: Optional[KernelSession] = None
        self.execution_count = 0

        self.nbformat = NBFORMAT
        self.nbformat_minor = NBFORMAT_MINOR

        # Detects edits (and undos) that return to the saved content
        self._saved_fingerprint: Optional[str] = None

        self._file_factory = file_factory
        self._picker_factory = picker_factory
        self.file: Optional[FileHandle] = file_factory(file_path) if file_path else None
        self._kernel_disposables: Optional[CompositeDisposable] = None
        self._loaded = asyncio.Event()

    # -- reference counting -------------------------------------------------

    def retain(self) -> "NotebookDocument":
        self.ref_count += 1
        return self

    def release(self):
        self.ref_count -= 1
        if self.ref_count <= 0:
            self.destroy()

    # -- load / save --------------------------------------------------------

    @staticmethod
    def _parse(content: str) -> dict[str, Any]:
        try:
            data = json.loads(content)
        except ValueError as error:
            raise LoadParseError(f"Invalid notebook JSON: {error}") from error
        if not isinstance(data, dict):
            raise LoadParseError("Notebook content must be a JSON object")
        if not isinstance(data.get("cells", []), list):
            raise LoadParseError("Notebook 'cells' must be a list")
        return data

    def _populate(self, data: dict[str, Any]):
        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise LoadParseError("Notebook 'metadata' must be a JSON object")
        try:
            cells = [Cell.from_json(cell_data) for cell_data in data.get("cells") or []]
        except (AttributeError, TypeError, ValueError) as error:
            raise LoadParseError(f"Invalid cell data: {error}") from error

        if not cells:
            cells.append(Cell(type=CellType.CODE))

        self.nbformat = data.get("nbformat") or NBFORMAT
        self.nbformat_minor = data.get("nbformat_minor") or NBFORMAT_MINOR
        self.metadata = dict(metadata)
        self._replace_cells(cells)

    def _replace_cells(self, cells: list[Cell]):
        for cell in self.cells:
            cell.destroy()
        self.cells = cells

    async def load(self):
        """
        Populate from storage.

        Unreadable or malformed content is reported and the document falls
        back to a freshly initialized one.
        """
        if not self.file_path or self.file is None:
            await self.initialize()
            return

        try:
            content = await self.file.read()
            self._populate(self._parse(content))
        except (OSError, UnicodeDecodeError, LoadParseError) as error:
            self.notifications.add_error("Failed to load notebook", detail=str(error))
            await self.initialize()
            return

        self.set_modified(False)
        self._update_saved_fingerprint()
        logger.info("Loaded notebook %s (%d cells)", self.file_path, len(self.cells))
        self._loaded.set()
        self.emitter.emit("did-load")

    async def initialize(self):
        """Start with default metadata and one empty code cell."""
        self.metadata = default_metadata()
        self._replace_cells([Cell(type=CellType.CODE)])

        # Untitled notebooks need saving, ones bound to a file start clean
        self.set_modified(not self.file_path)
        self._update_saved_fingerprint()
        self._loaded.set()
        self.emitter.emit("did-load")

    async def initialize_from_data(self, notebook_data: dict[str, Any]):
        """
        Restore an unsaved notebook from serialized data; it stays modified.

        Data that cannot be restored is reported and the document falls
        back to a freshly initialized one.
        """
        try:
            if not isinstance(notebook_data, dict):
                raise LoadParseError("Notebook data must be a JSON object")
            self._populate(notebook_data)
        except LoadParseError as error:
            self.notifications.add_error("Failed to restore notebook", detail=str(error))
            await self.initialize()
            return

        self.set_modified(True)
        self._loaded.set()
        self.emitter.emit("did-load")

    async def wait_until_loaded(self):
        await self._loaded.wait()

    def is_loaded(self) -> bool:
        return self._loaded.is_set()

    async def save(self) -> bool:
        """
        Write the notebook to its file.

        Returns False when there is no file or the write fails; a failed
        save is reported and leaves the in-memory document untouched.
        """
        if not self.file_path or self.file is None:
            return False

        try:
            content = json.dumps(self.to_json(), indent=2)
            await self.file.write(content)
        except (OSError, TypeError, ValueError) as error:
            failure = SaveIOError(str(error))
            self.notifications.add_error("Failed to save notebook", detail=str(failure))
            return False

        self.set_modified(False)
        self._update_saved_fingerprint()
        logger.info("Saved notebook %s", self.file_path)
        self.emitter.emit("did-save")
        return True

    def set_path(self, new_path: str):
        self.file_path = new_path
        self.file = self._file_factory(new_path)
        self.emitter.emit("did-change-path", new_path)

    def get_path(self) -> Optional[str]:
        return self.file_path

    def to_json(self) -> dict[str, Any]:
        return {
            "nbformat": self.nbformat,
            "nbformat_minor": self.nbformat_minor,
            "metadata": self.metadata,
            "cells": [cell.to_json() for cell in self.cells],
        }

    # -- kernel -------------------------------------------------------------

    async def connect_to_kernel(self, kernel_spec: Union[KernelSpec, str]):
        """
        Attach a kernel session, replacing any current one.

        Failures are reported and re-raised to the caller.
        """
        kernel_name = kernel_spec.name if isinstance(kernel_spec, KernelSpec) else str(kernel_spec)
        try:
            if self.kernel is not None:
                await self.disconnect_kernel()
            if self.kernel_manager is None:
                raise KernelUnavailable("No kernel manager available")
            kernel = await self.kernel_manager.get_or_start_kernel(kernel_name, self.file_path)
        except NotebookError as error:
            self.notifications.add_error("Failed to connect to kernel", detail=str(error))
            raise
        except Exception as error:
            self.notifications.add_error("Failed to connect to kernel", detail=str(error))
            raise KernelConnectError(f"Could not connect to kernel {kernel_name}: {error}") from error

        self.kernel = kernel
        self._kernel_disposables = CompositeDisposable(
            kernel.on_did_change_status(
                lambda status: self.emitter.emit("did-change-kernel-status", status)
            )
        )
        self.metadata["kernelspec"] = {
            "display_name": kernel.display_name,
            "language": kernel.language,
            "name": kernel.name,
        }
        self.emitter.emit("did-connect-kernel", kernel)

    def _detach_kernel(self) -> bool:
        if self.kernel is None:
            return False
        if self._kernel_disposables is not None:
            self._kernel_disposables.dispose()
            self._kernel_disposables = None
        self.kernel = None
        return True

    async def disconnect_kernel(self):
        if self._detach_kernel():
            self.emitter.emit("did-disconnect-kernel")

    async def restart_kernel(self):
        if self.kernel is not None:
            await self.kernel.restart()
            self.notifications.add_info("Kernel restarted")

    async def interrupt_kernel(self):
        if self.kernel is not None:
            self.kernel.interrupt()

    async def request_kernel_connection(self) -> Optional[KernelSpec]:
        """Ask the kernel picker which kernel to use; None means the user declined."""
        if self._picker_factory is not None:
            picker = self._picker_factory(self)
        else:
            if self.kernel_manager is None:
                raise KernelUnavailable("No kernel manager available")
            kernelspec = self.metadata.get("kernelspec") or {}
            language_info = self.metadata.get("language_info") or {}
            picker = KernelPicker(
                self.kernel_manager,
                preferred_kernel_name=kernelspec.get("name"),
                language=kernelspec.get("language") or language_info.get("name"),
                auto_select=self.config.kernel.auto_kernel_picker,
            )
        return await picker.show()

    # -- execution ----------------------------------------------------------

    async def execute_cell(
        self,
        index: int,
        on_output: Optional[Callable[[dict[str, Any]], None]] = None,
        on_status: Optional[Callable[[str], None]] = None,
    ) -> Optional[ExecutionResult]:
        """
        Run the code cell at ``index`` on the attached kernel.

        Connects a kernel first when none is attached; returns None when
        the cell is not a code cell or the user declines to pick a kernel.
        Outputs that arrive after the result has settled are still merged
        into the cell and passed to ``on_output``.

        Raises:
            ExecutionTimeout, KernelDeadError or any kernel failure, after
            recording an error output on the cell and marking it idle.
        """
        cell = self.get_cell(index)
        if cell is None or cell.type != CellType.CODE:
            return None

        if self.kernel is None:
            kernel_spec = await self.request_kernel_connection()
            if kernel_spec is None:
                return None
            await self.connect_to_kernel(kernel_spec)

        if self.config.execution.clear_output_before_run:
            cell.clear_outputs()

        cell.set_running(True)
        self.execution_count += 1
        execution_count = self.execution_count
        self.emitter.emit("did-change")

        finished = False

        def handle_output(output: dict[str, Any]):
            cell.add_output(output)
            if finished:
                self.update_modified_state()
            self.emitter.emit("did-change")
            if on_output is not None:
                on_output(output)

        def handle_status(status: str):
            if status in ("running", "busy"):
                cell.set_status(CellStatus.RUNNING)
            self.emitter.emit("did-change")
            if on_status is not None:
                on_status(status)

        try:
            result = await self.kernel.execute(
                cell.source,
                on_output=handle_output,
                on_status=handle_status,
                timeout_ms=self.config.execution.timeout_ms,
            )
        except Exception as error:
            finished = True
            logger.warning("Execution of cell %s failed: %s", cell.id, error)
            cell.add_output(error_output(error))
            cell.set_running(False)
            self.update_modified_state()
            self.emitter.emit("did-change")
            raise

        finished = True
        cell.set_execution_count(execution_count)
        cell.set_running(False)
        if result.status == "error":
            cell.set_status(CellStatus.ERROR)
        self.set_modified(True)
        self.emitter.emit("did-change")
        return result

    # -- cell access --------------------------------------------------------

    def get_cell(self, index: int) -> Optional[Cell]:
        if 0 <= index < len(self.cells):
            return self.cells[index]
        return None

    def get_cell_count(self) -> int:
        return len(self.cells)

    def _valid_index(self, index: int) -> bool:
        return isinstance(index, int) and 0 <= index < len(self.cells)

    # -- structural operations ----------------------------------------------

    def clear_cell_output(self, index: int):
        cell = self.get_cell(index)
        if cell is not None:
            cell.clear_outputs()
            self.set_modified(True)
            self.emitter.emit("did-change")

    def clear_all_outputs(self):
        for cell in self.cells:
            cell.clear_outputs()
        self.set_modified(True)
        self.emitter.emit("did-change")

    def insert_cell(self, index: int, cell_type: Union[CellType, str] = CellType.CODE) -> Optional[Cell]:
        if not 0 <= index <= len(self.cells):
            return None
        new_cell = Cell(type=CellType(cell_type))
        self.cells.insert(index, new_cell)
        self.set_modified(True)
        self.emitter.emit("did-change")
        self.emitter.emit("did-insert-cell", {"index": index, "cell": new_cell})
        return new_cell

    def _clear_cell(self, cell: Cell):
        cell.set_source("")
        cell.clear_outputs()

    def delete_cell(self, index: int) -> bool:
        if not self._valid_index(index):
            return False

        if len(self.cells) <= 1:
            self._clear_cell(self.cells[0])
        else:
            self.cells.pop(index).destroy()

        self.set_modified(True)
        self.emitter.emit("did-change")
        self.emitter.emit("did-delete-cell", {"index": index})
        return True

    def delete_cells(self, indices: Iterable[int]) -> bool:
        """
        Delete several cells given in any order.

        All indices are validated before anything changes. Removal runs from
        the highest index to the lowest so earlier removals never shift a
        pending one. Deleting every cell leaves the first one, cleared.
        """
        sorted_indices = sorted(set(indices), reverse=True)
        if not sorted_indices:
            return False
        if not all(self._valid_index(i) for i in sorted_indices):
            return False

        if len(sorted_indices) >= len(self.cells):
            self._clear_cell(self.cells[0])
            for cell in self.cells[1:]:
                cell.destroy()
            del self.cells[1:]
        else:
            for index in sorted_indices:
                self.cells.pop(index).destroy()

        self.set_modified(True)
        self.emitter.emit("did-change")
        self.emitter.emit("did-delete-cells", {"indices": sorted_indices})
        return True

    def move_cell(self, from_index: int, to_index: int) -> bool:
        if not self._valid_index(from_index) or not self._valid_index(to_index):
            return False
        if from_index == to_index:
            return False

        cell = self.cells.pop(from_index)
        self.cells.insert(to_index, cell)

        self.set_modified(True)
        self.emitter.emit("did-change")
        self.emitter.emit("did-move-cell", {"from_index": from_index, "to_index": to_index})
        return True

    def move_cells(self, indices: Iterable[int], target_index: int) -> Optional[int]:
        """
        Move several cells, keeping their relative order, to ``target_index``.

        ``target_index`` is a position in the document before the move. The
        moved block lands at ``target_index`` minus the number of moved cells
        that sat above it; that adjusted position is returned, or None when
        any index is out of range.
        """
        sorted_indices = sorted(set(indices))
        if not sorted_indices:
            return None
        if not all(self._valid_index(i) for i in sorted_indices):
            return None
        if not 0 <= target_index <= len(self.cells):
            return None

        cells_to_move = [self.cells[i] for i in sorted_indices]
        cells_before_target = sum(1 for i in sorted_indices if i < target_index)

        for index in reversed(sorted_indices):
            self.cells.pop(index)

        adjusted_target = target_index - cells_before_target
        self.cells[adjusted_target:adjusted_target] = cells_to_move

        self.set_modified(True)
        self.emitter.emit("did-change")
        self.emitter.emit("did-move-cells", {"indices": sorted_indices, "target_index": adjusted_target})
        return adjusted_target

    def revert_move_cells(self, indices: Iterable[int], placed_at: int) -> bool:
        """
        Undo move_cells: lift the block at ``placed_at`` and put each cell
        back at its original index, in ascending order.
        """
        sorted_indices = sorted(set(indices))
        count = len(sorted_indices)
        if not count or placed_at < 0 or placed_at + count > len(self.cells):
            return False
        if sorted_indices[0] < 0 or sorted_indices[-1] >= len(self.cells):
            return False

        block = self.cells[placed_at:placed_at + count]
        del self.cells[placed_at:placed_at + count]
        for index, cell in zip(sorted_indices, block):
            self.cells.insert(index, cell)

        self.set_modified(True)
        self.emitter.emit("did-change")
        self.emitter.emit("did-move-cells", {"indices": list(range(placed_at, placed_at + count)),
                                             "target_index": sorted_indices[0]})
        return True

    def update_cell_source(self, index: int, source: str):
        cell = self.get_cell(index)
        if cell is None or cell.source == source:
            return
        cell.set_source(source)
        # An edit may return the content to its saved state
        self.update_modified_state()
        self.emitter.emit("did-change")

    def change_cell_type(self, index: int, cell_type: Union[CellType, str]) -> bool:
        cell = self.get_cell(index)
        if cell is None or not cell.set_type(cell_type):
            return False
        self.set_modified(True)
        self.emitter.emit("did-change")
        return True

    def toggle_cell_output(self, index: int):
        cell = self.get_cell(index)
        if cell is not None:
            cell.toggle_output_visibility()
            self.emitter.emit("did-change")

    def toggle_cell_input(self, index: int):
        cell = self.get_cell(index)
        if cell is not None:
            cell.toggle_input_visibility()
            self.set_modified(True)
            self.emitter.emit("did-change")

    def restore_cell(self, index: int, cell_data: dict[str, Any]) -> Optional[Cell]:
        """Re-insert a cell snapshot with its id, outputs and execution count."""
        if not 0 <= index <= len(self.cells):
            return None
        cell = Cell.from_json(cell_data)
        self.cells.insert(index, cell)
        self.set_modified(True)
        self.emitter.emit("did-change")
        self.emitter.emit("did-insert-cell", {"index": index, "cell": cell})
        return cell

    def replace_cell(self, index: int, cell_data: dict[str, Any]) -> Optional[Cell]:
        """Swap the cell at ``index`` for a snapshot."""
        if not self._valid_index(index):
            return None
        cell = Cell.from_json(cell_data)
        self.cells[index].destroy()
        self.cells[index] = cell
        self.set_modified(True)
        self.emitter.emit("did-change")
        return cell

    def insert_cells_from_data(self, start_index: int, cells_data: list[dict[str, Any]]) -> list[Cell]:
        """Insert copies of snapshots (pasted or duplicated cells): new ids, no execution count."""
        if not cells_data or not 0 <= start_index <= len(self.cells):
            return []
        new_cells = [Cell.from_json(data, fresh=True) for data in cells_data]
        self.cells[start_index:start_index] = new_cells
        self.set_modified(True)
        self.emitter.emit("did-change")
        for offset, cell in enumerate(new_cells):
            self.emitter.emit("did-insert-cell", {"index": start_index + offset, "cell": cell})
        return new_cells

    # -- modification state -------------------------------------------------

    def is_modified(self) -> bool:
        return self.modified

    def set_modified(self, modified: bool):
        if self.modified != modified:
            self.modified = modified
            self.emitter.emit("did-change-modified", modified)

    def _compute_fingerprint(self) -> str:
        """SHA-256 over type, source and outputs of every cell, in order."""
        snapshot = [[cell.type.value, cell.source, cell.outputs] for cell in self.cells]
        payload = json.dumps(snapshot, sort_keys=True, default=str)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def _update_saved_fingerprint(self):
        self._saved_fingerprint = self._compute_fingerprint()

    def matches_saved_content(self) -> bool:
        if self._saved_fingerprint is None:
            return False
        return self._compute_fingerprint() == self._saved_fingerprint

    def update_modified_state(self):
        """Recompute ``modified`` from content, e.g. after undoing back to the saved state."""
        self.set_modified(not self.matches_saved_content())

    # -- events -------------------------------------------------------------

    def on_did_change(self, callback: Callable[[], None]) -> Disposable:
        return self.emitter.on("did-change", callback)

    def on_did_load(self, callback: Callable[[], None]) -> Disposable:
        return self.emitter.on("did-load", callback)

    def on_did_save(self, callback: Callable[[], None]) -> Disposable:
        return self.emitter.on("did-save", callback)

    def on_did_change_path(self, callback: Callable[[str], None]) -> Disposable:
        return self.emitter.on("did-change-path", callback)

    def on_did_connect_kernel(self, callback: Callable[[KernelSession], None]) -> Disposable:
        return self.emitter.on("did-connect-kernel", callback)

    def on_did_disconnect_kernel(self, callback: Callable[[], None]) -> Disposable:
        return self.emitter.on("did-disconnect-kernel", callback)

    def on_did_change_kernel_status(self, callback: Callable[[str], None]) -> Disposable:
        return self.emitter.on("did-change-kernel-status", callback)

    def on_did_insert_cell(self, callback: Callable[[dict], None]) -> Disposable:
        return self.emitter.on("did-insert-cell", callback)

    def on_did_delete_cell(self, callback: Callable[[dict], None]) -> Disposable:
        return self.emitter.on("did-delete-cell", callback)

    def on_did_delete_cells(self, callback: Callable[[dict], None]) -> Disposable:
        return self.emitter.on("did-delete-cells", callback)

    def on_did_move_cell(self, callback: Callable[[dict], None]) -> Disposable:
        return self.emitter.on("did-move-cell", callback)

    def on_did_move_cells(self, callback: Callable[[dict], None]) -> Disposable:
        return self.emitter.on("did-move-cells", callback)

    def on_did_change_modified(self, callback: Callable[[bool], None]) -> Disposable:
        return self.emitter.on("did-change-modified", callback)

    def on_did_destroy(self, callback: Callable[[], None]) -> Disposable:
        return self.emitter.on("did-destroy", callback)

    def destroy(self):
        if self.destroyed:
            return
        self.destroyed = True
        # Kernel first, so kernel callbacks never reach a half-torn-down document
        self._detach_kernel()
        self.disposables.dispose()
        for cell in self.cells:
            cell.destroy()
        self.emitter.emit("did-destroy")
        self.emitter.dispose()
