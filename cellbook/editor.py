"""
NotebookEditor: one view onto a shared NotebookDocument.

Several editors can show the same document. Each keeps its own active
cell, selection, clipboard and structural undo history, while all cell
data lives in the document.
"""

import logging
import os
from typing import Any, Callable, Optional, Union

from cellbook.cell import Cell, CellType
from cellbook.config import CellbookConfig
from cellbook.document import NotebookDocument
from cellbook.events import CompositeDisposable, Disposable, Emitter
from cellbook.kernel import ExecutionResult, KernelSession, KernelSpec
from cellbook.undo import CellUndoManager, OperationType, StructuralOperation

logger = logging.getLogger(__name__)


UNTITLED_TITLE = "Untitled.ipynb"


class NotebookEditor:
    """
    Command surface for a notebook.

    Structural commands record an operation in the undo manager before
    returning; undo and redo apply the recorded inverse or replay through
    the document and then let the document recompute its modified state,
    so undoing back to the saved content leaves it clean.
    """

    def __init__(self, document: NotebookDocument, config: Optional[CellbookConfig] = None):
        self.document = document.retain()
        self.config = config or document.config
        self.emitter = Emitter()
        self.disposables = CompositeDisposable()
        self.active_cell_index = 0
        self.selected_cells: set[int] = set()
        self.cell_clipboard: Optional[list[dict[str, Any]]] = None
        self.undo_manager = CellUndoManager(self.config.undo.max_stack_size)
        self.destroyed = False

        self._subscribe_to_document()

    def _subscribe_to_document(self):
        doc = self.document
        self.disposables.add(
            doc.on_did_change(lambda: self.emitter.emit("did-change")),
            doc.on_did_save(lambda: self.emitter.emit("did-save", {"path": doc.file_path})),
            doc.on_did_change_path(lambda _path: self.emitter.emit("did-change-title")),
            doc.on_did_connect_kernel(lambda kernel: self.emitter.emit("did-connect-kernel", kernel)),
            doc.on_did_disconnect_kernel(lambda: self.emitter.emit("did-disconnect-kernel")),
            doc.on_did_change_kernel_status(
                lambda status: self.emitter.emit("did-change-kernel-status", status)
            ),
            doc.on_did_insert_cell(self._on_cell_inserted),
            doc.on_did_delete_cell(self._on_cell_deleted),
            doc.on_did_delete_cells(self._on_cells_deleted),
            doc.on_did_move_cell(self._on_cell_moved),
            doc.on_did_move_cells(lambda _event: self._clamp_to_document()),
            doc.on_did_change_modified(
                lambda modified: self.emitter.emit("did-change-modified", modified)
            ),
            doc.on_did_destroy(self.destroy),
        )

    # -- keeping the active cell and selection in step with the document ---

    def _on_cell_inserted(self, event: dict):
        index = event["index"]
        if index <= self.active_cell_index:
            self.active_cell_index += 1
        self.selected_cells = {i + 1 if index <= i else i for i in self.selected_cells}
        self._clamp_to_document()

    def _on_cell_deleted(self, event: dict):
        index = event["index"]
        if index < self.active_cell_index:
            self.active_cell_index -= 1
        self.selected_cells = {
            i - 1 if i > index else i for i in self.selected_cells if i != index
        }
        self._clamp_to_document()

    def _on_cells_deleted(self, event: dict):
        deleted = set(event["indices"])
        if self.active_cell_index in deleted:
            self.active_cell_index = min(deleted)
        else:
            self.active_cell_index -= sum(1 for i in deleted if i < self.active_cell_index)
        self.selected_cells.clear()
        self._clamp_to_document()

    def _on_cell_moved(self, event: dict):
        from_index, to_index = event["from_index"], event["to_index"]
        self.active_cell_index = self._index_after_move(self.active_cell_index, from_index, to_index)
        self.selected_cells = {
            self._index_after_move(i, from_index, to_index) for i in self.selected_cells
        }

    @staticmethod
    def _index_after_move(index: int, from_index: int, to_index: int) -> int:
        if index == from_index:
            return to_index
        if from_index < index <= to_index:
            return index - 1
        if to_index <= index < from_index:
            return index + 1
        return index

    def _clamp_to_document(self):
        count = self.document.get_cell_count()
        self.active_cell_index = max(0, min(self.active_cell_index, count - 1))
        self.selected_cells = {i for i in self.selected_cells if 0 <= i < count}

    # -- pane item interface ------------------------------------------------

    def get_title(self) -> str:
        if self.document.file_path:
            return os.path.basename(self.document.file_path)
        return UNTITLED_TITLE

    def get_long_title(self) -> str:
        return self.document.file_path or UNTITLED_TITLE

    def get_path(self) -> Optional[str]:
        return self.document.file_path

    def is_modified(self) -> bool:
        return self.document.is_modified()

    def should_prompt_to_save(self, window_close_requested: bool = False) -> bool:
        """Only the last view of a modified notebook asks before closing."""
        if window_close_requested or not self.is_modified():
            return False
        return self.document.ref_count <= 1

    def copy(self) -> "NotebookEditor":
        """A second view on the same document (split pane)."""
        editor = NotebookEditor(self.document, self.config)
        editor.active_cell_index = self.active_cell_index
        editor.selected_cells = set(self.selected_cells)
        return editor

    def serialize(self) -> dict[str, Any]:
        """
        State needed to reopen this editor.

        A clean file-backed notebook only needs its path; anything with
        unsaved changes carries its full content.
        """
        state: dict[str, Any] = {"deserializer": "NotebookEditor"}
        if self.document.file_path:
            state["file_path"] = self.document.file_path
            if not self.document.is_modified():
                return state
        state["notebook_data"] = self.document.to_json()
        state["active_cell_index"] = self.active_cell_index
        state["was_modified"] = True
        return state

    @classmethod
    async def deserialize(cls, state: dict[str, Any], registry) -> Optional["NotebookEditor"]:
        file_path = state.get("file_path")
        notebook_data = state.get("notebook_data")

        if notebook_data is not None:
            document = await registry.create_document_from_data(notebook_data, file_path=file_path)
        elif file_path:
            document = await registry.get_or_create_document(file_path)
        else:
            return None

        editor = cls(document, registry.config)
        editor.set_active_cell(state.get("active_cell_index", 0))
        return editor

    async def save(self) -> bool:
        """Save to the current path; untitled notebooks need save_as."""
        if not self.document.file_path:
            return False
        return await self.document.save()

    async def save_as(self, new_path: str) -> bool:
        if not new_path:
            return False
        self.document.set_path(new_path)
        return await self.document.save()

    # -- kernel -------------------------------------------------------------

    async def connect_to_kernel(self, kernel_spec: Union[KernelSpec, str]):
        await self.document.connect_to_kernel(kernel_spec)

    async def disconnect_kernel(self):
        await self.document.disconnect_kernel()

    async def restart_kernel(self):
        await self.document.restart_kernel()

    async def interrupt_kernel(self):
        await self.document.interrupt_kernel()

    def get_kernel(self) -> Optional[KernelSession]:
        return self.document.kernel

    # -- active cell and selection -----------------------------------------

    def get_active_cell(self) -> Optional[Cell]:
        return self.document.get_cell(self.active_cell_index)

    def set_active_cell(self, index: int):
        if 0 <= index < self.document.get_cell_count():
            self.active_cell_index = index
            self.emitter.emit("did-change-active-cell", index)

    def extend_selection(self, index: int):
        if 0 <= index < self.document.get_cell_count():
            self.selected_cells.add(index)

    def clear_selection(self):
        self.selected_cells.clear()

    def get_selected_cells(self) -> list[int]:
        return sorted(self.selected_cells)

    def _target_indices(self) -> list[int]:
        """Selected cells, or the active cell when nothing is selected."""
        return self.get_selected_cells() or [self.active_cell_index]

    # -- running ------------------------------------------------------------

    async def _execute(self, index: int) -> bool:
        """Run one cell; False when it raised or reported an error."""
        try:
            result: Optional[ExecutionResult] = await self.document.execute_cell(index)
        except Exception as error:
            self.document.notifications.add_error("Execution failed", detail=str(error))
            return False
        return result is None or result.status != "error"

    async def run_cell(self) -> bool:
        return await self._execute(self.active_cell_index)

    async def run_cell_and_advance(self) -> bool:
        """Run the active cell, then move to the next one, adding a cell at the end."""
        succeeded = await self.run_cell()
        if self.active_cell_index < self.document.get_cell_count() - 1:
            self.set_active_cell(self.active_cell_index + 1)
        else:
            self.insert_cell_below()
        return succeeded

    async def _run_range(self, start: int, stop: Optional[int], interrupt_on_error: Optional[bool]) -> bool:
        if interrupt_on_error is None:
            interrupt_on_error = self.config.execution.interrupt_on_error

        succeeded = True
        index = start
        # The count is re-read each step; cells may be added while running
        while index < (self.document.get_cell_count() if stop is None else stop):
            cell = self.document.get_cell(index)
            if cell is not None and cell.type == CellType.CODE:
                self.set_active_cell(index)
                if not await self._execute(index):
                    succeeded = False
                    if interrupt_on_error:
                        break
            index += 1
        return succeeded

    async def run_all_cells(self, interrupt_on_error: Optional[bool] = None) -> bool:
        """Run every code cell in order, one at a time."""
        return await self._run_range(0, None, interrupt_on_error)

    async def run_all_above(self, interrupt_on_error: Optional[bool] = None) -> bool:
        current = self.active_cell_index
        succeeded = await self._run_range(0, current, interrupt_on_error)
        self.set_active_cell(current)
        return succeeded

    async def run_all_below(self, interrupt_on_error: Optional[bool] = None) -> bool:
        return await self._run_range(self.active_cell_index, None, interrupt_on_error)

    def clear_output(self):
        self.document.clear_cell_output(self.active_cell_index)

    def clear_all_outputs(self):
        self.document.clear_all_outputs()

    # -- structural commands ------------------------------------------------

    def _record(self, op_type: OperationType, **data: Any):
        if not self.undo_manager.is_undoing_or_redoing():
            self.undo_manager.push_operation(StructuralOperation(op_type, data))

    def _snapshot(self, index: int) -> dict[str, Any]:
        return self.document.cells[index].to_json()

    def _insert_cell(self, above: bool, extend_selection: bool = False,
                     cell_type: Union[CellType, str] = CellType.CODE) -> Optional[Cell]:
        previous_index = self.active_cell_index
        insert_index = previous_index if above else previous_index + 1

        if not extend_selection:
            self.clear_selection()

        cell = self.document.insert_cell(insert_index, cell_type)
        if cell is None:
            return None
        self._record(
            OperationType.INSERT,
            index=insert_index,
            cell_type=CellType(cell_type).value,
            previous_active_index=previous_index,
        )
        self.active_cell_index = insert_index

        if extend_selection:
            self.extend_selection(insert_index)
            self.extend_selection(previous_index + 1 if above else previous_index)
        return cell

    def insert_cell_above(self, cell_type: Union[CellType, str] = CellType.CODE) -> Optional[Cell]:
        return self._insert_cell(above=True, cell_type=cell_type)

    def insert_cell_below(self, cell_type: Union[CellType, str] = CellType.CODE) -> Optional[Cell]:
        return self._insert_cell(above=False, cell_type=cell_type)

    def insert_cell_above_and_extend_selection(self) -> Optional[Cell]:
        return self._insert_cell(above=True, extend_selection=True)

    def insert_cell_below_and_extend_selection(self) -> Optional[Cell]:
        return self._insert_cell(above=False, extend_selection=True)

    def delete_cell(self):
        """Delete the selected cells, or the active cell when nothing is selected."""
        targets = self._target_indices()
        self.clear_selection()
        if len(targets) > 1:
            self.delete_cells(targets)
            return

        index = targets[0]
        if self.document.get_cell(index) is None:
            return
        snapshot = self._snapshot(index)
        cleared = self.document.get_cell_count() == 1
        if self.document.delete_cell(index):
            self._record(
                OperationType.DELETE,
                index=index,
                cell=snapshot,
                cleared=cleared,
                previous_active_index=index,
            )

    def _delete_with_snapshots(self, op_type: OperationType, indices: list[int]) -> bool:
        indices = sorted(set(indices))
        if not indices or not all(self.document.get_cell(i) is not None for i in indices):
            return False

        cells = [{"index": i, "cell": self._snapshot(i)} for i in indices]
        cleared = len(indices) >= self.document.get_cell_count()
        previous_index = self.active_cell_index
        if not self.document.delete_cells(indices):
            return False

        self._record(op_type, cells=cells, cleared=cleared, previous_active_index=previous_index)
        self.active_cell_index = max(0, min(indices[0], self.document.get_cell_count() - 1))
        return True

    def delete_cells(self, indices: list[int]) -> bool:
        return self._delete_with_snapshots(OperationType.DELETE_MULTIPLE, indices)

    def move_cell(self, from_index: int, to_index: int) -> bool:
        if not self.document.move_cell(from_index, to_index):
            return False
        self._record(OperationType.MOVE, from_index=from_index, to_index=to_index)
        return True

    def move_cells(self, indices: list[int], target_index: int) -> Optional[int]:
        """Move a block of cells; ``target_index`` counts positions before the move."""
        indices = sorted(set(indices))
        previous_index = self.active_cell_index
        placed_at = self.document.move_cells(indices, target_index)
        if placed_at is None:
            return None
        self._record(
            OperationType.MOVE_MULTIPLE,
            indices=indices,
            target_index=target_index,
            placed_at=placed_at,
            previous_active_index=previous_index,
        )
        self.selected_cells = set(range(placed_at, placed_at + len(indices)))
        if previous_index in indices:
            self.active_cell_index = placed_at + indices.index(previous_index)
        return placed_at

    def move_cell_up(self):
        selected = self.get_selected_cells()
        if len(selected) > 1:
            if selected[0] == 0:
                return
            self.move_cells(selected, selected[0] - 1)
        elif self.active_cell_index > 0:
            self.move_cell(self.active_cell_index, self.active_cell_index - 1)

    def move_cell_down(self):
        selected = self.get_selected_cells()
        count = self.document.get_cell_count()
        if len(selected) > 1:
            if selected[-1] >= count - 1:
                return
            # Land just after the cell currently below the block
            self.move_cells(selected, selected[-1] + 2)
        elif self.active_cell_index < count - 1:
            self.move_cell(self.active_cell_index, self.active_cell_index + 1)

    def change_cell_type(self, cell_type: Union[CellType, str]) -> bool:
        index = self.active_cell_index
        cell = self.document.get_cell(index)
        if cell is None:
            return False
        try:
            new_type = CellType(cell_type)
        except ValueError:
            return False
        if cell.type == new_type:
            return False

        # The full snapshot restores outputs that a switch away from code drops
        snapshot = self._snapshot(index)
        previous_type = cell.type
        if not self.document.change_cell_type(index, new_type):
            return False
        self._record(
            OperationType.CHANGE_TYPE,
            index=index,
            previous_type=previous_type.value,
            new_type=new_type.value,
            cell=snapshot,
        )
        return True

    # -- clipboard ----------------------------------------------------------

    def copy_cell(self):
        self.cell_clipboard = [self._snapshot(i) for i in self._target_indices()
                               if self.document.get_cell(i) is not None]

    def cut_cell(self):
        indices = self._target_indices()
        if not all(self.document.get_cell(i) is not None for i in indices):
            return
        self.cell_clipboard = [self._snapshot(i) for i in sorted(indices)]
        self.clear_selection()
        self._delete_with_snapshots(OperationType.CUT, indices)

    def _paste(self, insert_index: int):
        if not self.cell_clipboard:
            return
        self.clear_selection()
        previous_index = self.active_cell_index
        cells_data = [dict(data) for data in self.cell_clipboard]
        if not self.document.insert_cells_from_data(insert_index, cells_data):
            return
        self._record(
            OperationType.PASTE,
            index=insert_index,
            count=len(cells_data),
            cells_data=cells_data,
            previous_active_index=previous_index,
        )
        self.active_cell_index = insert_index

    def paste_cell_below(self):
        self._paste(self.active_cell_index + 1)

    def paste_cell_above(self):
        self._paste(self.active_cell_index)

    def duplicate_cell(self):
        """Duplicate the selected cells (or the active cell) below the last of them."""
        indices = self._target_indices()
        if not all(self.document.get_cell(i) is not None for i in indices):
            return
        self.clear_selection()

        cells_data = [self._snapshot(i) for i in indices]
        insert_index = max(indices) + 1
        previous_index = self.active_cell_index
        if not self.document.insert_cells_from_data(insert_index, cells_data):
            return
        self._record(
            OperationType.DUPLICATE,
            index=insert_index,
            count=len(cells_data),
            cells_data=cells_data,
            previous_active_index=previous_index,
        )
        self.active_cell_index = insert_index

    def _merge_cells(self, index: int) -> bool:
        first = self.document.get_cell(index)
        second = self.document.get_cell(index + 1)
        if first is None or second is None:
            return False

        first_snapshot, second_snapshot = first.to_json(), second.to_json()
        self.document.update_cell_source(index, first.source + "\n" + second.source)
        self.document.delete_cell(index + 1)
        self._record(
            OperationType.MERGE,
            index=index,
            first_cell=first_snapshot,
            second_cell=second_snapshot,
            previous_active_index=self.active_cell_index,
        )
        return True

    def merge_cell_below(self) -> bool:
        """Append the cell below to the active cell, joined by a newline."""
        return self._merge_cells(self.active_cell_index)

    def toggle_cell_output(self):
        self.document.toggle_cell_output(self.active_cell_index)

    def toggle_cell_input(self):
        self.document.toggle_cell_input(self.active_cell_index)

    def update_cell_source(self, index: int, source: str):
        self.document.update_cell_source(index, source)

    # -- undo / redo --------------------------------------------------------

    def undo_cell_operation(self) -> bool:
        operation = self.undo_manager.pop_undo()
        if operation is None:
            return False
        try:
            self._apply_undo(operation)
        finally:
            self.undo_manager.finish_undo_redo()
        self.document.update_modified_state()
        self._clamp_to_document()
        return True

    def redo_cell_operation(self) -> bool:
        operation = self.undo_manager.pop_redo()
        if operation is None:
            return False
        try:
            self._apply_redo(operation)
        finally:
            self.undo_manager.finish_undo_redo()
        self.document.update_modified_state()
        self._clamp_to_document()
        return True

    def _restore_deleted(self, cells: list[dict[str, Any]], cleared: bool):
        ordered = sorted(cells, key=lambda c: c["index"])
        if cleared:
            # Deleting everything left one cleared cell in place of the first
            self.document.replace_cell(0, ordered[0]["cell"])
            ordered = ordered[1:]
        for info in ordered:
            self.document.restore_cell(info["index"], info["cell"])

    def _apply_undo(self, operation: StructuralOperation):
        op_type, data = operation.type, operation.data

        if op_type == OperationType.INSERT:
            self.document.delete_cell(data["index"])
            self.active_cell_index = data["previous_active_index"]

        elif op_type == OperationType.DELETE:
            self._restore_deleted([{"index": data["index"], "cell": data["cell"]}], data["cleared"])
            self.active_cell_index = data["previous_active_index"]

        elif op_type in (OperationType.DELETE_MULTIPLE, OperationType.CUT):
            self._restore_deleted(data["cells"], data["cleared"])
            self.active_cell_index = data["previous_active_index"]

        elif op_type == OperationType.MOVE:
            self.document.move_cell(data["to_index"], data["from_index"])

        elif op_type == OperationType.MOVE_MULTIPLE:
            self.document.revert_move_cells(data["indices"], data["placed_at"])
            self.active_cell_index = data["previous_active_index"]
            self.clear_selection()

        elif op_type == OperationType.CHANGE_TYPE:
            self.document.replace_cell(data["index"], data["cell"])

        elif op_type in (OperationType.PASTE, OperationType.DUPLICATE):
            start = data["index"]
            self.document.delete_cells(range(start, start + data["count"]))
            self.active_cell_index = data["previous_active_index"]

        elif op_type == OperationType.MERGE:
            index = data["index"]
            self.document.replace_cell(index, data["first_cell"])
            self.document.restore_cell(index + 1, data["second_cell"])
            self.active_cell_index = data["previous_active_index"]

    def _apply_redo(self, operation: StructuralOperation):
        op_type, data = operation.type, operation.data

        if op_type == OperationType.INSERT:
            self.document.insert_cell(data["index"], data["cell_type"])
            self.active_cell_index = data["index"]

        elif op_type == OperationType.DELETE:
            self.document.delete_cell(data["index"])

        elif op_type in (OperationType.DELETE_MULTIPLE, OperationType.CUT):
            self.document.delete_cells([info["index"] for info in data["cells"]])

        elif op_type == OperationType.MOVE:
            self.document.move_cell(data["from_index"], data["to_index"])

        elif op_type == OperationType.MOVE_MULTIPLE:
            self.document.move_cells(data["indices"], data["target_index"])

        elif op_type == OperationType.CHANGE_TYPE:
            self.document.change_cell_type(data["index"], data["new_type"])

        elif op_type in (OperationType.PASTE, OperationType.DUPLICATE):
            self.document.insert_cells_from_data(data["index"], data["cells_data"])
            self.active_cell_index = data["index"]

        elif op_type == OperationType.MERGE:
            self._merge_cells(data["index"])

    # -- events -------------------------------------------------------------

    def on_did_change(self, callback: Callable[[], None]) -> Disposable:
        return self.emitter.on("did-change", callback)

    def on_did_save(self, callback: Callable[[dict], None]) -> Disposable:
        return self.emitter.on("did-save", callback)

    def on_did_change_title(self, callback: Callable[[], None]) -> Disposable:
        return self.emitter.on("did-change-title", callback)

    def on_did_change_active_cell(self, callback: Callable[[int], None]) -> Disposable:
        return self.emitter.on("did-change-active-cell", callback)

    def on_did_connect_kernel(self, callback: Callable[[KernelSession], None]) -> Disposable:
        return self.emitter.on("did-connect-kernel", callback)

    def on_did_disconnect_kernel(self, callback: Callable[[], None]) -> Disposable:
        return self.emitter.on("did-disconnect-kernel", callback)

    def on_did_change_kernel_status(self, callback: Callable[[str], None]) -> Disposable:
        return self.emitter.on("did-change-kernel-status", callback)

    def on_did_change_modified(self, callback: Callable[[bool], None]) -> Disposable:
        return self.emitter.on("did-change-modified", callback)

    def on_did_destroy(self, callback: Callable[[], None]) -> Disposable:
        return self.emitter.on("did-destroy", callback)

    def destroy(self):
        if self.destroyed:
            return
        self.destroyed = True
        self.disposables.dispose()
        self.emitter.emit("did-destroy")
        self.emitter.dispose()
        self.document.release()
