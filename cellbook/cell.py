"""
Cell: a single notebook cell and its execution state.
"""

import uuid
from enum import Enum
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, Field, PrivateAttr

from cellbook.events import Disposable, Emitter
from cellbook.outputs import (
    ExecutionTimer,
    format_execution_time,
    get_output_plain_text,
    join_source,
    normalize_output,
    output_to_notebook_format,
    reduce_outputs,
    split_source,
)


def new_cell_id() -> str:
    return str(uuid.uuid4())


class CellType(str, Enum):
    """Type of notebook cell."""
    CODE = "code"
    MARKDOWN = "markdown"
    RAW = "raw"


class CellStatus(str, Enum):
    """Display state of a cell."""
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


class Cell(BaseModel):
    """A single notebook cell."""
    id: str = Field(default_factory=new_cell_id)
    type: CellType = CellType.CODE
    source: str = ""
    outputs: list[dict[str, Any]] = Field(default_factory=list)
    execution_count: Optional[int] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    execution_time: Optional[int] = None  # milliseconds

    # Runtime state, never serialized
    status: CellStatus = CellStatus.IDLE
    running: bool = False
    input_visible: bool = True
    output_visible: bool = True

    _emitter: Emitter = PrivateAttr(default_factory=Emitter)
    _timer: Optional[ExecutionTimer] = PrivateAttr(default=None)

    def set_type(self, cell_type: Union[CellType, str]) -> bool:
        """Change the cell type; non-code cells drop their outputs and count."""
        try:
            cell_type = CellType(cell_type)
        except ValueError:
            return False
        self.type = cell_type
        if cell_type != CellType.CODE:
            self.outputs = []
            self.execution_count = None
        self._emitter.emit("did-change")
        return True

    def set_source(self, source: str):
        self.source = source
        self._emitter.emit("did-change")

    def set_running(self, running: bool):
        self.running = running
        self.status = CellStatus.RUNNING if running else CellStatus.IDLE

        if running:
            self._timer = ExecutionTimer()
            self._timer.start()
            self.execution_time = None
        elif self._timer is not None:
            self.execution_time = self._timer.stop()
            self._timer = None
        self._emitter.emit("did-change-status", self.status)

    def set_status(self, status: Union[CellStatus, str]):
        self.status = CellStatus(status)
        self._emitter.emit("did-change-status", self.status)

    def set_execution_count(self, count: Optional[int]):
        self.execution_count = count
        self._emitter.emit("did-change")

    def get_formatted_execution_time(self) -> Optional[str]:
        """Live elapsed time while running, otherwise the stored duration."""
        if self._timer is not None and self._timer.is_running():
            return self._timer.formatted()
        return format_execution_time(self.execution_time)

    def add_output(self, output: Any):
        """Normalize and merge an output fragment into this cell's outputs."""
        reduce_outputs(self.outputs, output)
        self._emitter.emit("did-change")

    def clear_outputs(self):
        self.outputs = []
        self.execution_count = None
        self.execution_time = None
        self.status = CellStatus.IDLE
        self._emitter.emit("did-change")

    def toggle_output_visibility(self):
        self.output_visible = not self.output_visible
        self._emitter.emit("did-change")

    def toggle_input_visibility(self):
        self.input_visible = not self.input_visible
        self._emitter.emit("did-change")

    def has_output(self) -> bool:
        return bool(self.outputs)

    def get_output_text(self) -> str:
        return get_output_plain_text(self.outputs)

    def to_json(self) -> dict[str, Any]:
        """Convert to the on-disk notebook cell shape."""
        data = {
            "id": self.id,
            "cell_type": self.type.value,
            "metadata": self.metadata,
            "source": split_source(self.source),
        }
        if self.type == CellType.CODE:
            data["execution_count"] = self.execution_count
            data["outputs"] = [output_to_notebook_format(o) for o in self.outputs]
        return data

    @classmethod
    def from_json(cls, data: dict[str, Any], fresh: bool = False) -> "Cell":
        """
        Create from the on-disk cell shape.

        With ``fresh=True`` the cell gets a new id and no execution count,
        which is what pasted and duplicated cells need.
        """
        try:
            cell_type = CellType(data.get("cell_type") or data.get("type") or "code")
        except ValueError:
            cell_type = CellType.CODE

        outputs = []
        execution_count = None
        if cell_type == CellType.CODE:
            outputs = [normalize_output(o) for o in data.get("outputs") or []]
            execution_count = data.get("execution_count")

        return cls(
            id=new_cell_id() if fresh else (data.get("id") or new_cell_id()),
            type=cell_type,
            source=join_source(data.get("source")),
            outputs=outputs,
            execution_count=None if fresh else execution_count,
            metadata=dict(data.get("metadata") or {}),
        )

    def on_did_change(self, callback: Callable[[], None]) -> Disposable:
        return self._emitter.on("did-change", callback)

    def on_did_change_status(self, callback: Callable[[CellStatus], None]) -> Disposable:
        return self._emitter.on("did-change-status", callback)

    def destroy(self):
        self._emitter.dispose()
