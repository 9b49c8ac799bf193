"""
CellUndoManager: undo/redo journal for cell structure operations.

Covers inserting, deleting, moving, retyping, cutting, pasting,
duplicating and merging cells. Text edits inside a cell belong to the
host's text buffer and are never recorded here.
"""

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class OperationType(str, Enum):
    """Kind of structural operation."""
    INSERT = "insert"
    DELETE = "delete"
    DELETE_MULTIPLE = "deleteMultiple"
    MOVE = "move"
    MOVE_MULTIPLE = "moveMultiple"
    CHANGE_TYPE = "changeType"
    CUT = "cut"
    PASTE = "paste"
    DUPLICATE = "duplicate"
    MERGE = "merge"


@dataclass
class StructuralOperation:
    """
    A journal entry.

    ``data`` carries what is needed to invert and replay the operation:
    indices, serialized cell snapshots, previous/new type and the active
    cell index before the operation.
    """
    type: OperationType
    data: dict[str, Any] = field(default_factory=dict)


class CellUndoManager:
    """Two bounded stacks; the oldest undo entries are evicted first."""

    def __init__(self, max_stack_size: int = 100):
        self.max_stack_size = max_stack_size
        self.undo_stack: deque[StructuralOperation] = deque(maxlen=max_stack_size)
        self.redo_stack: list[StructuralOperation] = []
        self._is_undoing_or_redoing = False

    def is_undoing_or_redoing(self) -> bool:
        """True while an undo/redo is being applied."""
        return self._is_undoing_or_redoing

    def push_operation(self, operation: StructuralOperation):
        """Record an operation and drop the redo history."""
        # Replaying must not record itself
        if self._is_undoing_or_redoing:
            return
        self.undo_stack.append(operation)
        self.redo_stack.clear()

    def can_undo(self) -> bool:
        return len(self.undo_stack) > 0

    def can_redo(self) -> bool:
        return len(self.redo_stack) > 0

    def pop_undo(self) -> Optional[StructuralOperation]:
        """Move the newest undo entry onto the redo stack and return it."""
        if not self.can_undo():
            return None
        self._is_undoing_or_redoing = True
        operation = self.undo_stack.pop()
        self.redo_stack.append(operation)
        return operation

    def pop_redo(self) -> Optional[StructuralOperation]:
        """Move the newest redo entry back onto the undo stack and return it."""
        if not self.can_redo():
            return None
        self._is_undoing_or_redoing = True
        operation = self.redo_stack.pop()
        self.undo_stack.append(operation)
        return operation

    def finish_undo_redo(self):
        """Call once the popped operation has been applied."""
        self._is_undoing_or_redoing = False

    def clear(self):
        self.undo_stack.clear()
        self.redo_stack.clear()

    def get_undo_stack_summary(self) -> list[str]:
        return [op.type.value for op in self.undo_stack]

    def get_redo_stack_summary(self) -> list[str]:
        return [op.type.value for op in self.redo_stack]
