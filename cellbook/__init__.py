"""
cellbook: a Jupyter notebook core with shared documents and structural undo.

This package provides:
- Notebook documents shared between several editors, with load/save of the .ipynb format
- Kernel sessions that adapt any provider to one async execute contract
- Output merging the way a terminal shows it (stream concatenation, carriage returns)
- Undo/redo for cell structure operations
"""

from cellbook.cell import Cell, CellStatus, CellType
from cellbook.config import CellbookConfig, load_config, save_config
from cellbook.document import NotebookDocument
from cellbook.editor import NotebookEditor
from cellbook.errors import (
    ExecutionTimeout,
    KernelCapabilityError,
    KernelConnectError,
    KernelDeadError,
    KernelUnavailable,
    LoadParseError,
    NotebookError,
    SaveIOError,
)
from cellbook.kernel import ExecutionResult, KernelSession, KernelSpec
from cellbook.kernel_manager import KernelManager
from cellbook.kernel_picker import KernelPicker
from cellbook.registry import NotebookDocumentRegistry
from cellbook.undo import CellUndoManager, OperationType, StructuralOperation
from cellbook.workspace import NotebookService, Workspace

__version__ = "0.1.0"
__all__ = [
    "Cell",
    "CellStatus",
    "CellType",
    "CellbookConfig",
    "load_config",
    "save_config",
    "NotebookDocument",
    "NotebookEditor",
    "NotebookError",
    "LoadParseError",
    "SaveIOError",
    "KernelUnavailable",
    "KernelCapabilityError",
    "KernelConnectError",
    "KernelDeadError",
    "ExecutionTimeout",
    "ExecutionResult",
    "KernelSession",
    "KernelSpec",
    "KernelManager",
    "KernelPicker",
    "NotebookDocumentRegistry",
    "CellUndoManager",
    "OperationType",
    "StructuralOperation",
    "NotebookService",
    "Workspace",
]
