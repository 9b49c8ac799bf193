"""
Workspace: wires the kernel manager, document registry and editors
together, and exposes a small service for external consumers.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from cellbook.config import CellbookConfig
from cellbook.document import NotebookDocument
from cellbook.editor import NotebookEditor
from cellbook.events import Disposable
from cellbook.kernel import ExecutionResult, OutputCallback
from cellbook.kernel_manager import KernelDiscovery, KernelManager
from cellbook.kernel_picker import Chooser, KernelPicker
from cellbook.notifications import NotificationManager
from cellbook.registry import NotebookDocumentRegistry, normalize_path
from cellbook.storage import LocalFile

logger = logging.getLogger(__name__)


@dataclass
class NotebookService:
    """Stable facade handed to consumers that should not depend on the workspace."""
    get_kernel_manager: Callable[[], KernelManager]
    get_active_notebook: Callable[[], Optional[NotebookEditor]]
    get_document_registry: Callable[[], NotebookDocumentRegistry]
    run_code: Callable[..., Any]
    on_did_change_kernel_status: Callable[[Callable[[dict], None]], Disposable]


class Workspace:
    """
    Owns every collaborator explicitly; nothing is cached at module level.

    ``destroy`` tears down in order: editors, then documents (which detach
    from their kernels), then kernels.
    """

    def __init__(
        self,
        discovery: Optional[KernelDiscovery] = None,
        config: Optional[CellbookConfig] = None,
        kernel_manager: Optional[KernelManager] = None,
        notifications: Optional[NotificationManager] = None,
        chooser: Optional[Chooser] = None,
        file_factory=LocalFile,
    ):
        self.config = config or CellbookConfig()
        self.notifications = notifications or NotificationManager()
        self.kernel_manager = kernel_manager or KernelManager(discovery, self.config)
        self.chooser = chooser
        self.registry = NotebookDocumentRegistry(
            self.kernel_manager,
            config=self.config,
            notifications=self.notifications,
            file_factory=file_factory,
            picker_factory=self._make_picker,
        )
        self.editors: list[NotebookEditor] = []
        self.active_editor: Optional[NotebookEditor] = None

    def _make_picker(self, document: NotebookDocument) -> KernelPicker:
        kernelspec = document.metadata.get("kernelspec") or {}
        language_info = document.metadata.get("language_info") or {}
        return KernelPicker(
            self.kernel_manager,
            preferred_kernel_name=kernelspec.get("name"),
            language=kernelspec.get("language") or language_info.get("name"),
            auto_select=self.config.kernel.auto_kernel_picker,
            chooser=self.chooser,
        )

    def _track(self, editor: NotebookEditor) -> NotebookEditor:
        self.editors.append(editor)
        editor.on_did_destroy(lambda: self._forget(editor))
        self.set_active_editor(editor)
        return editor

    def _forget(self, editor: NotebookEditor):
        if editor in self.editors:
            self.editors.remove(editor)
        if self.active_editor is editor:
            self.active_editor = self.editors[-1] if self.editors else None

    async def open_notebook(self, path: str) -> NotebookEditor:
        """
        Open ``path`` in a new editor.

        When an editor already shows that file, the new one is a copy of it
        and shares its document.
        """
        key = normalize_path(path)
        for editor in self.editors:
            existing = editor.get_path()
            if existing and normalize_path(existing) == key and not editor.destroyed:
                return self._track(editor.copy())

        document = await self.registry.get_or_create_document(path)
        return self._track(NotebookEditor(document, self.config))

    async def new_notebook(self) -> NotebookEditor:
        document = await self.registry.create_untitled_document()
        return self._track(NotebookEditor(document, self.config))

    async def restore_editor(self, state: dict[str, Any]) -> Optional[NotebookEditor]:
        """Reopen an editor from ``NotebookEditor.serialize`` output."""
        if not state or not (state.get("file_path") or state.get("notebook_data")):
            return None
        editor = await NotebookEditor.deserialize(state, self.registry)
        if editor is None:
            return None
        return self._track(editor)

    def set_active_editor(self, editor: Optional[NotebookEditor]):
        self.active_editor = editor

    def get_active_notebook(self) -> Optional[NotebookEditor]:
        return self.active_editor

    def get_kernel_manager(self) -> KernelManager:
        return self.kernel_manager

    def get_document_registry(self) -> NotebookDocumentRegistry:
        return self.registry

    async def show_kernel_picker(self) -> bool:
        """Pick a kernel for the active notebook and connect it."""
        editor = self.get_active_notebook()
        if editor is None:
            return False
        kernel_spec = await self.registry.picker_factory(editor.document).show()
        if kernel_spec is None:
            return False
        await editor.connect_to_kernel(kernel_spec)
        return True

    async def run_code(
        self,
        code: str,
        kernel_name: str = "python3",
        on_output: Optional[OutputCallback] = None,
    ) -> ExecutionResult:
        """Run code on a shared kernel, outside any notebook."""
        kernel = await self.kernel_manager.get_or_start_kernel(kernel_name)
        return await kernel.execute(code, on_output=on_output, timeout_ms=self.config.execution.timeout_ms)

    def provide_service(self) -> NotebookService:
        return NotebookService(
            get_kernel_manager=self.get_kernel_manager,
            get_active_notebook=self.get_active_notebook,
            get_document_registry=self.get_document_registry,
            run_code=self.run_code,
            on_did_change_kernel_status=self.kernel_manager.on_did_change_status,
        )

    def destroy(self):
        for editor in list(self.editors):
            try:
                editor.destroy()
            except Exception:
                logger.exception("Error destroying editor")
        self.editors.clear()
        self.active_editor = None

        try:
            self.registry.destroy()
        except Exception:
            logger.exception("Error destroying document registry")

        try:
            self.kernel_manager.destroy()
        except Exception:
            logger.exception("Error shutting down kernel manager")
