"""
NotebookDocumentRegistry: one shared NotebookDocument per file.

Every editor that opens the same path gets the same document instance,
so edits made in one view show up in all of them.
"""

import logging
import os
from typing import Any, Optional

from cellbook.config import CellbookConfig
from cellbook.document import FileFactory, NotebookDocument, PickerFactory
from cellbook.kernel_manager import KernelManager
from cellbook.notifications import NotificationManager
from cellbook.storage import LocalFile

logger = logging.getLogger(__name__)


def normalize_path(path: str) -> str:
    return os.path.normpath(os.path.abspath(os.path.expanduser(path)))


class NotebookDocumentRegistry:
    """
    Maps file paths to open documents.

    Collaborators are passed in and handed to every document the registry
    creates. A document leaves the registry when it is destroyed, and its
    key follows it through Save As.
    """

    def __init__(
        self,
        kernel_manager: Optional[KernelManager] = None,
        config: Optional[CellbookConfig] = None,
        notifications: Optional[NotificationManager] = None,
        file_factory: FileFactory = LocalFile,
        picker_factory: Optional[PickerFactory] = None,
    ):
        self.kernel_manager = kernel_manager
        self.config = config or CellbookConfig()
        self.notifications = notifications or NotificationManager()
        self.file_factory = file_factory
        self.picker_factory = picker_factory
        self.documents: dict[str, NotebookDocument] = {}

    def _new_document(self, file_path: Optional[str]) -> NotebookDocument:
        return NotebookDocument(
            file_path,
            self.kernel_manager,
            config=self.config,
            notifications=self.notifications,
            file_factory=self.file_factory,
            picker_factory=self.picker_factory,
        )

    async def get_or_create_document(self, file_path: str) -> NotebookDocument:
        """
        Return the open document for ``file_path`` or create and load one.

        The document is registered before loading starts, so a concurrent
        caller for the same path waits on the same load instead of creating
        a second document.
        """
        key = normalize_path(file_path)
        document = self.documents.get(key)
        if document is not None:
            await document.wait_until_loaded()
            return document

        document = self._new_document(key)
        self.documents[key] = document
        self._track(document)

        try:
            await document.load()
        except BaseException:
            document.destroy()
            raise
        return document

    def _track(self, document: NotebookDocument):
        document.on_did_destroy(lambda: self._remove_document(document))
        document.on_did_change_path(lambda new_path: self._rekey_document(document, new_path))

    def _remove_document(self, document: NotebookDocument):
        for path, doc in list(self.documents.items()):
            if doc is document:
                del self.documents[path]

    def _rekey_document(self, document: NotebookDocument, new_path: Optional[str]):
        new_key = normalize_path(new_path) if new_path else None
        for path, doc in list(self.documents.items()):
            if doc is document and path != new_key:
                del self.documents[path]
        if new_key:
            existing = self.documents.get(new_key)
            if existing is not None and existing is not document:
                logger.warning("Replacing registry entry for %s", new_key)
            self.documents[new_key] = document

    async def create_untitled_document(self) -> NotebookDocument:
        """
        A fresh document with no file.

        It is not keyed until Save As gives it a path.
        """
        document = self._new_document(None)
        self._track(document)
        await document.initialize()
        return document

    async def create_document_from_data(
        self, notebook_data: dict[str, Any], file_path: Optional[str] = None
    ) -> NotebookDocument:
        """
        Restore unsaved content from serialized data.

        With ``file_path`` the content belongs to a file whose edits were
        never saved; if that file is already open, the open document wins.
        """
        if file_path is not None:
            existing = self.get_document(file_path)
            if existing is not None:
                await existing.wait_until_loaded()
                return existing

        document = self._new_document(normalize_path(file_path) if file_path else None)
        if file_path:
            self.documents[document.file_path] = document
        self._track(document)
        try:
            await document.initialize_from_data(notebook_data)
        except BaseException:
            document.destroy()
            raise
        return document

    def get_document(self, file_path: str) -> Optional[NotebookDocument]:
        return self.documents.get(normalize_path(file_path))

    def has_document(self, file_path: str) -> bool:
        return normalize_path(file_path) in self.documents

    def get_documents(self) -> list[NotebookDocument]:
        return list(self.documents.values())

    def destroy(self):
        """Destroy every tracked document."""
        for document in list(self.documents.values()):
            document.destroy()
        self.documents.clear()
