"""
KernelManager: discovers kernel specs and owns running kernel sessions.
"""

import logging
import os
from typing import Any, Callable, Optional, Protocol

from cellbook.config import CellbookConfig
from cellbook.errors import KernelUnavailable
from cellbook.events import Disposable, Emitter
from cellbook.kernel import KernelProvider, KernelSession, KernelSpec

logger = logging.getLogger(__name__)


class KernelDiscovery(Protocol):
    """Lists installed kernels and starts providers for them."""

    async def get_all_kernel_specs(self) -> list[dict[str, Any]]: ...

    async def start_kernel(self, spec: KernelSpec, cwd: Optional[str] = None) -> KernelProvider: ...


class KernelManager:
    """
    Manages kernel lifecycle for notebooks.

    One session is kept per kernel name; documents asking for the same
    kernel share it while it is alive.
    """

    def __init__(self, discovery: Optional[KernelDiscovery], config: Optional[CellbookConfig] = None):
        self.discovery = discovery
        self.config = config or CellbookConfig()
        self.emitter = Emitter()
        self.kernels: dict[str, KernelSession] = {}
        self._kernel_specs: Optional[list[KernelSpec]] = None
        self._subscriptions: dict[str, list[Disposable]] = {}

    def _require_discovery(self) -> KernelDiscovery:
        if self.discovery is None:
            raise KernelUnavailable("No kernel discovery available")
        return self.discovery

    async def get_kernel_specs(self) -> list[KernelSpec]:
        """All available kernel specs, cached after the first lookup."""
        if self._kernel_specs is not None:
            return self._kernel_specs

        raw_specs = await self._require_discovery().get_all_kernel_specs()
        if not raw_specs:
            raise KernelUnavailable(
                "No kernel specs found. Please install a Jupyter kernel "
                "(e.g., python -m pip install ipykernel)"
            )
        self._kernel_specs = [
            spec if isinstance(spec, KernelSpec) else KernelSpec.from_raw(spec)
            for spec in raw_specs
        ]
        return self._kernel_specs

    def refresh_kernel_specs(self):
        """Forget cached specs so the next lookup asks discovery again."""
        self._kernel_specs = None

    async def get_kernel_specs_for_language(self, language: Optional[str]) -> list[KernelSpec]:
        """Specs whose language matches directly or through language_mappings."""
        specs = await self.get_kernel_specs()
        if not language:
            return specs

        target = language.lower()
        mappings = {k.lower(): v for k, v in self.config.kernel.language_mappings.items()}

        matches = []
        for spec in specs:
            if not spec.language:
                continue
            kernel_language = spec.language.lower()
            if kernel_language == target:
                matches.append(spec)
                continue
            mapped = mappings.get(kernel_language)
            if mapped and mapped.lower() == target:
                matches.append(spec)
        return matches

    def _resolve_cwd(self, notebook_path: Optional[str]) -> Optional[str]:
        if self.config.kernel.start_dir:
            return self.config.kernel.start_dir
        if notebook_path:
            return os.path.dirname(os.path.abspath(notebook_path))
        return None

    async def get_or_start_kernel(self, kernel_name: str, notebook_path: Optional[str] = None) -> KernelSession:
        """Return the running session for ``kernel_name`` or start one."""
        kernel = self.kernels.get(kernel_name)
        if kernel is not None:
            if kernel.is_alive():
                return kernel
            self._forget(kernel_name)
        return await self.start_kernel(kernel_name, notebook_path)

    async def start_kernel(self, kernel_name: str, notebook_path: Optional[str] = None) -> KernelSession:
        specs = await self.get_kernel_specs()
        spec = next((s for s in specs if s.name == kernel_name), None)
        if spec is None:
            raise KernelUnavailable(f"Kernel not found: {kernel_name}")

        cwd = self._resolve_cwd(notebook_path)
        provider = await self._require_discovery().start_kernel(spec, cwd)
        kernel = KernelSession(provider, spec)
        self.kernels[spec.name] = kernel

        self._subscriptions[spec.name] = [
            kernel.on_did_change_status(
                lambda status: self.emitter.emit(
                    "did-change-status", {"kernel_name": spec.name, "status": status}
                )
            ),
            kernel.on_did_terminate(lambda: self._on_terminated(spec.name, kernel)),
        ]

        logger.info("Started kernel %s (cwd=%s)", spec.name, cwd)
        self.emitter.emit("did-start-kernel", kernel)
        return kernel

    def _on_terminated(self, kernel_name: str, kernel: KernelSession):
        if self.kernels.get(kernel_name) is kernel:
            self._forget(kernel_name)
        self.emitter.emit("did-terminate-kernel", kernel_name)

    def _forget(self, kernel_name: str):
        self.kernels.pop(kernel_name, None)
        for subscription in self._subscriptions.pop(kernel_name, []):
            subscription.dispose()

    def shutdown_kernel(self, kernel_name: str):
        kernel = self.kernels.get(kernel_name)
        if kernel is not None:
            kernel.shutdown()
            self._forget(kernel_name)

    def shutdown_all(self):
        for name, kernel in list(self.kernels.items()):
            try:
                kernel.shutdown()
            except Exception:
                logger.exception("Error shutting down %s", name)
            self._forget(name)

    async def restart_kernel(self, kernel_name: str):
        kernel = self.kernels.get(kernel_name)
        if kernel is not None:
            await kernel.restart()

    def on_did_change_status(self, callback: Callable[[dict[str, str]], None]) -> Disposable:
        return self.emitter.on("did-change-status", callback)

    def on_did_start_kernel(self, callback: Callable[[KernelSession], None]) -> Disposable:
        return self.emitter.on("did-start-kernel", callback)

    def on_did_terminate_kernel(self, callback: Callable[[str], None]) -> Disposable:
        return self.emitter.on("did-terminate-kernel", callback)

    def destroy(self):
        self.shutdown_all()
        self.emitter.dispose()
