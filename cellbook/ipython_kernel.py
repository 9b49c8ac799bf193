"""
IPythonKernel: in-process kernel provider backed by IPython's InteractiveShell.
"""

import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any, Callable, Optional

from IPython.core.interactiveshell import InteractiveShell
from IPython.utils.capture import capture_output

from cellbook.events import Disposable, Emitter
from cellbook.kernel import KernelSpec

logger = logging.getLogger(__name__)


IPYTHON_KERNEL_SPEC = {
    "name": "python3",
    "display_name": "Python 3 (in-process)",
    "language": "python",
}


def _build_mime_bundle(obj) -> dict:
    """
    Build a MIME bundle dictionary from an object.

    Checks for IPython rich display methods and builds a dict
    mapping MIME types to their representations. For display objects
    that have a primary content attribute (e.g. HTML.data), use that
    as the text/plain fallback instead of repr().
    """
    rich_content = None

    rich_entries = []
    for mime_type, method_name in [
        ("text/html", "_repr_html_"),
        ("text/markdown", "_repr_markdown_"),
        ("application/json", "_repr_json_"),
        ("text/latex", "_repr_latex_"),
        ("image/svg+xml", "_repr_svg_"),
        ("image/png", "_repr_png_"),
    ]:
        method = getattr(obj, method_name, None)
        if callable(method):
            value = method()
            if value is not None:
                rich_entries.append((mime_type, value))
                if rich_content is None:
                    rich_content = value

    # Avoids "<IPython...object>" strings for display objects
    plain = rich_content if rich_content is not None else repr(obj)
    data = {"text/plain": plain}
    for mime_type, value in rich_entries:
        data[mime_type] = value

    return data


def _error_message(error: BaseException) -> dict[str, Any]:
    return {
        "output_type": "error",
        "ename": type(error).__name__,
        "evalue": str(error),
        "traceback": [],
    }


class IPythonKernel:
    """
    Kernel provider that runs code in this process.

    Cells run one at a time on a worker thread, so the event loop stays
    free to enforce timeouts. Each execute call reports, through its
    message callback, a running status, the execution count, the captured
    outputs (stdout, stderr, display() calls, the cell's result or error)
    and finally ``ok`` or ``error``.
    """

    def __init__(self, cwd: Optional[str] = None):
        self.ip = InteractiveShell.instance()
        self.cwd = cwd
        self.execution_count = 0
        self.emitter = Emitter()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cellbook-ipython")
        self._setup_namespace()

    def _setup_namespace(self):
        self.ip.user_ns["__notebook__"] = True

    def _set_execution_state(self, state: str):
        self.emitter.emit("did-change-execution-state", state)

    @contextmanager
    def _working_directory(self):
        if not self.cwd or not os.path.isdir(self.cwd):
            yield
            return
        previous = os.getcwd()
        os.chdir(self.cwd)
        try:
            yield
        finally:
            os.chdir(previous)

    def execute(self, code: str, on_message: Callable[[dict[str, Any]], None]) -> Future:
        """Queue ``code`` on the worker thread; the returned future resolves when it finishes."""
        return self._executor.submit(self._run_cell, code, on_message)

    def _run_cell(self, code: str, on_message: Callable[[dict[str, Any]], None]):
        self.execution_count += 1
        self._set_execution_state("busy")
        on_message({"stream": "status", "data": "running"})
        on_message({"stream": "execution_count", "data": self.execution_count})

        outputs = []
        failed = False
        try:
            with self._working_directory(), capture_output() as captured:
                result = self.ip.run_cell(code, silent=False)

            if captured.stdout:
                outputs.append({"output_type": "stream", "name": "stdout", "text": captured.stdout})

            if captured.stderr:
                outputs.append({"output_type": "stream", "name": "stderr", "text": captured.stderr})

            for display_output in captured.outputs:
                data = {}
                if hasattr(display_output, "data"):
                    data = display_output.data
                elif hasattr(display_output, "_repr_html_"):
                    data = _build_mime_bundle(display_output)
                outputs.append({"output_type": "display_data", "data": data, "metadata": {}})

            if result.success:
                if result.result is not None:
                    outputs.append({
                        "output_type": "execute_result",
                        "data": _build_mime_bundle(result.result),
                        "metadata": {},
                        "execution_count": self.execution_count,
                    })
            else:
                failed = True
                error = result.error_in_exec or result.error_before_exec
                if error is not None:
                    outputs.append(_error_message(error))

        except Exception as e:
            logger.exception("IPython failed to run cell")
            failed = True
            outputs.append(_error_message(e))

        for output in outputs:
            on_message(output)
        on_message({"stream": "status", "data": "error" if failed else "ok"})
        self._set_execution_state("idle")

    def interrupt(self):
        # A running cell cannot be stopped from another thread
        logger.debug("Interrupt requested for in-process kernel; ignoring")

    def restart(self, on_done: Callable[[], None]) -> Future:
        """Reset the namespace once queued cells have finished."""
        return self._executor.submit(self._reset, on_done)

    def _reset(self, on_done: Callable[[], None]):
        self._set_execution_state("restarting")
        self.ip.reset()
        self.execution_count = 0
        self._setup_namespace()
        self._set_execution_state("idle")
        on_done()

    def shutdown(self):
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.ip.reset()
        logger.info("In-process kernel shut down")

    def destroy(self):
        self.emitter.dispose()

    def on_did_change_execution_state(self, callback: Callable[[str], None]) -> Disposable:
        return self.emitter.on("did-change-execution-state", callback)


class IPythonKernelDiscovery:
    """Advertises the in-process IPython kernel."""

    async def get_all_kernel_specs(self) -> list[dict[str, Any]]:
        return [dict(IPYTHON_KERNEL_SPEC)]

    async def start_kernel(self, spec: KernelSpec, cwd: Optional[str] = None) -> IPythonKernel:
        return IPythonKernel(cwd=cwd)
