"""Pytest fixtures shared across all test modules."""

import pytest

from cellbook.config import CellbookConfig
from cellbook.document import NotebookDocument
from cellbook.events import Emitter
from cellbook.kernel import KernelSpec
from cellbook.kernel_manager import KernelManager
from cellbook.notifications import NotificationManager


def ok_script(*texts, count=1):
    """Messages of a successful execution that prints ``texts`` to stdout."""
    messages = [
        {"stream": "status", "data": "running"},
        {"stream": "execution_count", "data": count},
    ]
    for text in texts:
        messages.append({"output_type": "stream", "name": "stdout", "text": text})
    messages.append({"stream": "status", "data": "ok"})
    return messages


class FakeProvider:
    """
    Scripted kernel provider.

    ``script`` is a list of messages, or a callable taking the code and
    returning one. A silent provider never answers. Every message callback
    is kept so tests can deliver late output after the result settled.
    """

    def __init__(self, script=None, silent=False):
        self.script = script
        self.silent = silent
        self.executed = []
        self.callbacks = []
        self.interrupt_count = 0
        self.restart_count = 0
        self.shut_down = False
        self.destroyed = False
        self.emitter = Emitter()

    def execute(self, code, on_message):
        self.executed.append(code)
        self.callbacks.append(on_message)
        if self.silent:
            return
        script = self.script
        if callable(script):
            script = script(code)
        for message in script if script is not None else ok_script("out\n"):
            on_message(message)

    def send(self, message, index=-1):
        self.callbacks[index](message)

    def interrupt(self):
        self.interrupt_count += 1

    def restart(self, on_done):
        self.restart_count += 1
        on_done()

    def shutdown(self):
        self.shut_down = True

    def destroy(self):
        self.destroyed = True

    def on_did_change_execution_state(self, callback):
        return self.emitter.on("state", callback)

    def set_execution_state(self, state):
        self.emitter.emit("state", state)


class FakeDiscovery:
    """Kernel discovery returning fixed specs and handing out FakeProviders."""

    def __init__(self, specs=None, provider_factory=None):
        if specs is None:
            specs = [{"name": "python3", "display_name": "Python 3", "language": "python"}]
        self.specs = specs
        self.provider_factory = provider_factory or FakeProvider
        self.providers = []
        self.started = []
        self.spec_requests = 0

    async def get_all_kernel_specs(self):
        self.spec_requests += 1
        return list(self.specs)

    async def start_kernel(self, spec: KernelSpec, cwd=None):
        provider = self.provider_factory()
        self.providers.append(provider)
        self.started.append((spec.name, cwd))
        return provider


class MemoryFile:
    """In-memory FileHandle backed by a shared dict."""

    def __init__(self, path, store, fail_writes=False):
        self.path = path
        self.store = store
        self.fail_writes = fail_writes

    def exists(self):
        return self.path in self.store

    async def read(self):
        if self.path not in self.store:
            raise FileNotFoundError(self.path)
        return self.store[self.path]

    async def write(self, content):
        if self.fail_writes:
            raise PermissionError(f"Permission denied: {self.path}")
        self.store[self.path] = content


@pytest.fixture
def file_store():
    return {}


@pytest.fixture
def file_factory(file_store):
    return lambda path: MemoryFile(path, file_store)


@pytest.fixture
def config():
    return CellbookConfig()


@pytest.fixture
def notifications():
    return NotificationManager()


@pytest.fixture
def discovery():
    return FakeDiscovery()


@pytest.fixture
def kernel_manager(discovery, config):
    return KernelManager(discovery, config)


@pytest.fixture
def make_document(kernel_manager, config, notifications, file_factory):
    """Factory for documents wired to the fake kernel and in-memory files."""
    def make(file_path=None, **kwargs):
        kwargs.setdefault("config", config)
        kwargs.setdefault("notifications", notifications)
        kwargs.setdefault("file_factory", file_factory)
        return NotebookDocument(file_path, kwargs.pop("kernel_manager", kernel_manager), **kwargs)
    return make
