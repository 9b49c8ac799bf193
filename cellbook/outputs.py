"""
Output reducer: normalizes execution result fragments and merges them into
a cell's output list.

Outputs are plain dictionaries in the notebook output shape, keyed by
``output_type``:

- ``stream``          {name: stdout|stderr, text}
- ``execute_result``  {data, metadata, execution_count}
- ``display_data``    {data, metadata}
- ``error``           {ename, evalue, traceback}
"""

import time
from typing import Any, Optional


STREAM_NAMES = ("stdout", "stderr")

# MIME types whose payload is text and is stored as a list of lines on disk.
_TEXT_MIME_PREFIXES = ("text/",)
_TEXT_MIME_TYPES = ("application/javascript", "image/svg+xml")


def split_source(source: str) -> list[str]:
    """
    Split text into on-disk line fragments.

    Every line keeps its trailing newline except the last one, and empty
    fragments are dropped, so ``"a\\nb\\n"`` becomes ``["a\\n", "b\\n"]``.
    """
    lines = source.split("\n")
    fragments = [line + "\n" if i < len(lines) - 1 else line for i, line in enumerate(lines)]
    return [fragment for fragment in fragments if fragment != ""]


def join_source(source: Any) -> str:
    """Inverse of split_source; accepts a string, a list of fragments or None."""
    if source is None:
        return ""
    if isinstance(source, (list, tuple)):
        return "".join(str(part) for part in source)
    return str(source)


def escape_carriage_return(text: str) -> str:
    """
    Fold carriage returns the way a terminal would.

    Text after a ``\\r`` overwrites the beginning of the current line. A
    trailing ``\\r`` is kept so the next merged fragment can overwrite the
    line it belongs to.
    """
    if "\r" not in text:
        return text
    text = text.replace("\r\n", "\n")
    pending = text.endswith("\r")
    if pending:
        text = text.rstrip("\r")

    folded = []
    for line in text.split("\n"):
        current = ""
        for segment in line.split("\r"):
            current = segment + current[len(segment):]
        folded.append(current)

    result = "\n".join(folded)
    return result + "\r" if pending else result


def _is_text_mime(mime_type: str) -> bool:
    return mime_type.startswith(_TEXT_MIME_PREFIXES) or mime_type in _TEXT_MIME_TYPES


def _normalize_data(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        return {"text/plain": "" if data is None else str(data)}
    normalized = {}
    for mime_type, value in data.items():
        if isinstance(value, list) and _is_text_mime(mime_type):
            value = join_source(value)
        normalized[mime_type] = value
    return normalized


def normalize_output(output: Any) -> dict[str, Any]:
    """
    Return a well-formed copy of a raw output fragment.

    Missing fields get defaults, list-of-lines text is joined, and a
    ``type`` key is accepted in place of ``output_type``.
    """
    if not isinstance(output, dict):
        return {
            "output_type": "display_data",
            "data": {"text/plain": str(output)},
            "metadata": {},
        }

    output_type = output.get("output_type") or output.get("type") or "display_data"

    if output_type == "stream":
        name = output.get("name", "stdout")
        return {
            "output_type": "stream",
            "name": name if name in STREAM_NAMES else "stdout",
            "text": join_source(output.get("text")),
        }

    if output_type in ("execute_result", "display_data"):
        normalized = {
            "output_type": output_type,
            "data": _normalize_data(output.get("data")),
            "metadata": dict(output.get("metadata") or {}),
        }
        if output_type == "execute_result":
            normalized["execution_count"] = output.get("execution_count")
        return normalized

    if output_type == "error":
        traceback = output.get("traceback") or []
        if isinstance(traceback, str):
            traceback = traceback.splitlines()
        return {
            "output_type": "error",
            "ename": str(output.get("ename") or "Error"),
            "evalue": str(output.get("evalue") or ""),
            "traceback": [str(line) for line in traceback],
        }

    normalized = {k: v for k, v in output.items() if k != "type"}
    normalized["output_type"] = output_type
    return normalized


def reduce_outputs(outputs: list[dict[str, Any]], output: Any) -> list[dict[str, Any]]:
    """
    Merge one incoming fragment into ``outputs`` in place.

    A stream fragment whose name matches the last output's stream name is
    concatenated onto it; anything else is appended as a new entry, so
    interleaved stdout/stderr stay distinct and in arrival order.
    """
    incoming = normalize_output(output)

    if incoming["output_type"] == "stream":
        last = outputs[-1] if outputs else None
        if last is not None and last.get("output_type") == "stream" and last.get("name") == incoming["name"]:
            last["text"] = escape_carriage_return(last.get("text", "") + incoming["text"])
            return outputs
        incoming["text"] = escape_carriage_return(incoming["text"])

    outputs.append(incoming)
    return outputs


def output_to_notebook_format(output: dict[str, Any]) -> dict[str, Any]:
    """Convert a normalized output to its on-disk shape (multiline text as line lists)."""
    output = normalize_output(output)
    output_type = output["output_type"]

    if output_type == "stream":
        return {**output, "text": split_source(output["text"])}

    if output_type in ("execute_result", "display_data"):
        data = {}
        for mime_type, value in output["data"].items():
            if isinstance(value, str) and _is_text_mime(mime_type):
                value = split_source(value)
            data[mime_type] = value
        return {**output, "data": data}

    return output


def error_output(error: BaseException) -> dict[str, Any]:
    """Build a synthetic error output summarizing a host-side failure."""
    traceback = getattr(error, "traceback", None)
    if not traceback:
        traceback = [f"{type(error).__name__}: {error}"]
    return {
        "output_type": "error",
        "ename": type(error).__name__,
        "evalue": str(error),
        "traceback": list(traceback),
    }


def get_output_plain_text(outputs: list[dict[str, Any]]) -> str:
    """Plain-text rendering of a list of outputs."""
    parts = []
    for output in outputs:
        output_type = output.get("output_type")
        if output_type == "stream":
            parts.append(output.get("text", ""))
        elif output_type in ("execute_result", "display_data"):
            text = output.get("data", {}).get("text/plain")
            if text is not None:
                parts.append(join_source(text))
        elif output_type == "error":
            parts.append(f"{output.get('ename', 'Error')}: {output.get('evalue', '')}")
    return "\n".join(part.rstrip("\n") for part in parts if part)


def format_execution_time(milliseconds: Optional[float]) -> Optional[str]:
    """Human readable duration: ``850ms``, ``2.4s``, ``3m 12s``."""
    if milliseconds is None:
        return None
    if milliseconds < 1000:
        return f"{int(milliseconds)}ms"
    if milliseconds < 60_000:
        return f"{milliseconds / 1000:.1f}s"
    minutes, seconds = divmod(int(milliseconds // 1000), 60)
    return f"{minutes}m {seconds}s"


class ExecutionTimer:
    """Measures how long a cell runs."""

    def __init__(self):
        self._started: Optional[float] = None
        self._elapsed_ms: Optional[int] = None

    def start(self):
        self._started = time.monotonic()
        self._elapsed_ms = None

    def stop(self) -> Optional[int]:
        if self._started is not None:
            self._elapsed_ms = int((time.monotonic() - self._started) * 1000)
            self._started = None
        return self._elapsed_ms

    def is_running(self) -> bool:
        return self._started is not None

    def elapsed_ms(self) -> Optional[int]:
        if self._started is not None:
            return int((time.monotonic() - self._started) * 1000)
        return self._elapsed_ms

    def formatted(self) -> Optional[str]:
        return format_execution_time(self.elapsed_ms())
