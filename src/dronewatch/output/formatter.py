from __future__ import annotations

import sys
from typing import TYPE_CHECKING, Any

from rich.console import Console

from dronewatch.output.json_output import format_json_error, format_json_response
from dronewatch.output.rich_output import RichOutput

if TYPE_CHECKING:
    from io import TextIOBase

FORMATS = ("rich", "json", "quiet")


def detect_format(stream: Any, forced: str | None = None) -> str:
    """``forced`` wins; otherwise rich on a terminal and JSON when piped."""
    if forced is not None:
        if forced not in FORMATS:
            raise ValueError(f"Unknown output format: {forced!r}")
        return forced
    isatty = getattr(stream, "isatty", None)
    return "rich" if isatty is not None and isatty() else "json"


class OutputFormatter:
    """Routes command results to rich tables or JSON envelopes.

    JSON goes to *stream* (default ``sys.stdout``).  Rich output uses its
    own console; in ``quiet`` mode that console writes to stderr so stdout
    stays empty for scripts.
    """

    def __init__(
        self,
        *,
        stream: TextIOBase | Any | None = None,
        force_format: str | None = None,
    ) -> None:
        self._stream = stream or sys.stdout
        self._format = detect_format(self._stream, force_format)
        self._console = Console(stderr=self._format == "quiet")
        self._rich = RichOutput(self._console)

    @property
    def format(self) -> str:  # noqa: A003
        return self._format

    @property
    def console(self) -> Console:
        return self._console

    @property
    def rich(self) -> RichOutput:
        return self._rich

    def _write(self, text: str) -> None:
        print(text, file=self._stream, flush=True)  # noqa: T201

    def output(self, data: Any, *, command: str) -> None:
        """Emit *data* as an envelope; rich callers normally use :attr:`rich`."""
        if self._format == "json":
            self._write(format_json_response(data=data, command=command))
        else:
            self._rich.info(str(data))

    def output_error(self, *, code: str, message: str, command: str, **extra: Any) -> None:
        if self._format == "json":
            self._write(format_json_error(code=code, message=message, command=command, **extra))
        else:
            self._rich.error(message)

    def stream_line(self, raw: str) -> None:
        """Write one broadcast verbatim (JSON lines for ``watch`` pipes)."""
        if self._format == "json":
            self._write(raw)
