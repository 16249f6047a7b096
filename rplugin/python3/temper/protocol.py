"""
Wire format spoken with a running interpreter loop.

Requests are line-delimited frames written to the interpreter's stdin:

    EXEC:<code>                      single-line code
    EXEC:MULTILINE / ... / END_CODE  multi-line code
    EXIT                             stop the loop

Responses are sentinel-delimited spans on the interpreter's stdout, each
carrying a one-line JSON payload:

    ###RESULT###
    {"stdout": "...", "stderr": "...", "imageData": "...", "seq": 1}
    ###END###

Nothing in this module performs I/O.
"""
import codecs
import json
from dataclasses import dataclass
from typing import List, Optional, Union

from .errors import ProtocolError

EXEC_PREFIX = "EXEC:"
MULTILINE_MARKER = "MULTILINE"
END_CODE_MARKER = "END_CODE"
EXIT_FRAME = "EXIT\n"

RESULT_MARKER = "###RESULT###"
END_MARKER = "###END###"


@dataclass
class ExecutionResult:
    """Captured output of one execution."""

    stdout: str = ""
    stderr: str = ""
    image_data: Optional[str] = None  # base64 PNG
    seq: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return not self.stdout.strip() and not self.stderr.strip() and not self.image_data


@dataclass
class DecodedEvent:
    """
    One thing recognized in an interpreter's output stream.

    kind is one of 'ready', 'result', 'error' or 'stray'.
    """

    kind: str
    result: Optional[ExecutionResult] = None
    error: Optional[ProtocolError] = None
    text: str = ""


def encode_request(code: str) -> str:
    """
    Encode a piece of code as a request frame.

    Args:
        code: Source code, possibly spanning several lines

    Returns:
        str: The frame text, newline terminated, ready to be written to stdin
    """
    if "\n" not in code:
        return f"{EXEC_PREFIX}{code}\n"

    lines = [f"{EXEC_PREFIX}{MULTILINE_MARKER}"]
    lines.extend(code.split("\n"))
    lines.append(END_CODE_MARKER)
    return "\n".join(lines) + "\n"


def parse_payload(text: str, language: Optional[str] = None) -> ExecutionResult:
    """
    Parse the JSON payload enclosed in a result span.

    Raises:
        ProtocolError: If the payload is not a JSON object with string
            'stdout' and 'stderr' fields.
    """
    try:
        payload = json.loads(text)
    except ValueError as e:
        raise ProtocolError(f"Malformed result payload: {e}", language) from e

    if not isinstance(payload, dict):
        raise ProtocolError(f"Result payload is not an object: {text[:80]!r}", language)

    stdout = payload.get("stdout")
    stderr = payload.get("stderr")
    if not isinstance(stdout, str) or not isinstance(stderr, str):
        raise ProtocolError("Result payload lacks string 'stdout'/'stderr' fields", language)

    image_data = payload.get("imageData") or None
    if image_data is not None and not isinstance(image_data, str):
        raise ProtocolError("Result payload has a non-string 'imageData' field", language)

    seq = payload.get("seq")
    if seq is not None and (isinstance(seq, bool) or not isinstance(seq, int)):
        raise ProtocolError(f"Result payload has an invalid 'seq' field: {seq!r}", language)

    return ExecutionResult(stdout=stdout, stderr=stderr, image_data=image_data, seq=seq)


class ResponseDecoder:
    """
    Incremental decoder for an interpreter's stdout.

    Bytes are fed as they arrive, in chunks of any size. Until the readiness
    marker has been seen every complete line is reported as stray output.
    After that, each complete ###RESULT###/###END### span produces exactly one
    'result' (or 'error') event; incomplete spans stay buffered.
    """

    def __init__(self, ready_marker: str, language: Optional[str] = None):
        self.ready_marker = ready_marker
        self.language = language
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.ready = False

    def reset(self):
        self._decoder.reset()
        self._buffer = ""
        self.ready = False

    @property
    def buffered(self) -> str:
        return self._buffer

    def feed(self, data: Union[bytes, str]) -> List[DecodedEvent]:
        """
        Accumulate a chunk of output and return every event it completes.

        Args:
            data: Raw bytes (or already decoded text) read from stdout

        Returns:
            list: The events completed by this chunk, in stream order. Empty
                when no marker line or span has been completed yet.
        """
        if isinstance(data, bytes):
            data = self._decoder.decode(data)
        self._buffer += data

        events: List[DecodedEvent] = []
        if not self.ready:
            self._scan_for_ready(events)
            if not self.ready:
                return events
        self._scan_for_results(events)
        return events

    def _scan_for_ready(self, events: List[DecodedEvent]):
        while not self.ready:
            newline = self._buffer.find("\n")
            if newline == -1:
                return
            line = self._buffer[:newline].rstrip("\r")
            self._buffer = self._buffer[newline + 1:]
            if line.strip() == self.ready_marker:
                self.ready = True
                events.append(DecodedEvent(kind="ready", text=line))
            elif line.strip():
                events.append(DecodedEvent(kind="stray", text=line))

    def _scan_for_results(self, events: List[DecodedEvent]):
        while True:
            start = self._buffer.find(RESULT_MARKER)
            if start == -1:
                # Keep a possibly partial marker at the tail
                cut = self._buffer.rfind("\n")
                if cut != -1:
                    self._emit_stray(events, self._buffer[:cut + 1])
                    self._buffer = self._buffer[cut + 1:]
                return

            if start > 0:
                self._emit_stray(events, self._buffer[:start])
                self._buffer = self._buffer[start:]

            # The end marker must sit on its own line; a JSON payload never
            # contains a raw newline, so this cannot match inside the payload.
            end = self._buffer.find("\n" + END_MARKER, len(RESULT_MARKER))
            if end == -1:
                return

            payload = self._buffer[len(RESULT_MARKER):end].strip()
            self._buffer = self._buffer[end + 1 + len(END_MARKER):]
            if self._buffer.startswith("\r\n"):
                self._buffer = self._buffer[2:]
            elif self._buffer.startswith("\n"):
                self._buffer = self._buffer[1:]

            try:
                events.append(DecodedEvent(kind="result", result=parse_payload(payload, self.language)))
            except ProtocolError as e:
                events.append(DecodedEvent(kind="error", error=e, text=payload))

    @staticmethod
    def _emit_stray(events: List[DecodedEvent], text: str):
        if text.strip():
            events.append(DecodedEvent(kind="stray", text=text.rstrip("\r\n")))
