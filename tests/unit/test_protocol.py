"""
Unit tests for request framing and response decoding.
"""
import json
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "rplugin", "python3"))

from temper.errors import ProtocolError
from temper.protocol import (
    ExecutionResult,
    ResponseDecoder,
    encode_request,
    parse_payload,
)


def result_span(stdout="", stderr="", image="", seq=None):
    payload = {"stdout": stdout, "stderr": stderr, "imageData": image}
    if seq is not None:
        payload["seq"] = seq
    return f"###RESULT###\n{json.dumps(payload)}\n###END###\n"


def ready_decoder():
    decoder = ResponseDecoder("PYTHON_READY", "python")
    decoder.feed("PYTHON_READY\n")
    return decoder


class TestEncodeRequest:
    """Test cases for request frames."""

    def test_single_line(self):
        assert encode_request("print(1+1)") == "EXEC:print(1+1)\n"

    def test_empty_code_is_single_line(self):
        assert encode_request("") == "EXEC:\n"

    def test_multiline(self):
        frame = encode_request("x = 1\nprint(x)")
        assert frame == "EXEC:MULTILINE\nx = 1\nprint(x)\nEND_CODE\n"

    def test_multiline_keeps_lines_verbatim(self):
        code = "def f():\n    return 1\n\nf()"
        lines = encode_request(code).split("\n")
        assert lines[0] == "EXEC:MULTILINE"
        assert lines[1:-2] == code.split("\n")
        assert lines[-2] == "END_CODE"
        assert lines[-1] == ""

    def test_trailing_newline_gives_empty_last_line(self):
        assert encode_request("a\n") == "EXEC:MULTILINE\na\n\nEND_CODE\n"


class TestParsePayload:
    """Test cases for result payload parsing."""

    def test_all_fields(self):
        result = parse_payload('{"stdout": "2\\n", "stderr": "", "imageData": "abc", "seq": 3}')
        assert result == ExecutionResult(stdout="2\n", stderr="", image_data="abc", seq=3)

    def test_empty_image_means_no_image(self):
        assert parse_payload('{"stdout": "", "stderr": "", "imageData": ""}').image_data is None

    def test_missing_image_and_seq(self):
        result = parse_payload('{"stdout": "a", "stderr": "b"}')
        assert result.image_data is None
        assert result.seq is None

    @pytest.mark.parametrize("text", [
        "not json",
        "[1, 2]",
        '{"stdout": "a"}',
        '{"stdout": 1, "stderr": ""}',
        '{"stdout": "", "stderr": "", "imageData": 5}',
        '{"stdout": "", "stderr": "", "seq": "1"}',
    ])
    def test_invalid_payloads(self, text):
        with pytest.raises(ProtocolError):
            parse_payload(text, "python")


class TestResponseDecoder:
    """Test cases for the incremental stdout decoder."""

    def test_ready_marker(self):
        decoder = ResponseDecoder("JULIA_READY", "julia")
        events = decoder.feed(b"JULIA_READY\n")
        assert [e.kind for e in events] == ["ready"]
        assert decoder.ready is True

    def test_output_before_ready_is_stray(self):
        decoder = ResponseDecoder("PYTHON_READY")
        events = decoder.feed("warming up\nPYTHON_READY\n")
        assert [e.kind for e in events] == ["stray", "ready"]
        assert events[0].text == "warming up"

    def test_no_result_yet(self):
        decoder = ready_decoder()
        assert decoder.feed('###RESULT###\n{"stdout": "2\\n", "stderr": ""}\n') == []
        assert decoder.buffered.startswith("###RESULT###")

    def test_single_result(self):
        decoder = ready_decoder()
        events = decoder.feed(result_span(stdout="2\n"))
        assert len(events) == 1
        assert events[0].kind == "result"
        assert events[0].result.stdout == "2\n"
        assert decoder.buffered == ""

    def test_two_results_in_one_chunk(self):
        decoder = ready_decoder()
        events = decoder.feed(result_span(stdout="a", seq=1) + result_span(stdout="b", seq=2))
        assert [e.result.stdout for e in events] == ["a", "b"]

    def test_byte_at_a_time(self):
        decoder = ready_decoder()
        data = result_span(stdout="héllo ✓\n", seq=1).encode("utf-8")
        events = []
        for i in range(len(data)):
            events.extend(decoder.feed(data[i:i + 1]))
        assert len(events) == 1
        assert events[0].result.stdout == "héllo ✓\n"

    def test_end_marker_inside_output_is_not_a_boundary(self):
        decoder = ready_decoder()
        events = decoder.feed(result_span(stdout="###END###\n"))
        assert len(events) == 1
        assert events[0].result.stdout == "###END###\n"

    def test_malformed_payload_is_an_error_event(self):
        decoder = ready_decoder()
        events = decoder.feed("###RESULT###\n{not json\n###END###\n" + result_span(stdout="ok"))
        assert [e.kind for e in events] == ["error", "result"]
        assert isinstance(events[0].error, ProtocolError)
        assert events[1].result.stdout == "ok"

    def test_stray_text_between_results(self):
        decoder = ready_decoder()
        events = decoder.feed("noise\n" + result_span(stdout="x"))
        assert [e.kind for e in events] == ["stray", "result"]

    def test_reset(self):
        decoder = ready_decoder()
        decoder.feed("###RESULT###\n")
        decoder.reset()
        assert decoder.ready is False
        assert decoder.buffered == ""


if __name__ == "__main__":
    pytest.main([__file__])
