"""
Interpreter loop executed inside the user's Python interpreter.

Temper launches this file with the configured interpreter and talks to it
over stdin/stdout. It must only depend on the standard library; matplotlib
is used for figure capture when the interpreter happens to provide it.

A request made of a single expression has its value printed with repr()
unless it is None or the expression ends with a semicolon. Longer blocks
only print what they print themselves.
"""
import ast
import base64
import io
import json
import sys
import tokenize
import traceback
from contextlib import redirect_stderr, redirect_stdout

try:
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt
except Exception:
    plt = None

READY_MARKER = "PYTHON_READY"

_protocol_out = sys.stdout
_namespace = {"__name__": "__main__", "__builtins__": __builtins__}


def _figure_numbers():
    if plt is None:
        return set()
    return set(plt.get_fignums())


def _capture_new_figure(before):
    """Return the most recent figure opened by the request as base64 PNG."""
    if plt is None:
        return ""
    created = [num for num in plt.get_fignums() if num not in before]
    if not created:
        return ""
    figure = plt.figure(created[-1])
    buf = io.BytesIO()
    figure.savefig(buf, format="png", bbox_inches="tight", pad_inches=0.1, dpi=100)
    plt.close("all")
    return base64.b64encode(buf.getvalue()).decode("ascii")


_SILENT_TOKENS = (tokenize.COMMENT, tokenize.NL, tokenize.NEWLINE, tokenize.INDENT, tokenize.DEDENT, tokenize.ENDMARKER)


def _ends_with_semicolon(code):
    tokens = tokenize.generate_tokens(io.StringIO(code).readline)
    significant = [tok.string for tok in tokens if tok.type not in _SILENT_TOKENS]
    return bool(significant) and significant[-1] == ";"


def _run(code):
    tree = ast.parse(code, "<cell>", "exec")
    echo = (
        len(tree.body) == 1
        and isinstance(tree.body[0], ast.Expr)
        and not _ends_with_semicolon(code)
    )
    if not echo:
        exec(compile(tree, "<cell>", "exec"), _namespace)
        return

    value = eval(compile(ast.Expression(tree.body[0].value), "<cell>", "eval"), _namespace)
    if value is not None:
        print(repr(value))


def execute(code):
    stdout = io.StringIO()
    stderr = io.StringIO()
    before = _figure_numbers()
    image_data = ""

    with redirect_stdout(stdout), redirect_stderr(stderr):
        try:
            _run(code)
        except SyntaxError as e:
            stderr.write("".join(traceback.format_exception_only(type(e), e)))
        except BaseException as e:  # SystemExit and KeyboardInterrupt from user code too
            stderr.write("".join(traceback.format_exception(type(e), e, e.__traceback__)))

    try:
        image_data = _capture_new_figure(before)
    except Exception as e:
        stderr.write(f"Figure capture failed: {e}\n")

    return {"stdout": stdout.getvalue(), "stderr": stderr.getvalue(), "imageData": image_data}


def emit_result(result, seq):
    result["seq"] = seq
    _protocol_out.write("###RESULT###\n")
    _protocol_out.write(json.dumps(result) + "\n")
    _protocol_out.write("###END###\n")
    _protocol_out.flush()


def _read_line():
    line = sys.stdin.readline()
    if not line:
        return None
    return line[:-1] if line.endswith("\n") else line


def main():
    seq = 0
    _protocol_out.write(READY_MARKER + "\n")
    _protocol_out.flush()

    while True:
        line = _read_line()
        if line is None or line == "EXIT":
            break
        if not line.startswith("EXEC:"):
            continue

        code = line[len("EXEC:"):]
        if code == "MULTILINE":
            code_lines = []
            while True:
                code_line = _read_line()
                if code_line is None or code_line == "END_CODE":
                    break
                code_lines.append(code_line)
            code = "\n".join(code_lines)

        seq += 1
        try:
            result = execute(code)
        except Exception as e:
            result = {"stdout": "", "stderr": f"Python process error: {e}\n", "imageData": ""}
        emit_result(result, seq)


if __name__ == "__main__":
    main()
