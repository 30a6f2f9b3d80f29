"""
Instrumentation: rewrite step markers into runtime sync calls.

Every valid marker becomes `_narration_sync.sync_step(step_id, duration)`.
The sync object is a pytest fixture defined by a generated preamble, so the
enclosing test function gains a `_narration_sync` parameter. Statement
boundaries come from the syntax tree; edits are applied to the original
text so comments and formatting survive.
"""

from __future__ import annotations

import ast
import io
import logging
import tokenize
from dataclasses import dataclass, field

from services.annotator import continuation_lines
from services.markers import StepMarker, find_markers, is_marker_comment, split_lines
from services.trail import note

logger = logging.getLogger(__name__)

SYNC_FIXTURE = "_narration_sync"

PREAMBLE_TEMPLATE = """
# --- narration sync (generated) ---
import pytest as _narration_pytest

from services.step_sync import StepSync as _NarrationStepSync


@_narration_pytest.fixture
def {fixture}(page):
    sync = _NarrationStepSync(wait_ms=page.wait_for_timeout, stabilization_ms={stabilization_ms})
    yield sync
    sync.wait_for_final_audio()
# --- end narration sync ---

"""

_BLOCK_TYPES = (ast.FunctionDef, ast.With, ast.For, ast.While, ast.If, ast.Try, ast.TryStar)

_FunctionNode = ast.FunctionDef | ast.AsyncFunctionDef


@dataclass
class InstrumentationResult:
    script: str
    synced_markers: list[StepMarker] = field(default_factory=list)
    skipped_markers: list[StepMarker] = field(default_factory=list)
    logs: list[str] = field(default_factory=list)

    @property
    def durations(self) -> dict[int, int]:
        return {m.step_id: m.audio_duration_ms for m in self.synced_markers if m.step_id is not None}


@dataclass
class _Statement:
    node: ast.stmt
    start: int                     # first line, decorators included
    function: _FunctionNode | None  # innermost enclosing function


@dataclass
class _Placement:
    line: int                      # insert before this 1-based line
    indent: str
    function: _FunctionNode


def _collect_statements(tree: ast.Module) -> list[_Statement]:
    found: list[_Statement] = []

    def visit(body: list[ast.stmt], function: _FunctionNode | None) -> None:
        for node in body:
            decorators = getattr(node, "decorator_list", [])
            start = min([node.lineno] + [d.lineno for d in decorators])
            found.append(_Statement(node=node, start=start, function=function))
            if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                inner: _FunctionNode | None = node
            elif isinstance(node, ast.ClassDef):
                inner = None
            else:
                inner = function
            for name in ("body", "orelse", "finalbody"):
                visit(getattr(node, name, None) or [], inner)
            for handler in getattr(node, "handlers", None) or []:
                visit(handler.body, inner)
            for case in getattr(node, "cases", None) or []:
                visit(case.body, inner)

    visit(tree.body, None)
    found.sort(key=lambda s: s.start)
    return found


def _indent_of(line: str) -> str:
    return line[: len(line) - len(line.lstrip())]


def _is_docstring(node: ast.stmt) -> bool:
    return (
        isinstance(node, ast.Expr)
        and isinstance(node.value, ast.Constant)
        and isinstance(node.value.value, str)
    )


def _placement(stmt: _Statement, lines: list[str]) -> tuple[_Placement | None, str]:
    """Where the sync call goes, or (None, reason) when the marker cannot be honoured."""
    node = stmt.node
    if isinstance(node, _BLOCK_TYPES):
        function = node if isinstance(node, ast.FunctionDef) else stmt.function
        first = node.body[0]
        if isinstance(node, ast.FunctionDef) and _is_docstring(first):
            if len(node.body) > 1:
                first = node.body[1]
            else:
                anchor = (first.end_lineno or first.lineno) + 1
                if function is None:
                    return None, "no enclosing test function"
                return _Placement(anchor, _indent_of(lines[first.lineno - 1]), function), ""
        if first.lineno > node.lineno:
            if function is None:
                return None, "no enclosing test function"
            return _Placement(first.lineno, _indent_of(lines[first.lineno - 1]), function), ""
        if isinstance(node, ast.FunctionDef):
            return None, "function body shares the definition line"
        # One-line block: fall back to placing the call before the block.

    function = stmt.function
    if function is None:
        return None, "module-level statement has no enclosing test function"
    return _Placement(stmt.start, _indent_of(lines[stmt.start - 1]), function), ""


def _check_function(function: _FunctionNode) -> str:
    if isinstance(function, ast.AsyncFunctionDef):
        return f"async function {function.name!r} is not supported"
    if not function.name.startswith("test"):
        return f"function {function.name!r} is not a test function"
    return ""


def _has_param(function: _FunctionNode, name: str) -> bool:
    args = function.args
    params = args.posonlyargs + args.args + args.kwonlyargs
    return any(a.arg == name for a in params)


def _signature_edit(tokens: list[tokenize.TokenInfo], function: _FunctionNode) -> tuple[int, int, str] | None:
    """(line, column, text) that adds the sync fixture to the function's parameters."""
    start = None
    for i, tok in enumerate(tokens):
        if (
            tok.type == tokenize.NAME
            and tok.string == function.name
            and tok.start[0] == function.lineno
            and i > 0
            and tokens[i - 1].string == "def"
        ):
            start = i
            break
    if start is None:
        return None

    open_idx = next(
        (j for j in range(start + 1, len(tokens)) if tokens[j].type == tokenize.OP and tokens[j].string == "("),
        None,
    )
    if open_idx is None:
        return None

    depth = 0
    close_idx = None
    double_star_idx = None
    last_significant = None
    for j in range(open_idx, len(tokens)):
        tok = tokens[j]
        if tok.type == tokenize.OP and tok.string in "([{":
            depth += 1
        elif tok.type == tokenize.OP and tok.string in ")]}":
            depth -= 1
            if depth == 0:
                close_idx = j
                break
        elif (
            depth == 1
            and function.args.kwarg is not None
            and tok.type == tokenize.NAME
            and tok.string == function.args.kwarg.arg
            and tokens[j - 1].string == "**"
        ):
            double_star_idx = j - 1
        if j > open_idx and tok.type not in (tokenize.NL, tokenize.NEWLINE, tokenize.COMMENT):
            last_significant = tok
    if close_idx is None:
        return None

    args = function.args
    has_params = bool(args.posonlyargs or args.args or args.vararg or args.kwonlyargs or args.kwarg)
    has_star = args.vararg is not None or bool(args.kwonlyargs)
    star = "*, " if args.defaults and not has_star else ""

    if not has_params:
        row, col = tokens[open_idx].end
        return row, col, SYNC_FIXTURE
    if double_star_idx is not None:
        row, col = tokens[double_star_idx].start
        return row, col, f"{star}{SYNC_FIXTURE}, "
    if last_significant is None:
        return None
    row, col = last_significant.end
    if last_significant.string == ",":
        return row, col, f" {star}{SYNC_FIXTURE},"
    return row, col, f", {star}{SYNC_FIXTURE}"


def _preamble_anchor(tree: ast.Module) -> int:
    imports = [n for n in tree.body if isinstance(n, (ast.Import, ast.ImportFrom))]
    if imports:
        last = imports[-1]
        return (last.end_lineno or last.lineno) + 1
    if tree.body and _is_docstring(tree.body[0]):
        first = tree.body[0]
        return (first.end_lineno or first.lineno) + 1
    return 1


def instrument_script(annotated: str, *, stabilization_ms: int = 100) -> InstrumentationResult:
    """Insert the sync preamble once and turn every usable marker into a sync call."""
    logs: list[str] = []
    source = annotated if annotated.endswith("\n") else annotated + "\n"

    try:
        tree = ast.parse(source)
        tokens = list(tokenize.generate_tokens(io.StringIO(source).readline))
    except (SyntaxError, tokenize.TokenError) as exc:
        note(logs, logger, "[injector] Script does not parse (%s); not instrumented", exc, level=logging.ERROR)
        return InstrumentationResult(script=annotated, skipped_markers=find_markers(annotated), logs=logs)

    lines = split_lines(source)
    statements = _collect_statements(tree)
    inside = continuation_lines(tree)

    synced: list[StepMarker] = []
    skipped: list[StepMarker] = []
    inserts: dict[int, list[str]] = {}
    removed: set[int] = set()
    claimed: set[int] = set()
    functions: dict[int, _FunctionNode] = {}

    def skip(marker: StepMarker, reason: str) -> None:
        skipped.append(marker)
        note(logs, logger, "[injector] Marker on line %d left as comment: %s", marker.line, reason, level=logging.WARNING)

    for marker in find_markers(source):
        if not marker.is_valid:
            skip(marker, f"malformed payload {marker.raw!r}")
            continue
        if not is_marker_comment(lines[marker.line - 1]):
            skip(marker, "marker shares its line with code")
            continue
        target = next((s for s in statements if s.start > marker.line), None)
        if target is None:
            skip(marker, "no statement follows the marker")
            continue
        if id(target.node) in claimed:
            skip(marker, f"statement on line {target.start} already has a marker")
            continue
        placement, reason = _placement(target, lines)
        if placement is None:
            skip(marker, reason)
            continue
        if placement.line in inside:
            skip(marker, f"line {placement.line} continues another statement")
            continue
        reason = _check_function(placement.function)
        if reason:
            skip(marker, reason)
            continue

        claimed.add(id(target.node))
        functions[id(placement.function)] = placement.function
        removed.add(marker.line)
        call = f"{placement.indent}{SYNC_FIXTURE}.sync_step({marker.step_id}, {marker.audio_duration_ms})\n"
        inserts.setdefault(placement.line, []).append(call)
        synced.append(marker)
        logger.debug("[injector] Step %s synced before line %d", marker.step_id, placement.line)

    edits: dict[int, tuple[int, str]] = {}
    for function in functions.values():
        if _has_param(function, SYNC_FIXTURE):
            continue
        edit = _signature_edit(tokens, function)
        if edit is None:
            note(logs, logger, "[injector] Could not locate parameters of %r", function.name, level=logging.ERROR)
            return InstrumentationResult(script=annotated, skipped_markers=find_markers(annotated), logs=logs)
        row, col, text = edit
        edits[row] = (col, text)

    preamble = PREAMBLE_TEMPLATE.format(fixture=SYNC_FIXTURE, stabilization_ms=int(stabilization_ms))
    anchor = _preamble_anchor(tree)

    out: list[str] = []
    for number, line in enumerate(lines, start=1):
        if number == anchor:
            out.append(preamble)
        out.extend(inserts.get(number, []))
        if number in removed:
            continue
        if number in edits:
            col, text = edits[number]
            line = line[:col] + text + line[col:]
        out.append(line)
    tail = len(lines) + 1
    if anchor == tail:
        out.append(preamble)
    out.extend(inserts.get(tail, []))
    instrumented = "".join(out)

    try:
        ast.parse(instrumented)
    except SyntaxError as exc:
        note(logs, logger, "[injector] Instrumented script failed to parse (%s); using annotated script", exc, level=logging.ERROR)
        return InstrumentationResult(script=annotated, skipped_markers=find_markers(annotated), logs=logs)

    note(
        logs,
        logger,
        "[injector] Instrumented %d step(s), skipped %d marker(s)",
        len(synced),
        len(skipped),
    )
    return InstrumentationResult(script=instrumented, synced_markers=synced, skipped_markers=skipped, logs=logs)
