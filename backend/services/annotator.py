"""Script annotation: bind narration steps to executable script statements by position."""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass, field

from models import StepSpec
from services.markers import find_markers, format_marker, is_marker_comment, split_lines
from services.trail import note

logger = logging.getLogger(__name__)

# User-facing browser actions. Waits, viewport sizing and screenshots are not listed.
ACTION_METHODS = frozenset(
    {
        "goto",
        "reload",
        "go_back",
        "go_forward",
        "click",
        "dblclick",
        "tap",
        "hover",
        "fill",
        "clear",
        "type",
        "press",
        "press_sequentially",
        "check",
        "uncheck",
        "set_checked",
        "select_option",
        "set_input_files",
        "drag_to",
    }
)


_COMPOUND = (
    ast.FunctionDef,
    ast.AsyncFunctionDef,
    ast.ClassDef,
    ast.If,
    ast.For,
    ast.AsyncFor,
    ast.While,
    ast.With,
    ast.AsyncWith,
    ast.Try,
    ast.TryStar,
    ast.Match,
)


class AnnotationError(RuntimeError):
    """Raised when annotated output breaks the ascending-marker invariant."""


@dataclass
class AnnotationResult:
    script: str
    bound_steps: list[StepSpec] = field(default_factory=list)
    unused_steps: list[StepSpec] = field(default_factory=list)
    logs: list[str] = field(default_factory=list)


def _statement_call(node: ast.stmt) -> ast.Call | None:
    value: ast.expr | None = None
    if isinstance(node, (ast.Expr, ast.Assign, ast.AnnAssign, ast.AugAssign)):
        value = node.value
    if isinstance(value, ast.Await):
        value = value.value
    return value if isinstance(value, ast.Call) else None


def _is_expect_call(node: ast.expr) -> bool:
    if not isinstance(node, ast.Call):
        return False
    func = node.func
    if isinstance(func, ast.Name):
        return func.id == "expect"
    return isinstance(func, ast.Attribute) and func.attr == "expect"


def is_executable_statement(node: ast.stmt) -> bool:
    """True for browser actions and assertions; False for setup and utility calls."""
    if isinstance(node, ast.Assert):
        return True
    call = _statement_call(node)
    if call is None or not isinstance(call.func, ast.Attribute):
        return False
    method = call.func.attr
    if method.startswith(("to_", "not_to_")) and _is_expect_call(call.func.value):
        return True
    return method in ACTION_METHODS


def continuation_lines(tree: ast.Module) -> set[int]:
    """Lines that continue a multi-line simple statement (inside its brackets)."""
    lines: set[int] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.stmt) and not isinstance(node, _COMPOUND) and node.end_lineno:
            lines.update(range(node.lineno + 1, node.end_lineno + 1))
    return lines


def executable_statements(tree: ast.Module) -> list[ast.stmt]:
    """Executable statements in source order, at most one per line.

    A statement that starts on another statement's continuation line is
    skipped: a marker line there would land inside that statement.
    """
    found = [
        node
        for node in ast.walk(tree)
        if isinstance(node, ast.stmt) and is_executable_statement(node)
    ]
    found.sort(key=lambda n: (n.lineno, n.col_offset))
    inside = continuation_lines(tree)
    result: list[ast.stmt] = []
    seen_lines: set[int] = set()
    for node in found:
        if node.lineno in seen_lines or node.lineno in inside:
            continue
        seen_lines.add(node.lineno)
        result.append(node)
    return result


def strip_markers(script: str) -> str:
    """Remove whole-line step markers so annotation always starts from clean text."""
    lines = split_lines(script)
    marker_lines = {m.line for m in find_markers(script) if is_marker_comment(lines[m.line - 1])}
    if not marker_lines:
        return script
    return "".join(line for number, line in enumerate(lines, start=1) if number not in marker_lines)


def _ordered_steps(steps: list[StepSpec], logs: list[str]) -> list[StepSpec]:
    ordered: list[StepSpec] = []
    seen: set[int] = set()
    for step in sorted(steps, key=lambda s: s.step_id):
        if step.step_id < 1:
            note(logs, logger, "[annotator] Ignoring step with invalid id %d", step.step_id, level=logging.WARNING)
            continue
        if step.step_id in seen:
            note(logs, logger, "[annotator] Ignoring duplicate step id %d", step.step_id, level=logging.WARNING)
            continue
        seen.add(step.step_id)
        ordered.append(step)
    return ordered


def _line_ending(line: str) -> str:
    return "\r\n" if line.endswith("\r\n") else "\n"


def _verify_ascending(script: str) -> None:
    last = 0
    for marker in find_markers(script):
        if marker.step_id is None:
            continue
        if marker.step_id <= last:
            raise AnnotationError(
                f"Marker for step {marker.step_id} on line {marker.line} follows step {last}"
            )
        last = marker.step_id


def annotate_script(script: str, steps: list[StepSpec]) -> AnnotationResult:
    """
    Insert one step marker before each bound statement.

    The Nth step (ordered by step_id) binds to the Nth executable statement;
    code_action text is never consulted. Surplus steps stay unused and
    surplus statements stay unannotated.
    """
    logs: list[str] = []
    clean = strip_markers(script)
    ordered = _ordered_steps(steps, logs)

    try:
        tree = ast.parse(clean)
    except SyntaxError as exc:
        note(logs, logger, "[annotator] Script does not parse (%s); left unannotated", exc, level=logging.WARNING)
        return AnnotationResult(script=clean, unused_steps=ordered, logs=logs)

    statements = executable_statements(tree)
    bound = list(zip(statements, ordered))
    lines = split_lines(clean)

    inserts: dict[int, str] = {}
    for node, step in bound:
        line = lines[node.lineno - 1]
        indent = line[: len(line) - len(line.lstrip())]
        inserts[node.lineno] = f"{indent}{format_marker(step.step_id, step.audio_duration_ms)}{_line_ending(line)}"
        logger.debug("[annotator] Step %d -> line %d", step.step_id, node.lineno)

    annotated = "".join(
        inserts.get(number, "") + line for number, line in enumerate(lines, start=1)
    )
    _verify_ascending(annotated)

    bound_steps = [step for _, step in bound]
    unused_steps = ordered[len(bound):]
    note(
        logs,
        logger,
        "[annotator] Bound %d of %d steps to %d executable statements",
        len(bound_steps),
        len(ordered),
        len(statements),
    )
    if unused_steps:
        note(
            logs,
            logger,
            "[annotator] Unused steps (no statement left to bind): %s",
            ", ".join(str(s.step_id) for s in unused_steps),
            level=logging.WARNING,
        )
    if not bound_steps:
        note(logs, logger, "[annotator] No steps could be bound; recording will be unsynchronized", level=logging.WARNING)
    return AnnotationResult(script=annotated, bound_steps=bound_steps, unused_steps=unused_steps, logs=logs)
