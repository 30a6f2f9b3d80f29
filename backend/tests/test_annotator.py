"""Tests for positional step binding and marker insertion."""

from models import StepSpec
from services.annotator import annotate_script, strip_markers
from services.injector import instrument_script
from services.markers import find_markers

SCRIPT = '''from playwright.sync_api import Page, expect


def test_signup(page: Page) -> None:
    page.set_viewport_size({"width": 1920, "height": 1080})
    page.goto("https://example.com")
    page.wait_for_timeout(500)
    page.get_by_label("Email").fill("a@example.com")
    print("filled")
    page.get_by_role("button", name="Sign up").click()
    expect(page.get_by_text("Welcome")).to_be_visible()
'''


def _steps(count: int, duration: int = 2000) -> list[StepSpec]:
    return [
        StepSpec(step_id=i, code_action=f"action {i}", narration=f"Step {i}.", audio_duration_ms=duration)
        for i in range(1, count + 1)
    ]


def _marker_targets(script: str) -> list[str]:
    """The code line that follows each marker."""
    lines = script.splitlines()
    return [lines[m.line].strip() for m in find_markers(script)]


def test_markers_are_strictly_ascending() -> None:
    result = annotate_script(SCRIPT, _steps(4))
    ids = [m.step_id for m in find_markers(result.script)]
    assert ids == [1, 2, 3, 4]


def test_setup_and_utility_calls_get_no_marker() -> None:
    result = annotate_script(SCRIPT, _steps(4))
    assert _marker_targets(result.script) == [
        'page.goto("https://example.com")',
        'page.get_by_label("Email").fill("a@example.com")',
        'page.get_by_role("button", name="Sign up").click()',
        'expect(page.get_by_text("Welcome")).to_be_visible()',
    ]


def test_binding_ignores_code_action_text() -> None:
    misleading = [
        StepSpec(step_id=1, code_action="assert welcome", narration="", audio_duration_ms=100),
        StepSpec(step_id=2, code_action="open the page", narration="", audio_duration_ms=200),
    ]
    result = annotate_script(SCRIPT, misleading)
    markers = find_markers(result.script)
    assert _marker_targets(result.script)[0] == 'page.goto("https://example.com")'
    assert [(m.step_id, m.audio_duration_ms) for m in markers] == [(1, 100), (2, 200)]


def test_more_steps_than_statements_binds_what_fits() -> None:
    script = (
        "def test_short(page):\n"
        '    page.goto("https://example.com")\n'
        '    page.click("#a")\n'
        '    page.fill("#b", "x")\n'
    )
    result = annotate_script(script, _steps(5))
    assert len(find_markers(result.script)) == 3
    assert [s.step_id for s in result.bound_steps] == [1, 2, 3]
    assert [s.step_id for s in result.unused_steps] == [4, 5]


def test_steps_are_bound_in_id_order_regardless_of_input_order() -> None:
    steps = list(reversed(_steps(2)))
    result = annotate_script(SCRIPT, steps)
    assert [m.step_id for m in find_markers(result.script)] == [1, 2]


def test_annotation_is_idempotent() -> None:
    once = annotate_script(SCRIPT, _steps(3)).script
    twice = annotate_script(once, _steps(3)).script
    assert once == twice


def test_strip_markers_restores_original() -> None:
    annotated = annotate_script(SCRIPT, _steps(4)).script
    assert strip_markers(annotated) == SCRIPT


def test_markers_keep_statement_indentation() -> None:
    script = (
        "def test_nested(page):\n"
        "    for label in ('a', 'b'):\n"
        "        page.click(label)\n"
    )
    result = annotate_script(script, _steps(1))
    lines = result.script.splitlines()
    assert lines[2].startswith("        # __STEP_META__:")


def test_unparseable_script_is_returned_without_markers() -> None:
    result = annotate_script("def test_x(page):\n    page.goto(\n", _steps(2))
    assert find_markers(result.script) == []
    assert result.bound_steps == []
    assert any("does not parse" in line for line in result.logs)


def test_zero_bound_steps_is_a_warning_not_an_error() -> None:
    result = annotate_script("def test_nothing(page):\n    pass\n", _steps(2))
    assert result.bound_steps == []
    assert any("No steps could be bound" in line for line in result.logs)


def test_invalid_and_duplicate_step_ids_are_dropped() -> None:
    steps = [
        StepSpec(step_id=0, code_action="", narration=""),
        StepSpec(step_id=1, code_action="", narration=""),
        StepSpec(step_id=1, code_action="", narration=""),
    ]
    result = annotate_script(SCRIPT, steps)
    assert [m.step_id for m in find_markers(result.script)] == [1]


def test_form_feed_page_break_does_not_shift_markers() -> None:
    script = (
        "from playwright.sync_api import Page\n"
        "\x0c\n"
        "def test_flow(page: Page) -> None:\n"
        '    page.goto("https://example.com")\n'
        '    page.click("#go")\n'
    )
    result = annotate_script(script, _steps(2))
    lines = result.script.split("\n")
    assert [lines[m.line].strip() for m in find_markers(result.script)] == [
        'page.goto("https://example.com")',
        'page.click("#go")',
    ]
    assert strip_markers(result.script) == script

    instrumented = instrument_script(result.script)
    assert [m.step_id for m in instrumented.synced_markers] == [1, 2]


def test_statement_starting_on_a_continuation_line_gets_no_marker() -> None:
    script = (
        "def test_packed(page):\n"
        '    page.fill("#a",\n'
        '              "x"); page.click("#b")\n'
        '    page.goto("https://example.com")\n'
    )
    result = annotate_script(script, _steps(3))
    assert _marker_targets(result.script) == [
        'page.fill("#a",',
        'page.goto("https://example.com")',
    ]
    assert [s.step_id for s in result.unused_steps] == [3]

    instrumented = instrument_script(result.script)
    assert [m.step_id for m in instrumented.synced_markers] == [1, 2]
