"""Tests for step prompts, result parsing and graph lookups."""

import pytest

from workflow_claw.contracts import Edge, SkillExecution, Step
from workflow_claw.engine import WorkflowGraph, build_step_prompt, parse_step_output
from workflow_claw.errors import ConfigurationError
from workflow_claw.rules import parse_rule_text


def _step(name: str, **kwargs) -> Step:
    return Step(id=name, workflow_id="wf", name=name, provider_id="p", **kwargs)


def test_parse_plain_json():
    output = parse_step_output(
        '{"status": "success", "summary": "ok", "files_modified": ["a.py"], '
        '"checks": [], "next_actions": []}'
    )
    assert output.status == "success"
    assert output.summary == "ok"
    assert output.files_modified == ["a.py"]


def test_parse_json_surrounded_by_noise():
    raw = 'Thinking... {not json} [tool] done\r\n{"status": "needs_input", "summary": "which db?"} bye'
    output = parse_step_output(raw)
    assert output.status == "needs_input"
    assert output.summary == "which db?"


def test_nested_result_shape_does_not_count():
    raw = '{"result": "done", "detail": {"status": "success", "summary": "inner"}}'
    output = parse_step_output(raw)
    assert output.status == "fail"
    assert output.summary == "Failed to parse JSON output"


def test_objects_inside_a_leading_array_are_skipped():
    raw = (
        'Skill Outputs:\n[{"name": "lint", "status": "success", "summary": "clean"}]\r\n'
        '{"status": "fail", "summary": "tests broken"}'
    )
    output = parse_step_output(raw)
    assert output.status == "fail"
    assert output.summary == "tests broken"


def test_first_top_level_object_decides():
    raw = '{"progress": 50}\n{"status": "success", "summary": "late"}'
    output = parse_step_output(raw)
    assert output.status == "fail"
    assert output.summary == "Failed to parse JSON output"


def test_parse_tolerates_missing_and_null_fields():
    output = parse_step_output('{"status": "fail", "summary": null, "checks": null}')
    assert output.status == "fail"
    assert output.summary == ""
    assert output.checks == []
    assert output.next_actions == []


@pytest.mark.parametrize(
    "raw",
    ["", "no json here", "[1, 2]", '{"status": "done"}', '{"status": "success"'],
)
def test_unparseable_output_is_a_failure(raw):
    output = parse_step_output(raw)
    assert output.status == "fail"
    assert output.summary == "Failed to parse JSON output"


def test_step_prompt_contains_every_section():
    rule = parse_rule_text(
        "--------------\nName: style\nDescription: d\n--------------\nBe terse."
    )
    prompt = build_step_prompt(
        "Ship it",
        _step("build", description="Build", success_criteria="tests pass"),
        "# PRD",
        "# MEMORY",
        [rule],
        [SkillExecution(name="lint", status="success", output={"ok": True})],
    )

    assert prompt.startswith("You are an autonomous LLM step in a workflow.")
    assert "Goal:\nShip it" in prompt
    assert "Step Name: build" in prompt
    assert "Success Criteria: tests pass" in prompt
    assert "Failure Criteria: \n" in prompt
    assert "PRD:\n# PRD" in prompt
    assert "MEMORY:\n# MEMORY" in prompt
    assert "RULES:\n# style\nBe terse." in prompt
    assert '"status": "success"|"fail"|"needs_input"' in prompt
    assert prompt.endswith(
        'Skill Outputs:\n[{"name": "lint", "status": "success", "output": {"ok": true}}]'
    )


def test_graph_start_steps_and_targets():
    steps = [_step("a"), _step("b"), _step("c"), _step("d")]
    edges = [
        Edge(workflow_id="wf", from_step_id="a", to_step_id="b"),
        Edge(workflow_id="wf", from_step_id="a", to_step_id="c", type="support"),
        Edge(workflow_id="wf", from_step_id="b", to_step_id="d", type="callback"),
        Edge(workflow_id="wf", from_step_id="a", to_step_id="d", type="failure"),
    ]
    graph = WorkflowGraph(steps, edges)

    # only incoming "next" edges disqualify a start step
    assert graph.start_steps() == ["a", "c", "d"]
    assert graph.targets("a", "next") == ["b"]
    assert graph.targets("a", "support") == ["c"]
    assert graph.targets("b", "callback") == ["d"]
    assert graph.targets("d", "next") == []
    assert graph.provider_ids() == ["p"]
    with pytest.raises(ConfigurationError):
        graph.step("zzz")
