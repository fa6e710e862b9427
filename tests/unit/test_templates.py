"""Tests for invocation template rendering."""

from workflow_claw.templates import (
    compile_template,
    has_prompt_placeholder,
    render_template,
)


def test_render_substitutes_known_fields():
    rendered = render_template(
        "exec --model {{model}} --cd {{ cwd }} {{{prompt}}}",
        {"model": "gpt-4", "cwd": "/work", "prompt": "do it"},
    )
    assert rendered == "exec --model gpt-4 --cd /work do it"


def test_render_does_not_escape_values():
    rendered = render_template("{{prompt}}", {"prompt": "<a & 'b'>"})
    assert rendered == "<a & 'b'>"


def test_unknown_and_missing_fields_render_empty():
    rendered = render_template(
        "[{{unknown}}][{{model}}][{{stepName}}]", {"unknown": "x", "stepName": "plan"}
    )
    assert rendered == "[][][plan]"


def test_text_without_placeholders_is_unchanged():
    assert render_template("run --fast", {"prompt": "p"}) == "run --fast"


def test_compiled_templates_are_reused():
    assert compile_template("{{prompt}} x") is compile_template("{{prompt}} x")


def test_has_prompt_placeholder():
    assert has_prompt_placeholder("-p {{prompt}}")
    assert has_prompt_placeholder("-p {{{ prompt }}}")
    assert not has_prompt_placeholder("--model {{model}}")
    assert not has_prompt_placeholder("")
