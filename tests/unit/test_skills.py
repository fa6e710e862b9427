import stat

import pytest

from workflow_claw.skills import SkillRunner, run_skill


def _skill(skills_dir, name: str, body: str):
    path = skills_dir / name
    path.write_text(body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.mark.asyncio
async def test_skill_receives_input_and_returns_json(tmp_path):
    _skill(
        tmp_path,
        "echo",
        "#!/bin/sh\n"
        "line=$(cat)\n"
        'printf \'{"received": %s}\' "$line"\n',
    )
    result = await run_skill(tmp_path, "echo", {"goal": "ship it", "n": 2})

    assert result.status == "success"
    assert result.output == {"received": {"goal": "ship it", "n": 2}}
    assert result.error is None


@pytest.mark.asyncio
async def test_missing_skill(tmp_path):
    result = await SkillRunner().run(tmp_path, "nope", {})
    assert result.status == "fail"
    assert result.error == "Skill not found: nope"


@pytest.mark.asyncio
async def test_non_zero_exit_reports_stderr(tmp_path):
    _skill(tmp_path, "broken", "#!/bin/sh\necho 'bad things' >&2\nexit 2\n")
    result = await run_skill(tmp_path, "broken", {})

    assert result.status == "fail"
    assert "bad things" in result.error


@pytest.mark.asyncio
async def test_non_zero_exit_without_stderr(tmp_path):
    _skill(tmp_path, "quiet", "#!/bin/sh\nexit 1\n")
    result = await run_skill(tmp_path, "quiet", {})
    assert result.error == "Skill failed"


@pytest.mark.asyncio
async def test_invalid_json_output(tmp_path):
    _skill(tmp_path, "chatty", "#!/bin/sh\necho 'hello there'\n")
    result = await run_skill(tmp_path, "chatty", {})

    assert result.status == "fail"
    assert result.error == "Invalid JSON from skill"


@pytest.mark.asyncio
async def test_unstartable_skill_fails(tmp_path):
    (tmp_path / "plain").write_text("not executable")
    result = await run_skill(tmp_path, "plain", {})

    assert result.status == "fail"
    assert "plain" in result.error


@pytest.mark.asyncio
async def test_fake_mode_skips_process(tmp_path):
    (tmp_path / "lint").write_text("")
    result = await SkillRunner(fake=True).run(tmp_path, "lint", {})
    assert result.status == "success"
    assert result.output == {"skill": "lint"}
