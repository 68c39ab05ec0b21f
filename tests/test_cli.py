import json
from pathlib import Path

import anthropic
import pytest
from typer.testing import CliRunner

from fakes import API_REQUEST, FakeClient
from playcopilot import cli, runner

cli_runner = CliRunner()


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PLAYCOPILOT_TEMPLATES", str(tmp_path / "templates.json"))
    monkeypatch.setenv("PLAYCOPILOT_RUNS_DIR", str(tmp_path / "runs"))
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    return tmp_path


def _with_fake_client(monkeypatch, client):
    def fake_run_tool(tool_name, fields, *, store, api_key=None, **kwargs):
        return runner.run_tool(tool_name, fields, store=store, client=client)

    monkeypatch.setattr(cli, "run_tool", fake_run_tool)


def test_no_command_prints_help():
    result = cli_runner.invoke(cli.app, [])

    assert result.exit_code == 0
    assert "templates" in result.output


def test_tools_lists_catalog():
    result = cli_runner.invoke(cli.app, ["tools"])

    assert result.exit_code == 0
    assert "signal_lab" in result.output
    assert "connected_media_matrix" in result.output


def test_templates_init_list_and_show(workspace):
    init = cli_runner.invoke(cli.app, ["templates", "init"])
    again = cli_runner.invoke(cli.app, ["templates", "init"])
    listed = cli_runner.invoke(cli.app, ["templates", "list"])
    shown = cli_runner.invoke(cli.app, ["templates", "show", "signal_lab"])

    assert init.exit_code == 0
    assert "Wrote 11 template(s)" in init.output
    assert "Wrote 0 template(s)" in again.output
    assert "play_builder" in listed.output
    assert '"tool_name": "signal_lab"' in shown.output
    assert (workspace / "templates.json").exists()


def test_templates_show_missing_exits_with_config_error(workspace):
    result = cli_runner.invoke(cli.app, ["templates", "show", "signal_lab"])

    assert result.exit_code == 1
    assert "missing_template" in result.output


def test_templates_set_updates_values(workspace):
    cli_runner.invoke(cli.app, ["templates", "init"])
    prompt_file = workspace / "prompt.txt"
    prompt_file.write_text("Observation: {{observation}}", encoding="utf-8")

    result = cli_runner.invoke(
        cli.app,
        ["templates", "set", "signal_lab", "--temperature", "0.2", "--prompt-file", str(prompt_file)],
    )
    stored = json.loads((workspace / "templates.json").read_text(encoding="utf-8"))
    signal = next(item for item in stored if item["tool_name"] == "signal_lab")

    assert result.exit_code == 0
    assert signal["temperature"] == 0.2
    assert signal["prompt_text"] == "Observation: {{observation}}"


def test_templates_set_without_changes_is_usage_error(workspace):
    cli_runner.invoke(cli.app, ["templates", "init"])

    result = cli_runner.invoke(cli.app, ["templates", "set", "signal_lab"])

    assert result.exit_code == 2


def test_templates_placeholders_and_check(workspace):
    cli_runner.invoke(cli.app, ["templates", "init"])

    placeholders = cli_runner.invoke(cli.app, ["templates", "placeholders", "signal_lab"])
    check = cli_runner.invoke(cli.app, ["templates", "check"])

    assert placeholders.output.split() == ["context", "focus_areas", "observation", "team_description", "team_industry"]
    assert "All templates look consistent." in check.output


def test_templates_check_reports_warnings(workspace):
    cli_runner.invoke(cli.app, ["templates", "init"])
    prompt_file = workspace / "prompt.txt"
    prompt_file.write_text("Nothing useful", encoding="utf-8")
    cli_runner.invoke(cli.app, ["templates", "set", "signal_lab", "--prompt-file", str(prompt_file)])

    result = cli_runner.invoke(cli.app, ["templates", "check", "signal_lab"])

    assert result.exit_code == 0
    assert "observation" in result.output


def test_normalize_command_prints_payload(workspace):
    reply = workspace / "reply.txt"
    reply.write_text("**Signal Summary**: foo", encoding="utf-8")

    result = cli_runner.invoke(cli.app, ["normalize", "signal_lab", str(reply)])

    assert result.exit_code == 0
    assert '"signal_summary": "foo"' in result.output
    assert "fallback_used" in result.output


def test_normalize_unknown_tool_exits_with_config_error(workspace):
    reply = workspace / "reply.txt"
    reply.write_text("{}", encoding="utf-8")

    result = cli_runner.invoke(cli.app, ["normalize", "vision_board", str(reply)])

    assert result.exit_code == 1


def test_run_requires_api_key(workspace):
    result = cli_runner.invoke(cli.app, ["run", "signal_lab", "-f", "observation=dip"])

    assert result.exit_code == 1
    assert "ANTHROPIC_API_KEY" in result.output


def test_run_rejects_malformed_field(workspace):
    result = cli_runner.invoke(cli.app, ["run", "signal_lab", "-f", "observation"])

    assert result.exit_code == 2


def test_run_missing_required_input(workspace, monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
    cli_runner.invoke(cli.app, ["templates", "init"])

    result = cli_runner.invoke(cli.app, ["run", "signal_lab", "-f", "context=Q3"])

    assert result.exit_code == 2
    assert "observation" in result.output


def test_run_saves_artifacts(workspace, monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
    cli_runner.invoke(cli.app, ["templates", "init"])
    _with_fake_client(
        monkeypatch,
        FakeClient(text='{"get": "busy parents", "to": "plan meals", "by": "weekly reminders"}'),
    )
    inputs = workspace / "inputs.json"
    inputs.write_text(json.dumps({"audience_description": "busy parents"}), encoding="utf-8")

    result = cli_runner.invoke(cli.app, ["run", "get_to_by_generator", "--input-file", str(inputs)])

    assert result.exit_code == 0
    assert '"by": "weekly reminders"' in result.output
    saved = sorted(path.name for path in Path(workspace / "runs").iterdir())
    assert len(saved) == 3
    payload_file = next(name for name in saved if "_raw_" not in name and "_trace_" not in name)
    payload = json.loads((workspace / "runs" / payload_file).read_text(encoding="utf-8"))
    assert payload["parse_status"] == "success"


def test_run_upstream_timeout_saves_error_artifact(workspace, monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
    cli_runner.invoke(cli.app, ["templates", "init"])
    _with_fake_client(monkeypatch, FakeClient(error=anthropic.APITimeoutError(request=API_REQUEST)))

    result = cli_runner.invoke(cli.app, ["run", "signal_lab", "-f", "observation=dip", "--no-save"])

    assert result.exit_code == 1
    assert "timeout" in result.output
    assert [path.name.startswith("upstream_error_") for path in (workspace / "runs").iterdir()] == [True]
