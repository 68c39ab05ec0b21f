import json
import logging
import os
from pathlib import Path
from typing import Any, List, Optional

import typer
from dotenv import load_dotenv
from rich import print, print_json
from rich.logging import RichHandler
from rich.markup import escape

from .artifacts import save_run, save_upstream_error
from .assembler import find_placeholders
from .llm import UpstreamError
from .runner import MissingToolInput, normalize_reply, run_tool
from .templates import (
    JsonTemplateStore,
    check_template,
    default_templates,
    require_template,
    update_template,
)
from .tools import ConfigurationError, get_tool, list_tools

app = typer.Typer()
templates_app = typer.Typer(help="Prompt template administration commands.")
app.add_typer(templates_app, name="templates")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
):
    """Playcopilot CLI entrypoint."""
    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(show_path=False)],
        force=True,
    )
    if ctx.invoked_subcommand is None:
        print(ctx.get_help())
        raise typer.Exit(code=0)


def _read_api_key() -> str:
    api_key = os.getenv("ANTHROPIC_API_KEY")
    if not api_key:
        print("[red]ANTHROPIC_API_KEY not found in environment.[/red]")
        raise typer.Exit(code=1)
    return api_key


def _runs_dir() -> str:
    return os.getenv("PLAYCOPILOT_RUNS_DIR", "runs")


def _template_store() -> JsonTemplateStore:
    return JsonTemplateStore(os.getenv("PLAYCOPILOT_TEMPLATES", "templates.json"))


def _read_file(file: Path) -> str:
    if not file.exists():
        print("[red]File not found[/red]")
        raise typer.Exit(code=1)
    return file.read_text(encoding="utf-8")


def _handle_configuration_error(exc: ConfigurationError) -> None:
    print(f"[red]Configuration error ({exc.kind}):[/red] {escape(str(exc))}")
    raise typer.Exit(code=1)


def _parse_fields(pairs: List[str], input_file: Optional[Path]) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    if input_file is not None:
        try:
            loaded = json.loads(_read_file(input_file))
        except json.JSONDecodeError as exc:
            print(f"[red]Input file is not valid JSON:[/red] {escape(str(exc))}")
            raise typer.Exit(code=2)
        if not isinstance(loaded, dict):
            print("[red]Input file must contain a JSON object.[/red]")
            raise typer.Exit(code=2)
        fields.update(loaded)
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            print(f"[red]Invalid field '{escape(pair)}'. Use key=value.[/red]")
            raise typer.Exit(code=2)
        fields[key.strip()] = value
    return fields


def _print_result_notes(payload: dict[str, Any]) -> None:
    status = payload["parse_status"]
    color = {"success": "green", "fallback_used": "yellow", "failed": "red"}[status]
    print(f"parse_status: [{color}]{status}[/{color}]")
    if payload.get("warning"):
        print(f"[yellow]warning:[/yellow] {escape(payload['warning'])}")
    if payload.get("user_note"):
        print(f"note: {escape(payload['user_note'])}")


@app.command("tools")
def tools_command():
    """List the available tools and their inputs."""
    for tool in list_tools():
        optional = [name for name in tool.inputs if name not in tool.required]
        print(f"[bold]{tool.name}[/bold] ({tool.title})")
        print(f"  required: {', '.join(tool.required) or '-'}")
        print(f"  optional: {', '.join(optional) or '-'}")


@app.command()
def run(
    tool_name: str,
    field: Optional[List[str]] = typer.Option(None, "--field", "-f", help="Tool input as key=value (repeatable)."),
    input_file: Optional[Path] = typer.Option(None, "--input-file", help="JSON object of tool inputs."),
    save: bool = typer.Option(True, "--save/--no-save", help="Persist raw reply, payload and trace."),
):
    """Run a tool end to end against the model."""
    fields = _parse_fields(field or [], input_file)
    api_key = _read_api_key()
    runs_dir = _runs_dir()

    try:
        result = run_tool(tool_name, fields, store=_template_store(), api_key=api_key)
    except ConfigurationError as exc:
        _handle_configuration_error(exc)
    except MissingToolInput as exc:
        print(f"[red]Missing required input:[/red] {', '.join(exc.missing)}")
        raise typer.Exit(code=2)
    except UpstreamError as exc:
        error_path = save_upstream_error(tool_name, exc.error, exc.kind, runs_dir=runs_dir)
        print(f"[red]Model service unavailable ({exc.kind}).[/red] Saved error artifact to [bold]{error_path}[/bold].")
        raise typer.Exit(code=1)

    payload = result.to_payload()
    if save:
        paths = save_run(tool_name, result.raw, payload, result.trace(), runs_dir=runs_dir)
        print(f"Saved payload to [bold]{paths['payload_path']}[/bold]")
    print_json(data=payload)
    _print_result_notes(payload)


@app.command()
def normalize(tool_name: str, file: Path):
    """Normalize a saved model reply without calling the model."""
    raw = _read_file(file)
    try:
        result = normalize_reply(tool_name, raw)
    except ConfigurationError as exc:
        _handle_configuration_error(exc)

    payload = result.to_payload()
    print_json(data=payload)
    _print_result_notes(payload)


@templates_app.command("init")
def templates_init(
    force: bool = typer.Option(False, "--force", help="Overwrite templates that already exist."),
):
    store = _template_store()
    written = 0
    for template in default_templates():
        if not force and store.get(template.tool_name) is not None:
            continue
        store.put(template)
        written += 1
    print(f"Wrote {written} template(s) to [bold]{store.path}[/bold]")


@templates_app.command("list")
def templates_list():
    try:
        templates = _template_store().list_templates()
    except ConfigurationError as exc:
        _handle_configuration_error(exc)
    if not templates:
        print("No templates stored. Run 'templates init' to seed defaults.")
        return
    for template in templates:
        print(
            f"[bold]{template.tool_name}[/bold] model={template.model} "
            f"max_tokens={template.max_tokens} temperature={template.temperature} top_p={template.top_p}"
        )


@templates_app.command("show")
def templates_show(tool_name: str):
    try:
        template = require_template(_template_store(), tool_name)
    except ConfigurationError as exc:
        _handle_configuration_error(exc)
    print_json(data=template.model_dump())


@templates_app.command("set")
def templates_set(
    tool_name: str,
    prompt_file: Optional[Path] = typer.Option(None, "--prompt-file", help="File holding the new prompt text."),
    model: Optional[str] = typer.Option(None, "--model"),
    max_tokens: Optional[int] = typer.Option(None, "--max-tokens"),
    temperature: Optional[float] = typer.Option(None, "--temperature"),
    top_p: Optional[float] = typer.Option(None, "--top-p"),
    frequency_penalty: Optional[float] = typer.Option(None, "--frequency-penalty"),
    presence_penalty: Optional[float] = typer.Option(None, "--presence-penalty"),
):
    changes: dict[str, Any] = {
        "model": model,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "top_p": top_p,
        "frequency_penalty": frequency_penalty,
        "presence_penalty": presence_penalty,
    }
    changes = {key: value for key, value in changes.items() if value is not None}
    if prompt_file is not None:
        changes["prompt_text"] = _read_file(prompt_file)
    if not changes:
        print("[red]Nothing to update.[/red]")
        raise typer.Exit(code=2)

    try:
        updated = update_template(_template_store(), tool_name, **changes)
    except ConfigurationError as exc:
        _handle_configuration_error(exc)
    print(f"Updated [bold]{updated.tool_name}[/bold]: {', '.join(sorted(changes))}")


@templates_app.command("placeholders")
def templates_placeholders(tool_name: str):
    try:
        template = require_template(_template_store(), tool_name)
    except ConfigurationError as exc:
        _handle_configuration_error(exc)
    for name in find_placeholders(template.prompt_text):
        print(name)


@templates_app.command("check")
def templates_check(tool_name: Optional[str] = typer.Argument(None)):
    store = _template_store()
    try:
        tools = [get_tool(tool_name)] if tool_name else list_tools()
        found_issue = False
        for tool in tools:
            template = store.get(tool.name)
            if template is None:
                print(f"[yellow]{tool.name}: no template stored[/yellow]")
                found_issue = True
                continue
            warnings = check_template(template, tool)
            if warnings:
                found_issue = True
                print(f"\n[yellow][bold]{tool.name}[/bold][/yellow]")
                for warning in warnings:
                    print(f"[yellow]- {escape(warning)}[/yellow]")
    except ConfigurationError as exc:
        _handle_configuration_error(exc)
    if not found_issue:
        print("All templates look consistent.")


if __name__ == "__main__":
    app()
