"""InsightRAG CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from insightrag.cli.ask import ask_cmd
from insightrag.cli.profiles import profiles_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("insightrag")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"insightrag {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="insightrag",
    help=(
        "InsightRAG — customer-profile analysis via retrieval + LLM.\n\n"
        "  insightrag ask       Embed profiles, retrieve similar ones, ask the LLM.\n"
        "  insightrag profiles  Show loaded profiles and their summaries (offline)."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """InsightRAG — customer-profile analysis via retrieval + LLM."""


app.command("ask")(ask_cmd)
app.command("profiles")(profiles_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed InsightRAG version."""
    typer.echo(f"insightrag {_installed_version()}")


if __name__ == "__main__":
    app()
