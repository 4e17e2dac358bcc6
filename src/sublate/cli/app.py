"""sublate CLI entry point."""

from typing import Annotated, Optional

import typer
from dotenv import load_dotenv

from sublate import __version__
from sublate.cli.status import status
from sublate.cli.translate import translate

app = typer.Typer(
    name="sublate",
    help="sublate — LLM batch translation for subtitle projects.",
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"sublate {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-V",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = None,
) -> None:
    """sublate — LLM batch translation for subtitle projects."""
    # Load .env file for provider API keys (OPENAI_API_KEY, etc.)
    # Existing env vars win over .env values
    load_dotenv(override=False)


app.command("translate")(translate)
app.command("status")(status)
