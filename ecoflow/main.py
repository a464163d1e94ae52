import typer

from ecoflow.commands.lib_commands import lib_app
from ecoflow.logging import configure_logging
from ecoflow.settings import get_settings

app = typer.Typer(invoke_without_command=True, no_args_is_help=True)
app.add_typer(lib_app, name="lib")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """
    ecoflow: dependency-ordered lifecycle operations for a package ecosystem.
    """
    try:
        settings = get_settings()
    except ValueError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(code=1)

    configure_logging(
        level="DEBUG" if verbose else settings.logging.level,
        json_output=settings.logging.format == "json",
        log_file=settings.logging.file,
    )


if __name__ == "__main__":
    app()
