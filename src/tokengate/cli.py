"""Command-line interface for the tokengate authorization server.

Example:
    >>> # From terminal:
    >>> # tokengate --version
    >>> # tokengate serve --host 0.0.0.0 --port 8000
    >>> # tokengate generate-secret --bytes 64
    >>> # tokengate clients [--json]
"""

import json
import secrets
from typing import Annotated

import typer
import uvicorn

from tokengate import __version__
from tokengate.auth.clients import ClientRegistry
from tokengate.config import OAuthSettings
from tokengate.errors import ConfigurationError
from tokengate.observability import configure_logging

app = typer.Typer(help="tokengate OAuth 2.0 authorization server CLI.")

DEFAULT_SECRET_BYTES = 64
MIN_SECRET_BYTES = 32


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


VERSION_OPTION = typer.Option(
    False,
    "--version",
    help="Show tokengate version and exit.",
    callback=_version_callback,
    is_eager=True,
)


def _load_settings() -> OAuthSettings:
    try:
        return OAuthSettings.from_env()
    except ConfigurationError as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


@app.callback()
def cli(version: bool = VERSION_OPTION) -> None:
    """tokengate CLI entrypoint."""


@app.command("serve")
def serve(
    host: Annotated[str, typer.Option("--host", help="Interface to bind.")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p", help="Port to listen on.")] = 8000,
    log_level: Annotated[
        str, typer.Option("--log-level", help="Minimum log level (DEBUG, INFO, ...).")
    ] = "INFO",
) -> None:
    """Run the authorization server with uvicorn.

    Configuration is read from TOKENGATE_* environment variables; a missing
    TOKENGATE_JWT_SECRET stops the command before the server binds.
    """
    from tokengate.transport.server import create_app

    configure_logging(log_level=log_level.upper(), force=True)
    settings = _load_settings()
    uvicorn.run(create_app(settings), host=host, port=port, log_config=None)


@app.command("generate-secret")
def generate_secret(
    num_bytes: Annotated[
        int, typer.Option("--bytes", "-b", help="Random bytes in the secret.")
    ] = DEFAULT_SECRET_BYTES,
) -> None:
    """Print a random signing secret suitable for TOKENGATE_JWT_SECRET."""
    if num_bytes < MIN_SECRET_BYTES:
        raise typer.BadParameter(f"--bytes must be at least {MIN_SECRET_BYTES}")
    typer.echo(secrets.token_urlsafe(num_bytes))


@app.command("clients")
def list_clients(
    as_json: Annotated[bool, typer.Option("--json", help="Print JSON instead of a table.")] = False,
) -> None:
    """List registered clients. Secrets are never printed."""
    registry = ClientRegistry(_load_settings().clients)
    entries = [
        client.model_dump(include={"id", "name", "scopes", "grant_types", "is_confidential"})
        for client in registry
    ]
    if as_json:
        typer.echo(json.dumps(entries, indent=2))
        return
    for entry in entries:
        typer.echo(
            f"{entry['id']}\t{entry['name']}\t"
            f"scopes={' '.join(entry['scopes'])}\tgrants={' '.join(entry['grant_types'])}"
        )


def main() -> None:
    """Run the tokengate CLI."""
    app()


if __name__ == "__main__":
    main()
