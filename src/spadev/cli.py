"""Command line interface for spadev."""

from pathlib import Path
from typing import Annotated

from pydantic import ValidationError
from typer import Argument, Exit, Option, Typer

from spadev import __version__
from spadev.errors import InvalidConfigurationError
from spadev.models import DevServerConfig
from spadev.utils import console

app = Typer(
    name="spadev",
    help="Run a front-end dev server behind a local host app",
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"spadev {__version__}")
        raise Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show the version and exit",
        ),
    ] = False,
) -> None:
    """Run a front-end dev server behind a local host app."""


@app.command(name="serve", help="Start the dev server and a host app in front of it")
def serve(
    source_path: Annotated[
        Path, Argument(help="Directory containing the front-end package.json")
    ],
    script: Annotated[
        str, Option("--script", "-s", help="package.json script that starts the dev server")
    ] = DevServerConfig.model_fields["script_name"].default,
    package_manager: Annotated[
        str, Option("--package-manager", help="Package runner (npm, yarn, pnpm, bun)")
    ] = DevServerConfig.model_fields["package_manager"].default,
    host: Annotated[str, Option(help="Host the host app binds to")] = "127.0.0.1",
    port: Annotated[int, Option(help="Port the host app binds to")] = 8000,
    request_timeout: Annotated[
        float | None,
        Option("--request-timeout", help="Seconds each request waits for the dev server"),
    ] = None,
    startup_timeout: Annotated[
        float | None,
        Option("--startup-timeout", help="Seconds the dev server has to become ready"),
    ] = None,
    readiness_marker: Annotated[
        str | None,
        Option("--ready-when", help="Text on stdout that means the dev server is ready"),
    ] = None,
    extra_args: Annotated[
        list[str] | None,
        Option("--arg", help="Extra argument passed to the script (repeatable)"),
    ] = None,
) -> None:
    """Start the dev server and a host app in front of it."""
    from spadev.dev.server import run_host_server

    if not source_path.is_dir():
        console.print(f"[red]❌ {source_path} is not a directory[/red]")
        raise Exit(code=1)

    overrides: dict[str, object] = {
        "request_timeout": request_timeout,
        "startup_timeout": startup_timeout,
        "readiness_marker": readiness_marker,
    }
    try:
        config = DevServerConfig(
            source_path=str(source_path),
            script_name=script,
            package_manager=package_manager,
            extra_args=extra_args or [],
            **{k: v for k, v in overrides.items() if v is not None},
        )
    except ValidationError as e:
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"])
            console.print(f"[red]❌ {field}: {error['msg']}[/red]")
        raise Exit(code=1)

    console.print(
        f"[cyan]🚀 Starting '{package_manager} run {script}' in {source_path}[/cyan]"
    )
    try:
        run_host_server(config, host=host, port=port)
    except InvalidConfigurationError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise Exit(code=1)
    except KeyboardInterrupt:
        console.print("[yellow]Stopped[/yellow]")
