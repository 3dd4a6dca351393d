"""
Ollama Auth Proxy CLI

Command-line interface for running the proxy and managing API keys.
"""

import sys
import secrets
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from . import __version__
from .config import LOG_LEVELS, ConfigOverrides, build_config, create_default_config
from .errors import ConfigError
from .keys import KeyDatabase, resolve_keys, mask_key


console = Console()


def key_source_options(f):
    """Attach the three key source flags to a command."""
    f = click.option("--api-keys", help="Comma-separated list of API keys (lowest priority)")(f)
    f = click.option("--api-keys-file", type=click.Path(), help="File of keys separated by commas/newlines")(f)
    f = click.option("--api-keys-sqlite", type=click.Path(), help="SQLite database with table api_keys(key TEXT) (highest priority)")(f)
    return f


@click.group()
@click.version_option(__version__, prog_name="ollama-auth-proxy")
@click.option("--config", "-c", "config_path", type=click.Path(), help="Path to config file")
@click.pass_context
def cli(ctx, config_path: str):
    """Ollama Auth Proxy - Bearer API key gateway for inference servers"""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# =============================================================================
# Server Commands
# =============================================================================

@cli.command()
@click.option("--ollama-url", help="Upstream base URL (overrides OLLAMA_URL)")
@click.option("--proxy-host", help="Address to bind to (overrides PROXY_HOST)")
@click.option("--proxy-port", type=int, help="Port to bind to (overrides PROXY_PORT)")
@key_source_options
@click.option("--log-level", type=click.Choice(LOG_LEVELS), help="Server log level")
@click.pass_context
def start(
    ctx,
    ollama_url: Optional[str],
    proxy_host: Optional[str],
    proxy_port: Optional[int],
    api_keys_sqlite: Optional[str],
    api_keys_file: Optional[str],
    api_keys: Optional[str],
    log_level: Optional[str],
):
    """Start the proxy server."""
    overrides = ConfigOverrides(
        ollama_url=ollama_url,
        proxy_host=proxy_host,
        proxy_port=proxy_port,
        api_keys_sqlite=api_keys_sqlite,
        api_keys_file=api_keys_file,
        api_keys=api_keys,
    )

    try:
        config = build_config(ctx.obj.get("config_path"), overrides)
        keystore = resolve_keys(config.keys)
    except ConfigError as e:
        console.print(f"[red]✗[/red] Configuration error: {e}")
        sys.exit(1)

    if log_level:
        config.server.log_level = log_level

    console.print(Panel(
        f"[bold]Ollama Auth Proxy v{__version__}[/bold]\n"
        f"Listening on [cyan]http://{config.server.host}:{config.server.port}[/cyan]\n"
        f"Upstream: [cyan]{config.upstream.url}[/cyan]\n"
        f"Keys: {len(keystore)} ({keystore.source})",
        title="🚀 Starting"
    ))

    from .server import main as server_main
    server_main(config, keystore=keystore)


@cli.command()
@click.option("--port", "-p", default=3000, type=int, help="Server port")
def status(port: int):
    """Show server status."""
    import httpx

    try:
        response = httpx.get(f"http://localhost:{port}/health")
        data = response.json()
        stats = data.get("stats", {})

        console.print(Panel(
            f"[bold green]Running[/bold green]\n\n"
            f"Version: {data.get('version', 'unknown')}\n"
            f"Keys: {data.get('keys_loaded', 0)} ({data.get('key_source', '?')})\n"
            f"Requests: {stats.get('requests_total', 0)} total, "
            f"{stats.get('requests_rejected', 0)} rejected, "
            f"{stats.get('requests_failed', 0)} failed",
            title="📊 Ollama Auth Proxy Status"
        ))
    except httpx.HTTPError as e:
        console.print(f"[red]✗[/red] Server not running: {e}")
        sys.exit(1)


@cli.command()
@click.option("--output", "-o", default="proxy.yaml", type=click.Path(), help="File to write")
def init(output: str):
    """Initialize a new configuration file."""
    config_path = Path(output)

    if config_path.exists():
        if not click.confirm(f"{config_path} already exists. Overwrite?"):
            return

    config_path.write_text(create_default_config())
    console.print(f"[green]✓[/green] Created {config_path}")
    console.print("\nConfigure a key source, then run:")
    console.print(f"  [cyan]ollama-auth-proxy -c {config_path} start[/cyan]")


# =============================================================================
# Key Commands
# =============================================================================

@cli.group()
def keys():
    """Manage API keys."""
    pass


@keys.command("add")
@click.argument("key", required=False)
@click.option("--db", "db_path", required=True, type=click.Path(), help="SQLite key database")
def keys_add(key: Optional[str], db_path: str):
    """Add KEY to the database, or generate one if omitted."""
    generated = key is None
    if generated:
        key = secrets.token_urlsafe(32)

    try:
        added = KeyDatabase(db_path).add(key)
    except ValueError as e:
        console.print(f"[red]✗[/red] {e}")
        sys.exit(1)

    if not added:
        console.print(f"[yellow]Key already present in {db_path}[/yellow]")
        return

    console.print(f"[green]✓[/green] Added key to {db_path}")
    if generated:
        # Only time a generated key is shown in full
        console.print(key)


@keys.command("remove")
@click.argument("key")
@click.option("--db", "db_path", required=True, type=click.Path(exists=True), help="SQLite key database")
def keys_remove(key: str, db_path: str):
    """Remove KEY from the database."""
    if KeyDatabase(db_path).remove(key):
        console.print(f"[green]✓[/green] Removed key {mask_key(key)}")
    else:
        console.print(f"[red]✗[/red] Key not found: {mask_key(key)}")
        sys.exit(1)


@keys.command("list")
@click.option("--db", "db_path", required=True, type=click.Path(exists=True), help="SQLite key database")
def keys_list(db_path: str):
    """List keys in the database (masked)."""
    stored = KeyDatabase(db_path).list()

    if not stored:
        console.print("[yellow]No keys stored[/yellow]")
        return

    table = Table(title=f"API Keys - {db_path}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Key", style="cyan")

    for i, key in enumerate(stored, 1):
        table.add_row(str(i), mask_key(key))

    console.print(table)


@keys.command("check")
@key_source_options
@click.pass_context
def keys_check(ctx, api_keys_sqlite: Optional[str], api_keys_file: Optional[str], api_keys: Optional[str]):
    """Resolve the configured key source and report what the server would load."""
    overrides = ConfigOverrides(
        api_keys_sqlite=api_keys_sqlite,
        api_keys_file=api_keys_file,
        api_keys=api_keys,
    )

    try:
        config = build_config(ctx.obj.get("config_path"), overrides)
        keystore = resolve_keys(config.keys)
    except ConfigError as e:
        console.print(f"[red]✗[/red] {e}")
        sys.exit(1)

    color = "green" if len(keystore) else "yellow"
    console.print(f"[{color}]✓[/{color}] {len(keystore)} key(s) from {keystore.source} source")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
