"""Main CLI entry point for vault-service management commands."""

import click

from vault_service.cli.commands import config, storage
from vault_service.infra.logging.config import setup_logging


@click.group()
@click.version_option(version="0.1.0", prog_name="vault-service")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Vault Service CLI - Management commands for the encrypted-object store.

    \b
    Command Groups:
      config     Configuration inspection and validation
      storage    Backend health, uploads and metrics

    \b
    Quick Start:
      vault-service config validate     # Check regions and credentials
      vault-service storage health      # Check backend connectivity
    """
    ctx.ensure_object(dict)


cli.add_command(config.config)
cli.add_command(storage.storage)


def main() -> None:
    """Entry point for CLI."""
    setup_logging()
    cli(obj={})


if __name__ == "__main__":
    main()
