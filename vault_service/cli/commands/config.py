"""Configuration management commands."""

import json
import sys

import click
from pydantic import ValidationError

from vault_service.cli.utils import error, info, section, success, warning
from vault_service.core.exceptions import ConfigError
from vault_service.core.settings import VaultSettings
from vault_service.infra.storage.regions import RegionRegistry, validate_configuration


@click.group(name="config")
def config() -> None:
    """Configuration management commands."""


@config.command()
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["json", "yaml", "table"]),
    default="table",
    help="Output format",
)
def show(output_format: str) -> None:
    """Display the storage configuration with credentials redacted."""
    info("Loading configuration...")

    try:
        settings = VaultSettings()
    except ValidationError as e:
        error(f"Configuration could not be loaded: {e}")
        sys.exit(1)

    config_dict = settings.redacted()

    if output_format == "json":
        click.echo(json.dumps(config_dict, indent=2, default=str))

    elif output_format == "yaml":
        import yaml

        click.echo(yaml.safe_dump(config_dict, default_flow_style=False, sort_keys=False))

    else:  # table format
        section("STORAGE CONFIGURATION")
        for key, value in config_dict.items():
            if key == "regions":
                click.echo("\n[REGIONS]")
                for region in value:
                    flags = [
                        flag for flag in ("primary", "backup") if region.get(flag)
                    ]
                    click.echo(
                        f"  {region['id']:20} {region['cost_tier']:10} {','.join(flags) or '-'}"
                    )
            elif isinstance(value, dict):
                click.echo(f"\n[{key.upper()}]")
                for sub_key, sub_value in value.items():
                    click.echo(f"  {sub_key:30} = {sub_value}")
            else:
                click.echo(f"  {key:32} = {value}")

    success("\nConfiguration loaded successfully!")


@config.command()
def validate() -> None:
    """Validate the storage configuration.

    Checks the region table and the credentials of every provider in use.
    Exits with status 1 when the engine would refuse to start.
    """
    info("Validating storage configuration...")

    try:
        settings = VaultSettings()
        validate_configuration(settings)
    except ValidationError as e:
        error(f"Invalid settings: {e}")
        sys.exit(1)
    except ConfigError as e:
        error(f"{e.detail}")
        if e.extra:
            click.echo(f"  details: {json.dumps(e.extra, default=str)}")
        sys.exit(1)

    registry = RegionRegistry(settings)
    targets = registry.replication_targets()

    click.echo(f"\n  Provider:         {settings.provider.value}")
    click.echo(f"  Primary region:   {registry.primary.id} ({registry.bucket_for(registry.primary)})")
    click.echo(f"  Copy targets:     {', '.join(r.id for r in targets) or '-'}")
    click.echo(f"  Replication:      {'enabled' if settings.security.replication else 'disabled'}")
    click.echo(f"  Backup:           {'enabled' if settings.backup.enabled else 'disabled'}")

    if (settings.security.replication or settings.backup.enabled) and not targets:
        warning("\nReplication or backup is enabled but no target region is configured")

    success("\nConfiguration is valid")
