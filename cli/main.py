#!/usr/bin/env python3
"""
BrickLedger - Command Line Interface

Operator CLI for the chain/cache reconciliation layer: register mints,
resolve tokens, reconcile the minted set against the chain, backfill from mint
history, repair duplicate mappings and run admin purges.
"""

import functools
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
import yaml

from cli import __version__
from cli.config import ConfigurationManager
from registry.schema import ServiceResult
from registry.service import BuildService

# Credential sent by the operator; the server secret lives in admin.reset_token_env
ADMIN_TOKEN_ENV = 'BRICKLEDGER_ADMIN_TOKEN'


class CLIContext:
    """Global CLI context for sharing state across commands."""

    def __init__(self):
        self.config_file: Optional[str] = None
        self.profile: Optional[str] = None
        self.output_format: str = "table"
        self.verbose: int = 0
        self.config: Optional[ConfigurationManager] = None
        self.logger: Optional[logging.Logger] = None
        self._service: Optional[BuildService] = None

    def setup_logging(self):
        """Configure logging based on verbosity level."""
        log_levels = {
            0: logging.WARNING,
            1: logging.INFO,
            2: logging.DEBUG
        }
        level = log_levels.get(min(self.verbose, 2), logging.DEBUG)

        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)

        # Replace the handler from a previous invocation in the same process
        root = logging.getLogger()
        root.setLevel(level)
        for old in [h for h in root.handlers if getattr(h, '_brickledger', False)]:
            root.removeHandler(old)
        handler._brickledger = True
        root.addHandler(handler)

        self.logger = logging.getLogger('brickledger-cli')

        # Suppress verbose third-party logs unless in debug mode
        if self.verbose < 2:
            logging.getLogger('requests').setLevel(logging.WARNING)
            logging.getLogger('urllib3').setLevel(logging.WARNING)

    def load_config(self):
        """Load layered configuration."""
        if self.config_file and not Path(self.config_file).exists():
            raise click.FileError(self.config_file, hint="config file not found")
        self.config = ConfigurationManager(self.config_file, self.profile)
        self.config.load()
        self.logger.debug(f"Configuration sources: {', '.join(self.config.get_sources())}")

    @property
    def service(self) -> BuildService:
        if self._service is None:
            self._service = BuildService.from_config(self.config)
        return self._service

    def output(self, data: Any, format_override: Optional[str] = None):
        """Output data in specified format."""
        format_type = format_override or self.output_format

        if format_type == "json":
            click.echo(json.dumps(data, indent=2, default=str))
        elif format_type == "yaml":
            click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))
        else:
            self._output_table(data)

    def _output_table(self, data: Any):
        """Output data in table format."""
        if isinstance(data, dict):
            for key, value in data.items():
                if isinstance(value, (dict, list)):
                    value = json.dumps(value, default=str)
                click.echo(f"{key:20} {value}")
        elif isinstance(data, list) and data:
            if isinstance(data[0], dict):
                headers = [h for h in data[0].keys() if h != 'bricks']
                click.echo(" | ".join(f"{h:15}" for h in headers))
                click.echo("-" * (len(headers) * 18))
                for item in data:
                    values = [str(item.get(h, ""))[:15] for h in headers]
                    click.echo(" | ".join(f"{v:15}" for v in values))
            else:
                for item in data:
                    click.echo(item)
        elif isinstance(data, list):
            click.echo("(none)")
        else:
            click.echo(str(data))

    def emit(self, result: ServiceResult):
        """Print a service result, exiting non-zero on failure."""
        if not result.ok:
            click.echo(f"Error: [{result.error.code}] {result.error.message}", err=True)
            if result.error.details and self.verbose:
                click.echo(json.dumps(result.error.details, indent=2, default=str), err=True)
            sys.exit(1)
        self.output(result.data)


pass_context = click.make_pass_decorator(CLIContext, ensure=True)


def handle_cli_error(func):
    """Decorator to handle CLI errors gracefully."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except KeyboardInterrupt:
            click.echo("\nOperation cancelled by user.", err=True)
            sys.exit(130)
        except (click.ClickException, click.exceptions.Exit, click.Abort):
            raise
        except Exception as e:
            ctx = click.get_current_context(silent=True)
            cli_ctx = ctx.find_object(CLIContext) if ctx else None

            click.echo(f"Error: {e}", err=True)
            if cli_ctx and cli_ctx.verbose >= 2:
                import traceback
                click.echo(traceback.format_exc(), err=True)
            else:
                click.echo("Use -vv for detailed error information.", err=True)
            sys.exit(1)

    return wrapper


def load_json_file(file_path: str) -> Dict[str, Any]:
    """Load and validate JSON file."""
    path = Path(file_path)
    try:
        with open(path, 'r') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise click.FileError(file_path, hint=f"invalid JSON: {e}")


@click.group(context_settings={'help_option_names': ['-h', '--help']})
@click.option('--config-file', '-c', help='Path to configuration file')
@click.option('--profile', '-p', type=click.Choice(['production', 'development', 'test']),
              help='Configuration profile')
@click.option('--output-format', '-o', type=click.Choice(['table', 'json', 'yaml']),
              default='table', help='Output format')
@click.option('--verbose', '-v', count=True,
              help='Increase verbosity (-v for INFO, -vv for DEBUG)')
@click.version_option(version=__version__, prog_name='brickledger')
@pass_context
def cli(ctx: CLIContext, config_file: Optional[str], profile: Optional[str],
        output_format: str, verbose: int):
    """
    BrickLedger: chain/cache reconciliation for brick and build NFTs.

    Examples:
        brickledger mint mint.json
        brickledger resolve 42
        brickledger reconcile
        brickledger purge --confirm RESET_NFTS --operator alice
    """
    ctx.config_file = config_file
    ctx.profile = profile
    ctx.output_format = output_format
    ctx.verbose = verbose

    ctx.setup_logging()
    ctx.load_config()
    ctx.logger.debug("CLI initialized with context")


# Mint and lookup

@cli.command()
@click.argument('request_file', type=click.Path(exists=True, dir_okay=False))
@pass_context
@handle_cli_error
def mint(ctx: CLIContext, request_file: str):
    """Register a mint from a JSON request file."""
    ctx.emit(ctx.service.mint(load_json_file(request_file)))


@cli.command()
@click.argument('token_id')
@pass_context
@handle_cli_error
def resolve(ctx: CLIContext, token_id: str):
    """Resolve a token id to its build record."""
    ctx.emit(ctx.service.resolve_by_token(token_id))


@cli.command()
@pass_context
@handle_cli_error
def minted(ctx: CLIContext):
    """List minted builds, newest first."""
    ctx.emit(ctx.service.list_minted())


@cli.command()
@pass_context
@handle_cli_error
def specs(ctx: CLIContext):
    """List brick specs that have already been minted."""
    ctx.emit(ctx.service.minted_brick_specs())


@cli.command()
@click.argument('token_id')
@pass_context
@handle_cli_error
def inspect(ctx: CLIContext, token_id: str):
    """Show how a token resolves, for debugging."""
    ctx.emit(ctx.service.inspect_token(token_id))


# Maintenance jobs

@cli.command()
@pass_context
@handle_cli_error
def reconcile(ctx: CLIContext):
    """Align the cached minted set with on-chain ownership."""
    ctx.emit(ctx.service.reconcile())


@cli.command()
@pass_context
@handle_cli_error
def backfill(ctx: CLIContext):
    """Re-register tokens from chain mint history."""
    ctx.emit(ctx.service.backfill())


@cli.command()
@pass_context
@handle_cli_error
def repair(ctx: CLIContext):
    """Split build records shared by several tokens."""
    ctx.emit(ctx.service.repair_duplicates())


# Admin

@cli.command()
@click.option('--confirm', 'confirmation', required=True,
              help='Confirmation phrase (RESET_NFTS)')
@click.option('--operator', default=None, help='Name recorded in the audit log')
@click.option('--token', envvar=ADMIN_TOKEN_ENV, default=None,
              help=f'Admin token presented to the server (or set {ADMIN_TOKEN_ENV})')
@click.option('--yes', '-y', is_flag=True, help='Skip the interactive confirmation')
@pass_context
@handle_cli_error
def purge(ctx: CLIContext, confirmation: str, operator: Optional[str], token: Optional[str], yes: bool):
    """Delete every cached build, index and minted entry. Irreversible."""
    if not yes:
        click.confirm("This deletes all cached NFT data. Continue?", abort=True)
    ctx.emit(ctx.service.purge(token, confirmation, operator))


@cli.command('reset-logs')
@click.option('--limit', default=50, show_default=True, type=click.IntRange(min=1))
@click.option('--token', envvar=ADMIN_TOKEN_ENV, default=None,
              help=f'Admin token presented to the server (or set {ADMIN_TOKEN_ENV})')
@pass_context
@handle_cli_error
def reset_logs(ctx: CLIContext, limit: int, token: Optional[str]):
    """Show recent purge audit entries."""
    ctx.emit(ctx.service.reset_logs(token, limit))


# Configuration

@cli.group()
@pass_context
def config(ctx: CLIContext):
    """Configuration management commands."""
    ctx.logger.debug("Config command group invoked")


@config.command('show')
@click.option('--key', '-k', default=None, help='Dotted key to show (e.g. chain.rpc_url)')
@pass_context
@handle_cli_error
def config_show(ctx: CLIContext, key: Optional[str]):
    """Show the effective configuration."""
    if key:
        ctx.output({key: ctx.config.get(key)})
        return

    data = json.loads(json.dumps(ctx.config.load()))
    if data.get('store', {}).get('rest_token'):
        data['store']['rest_token'] = '***'
    if data.get('admin', {}).get('token'):
        data['admin']['token'] = '***'
    ctx.output(data)


@config.command('validate')
@pass_context
@handle_cli_error
def config_validate(ctx: CLIContext):
    """Validate the effective configuration."""
    errors = ctx.config.validate()
    if errors:
        for error in errors:
            click.echo(f"Error: {error}", err=True)
        sys.exit(1)
    click.echo("Configuration is valid.")
    click.echo(f"Sources: {', '.join(ctx.config.get_sources())}")


def main():
    """Console script entry point."""
    cli()


if __name__ == '__main__':
    main()
