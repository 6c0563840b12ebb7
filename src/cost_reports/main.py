"""
Main CLI interface for multi-cloud cost reports.

Fetches normalized cost reports and tag information for the configured AWS,
Azure, and MongoDB Atlas sub-accounts and prints them as JSON.
"""

import asyncio
import json
import logging
import sys
from datetime import date, datetime, time, timedelta, timezone

import click

from .config.settings import SUPPORTED_PROVIDERS, get_config, load_config
from .orchestrator import (
    build_orchestrators,
    collect_cost_reports,
    collect_tag_keys,
    collect_tag_values,
)
from .providers.base import CostQuery, TagsQuery

# Set up logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

PROVIDER_CHOICES = [*SUPPORTED_PROVIDERS, "all"]


def setup_logging(verbose: bool = False):
    """Configure logging based on verbosity settings."""
    # Configure root logger - default is quiet (only show results)
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    else:
        logging.getLogger().setLevel(logging.ERROR)

    # Configure cloud SDK loggers to reduce noise
    cloud_loggers = [
        "azure.core.pipeline.policies.http_logging_policy",
        "azure.identity",
        "boto3",
        "botocore",
        "httpx",
        "httpcore",
        "urllib3",
    ]

    for logger_name in cloud_loggers:
        sdk_logger = logging.getLogger(logger_name)
        if verbose:
            sdk_logger.setLevel(logging.INFO)
        else:
            sdk_logger.setLevel(logging.ERROR)


def to_epoch_millis(value: date) -> str:
    """UTC midnight of ``value`` as an epoch-millis string."""
    moment = datetime.combine(value, time.min, tzinfo=timezone.utc)
    return str(int(moment.timestamp() * 1000))


def _selected_providers(provider: str) -> list[str] | None:
    return None if provider == "all" else [provider]


def _emit(payload: dict, failed_everywhere: bool) -> None:
    click.echo(json.dumps(payload, indent=2))
    if failed_everywhere:
        sys.exit(1)


def _orchestrators_or_exit(ctx, provider: str):
    orchestrators = build_orchestrators(ctx.obj["config"], _selected_providers(provider))
    if not orchestrators:
        click.echo(f"No integrations configured for provider: {provider}", err=True)
        sys.exit(1)
    return orchestrators


def _all_failed(result, orchestrators) -> bool:
    total_accounts = sum(len(o.accounts) for o in orchestrators)
    return total_accounts > 0 and len(result.errors) == total_accounts


date_option_kwargs = {"type": click.DateTime(formats=["%Y-%m-%d"])}


@click.group()
@click.option("--config", "-c", help="Path to an extra configuration file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging and debug output")
@click.pass_context
def cli(ctx, config, verbose):
    """Multi-Cloud Cost Reports - normalized billing data for AWS, Azure, and MongoDB Atlas."""
    setup_logging(verbose)

    # Ensure context object exists
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    try:
        ctx.obj["config"] = load_config(config) if config else get_config()
    except Exception as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option(
    "--start",
    default=str((date.today().replace(day=1) - timedelta(days=1)).replace(day=1)),
    help="Start date YYYY-MM-DD (default: first day of last month)",
    **date_option_kwargs,
)
@click.option(
    "--end",
    default=str(date.today()),
    help="End date YYYY-MM-DD (default: today)",
    **date_option_kwargs,
)
@click.option(
    "--provider",
    type=click.Choice(PROVIDER_CHOICES),
    default="all",
    help="Cloud provider to query (default: all)",
)
@click.option(
    "--granularity",
    type=click.Choice(["daily", "monthly"], case_sensitive=False),
    default="monthly",
    help="Time bucket size (default: monthly)",
)
@click.option(
    "--tag",
    "tags",
    multiple=True,
    help='Tag filter "key:value"; repeat to match any of several tags',
)
@click.pass_context
def costs(ctx, start, end, provider, granularity, tags):
    """Fetch cost reports for every configured sub-account."""
    config = ctx.obj["config"]

    try:
        query = CostQuery(
            start_time=to_epoch_millis(start.date()),
            end_time=to_epoch_millis(end.date()),
            granularity=granularity,
            tags=tags,
        )
    except ValueError as e:
        raise click.BadParameter(str(e))

    orchestrators = _orchestrators_or_exit(ctx, provider)
    result = asyncio.run(collect_cost_reports(orchestrators, query, config.category_mappings))
    _emit(result.to_dict(), _all_failed(result, orchestrators))


@cli.command("tag-keys")
@click.option("--start", required=True, help="Start date YYYY-MM-DD", **date_option_kwargs)
@click.option("--end", required=True, help="End date YYYY-MM-DD", **date_option_kwargs)
@click.option("--provider", type=click.Choice(PROVIDER_CHOICES), default="all")
@click.pass_context
def tag_keys(ctx, start, end, provider):
    """List the tag keys seen in the date range."""
    try:
        query = TagsQuery(start_time=to_epoch_millis(start.date()), end_time=to_epoch_millis(end.date()))
    except ValueError as e:
        raise click.BadParameter(str(e))

    orchestrators = _orchestrators_or_exit(ctx, provider)
    result = asyncio.run(collect_tag_keys(orchestrators, query))
    payload = {"tag_keys": result.tags, "errors": [error.to_dict() for error in result.errors]}
    _emit(payload, _all_failed(result, orchestrators))


@cli.command("tag-values")
@click.option("--tag-key", required=True, help="Tag key to list values for")
@click.option("--start", required=True, help="Start date YYYY-MM-DD", **date_option_kwargs)
@click.option("--end", required=True, help="End date YYYY-MM-DD", **date_option_kwargs)
@click.option("--provider", type=click.Choice(PROVIDER_CHOICES), default="all")
@click.pass_context
def tag_values(ctx, tag_key, start, end, provider):
    """List the values of one tag key seen in the date range."""
    try:
        query = TagsQuery(start_time=to_epoch_millis(start.date()), end_time=to_epoch_millis(end.date()))
    except ValueError as e:
        raise click.BadParameter(str(e))

    orchestrators = _orchestrators_or_exit(ctx, provider)
    result = asyncio.run(collect_tag_values(orchestrators, query, tag_key))
    payload = {"tag_values": result.tags, "errors": [error.to_dict() for error in result.errors]}
    _emit(payload, _all_failed(result, orchestrators))


@cli.command()
def version():
    """Display version information."""
    from . import __version__

    click.echo(f"Multi-Cloud Cost Reports v{__version__}")
    click.echo("Normalized billing data for AWS, Azure, and MongoDB Atlas")


if __name__ == "__main__":
    cli()
