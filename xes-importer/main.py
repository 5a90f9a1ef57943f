"""Main CLI entry point for the XES importer."""

import os
import sys
from datetime import datetime
from typing import Optional
import click
import logging

from settings import config
from utils import setup_logging, get_file_size, format_bytes
from database import XESDatabase
from processor import import_xes_file, XESImportError
from xes_parser import XESParseError


def setup_application_logging(verbose: bool = False) -> logging.Logger:
    """Set up application-wide logging.

    Args:
        verbose: Enable verbose logging

    Returns:
        Main application logger
    """
    log_level = "DEBUG" if verbose else config.LOG_LEVEL
    logger = setup_logging(log_level)

    logger.info("=" * 60)
    logger.info("XES to SQL Importer")
    logger.info("=" * 60)
    logger.info(f"Log level: {log_level}")

    return logger


def display_import_statistics(database: XESDatabase) -> None:
    """Print a summary of what the database now contains."""
    stats = database.get_import_statistics()

    click.echo("\n" + "=" * 40)
    click.echo("IMPORT STATISTICS")
    click.echo("=" * 40)

    for table_name, count in stats['counts'].items():
        click.echo(f"{table_name.capitalize():<15}: {count:,} records")

    per_trace = stats['events_per_trace']
    click.echo(
        f"\nEvents per trace: avg={per_trace['avg']:.1f}, "
        f"min={per_trace['min']}, max={per_trace['max']}"
    )

    top = stats['top_event_attributes']
    if not top.empty:
        click.echo("\nTop event attributes:")
        for _, row in top.iterrows():
            click.echo(f"  - {row['key']}: {int(row['usage_count']):,} times")

    click.echo("=" * 40)


@click.group()
@click.option('--database-uri', default=None,
              help='SQLAlchemy database URL (defaults to XES_DATABASE_URI)')
@click.option('--verbose', '-v', is_flag=True, default=False,
              help='Enable verbose logging')
@click.pass_context
def cli(ctx: click.Context, database_uri: Optional[str], verbose: bool) -> None:
    """XES Importer - Load XES event logs into a relational database."""
    ctx.ensure_object(dict)
    ctx.obj['database_uri'] = database_uri or config.DATABASE_URI
    ctx.obj['verbose'] = verbose
    ctx.obj['logger'] = setup_application_logging(verbose)


@cli.command(name='import')
@click.argument('xes_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--keep-existing', is_flag=True, default=False,
              help='Keep existing tables instead of dropping and recreating them')
@click.option('--yes', '-y', is_flag=True, default=False,
              help='Do not ask for confirmation')
@click.option('--no-progress', is_flag=True, default=False,
              help='Hide the progress bar')
@click.pass_context
def import_command(ctx: click.Context, xes_file: str, keep_existing: bool,
                   yes: bool, no_progress: bool) -> None:
    """Import an XES (or .xes.gz) event log.

    Examples:

        # Replace the database contents with one log
        python main.py import logs/BPI_Challenge_2012.xes

        # Import into a PostgreSQL database without prompting
        python main.py --database-uri postgresql://postgres@localhost/xes import -y log.xes.gz
    """
    logger = ctx.obj['logger']
    database = None

    try:
        name = os.path.basename(xes_file)
        if not name.lower().endswith(('.xes', '.xes.gz')):
            if not yes and not click.confirm(f"{name} doesn't have an .xes extension. Continue?"):
                return

        file_size = get_file_size(xes_file)
        click.echo(f"File: {name} ({format_bytes(file_size)})")
        if file_size > config.LARGE_FILE_WARNING_MB * 1024 * 1024:
            click.echo("Large file detected. Import may take several minutes.")

        if not keep_existing:
            click.echo("WARNING: This will clear all existing data in the database!")
            if not yes and not click.confirm("Continue?"):
                return

        database = XESDatabase(ctx.obj['database_uri'])

        logger.info(f"Starting import of XES file: {name}")
        start_time = datetime.now()

        stats = import_xes_file(
            xes_file, database,
            recreate_schema=not keep_existing,
            show_progress=not no_progress,
        )

        total_seconds = (datetime.now() - start_time).total_seconds()
        logger.info(f"Import completed in {total_seconds:.2f} seconds: {stats}")
        click.echo(f"\nImport completed successfully in {total_seconds:.2f} seconds")

        display_import_statistics(database)

    except (XESParseError, XESImportError) as e:
        logger.error(f"Error during import: {e}")
        click.echo(f"Error during import: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Import cancelled by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        if ctx.obj['verbose']:
            import traceback
            logger.error(traceback.format_exc())
        sys.exit(1)
    finally:
        if database:
            database.close()


@cli.command(name='init-schema')
@click.option('--recreate', is_flag=True, default=False,
              help='Drop existing tables first')
@click.pass_context
def init_schema(ctx: click.Context, recreate: bool) -> None:
    """Create the event-log tables."""
    try:
        with XESDatabase(ctx.obj['database_uri']) as database:
            if recreate:
                database.recreate_schema()
            else:
                database.create_schema()
        click.echo("Schema initialized successfully!")
    except Exception as e:
        click.echo(f"Schema initialization failed: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show statistics for the imported data."""
    try:
        with XESDatabase(ctx.obj['database_uri']) as database:
            display_import_statistics(database)
    except Exception as e:
        click.echo(f"Could not read import statistics: {e}", err=True)
        sys.exit(1)


@cli.command(name='test-connection')
@click.pass_context
def test_connection(ctx: click.Context) -> None:
    """Check that the database is reachable."""
    try:
        with XESDatabase(ctx.obj['database_uri']) as database:
            info = database.get_connection_info()
            tables = database.get_existing_tables()
            log_count = database.get_table_row_count("log") if "log" in tables else 0
        click.echo(f"Connected to {info['database_type']} database: {info['database_uri']}")
        click.echo(f"Existing tables: {len(tables)}")
        click.echo(f"Imported logs: {log_count}")
    except Exception as e:
        click.echo(f"Database connection failed: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
