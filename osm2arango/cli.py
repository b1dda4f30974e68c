"""
osm2arango command line interface.

    osm2arango bootstrap --collection osm_features
    osm2arango download europe/germany/berlin --out-dir data/
    osm2arango import data/berlin-latest.osm.pbf --collection osm_features
    osm2arango geofabrik-url europe/germany/berlin
    osm2arango regions --parent europe

Connection settings come from ARANGO_URL, ARANGO_DB, ARANGO_USER,
ARANGO_PASS and ARANGO_IMPORT_TRANSPORT (optionally loaded from --env-file)
and can be overridden per command.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click

from osm2arango.arango.transport import ON_DUPLICATE_MODES
from osm2arango.config import (
    IMPORT_TRANSPORTS,
    ArangoConnectionConfig,
    parse_positive_number,
    resolve_arango_connection_config,
)
from osm2arango.domain.bootstrap import INDEX_SETS, bootstrap_arango
from osm2arango.domain.download import (
    DEFAULT_BASE_URL,
    DownloadProgress,
    GeofabrikDownloader,
    resolve_geofabrik_url,
)
from osm2arango.domain.geofabrik_index import load_geofabrik_index
from osm2arango.domain.importer import (
    ADAPTERS,
    DEFAULT_CHUNK_BYTES,
    INVALID_JSON_MODES,
    UNSUPPORTED_GEOMETRY_MODES,
    ImportOptions,
    ImportProgress,
    ImportSummary,
    import_osm,
)
from osm2arango.exceptions import Osm2ArangoError
from osm2arango.osm.profile import IMPORT_PROFILES
from osm2arango.util.lines import TOO_LONG_LINE_MODES
from osm2arango.util.log import get_logger, verbosity_level

DEFAULT_COLLECTION = "osm_features"
MB = 1024 * 1024


class CliContext:
    """Global options shared by every subcommand."""

    def __init__(self, env_file: Path | None = None):
        self.env_file = env_file

    def connection(self, **overrides: str | None) -> ArangoConnectionConfig:
        if self.env_file is not None:
            return ArangoConnectionConfig.from_env_file(self.env_file, **overrides)
        return resolve_arango_connection_config(**overrides)


@contextmanager
def cli_errors() -> Iterator[None]:
    """Report domain failures as a single error line with exit code 1."""
    try:
        yield
    except (Osm2ArangoError, FileNotFoundError) as e:
        raise click.ClickException(str(e)) from e
    except KeyError as e:
        raise click.ClickException(e.args[0] if e.args else str(e)) from e


def connection_options(f):
    options = [
        click.option("--arango-url", default=None, help="ArangoDB URL (env: ARANGO_URL)."),
        click.option("--arango-db", default=None, help="Database name (env: ARANGO_DB)."),
        click.option("--arango-user", default=None, help="User name (env: ARANGO_USER)."),
        click.option("--arango-pass", default=None, help="Password (env: ARANGO_PASS)."),
        click.option(
            "--import-transport",
            type=click.Choice(IMPORT_TRANSPORTS),
            default=None,
            help="Upload mechanism (env: ARANGO_IMPORT_TRANSPORT).",
        ),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def _connection(ctx: CliContext, arango_url, arango_db, arango_user, arango_pass, import_transport):
    return ctx.connection(
        url=arango_url,
        database=arango_db,
        username=arango_user,
        password=arango_pass,
        import_transport=import_transport,
    )


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option("-q", "--quiet", is_flag=True, help="Only log warnings and errors.")
@click.option(
    "--env-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Read connection settings from a .env file.",
)
@click.pass_context
def main(ctx, verbose, quiet, env_file):
    """Import OpenStreetMap extracts into ArangoDB."""
    get_logger("osm2arango", level=verbosity_level(verbose, quiet))
    ctx.obj = CliContext(env_file)


@main.command()
@connection_options
@click.option("--collection", default=DEFAULT_COLLECTION, show_default=True)
@click.option(
    "--indexes",
    type=click.Choice(INDEX_SETS),
    default="all",
    show_default=True,
    help="Which indexes to create.",
)
@click.pass_obj
def bootstrap(obj: CliContext, collection, indexes, **conn_options):
    """Create the database, collection and indexes."""
    with cli_errors():
        conn = _connection(obj, **conn_options)
        bootstrap_arango(conn, collection, indexes)
    click.echo(f"Bootstrapped {conn.database}/{collection} (indexes: {indexes})")


@main.command()
@click.argument("region_or_url")
@click.option(
    "--out-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
)
@click.option("--base-url", default=DEFAULT_BASE_URL, show_default=True)
def download(region_or_url, out_dir, base_url):
    """Download a Geofabrik extract (region path like europe/germany/berlin, or a URL)."""
    downloader = GeofabrikDownloader(base_url=base_url, progress=_render_download_progress)
    with cli_errors():
        result = downloader.download(region_or_url, out_dir)
    click.echo(str(result.path))


@main.command("import")
@click.argument("input_path", type=click.Path(path_type=Path))
@connection_options
@click.option("--collection", default=DEFAULT_COLLECTION, show_default=True)
@click.option(
    "--adapter",
    type=click.Choice(ADAPTERS),
    default=None,
    help="Input format. Inferred from the file extension when omitted.",
)
@click.option("--chunk-mb", default=None, help="Max batch payload in MiB (default 8).")
@click.option("--concurrency", type=click.IntRange(min=1), default=2, show_default=True)
@click.option(
    "--on-duplicate", type=click.Choice(ON_DUPLICATE_MODES), default="update", show_default=True
)
@click.option(
    "--unsupported-geometry",
    type=click.Choice(UNSUPPORTED_GEOMETRY_MODES),
    default="skip",
    show_default=True,
)
@click.option("--profile", type=click.Choice(IMPORT_PROFILES), default="all", show_default=True)
@click.option("--max-line-mb", default=None, help="Per-line size limit in MiB.")
@click.option(
    "--too-long-line", type=click.Choice(TOO_LONG_LINE_MODES), default="skip", show_default=True
)
@click.option(
    "--invalid-json", type=click.Choice(INVALID_JSON_MODES), default="error", show_default=True
)
@click.option(
    "--flush-final-partial-line/--drop-final-partial-line",
    default=True,
    show_default=True,
    help="Import or drop bytes after the last newline.",
)
@click.option("--progress-interval", default=None, help="Seconds between progress lines.")
@click.option("--osmium-path", default="osmium", show_default=True)
@click.pass_obj
def import_command(
    obj: CliContext,
    input_path,
    collection,
    adapter,
    chunk_mb,
    concurrency,
    on_duplicate,
    unsupported_geometry,
    profile,
    max_line_mb,
    too_long_line,
    invalid_json,
    flush_final_partial_line,
    progress_interval,
    osmium_path,
    **conn_options,
):
    """Import an .osm.pbf (via osmium) or .ndjson file."""
    with cli_errors():
        conn = _connection(obj, **conn_options)
        chunk_bytes = int(parse_positive_number(chunk_mb, "chunk-mb", DEFAULT_CHUNK_BYTES / MB) * MB)
        max_line_bytes = None
        if max_line_mb is not None:
            max_line_bytes = int(parse_positive_number(max_line_mb, "max-line-mb", 1) * MB)
        interval = parse_positive_number(progress_interval, "progress-interval", 1.0)

        options = ImportOptions(
            collection=collection,
            adapter=adapter or infer_adapter(input_path),
            chunk_bytes=chunk_bytes,
            concurrency=concurrency,
            on_duplicate=on_duplicate,
            unsupported_geometry=unsupported_geometry,
            profile=profile,
            max_line_bytes=max_line_bytes,
            too_long_line=too_long_line,
            invalid_json=invalid_json,
            flush_final_partial_line=flush_final_partial_line,
            progress_interval=interval,
            osmium_path=osmium_path,
        )
        summary = import_osm(conn, input_path, options, progress=_render_import_progress)
    _print_summary(summary)


@main.command("geofabrik-url")
@click.argument("region")
@click.option("--base-url", default=DEFAULT_BASE_URL, show_default=True)
def geofabrik_url(region, base_url):
    """Print the .osm.pbf URL for a Geofabrik region path."""
    click.echo(resolve_geofabrik_url(region, base_url))


@main.command()
@click.option("--parent", default=None, help="List subregions of this region id.")
@click.option("--keyword", default=None, help="Filter by name or id substring.")
@click.option("--iso", default=None, help="Find regions by ISO 3166 code.")
def regions(parent, keyword, iso):
    """List Geofabrik regions."""
    with cli_errors():
        index = load_geofabrik_index()
        if iso:
            df = index.search(iso, by="iso")
        else:
            df = index.list_regions(parent, keyword=keyword)
    if df.empty:
        click.echo("No regions found.")
        return
    click.echo(df[["id", "name", "pbf_url"]].to_string(index=False))


def infer_adapter(input_path: Path) -> str:
    if input_path.name.lower().endswith(".ndjson"):
        return "ndjson"
    return "osmium-geojsonseq"


def _render_import_progress(p: ImportProgress) -> None:
    line = (
        f"[{p.phase}] seen={p.seen} created={p.created} updated={p.updated} "
        f"errors={p.errors} in_flight={p.in_flight}"
    )
    skipped = p.skipped_unsupported_geometry + p.skipped_by_profile
    if skipped:
        line += f" skipped={skipped}"
    click.echo(line, err=True)


def _render_download_progress(p: DownloadProgress) -> None:
    done = p.downloaded_bytes / MB
    if p.total_bytes:
        pct = 100 * p.downloaded_bytes / p.total_bytes
        click.echo(f"{done:.1f} / {p.total_bytes / MB:.1f} MB ({pct:.0f}%)", err=True)
    else:
        click.echo(f"{done:.1f} MB", err=True)


def _print_summary(s: ImportSummary) -> None:
    click.echo(f"seen:     {s.seen}")
    click.echo(f"created:  {s.created}")
    click.echo(f"updated:  {s.updated}")
    click.echo(f"ignored:  {s.ignored}")
    click.echo(f"empty:    {s.empty}")
    click.echo(f"errors:   {s.errors}")
    if s.skipped_by_profile:
        click.echo(f"skipped by profile ({s.profile}): {s.skipped_by_profile}")
    if s.skipped_unsupported_geometry:
        click.echo(f"skipped unsupported geometry: {s.skipped_unsupported_geometry}")
    if s.skipped_too_long_lines:
        click.echo(
            f"skipped too-long lines: {s.skipped_too_long_lines} "
            f"(largest {s.max_too_long_line_bytes} bytes)"
        )
    if s.skipped_invalid_json_lines:
        click.echo(f"skipped invalid JSON lines: {s.skipped_invalid_json_lines}")
    if s.skipped_partial_final_lines:
        click.echo(f"dropped partial final lines: {s.skipped_partial_final_lines}")
    if s.geometry_type_counts:
        counts = ", ".join(f"{k}={v}" for k, v in sorted(s.geometry_type_counts.items()))
        click.echo(f"geometry types: {counts}")
