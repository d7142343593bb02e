"""
event-media CLI - administer events, run the pipeline and serve the API from the command line.

Usage:
    event-media serve [--host HOST] [--port PORT] [--debug]
    event-media create-event <name> <date> [--location TEXT] [--expires-in-days N]
    event-media index <slug>
    event-media repair-thumbs <slug> [--attempts N] [--stream]
    event-media search <slug> <selfie> [--threshold T] [--strategy compare|collection] [--limit N]
    event-media reap
    event-media init
    event-media version
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click

from event_media import __version__
from event_media.errors import PipelineError


def _echo_json(payload) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def _fail(exc: PipelineError) -> None:
    click.echo(f"Error: {exc}", err=True)
    raise SystemExit(1)


@click.group()
@click.option("-v", "--verbose", is_flag=True, default=False, help="Log debug details")
def cli(verbose: bool) -> None:
    """Event Media - index, preview, search and expire event photos."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not verbose:
        for noisy in ("botocore", "boto3", "urllib3", "PIL"):
            logging.getLogger(noisy).setLevel(logging.WARNING)


@cli.command()
def version() -> None:
    """Print the installed version."""
    click.echo(f"event-media {__version__}")


@cli.command()
def init() -> None:
    """Create ~/.event-media/ with a default configuration."""
    from event_media.config import ensure_data_home, get_data_home, get_default_config

    data_home = ensure_data_home()
    click.echo(f"Data directory: {data_home}")

    config_path = get_data_home() / "config.json"
    if config_path.exists():
        click.echo(f"Config already exists: {config_path}")
    else:
        config_path.write_text(json.dumps(get_default_config(), indent=2), encoding="utf-8")
        click.echo(f"Config created: {config_path}")

    click.echo("Initialization complete.")


@cli.command()
@click.option("--host", default=None, help="Bind address (default: from config or 0.0.0.0)")
@click.option("--port", default=None, type=int, help="Port (default: from config or 5050)")
@click.option("--debug", is_flag=True, default=False, help="Enable Flask debug mode")
def serve(host: str | None, port: int | None, debug: bool) -> None:
    """Start the HTTP API."""
    try:
        from event_media_frontend.app import app
    except ImportError:
        # Dev mode: frontend/ not installed as a package
        from event_media.config import get_repo_root

        repo_root = get_repo_root()
        if repo_root is not None:
            frontend_dir = str(repo_root / "frontend")
            if frontend_dir not in sys.path:
                sys.path.insert(0, frontend_dir)
        try:
            from app import app  # type: ignore[no-redef]
        except ImportError:
            click.echo(
                "Error: Cannot find the HTTP API package.\n"
                "Either install with `pip install event-media` or "
                "run from the repo root.",
                err=True,
            )
            raise SystemExit(1)

    from event_media.config import get_config

    server_config = get_config().get("server", {})

    final_host = host or server_config.get("host", "0.0.0.0")
    final_port = port or server_config.get("port", 5050)
    final_debug = debug or server_config.get("debug", False)

    click.echo(f"Starting Event Media API on {final_host}:{final_port}")
    app.run(host=final_host, port=final_port, debug=final_debug)


@cli.command("create-event")
@click.argument("name")
@click.argument("event_date")
@click.option("--location", default=None, help="Where the event took place")
@click.option("--image-url", default=None, help="Public cover image URL")
@click.option("--expires-in-days", default=None, type=int, help="Days until the event is reaped")
def create_event(
    name: str,
    event_date: str,
    location: str | None,
    image_url: str | None,
    expires_in_days: int | None,
) -> None:
    """Create an event named NAME held on EVENT_DATE (YYYY-MM-DD or DD/MM/YYYY)."""
    from event_media._operations import create_event as _create

    try:
        event = _create(
            name,
            event_date,
            location=location,
            image_url=image_url,
            expires_in_days=expires_in_days,
        )
    except PipelineError as e:
        _fail(e)
    _echo_json(event)


@cli.command("list-events")
def list_events() -> None:
    """List events, newest first."""
    from event_media._operations import list_events as _list

    try:
        events = _list()
    except PipelineError as e:
        _fail(e)

    if not events:
        click.echo("No events.")
        return
    for ev in events:
        expires = ev["expires_at"] or "never"
        click.echo(f"{ev['slug']:<40} {ev['event_date'] or '-':<12} expires: {expires}")


@cli.command("delete-event")
@click.argument("slug")
@click.confirmation_option(prompt="Delete the event, its photos, previews and faces?")
def delete_event(slug: str) -> None:
    """Remove event SLUG everywhere, whatever its expiry."""
    from event_media._operations import delete_event as _delete

    try:
        result = _delete(slug)
    except PipelineError as e:
        _fail(e)
    _echo_json(result)
    if result["errors"]:
        raise SystemExit(1)


@cli.command()
@click.argument("slug")
@click.option("--stream", is_flag=True, default=False, help="Print NDJSON progress records instead of a bar")
def index(slug: str, stream: bool) -> None:
    """Index the faces of every photo of event SLUG."""
    from event_media import _operations

    try:
        if stream:
            for record in _operations.iter_index_event(slug):
                click.echo(record.to_json(), nl=False)
            return
        stats = _operations.index_event(slug, show_progress=True)
    except PipelineError as e:
        _fail(e)

    _echo_json(stats)
    if stats["failed"]:
        raise SystemExit(1)


@cli.command("repair-thumbs")
@click.argument("slug")
@click.option("--attempts", default=None, type=int, help="Attempts per thumbnail (default: from config)")
@click.option("--stream", is_flag=True, default=False, help="Print NDJSON progress records instead of a bar")
def repair_thumbs(slug: str, attempts: int | None, stream: bool) -> None:
    """Generate the previews missing for event SLUG."""
    from event_media import _operations

    try:
        if stream:
            for record in _operations.iter_repair_thumbnails(slug, attempts=attempts):
                click.echo(record.to_json(), nl=False)
            return
        stats = _operations.repair_thumbnails(slug, attempts=attempts, show_progress=True)
    except PipelineError as e:
        _fail(e)

    _echo_json(stats)
    if stats["files_failed"]:
        raise SystemExit(1)


@cli.command("generate-thumb")
@click.argument("slug")
@click.argument("src_path")
def generate_thumb(slug: str, src_path: str) -> None:
    """Render the preview of one original SRC_PATH of event SLUG."""
    from event_media._operations import generate_thumbnail

    try:
        result = generate_thumbnail(slug, src_path)
    except PipelineError as e:
        _fail(e)
    _echo_json(result)


@cli.command()
@click.argument("slug")
@click.argument("selfie", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--threshold", default=None, type=float, help="Minimum similarity 0-100 (default: from config)")
@click.option("--strategy", default=None, type=click.Choice(["compare", "collection"]), help="Search strategy")
@click.option("--limit", default=None, type=click.IntRange(min=1), help="Show only the best N matches")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the full report as JSON")
def search(
    slug: str,
    selfie: Path,
    threshold: float | None,
    strategy: str | None,
    limit: int | None,
    as_json: bool,
) -> None:
    """Find the photos of event SLUG containing the person in SELFIE."""
    from event_media._operations import search_selfie

    try:
        report = search_selfie(selfie.read_bytes(), slug, threshold=threshold, strategy=strategy)
    except PipelineError as e:
        _fail(e)

    if as_json:
        _echo_json(report)
        return

    if not report["matches"]:
        click.echo(f"No matches ({report['faces_detected']} faces in selfie, {report['photos_considered']} photos searched)")
        return
    shown = report["matches"][:limit] if limit else report["matches"]
    for m in shown:
        click.echo(f"{m['rank']:>3}. {m['similarity']:5.1f}  {m['photo_path']}")
    if len(shown) < report["total_matches"]:
        click.echo(f"... {report['total_matches'] - len(shown)} more (use --json for all)")


@cli.command()
def reap() -> None:
    """Remove expired events from every backend."""
    from event_media._operations import reap_expired

    try:
        summary = reap_expired()
    except PipelineError as e:
        _fail(e)
    _echo_json(summary)


@cli.group()
def collections() -> None:
    """Manage biometric collections."""


@collections.command("list")
def collections_list() -> None:
    """List the collections of the biometric index."""
    from event_media._operations import list_collections

    try:
        ids = list_collections()
    except PipelineError as e:
        _fail(e)
    for collection_id in ids:
        click.echo(collection_id)


@collections.command("create")
@click.argument("slug")
def collections_create(slug: str) -> None:
    """Create the collection of event SLUG ahead of indexing."""
    from event_media._operations import create_collection

    try:
        result = create_collection(slug)
    except PipelineError as e:
        _fail(e)
    state = "created" if result["created"] else "already exists"
    click.echo(f"{result['collection_id']}: {state}")


if __name__ == "__main__":
    cli()
