"""Verum Seal CLI."""

from __future__ import annotations

import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

import click

from verumseal import __version__


def handle_error(error: Exception, debug: bool) -> None:
    """Handle errors with structured output.

    Args:
        error: The exception that occurred
        debug: Whether to show full traceback
    """
    if debug:
        traceback.print_exc()
    else:
        click.echo(f"Error: {error}", err=True)
    sys.exit(1)


def load_config(config_path: Path | None):
    """Load config from YAML if given, else from the environment."""
    from verumseal.config import SealConfig

    if config_path is not None:
        return SealConfig.from_yaml(config_path)
    return SealConfig.from_env()


@click.group()
@click.version_option(version=__version__, prog_name="verumctl")
@click.option('--config', '-c', 'config_path', type=click.Path(exists=True, path_type=Path), help='YAML config file')
@click.option('--log-level', default='WARNING', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']))
@click.option('--debug', is_flag=True, help='Enable debug mode (show full tracebacks)')
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, log_level: str, debug: bool):
    """Verum Seal CLI - tamper-evident sealing of evidence and narratives."""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path
    ctx.obj['debug'] = debug
    logging.basicConfig(
        level=logging.DEBUG if debug else getattr(logging, log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.option('--narrative', '-n', required=True, type=click.Path(exists=True, path_type=Path),
              help='Narrative text file (UTF-8)')
@click.option('--evidence', '-e', multiple=True, type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Evidence file (repeatable, order is preserved)')
@click.option('--out', '-o', required=True, type=click.Path(path_type=Path), help='Output bundle directory')
@click.option('--lat', type=float, help='Latitude in decimal degrees')
@click.option('--lon', type=float, help='Longitude in decimal degrees')
@click.option('--qr', type=click.Choice(['remote', 'local', 'none']), help='Verification image provider')
@click.option('--generated-at', type=click.DateTime(formats=['%Y-%m-%dT%H:%M:%S', '%Y-%m-%d %H:%M:%S']),
              help='Footer timestamp (default: now, local time)')
@click.pass_context
def seal(
    ctx: click.Context,
    narrative: Path,
    evidence: tuple[Path, ...],
    out: Path,
    lat: float | None,
    lon: float | None,
    qr: str | None,
    generated_at: datetime | None,
):
    """Seal a narrative and its evidence into a verifiable bundle.

    Examples:
      verumctl seal -n report.txt -e photo.jpg -e chat.txt -o ./sealed
      verumctl seal -n report.txt -e photo.jpg -o ./sealed --lat 51.5 --lon -0.12
      verumctl seal -n report.txt -o ./sealed --qr local
    """
    from dataclasses import replace

    from verumseal.bundle import write_bundle
    from verumseal.engine import SealingEngine
    from verumseal.models import Geolocation

    debug = ctx.obj.get('debug', False)

    try:
        if (lat is None) != (lon is None):
            raise click.UsageError("--lat and --lon must be given together")

        config = load_config(ctx.obj.get('config_path'))
        if qr:
            config = replace(config, qr_provider=qr)

        geolocation = Geolocation(lat, lon) if lat is not None and lon is not None else None
        if generated_at is None:
            generated_at = datetime.now().astimezone()
        elif generated_at.tzinfo is None:
            generated_at = generated_at.astimezone()

        engine = SealingEngine(config=config)
        click.echo(f"Sealing {len(evidence)} evidence file(s)...")
        report = engine.seal_paths(
            narrative.read_text(encoding="utf-8"),
            evidence,
            geolocation=geolocation,
            generated_at=generated_at,
        )
        paths = write_bundle(report, out)
        engine.discard_session()

        click.echo(f"\n✅ Sealed {report.manifest.manifest_id}")
        click.echo(f"  Pages: {report.page_count}")
        click.echo(f"  Device fingerprint: {report.manifest.device_id_fingerprint}")
        click.echo(f"  Document SHA-512: {report.document_digest}")
        if not report.verification_image_embedded:
            click.echo("  ⚠️  Verification code image unavailable, placeholder rendered")
        click.echo("\nBundle written to:")
        for name, path in paths.items():
            click.echo(f"  - {name}: {path}")
    except click.UsageError:
        raise
    except Exception as e:
        handle_error(e, debug)


@cli.command()
@click.option('--bundle', '-b', required=True, type=click.Path(exists=True, file_okay=False, path_type=Path),
              help='Bundle directory to verify')
@click.option('--evidence-dir', '-e', type=click.Path(exists=True, file_okay=False, path_type=Path),
              help='Directory with the original evidence files (optional)')
@click.option('--fingerprint', '-f', help='Expected device fingerprint (optional)')
@click.option('--out', '-o', type=click.Path(path_type=Path), help='Output directory for verification reports')
@click.pass_context
def verify(
    ctx: click.Context,
    bundle: Path,
    evidence_dir: Path | None,
    fingerprint: str | None,
    out: Path | None,
):
    """Verify a sealed bundle.

    Checks the manifest signature, device fingerprint, document digest and,
    when the evidence directory is given, every evidence file digest.

    Examples:
      verumctl verify --bundle ./sealed
      verumctl verify --bundle ./sealed --evidence-dir ./originals
      verumctl verify --bundle ./sealed --out ./verification-report
    """
    from verumseal.verifier import SealVerifier

    debug = ctx.obj.get('debug', False)

    try:
        click.echo(f"Verifying bundle: {bundle}...")
        verifier = SealVerifier(expected_fingerprint=fingerprint)

        if out:
            result, paths = verifier.verify_and_report(bundle, out, evidence_dir)
            click.echo("\nVerification reports written to:")
            click.echo(f"  - JSON: {paths['json']}")
            click.echo(f"  - MD:   {paths['markdown']}")
        else:
            result = verifier.verify(bundle, evidence_dir)

        click.echo(f"\nVerification Result: {'✅ VALID' if result.valid else '❌ INVALID'}")
        if result.manifest_id:
            click.echo(f"  Manifest: {result.manifest_id}")
        if result.signature_valid is not None:
            click.echo(f"  Signature: {'✅ VALID' if result.signature_valid else '❌ INVALID'}")
        if result.document_digest_valid is not None:
            click.echo(f"  Document digest: {'✅ VALID' if result.document_digest_valid else '❌ INVALID'}")
        if result.files_checked:
            click.echo(f"  Evidence files valid: {result.files_valid}/{result.files_checked}")
        for item in result.files_tampered:
            click.echo(f"    ⚠️  tampered: {item['file_name']}")
        for name in result.files_missing:
            click.echo(f"    ⚠️  missing: {name}")
        for error in result.errors:
            click.echo(f"  - {error}")

        # Exit with error code if invalid
        if not result.valid:
            sys.exit(1)
    except Exception as e:
        handle_error(e, debug)


@cli.command()
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
def digest(files: tuple[Path, ...]):
    """Print SHA-512 digests in sha512sum format."""
    from verumseal.digest import digest_file

    for path in files:
        click.echo(f"{digest_file(path)}  {path}")


@cli.command(name="review-prompt")
@click.option('--bundle', '-b', required=True, type=click.Path(exists=True, file_okay=False, path_type=Path),
              help='Sealed bundle directory')
@click.option('--narrative', '-n', required=True, type=click.Path(exists=True, path_type=Path),
              help='Narrative text file that was sealed')
@click.pass_context
def review_prompt(ctx: click.Context, bundle: Path, narrative: Path):
    """Print the online review request for a sealed bundle."""
    from verumseal.bundle import load_bundle
    from verumseal.models import Manifest
    from verumseal.review import build_review_request

    debug = ctx.obj.get('debug', False)

    try:
        manifest = Manifest.from_dict(load_bundle(bundle).manifest_data)
        click.echo(build_review_request(narrative.read_text(encoding="utf-8"), manifest))
    except Exception as e:
        handle_error(e, debug)


@cli.command()
@click.option('--host', '-h', default='127.0.0.1', help='Host to bind to')
@click.option('--port', '-p', default=8000, help='Port to listen on')
@click.pass_context
def serve(ctx: click.Context, host: str, port: int):
    """Start the Verum Seal HTTP server.

    The server holds one device key for its whole lifetime; restarting it
    starts a new session with a new key.

    Examples:
      verumctl serve
      verumctl serve --host 0.0.0.0 --port 8080
    """
    import uvicorn

    from verumseal.server import create_app

    debug = ctx.obj.get('debug', False)

    try:
        app = create_app(config=load_config(ctx.obj.get('config_path')), debug=debug)
        click.echo(f"Starting Verum Seal server on http://{host}:{port}")
        click.echo(f"API documentation: http://{host}:{port}/docs")
        # Single worker: the session key lives in this process
        uvicorn.run(app, host=host, port=port, log_level="debug" if debug else "info")
    except Exception as e:
        handle_error(e, debug)


def main() -> None:
    """Entry point."""
    cli()


if __name__ == '__main__':
    main()
