"""
swu_scanner/cli/main.py: CLI entry point using Click

Commands:
- index [--rebuild] [--set SOR ...] - Build (or rebuild) the reference database
- identify IMAGE [--full-card | --binder] - Identify a card image or binder page
- hash IMAGE [--center-crop] - Print an image's fingerprint
- watch [--camera 0] [--interval 3.0] - Auto-scan a live camera
- stats - Show reference database statistics
"""

import asyncio
import json
import logging

import click
from tqdm import tqdm

from swu_scanner.config import LOG_LEVEL

# Setup logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class ProgressBar:
    """Renders ProgressEvents on a tqdm bar"""

    def __init__(self):
        self.bar = tqdm(total=100, unit='%', bar_format='{desc} |{bar}| {n:.0f}%')

    def __call__(self, event):
        self.bar.set_description_str(event.message)
        if event.percent > self.bar.n:
            self.bar.update(event.percent - self.bar.n)

    def close(self):
        self.bar.close()


def _make_service(set_codes=None):
    from swu_scanner.service import RecognitionService
    return RecognitionService(set_codes=list(set_codes) if set_codes else None)


def _init_service(service, show_progress=True):
    bar = ProgressBar() if show_progress else None
    try:
        asyncio.run(service.init_matcher(bar))
    finally:
        if bar:
            bar.close()


@click.group()
def cli():
    """SWU card recognition CLI"""
    pass


@cli.command()
@click.option('--rebuild', is_flag=True, help='Rebuild from scratch, replacing the stored database once the build succeeds')
@click.option('--set', 'set_codes', multiple=True, help='Only index these sets (repeatable, e.g. --set SOR --set SHD)')
def index(rebuild, set_codes):
    """
    Build the reference fingerprint database

    Example: index --rebuild

    Downloads the card list of every known set, fetches each print's artwork,
    hashes it and stores the fingerprints in the local database. Subsequent
    runs load from the database unless --rebuild is given.
    """
    from swu_scanner.service import ReferenceDatabaseUnavailableError

    service = _make_service([s.upper() for s in set_codes])
    bar = ProgressBar()
    try:
        if rebuild:
            asyncio.run(service.rebuild_reference_database(bar))
        else:
            asyncio.run(service.init_matcher(bar))
    except ReferenceDatabaseUnavailableError as e:
        bar.close()
        raise click.ClickException(str(e))
    bar.close()

    logger.info(f"Reference database ready: {service.record_count} fingerprints")


def _describe(result):
    if not result.matched:
        return "No match"
    identity = result.identity
    subtitle = f" - {identity.subtitle}" if identity.subtitle else ''
    return (
        f"{identity.key} {identity.display_name}{subtitle} [{identity.variant_label}] "
        f"confidence {result.confidence}% (distance {result.distance})"
    )


@cli.command()
@click.argument('image', type=click.Path(exists=True, dir_okay=False))
@click.option('--full-card', is_flag=True, help='Image is already cropped to the card')
@click.option('--binder', is_flag=True, help='Image is a 3x3 binder page; identify every pocket')
@click.option('--json', 'as_json', is_flag=True, help='Print the result as JSON')
def identify(image, full_card, binder, as_json):
    """
    Identify the card in an image

    Example: identify photo.jpg --full-card
             identify page.jpg --binder
    """
    from swu_scanner.indexing.image_processor import InvalidSourceError
    from swu_scanner.service import ReferenceDatabaseUnavailableError

    service = _make_service()
    try:
        _init_service(service, show_progress=not as_json)
        if binder:
            results = service.identify_binder_page(image)
        else:
            result = service.identify(image, assume_full_card=full_card)
    except (ReferenceDatabaseUnavailableError, InvalidSourceError) as e:
        raise click.ClickException(str(e))

    if binder:
        if as_json:
            click.echo(json.dumps([r.to_dict() for r in results], indent=2))
        else:
            for slot, pocket in enumerate(results, 1):
                click.echo(f"Pocket {slot}: {_describe(pocket) if pocket.matched else '(empty or unknown)'}")
    elif as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        click.echo(_describe(result))


@cli.command('hash')
@click.argument('image', type=click.Path(exists=True, dir_okay=False))
@click.option('--center-crop', is_flag=True, help='Crop the card guide region from a camera frame first')
def hash_command(image, center_crop):
    """Print the dHash fingerprint of an image (binary and hex)"""
    from swu_scanner.indexing.image_processor import CropMode, InvalidSourceError
    from swu_scanner.indexing.phash import fingerprint_to_hex, hash_image

    mode = CropMode.CENTER_CROP if center_crop else CropMode.FULL_FRAME
    try:
        fingerprint = hash_image(image, mode)
    except InvalidSourceError as e:
        raise click.ClickException(str(e))

    click.echo(fingerprint)
    click.echo(fingerprint_to_hex(fingerprint))


@cli.command()
@click.option('--camera', type=int, default=0, help='Camera device index (default: 0)')
@click.option('--interval', type=float, default=None, help='Seconds between scans (default: AUTO_SCAN_INTERVAL)')
@click.option('--duration', type=float, default=None, help='Stop after this many seconds (default: run until Ctrl-C)')
def watch(camera, interval, duration):
    """
    Auto-scan a live camera and print identified cards

    Example: watch --camera 0 --interval 2
    """
    from swu_scanner.acquisition.frames import VideoCaptureSource
    from swu_scanner.service import ReferenceDatabaseUnavailableError

    service = _make_service()
    try:
        _init_service(service)
    except ReferenceDatabaseUnavailableError as e:
        raise click.ClickException(str(e))

    try:
        source = VideoCaptureSource(camera)
    except RuntimeError as e:
        raise click.ClickException(str(e))

    def on_result(result):
        if result.matched:
            click.echo(f"{result.identity.key} {result.identity.display_name} ({result.confidence}%)")

    async def run():
        service.start_watching(source, on_result, interval)
        try:
            if duration:
                await asyncio.sleep(duration)
            else:
                while True:
                    await asyncio.sleep(3600)
        finally:
            service.stop_watching()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Stopped")
    finally:
        source.release()


@cli.command()
def stats():
    """Show reference database statistics"""
    from swu_scanner.database.db import FingerprintStore

    store = FingerprintStore()
    meta = store.get_meta()

    click.echo(f"Fingerprints: {store.count()}")
    if meta:
        click.echo(f"Last build: {meta['built_at']:%Y-%m-%d %H:%M:%S} ({meta['record_count']} records)")
        click.echo(f"Known sets: {', '.join(meta['set_codes'])}")
    else:
        click.echo("Last build: never")


if __name__ == '__main__':
    cli()
