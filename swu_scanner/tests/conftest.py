"""
swu_scanner/tests/conftest.py: Pytest configuration and shared fixtures

Provides:
- Synthetic card images and frames
- Temporary fingerprint store
- Fake fetcher standing in for the network
- Logging configuration
"""

import io
import shutil
import tempfile
from pathlib import Path
import logging

import numpy as np
import pytest
from PIL import Image, ImageDraw

from swu_scanner.database.db import FingerprintStore
from swu_scanner.database.schema import create_session_factory
from swu_scanner.indexing.records import CardIdentity, FingerprintRecord
from swu_scanner.utils.fetch import FetchError

# Configure logging for tests
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


def grid_image(bits: str, base: int = 128, step: int = 10) -> Image.Image:
    """
    Build a 9x8 grayscale image whose dHash is exactly `bits`

    Each row starts at `base` and steps up for a '1', down for a '0'.
    """
    assert len(bits) == 64
    rows = []
    for y in range(8):
        value = base
        row = [value]
        for x in range(8):
            value += step if bits[y * 8 + x] == '1' else -step
            row.append(value)
        rows.append(row)
    return Image.fromarray(np.array(rows, dtype=np.uint8)).convert('RGB')


def flip_bits(bits: str, count: int) -> str:
    """Flip the first `count` positions of a fingerprint"""
    flipped = ''.join('1' if c == '0' else '0' for c in bits[:count])
    return flipped + bits[count:]


def image_bytes(img: Image.Image, fmt: str = 'PNG') -> bytes:
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


def noise_image(seed: int, size=(63, 88)) -> Image.Image:
    """Random RGB image; different seeds give unrelated fingerprints"""
    rng = np.random.default_rng(seed)
    return Image.fromarray(rng.integers(0, 256, (size[1], size[0], 3), dtype=np.uint8))


# Pocket boxes of a 1000x1000 binder page: 3% margin, 2% gutter, 301px pockets
BINDER_POCKET_OFFSETS = [30, 350, 669]
BINDER_POCKET_SIZE = 301


def binder_page(pockets):
    """
    Build a 1000x1000 binder page photo

    Args:
        pockets: 9 images (or None for an empty pocket), row by row
    """
    page = Image.new("RGB", (1000, 1000), color="black")
    for i, pocket in enumerate(pockets):
        if pocket is None:
            continue
        left = BINDER_POCKET_OFFSETS[i % 3]
        top = BINDER_POCKET_OFFSETS[i // 3]
        page.paste(pocket.resize((BINDER_POCKET_SIZE, BINDER_POCKET_SIZE)), (left, top))
    return page


def make_record(set_code='SOR', number='001', fingerprint='0' * 64, name='Test Card', variant='Normal'):
    return FingerprintRecord(
        identity=CardIdentity(
            set_code=set_code,
            collector_number=number,
            display_name=name,
            variant_label=variant
        ),
        fingerprint=fingerprint
    )


def catalog_row(set_code, number, name='Test Card', art=None, variant='Normal', subtitle=None):
    return {
        'Set': set_code,
        'Number': number,
        'Name': name,
        'Subtitle': subtitle,
        'VariantType': variant,
        'FrontArt': art if art is not None else f"https://cdn.test/{set_code}/{number}.png",
    }


class FakeFetcher:
    """
    In-memory stand-in for Fetcher

    `responses` maps URL -> bytes, JSON-able object, or an Exception to raise.
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.requested = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None

    def _lookup(self, url):
        self.requested.append(url)
        if url not in self.responses:
            raise FetchError(url, ['direct: HTTP 404'])
        value = self.responses[url]
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch_bytes(self, url):
        return self._lookup(url)

    async def fetch_json(self, url):
        return self._lookup(url)


def listing_url(set_code):
    return f"https://api.swu-db.com/cards/{set_code}?format=json"


@pytest.fixture
def temp_dir():
    """
    Function-scoped temporary directory

    Yields:
        Path to temporary directory (cleaned up after test)
    """
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path

    # Cleanup
    if temp_path.exists():
        shutil.rmtree(temp_path)


@pytest.fixture
def store(temp_dir):
    """Fingerprint store on a temporary SQLite database"""
    session_factory = create_session_factory(f"sqlite:///{temp_dir / 'test.db'}")
    yield FingerprintStore(session_factory)
    session_factory.kw['bind'].dispose()


@pytest.fixture
def sample_card_image():
    """
    Create a sample card image for testing

    Returns:
        PIL Image object at 63:88 aspect ratio
    """
    img = Image.new('RGB', (315, 440), color='white')
    draw = ImageDraw.Draw(img)

    # Card border
    draw.rectangle([5, 5, 309, 434], outline='black', width=3)

    # Name bar
    draw.rectangle([15, 15, 299, 60], fill='lightgray', outline='black')

    # Art region
    draw.rectangle([15, 70, 299, 260], fill='darkblue', outline='black')
    draw.ellipse([90, 110, 220, 220], fill='orange')

    # Text box
    draw.rectangle([15, 270, 299, 420], fill='lightyellow', outline='black')
    draw.line([30, 300, 280, 300], fill='black', width=4)

    return img


@pytest.fixture
def textured_frame():
    """Camera-like RGB frame that passes the content gate"""
    rng = np.random.default_rng(7)
    return rng.integers(0, 256, (240, 320, 3), dtype=np.uint8)


# Pytest hooks

def pytest_configure(config):
    """
    Pytest configuration hook

    Args:
        config: Pytest config object
    """
    # Register custom markers
    config.addinivalue_line("markers", "unit: Unit tests (fast, no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (require database)")
    config.addinivalue_line("markers", "slow: Slow tests (> 1 second)")


def pytest_collection_modifyitems(config, items):
    """Auto-mark tests based on naming conventions"""
    for item in items:
        if 'integration' in item.nodeid.lower():
            item.add_marker(pytest.mark.integration)
        if 'slow' in item.nodeid.lower():
            item.add_marker(pytest.mark.slow)
