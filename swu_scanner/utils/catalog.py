"""
swu_scanner/utils/catalog.py: SWU-DB catalog client
Lists card prints per set and validates them at the catalog boundary
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from swu_scanner.config import SWU_API_BASE_URL, SET_CODES
from swu_scanner.indexing.records import CardIdentity
from swu_scanner.utils.fetch import Fetcher

logger = logging.getLogger(__name__)


class CatalogRecordError(ValueError):
    """Raised when a catalog row lacks required identity fields."""


class CatalogCard(BaseModel):
    """One card print as listed by the catalog API"""
    model_config = ConfigDict(populate_by_name=True, extra='ignore', frozen=True)

    set_code: str = Field(..., alias='Set', min_length=1)
    collector_number: str = Field(..., alias='Number', min_length=1)
    name: str = Field(..., alias='Name', min_length=1)
    subtitle: str = Field('', alias='Subtitle')
    variant_label: str = Field('Normal', alias='VariantType')
    artwork_url: str = Field('', alias='FrontArt')

    @field_validator('set_code', 'collector_number', mode='before')
    @classmethod
    def _coerce_identity(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator('subtitle', 'artwork_url', mode='before')
    @classmethod
    def _blank_if_missing(cls, value: Any) -> Any:
        return '' if value is None else value

    @field_validator('variant_label', mode='before')
    @classmethod
    def _default_variant(cls, value: Any) -> Any:
        return value or 'Normal'

    def identity(self) -> CardIdentity:
        return CardIdentity(
            set_code=self.set_code,
            collector_number=self.collector_number,
            display_name=self.name,
            subtitle=self.subtitle,
            variant_label=self.variant_label,
        )


def parse_catalog_card(raw: Dict[str, Any]) -> CatalogCard:
    """
    Validate one raw catalog row

    Raises:
        CatalogRecordError: if Set, Number or Name is missing or invalid
    """
    try:
        return CatalogCard.model_validate(raw)
    except ValidationError as e:
        raise CatalogRecordError(f"Invalid catalog record: {e.errors()[0]['msg']}") from e


class SwuDbCatalog:
    """Card catalog backed by the SWU-DB REST API"""

    def __init__(
        self,
        fetcher: Fetcher,
        base_url: str = SWU_API_BASE_URL,
        set_codes: Optional[List[str]] = None
    ):
        self.fetcher = fetcher
        self.base_url = base_url.rstrip('/')
        self._set_codes = list(set_codes) if set_codes is not None else list(SET_CODES)

    def set_codes(self) -> List[str]:
        """All known set codes, in build order"""
        return list(self._set_codes)

    async def list_cards(self, set_code: str) -> List[CatalogCard]:
        """
        Fetch every print of a set

        Rows failing validation are logged and skipped.

        Raises:
            FetchError: if the set listing could not be fetched
        """
        url = f"{self.base_url}/cards/{quote(set_code, safe='')}?format=json"
        payload = await self.fetcher.fetch_json(url)

        rows = payload.get('data') if isinstance(payload, dict) else None
        if not rows:
            logger.warning(f"Catalog returned no cards for {set_code}")
            return []

        cards = []
        for raw in rows:
            try:
                cards.append(parse_catalog_card(raw))
            except CatalogRecordError as e:
                logger.warning(f"Skipping {set_code} row: {e}")

        logger.debug(f"{set_code}: {len(cards)} prints listed")
        return cards
