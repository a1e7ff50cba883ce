"""
swu_scanner/indexing/records.py: Card identity and fingerprint records
"""

from dataclasses import dataclass
from typing import Any, Dict, Tuple


@dataclass(frozen=True)
class CardIdentity:
    """A physical card print as known to the catalog"""
    set_code: str
    collector_number: str
    display_name: str
    subtitle: str = ''
    variant_label: str = 'Normal'

    @property
    def key(self) -> str:
        """Persisted key: <set_code>-<collector_number>"""
        return f"{self.set_code}-{self.collector_number}"

    @property
    def composite_key(self) -> Tuple[str, str, str]:
        return (self.set_code, self.collector_number, self.variant_label)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'set_code': self.set_code,
            'collector_number': self.collector_number,
            'display_name': self.display_name,
            'subtitle': self.subtitle,
            'variant_label': self.variant_label,
        }


@dataclass(frozen=True)
class FingerprintRecord:
    """Reference fingerprint for one card print"""
    identity: CardIdentity
    fingerprint: str

    @property
    def key(self) -> str:
        return self.identity.key

    def to_row(self) -> Dict[str, Any]:
        """Flatten to the persisted row shape"""
        row = {'key': self.key, 'fingerprint': self.fingerprint}
        row.update(self.identity.to_dict())
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'FingerprintRecord':
        identity = CardIdentity(
            set_code=row['set_code'],
            collector_number=row['collector_number'],
            display_name=row['display_name'],
            subtitle=row.get('subtitle') or '',
            variant_label=row.get('variant_label') or 'Normal',
        )
        return cls(identity=identity, fingerprint=row['fingerprint'])
