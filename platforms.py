# platforms.py
import logging
from typing import Dict, List, NamedTuple, Optional, Tuple, Any

from models_pydantic import ColumnMapping

log = logging.getLogger('platforms')


class PlatformSignature(NamedTuple):
    name: str
    display_name: str
    required_headers: frozenset  # lower-cased; all must be present
    expected_columns: Tuple[str, ...]
    default_mapping: Dict[str, str]


# Checked in this order; the first full match wins.
PLATFORM_SIGNATURES: Tuple[PlatformSignature, ...] = (
    PlatformSignature(
        name='patreon',
        display_name='Patreon',
        required_headers=frozenset({'patron', 'pledge'}),
        expected_columns=('Patron', 'Pledge', 'Created', 'Tier'),
        default_mapping={'amount': 'Pledge', 'date': 'Created', 'customer': 'Patron', 'description': 'Tier'},
    ),
    PlatformSignature(
        name='gumroad',
        display_name='Gumroad',
        required_headers=frozenset({'product', 'price', 'email'}),
        expected_columns=('Email', 'Price', 'Created At', 'Product', 'Order Number'),
        default_mapping={'amount': 'Price', 'date': 'Created At', 'customer': 'Email',
                         'description': 'Product', 'transaction_id': 'Order Number'},
    ),
    PlatformSignature(
        name='stripe',
        display_name='Stripe',
        required_headers=frozenset({'id', 'amount', 'status'}),
        expected_columns=('id', 'Amount', 'Created', 'Description', 'Currency'),
        default_mapping={'amount': 'Amount', 'date': 'Created', 'description': 'Description',
                         'transaction_id': 'id', 'currency': 'Currency'},
    ),
    PlatformSignature(
        name='paypal',
        display_name='PayPal',
        required_headers=frozenset({'transaction id', 'gross'}),
        expected_columns=('Transaction ID', 'Gross', 'Date', 'Name', 'Currency'),
        default_mapping={'amount': 'Gross', 'date': 'Date', 'customer': 'Name',
                         'transaction_id': 'Transaction ID', 'currency': 'Currency'},
    ),
)

_SIGNATURES_BY_NAME: Dict[str, PlatformSignature] = {sig.name: sig for sig in PLATFORM_SIGNATURES}


def detect_platform(headers: List[str]) -> Optional[str]:
    """Exact, case-insensitive header containment. No fuzzy matching."""
    header_set = {h.lower() for h in headers}
    for signature in PLATFORM_SIGNATURES:
        if signature.required_headers <= header_set:
            log.debug(f"Headers match platform signature '{signature.name}'.")
            return signature.name
    return None


def get_suggested_mapping(platform: Optional[str]) -> Optional[ColumnMapping]:
    signature = _SIGNATURES_BY_NAME.get(platform) if platform else None
    if signature is None:
        return None
    return ColumnMapping(**signature.default_mapping)


def list_platforms() -> List[Dict[str, Any]]:
    return [
        {
            "name": sig.name,
            "displayName": sig.display_name,
            "expectedColumns": list(sig.expected_columns),
        }
        for sig in PLATFORM_SIGNATURES
    ]
