"""Flow classification of whale transfers.

Turns raw transfer records into typed WhaleEvents. The flow type is a pure
function of the two endpoint categories (plus a same-address check) and is
re-derived on every read, so stored rows labelled by an older classifier are
corrected transparently.

Precedence:
    1. same address, or both endpoints wallet/unknown -> internal
    2. either endpoint defi                           -> defi
    3. destination exchange only                      -> inflow  (sell pressure)
    4. source exchange only                           -> outflow (buy pressure)
    5. both endpoints exchange                        -> exchange
    6. anything else                                  -> internal

A directional flow (inflow/outflow) is only ever assigned when exactly one
endpoint is a known exchange.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from whale_sentiment_tracker.errors import MalformedRecordError
from whale_sentiment_tracker.ingestor.models import (
    FlowType,
    NormalizedTransfer,
    OwnerType,
    WhaleEvent,
)
from whale_sentiment_tracker.ingestor.normalize import normalize_transfer

logger = logging.getLogger(__name__)

_PRIVATE = frozenset({OwnerType.UNKNOWN, OwnerType.WALLET})


def derive_flow_type(
    from_owner_type: OwnerType,
    to_owner_type: OwnerType,
    *,
    from_address: str | None = None,
    to_address: str | None = None,
) -> FlowType:
    """Derive the flow type from endpoint categories."""
    same_wallet = (
        from_address is not None
        and to_address is not None
        and from_address.lower() == to_address.lower()
    )
    if same_wallet or (from_owner_type in _PRIVATE and to_owner_type in _PRIVATE):
        return FlowType.INTERNAL

    if OwnerType.DEFI in (from_owner_type, to_owner_type):
        return FlowType.DEFI

    from_exchange = from_owner_type is OwnerType.EXCHANGE
    to_exchange = to_owner_type is OwnerType.EXCHANGE

    if to_exchange and not from_exchange:
        return FlowType.INFLOW
    if from_exchange and not to_exchange:
        return FlowType.OUTFLOW
    if from_exchange and to_exchange:
        return FlowType.EXCHANGE
    return FlowType.INTERNAL


def classify_normalized(transfer: NormalizedTransfer) -> WhaleEvent:
    """Classify an already-normalized transfer."""
    return WhaleEvent(
        id=transfer.id,
        timestamp=transfer.timestamp,
        symbol=transfer.symbol,
        blockchain=transfer.blockchain,
        amount_usd=transfer.amount_usd,
        from_owner=transfer.from_owner,
        to_owner=transfer.to_owner,
        from_owner_type=transfer.from_owner_type,
        to_owner_type=transfer.to_owner_type,
        flow_type=derive_flow_type(
            transfer.from_owner_type,
            transfer.to_owner_type,
            from_address=transfer.from_address,
            to_address=transfer.to_address,
        ),
        from_address=transfer.from_address,
        to_address=transfer.to_address,
        transaction_hash=transfer.transaction_hash,
    )


def classify(raw: dict[str, Any]) -> WhaleEvent:
    """Normalize and classify a raw transfer record.

    Missing or unrecognized owner information never fails; it maps to the
    ``unknown`` category.

    Raises:
        MalformedRecordError: If the record lacks id, timestamp, symbol or
            a valid amount_usd.
    """
    return classify_normalized(normalize_transfer(raw))


@dataclass
class ClassificationBatch:
    """Result of classifying a batch of raw records."""

    events: list[WhaleEvent] = field(default_factory=list)
    dropped: int = 0

    @property
    def total(self) -> int:
        return len(self.events) + self.dropped


def classify_batch(records: Iterable[dict[str, Any]]) -> ClassificationBatch:
    """Classify many raw records, dropping and counting malformed ones."""
    batch = ClassificationBatch()
    for raw in records:
        try:
            batch.events.append(classify(raw))
        except MalformedRecordError as e:
            batch.dropped += 1
            logger.warning("Dropped malformed transfer record (id=%s): %s", e.record_id, e)
    return batch
