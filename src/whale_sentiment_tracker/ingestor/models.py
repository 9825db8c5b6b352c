"""Data models for the ingestor module."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class OwnerType(str, Enum):
    """Category of a transfer endpoint."""

    EXCHANGE = "exchange"
    WALLET = "wallet"
    UNKNOWN = "unknown"
    DEFI = "defi"
    OTHER = "other"


class FlowType(str, Enum):
    """Directional implication of a transfer for exchange-held supply."""

    INFLOW = "inflow"
    OUTFLOW = "outflow"
    EXCHANGE = "exchange"
    INTERNAL = "internal"
    DEFI = "defi"

    @property
    def is_directional(self) -> bool:
        """Return True for flows that count as buy or sell pressure."""
        return self in DIRECTIONAL_FLOWS


DIRECTIONAL_FLOWS = frozenset({FlowType.INFLOW, FlowType.OUTFLOW})

# Lower bounds (USD) of whale size tiers 2..7; anything below is tier 1.
WHALE_TIER_BOUNDS: tuple[tuple[int, float], ...] = (
    (7, 1_000_000_000),
    (6, 500_000_000),
    (5, 200_000_000),
    (4, 100_000_000),
    (3, 50_000_000),
    (2, 20_000_000),
)


def whale_tier(amount_usd: float) -> int:
    """Map a USD amount to its whale size tier (1..7)."""
    for tier, lower in WHALE_TIER_BOUNDS:
        if amount_usd >= lower:
            return tier
    return 1


@dataclass(frozen=True)
class NormalizedTransfer:
    """A raw transfer after the normalization stage, before classification.

    All fields have canonical types: the symbol is uppercase, owner types are
    OwnerType members and the timestamp is in Unix seconds.
    """

    id: str
    timestamp: int
    symbol: str
    blockchain: str
    amount_usd: float
    from_owner: str | None
    to_owner: str | None
    from_owner_type: OwnerType
    to_owner_type: OwnerType
    from_address: str | None = None
    to_address: str | None = None
    transaction_hash: str | None = None


@dataclass(frozen=True)
class WhaleEvent:
    """A classified whale transfer.

    Attributes:
        id: Opaque unique identifier (dedup key).
        timestamp: Transfer time in Unix seconds.
        symbol: Canonical uppercase asset code.
        blockchain: Source chain name.
        amount_usd: Transfer value in USD (non-negative).
        from_owner: Free-text label of the source, if known.
        to_owner: Free-text label of the destination, if known.
        from_owner_type: Category of the source.
        to_owner_type: Category of the destination.
        flow_type: Derived direction of the transfer.
        from_address: Source address, if known.
        to_address: Destination address, if known.
        transaction_hash: On-chain transaction hash, if known.
    """

    id: str
    timestamp: int
    symbol: str
    blockchain: str
    amount_usd: float
    from_owner: str | None
    to_owner: str | None
    from_owner_type: OwnerType
    to_owner_type: OwnerType
    flow_type: FlowType
    from_address: str | None = None
    to_address: str | None = None
    transaction_hash: str | None = None

    @property
    def timestamp_ms(self) -> int:
        """Return the timestamp in milliseconds."""
        return self.timestamp * 1000

    @property
    def occurred_at(self) -> datetime:
        """Return the timestamp as a timezone-aware datetime."""
        return datetime.fromtimestamp(self.timestamp, tz=UTC)

    @property
    def tier(self) -> int:
        """Return the whale size tier (1..7)."""
        return whale_tier(self.amount_usd)

    @property
    def is_directional(self) -> bool:
        """Return True if this transfer is an exchange inflow or outflow."""
        return self.flow_type.is_directional

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dictionary (storage row / alert metrics)."""
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "symbol": self.symbol,
            "blockchain": self.blockchain,
            "amount_usd": self.amount_usd,
            "from_owner": self.from_owner,
            "to_owner": self.to_owner,
            "from_owner_type": self.from_owner_type.value,
            "to_owner_type": self.to_owner_type.value,
            "flow_type": self.flow_type.value,
            "from_address": self.from_address,
            "to_address": self.to_address,
            "transaction_hash": self.transaction_hash,
        }
