"""Pre-classification normalization of raw transfer records.

Raw records arrive in two shapes: flat storage rows
(``from_owner``/``from_owner_type``/...) and nested alert payloads
(``from: {owner, owner_type, address}``, ``amounts: [{symbol, value_usd}]``,
``transaction: {hash}``). Owner entries in nested payloads may also be plain
strings. Everything is reduced to a NormalizedTransfer here so that the
classifier only ever compares canonical values.
"""

from __future__ import annotations

import contextlib
import math
from typing import Any

from whale_sentiment_tracker.errors import MalformedRecordError
from whale_sentiment_tracker.ingestor.models import NormalizedTransfer, OwnerType

# Labels that denote an anonymous private wallet.
UNKNOWN_OWNER_LABELS = frozenset({"", "unknown", "unknown wallet", "private wallet", "wallet"})

EXCHANGE_PATTERNS: tuple[str, ...] = (
    "binance", "coinbase", "kraken", "bitfinex", "huobi",
    "okex", "okx", "kucoin", "gemini", "bitstamp", "poloniex",
    "htx", "ceffu", "korbit", "bybit", "crypto.com",
    "gate.io", "bithumb", "upbit", "bitget", "mexc",
    "bittrex", "ftx", "deribit", "bitso", "luno",
    "coinsquare", "bitflyer", "zaif", "quoine",
)

DEFI_PATTERNS: tuple[str, ...] = (
    "contract", "treasury", "beacon", "depositor",
    "aave", "uniswap", "compound", "makerdao",
    "burn address", "null address", "curve", "convex",
    "yearn", "sushi", "pancake", "balancer", "synthetix",
)

_OWNER_TYPE_ALIASES: dict[str, OwnerType] = {
    "exchange": OwnerType.EXCHANGE,
    "wallet": OwnerType.WALLET,
    "unknown": OwnerType.UNKNOWN,
    "defi": OwnerType.DEFI,
    "contract": OwnerType.DEFI,
    "smart_contract": OwnerType.DEFI,
    "other": OwnerType.OTHER,
}

# Values above this are epoch milliseconds rather than seconds.
_MILLIS_THRESHOLD = 1e12


def normalize_symbol(value: Any) -> str:
    """Return the canonical uppercase form of an asset code."""
    return str(value or "").strip().upper()


def clean_owner_label(value: Any) -> str | None:
    """Return a display label, or None for anonymous wallets."""
    if value is None or isinstance(value, dict):
        return None
    label = str(value).strip()
    if label.lower() in UNKNOWN_OWNER_LABELS or label.lower().startswith("unknown wallet"):
        return None
    return label


def infer_owner_type(label: str | None) -> OwnerType:
    """Infer an owner category from a free-text label.

    Unmatched named entities map to OTHER: only a recognized exchange name may
    yield EXCHANGE, since a false exchange tag produces a directional flow.
    """
    if label is None:
        return OwnerType.UNKNOWN
    normalized = label.lower().strip()
    if not normalized or normalized.startswith("[object"):
        return OwnerType.UNKNOWN
    if normalized in UNKNOWN_OWNER_LABELS or "unknown wallet" in normalized:
        return OwnerType.UNKNOWN
    if any(pattern in normalized for pattern in EXCHANGE_PATTERNS):
        return OwnerType.EXCHANGE
    if any(pattern in normalized for pattern in DEFI_PATTERNS):
        return OwnerType.DEFI
    return OwnerType.OTHER


def normalize_owner_type(value: Any, label: str | None) -> OwnerType:
    """Map a raw owner-type hint to OwnerType, falling back to the label."""
    if isinstance(value, OwnerType):
        return value
    hint = str(value).strip().lower() if value is not None else ""
    if hint in _OWNER_TYPE_ALIASES:
        mapped = _OWNER_TYPE_ALIASES[hint]
        # An "unknown" hint with a recognizable label defers to the label.
        if mapped is OwnerType.UNKNOWN and label is not None:
            return infer_owner_type(label)
        return mapped
    return infer_owner_type(label)


def normalize_timestamp(value: Any) -> int | None:
    """Coerce a raw timestamp to integer Unix seconds."""
    if value is None or isinstance(value, bool):
        return None
    try:
        ts = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(ts) or ts < 0:
        return None
    if ts > _MILLIS_THRESHOLD:
        ts /= 1000.0
    return int(ts)


def _endpoint(raw: dict[str, Any], side: str) -> tuple[str | None, Any, str | None]:
    """Extract (label, owner_type_hint, address) for one side of a transfer."""
    nested = raw.get(side)
    label: str | None = None
    hint: Any = raw.get(f"{side}_owner_type")
    address = raw.get(f"{side}_address")

    if isinstance(nested, dict):
        label = clean_owner_label(nested.get("owner"))
        if hint is None:
            hint = nested.get("owner_type")
        address = address or nested.get("address")
    elif isinstance(nested, str):
        label = clean_owner_label(nested)

    if f"{side}_owner" in raw:
        label = clean_owner_label(raw.get(f"{side}_owner"))

    if address is not None:
        address = str(address).strip() or None
        if address is not None and address.lower() == "unknown":
            address = None
    return label, hint, address


def normalize_transfer(raw: dict[str, Any]) -> NormalizedTransfer:
    """Reduce a raw transfer record to canonical form.

    Raises:
        MalformedRecordError: If id, timestamp, symbol or amount_usd is
            missing or invalid.
    """
    transaction = raw.get("transaction") if isinstance(raw.get("transaction"), dict) else {}
    tx_hash = raw.get("transaction_hash") or transaction.get("hash")

    record_id = raw.get("id") or tx_hash
    if record_id is None or str(record_id).strip() == "":
        raise MalformedRecordError("transfer record has no id")
    record_id = str(record_id).strip()

    amounts = raw.get("amounts")
    primary: dict[str, Any] = {}
    if isinstance(amounts, list) and amounts and isinstance(amounts[0], dict):
        primary = amounts[0]

    timestamp = normalize_timestamp(raw.get("timestamp"))
    if timestamp is None:
        raise MalformedRecordError("transfer record has no valid timestamp", record_id=record_id)

    symbol = normalize_symbol(raw.get("symbol") or primary.get("symbol"))
    if not symbol or symbol == "UNKNOWN":
        raise MalformedRecordError("transfer record has no symbol", record_id=record_id)

    amount_raw = raw.get("amount_usd")
    if amount_raw is None:
        amount_raw = primary.get("value_usd")
    amount_usd: float | None = None
    if amount_raw is not None and not isinstance(amount_raw, bool):
        with contextlib.suppress(TypeError, ValueError):
            amount_usd = float(amount_raw)
    if amount_usd is None or not math.isfinite(amount_usd) or amount_usd < 0:
        raise MalformedRecordError(
            f"transfer record has invalid amount_usd={amount_raw!r}", record_id=record_id
        )

    from_label, from_hint, from_address = _endpoint(raw, "from")
    to_label, to_hint, to_address = _endpoint(raw, "to")

    return NormalizedTransfer(
        id=record_id,
        timestamp=timestamp,
        symbol=symbol,
        blockchain=str(raw.get("blockchain") or "unknown").strip().lower(),
        amount_usd=amount_usd,
        from_owner=from_label,
        to_owner=to_label,
        from_owner_type=normalize_owner_type(from_hint, from_label),
        to_owner_type=normalize_owner_type(to_hint, to_label),
        from_address=from_address,
        to_address=to_address,
        transaction_hash=str(tx_hash) if tx_hash else None,
    )
