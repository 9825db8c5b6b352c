"""Technical indicators over a market close series.

RSI (Wilder smoothing), MACD (12/26/9 EMAs) and Bollinger Bands (20-period
SMA, 2 population standard deviations) using their textbook definitions.
The market collector may store the values directly; when it stores only the
close series, they are derived here.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
import pandas as pd

RSI_PERIOD = 14
MACD_FAST = 12
MACD_SLOW = 26
MACD_SIGNAL = 9
BB_WINDOW = 20
BB_STD = 2.0
BB_HISTORY = 3

MIN_CLOSES = MACD_SLOW

MACD_GOLDEN = "golden"
MACD_DEATH = "death"

INDICATOR_METRICS = frozenset(
    {
        "rsi",
        "previous_rsi",
        "rsi_level",
        "rsi_level_change",
        "macd_line",
        "macd_signal",
        "macd_histogram",
        "macd_crossed",
        "bb_upper",
        "bb_middle",
        "bb_lower",
        "bb_width",
        "bb_width_pct",
        "bb_width_expansion",
    }
)


def _series(values: Sequence[float] | pd.Series) -> pd.Series:
    if isinstance(values, pd.Series):
        return values.astype(float)
    return pd.Series(list(values), dtype=float)


def ema(values: Sequence[float] | pd.Series, span: int) -> pd.Series:
    return _series(values).ewm(span=span, adjust=False).mean()


def rsi(values: Sequence[float] | pd.Series, period: int = RSI_PERIOD) -> pd.Series:
    """Wilder's RSI, aligned with the input. Flat series read as 50."""
    delta = _series(values).diff()
    gains = delta.clip(lower=0.0)
    losses = -delta.clip(upper=0.0)

    avg_gain = gains.ewm(alpha=1 / period, adjust=False).mean()
    avg_loss = losses.ewm(alpha=1 / period, adjust=False).mean()

    rs = avg_gain / avg_loss.replace(0.0, np.nan)
    out = 100.0 - (100.0 / (1.0 + rs))
    # No losses at all: RSI is 100 when there were gains, 50 when flat.
    out = out.where(avg_loss != 0.0, np.where(avg_gain > 0.0, 100.0, 50.0))
    return out.fillna(50.0)


def macd(
    values: Sequence[float] | pd.Series,
    fast: int = MACD_FAST,
    slow: int = MACD_SLOW,
    signal: int = MACD_SIGNAL,
) -> tuple[pd.Series, pd.Series, pd.Series]:
    """Return (macd line, signal line, histogram)."""
    closes = _series(values)
    line = ema(closes, fast) - ema(closes, slow)
    sig = ema(line, signal)
    return line, sig, line - sig


def bollinger_bands(
    values: Sequence[float] | pd.Series, window: int = BB_WINDOW, n_std: float = BB_STD
) -> tuple[pd.Series, pd.Series, pd.Series]:
    """Return (lower, middle, upper) bands."""
    closes = _series(values)
    middle = closes.rolling(window=window, min_periods=1).mean()
    std = closes.rolling(window=window, min_periods=1).std(ddof=0)
    return middle - n_std * std, middle, middle + n_std * std


def macd_cross(line: pd.Series, signal: pd.Series) -> str | None:
    """Golden when the MACD line crossed above its signal on the last bar,
    death when it crossed below."""
    if len(line) < 2:
        return None
    before = line.iloc[-2] - signal.iloc[-2]
    after = line.iloc[-1] - signal.iloc[-1]
    if before <= 0 < after:
        return MACD_GOLDEN
    if before >= 0 > after:
        return MACD_DEATH
    return None


def rsi_level(value: float | None) -> int | None:
    """Bucket an RSI value into levels 1..10; 0-10 is 1, (10, 20] is 2, ..."""
    if value is None or not math.isfinite(value) or value < 0 or value > 100:
        return None
    return max(1, math.ceil(value / 10))


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Indicator values at the latest bar of a timeframe.

    Attributes:
        rsi: Current RSI.
        previous_rsi: RSI one bar (or one collector run) earlier.
        macd_line: MACD line.
        macd_signal: MACD signal line.
        macd_histogram: MACD line minus signal.
        macd_cross: golden, death or None for the latest bar.
        bb_upper: Upper Bollinger band.
        bb_middle: Middle band (SMA).
        bb_lower: Lower band.
        bb_width_history: Band widths of the preceding bars, most recent first.
    """

    rsi: float | None = None
    previous_rsi: float | None = None
    macd_line: float | None = None
    macd_signal: float | None = None
    macd_histogram: float | None = None
    macd_cross: str | None = None
    bb_upper: float | None = None
    bb_middle: float | None = None
    bb_lower: float | None = None
    bb_width_history: tuple[float, ...] = ()

    @property
    def bb_width(self) -> float | None:
        if self.bb_upper is None or self.bb_lower is None:
            return None
        return self.bb_upper - self.bb_lower

    def metric(self, name: str) -> float | None:
        """Look up a named indicator metric; None when it cannot be derived."""
        if name == "rsi_level":
            level = rsi_level(self.rsi)
            return float(level) if level is not None else None
        if name == "rsi_level_change":
            current = rsi_level(self.rsi)
            # Without a previous reading the baseline is neutral.
            previous = rsi_level(self.previous_rsi if self.previous_rsi is not None else 50.0)
            if current is None or previous is None:
                return None
            return float(abs(current - previous))
        if name == "macd_crossed":
            return 1.0 if self.macd_cross in (MACD_GOLDEN, MACD_DEATH) else 0.0
        if name == "bb_width_pct":
            width = self.bb_width
            if width is None or not self.bb_middle:
                return None
            return width / self.bb_middle * 100.0
        if name == "bb_width_expansion":
            width = self.bb_width
            history = self.bb_width_history[:BB_HISTORY]
            if width is None or len(history) < BB_HISTORY:
                return None
            baseline = sum(history) / len(history)
            return width / baseline if baseline > 0 else None
        value = getattr(self, name, None)
        return float(value) if value is not None else None

    def to_dict(self) -> dict[str, object]:
        return {
            "rsi": self.rsi,
            "previous_rsi": self.previous_rsi,
            "macd_line": self.macd_line,
            "macd_signal": self.macd_signal,
            "macd_histogram": self.macd_histogram,
            "macd_cross": self.macd_cross,
            "bb_upper": self.bb_upper,
            "bb_middle": self.bb_middle,
            "bb_lower": self.bb_lower,
            "bb_width_history": list(self.bb_width_history),
        }


def compute_indicators(closes: Sequence[float]) -> IndicatorSnapshot | None:
    """Derive an IndicatorSnapshot from a close series, oldest first.

    Returns None when the series is shorter than the slow MACD period.
    """
    series = _series([c for c in closes if c is not None and math.isfinite(c)])
    if len(series) < MIN_CLOSES:
        return None

    rsi_series = rsi(series)
    line, sig, hist = macd(series)
    lower, middle, upper = bollinger_bands(series)
    widths = (upper - lower).iloc[-(BB_HISTORY + 1) : -1]

    return IndicatorSnapshot(
        rsi=float(rsi_series.iloc[-1]),
        previous_rsi=float(rsi_series.iloc[-2]),
        macd_line=float(line.iloc[-1]),
        macd_signal=float(sig.iloc[-1]),
        macd_histogram=float(hist.iloc[-1]),
        macd_cross=macd_cross(line, sig),
        bb_upper=float(upper.iloc[-1]),
        bb_middle=float(middle.iloc[-1]),
        bb_lower=float(lower.iloc[-1]),
        bb_width_history=tuple(float(w) for w in reversed(widths.tolist())),
    )
