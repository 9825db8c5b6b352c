"""Alert evaluation.

Each cycle the evaluator checks every rule against every matching
(symbol, timeframe) window. A rule whose condition holds and whose key is
not cooling down is ARMED and selected, up to the per-cycle cap. Selection
only reads the cooldown store: a selected alert FIRES when the caller
commits it right before publishing, and a failed publish releases the key
again. The cooldown store is passed in by the caller and is the only state
that survives between cycles.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from whale_sentiment_tracker.alerter.formatter import render_message
from whale_sentiment_tracker.detector.cooldown import CooldownStore
from whale_sentiment_tracker.detector.models import (
    Alert,
    AlertRule,
    EvaluationContext,
    RuleState,
    cooldown_key,
)
from whale_sentiment_tracker.ingestor.window import TIMEFRAME_ORDER, WindowState
from whale_sentiment_tracker.sentiment.models import MarketInputs, SWSISnapshot

logger = logging.getLogger(__name__)

DEFAULT_MAX_ALERTS_PER_CYCLE = 5

WindowKey = tuple[str, str]


@dataclass(frozen=True)
class _Candidate:
    rule: AlertRule
    symbol: str
    timeframe: str
    metrics: dict

    @property
    def key(self) -> str:
        return cooldown_key(self.rule.id, self.symbol, self.timeframe)

    @property
    def sort_key(self) -> tuple[int, str, int, str]:
        return (
            -self.rule.priority,
            self.symbol,
            TIMEFRAME_ORDER.get(self.timeframe, len(TIMEFRAME_ORDER)),
            self.rule.id,
        )


class AlertEvaluator:
    """Evaluates alert rules against window states and sentiment snapshots.

    Args:
        max_alerts_per_cycle: Upper bound on alerts selected per cycle.
            Candidates past the bound stay ARMED without consuming their
            cooldown, so they can fire on a later cycle.
    """

    def __init__(self, *, max_alerts_per_cycle: int = DEFAULT_MAX_ALERTS_PER_CYCLE) -> None:
        if max_alerts_per_cycle < 1:
            raise ValueError("max_alerts_per_cycle must be >= 1")
        self._max_alerts = max_alerts_per_cycle
        self._states: dict[str, RuleState] = {}
        self._cooldowns: dict[str, timedelta] = {}

    @property
    def max_alerts_per_cycle(self) -> int:
        return self._max_alerts

    def rule_state(self, rule_id: str, symbol: str, timeframe: str) -> RuleState:
        """State of a rule key as of the last evaluation, commit or release."""
        return self._states.get(cooldown_key(rule_id, symbol, timeframe), RuleState.IDLE)

    async def _collect(
        self,
        rules: Iterable[AlertRule],
        window_states: Mapping[WindowKey, WindowState],
        snapshots: Mapping[str, SWSISnapshot],
        markets: Mapping[str, MarketInputs],
        cooldowns: CooldownStore,
        now: datetime,
    ) -> list[_Candidate]:
        candidates = []
        for rule in rules:
            self._cooldowns[rule.id] = rule.effective_cooldown
            for (symbol, timeframe), window in window_states.items():
                if not rule.applies_to(symbol, timeframe):
                    continue
                key = cooldown_key(rule.id, symbol, timeframe)
                ctx = EvaluationContext(
                    window=window,
                    snapshot=snapshots.get(timeframe),
                    now=now,
                    markets=markets,
                )
                metrics = rule.condition.evaluate(ctx)
                cooling = await cooldowns.get(key, now=now) is not None
                if cooling:
                    self._states[key] = RuleState.COOLDOWN
                    if metrics is not None:
                        logger.debug("Suppressed %s: cooldown active", key)
                    continue
                if metrics is None:
                    self._states[key] = RuleState.IDLE
                    continue
                self._states[key] = RuleState.ARMED
                candidates.append(_Candidate(rule, symbol, timeframe, metrics))
        candidates.sort(key=lambda c: c.sort_key)
        return candidates

    async def select(
        self,
        rules: Iterable[AlertRule],
        window_states: Mapping[WindowKey, WindowState],
        snapshots: Mapping[str, SWSISnapshot],
        cooldowns: CooldownStore,
        now: datetime | None = None,
        *,
        markets: Mapping[str, MarketInputs] | None = None,
    ) -> list[Alert]:
        """Evaluate all rules for one cycle without starting any cooldown.

        Args:
            rules: Validated alert rules.
            window_states: Window state per (symbol, timeframe).
            snapshots: SWSI snapshot per timeframe; missing timeframes make
                sentiment conditions false.
            cooldowns: Cooldown store shared across cycles. Only read.
            now: Evaluation time. Defaults to the current time.
            markets: Market inputs per timeframe for indicator conditions.

        Returns:
            Alerts in priority order, at most max_alerts_per_cycle. Each must
            be passed to commit() before it is published.
        """
        now = now or datetime.now(UTC)
        candidates = await self._collect(
            rules, window_states, snapshots, markets or {}, cooldowns, now
        )

        if len(candidates) > self._max_alerts:
            logger.info(
                "Alert cap of %d reached; %d candidates deferred",
                self._max_alerts,
                len(candidates) - self._max_alerts,
            )
        return [self._build(c, now) for c in candidates[: self._max_alerts]]

    async def commit(self, alert: Alert, cooldowns: CooldownStore) -> bool:
        """Start the alert's cooldown. Returns False if another fire got there first."""
        key = alert.cooldown_key
        ttl = self._cooldowns.get(alert.rule_id, alert.tier.default_cooldown)
        acquired = await cooldowns.try_acquire(key, alert.created_at, ttl)
        if not acquired:
            self._states[key] = RuleState.COOLDOWN
            logger.debug("Suppressed %s: cooldown acquired elsewhere", key)
            return False
        self._states[key] = RuleState.FIRED
        logger.info("Alert %s fired for %s/%s", alert.rule_id, alert.symbol, alert.timeframe)
        return True

    async def release(self, alert: Alert, cooldowns: CooldownStore) -> None:
        """Undo commit() for an alert that could not be published."""
        await cooldowns.clear(alert.cooldown_key)
        self._states[alert.cooldown_key] = RuleState.ARMED

    async def evaluate(
        self,
        rules: Iterable[AlertRule],
        window_states: Mapping[WindowKey, WindowState],
        snapshots: Mapping[str, SWSISnapshot],
        cooldowns: CooldownStore,
        now: datetime | None = None,
        *,
        markets: Mapping[str, MarketInputs] | None = None,
    ) -> list[Alert]:
        """Select and commit in one step; returns the alerts that fired."""
        selected = await self.select(
            rules, window_states, snapshots, cooldowns, now, markets=markets
        )
        return [alert for alert in selected if await self.commit(alert, cooldowns)]

    def _build(self, candidate: _Candidate, now: datetime) -> Alert:
        rule = candidate.rule
        return Alert(
            rule_id=rule.id,
            rule_name=rule.name,
            tier=rule.tier,
            severity=rule.tier.severity,
            priority=rule.priority,
            symbol=candidate.symbol,
            timeframe=candidate.timeframe,
            message=render_message(
                rule.message,
                severity=rule.tier.severity,
                symbol=candidate.symbol,
                timeframe=candidate.timeframe,
                metrics=candidate.metrics,
            ),
            metrics=candidate.metrics,
            created_at=now,
        )
