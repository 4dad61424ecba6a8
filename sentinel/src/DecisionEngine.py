"""DecisionEngine: Score a PriceSnapshot and decide whether it is actionable.

Scoring (base 50, additive, applied in this fixed order):
    - +20 if max(ETH, BTC) source deviation > 1.0%
    - +20 if the aggregated price moved > 2.0% since the previous snapshot
    - +10 if the largest absolute 24h change > 5.0% (switchable)
    - first run (no previous snapshot): score = max(score, threshold)
    - clamp to [0, 100]

The engine instance owns the previous snapshot. Every decide() call replaces
it with the current snapshot, whether or not the result gets persisted;
reset_state() clears it so the next call is a first run.

.. code-block:: python

    >>> engine = DecisionEngine()
    >>> result = engine.decide(snapshot, threshold=75)
    >>> result.is_first_run, result.threshold_triggered
    (True, True)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .PriceAggregator import PriceSnapshot

logger = logging.getLogger(__name__)

NORMAL_CONDITIONS = "Normal market conditions"
INITIAL_STATE_UPDATE = "Initial state update"

MIN_SCORE = 0
MAX_SCORE = 100


@dataclass(frozen=True)
class DecisionResult:
    """Computed market signal for one cycle.

    :ivar score: Score in [0, 100].
    :ivar threshold: Threshold the score was compared against.
    :ivar threshold_triggered: True if score >= threshold.
    :ivar reasons: Contributing factors, in scoring order.
    :ivar eth_price: Aggregated ETH price.
    :ivar btc_price: Aggregated BTC price.
    :ivar eth_deviation_pct: ETH source deviation.
    :ivar btc_deviation_pct: BTC source deviation.
    :ivar price_change_pct: Max change vs previous snapshot (0 on first run).
    :ivar sources: Sources that contributed to the snapshot.
    :ivar is_first_run: True if there was no previous snapshot.
    """

    score: int
    threshold: int
    threshold_triggered: bool
    reasons: tuple[str, ...]
    eth_price: float
    btc_price: float
    eth_deviation_pct: float
    btc_deviation_pct: float
    price_change_pct: float
    sources: tuple[str, ...]
    is_first_run: bool

    @property
    def reason(self) -> str:
        """Display string: factors joined by "; ", or the normal-conditions text."""
        return "; ".join(self.reasons) if self.reasons else NORMAL_CONDITIONS

    @property
    def should_persist(self) -> bool:
        """Persist when the threshold is met or to bootstrap the first state."""
        return self.threshold_triggered or self.is_first_run


class DecisionEngine:
    """Scores snapshots against a threshold, carrying the previous snapshot.

    One instance tracks one monitored market; use separate instances for
    independent markets.

    :ivar base_score: Starting score before factors.
    :ivar deviation_threshold_pct: Source deviation above which +20 applies.
    :ivar movement_threshold_pct: Change since last snapshot above which +20 applies.
    :ivar volatility_threshold_pct: 24h change above which +10 applies.
    :ivar volatility_enabled: Whether the 24h volatility factor is scored.
    """

    DEVIATION_POINTS = 20
    MOVEMENT_POINTS = 20
    VOLATILITY_POINTS = 10

    def __init__(
        self,
        base_score: int = 50,
        deviation_threshold_pct: float = 1.0,
        movement_threshold_pct: float = 2.0,
        volatility_threshold_pct: float = 5.0,
        volatility_enabled: bool = True,
    ) -> None:
        """Initialize the engine with no previous snapshot.

        :param base_score: Starting score (default: 50).
        :param deviation_threshold_pct: Deviation trigger in percent (default: 1.0).
        :param movement_threshold_pct: Movement trigger in percent (default: 2.0).
        :param volatility_threshold_pct: 24h volatility trigger in percent (default: 5.0).
        :param volatility_enabled: Score the 24h volatility factor (default: True).
        :raises ValueError: If base_score is outside [0, 100].
        """
        if not MIN_SCORE <= base_score <= MAX_SCORE:
            raise ValueError("base_score must be between 0 and 100")
        self.base_score = base_score
        self.deviation_threshold_pct = deviation_threshold_pct
        self.movement_threshold_pct = movement_threshold_pct
        self.volatility_threshold_pct = volatility_threshold_pct
        self.volatility_enabled = volatility_enabled
        self._prior_snapshot: PriceSnapshot | None = None

    @property
    def prior_snapshot(self) -> PriceSnapshot | None:
        """The snapshot the next decide() call will compare against."""
        return self._prior_snapshot

    def reset_state(self) -> None:
        """Forget the previous snapshot; the next decide() is a first run."""
        self._prior_snapshot = None
        logger.debug("Decision state reset")

    def decide(self, snapshot: PriceSnapshot, threshold: int = 75) -> DecisionResult:
        """Score a snapshot and compare it to the threshold.

        :param snapshot: Current cycle's aggregated snapshot.
        :param threshold: Score cutoff in [0, 100] (default: 75).
        :returns: DecisionResult for this cycle.
        :raises ValueError: If threshold is outside [0, 100].
        """
        if not MIN_SCORE <= threshold <= MAX_SCORE:
            raise ValueError("threshold must be between 0 and 100")

        prior = self._prior_snapshot
        is_first_run = prior is None
        score = self.base_score
        reasons: list[str] = []

        # Factor 1: disagreement between sources
        max_deviation = max(snapshot.eth_deviation_pct, snapshot.btc_deviation_pct)
        if max_deviation > self.deviation_threshold_pct:
            score += self.DEVIATION_POINTS
            reasons.append(
                f"High source deviation (ETH: {snapshot.eth_deviation_pct:.2f}%, "
                f"BTC: {snapshot.btc_deviation_pct:.2f}%)"
            )

        # Factor 2: movement since the previous snapshot
        price_change = 0.0
        if prior is not None:
            price_change = max(
                self._change_pct(snapshot.eth_price, prior.eth_price),
                self._change_pct(snapshot.btc_price, prior.btc_price),
            )
            if price_change > self.movement_threshold_pct:
                score += self.MOVEMENT_POINTS
                reasons.append(
                    f"Significant price movement ({price_change:.2f}% since last update)"
                )

        # Factor 3: 24h volatility
        if (
            self.volatility_enabled
            and snapshot.max_change_24h_pct > self.volatility_threshold_pct
        ):
            score += self.VOLATILITY_POINTS
            reasons.append(f"High 24h volatility ({snapshot.max_change_24h_pct:.2f}%)")

        # First run always triggers so persisted state gets bootstrapped
        if is_first_run:
            score = max(score, threshold)
            reasons.append(INITIAL_STATE_UPDATE)

        score = min(max(score, MIN_SCORE), MAX_SCORE)

        result = DecisionResult(
            score=score,
            threshold=threshold,
            threshold_triggered=score >= threshold,
            reasons=tuple(reasons),
            eth_price=snapshot.eth_price,
            btc_price=snapshot.btc_price,
            eth_deviation_pct=snapshot.eth_deviation_pct,
            btc_deviation_pct=snapshot.btc_deviation_pct,
            price_change_pct=price_change,
            sources=snapshot.sources_used,
            is_first_run=is_first_run,
        )

        # Tracks what was last observed, not what was last persisted
        self._prior_snapshot = snapshot

        logger.debug(
            f"Decision: score={result.score}/{threshold}, "
            f"triggered={result.threshold_triggered}, reason={result.reason}"
        )
        return result

    @staticmethod
    def _change_pct(current: float, previous: float) -> float:
        """Absolute percent change from previous to current (0 if either is missing)."""
        if previous <= 0 or current <= 0:
            return 0.0
        return abs(current - previous) / previous * 100
