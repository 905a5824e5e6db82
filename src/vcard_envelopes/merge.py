from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from .models import CardEnvelope, Precedence

logger = logging.getLogger(__name__)

PRECEDENCE_ORDER = [
    Precedence.USER_INPUT.value,
    Precedence.IMPORTED.value,
    Precedence.INFERRED.value,
    Precedence.DERIVED.value,
]

# Fields that describe the occurrence rather than the fact; never copied between cards.
_NON_MERGEABLE = {"labels", "is_primary"}


@dataclass
class MergeSignals:
    confidence_delta: float
    precedence_delta: int
    recency_delta: float

    @property
    def is_conflict(self) -> bool:
        return self.confidence_delta == 0 and self.precedence_delta == 0 and self.recency_delta == 0


@dataclass
class MergeResult:
    winner: CardEnvelope
    losers: List[CardEnvelope] = field(default_factory=list)
    conflicts: List[List[CardEnvelope]] = field(default_factory=list)


def _precedence_rank(envelope: CardEnvelope) -> int:
    precedence = envelope.provenance.precedence
    if precedence in PRECEDENCE_ORDER:
        return PRECEDENCE_ORDER.index(precedence)
    return len(PRECEDENCE_ORDER)


def _timestamp(envelope: CardEnvelope) -> float:
    raw = envelope.provenance.imported_at
    if not raw:
        return 0.0
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable imported_at %s on %s", raw, envelope.card_id)
        return 0.0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def _confidence(envelope: CardEnvelope) -> float:
    try:
        return float(envelope.provenance.confidence)
    except (TypeError, ValueError):
        return 0.5


class MergeEvaluator:
    def compute(self, a: CardEnvelope, b: CardEnvelope) -> MergeSignals:
        """Positive deltas favour ``a``, negative favour ``b``."""
        return MergeSignals(
            confidence_delta=_confidence(a) - _confidence(b),
            precedence_delta=_precedence_rank(b) - _precedence_rank(a),
            recency_delta=_timestamp(a) - _timestamp(b),
        )

    def choose_winner(self, a: CardEnvelope, b: CardEnvelope) -> Optional[CardEnvelope]:
        signals = self.compute(a, b)
        if signals.is_conflict:
            return None
        for delta in (signals.confidence_delta, signals.precedence_delta, signals.recency_delta):
            if delta:
                return a if delta > 0 else b
        return None

    def merge_same_type(self, cards: Sequence[CardEnvelope]) -> MergeResult:
        if not cards:
            raise ValueError("No cards to merge")
        card_types = {card.card_type for card in cards}
        if len(card_types) > 1:
            raise ValueError(f"Cannot merge mixed card types: {sorted(t.value for t in card_types)}")

        winner = cards[0]
        losers: List[CardEnvelope] = []
        conflicts: List[List[CardEnvelope]] = []
        for card in cards[1:]:
            chosen = self.choose_winner(winner, card)
            if chosen is None:
                conflicts.append([winner, card])
            elif chosen is winner:
                losers.append(card)
            else:
                losers.append(winner)
                winner = chosen

        winner = replace(winner, data=_fill_missing(winner.data, [loser.data for loser in losers]))
        if conflicts:
            logger.info(
                "Merge of %s kept %s with %d conflict(s)",
                winner.card_type.value,
                winner.card_id,
                len(conflicts),
            )
        return MergeResult(winner=winner, losers=losers, conflicts=conflicts)


def _fill_missing(data, donors):
    updates = {}
    for item in fields(data):
        if item.name in _NON_MERGEABLE or getattr(data, item.name) is not None:
            continue
        for donor in donors:
            value = getattr(donor, item.name, None)
            if value is not None:
                updates[item.name] = value
                break
    return replace(data, **updates) if updates else data


def choose_winner(a: CardEnvelope, b: CardEnvelope) -> Optional[CardEnvelope]:
    return MergeEvaluator().choose_winner(a, b)


def merge_same_type(cards: Sequence[CardEnvelope]) -> MergeResult:
    return MergeEvaluator().merge_same_type(cards)
