#!/usr/bin/env python3
"""
Transaction Matching Engine
Pairs source-side records (Excel daily sales) with target-side records (SAP documents)

For each non-POS source record:
1. keep targets dated within the date window (symmetric, default 50 days)
2. keep targets whose amount is within tolerance (default 1%, anchored to the target amount)
3. score names with the fuzzy matcher and keep the best candidate (first seen wins ties)
4. accept the candidate when its score clears the acceptance threshold, else record a discrepancy

The default "greedy" strategy lets every source record score against every target,
so one target can be the best match for several source records and the outcome
depends on input order. The opt-in "one_to_one" strategy skips targets already
claimed by an earlier source record.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Sequence, Set, Tuple

from backoffice.config import MatchingConfig, STRATEGY_GREEDY, STRATEGY_ONE_TO_ONE
from backoffice.models import Match, TransactionRecord, now_iso
from backoffice.services.fuzzy_matcher import EXACT_SCORE, score_normalized
from backoffice.services.name_normalizer import normalize_company_name

logger = logging.getLogger(__name__)


def within_date_window(first: Optional[date], second: Optional[date], window_days: int) -> bool:
    if first is None or second is None:
        return False
    return abs((first - second).days) <= window_days


def within_target_tolerance(amount: float, target_amount: float, tolerance: float) -> bool:
    """
    The gap fits inside the tolerance taken on the target amount (inclusive).

    Examples:
        >>> within_target_tolerance(750, 1000, 0.30)
        True
        >>> within_target_tolerance(690, 1000, 0.30)
        False
    """
    return abs(amount - target_amount) <= abs(target_amount) * tolerance


def within_amount_tolerance(source_amount: float, target_amount: float, tolerance: float) -> bool:
    """
    Matching-engine tolerance: the gap must fit inside the tolerance taken on the
    target amount, and must also stay strictly under the tolerance taken on the
    source amount, so a source exactly one tolerance away is never matched.

    Examples:
        >>> within_amount_tolerance(500, 503, 0.01)
        True
        >>> within_amount_tolerance(1000, 1005, 0.01)
        True
        >>> within_amount_tolerance(1000, 1010, 0.01)
        False
        >>> within_amount_tolerance(990, 1000, 0.01)
        False
    """
    difference = abs(source_amount - target_amount)
    return (
        within_target_tolerance(source_amount, target_amount, tolerance)
        and difference < abs(source_amount) * tolerance
    )


@dataclass
class MatchOutcome:
    """Result of one matching pass"""
    matches: List[Match] = field(default_factory=list)
    unmatched_source: List[TransactionRecord] = field(default_factory=list)
    verified_source: List[TransactionRecord] = field(default_factory=list)
    unmatched_target: List[TransactionRecord] = field(default_factory=list)
    claimed_targets: Set[str] = field(default_factory=set)


class TransactionMatcher:
    """Greedy date / amount / name matcher over flat transaction records"""

    def __init__(
        self,
        date_window_days: int = 50,
        amount_tolerance: float = 0.01,
        acceptance_threshold: float = 0.6,
        strategy: str = STRATEGY_GREEDY,
    ):
        if strategy not in (STRATEGY_GREEDY, STRATEGY_ONE_TO_ONE):
            raise ValueError(f"Unknown matching strategy: {strategy}")

        self.date_window_days = date_window_days
        self.amount_tolerance = amount_tolerance
        self.acceptance_threshold = acceptance_threshold
        self.strategy = strategy

    @classmethod
    def from_config(cls, config: MatchingConfig) -> 'TransactionMatcher':
        return cls(
            date_window_days=config.date_window_days,
            amount_tolerance=config.amount_tolerance,
            acceptance_threshold=config.acceptance_threshold,
            strategy=config.strategy,
        )

    def is_eligible(self, source: TransactionRecord, target: TransactionRecord) -> bool:
        return (
            within_date_window(source.date, target.date, self.date_window_days)
            and within_amount_tolerance(source.amount, target.amount, self.amount_tolerance)
        )

    def find_best_candidate(
        self,
        source: TransactionRecord,
        targets: Sequence[TransactionRecord],
        excluded: Optional[Set[str]] = None,
    ) -> Tuple[Optional[TransactionRecord], float]:
        """Return the best-scoring eligible target and its score, or (None, 0.0)"""
        source_name = normalize_company_name(source.client)
        best_match = None
        best_score = 0.0

        for target in targets:
            if excluded and target.record_id in excluded:
                continue
            if not self.is_eligible(source, target):
                continue

            score = score_normalized(source_name, normalize_company_name(target.client))
            if score > best_score:
                best_score = score
                best_match = target
                if score >= EXACT_SCORE:
                    break

        return best_match, best_score

    def match(
        self,
        source_records: Sequence[TransactionRecord],
        target_records: Sequence[TransactionRecord],
    ) -> MatchOutcome:
        """Partition source records into matches and unmatched records

        POS source records are skipped; they are reconciled as daily totals.
        Lines already verified by an earlier resolution are set aside unmatched.
        """
        outcome = MatchOutcome()

        for source in source_records:
            if source.is_pos:
                continue
            if source.verified:
                outcome.verified_source.append(source)
                continue

            excluded = outcome.claimed_targets if self.strategy == STRATEGY_ONE_TO_ONE else None
            best_match, best_score = self.find_best_candidate(source, target_records, excluded)

            if best_match is not None and best_score > self.acceptance_threshold:
                outcome.matches.append(build_match(source, best_match, best_score))
                outcome.claimed_targets.add(best_match.record_id)
            else:
                outcome.unmatched_source.append(source)

        outcome.unmatched_target = [
            target for target in target_records
            if target.record_id not in outcome.claimed_targets
        ]

        logger.info(
            f"[RECONCILIATION] Matching pass ({self.strategy}): "
            f"{len(outcome.matches)} matched, {len(outcome.unmatched_source)} unmatched source, "
            f"{len(outcome.unmatched_target)} unmatched target, "
            f"{len(outcome.verified_source)} already verified"
        )
        return outcome


def build_match(source: TransactionRecord, target: TransactionRecord, score: float) -> Match:
    return Match(
        date=source.date.isoformat() if source.date else None,
        source_client_name=source.client,
        target_customer_name=target.client,
        source_amount=source.amount,
        target_amount=target.amount,
        category=source.category,
        confidence_score=score,
        remarks=source.remarks,
        is_resolved=False,
        source_record_id=source.record_id,
        target_ref=target.record_id,
        doc_num=target.doc_num,
        doc_date=target.date.isoformat() if target.date else None,
        matched_at=now_iso(),
    )
