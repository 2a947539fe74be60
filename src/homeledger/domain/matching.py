"""Fuzzy matching of incoming records against stored transactions.

The matcher only proposes: it returns the best stored transaction for a
candidate, a confidence score and the field-level differences. Committing
anything is the executor's job.
"""

from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Callable, Iterable, Optional, Sequence
import logging
import re

from homeledger.config import MatchingSettings
from homeledger.domain.entities import Candidate, Transaction
from homeledger.domain.errors import ThresholdUnmet

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


def normalize_text(value: Optional[str]) -> str:
    """Lower-case, strip punctuation and collapse whitespace."""
    if not value:
        return ""
    return " ".join(_NON_ALNUM.sub("", value.lower()).split())


def text_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Similarity of two free-text strings in [0, 1].

    Identical normalized strings score 1. When one contains the other the
    score is the length ratio. Otherwise the better of significant word
    overlap and ``SequenceMatcher`` ratio is used.
    """
    norm_a = normalize_text(a)
    norm_b = normalize_text(b)
    if not norm_a or not norm_b:
        return 0.0
    if norm_a == norm_b:
        return 1.0

    if norm_a in norm_b or norm_b in norm_a:
        return min(len(norm_a), len(norm_b)) / max(len(norm_a), len(norm_b))

    words_a = {w for w in norm_a.split() if len(w) > 2}
    words_b = {w for w in norm_b.split() if len(w) > 2}
    overlap = 0.0
    if words_a and words_b:
        overlap = len(words_a & words_b) / max(len(words_a), len(words_b))

    return max(overlap, SequenceMatcher(None, norm_a, norm_b).ratio())


@dataclass(frozen=True)
class FieldChange:
    """A single field that would change if a match were updated."""

    field: str
    before: Optional[str]
    after: Optional[str]


@dataclass(frozen=True)
class MatchResult:
    """Outcome of matching one candidate against a pool."""

    candidate: Candidate
    matched: Optional[Transaction] = None
    confidence: float = 0.0
    changes: tuple[FieldChange, ...] = ()
    threshold_unmet: Optional[ThresholdUnmet] = None
    exact_key: bool = False

    @property
    def is_match(self) -> bool:
        return self.matched is not None


def compute_changes(candidate: Candidate, stored: Transaction) -> tuple[FieldChange, ...]:
    """Diff the mutable fields the candidate actually supplies."""
    changes: list[FieldChange] = []

    if candidate.description and candidate.description != stored.description:
        changes.append(FieldChange("description", stored.description, candidate.description))
    if candidate.merchant and candidate.merchant != (stored.merchant or ""):
        changes.append(FieldChange("merchant", stored.merchant, candidate.merchant))
    if candidate.category_id is not None and candidate.category_id != stored.category_id:
        changes.append(
            FieldChange(
                "category",
                None if stored.category_id is None else str(stored.category_id),
                str(candidate.category_id),
            )
        )
    if candidate.notes and candidate.notes != (stored.notes or ""):
        changes.append(FieldChange("notes", stored.notes, candidate.notes))

    return tuple(changes)


class TransactionMatcher:
    """Weighted fuzzy matcher with exact external-id and stored-id fast paths."""

    def __init__(self, settings: Optional[MatchingSettings] = None):
        self.settings = settings or MatchingSettings()

    def candidate_pool(
        self, candidate: Candidate, pool: Iterable[Transaction]
    ) -> list[Transaction]:
        """Restrict a pool to the candidate's account and date window."""
        window = self.settings.date_window_days
        return [
            txn
            for txn in pool
            if (candidate.account_id is None or txn.account_id == candidate.account_id)
            and abs((txn.date - candidate.date).days) <= window
        ]

    def score(self, candidate: Candidate, stored: Transaction) -> float:
        """Score one stored transaction; 0 when amounts differ.

        Text similarity under ``min_text_score`` contributes nothing, so with
        a threshold above the amount and date weights an equal amount on a
        nearby date is never enough on its own.
        """
        if stored.amount != candidate.amount:
            return 0.0

        settings = self.settings
        window = settings.date_window_days
        delta = abs((stored.date - candidate.date).days)
        if delta > window:
            return 0.0
        date_score = 1.0 - delta / (window + 1)

        text_score = max(
            text_similarity(candidate.description, stored.description),
            text_similarity(candidate.merchant, stored.merchant),
            text_similarity(candidate.description, stored.merchant),
            text_similarity(candidate.merchant, stored.description),
        )
        if text_score < settings.min_text_score:
            text_score = 0.0

        total = (
            settings.amount_weight
            + settings.date_weight * date_score
            + settings.text_weight * text_score
        )
        return min(1.0, max(0.0, total))

    def match(
        self,
        candidate: Candidate,
        pool: Sequence[Transaction],
        exclude_ids: Optional[set[int]] = None,
    ) -> MatchResult:
        """Find the best stored match for a candidate.

        Args:
            candidate: Incoming record
            pool: Stored transactions to search; filtered here to the
                candidate's account and the configured date window
            exclude_ids: Stored ids that may not be matched (already claimed)

        Returns:
            MatchResult; ``matched`` is None when nothing clears the threshold
        """
        exclude_ids = exclude_ids or set()

        # External id first, then the stored id of a re-imported export
        if candidate.external_id:
            exact = self._exact_match(
                candidate, pool, exclude_ids, lambda txn: txn.external_id == candidate.external_id
            )
            if exact is not None:
                return exact
        if candidate.transaction_id is not None:
            exact = self._exact_match(
                candidate, pool, exclude_ids, lambda txn: txn.id == candidate.transaction_id
            )
            if exact is not None:
                return exact

        best: Optional[Transaction] = None
        best_key: Optional[tuple[float, int, int]] = None
        best_score = 0.0

        for txn in self.candidate_pool(candidate, pool):
            if txn.id in exclude_ids:
                continue
            score = self.score(candidate, txn)
            if score <= 0.0:
                continue
            # Highest score, then nearest date, then lowest id
            key = (-score, abs((txn.date - candidate.date).days), txn.id)
            if best_key is None or key < best_key:
                best, best_key, best_score = txn, key, score

        threshold = self.settings.acceptance_threshold
        if best is None or best_score < threshold:
            return MatchResult(
                candidate=candidate,
                threshold_unmet=ThresholdUnmet(best_score=round(best_score, 2), threshold=threshold),
            )

        return MatchResult(
            candidate=candidate,
            matched=best,
            confidence=round(best_score, 2),
            changes=compute_changes(candidate, best),
        )

    @staticmethod
    def _exact_match(
        candidate: Candidate,
        pool: Sequence[Transaction],
        exclude_ids: set[int],
        same_key: Callable[[Transaction], bool],
    ) -> Optional[MatchResult]:
        """Match on an identifying key; the amount must still agree."""
        for txn in pool:
            if (
                same_key(txn)
                and txn.id not in exclude_ids
                and (candidate.account_id is None or txn.account_id == candidate.account_id)
            ):
                if txn.amount != candidate.amount:
                    logger.debug(
                        f"Transaction {txn.id} has the row's key but a different amount; "
                        "falling back to scoring"
                    )
                    return None
                return MatchResult(
                    candidate=candidate,
                    matched=txn,
                    confidence=1.0,
                    changes=compute_changes(candidate, txn),
                    exact_key=True,
                )
        return None

