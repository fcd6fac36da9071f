"""
Leaderboard ranking and Top-N qualification.

Ranking is always computed on read from the full record list; nothing here
mutates its input or caches an ordering.
"""
import logging
import math
import time
from typing import Dict, List, Optional, Sequence

from .models import Difficulty, LeaderboardRecord, RunSummary

logger = logging.getLogger(__name__)


def _sort_key(record: LeaderboardRecord):
    elapsed = record.elapsed_sec if record.elapsed_sec is not None else math.inf
    return (-record.score, elapsed, record.timestamp)


def rank(records: Sequence[LeaderboardRecord], difficulty: Difficulty) -> List[LeaderboardRecord]:
    """
    Order one difficulty's records best-first.

    Keys: score descending, elapsed time ascending (missing elapsed ranks
    last), then timestamp ascending as the final tie-break.
    """
    return sorted((r for r in records if r.difficulty is difficulty), key=_sort_key)


def top_n(records: Sequence[LeaderboardRecord], difficulty: Difficulty, n: int) -> List[LeaderboardRecord]:
    """Return the best ``n`` records for a difficulty."""
    if n <= 0:
        return []
    return rank(records, difficulty)[:n]


def qualifies(records: Sequence[LeaderboardRecord], candidate: LeaderboardRecord, n: int) -> bool:
    """Check whether ``candidate`` would land inside the Top-N of its difficulty."""
    window = top_n(list(records) + [candidate], candidate.difficulty, n)
    return any(entry is candidate for entry in window)


def build_record(summary: RunSummary, identity: Dict[str, str], timestamp: str) -> LeaderboardRecord:
    """Turn a finished run plus captured identity into a leaderboard record."""
    return LeaderboardRecord(
        timestamp=timestamp,
        identity=dict(identity),
        difficulty=summary.difficulty,
        score=summary.correct_count,
        total=summary.total,
        elapsed_sec=summary.elapsed_sec
    )


class QualificationGate:
    """
    Two-phase leaderboard admission.

    ``provisional`` runs right after a run finishes and decides whether to
    offer identity capture. ``commit`` re-checks against the records as they
    are at save time and only appends when the run still makes the Top-N.
    Both phases reload from the store on every call.
    """

    def __init__(self, store, leaderboard_size: int):
        """
        Args:
            store: Object offering ``load_records()`` and ``append_record(record)``
            leaderboard_size: N for the Top-N window
        """
        self.store = store
        self.leaderboard_size = leaderboard_size

    def provisional(self, summary: Optional[RunSummary], timestamp: str) -> bool:
        """Decide whether a just-finished run is good enough to offer registration."""
        if summary is None or summary.by_timeout:
            return False
        candidate = build_record(summary, {}, timestamp)
        result = qualifies(self.store.load_records(), candidate, self.leaderboard_size)
        logger.info(
            f"Provisional qualification for {summary.difficulty.value} "
            f"{summary.correct_count}/{summary.total}: {result}",
            extra={
                'event_type': 'qualification_provisional',
                'difficulty': summary.difficulty.value,
                'score': summary.correct_count,
                'elapsed_sec': summary.elapsed_sec,
                'qualified': result,
                'timestamp': time.time()
            }
        )
        return result

    def commit(
        self,
        summary: Optional[RunSummary],
        identity: Dict[str, str],
        timestamp: str
    ) -> Optional[LeaderboardRecord]:
        """
        Revalidate and persist.

        Returns:
            The saved record, or None when the run no longer qualifies
        """
        if summary is None or summary.by_timeout:
            return None
        record = build_record(summary, identity, timestamp)
        if not qualifies(self.store.load_records(), record, self.leaderboard_size):
            logger.info(
                "Revalidation failed; record discarded",
                extra={
                    'event_type': 'qualification_revalidation_failed',
                    'difficulty': summary.difficulty.value,
                    'score': summary.correct_count,
                    'elapsed_sec': summary.elapsed_sec,
                    'timestamp': time.time()
                }
            )
            return None
        self.store.append_record(record)
        logger.info(
            f"Leaderboard record saved for {summary.difficulty.value}",
            extra={
                'event_type': 'qualification_committed',
                'difficulty': summary.difficulty.value,
                'score': summary.correct_count,
                'elapsed_sec': summary.elapsed_sec,
                'timestamp': time.time()
            }
        )
        return record
