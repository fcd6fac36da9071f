"""
CSV/JSON export of leaderboard records and small display helpers.
"""
import json
from typing import List, Sequence

from .models import LeaderboardRecord


def format_mmss(total_seconds) -> str:
    """Format seconds as ``MM:SS``; negative values show as ``00:00``."""
    seconds = max(0, int(total_seconds or 0))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def _quote(cell) -> str:
    text = "" if cell is None else str(cell)
    return '"' + text.replace('"', '""') + '"'


def records_to_csv(records: Sequence[LeaderboardRecord], identity_fields: Sequence[str]) -> str:
    """Render records as CSV with every cell quoted."""
    header = ["timestamp", *identity_fields, "difficulty", "score", "total", "elapsed_sec", "cleared_difficulty"]
    lines: List[str] = [",".join(header)]

    for record in records:
        cleared = record.cleared_difficulty
        row = [
            record.timestamp,
            *(record.identity.get(name, "") for name in identity_fields),
            record.difficulty.value,
            record.score,
            record.total,
            record.elapsed_sec,
            cleared.value if cleared else "",
        ]
        lines.append(",".join(_quote(cell) for cell in row))

    return "\n".join(lines)


def records_to_json(records: Sequence[LeaderboardRecord]) -> str:
    return json.dumps([record.to_dict() for record in records], indent=2, ensure_ascii=False)
