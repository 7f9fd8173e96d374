"""PULSE: Staleness Ranker.

Pure ordering of companies by how long ago their data was last refreshed.
"""

from datetime import datetime
from typing import List, Mapping, Optional, Sequence, TypeVar

from app.sync.status_store import StatusSnapshot, StatusView

T = TypeVar("T")


def oldest_success(statuses: Optional[Mapping[str, StatusView]]) -> Optional[datetime]:
    """Oldest non-null last_success_at across a company's platforms.

    None means the company has never completed a sync on any platform.
    """
    if not statuses:
        return None
    stamps = [s.last_success_at for s in statuses.values() if s.last_success_at]
    return min(stamps) if stamps else None


def rank(
    companies: Sequence[T],
    snapshot: StatusSnapshot,
    key: str = "id",
) -> List[T]:
    """Order companies most-stale first.

    Never-synced companies come first; the rest ascend by oldest success.
    Ties keep input order (sorted() is stable).
    """

    def sort_key(company: T):
        oldest = oldest_success(snapshot.get(getattr(company, key)))
        if oldest is None:
            return (0, 0.0)
        return (1, oldest.timestamp())

    return sorted(companies, key=sort_key)
