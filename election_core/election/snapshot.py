# election_core/election/snapshot.py

from dataclasses import dataclass
from typing import Optional

from election_core.database.models import Election
from election_core.election.phase import ElectionWindow
from election_core.reference import get_cache


@dataclass(frozen=True)
class ElectionSnapshot:
    """Immutable view of the current election, safe to share across threads."""
    election_id: int
    title: str
    window: ElectionWindow
    results_published: bool


def snapshot_of(election: Election) -> ElectionSnapshot:
    return ElectionSnapshot(
        election_id=election.id,
        title=election.title,
        window=ElectionWindow(
            start_date=election.start_date,
            start_time=election.start_time,
            end_time=election.end_time,
            end_date=election.end_date,
            timezone=election.timezone or 'UTC',
        ),
        results_published=bool(election.results_published),
    )


def _load_current():
    election = Election.query.filter_by(is_current=True).first()
    return snapshot_of(election) if election else None


def current_election_snapshot() -> Optional[ElectionSnapshot]:
    return get_cache().get_or_load(('elections', 'current'), _load_current)
