# election_core/reference.py
"""Read-mostly reference data served from the per-app TTL cache.

Positions, candidates, roles and the current election change rarely but are
read on every ballot and every administrative request. They are cached as
frozen value objects, never as ORM instances, so cached data cannot leak
between sessions. Any committed write to one of the reference tables drops
the matching cache namespace.
"""

import itertools
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from flask import current_app, has_app_context
from sqlalchemy import event
from sqlalchemy.orm import Session

from election_core.database.models import Candidate, Position

logger = logging.getLogger(__name__)

REFERENCE_TABLES = frozenset({'elections', 'positions', 'candidates', 'roles'})
_DIRTY_KEY = 'reference_tables_dirty'


@dataclass(frozen=True)
class PositionRef:
    id: int
    title: str
    description: str
    display_order: int
    max_selections: int
    is_active: bool
    election_id: int


@dataclass(frozen=True)
class CandidateRef:
    id: int
    name: str
    position_id: int
    election_id: int
    eligibility_type: str
    eligibility_values: Tuple[str, ...]
    is_active: bool


def get_cache():
    return current_app.extensions['reference_cache']


def _load_positions(election_id):
    rows = (
        Position.query.filter_by(election_id=election_id)
        .order_by(Position.display_order, Position.id)
        .all()
    )
    return tuple(
        PositionRef(
            id=p.id,
            title=p.title,
            description=p.description or '',
            display_order=p.display_order,
            max_selections=p.max_selections,
            is_active=p.is_active,
            election_id=p.election_id,
        )
        for p in rows
    )


def _load_candidates(election_id):
    rows = Candidate.query.filter_by(election_id=election_id).order_by(Candidate.id).all()
    return tuple(
        CandidateRef(
            id=c.id,
            name=c.name,
            position_id=c.position_id,
            election_id=c.election_id,
            eligibility_type=(c.eligibility_type or 'all'),
            eligibility_values=tuple(str(v) for v in (c.eligibility_values or ())),
            is_active=c.is_active,
        )
        for c in rows
    )


def positions_for(election_id) -> Tuple[PositionRef, ...]:
    """All positions of an election (active or not) in display order."""
    return get_cache().get_or_load(('positions', election_id), lambda: _load_positions(election_id))


def candidates_for(election_id) -> Tuple[CandidateRef, ...]:
    """All candidates of an election (active or not)."""
    return get_cache().get_or_load(('candidates', election_id), lambda: _load_candidates(election_id))


def find_position(election_id, ref) -> Optional[PositionRef]:
    """Resolve a position by numeric id or by case-insensitive title."""
    positions = positions_for(election_id)
    if isinstance(ref, bool):
        return None
    if isinstance(ref, int) or (isinstance(ref, str) and ref.strip().isdigit()):
        wanted = int(ref)
        for position in positions:
            if position.id == wanted:
                return position
    if isinstance(ref, str):
        title = ref.strip().casefold()
        for position in positions:
            if position.title.casefold() == title:
                return position
    return None


def mark_reference_dirty(session, table):
    # Bulk UPDATE/DELETE statements bypass the flush, so callers flag them here
    session.info.setdefault(_DIRTY_KEY, set()).add(table)


@event.listens_for(Session, 'after_flush')
def _collect_dirty_tables(session, flush_context):
    for obj in itertools.chain(session.new, session.dirty, session.deleted):
        table = getattr(obj, '__tablename__', None)
        if table in REFERENCE_TABLES:
            mark_reference_dirty(session, table)


@event.listens_for(Session, 'after_commit')
def _invalidate_after_commit(session):
    tables = session.info.pop(_DIRTY_KEY, None)
    if not tables or not has_app_context():
        return
    cache = current_app.extensions.get('reference_cache')
    if cache is None:
        return
    for table in sorted(tables):
        cache.invalidate(table)
    logger.debug('Invalidated reference cache for %s', ', '.join(sorted(tables)))


@event.listens_for(Session, 'after_rollback')
def _discard_after_rollback(session):
    session.info.pop(_DIRTY_KEY, None)
