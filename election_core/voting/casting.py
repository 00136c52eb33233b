# election_core/voting/casting.py
"""Exactly-once ballot casting.

The voter's ``has_voted`` flag is the serialisation point. A conditional
UPDATE flips it only while it is still false; the ballots, the election's
``voted_count`` increment and the receipt digest go into the same
transaction, so a submission either commits completely or leaves nothing
behind. The (voter, position) unique constraint on ``ballots`` guards
against duplicates even if the flag is bypassed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from election_core import db
from election_core.audit.audit_logger import get_audit_logger
from election_core.clock import ensure_utc, get_clock
from election_core.database.models import Ballot, Election, VoteReceipt, Voter
from election_core.election.phase import Phase, phase
from election_core.election.snapshot import current_election_snapshot
from election_core.errors import (
    AlreadyVotedError,
    ElectionNotActiveError,
    InvalidSelectionError,
    StorageConflictError,
)
from election_core.reference import candidates_for, find_position
from election_core.voting.eligibility import candidate_filter, lookup_voter
from election_core.voting.receipts import new_receipt_token, receipt_digest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Receipt:
    token: str
    election_id: int
    voted_at: datetime
    positions: int

    def to_dict(self):
        return {'receiptToken': self.token}


def voter_summary(voter: Voter) -> dict:
    return {
        'voterId': voter.voter_id,
        'name': voter.name,
        'class': voter.class_name,
        'year': voter.year,
        'house': voter.house,
        'gender': voter.gender,
        'hasVoted': voter.has_voted,
    }


def _already_voted(voter: Voter) -> AlreadyVotedError:
    return AlreadyVotedError(voter.voter_id, voter.name, ensure_utc(voter.voted_at))


def validate_voter(voter_id) -> dict:
    """Summary of a voter who may still vote in the current election."""
    snapshot = current_election_snapshot()
    if snapshot is None:
        raise ElectionNotActiveError('No current election', phase=Phase.CONFIG_ERROR.value)
    voter = lookup_voter(voter_id, snapshot.election_id)
    if voter.has_voted:
        raise _already_voted(voter)
    return voter_summary(voter)


def _resolve_ballot(election_id, voter, selections, abstentions) -> List[Tuple[int, Optional[int]]]:
    """Check every entry against reference data; nothing is written here."""
    if not selections and not abstentions:
        raise InvalidSelectionError('Ballot contains no positions')

    candidates = {c.id: c for c in candidates_for(election_id)}
    demographics = voter.demographics()
    seen = set()
    rows = []

    def position_for(ref):
        position = find_position(election_id, ref)
        if position is None or not position.is_active:
            raise InvalidSelectionError(f'Unknown or inactive position: {ref!r}', position=str(ref))
        if position.id in seen:
            raise InvalidSelectionError(f'Position submitted more than once: {position.title}',
                                        position=position.title)
        seen.add(position.id)
        return position

    for ref, candidate_id in selections:
        position = position_for(ref)
        candidate = candidates.get(candidate_id)
        if candidate is None or not candidate.is_active or candidate.position_id != position.id:
            raise InvalidSelectionError(
                f'Candidate {candidate_id!r} is not standing for {position.title}',
                position=position.title, candidateId=candidate_id,
            )
        if not candidate_filter(candidate).admits(demographics):
            raise InvalidSelectionError(
                f'Voter is not eligible to choose candidate {candidate_id!r}',
                position=position.title, candidateId=candidate_id,
            )
        rows.append((position.id, candidate.id))

    for ref in abstentions:
        position = position_for(ref)
        rows.append((position.id, None))

    return rows


def _attempt(voter_id, selections, abstentions, now) -> Receipt:
    snapshot = current_election_snapshot()
    current = phase(snapshot.window, now) if snapshot else Phase.CONFIG_ERROR
    if current is not Phase.ACTIVE:
        raise ElectionNotActiveError(phase=current.value)

    voter = lookup_voter(voter_id, snapshot.election_id)
    if voter.has_voted:
        raise _already_voted(voter)

    rows = _resolve_ballot(snapshot.election_id, voter, selections, abstentions)
    voter_pk, voter_code = voter.id, voter.voter_id
    token = new_receipt_token()

    try:
        flipped = db.session.execute(
            update(Voter)
            .where(Voter.id == voter_pk, Voter.has_voted.is_(False))
            .values(has_voted=True, voted_at=now)
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount != 1:
            raise StorageConflictError(voterId=voter_code)

        db.session.add_all([
            Ballot(
                voter_id=voter_pk,
                election_id=snapshot.election_id,
                position_id=position_id,
                candidate_id=candidate_id,
                is_abstention=candidate_id is None,
                cast_at=now,
            )
            for position_id, candidate_id in rows
        ])
        db.session.execute(
            update(Election)
            .where(Election.id == snapshot.election_id)
            .values(voted_count=Election.voted_count + 1)
            .execution_options(synchronize_session=False)
        )
        db.session.add(VoteReceipt(token_hash=receipt_digest(token), election_id=snapshot.election_id))
        db.session.commit()
    except StorageConflictError:
        db.session.rollback()
        raise
    except IntegrityError:
        db.session.rollback()
        logger.warning('Ballot rows for %s already exist', voter_code)
        raise StorageConflictError(voterId=voter_code)
    except Exception:
        db.session.rollback()
        raise

    # The vote is committed; the activity log is best effort
    get_audit_logger().log_activity(
        'ballot_cast',
        actor=voter_code,
        details={'electionId': snapshot.election_id, 'positions': len(rows)},
    )
    return Receipt(token=token, election_id=snapshot.election_id, voted_at=now, positions=len(rows))


def cast_ballot(voter_id, selections: Iterable = (), abstentions: Iterable = (), *, now=None) -> Receipt:
    """Record a voter's choices exactly once.

    ``selections`` holds ``(position, candidate_id)`` pairs and
    ``abstentions`` holds positions; a position is referenced by id or by
    title. A lost race on the voter flag is retried once, which then reports
    AlreadyVotedError carrying the winning submission's ``votedAt``.
    """
    now = ensure_utc(now or get_clock().now())
    selections = list(selections or ())
    abstentions = list(abstentions or ())
    try:
        return _attempt(voter_id, selections, abstentions, now)
    except StorageConflictError:
        logger.info('Concurrent submission detected for %s, retrying once', voter_id)
        return _attempt(voter_id, selections, abstentions, now)
