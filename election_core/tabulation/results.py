# election_core/tabulation/results.py

from sqlalchemy import func

from election_core import db
from election_core.database.models import Ballot, Voter
from election_core.election.snapshot import current_election_snapshot
from election_core.errors import PositionNotFoundError
from election_core.reference import candidates_for, find_position, positions_for


def round_percent(part, whole):
    """part/whole as a whole percentage, halves rounded up; 0 when whole is 0."""
    if not whole:
        return 0
    return (200 * part + whole) // (2 * whole)


def _tally(election_id, position_id):
    rows = (
        db.session.query(Ballot.candidate_id, Ballot.is_abstention, func.count(Ballot.id))
        .filter(Ballot.election_id == election_id, Ballot.position_id == position_id)
        .group_by(Ballot.candidate_id, Ballot.is_abstention)
        .all()
    )
    by_candidate = {}
    abstentions = 0
    for candidate_id, is_abstention, count in rows:
        if is_abstention:
            abstentions += count
        else:
            by_candidate[candidate_id] = by_candidate.get(candidate_id, 0) + count
    return by_candidate, abstentions


def _position_block(election_id, position):
    by_candidate, abstentions = _tally(election_id, position.id)
    total = sum(by_candidate.values()) + abstentions

    candidates = []
    for candidate in candidates_for(election_id):
        if candidate.position_id != position.id:
            continue
        votes = by_candidate.get(candidate.id, 0)
        # Withdrawn candidates stay visible once they hold ballots
        if not candidate.is_active and not votes:
            continue
        candidates.append({
            'id': candidate.id,
            'name': candidate.name,
            'voteCount': votes,
            'percentage': round_percent(votes, total),
        })

    return {
        'position': position.title,
        'positionId': position.id,
        'totalVotes': total,
        'candidates': candidates,
        'abstentions': {'count': abstentions, 'percentage': round_percent(abstentions, total)},
    }


def position_results(position_ref, election_id=None):
    if election_id is None:
        snapshot = current_election_snapshot()
        if snapshot is None:
            raise PositionNotFoundError(position=str(position_ref))
        election_id = snapshot.election_id
    position = find_position(election_id, position_ref)
    if position is None:
        raise PositionNotFoundError(position=str(position_ref))
    return _position_block(election_id, position)


def voter_stats(election_id):
    total = Voter.query.filter_by(election_id=election_id).count()
    voted = Voter.query.filter_by(election_id=election_id, has_voted=True).count()
    return {
        'total': total,
        'voted': voted,
        'notVoted': total - voted,
        'percentage': round_percent(voted, total),
    }


def election_results():
    """Results for every active position of the current election."""
    snapshot = current_election_snapshot()
    if snapshot is None:
        return {
            'election': None,
            'positions': [],
            'voterStats': {'total': 0, 'voted': 0, 'notVoted': 0, 'percentage': 0},
        }
    return {
        'election': {
            'id': snapshot.election_id,
            'title': snapshot.title,
            'resultsPublished': snapshot.results_published,
        },
        'positions': [
            _position_block(snapshot.election_id, position)
            for position in positions_for(snapshot.election_id)
            if position.is_active
        ],
        'voterStats': voter_stats(snapshot.election_id),
    }
