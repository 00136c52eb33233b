# election_core/tabulation/analytics.py
"""Turnout and demographic analytics over recorded ballots.

Every function here is read-only and works in any phase. An election with no
positions, candidates or ballots yields zeros and empty lists, never an error.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import func

from election_core import db
from election_core.clock import ensure_utc
from election_core.database.models import Ballot, Voter
from election_core.election.snapshot import current_election_snapshot
from election_core.errors import PositionNotFoundError
from election_core.reference import candidates_for, find_position, positions_for
from election_core.tabulation.results import round_percent

logger = logging.getLogger(__name__)

UNKNOWN = 'Unknown'
# (category label, Voter column, response key)
DEMOGRAPHICS = (
    ('class', 'class_name', 'byClass'),
    ('house', 'house', 'byHouse'),
    ('year', 'year', 'byYear'),
    ('gender', 'gender', 'byGender'),
)


def empty_patterns():
    return {
        'totalVotes': 0,
        'totalEligibleVoters': 0,
        'turnoutPercentage': 0,
        'averageVotesPerPosition': 0,
        'byClass': [],
        'byHouse': [],
        'byYear': [],
        'byGender': [],
        'votingTimeline': [],
        'positions': [],
    }


def election_zone(snapshot):
    name = snapshot.window.timezone or 'UTC'
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning('Unknown election timezone %r, bucketing in UTC', name)
        return timezone.utc


def _bucket(value):
    if value is None or not str(value).strip():
        return UNKNOWN
    return str(value).strip()


def _category_order(key):
    return (key == UNKNOWN, key.casefold())


def _as_date(value, field):
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise ValueError(f'{field} must be a YYYY-MM-DD date')


def local_day_bounds(date_from, date_to, zone):
    """UTC bounds for an inclusive local-date range: [from 00:00, day after ``to`` 00:00)."""
    date_from = _as_date(date_from, 'from')
    date_to = _as_date(date_to, 'to')
    start = end = None
    if date_from is not None:
        start = datetime.combine(date_from, time.min, tzinfo=zone).astimezone(timezone.utc)
    if date_to is not None:
        end = datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=zone).astimezone(timezone.utc)
    return start, end


def hourly_timeline(voted_times, zone):
    counts = {}
    for voted_at in voted_times:
        if voted_at is None:
            continue
        hour = ensure_utc(voted_at).astimezone(zone).hour
        counts[hour] = counts.get(hour, 0) + 1
    if not counts:
        return []
    return [{'hour': hour, 'count': counts.get(hour, 0)} for hour in range(min(counts), max(counts) + 1)]


def _ballot_rows(election_id, position_id=None, start=None, end=None):
    query = (
        db.session.query(
            Ballot.position_id,
            Ballot.candidate_id,
            Ballot.is_abstention,
            Voter.class_name,
            Voter.house,
            Voter.year,
            Voter.gender,
            Voter.voted_at,
        )
        .join(Voter, Ballot.voter_id == Voter.id)
        .filter(Ballot.election_id == election_id)
    )
    if position_id is not None:
        query = query.filter(Ballot.position_id == position_id)
    if start is not None:
        query = query.filter(Ballot.cast_at >= start)
    if end is not None:
        query = query.filter(Ballot.cast_at < end)
    return query.order_by(Ballot.id).all()


def _crosstab(attribute, voter_values, ballot_values):
    voters_by = {}
    for value in voter_values:
        key = _bucket(value)
        voters_by[key] = voters_by.get(key, 0) + 1
    votes_by = {}
    for value in ballot_values:
        key = _bucket(value)
        votes_by[key] = votes_by.get(key, 0) + 1

    entries = []
    for key in sorted(set(voters_by) | set(votes_by), key=_category_order):
        in_category = voters_by.get(key, 0)
        count = votes_by.get(key, 0)
        entries.append({
            attribute: key,
            'voters': in_category,
            'count': count,
            'percentage': round_percent(count, in_category),
        })
    return entries


def _position_breakdown(election_id, positions, rows):
    candidates = candidates_for(election_id)
    breakdown = []
    for position in positions:
        position_rows = [r for r in rows if r.position_id == position.id]
        abstentions = sum(1 for r in position_rows if r.is_abstention)
        per_candidate = {}
        for r in position_rows:
            if not r.is_abstention:
                per_candidate[r.candidate_id] = per_candidate.get(r.candidate_id, 0) + 1
        breakdown.append({
            'position': position.title,
            'positionId': position.id,
            'totalVotes': len(position_rows),
            'abstentions': abstentions,
            'candidates': [
                {'id': c.id, 'name': c.name, 'voteCount': per_candidate.get(c.id, 0)}
                for c in candidates
                if c.position_id == position.id and (c.is_active or per_candidate.get(c.id))
            ],
        })
    return breakdown


def voting_patterns(position_id=None, date_from=None, date_to=None):
    snapshot = current_election_snapshot()
    if snapshot is None:
        return empty_patterns()
    election_id = snapshot.election_id
    zone = election_zone(snapshot)

    active_positions = [p for p in positions_for(election_id) if p.is_active]
    selected_positions = active_positions
    filter_id = None
    if position_id not in (None, ''):
        position = find_position(election_id, position_id)
        if position is None:
            raise PositionNotFoundError(position=str(position_id))
        filter_id = position.id
        selected_positions = [position]

    start, end = local_day_bounds(date_from, date_to, zone)
    rows = _ballot_rows(election_id, filter_id, start, end)
    if not rows:
        return empty_patterns()

    voters = (
        db.session.query(Voter.class_name, Voter.house, Voter.year, Voter.gender)
        .filter(Voter.election_id == election_id)
        .all()
    )
    total_votes = len(rows)
    total_eligible = len(voters)

    patterns = {
        'totalVotes': total_votes,
        'totalEligibleVoters': total_eligible,
        'turnoutPercentage': round_percent(total_votes, total_eligible),
        'averageVotesPerPosition': (
            round(total_votes / len(active_positions), 2) if active_positions else 0
        ),
        'votingTimeline': hourly_timeline((r.voted_at for r in rows), zone),
        'positions': _position_breakdown(election_id, selected_positions, rows),
    }
    for attribute, column, key in DEMOGRAPHICS:
        patterns[key] = _crosstab(
            attribute,
            (getattr(v, column) for v in voters),
            (getattr(r, column) for r in rows),
        )
    return patterns


def voting_timeline():
    """Ballots per local hour of day, keyed by when their voter voted."""
    snapshot = current_election_snapshot()
    if snapshot is None:
        return []
    rows = (
        db.session.query(Voter.voted_at)
        .join(Ballot, Ballot.voter_id == Voter.id)
        .filter(Ballot.election_id == snapshot.election_id, Voter.has_voted.is_(True))
        .all()
    )
    return hourly_timeline((r.voted_at for r in rows), election_zone(snapshot))


ABSTAINED = 'Abstained'


def detailed_vote_analysis(date_from=None, date_to=None):
    """Per-voter breakdown for the dva screen.

    One entry per voter who voted, oldest first, with demographics, ``votedAt``
    and ``votedFor`` mapping position title to candidate name (or Abstained).
    The optional dates are inclusive local days in the election's zone.
    """
    snapshot = current_election_snapshot()
    if snapshot is None:
        return []
    election_id = snapshot.election_id
    start, end = local_day_bounds(date_from, date_to, election_zone(snapshot))

    query = Voter.query.filter(Voter.election_id == election_id, Voter.has_voted.is_(True))
    if start is not None:
        query = query.filter(Voter.voted_at >= start)
    if end is not None:
        query = query.filter(Voter.voted_at < end)
    voters = query.order_by(Voter.voted_at, Voter.id).all()
    if not voters:
        return []

    positions = {p.id: p for p in positions_for(election_id)}
    names = {c.id: c.name for c in candidates_for(election_id)}
    ballots = (
        Ballot.query.filter(Ballot.voter_id.in_([v.id for v in voters]))
        .order_by(Ballot.id)
        .all()
    )
    by_voter = {}
    for ballot in ballots:
        by_voter.setdefault(ballot.voter_id, []).append(ballot)

    analysis = []
    for voter in voters:
        picks = sorted(
            by_voter.get(voter.id, []),
            key=lambda b: (getattr(positions.get(b.position_id), 'display_order', 0), b.position_id),
        )
        voted_for = {}
        for ballot in picks:
            position = positions.get(ballot.position_id)
            title = position.title if position else f'Position {ballot.position_id}'
            if ballot.is_abstention:
                voted_for[title] = ABSTAINED
            else:
                voted_for[title] = names.get(ballot.candidate_id, f'Candidate {ballot.candidate_id}')
        analysis.append({
            'voterId': voter.voter_id,
            'name': voter.name,
            'class': _bucket(voter.class_name),
            'house': _bucket(voter.house),
            'year': _bucket(voter.year),
            'gender': _bucket(voter.gender),
            'votedAt': ensure_utc(voter.voted_at).isoformat(),
            'votedFor': voted_for,
        })
    return analysis


def _activity(election_id, column):
    rows = (
        db.session.query(column, func.count(Voter.id))
        .filter(Voter.election_id == election_id, Voter.has_voted.is_(True))
        .group_by(column)
        .all()
    )
    merged = {}
    for value, count in rows:
        key = _bucket(value)
        merged[key] = merged.get(key, 0) + count
    labels = sorted(merged, key=_category_order)
    return {'labels': labels, 'data': [merged[label] for label in labels]}


def election_stats():
    snapshot = current_election_snapshot()
    if snapshot is None:
        return {
            'totalVoters': 0,
            'votedCount': 0,
            'remainingVoters': 0,
            'completionPercentage': 0,
            'recentVoters': [],
            'votingActivity': {
                'year': {'labels': [], 'data': []},
                'class': {'labels': [], 'data': []},
                'house': {'labels': [], 'data': []},
            },
            'message': 'No current election',
        }

    election_id = snapshot.election_id
    total = Voter.query.filter_by(election_id=election_id).count()
    voted = Voter.query.filter_by(election_id=election_id, has_voted=True).count()
    recent = (
        Voter.query.filter(
            Voter.election_id == election_id,
            Voter.has_voted.is_(True),
            Voter.voted_at.isnot(None),
        )
        .order_by(Voter.voted_at.desc(), Voter.id.desc())
        .limit(3)
        .all()
    )
    return {
        'totalVoters': total,
        'votedCount': voted,
        'remainingVoters': total - voted,
        'completionPercentage': round_percent(voted, total),
        'recentVoters': [
            {
                'voterId': v.voter_id,
                'name': v.name,
                'votedAt': ensure_utc(v.voted_at).isoformat(),
            }
            for v in recent
        ],
        'votingActivity': {
            'year': _activity(election_id, Voter.year),
            'class': _activity(election_id, Voter.class_name),
            'house': _activity(election_id, Voter.house),
        },
    }
