# election_core/voting/eligibility.py

from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from election_core.database.models import Voter
from election_core.election.snapshot import current_election_snapshot
from election_core.errors import ElectionNotActiveError, VoterNotFoundError
from election_core.reference import candidates_for, positions_for
from election_core.security.input_validator import InputValidator

ELIGIBILITY_ATTRIBUTES = ('class', 'year', 'house', 'gender')

validator = InputValidator()


@dataclass(frozen=True)
class EligibilityFilter:
    attribute: str = 'all'
    values: Sequence[str] = ()

    def admits(self, demographics: Mapping[str, Optional[str]]) -> bool:
        attribute = (self.attribute or 'all').strip().lower()
        wanted = {str(v).strip().casefold() for v in self.values if str(v).strip()}
        if attribute == 'all' or not wanted:
            return True
        if attribute not in ELIGIBILITY_ATTRIBUTES:
            # An unknown filter admits nobody rather than everybody
            return False
        value = demographics.get(attribute)
        return value is not None and str(value).strip().casefold() in wanted


def candidate_filter(candidate) -> EligibilityFilter:
    return EligibilityFilter(candidate.eligibility_type, candidate.eligibility_values)


def lookup_voter(voter_id, election_id) -> Voter:
    normalized = validator.normalize_voter_id(voter_id)
    if normalized is None:
        raise VoterNotFoundError(voterId=voter_id)
    voter = Voter.query.filter_by(voter_id=normalized).first()
    if voter is None or voter.election_id != election_id:
        raise VoterNotFoundError(voterId=normalized)
    return voter


def eligible_ballot(election_id, demographics):
    """Active positions in display order with the candidates ``demographics`` may choose."""
    by_position = {}
    for candidate in candidates_for(election_id):
        if candidate.is_active and candidate_filter(candidate).admits(demographics):
            by_position.setdefault(candidate.position_id, []).append(candidate)

    ballot = []
    for position in positions_for(election_id):
        choices = by_position.get(position.id)
        if not position.is_active or not choices:
            continue
        ballot.append({
            'id': position.id,
            'title': position.title,
            'description': position.description,
            'maxSelections': position.max_selections,
            'candidates': [{'id': c.id, 'name': c.name} for c in choices],
        })
    return ballot


def candidates_for_voter(voter_id):
    snapshot = current_election_snapshot()
    if snapshot is None:
        raise ElectionNotActiveError('No current election')
    voter = lookup_voter(voter_id, snapshot.election_id)
    return eligible_ballot(snapshot.election_id, voter.demographics())
