# election_core/voting/registry.py

import logging
import secrets

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from election_core import db
from election_core.database.models import Election, Voter
from election_core.errors import ElectionNotFoundError, VoterLockedError, VoterNotFoundError
from election_core.security.input_validator import InputValidator

logger = logging.getLogger(__name__)
validator = InputValidator()

MAX_ID_ATTEMPTS = 10


def generate_voter_id():
    return f'VOTER{secrets.randbelow(100000):05d}'


def _clean(value, max_length):
    if value is None:
        return None
    cleaned = validator.sanitize_string(str(value), max_length=max_length)
    return cleaned or None


def register_voter(name, election_id, class_name=None, year=None, house=None, gender=None) -> Voter:
    """Add a voter with a fresh VOTER##### id and bump the election's total."""
    clean_name = _clean(name, 120)
    if not clean_name:
        raise ValueError('Voter name is required')
    if db.session.get(Election, election_id) is None:
        raise ElectionNotFoundError(electionId=election_id)

    for attempt in range(MAX_ID_ATTEMPTS):
        voter = Voter(
            voter_id=generate_voter_id(),
            name=clean_name,
            class_name=_clean(class_name, 50),
            year=_clean(year, 20),
            house=_clean(house, 50),
            gender=_clean(gender, 20),
            election_id=election_id,
        )
        db.session.add(voter)
        try:
            db.session.flush()
        except IntegrityError:
            # Generated id already taken
            db.session.rollback()
            logger.debug('Voter id collision on attempt %d', attempt + 1)
            continue

        db.session.execute(
            update(Election)
            .where(Election.id == election_id)
            .values(total_voters=Election.total_voters + 1)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        logger.info('Registered voter %s for election %s', voter.voter_id, election_id)
        return voter

    raise RuntimeError('Could not allocate a unique voter id')


def remove_voter(voter_id) -> None:
    normalized = validator.normalize_voter_id(voter_id)
    voter = Voter.query.filter_by(voter_id=normalized).first() if normalized else None
    if voter is None:
        raise VoterNotFoundError(voterId=voter_id)
    if voter.has_voted:
        raise VoterLockedError(voterId=voter.voter_id)

    election_id = voter.election_id
    # Only delete while the flag is still false so a ballot cannot slip in between
    deleted = db.session.execute(
        Voter.__table__.delete()
        .where(Voter.__table__.c.id == voter.id, Voter.__table__.c.has_voted.is_(False))
    )
    if deleted.rowcount != 1:
        db.session.rollback()
        raise VoterLockedError(voterId=normalized)
    db.session.execute(
        update(Election)
        .where(Election.id == election_id, Election.total_voters > 0)
        .values(total_voters=Election.total_voters - 1)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    logger.info('Removed voter %s from election %s', normalized, election_id)
