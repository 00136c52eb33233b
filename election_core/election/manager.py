# election_core/election/manager.py

import logging

from sqlalchemy import update

from election_core import db
from election_core.database.models import Election
from election_core.election.phase import ElectionWindow, resolve_window
from election_core.errors import ElectionConfigError, ElectionNotFoundError, InvalidElectionWindowError
from election_core.reference import mark_reference_dirty
from election_core.security.input_validator import InputValidator

logger = logging.getLogger(__name__)
validator = InputValidator()


def election_summary(election: Election) -> dict:
    return {
        'id': election.id,
        'title': election.title,
        'startDate': election.start_date,
        'endDate': election.end_date or election.start_date,
        'startTime': election.start_time,
        'endTime': election.end_time,
        'timezone': election.timezone,
        'isCurrent': election.is_current,
        'resultsPublished': election.results_published,
        'totalVoters': election.total_voters,
        'votedCount': election.voted_count,
    }


def create_election(title, start_date, start_time, end_time, end_date=None, timezone='UTC',
                    make_current=False) -> Election:
    """Create an election after checking that its window resolves.

    Raises InvalidElectionWindowError (a 400 ElectionConfigError) for an
    unusable window and ValueError for an empty title.
    """
    clean_title = validator.sanitize_string(title or '', max_length=200)
    if not clean_title:
        raise ValueError('Election title is required')

    window = ElectionWindow(
        start_date=start_date,
        start_time=start_time,
        end_time=end_time,
        end_date=end_date or None,
        timezone=timezone or 'UTC',
    )
    try:
        resolve_window(window)
    except ElectionConfigError as e:
        raise InvalidElectionWindowError(e.message) from e

    election = Election(
        title=clean_title,
        start_date=window.start_date,
        end_date=window.end_date,
        start_time=window.start_time,
        end_time=window.end_time,
        timezone=window.timezone,
        is_current=False,
    )
    db.session.add(election)
    db.session.commit()
    logger.info('Created election %s (%s)', election.id, election.title)

    if make_current:
        set_current_election(election.id)
    return election


def set_current_election(election_id) -> Election:
    """Make ``election_id`` the only current election, in one transaction."""
    election = db.session.get(Election, election_id)
    if election is None:
        raise ElectionNotFoundError(electionId=election_id)

    try:
        # Clear first: the partial unique index allows a single current row
        db.session.execute(
            update(Election)
            .where(Election.is_current.is_(True), Election.id != election.id)
            .values(is_current=False)
            .execution_options(synchronize_session=False)
        )
        db.session.execute(
            update(Election)
            .where(Election.id == election.id)
            .values(is_current=True)
            .execution_options(synchronize_session=False)
        )
        mark_reference_dirty(db.session, 'elections')
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    db.session.refresh(election)
    logger.info('Election %s is now current', election.id)
    return election


def set_results_published(published) -> Election:
    """Publish or withdraw results for the current election."""
    if not isinstance(published, bool):
        raise ValueError('published must be true or false')
    election = Election.query.filter_by(is_current=True).first()
    if election is None:
        raise ElectionNotFoundError('No current election')

    election.results_published = published
    mark_reference_dirty(db.session, 'elections')
    db.session.commit()
    logger.info('Results for election %s %s', election.id, 'published' if published else 'withdrawn')
    return election
