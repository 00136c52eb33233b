# tests/conftest.py
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from election_core import create_app, db
from election_core.authentication.token_manager import TokenManager
from election_core.config import TestingConfig
from election_core.database.models import Candidate, Election, Position, Voter

ELECTION_DAY = "2025-03-14"
OPENING = datetime(2025, 3, 14, 8, 0, tzinfo=timezone.utc)
MID_MORNING = datetime(2025, 3, 14, 10, 15, tzinfo=timezone.utc)


class FixedClock:
    """Clock whose time only moves when a test moves it."""

    def __init__(self, now):
        self.current = now

    def now(self):
        return self.current

    def set(self, now):
        self.current = now


def make_config(**overrides):
    return type("LocalTestConfig", (TestingConfig,), overrides)


def seed_election(timezone_name="UTC"):
    """Current election open 08:00-16:00 with two positions and three voters."""
    election = Election(
        title="Student Council 2025",
        start_date=ELECTION_DAY,
        start_time="08:00",
        end_time="16:00",
        timezone=timezone_name,
        is_current=True,
        total_voters=3,
    )
    db.session.add(election)
    db.session.flush()

    president = Position(title="President", display_order=1, election_id=election.id)
    prefect = Position(title="House Prefect", display_order=2, election_id=election.id)
    db.session.add_all([president, prefect])
    db.session.flush()

    alice = Candidate(name="Alice", position_id=president.id, election_id=election.id)
    bob = Candidate(name="Bob", position_id=president.id, election_id=election.id)
    carol = Candidate(
        name="Carol", position_id=prefect.id, election_id=election.id,
        eligibility_type="house", eligibility_values=["Red"],
    )
    dan = Candidate(
        name="Dan", position_id=prefect.id, election_id=election.id,
        eligibility_type="house", eligibility_values=["blue"],
    )
    db.session.add_all([alice, bob, carol, dan])

    jordan = Voter(voter_id="VOTER12345", name="Jordan Lee", class_name="10A", year="10",
                   house="red", gender="F", election_id=election.id)
    sam = Voter(voter_id="VOTER23456", name="Sam Okafor", class_name="11B", year="11",
                house="Blue", gender="M", election_id=election.id)
    riley = Voter(voter_id="VOTER34567", name="Riley Chen", class_name="10A", year="10",
                  house="", gender=None, election_id=election.id)
    db.session.add_all([jordan, sam, riley])
    db.session.commit()

    return SimpleNamespace(
        election_id=election.id,
        president_id=president.id,
        prefect_id=prefect.id,
        alice_id=alice.id,
        bob_id=bob.id,
        carol_id=carol.id,
        dan_id=dan.id,
    )


@pytest.fixture
def clock():
    return FixedClock(MID_MORNING)


@pytest.fixture
def app(tmp_path, clock):
    app = create_app(make_config(AUDIT_LOG_DIR=str(tmp_path / "audit")), clock=clock)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture
def seeded(app):
    return seed_election()


@pytest.fixture
def audit_log(app):
    return app.extensions["audit_logger"]


@pytest.fixture
def auth_headers(app):
    manager = TokenManager(app)

    def _headers(role, username="tester"):
        return {"Authorization": f"Bearer {manager.generate_token(username, role)}"}

    return _headers
