# election_core/database/models.py

from datetime import datetime, timezone

from sqlalchemy import text

from election_core import db


def _utcnow():
    return datetime.now(timezone.utc)


class Election(db.Model):
    __tablename__ = 'elections'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    start_date = db.Column(db.String(10), nullable=False)  # YYYY-MM-DD
    end_date = db.Column(db.String(10), nullable=True)  # defaults to start_date
    start_time = db.Column(db.String(8), nullable=False)  # HH:MM[:SS]
    end_time = db.Column(db.String(8), nullable=False)
    timezone = db.Column(db.String(64), nullable=False, default='UTC')
    is_current = db.Column(db.Boolean, nullable=False, default=False)
    results_published = db.Column(db.Boolean, nullable=False, default=False)
    total_voters = db.Column(db.Integer, nullable=False, default=0)
    voted_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        # At most one row may carry is_current = true
        db.Index(
            'ix_elections_single_current', 'is_current', unique=True,
            postgresql_where=text('is_current'), sqlite_where=text('is_current'),
        ),
    )

    def __repr__(self):
        return f'<Election {self.id} {self.title!r}>'


class Voter(db.Model):
    __tablename__ = 'voters'
    id = db.Column(db.Integer, primary_key=True)
    voter_id = db.Column(db.String(10), unique=True, nullable=False)  # VOTER#####
    name = db.Column(db.String(120), nullable=False)
    gender = db.Column(db.String(20), nullable=True)
    class_name = db.Column('class', db.String(50), nullable=True)
    year = db.Column(db.String(20), nullable=True)
    house = db.Column(db.String(50), nullable=True)
    has_voted = db.Column(db.Boolean, nullable=False, default=False)
    voted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    election_id = db.Column(db.Integer, db.ForeignKey('elections.id'), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    ballots = db.relationship('Ballot', backref='voter', lazy=True)

    __table_args__ = (
        db.CheckConstraint('has_voted OR voted_at IS NULL', name='ck_voters_voted_at_requires_vote'),
    )

    def demographics(self):
        return {'class': self.class_name, 'year': self.year, 'house': self.house, 'gender': self.gender}

    def __repr__(self):
        return f'<Voter {self.voter_id}>'


class Position(db.Model):
    __tablename__ = 'positions'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=False, default='')
    display_order = db.Column(db.Integer, nullable=False, default=0)
    max_selections = db.Column(db.Integer, nullable=False, default=1)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    election_id = db.Column(db.Integer, db.ForeignKey('elections.id'), nullable=False, index=True)

    candidates = db.relationship('Candidate', backref='position', lazy=True)

    __table_args__ = (
        db.UniqueConstraint('election_id', 'title', name='uq_positions_election_title'),
    )


class Candidate(db.Model):
    __tablename__ = 'candidates'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    position_id = db.Column(db.Integer, db.ForeignKey('positions.id'), nullable=False, index=True)
    election_id = db.Column(db.Integer, db.ForeignKey('elections.id'), nullable=False, index=True)
    # 'all' or one of the voter demographic attributes: class, year, house, gender
    eligibility_type = db.Column(db.String(20), nullable=False, default='all')
    eligibility_values = db.Column(db.JSON, nullable=False, default=list)
    is_active = db.Column(db.Boolean, nullable=False, default=True)


class Ballot(db.Model):
    __tablename__ = 'ballots'
    id = db.Column(db.Integer, primary_key=True)
    voter_id = db.Column(db.Integer, db.ForeignKey('voters.id'), nullable=False)
    election_id = db.Column(db.Integer, db.ForeignKey('elections.id'), nullable=False, index=True)
    position_id = db.Column(db.Integer, db.ForeignKey('positions.id'), nullable=False, index=True)
    candidate_id = db.Column(db.Integer, db.ForeignKey('candidates.id'), nullable=True)
    is_abstention = db.Column(db.Boolean, nullable=False, default=False)
    cast_at = db.Column(db.DateTime(timezone=True), nullable=False)

    __table_args__ = (
        db.UniqueConstraint('voter_id', 'position_id', name='uq_ballots_voter_position'),
        db.CheckConstraint(
            '(is_abstention AND candidate_id IS NULL) OR (NOT is_abstention AND candidate_id IS NOT NULL)',
            name='ck_ballots_choice_or_abstention',
        ),
    )

    def __repr__(self):
        return f'<Ballot {self.id} voter={self.voter_id} position={self.position_id}>'


class VoteReceipt(db.Model):
    # Keyed by digest alone so row order says nothing about who voted when
    __tablename__ = 'vote_receipts'
    token_hash = db.Column(db.String(64), primary_key=True)
    election_id = db.Column(db.Integer, db.ForeignKey('elections.id'), nullable=False, index=True)

    __table_args__ = (
        {'sqlite_with_rowid': False},
    )


class Role(db.Model):
    __tablename__ = 'roles'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)
    description = db.Column(db.String(200), nullable=False, default='')
    active = db.Column(db.Boolean, nullable=False, default=True)
    permissions = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
