from datetime import datetime
import pytz

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import inspect, text
from sqlalchemy.orm import validates

db = SQLAlchemy()

IST = pytz.timezone('Asia/Kolkata')

# Each sport doubles as the name of the eligibility column on students.
SPORTS = (
    'cricket',
    'throwball',
    'kho_kho',
    'badminton_doubles',
    'relay',
    'tug_of_war',
)

SPORT_LABELS = {
    'cricket': 'Cricket',
    'throwball': 'Throwball',
    'kho_kho': 'Kho-Kho',
    'badminton_doubles': 'Badminton Doubles',
    'relay': 'Relay',
    'tug_of_war': 'Tug of War',
}


def current_time():
    return datetime.now(IST)


def is_known_sport(sport) -> bool:
    return sport in SPORTS


class Student(db.Model):
    """Roster entry with one eligibility flag per sport."""

    __tablename__ = 'students'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    roll_number = db.Column(db.String(30), unique=True, nullable=False)
    email = db.Column(db.String(120))
    phone = db.Column(db.String(20))
    cricket = db.Column(db.Boolean, default=False, nullable=False)
    throwball = db.Column(db.Boolean, default=False, nullable=False)
    kho_kho = db.Column(db.Boolean, default=False, nullable=False)
    badminton_doubles = db.Column(db.Boolean, default=False, nullable=False)
    relay = db.Column(db.Boolean, default=False, nullable=False)
    tug_of_war = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=current_time)

    memberships = db.relationship('TeamMember', back_populates='student', lazy=True)

    def __repr__(self):  # pragma: no cover - debug helper
        return f"<Student {self.id} {self.roll_number}>"

    def is_eligible(self, sport: str) -> bool:
        if not is_known_sport(sport):
            return False
        return bool(getattr(self, sport))

    def eligible_sports(self) -> list[str]:
        return [sport for sport in SPORTS if self.is_eligible(sport)]

    def assigned_sports(self) -> set[str]:
        return {membership.sport for membership in self.memberships}

    def update_student(self, **kwargs):
        for field, value in kwargs.items():
            if not hasattr(self, field) or value is None:
                continue
            if isinstance(value, str):
                value = value.strip()
                if value == '' and field in ('name', 'roll_number'):
                    continue
            setattr(self, field, value)

    def to_dict(self) -> dict:
        payload = {
            'id': self.id,
            'name': self.name,
            'roll_number': self.roll_number,
            'email': self.email,
            'phone': self.phone,
        }
        for sport in SPORTS:
            payload[sport] = bool(getattr(self, sport))
        return payload

    @staticmethod
    def validate_format(name: str, roll_number) -> list[str]:
        """Validate roster fields without touching the database."""
        errors: list[str] = []

        if not name or not str(name).strip():
            errors.append("Student name is required")

        if roll_number is None or not str(roll_number).strip():
            errors.append("Roll number is required")
        elif len(str(roll_number).strip()) > 30:
            errors.append("Roll number must be at most 30 characters")

        return errors


class Team(db.Model):
    __tablename__ = 'teams'

    id = db.Column(db.Integer, primary_key=True)
    team_name = db.Column(db.String(100), nullable=False)
    sport = db.Column(db.String(30), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=current_time)

    __table_args__ = (db.UniqueConstraint('team_name', 'sport', name='uq_team_name_sport'),)

    members = db.relationship(
        'TeamMember',
        back_populates='team',
        lazy=True,
        cascade='all, delete-orphan',
        order_by='TeamMember.id',
    )

    def __repr__(self):  # pragma: no cover - debug helper
        return f"<Team {self.id} {self.team_name} sport={self.sport}>"

    @validates('sport')
    def validate_sport(self, key, value):
        if not is_known_sport(value):
            raise ValueError(f'Unknown sport: {value}')
        return value

    def member_ids(self) -> list[int]:
        return [membership.student_id for membership in self.members]

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'team_name': self.team_name,
            'sport': self.sport,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'members': [
                {'id': membership.student_id, 'name': membership.student.name}
                for membership in self.members
                if membership.student is not None
            ],
        }


class TeamMember(db.Model):
    """A student's place on a team. One per (student, sport)."""

    __tablename__ = 'team_members'

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('teams.id', ondelete='CASCADE'), nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), nullable=False)
    sport = db.Column(db.String(30), nullable=False)

    __table_args__ = (db.UniqueConstraint('student_id', 'sport', name='uq_team_member_student_sport'),)

    team = db.relationship('Team', back_populates='members')
    student = db.relationship('Student', back_populates='memberships')


class Match(db.Model):
    __tablename__ = 'matches'

    id = db.Column(db.Integer, primary_key=True)
    sport = db.Column(db.String(30), nullable=False, index=True)
    round = db.Column(db.Integer, nullable=False)
    match_number = db.Column(db.Integer, nullable=False)
    team1_id = db.Column(db.Integer, db.ForeignKey('teams.id'))
    team2_id = db.Column(db.Integer, db.ForeignKey('teams.id'))
    winner_id = db.Column(db.Integer, db.ForeignKey('teams.id'))
    is_completed = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=current_time)

    __table_args__ = (
        db.UniqueConstraint('sport', 'round', 'match_number', name='uq_match_slot'),
        db.CheckConstraint('round >= 1', name='ck_match_round_positive'),
    )

    team1 = db.relationship('Team', foreign_keys=[team1_id])
    team2 = db.relationship('Team', foreign_keys=[team2_id])
    winner = db.relationship('Team', foreign_keys=[winner_id])

    def __repr__(self):  # pragma: no cover - debug helper
        return f"<Match {self.sport} R{self.round}M{self.match_number}>"

    @property
    def is_bye(self) -> bool:
        """Exactly one team slot is filled."""
        return (self.team1_id is None) != (self.team2_id is None)

    @property
    def participant_ids(self) -> tuple:
        return tuple(team_id for team_id in (self.team1_id, self.team2_id) if team_id is not None)

    def has_participant(self, team_id) -> bool:
        return team_id is not None and team_id in self.participant_ids

    def references_team(self, team_id) -> bool:
        return team_id in (self.team1_id, self.team2_id, self.winner_id)

    def complete_bye(self) -> bool:
        """Award a bye to the only team present. Returns True if the match was a bye."""
        if not self.is_bye:
            return False
        self.winner_id = self.team1_id if self.team1_id is not None else self.team2_id
        self.is_completed = True
        return True

    @property
    def versus_display(self):
        return f"{self._display_name(1)} vs {self._display_name(2)}"

    def _display_name(self, slot: int) -> str:
        team = self.team1 if slot == 1 else self.team2
        if team:
            return team.team_name
        if self.is_bye:
            return 'BYE'
        return 'TBD'

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'sport': self.sport,
            'round': self.round,
            'match_number': self.match_number,
            'team1_id': self.team1_id,
            'team2_id': self.team2_id,
            'winner_id': self.winner_id,
            'is_completed': bool(self.is_completed),
            'team1_name': self.team1.team_name if self.team1 else None,
            'team2_name': self.team2.team_name if self.team2 else None,
            'winner_name': self.winner.team_name if self.winner else None,
        }


class BracketLock(db.Model):
    """One row per sport. Bracket writers lock it to serialize per sport."""

    __tablename__ = 'bracket_locks'

    sport = db.Column(db.String(30), primary_key=True)
    updated_at = db.Column(db.DateTime, default=current_time, onupdate=current_time)

    def touch(self):
        self.updated_at = current_time()


def ensure_bracket_locks():
    """Seed the per-sport lock rows. Safe to call on every start."""
    existing = {row.sport for row in BracketLock.query.all()}
    missing = [sport for sport in SPORTS if sport not in existing]
    for sport in missing:
        db.session.add(BracketLock(sport=sport))
    if missing:
        db.session.commit()
    return missing


def ensure_schema_integrity():
    """Add uniqueness guarantees that databases created by older releases lack."""

    inspector = inspect(db.engine)

    required = [
        ('team_members', 'uq_team_member_student_sport', ('student_id', 'sport')),
        ('teams', 'uq_team_name_sport', ('team_name', 'sport')),
        ('matches', 'uq_match_slot', ('sport', 'round', 'match_number')),
    ]

    applied = []
    for table_name, index_name, columns in required:
        if not inspector.has_table(table_name):
            continue

        unique_sets = {
            frozenset(constraint['column_names'])
            for constraint in inspector.get_unique_constraints(table_name)
        }
        unique_sets.update(
            frozenset(index['column_names'])
            for index in inspector.get_indexes(table_name)
            if index.get('unique')
        )
        if frozenset(columns) in unique_sets:
            continue

        with db.engine.begin() as connection:
            connection.execute(
                text(f'CREATE UNIQUE INDEX {index_name} ON {table_name} ({", ".join(columns)})')
            )
        applied.append(index_name)

    return applied
