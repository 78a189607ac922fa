"""Transaction boundary: commit, rollback and error translation."""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as PoolTimeoutError

from errors import ConflictError, InternalError, ResourceBusyError, ValidationError
from models import db, Team, BracketLock
from services.transactions import atomic, is_busy_error, lock_sport, describe_integrity_error


class FakeDriverError(Exception):
    def __init__(self, *args, pgcode=None):
        super().__init__(*args)
        self.pgcode = pgcode


def _operational(message, *args, pgcode=None):
    return OperationalError('UPDATE teams', {}, FakeDriverError(message, *args, pgcode=pgcode))


class TestAtomic:
    def test_commits_on_success(self, flask_app):
        with atomic('create'):
            db.session.add(Team(team_name='Kept', sport='relay'))

        db.session.expunge_all()
        assert Team.query.filter_by(team_name='Kept').count() == 1

    def test_rolls_back_on_domain_error(self, flask_app):
        with pytest.raises(ValidationError):
            with atomic('create'):
                db.session.add(Team(team_name='Dropped', sport='relay'))
                db.session.flush()
                raise ValidationError('nope')

        assert Team.query.filter_by(team_name='Dropped').count() == 0

    def test_rolls_back_on_unexpected_error(self, flask_app):
        with pytest.raises(RuntimeError):
            with atomic('create'):
                db.session.add(Team(team_name='Dropped', sport='relay'))
                db.session.flush()
                raise RuntimeError('boom')

        assert Team.query.filter_by(team_name='Dropped').count() == 0

    def test_integrity_error_becomes_conflict(self, flask_app):
        with atomic('create'):
            db.session.add(Team(team_name='Twice', sport='relay'))

        with pytest.raises(ConflictError) as exc_info:
            with atomic('create'):
                db.session.add(Team(team_name='Twice', sport='relay'))

        assert exc_info.value.retryable is True
        assert 'team name' in exc_info.value.message
        assert Team.query.filter_by(team_name='Twice').count() == 1

    @pytest.mark.parametrize(
        'error',
        [
            _operational('database is locked'),
            _operational('canceling statement due to lock timeout', pgcode='55P03'),
            _operational('deadlock detected', pgcode='40P01'),
            _operational(1205, 'Lock wait timeout exceeded; try restarting transaction'),
            PoolTimeoutError('QueuePool limit of size 20 overflow 10 reached'),
        ],
    )
    def test_lock_and_pool_timeouts_become_busy(self, flask_app, error):
        with pytest.raises(ResourceBusyError) as exc_info:
            with atomic('record result'):
                db.session.add(Team(team_name='Waiting', sport='relay'))
                raise error

        assert exc_info.value.status_code == 503
        assert Team.query.filter_by(team_name='Waiting').count() == 0

    def test_other_operational_errors_are_internal(self, flask_app):
        with pytest.raises(InternalError) as exc_info:
            with atomic('record result'):
                raise _operational('no such table: teams')

        assert exc_info.value.message == 'Something went wrong!'
        assert 'no such table' in exc_info.value.detail


class TestErrorClassification:
    def test_busy_detection(self):
        assert is_busy_error(_operational('database is locked'))
        assert is_busy_error(_operational('x', pgcode='40001'))
        assert not is_busy_error(_operational('syntax error'))

    def test_integrity_messages(self):
        def integrity(message):
            return IntegrityError('INSERT', {}, Exception(message))

        assert 'already assigned' in describe_integrity_error(
            integrity('UNIQUE constraint failed: team_members.student_id, team_members.sport')
        )
        assert describe_integrity_error(
            integrity('UNIQUE constraint failed: students.roll_number')
        ) == 'Roll number already exists'
        assert describe_integrity_error(integrity('something else'), 'fallback') == 'fallback'

    @pytest.mark.parametrize(
        'message, expected',
        [
            (
                "(1062, \"Duplicate entry '3-cricket' for key 'team_members.uq_team_member_student_sport'\")",
                'already assigned',
            ),
            ("(1062, \"Duplicate entry 'Falcons-cricket' for key 'teams.uq_team_name_sport'\")", 'team name'),
            ("(1062, \"Duplicate entry 'relay-2-1' for key 'matches.uq_match_slot'\")", 'bracket was changed'),
            ('duplicate key value violates unique constraint "uq_match_slot"', 'bracket was changed'),
            ('duplicate key value violates unique constraint "students_roll_number_key"', 'Roll number'),
        ],
    )
    def test_integrity_messages_by_constraint_name(self, message, expected):
        error = IntegrityError('INSERT', {}, Exception(message))
        assert expected in describe_integrity_error(error)


class TestSportLock:
    def test_lock_existing_row(self, flask_app):
        with atomic('lock'):
            lock = lock_sport('cricket')
            assert lock.sport == 'cricket'
        assert BracketLock.query.count() == 6

    def test_missing_row_is_created(self, flask_app):
        BracketLock.query.filter_by(sport='relay').delete()
        db.session.commit()

        with atomic('lock'):
            lock_sport('relay')

        assert db.session.get(BracketLock, 'relay') is not None
