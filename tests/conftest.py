import threading

import pytest
from app import create_app, dispose_store
from models import db, Student, SPORTS
from services import registry

ADMIN_PASSWORD = 'Admin@123'


@pytest.fixture
def flask_app():
    """Create test application with in-memory SQLite database"""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SECRET_KEY': 'test-secret-key',
        'ADMIN_PASSWORD': ADMIN_PASSWORD,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def file_app(tmp_path):
    """Application on a file-backed SQLite database, for tests that use several connections"""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{tmp_path / "sportsday.db"}',
        'SECRET_KEY': 'test-secret-key',
        'ADMIN_PASSWORD': ADMIN_PASSWORD,
        'LOCK_TIMEOUT_SECONDS': 10,
        'LOG_LEVEL': 'WARNING',
    })

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
    dispose_store(app)


@pytest.fixture
def run_concurrently():
    """Start every call at once, each in its own thread and app context.

    Returns the name of what each call ended with: 'ok' or the exception class.
    """

    def _run(app, calls):
        barrier = threading.Barrier(len(calls))
        outcomes = [None] * len(calls)

        def worker(index, call):
            with app.app_context():
                barrier.wait()
                try:
                    call()
                    outcomes[index] = 'ok'
                except Exception as exc:
                    outcomes[index] = type(exc).__name__

        threads = [threading.Thread(target=worker, args=(i, call)) for i, call in enumerate(calls)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)
        return outcomes

    return _run


@pytest.fixture
def client(flask_app):
    """Test client"""
    return flask_app.test_client()


@pytest.fixture
def db_session(flask_app):
    """Database session for test fixtures"""
    return db.session


@pytest.fixture
def admin_password():
    return ADMIN_PASSWORD


@pytest.fixture
def admin_client(client):
    """Client with an admin session already established"""
    with client.session_transaction() as sess:
        sess['role'] = 'admin'
    return client


@pytest.fixture
def make_student(flask_app):
    """Factory for roster entries. Sports passed as keywords become eligibility flags."""
    counter = {'value': 0}

    def _make(name=None, roll_number=None, sports=('cricket',)):
        counter['value'] += 1
        number = counter['value']
        student = Student(
            name=name or f'Student {number:02d}',
            roll_number=roll_number or f'R{number:04d}',
        )
        for sport in SPORTS:
            setattr(student, sport, sport in sports)
        db.session.add(student)
        db.session.commit()
        return student

    return _make


@pytest.fixture
def students(make_student):
    """Ten students eligible for cricket and throwball"""
    return [make_student(sports=('cricket', 'throwball')) for _ in range(10)]


@pytest.fixture
def make_teams(flask_app):
    """Factory creating named teams without members, in order"""

    def _make(sport, names):
        return [registry.create_team(name, sport, []) for name in names]

    return _make


@pytest.fixture
def cricket_teams(make_teams):
    """Five cricket teams A-E created in order"""
    return make_teams('cricket', ['A', 'B', 'C', 'D', 'E'])
