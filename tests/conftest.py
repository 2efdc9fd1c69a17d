import pytest
import sys
import os
from datetime import datetime, timedelta

# Add project directory to sys.path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# create_app refuses to start without these
os.environ['SECRET_KEY'] = 'test-secret-key'
os.environ['JWT_SECRET'] = 'test-jwt-secret'
os.environ['ADMIN_CRON_KEY'] = 'test-cron-key'

from main import create_app
from models import db, User, Challenge, Competition
from auth import generate_token


@pytest.fixture
def app(tmp_path):
    """Create and configure a new app instance for each test."""
    app = create_app({
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'TESTING': True,
        'UPLOAD_FOLDER': str(tmp_path / 'uploads'),
        'ADMIN_CRON_KEY': 'test-cron-key',
    })

    # Create tables
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """A test runner for the app's CLI commands."""
    return app.test_cli_runner()


@pytest.fixture
def make_user(app):
    """Factory for users with a starting balance"""
    counter = {'n': 0}

    def _make_user(role='student', coins=0, xp_points=0, username=None):
        counter['n'] += 1
        name = username or f'user{counter["n"]}'
        user = User(
            username=name,
            email=f'{name}@example.com',
            role=role,
            coins=coins,
            xp_points=xp_points,
            is_active=True
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make_user


@pytest.fixture
def auth_header(app):
    """Auth headers for a given user"""
    def _auth_header(user):
        token = generate_token(user.id)
        return {'Authorization': f'Bearer {token}'}
    return _auth_header


@pytest.fixture
def now():
    return datetime(2024, 6, 15, 12, 0, 0)


@pytest.fixture
def make_challenge(app, now):
    def _make_challenge(**overrides):
        values = {
            'title': 'Waste Warrior Challenge',
            'description': 'Sort and recycle your waste',
            'type': 'weekly',
            'difficulty': 'medium',
            'category': 'consistency',
            'requirement_type': 'complete_lessons',
            'requirement_target': 5,
            'reward_xp': 100,
            'reward_coins': 20,
            'start_date': now - timedelta(days=1),
            'end_date': now + timedelta(days=6),
            'is_active': True,
            'max_participants': None,
        }
        values.update(overrides)
        challenge = Challenge(**values)
        db.session.add(challenge)
        db.session.commit()
        return challenge

    return _make_challenge


@pytest.fixture
def make_competition(app, now):
    """Competition whose registration is open at `now` and which starts tomorrow"""
    def _make_competition(**overrides):
        values = {
            'title': 'Recycling Sprint',
            'description': 'Who recycles the most?',
            'type': 'race',
            'format': 'points_based',
            'criteria_type': 'highest_score',
            'min_participants': 2,
            'max_participants': None,
            'registration_start': now - timedelta(days=2),
            'registration_end': now + timedelta(hours=1),
            'start_date': now + timedelta(days=1),
            'end_date': now + timedelta(days=3),
            'status': 'registration',
            'entry_fee_coins': 0,
            'prize_first_xp': 500,
            'prize_first_coins': 100,
            'prize_second_xp': 300,
            'prize_second_coins': 50,
            'prize_third_xp': 150,
            'prize_third_coins': 25,
            'prize_participation_xp': 50,
            'prize_participation_coins': 5,
        }
        values.update(overrides)
        competition = Competition(**values)
        db.session.add(competition)
        db.session.commit()
        return competition

    return _make_competition
