"""
Pytest configuration and fixtures for league service tests.
"""
import os
import sys
import random
from datetime import datetime, timedelta

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'
os.environ['SCHEDULER_ENABLED'] = 'false'

from league.app import create_app
from league.bracket_service import BracketService
from league.models import (
    db, User, Team, TeamMember, Tournament, TournamentRegistration, TournamentMatch,
)

NOW = datetime(2030, 6, 1, 12, 0, 0)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app('testing')

    ctx = app.app_context()
    ctx.push()
    db.create_all()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Database session with all tables cleared before each test."""
    db.session.remove()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_user(db_session):
    counter = {'n': 0}

    def _make(role='USER', username=None):
        counter['n'] += 1
        user = User(username=username or f"user{counter['n']}", role=role)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def admin(make_user):
    return make_user(role='ADMIN', username='admin')


@pytest.fixture
def make_team(db_session, make_user):
    """Create a team with a captain and ``players`` additional members."""
    counter = {'n': 0}

    def _make(name=None, players=1, sport=None, captain=None):
        counter['n'] += 1
        captain = captain or make_user()
        team = Team(name=name or f"Team {counter['n']}", sport=sport, owner_user_id=captain.id)
        db.session.add(team)
        db.session.flush()
        db.session.add(TeamMember(team_id=team.id, user_id=captain.id, role='CAPTAIN'))
        for _ in range(players):
            player = make_user()
            db.session.add(TeamMember(team_id=team.id, user_id=player.id, role='PLAYER'))
        db.session.commit()
        return team

    return _make


@pytest.fixture
def captain_of():
    def _captain(team):
        member = TeamMember.query.filter_by(team_id=team.id, role='CAPTAIN').first()
        return member.user_id

    return _captain


@pytest.fixture
def make_tournament(db_session, admin):
    def _make(max_teams=4, starts_at=None, status='SIGNUPS_OPEN', signup_deadline=None, name='Summer Cup',
              created_by=None):
        starts_at = starts_at or NOW + timedelta(days=3)
        tournament = Tournament(
            name=name,
            max_teams=max_teams,
            starts_at=starts_at,
            signup_deadline=signup_deadline or starts_at - timedelta(hours=24),
            status=status,
            created_by=created_by or admin.id
        )
        db.session.add(tournament)
        db.session.commit()
        return tournament

    return _make


@pytest.fixture
def enroll(db_session, make_team):
    """Create ``count`` teams and register them directly, bypassing the ledger rules."""
    def _enroll(tournament, count, checked_in=True, sport=None):
        teams = []
        for _ in range(count):
            team = make_team(sport=sport)
            db.session.add(TournamentRegistration(
                tournament_id=tournament.id,
                team_id=team.id,
                status=TournamentRegistration.REGISTERED,
                checked_in=checked_in
            ))
            teams.append(team)
        db.session.commit()
        return teams

    return _enroll


@pytest.fixture
def brackets(app):
    """Bracket service with deterministic seeding."""
    return BracketService(
        ledger=app.ledger,
        feed=app.feed,
        roster=app.roster,
        accounts=app.accounts,
        stats=app.stats,
        rng=random.Random(7)
    )


@pytest.fixture
def match_at():
    def _match(tournament, round_number, match_number):
        return TournamentMatch.query.filter_by(
            tournament_id=tournament.id, round_number=round_number, match_number=match_number
        ).one()

    return _match


@pytest.fixture
def set_checked_in():
    def _set(tournament, team_id, checked_in):
        registration = TournamentRegistration.query.filter_by(
            tournament_id=tournament.id, team_id=team_id
        ).one()
        registration.checked_in = checked_in
        db.session.commit()

    return _set
