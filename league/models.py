from datetime import datetime
from flask_sqlalchemy import SQLAlchemy

from shared.events import Event, ActivityType

db = SQLAlchemy()


def _iso(value):
    return value.isoformat() if value else None


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), unique=True, nullable=False)
    role = db.Column(db.String(20), nullable=False, default='USER')  # ADMIN or USER
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == 'ADMIN'

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'role': self.role,
            'created_at': _iso(self.created_at),
        }


class Team(db.Model):
    __tablename__ = 'teams'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    sport = db.Column(db.String(50), nullable=True)
    owner_user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    members = db.relationship('TeamMember', back_populates='team', cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'sport': self.sport,
            'owner_user_id': self.owner_user_id,
            'member_count': len(self.members),
        }


class TeamMember(db.Model):
    __tablename__ = 'team_members'

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False, default='PLAYER')  # CAPTAIN or PLAYER
    joined_at = db.Column(db.DateTime, default=datetime.utcnow)

    team = db.relationship('Team', back_populates='members')

    __table_args__ = (
        db.UniqueConstraint('team_id', 'user_id', name='unique_member_per_team'),
    )


class Tournament(db.Model):
    __tablename__ = 'tournaments'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    max_teams = db.Column(db.Integer, nullable=False, default=8)
    status = db.Column(db.String(20), nullable=False, default='SIGNUPS_OPEN')
    location = db.Column(db.String(200), nullable=True)
    prize_cents = db.Column(db.Integer, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    # Timestamps
    signup_deadline = db.Column(db.DateTime, nullable=True)
    starts_at = db.Column(db.DateTime, nullable=False)
    ends_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    registrations = db.relationship('TournamentRegistration', back_populates='tournament',
                                    cascade='all, delete-orphan')
    matches = db.relationship('TournamentMatch', back_populates='tournament',
                              cascade='all, delete-orphan',
                              foreign_keys='TournamentMatch.tournament_id')

    @property
    def registered_count(self) -> int:
        return TournamentRegistration.query.filter_by(
            tournament_id=self.id, status=TournamentRegistration.REGISTERED
        ).count()

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'max_teams': self.max_teams,
            'status': self.status,
            'location': self.location,
            'prize_cents': self.prize_cents,
            'created_by': self.created_by,
            'registered_count': self.registered_count,
            'signup_deadline': _iso(self.signup_deadline),
            'starts_at': _iso(self.starts_at),
            'ends_at': _iso(self.ends_at),
            'created_at': _iso(self.created_at),
        }


class TournamentRegistration(db.Model):
    __tablename__ = 'tournament_registrations'

    REGISTERED = 'REGISTERED'
    CANCELLED = 'CANCELLED'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False, index=True)
    team_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default=REGISTERED)
    checked_in = db.Column(db.Boolean, nullable=False, default=False)
    registered_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tournament = db.relationship('Tournament', back_populates='registrations')
    team = db.relationship('Team')

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'team_id', name='unique_registration_per_tournament'),
    )

    @property
    def is_active(self) -> bool:
        return self.status == self.REGISTERED

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'team_id': self.team_id,
            'status': self.status,
            'checked_in': self.checked_in,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class TournamentMatch(db.Model):
    __tablename__ = 'tournament_matches'

    SCHEDULED = 'SCHEDULED'
    COMPLETE = 'COMPLETE'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False, index=True)
    round_number = db.Column(db.Integer, nullable=False)
    match_number = db.Column(db.Integer, nullable=False)

    team_a_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=True)
    team_b_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=True)
    score_a = db.Column(db.Integer, nullable=False, default=0)
    score_b = db.Column(db.Integer, nullable=False, default=0)
    winner_team_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=True)
    status = db.Column(db.String(20), nullable=False, default=SCHEDULED)

    # Forward link: the winner fills slot "1" (team_a) or "2" (team_b) of next_match
    next_match_id = db.Column(db.Integer, db.ForeignKey('tournament_matches.id'), nullable=True)
    next_match_slot = db.Column(db.String(1), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tournament = db.relationship('Tournament', back_populates='matches', foreign_keys=[tournament_id])

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'round_number', 'match_number', name='unique_match_position'),
    )

    @property
    def is_complete(self) -> bool:
        return self.status == self.COMPLETE

    @property
    def is_final(self) -> bool:
        return self.next_match_id is None

    def team_ids(self):
        return [t for t in (self.team_a_id, self.team_b_id) if t is not None]

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'round_number': self.round_number,
            'match_number': self.match_number,
            'team_a_id': self.team_a_id,
            'team_b_id': self.team_b_id,
            'score_a': self.score_a,
            'score_b': self.score_b,
            'winner_team_id': self.winner_team_id,
            'status': self.status,
            'next_match_id': self.next_match_id,
            'next_match_slot': self.next_match_slot,
        }


class UserStats(db.Model):
    __tablename__ = 'user_stats'

    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), primary_key=True)
    sport = db.Column(db.String(50), primary_key=True)
    match_wins = db.Column(db.Integer, nullable=False, default=0)
    match_losses = db.Column(db.Integer, nullable=False, default=0)
    titles = db.Column(db.Integer, nullable=False, default=0)
    last_updated = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'sport': self.sport,
            'match_wins': self.match_wins,
            'match_losses': self.match_losses,
            'titles': self.titles,
            'last_updated': _iso(self.last_updated),
        }


class Activity(db.Model):
    __tablename__ = 'activities'

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(50), nullable=False)
    team_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=False, index=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=True, index=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    team_name_snapshot = db.Column(db.String(100), nullable=True)
    payload = db.Column(db.JSON, nullable=True)
    dedupe_key = db.Column(db.String(200), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_event(self) -> Event:
        try:
            activity_type = ActivityType(self.type)
        except ValueError:
            activity_type = self.type
        return Event(
            type=activity_type,
            team_id=self.team_id,
            tournament_id=self.tournament_id,
            timestamp=(self.created_at or datetime.utcnow()).isoformat() + "Z",
            data=dict(self.payload or {}, dedupe_key=self.dedupe_key)
        )

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.type,
            'team_id': self.team_id,
            'tournament_id': self.tournament_id,
            'actor_user_id': self.actor_user_id,
            'team_name_snapshot': self.team_name_snapshot,
            'payload': self.payload or {},
            'dedupe_key': self.dedupe_key,
            'created_at': _iso(self.created_at),
        }
