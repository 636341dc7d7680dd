import logging
import os
from flask import Flask, request, jsonify
from sqlalchemy.exc import SQLAlchemyError

from shared.pubsub import ActivityPublisher
from .config import config
from .errors import LeagueError
from .models import db
from .activity_feed import ActivityFeed
from .bracket_service import BracketService
from .registration import RegistrationLedger
from .roster import AccountService, RosterService
from .routes import int_value, json_body, parse_timestamp, requesting_user
from .scheduler import TournamentScheduler
from .stats import StatsLedger
from .tournament_registry import TournamentRegistry

logger = logging.getLogger(__name__)


def create_app(config_name: str = None) -> Flask:
    """Application factory for the league service."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config.get(config_name, config['default']))

    # Initialize extensions
    db.init_app(app)

    # Initialize services
    accounts = AccountService()
    roster = RosterService()
    feed = ActivityFeed(ActivityPublisher(app.config.get('REDIS_URL')))
    ledger = RegistrationLedger(feed, roster, accounts)
    stats = StatsLedger(roster)

    # Create tables
    with app.app_context():
        db.create_all()

    # Store services on app for access in routes
    app.accounts = accounts
    app.roster = roster
    app.feed = feed
    app.ledger = ledger
    app.stats = stats
    app.registry = TournamentRegistry(accounts)
    app.brackets = BracketService(ledger, feed, roster, accounts, stats)
    app.scheduler = TournamentScheduler(app, feed, ledger, roster)

    # Register routes
    register_error_handlers(app)
    register_api_routes(app)

    from .routes import registrations, brackets
    app.register_blueprint(registrations.bp)
    app.register_blueprint(brackets.bp)

    if app.config.get('SCHEDULER_ENABLED'):
        app.scheduler.start()

    return app


def register_error_handlers(app: Flask):

    @app.errorhandler(LeagueError)
    def handle_league_error(error: LeagueError):
        app.logger.warning(f"{type(error).__name__} on {request.method} {request.path}: {error.message}")
        return jsonify(error.to_dict()), error.status_code


def register_api_routes(app: Flask):
    """Register API routes."""

    # ==================== Tournaments ====================

    @app.route('/api/v1/tournaments', methods=['GET'])
    def api_list_tournaments():
        """List tournaments with optional filtering."""
        when = request.args.get('when') or None
        status = request.args.get('status')
        limit = request.args.get('limit', 50, type=int)
        offset = request.args.get('offset', 0, type=int)

        tournaments = app.registry.list_tournaments(
            when=when,
            status=status,
            limit=limit,
            offset=offset
        )

        return jsonify({
            'tournaments': [t.to_dict() for t in tournaments],
            'count': len(tournaments),
            'limit': limit,
            'offset': offset
        })

    @app.route('/api/v1/tournaments', methods=['POST'])
    def api_create_tournament():
        """Create a new tournament."""
        data = json_body()

        tournament = app.registry.create_tournament(
            name=data.get('name'),
            max_teams=int_value(data.get('max_teams'), 'max_teams'),
            starts_at=parse_timestamp(data.get('starts_at'), 'starts_at'),
            requesting_user_id=requesting_user(),
            signup_deadline=parse_timestamp(data.get('signup_deadline'), 'signup_deadline'),
            location=data.get('location'),
            prize_cents=int_value(data.get('prize_cents'), 'prize_cents', required=False),
            draft=data.get('draft') is True
        )

        return jsonify({
            'message': 'Tournament created',
            'tournament': tournament.to_dict()
        }), 201

    @app.route('/api/v1/tournaments/<int:tournament_id>', methods=['GET'])
    def api_get_tournament(tournament_id: int):
        """Get tournament details."""
        return jsonify(app.registry.require_tournament(tournament_id).to_dict())

    @app.route('/api/v1/tournaments/<int:tournament_id>/publish', methods=['POST'])
    def api_publish_tournament(tournament_id: int):
        """Open signups for a draft tournament."""
        tournament = app.registry.publish_tournament(tournament_id, requesting_user())
        return jsonify({
            'message': 'Tournament published',
            'tournament': tournament.to_dict()
        })

    # ==================== Health Check ====================

    @app.route('/api/v1/health')
    @app.route('/health')
    def health_check():
        """Health check endpoint."""
        try:
            db.session.execute(db.text('SELECT 1'))
            db_ok = True
        except SQLAlchemyError:
            db_ok = False

        publisher = app.feed.publisher
        if publisher.enabled:
            redis_status = 'connected' if publisher.ping() else 'disconnected'
        else:
            redis_status = 'disabled'

        status = 'healthy' if db_ok and redis_status != 'disconnected' else 'unhealthy'
        code = 200 if status == 'healthy' else 503

        return jsonify({
            'status': status,
            'redis': redis_status,
            'database': 'connected' if db_ok else 'disconnected'
        }), code
