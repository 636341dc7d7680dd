from flask import Blueprint, current_app, jsonify, request

from . import int_value, json_body, requesting_user

bp = Blueprint('registrations', __name__, url_prefix='/api/v1')


@bp.route('/tournaments/<int:tournament_id>/registrations', methods=['POST'])
def register_team(tournament_id: int):
    """Register a team for a tournament."""
    data = json_body()
    team_id = int_value(data.get('team_id'), 'team_id')
    user_id = int_value(data.get('requesting_user_id', request.args.get('requesting_user_id')),
                        'requesting_user_id')

    registration = current_app.ledger.register(
        tournament_id,
        team_id,
        user_id,
        agreements_accepted=data.get('agreements_accepted') is True
    )

    return jsonify({
        'message': 'Team registered',
        'registration': registration.to_dict()
    }), 201


@bp.route('/tournaments/<int:tournament_id>/registrations', methods=['GET'])
def list_registrations(tournament_id: int):
    rows = current_app.ledger.list_registrations(tournament_id)
    return jsonify({
        'registrations': [r.to_dict() for r in rows],
        'count': len(rows)
    })


@bp.route('/tournaments/<int:tournament_id>/registrations/expanded', methods=['GET'])
def list_registrations_expanded(tournament_id: int):
    rows = current_app.ledger.list_registrations_expanded(tournament_id)
    return jsonify({
        'registrations': rows,
        'count': len(rows)
    })


@bp.route('/tournaments/<int:tournament_id>/registrations/by-team/<int:team_id>', methods=['DELETE'])
def unregister_team(tournament_id: int, team_id: int):
    """Cancel a team's registration."""
    registration = current_app.ledger.unregister(tournament_id, team_id, requesting_user())
    return jsonify({
        'message': 'Team unregistered',
        'registration': registration.to_dict()
    })


@bp.route('/tournaments/<int:tournament_id>/eligibility', methods=['GET'])
def eligibility(tournament_id: int):
    user_id = int_value(request.args.get('user_id'), 'user_id', required=False)
    return jsonify(current_app.ledger.eligibility(tournament_id, user_id))


@bp.route('/teams/<int:team_id>/tournaments', methods=['GET'])
def team_tournaments(team_id: int):
    when = request.args.get('when', 'upcoming')
    tournaments = current_app.registry.tournaments_for_team(team_id, when=when)
    return jsonify({
        'team_id': team_id,
        'when': when,
        'tournaments': [t.to_dict() for t in tournaments],
        'count': len(tournaments)
    })


@bp.route('/teams/<int:team_id>/activities', methods=['GET'])
def team_activities(team_id: int):
    limit = request.args.get('limit', 50, type=int)
    activities = current_app.feed.recent_for_team(team_id, limit=limit)
    return jsonify({
        'team_id': team_id,
        'activities': [a.to_dict() for a in activities],
        'count': len(activities)
    })
