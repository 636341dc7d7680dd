from flask import Blueprint, current_app, jsonify

from . import int_value, json_body, requesting_user
from ..errors import ValidationError

bp = Blueprint('brackets', __name__, url_prefix='/api/v1')


@bp.route('/tournaments/<int:tournament_id>/bracket', methods=['GET'])
def get_bracket(tournament_id: int):
    """Bracket for a tournament, generated on first read inside the window."""
    return jsonify(current_app.brackets.get_bracket(tournament_id))


@bp.route('/tournaments/<int:tournament_id>/bracket/regenerate', methods=['POST'])
def regenerate_bracket(tournament_id: int):
    matches = current_app.brackets.regenerate(tournament_id, requesting_user())
    return jsonify({
        'message': 'Bracket regenerated',
        'tournament_id': tournament_id,
        'matches': [m.to_dict() for m in matches],
        'count': len(matches)
    })


@bp.route('/tournaments/<int:tournament_id>/matches/<int:match_id>/score', methods=['PATCH'])
def report_score(tournament_id: int, match_id: int):
    data = json_body()
    score_a = data.get('team1_score', data.get('score_a'))
    score_b = data.get('team2_score', data.get('score_b'))
    if score_a is None or score_b is None:
        raise ValidationError("team1_score and team2_score are required")

    match = current_app.brackets.report_score(
        tournament_id,
        match_id,
        int_value(score_a, 'team1_score'),
        int_value(score_b, 'team2_score'),
        requesting_user()
    )
    return jsonify({
        'message': 'Score recorded',
        'match': match.to_dict()
    })


@bp.route('/tournaments/<int:tournament_id>/attendance', methods=['GET'])
def attendance(tournament_id: int):
    rows = current_app.brackets.attendance(tournament_id)
    return jsonify({
        'tournament_id': tournament_id,
        'attendance': rows,
        'count': len(rows)
    })


@bp.route('/tournaments/<int:tournament_id>/attendance/by-team/<int:team_id>', methods=['PATCH'])
def set_attendance(tournament_id: int, team_id: int):
    data = json_body()
    checked_in = data.get('checked_in')
    if not isinstance(checked_in, bool):
        raise ValidationError("checked_in must be true or false")

    result = current_app.brackets.set_attendance(tournament_id, team_id, checked_in, requesting_user())
    return jsonify(result)


@bp.route('/tournaments/<int:tournament_id>/attendance/enforce', methods=['POST'])
def enforce_attendance(tournament_id: int):
    summary = current_app.brackets.enforce_attendance(tournament_id, requesting_user())
    return jsonify(summary)


@bp.route('/tournaments/<int:tournament_id>/finalize', methods=['POST'])
def finalize(tournament_id: int):
    tournament = current_app.brackets.finalize(tournament_id, requesting_user())
    return jsonify({
        'message': 'Tournament finalized',
        'tournament': tournament.to_dict()
    })


@bp.route('/users/<int:user_id>/stats', methods=['GET'])
def user_stats(user_id: int):
    rows = current_app.stats.for_user(user_id)
    return jsonify({
        'user_id': user_id,
        'stats': [r.to_dict() for r in rows]
    })
