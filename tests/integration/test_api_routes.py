"""
Integration tests for API routes.
Tests the tournament routes on the app plus the registrations and brackets blueprints.
"""
import json
from datetime import datetime, timedelta

import pytest

from league.models import TournamentMatch


def soon(hours):
    return datetime.utcnow() + timedelta(hours=hours)


class TestHealthEndpoint:
    """Tests for /api/v1/health endpoint."""

    def test_health_check(self, client, db_session):
        """Health check should return 200 with redis disabled in testing."""
        response = client.get('/api/v1/health')
        assert response.status_code == 200

        data = json.loads(response.data)
        assert data['status'] == 'healthy'
        assert data['database'] == 'connected'
        assert data['redis'] == 'disabled'

    def test_root_health_alias(self, client, db_session):
        assert client.get('/health').status_code == 200


class TestTournamentRoutes:

    def test_create_tournament(self, client, admin):
        response = client.post('/api/v1/tournaments', json={
            'name': 'Test Championship',
            'max_teams': 8,
            'starts_at': '2031-03-01T18:00:00Z',
            'requesting_user_id': admin.id
        })

        assert response.status_code == 201
        data = response.get_json()
        assert data['tournament']['name'] == 'Test Championship'
        assert data['tournament']['status'] == 'SIGNUPS_OPEN'
        assert data['tournament']['signup_deadline'].startswith('2031-02-28T18:00:00')

    def test_create_requires_admin(self, client, make_user):
        response = client.post('/api/v1/tournaments', json={
            'name': 'Cup', 'max_teams': 4, 'starts_at': '2031-03-01T18:00:00Z',
            'requesting_user_id': make_user().id
        })
        assert response.status_code == 403
        assert 'error' in response.get_json()

    @pytest.mark.parametrize("payload", [
        {'name': 'Cup', 'max_teams': 6, 'starts_at': '2031-03-01T18:00:00Z'},
        {'name': 'Cup', 'max_teams': 'eight', 'starts_at': '2031-03-01T18:00:00Z'},
        {'name': 'Cup', 'max_teams': 4, 'starts_at': 'next friday'},
        {'max_teams': 4, 'starts_at': '2031-03-01T18:00:00Z'},
    ])
    def test_create_validation(self, client, admin, payload):
        response = client.post('/api/v1/tournaments', json=dict(payload, requesting_user_id=admin.id))
        assert response.status_code == 400

    def test_missing_requesting_user(self, client, db_session):
        response = client.post('/api/v1/tournaments', json={'name': 'Cup', 'max_teams': 4})
        assert response.status_code == 400

    def test_get_and_list(self, client, make_tournament):
        tournament = make_tournament(starts_at=soon(72))

        response = client.get(f'/api/v1/tournaments/{tournament.id}')
        assert response.status_code == 200
        assert response.get_json()['name'] == 'Summer Cup'

        listing = client.get('/api/v1/tournaments?when=upcoming').get_json()
        assert [t['id'] for t in listing['tournaments']] == [tournament.id]

    def test_get_missing(self, client, db_session):
        assert client.get('/api/v1/tournaments/99999').status_code == 404

    def test_list_bad_filter(self, client, db_session):
        assert client.get('/api/v1/tournaments?when=tomorrow').status_code == 400

    def test_publish(self, client, make_tournament, admin):
        tournament = make_tournament(status='DRAFT', starts_at=soon(72))

        response = client.post(f'/api/v1/tournaments/{tournament.id}/publish?requesting_user_id={admin.id}')
        assert response.status_code == 200
        assert response.get_json()['tournament']['status'] == 'SIGNUPS_OPEN'

        again = client.post(f'/api/v1/tournaments/{tournament.id}/publish?requesting_user_id={admin.id}')
        assert again.status_code == 409


class TestRegistrationRoutes:

    def test_register_and_list(self, client, make_tournament, make_team, captain_of):
        tournament = make_tournament(starts_at=soon(72))
        team = make_team(name='Hawks')

        response = client.post(f'/api/v1/tournaments/{tournament.id}/registrations', json={
            'team_id': team.id,
            'requesting_user_id': captain_of(team),
            'agreements_accepted': True
        })

        assert response.status_code == 201
        assert response.get_json()['registration']['status'] == 'REGISTERED'

        expanded = client.get(f'/api/v1/tournaments/{tournament.id}/registrations/expanded').get_json()
        assert expanded['registrations'][0]['team_name'] == 'Hawks'

        activities = client.get(f'/api/v1/teams/{team.id}/activities').get_json()
        assert activities['activities'][0]['type'] == 'TEAM_REGISTERED_TOURNAMENT'

        upcoming = client.get(f'/api/v1/teams/{team.id}/tournaments?when=upcoming').get_json()
        assert [t['id'] for t in upcoming['tournaments']] == [tournament.id]

    def test_agreements_must_be_accepted(self, client, make_tournament, make_team, captain_of):
        tournament = make_tournament(starts_at=soon(72))
        team = make_team()

        response = client.post(f'/api/v1/tournaments/{tournament.id}/registrations', json={
            'team_id': team.id, 'requesting_user_id': captain_of(team)
        })
        assert response.status_code == 400

    def test_full_tournament_conflicts(self, client, make_tournament, enroll, make_team, captain_of):
        tournament = make_tournament(max_teams=2, starts_at=soon(72))
        enroll(tournament, 2)
        extra = make_team()

        response = client.post(f'/api/v1/tournaments/{tournament.id}/registrations', json={
            'team_id': extra.id, 'requesting_user_id': captain_of(extra), 'agreements_accepted': True
        })

        assert response.status_code == 409
        assert response.get_json()['error'] == 'Tournament is full'

    def test_non_captain_forbidden(self, client, make_tournament, make_team, make_user):
        tournament = make_tournament(starts_at=soon(72))
        team = make_team()

        response = client.post(f'/api/v1/tournaments/{tournament.id}/registrations', json={
            'team_id': team.id, 'requesting_user_id': make_user().id, 'agreements_accepted': True
        })
        assert response.status_code == 403

    def test_unregister(self, client, make_tournament, enroll, captain_of):
        tournament = make_tournament(starts_at=soon(72))
        team = enroll(tournament, 1)[0]

        response = client.delete(
            f'/api/v1/tournaments/{tournament.id}/registrations/by-team/{team.id}'
            f'?requesting_user_id={captain_of(team)}'
        )

        assert response.status_code == 200
        assert response.get_json()['registration']['status'] == 'CANCELLED'

    def test_eligibility(self, client, make_tournament, enroll, captain_of):
        tournament = make_tournament(starts_at=soon(72))
        team = enroll(tournament, 1)[0]

        data = client.get(
            f'/api/v1/tournaments/{tournament.id}/eligibility?user_id={captain_of(team)}'
        ).get_json()

        assert data['registered_team_ids'] == [team.id]
        assert data['user_registered'] is True


class TestBracketRoutes:

    @pytest.fixture
    def tournament(self, make_tournament, enroll):
        tournament = make_tournament(starts_at=soon(10))
        enroll(tournament, 4)
        return tournament

    def test_bracket_generated_inside_window(self, client, tournament):
        data = client.get(f'/api/v1/tournaments/{tournament.id}/bracket').get_json()

        assert data['available'] is True
        assert data['count'] == 3

    def test_bracket_not_available_early(self, client, make_tournament, enroll):
        tournament = make_tournament(starts_at=soon(72))
        enroll(tournament, 4)

        data = client.get(f'/api/v1/tournaments/{tournament.id}/bracket').get_json()

        assert data['available'] is False
        assert data['matches'] == []

    def test_score_flow(self, client, tournament, admin):
        client.get(f'/api/v1/tournaments/{tournament.id}/bracket')
        semi = TournamentMatch.query.filter_by(
            tournament_id=tournament.id, round_number=1, match_number=1
        ).one()
        url = f'/api/v1/tournaments/{tournament.id}/matches/{semi.id}/score?requesting_user_id={admin.id}'

        tie = client.patch(url, json={'team1_score': 3, 'team2_score': 3})
        assert tie.status_code == 409

        response = client.patch(url, json={'team1_score': 3, 'team2_score': 1})
        assert response.status_code == 200
        assert response.get_json()['match']['winner_team_id'] == semi.team_a_id

        stats = client.get(f'/api/v1/users/{tournament.created_by}/stats').get_json()
        assert stats['stats'] == []

    def test_score_requires_both_values(self, client, tournament, admin):
        client.get(f'/api/v1/tournaments/{tournament.id}/bracket')
        semi = TournamentMatch.query.filter_by(tournament_id=tournament.id).first()

        response = client.patch(
            f'/api/v1/tournaments/{tournament.id}/matches/{semi.id}/score?requesting_user_id={admin.id}',
            json={'team1_score': 3}
        )
        assert response.status_code == 400

    def test_unknown_match(self, client, tournament, admin):
        client.get(f'/api/v1/tournaments/{tournament.id}/bracket')
        response = client.patch(
            f'/api/v1/tournaments/{tournament.id}/matches/99999/score?requesting_user_id={admin.id}',
            json={'team1_score': 3, 'team2_score': 1}
        )
        assert response.status_code == 404

    def test_regenerate_requires_admin(self, client, tournament, make_user):
        response = client.post(
            f'/api/v1/tournaments/{tournament.id}/bracket/regenerate?requesting_user_id={make_user().id}'
        )
        assert response.status_code == 403

    def test_attendance_and_finalize(self, client, make_tournament, enroll, admin):
        tournament = make_tournament(max_teams=2, starts_at=soon(10))
        teams = enroll(tournament, 2)
        final = client.get(f'/api/v1/tournaments/{tournament.id}/bracket').get_json()['matches'][0]
        base = f'/api/v1/tournaments/{tournament.id}'

        client.patch(f"{base}/matches/{final['id']}/score?requesting_user_id={admin.id}",
                     json={'score_a': 2, 'score_b': 5})

        rows = client.get(f'{base}/attendance').get_json()['attendance']
        assert {r['team_id'] for r in rows} == {t.id for t in teams}

        bad = client.patch(f'{base}/attendance/by-team/{teams[0].id}?requesting_user_id={admin.id}',
                           json={'checked_in': 'yes'})
        assert bad.status_code == 400

        response = client.post(f'{base}/finalize?requesting_user_id={admin.id}')
        assert response.status_code == 200
        assert response.get_json()['tournament']['status'] == 'COMPLETE'

        winner_activities = client.get(f'/api/v1/teams/{final["team_b_id"]}/activities').get_json()
        assert 'TOURNAMENT_WINNER' in [a['type'] for a in winner_activities['activities']]

    def test_enforce_endpoint(self, client, tournament, admin):
        response = client.post(
            f'/api/v1/tournaments/{tournament.id}/attendance/enforce?requesting_user_id={admin.id}'
        )
        assert response.status_code == 200
        assert response.get_json()['cancelled'] is False
