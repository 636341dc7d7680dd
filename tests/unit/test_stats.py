"""
Unit tests for StatsLedger counters and the roster lookups they rely on.
"""
from datetime import datetime

import pytest

from league.models import db, UserStats

NOW = datetime(2030, 6, 1, 12, 0, 0)


@pytest.fixture
def stats(app):
    return app.stats


class TestStatsLedger:

    def test_sport_falls_back_to_default(self, stats, make_team):
        assert stats.sport_for_team(make_team(sport=None).id) == 'basketball'
        assert stats.sport_for_team(make_team(sport='hockey').id) == 'hockey'

    def test_record_match_creates_rows(self, stats, make_team):
        winner, loser = make_team(players=2), make_team(players=0)

        stats.record_match(winner.id, loser.id, NOW)
        db.session.commit()

        assert UserStats.query.filter_by(match_wins=1).count() == 3
        assert UserStats.query.filter_by(match_losses=1).count() == 1
        assert UserStats.query.first().last_updated == NOW

    def test_counters_accumulate(self, stats, make_team, captain_of):
        winner, loser = make_team(players=0), make_team(players=0)

        stats.record_match(winner.id, loser.id, NOW)
        stats.record_match(winner.id, loser.id, NOW)
        titled = stats.grant_title(winner.id, NOW)
        db.session.commit()

        row = db.session.get(UserStats, (captain_of(winner), 'basketball'))
        assert (row.match_wins, row.match_losses, row.titles) == (2, 0, 1)
        assert titled == 1

    def test_sports_tracked_separately(self, stats, make_user, make_team):
        player = make_user()
        soccer = make_team(sport='soccer', captain=player, players=0)
        tennis = make_team(sport='tennis', captain=player, players=0)

        stats.grant_title(soccer.id, NOW)
        stats.grant_title(tennis.id, NOW)
        db.session.commit()

        assert [r.sport for r in stats.for_user(player.id)] == ['soccer', 'tennis']


class TestRoster:

    def test_captain_lookup(self, app, make_team, captain_of, make_user):
        team = make_team()
        assert app.roster.is_captain(team.id, captain_of(team))
        assert not app.roster.is_captain(team.id, make_user().id)
        assert not app.roster.is_captain(team.id, None)

    def test_unknown_user_is_not_admin(self, app, db_session):
        assert app.accounts.role(424242) == 'USER'
        assert not app.accounts.is_admin(None)
