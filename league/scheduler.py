import logging
from datetime import datetime, timedelta
from threading import Event as ThreadEvent, Thread
from typing import Optional

from flask import Flask

from shared.events import ActivityType, dedupe_key
from shared.state_machine import TournamentStatus
from .activity_feed import ActivityFeed
from .lifecycle import sync_status, tournament_transaction
from .models import db, Tournament
from .registration import RegistrationLedger
from .roster import RosterService

logger = logging.getLogger(__name__)


class TournamentScheduler:
    """
    Periodic scan that sends schedule notices and locks signups.

    A mark counts once it has been reached and the tournament has not started,
    so a run that misses a mark is covered by the next one. Dedupe keys make
    repeated runs harmless.
    """

    def __init__(
        self,
        app: Flask = None,
        feed: ActivityFeed = None,
        ledger: RegistrationLedger = None,
        roster: RosterService = None,
        interval_seconds: int = None
    ):
        self.app = app
        self.feed = feed or ActivityFeed()
        self.roster = roster or RosterService()
        self.ledger = ledger or RegistrationLedger(self.feed, self.roster)
        self.interval_seconds = interval_seconds
        self._stop = ThreadEvent()
        self._thread: Optional[Thread] = None

    def _config(self, key: str, default):
        if self.app is None:
            return default
        return self.app.config.get(key, default)

    def run_once(self, now: datetime = None) -> dict:
        now = now or datetime.utcnow()
        bracket_window = timedelta(hours=self._config('BRACKET_WINDOW_HOURS', 24))
        starts_soon = timedelta(hours=self._config('STARTS_SOON_HOURS', 12))

        candidates = (
            Tournament.query
            .filter(
                Tournament.status.notin_([TournamentStatus.COMPLETE.value, TournamentStatus.DRAFT.value]),
                Tournament.starts_at > now,
                Tournament.starts_at <= now + bracket_window
            )
            .order_by(Tournament.starts_at)
            .all()
        )

        summary = {'scanned': len(candidates), 'notified': 0, 'locked': 0}
        for tournament_id in [t.id for t in candidates]:
            activities, locked = self._process(tournament_id, now, bracket_window, starts_soon)
            emitted = [a for a in activities if a is not None]
            summary['notified'] += len(emitted)
            summary['locked'] += int(locked)
            self.feed.publish(emitted)

        if summary['notified'] or summary['locked']:
            logger.info(
                f"Scheduler pass: {summary['scanned']} tournaments, "
                f"{summary['notified']} notices, {summary['locked']} locked"
            )
        return summary

    def _process(self, tournament_id: int, now: datetime, bracket_window: timedelta, starts_soon: timedelta):
        activities = []
        locked = False
        with tournament_transaction(tournament_id) as tournament:
            if tournament.status == TournamentStatus.COMPLETE.value or tournament.starts_at <= now:
                return activities, locked

            team_ids = self.ledger.active_team_ids(tournament_id)

            if now >= tournament.starts_at - bracket_window:
                activities.extend(self._notify(tournament, team_ids, ActivityType.TOURNAMENT_BRACKET_AVAILABLE))
                if tournament.status == TournamentStatus.SIGNUPS_OPEN.value:
                    # Signups close at the bracket mark.
                    target = sync_status(tournament, now, self._config('BRACKET_WINDOW_HOURS', 24))
                    locked = target == TournamentStatus.LOCKED

            if now >= tournament.starts_at - starts_soon:
                activities.extend(self._notify(tournament, team_ids, ActivityType.TOURNAMENT_STARTS_SOON))

        return activities, locked

    def _notify(self, tournament: Tournament, team_ids, activity_type: ActivityType) -> list:
        return [
            self.feed.emit(
                activity_type,
                team_id=team_id,
                dedupe_key=dedupe_key(activity_type, tournament.id, team_id),
                tournament_id=tournament.id,
                team_name=self.roster.team_name(team_id),
                extras={
                    'tournament_name': tournament.name,
                    'starts_at': tournament.starts_at.isoformat(),
                }
            )
            for team_id in team_ids
        ]

    # ---- timer ----

    def _loop(self):
        interval = self.interval_seconds or self._config('SCHEDULER_INTERVAL_SECONDS', 600)
        while not self._stop.wait(interval):
            self.tick()

    def tick(self):
        with self.app.app_context():
            try:
                self.run_once()
            except Exception:
                logger.exception("Scheduler pass failed")
            finally:
                db.session.remove()

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = Thread(target=self._loop, name='tournament-scheduler', daemon=True)
        self._thread.start()
        logger.info("Tournament scheduler started")

    def stop(self, timeout: float = 5):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_forever(self):
        """Blocking loop for running the scheduler as its own process."""
        self.tick()
        self._loop()
