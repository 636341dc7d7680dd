from typing import List, Optional

from .models import db, User, Team, TeamMember


class AccountService:
    """Read-only view of user accounts and roles."""

    def role(self, user_id: Optional[int]) -> str:
        user = db.session.get(User, user_id) if user_id is not None else None
        return user.role if user else 'USER'

    def is_admin(self, user_id: Optional[int]) -> bool:
        return self.role(user_id) == 'ADMIN'

    def username(self, user_id: Optional[int]) -> Optional[str]:
        user = db.session.get(User, user_id) if user_id is not None else None
        return user.username if user else None


class RosterService:
    """Team membership lookups used by registration and bracket code."""

    def get_team(self, team_id: int) -> Optional[Team]:
        return db.session.get(Team, team_id)

    def team_name(self, team_id: int) -> Optional[str]:
        team = self.get_team(team_id)
        return team.name if team else None

    def members_of(self, team_id: int) -> List[int]:
        rows = TeamMember.query.filter_by(team_id=team_id).order_by(TeamMember.id).all()
        return [m.user_id for m in rows]

    def is_captain(self, team_id: int, user_id: Optional[int]) -> bool:
        if user_id is None:
            return False
        return TeamMember.query.filter_by(
            team_id=team_id, user_id=user_id, role='CAPTAIN'
        ).first() is not None
