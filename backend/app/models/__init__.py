from app.models.athlete import Athlete
from app.models.athlete_status import AttendanceStatus, MeetAthleteStatus
from app.models.bout import Bout
from app.models.excluded_pair import ExcludedPair
from app.models.mat_rule import TeamMatRule
from app.models.meet import Meet
from app.models.meet_team import MeetTeam
from app.models.team import Team

__all__ = [
    "Athlete",
    "AttendanceStatus",
    "MeetAthleteStatus",
    "Bout",
    "ExcludedPair",
    "TeamMatRule",
    "Meet",
    "MeetTeam",
    "Team",
]
