# Register every SQLModel table before any test database is created
from app.models import (  # noqa: F401
    Athlete,
    Bout,
    ExcludedPair,
    Meet,
    MeetAthleteStatus,
    MeetTeam,
    Team,
    TeamMatRule,
)
