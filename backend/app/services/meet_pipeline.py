"""
Meet Pipeline - load a meet from the database, run the engine stages, write back.

Stages:
1. Pairings: drop non-locked bouts, generate new ones for the attending pool
2. Mats: batch-assign every bout to a mat with an initial order
3. Sequence: reorder within each mat to reduce rest conflicts

Each public function is one unit of work: a single commit at the end, a
rollback and re-raise on any exception. The engine modules never see the
session; rows become AthleteEntry / BoutEntry here and placements are
written back here.

(meet_id, mat, order) is unique in the bout table, so placements are
written in two flushes: clear the rows being moved, then set the new slots.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from sqlmodel import Session, select

from app.models import (
    Athlete,
    AttendanceStatus,
    Bout,
    ExcludedPair,
    Meet,
    MeetAthleteStatus,
    MeetTeam,
    Team,
    TeamMatRule,
)
from app.services.bout_sequencer import DEFAULT_STRATEGY, sequence_bouts
from app.services.mat_assigner import assign_all, assign_one
from app.services.meet_settings import (
    DEFAULT_TUNING,
    MeetConfigError,
    MeetSchedulingError,
    PairingSettings,
    SchedulingTuning,
)
from app.services.meet_types import (
    DEFAULT_MAT_RULE,
    SOURCE_MANUAL,
    STATUS_COMING,
    STATUS_NOT_COMING,
    VALID_STATUSES,
    AthleteEntry,
    BoutEntry,
    MatRule,
    PairKey,
    pair_key,
)
from app.services.pairing_generator import generate_pairings
from app.services.pairing_score import CandidateOpponent, ineligibility_reason, rank_candidates, score_pair

logger = logging.getLogger(__name__)

DEFAULT_REST_PENALTY = 10.0
MAX_CANDIDATE_LIMIT = 50

T = TypeVar("T")


class MeetNotFoundError(MeetSchedulingError):
    pass


class AthleteNotFoundError(MeetSchedulingError):
    pass


class BoutNotFoundError(MeetSchedulingError):
    pass


class AthleteNotAttendingError(MeetConfigError):
    """Athlete is marked NOT_COMING for this meet"""

    pass


# ============================================================================
# Meet context
# ============================================================================


@dataclass
class MeetContext:
    """Everything the engine needs about one meet, detached from the session."""

    meet: Meet
    settings: PairingSettings
    roster: Dict[int, AthleteEntry]  # Active athletes of attending teams, any status
    statuses: Dict[int, str]
    excluded: List[PairKey] = field(default_factory=list)
    mat_rules: List[MatRule] = field(default_factory=list)
    home_prefers_same_mat: bool = False

    @property
    def pool(self) -> List[AthleteEntry]:
        return [a for a in self.roster.values() if a.attending]


def settings_from_meet(meet: Meet) -> PairingSettings:
    return PairingSettings(
        max_age_gap_days=meet.max_age_gap_days,
        max_weight_diff_pct=meet.max_weight_diff_pct,
        first_year_only_with_first_year=meet.first_year_only_with_first_year,
        allow_same_team_matches=meet.allow_same_team_matches,
        balance_team_pairs=meet.balance_team_pairs,
        balance_penalty=meet.balance_penalty,
        matches_per_athlete=meet.matches_per_athlete,
        max_matches_per_athlete=meet.max_matches_per_athlete,
    ).validate()


def get_meet_or_raise(session: Session, meet_id: int) -> Meet:
    meet = session.get(Meet, meet_id)
    if not meet:
        raise MeetNotFoundError(f"Meet {meet_id} not found")
    return meet


def load_meet_context(session: Session, meet_id: int) -> MeetContext:
    meet = get_meet_or_raise(session, meet_id)

    team_ids = session.exec(select(MeetTeam.team_id).where(MeetTeam.meet_id == meet_id)).all()
    statuses = {
        row.athlete_id: AttendanceStatus(row.status).value
        for row in session.exec(select(MeetAthleteStatus).where(MeetAthleteStatus.meet_id == meet_id)).all()
    }

    roster: Dict[int, AthleteEntry] = {}
    if team_ids:
        athletes = session.exec(
            select(Athlete)
            .where(Athlete.team_id.in_(team_ids), Athlete.active == True)  # noqa: E712
            .order_by(Athlete.id)
        ).all()
        for athlete in athletes:
            roster[athlete.id] = _athlete_entry(athlete, statuses.get(athlete.id, STATUS_COMING))

    excluded = [
        (row.athlete_id_a, row.athlete_id_b)
        for row in session.exec(select(ExcludedPair).where(ExcludedPair.meet_id == meet_id)).all()
    ]

    mat_rules: List[MatRule] = []
    home_prefers_same_mat = False
    if meet.home_team_id is not None:
        home_team = session.get(Team, meet.home_team_id)
        home_prefers_same_mat = bool(home_team and home_team.prefer_same_mat)
        mat_rules = _home_mat_rules(session, meet.home_team_id, meet.num_mats)

    return MeetContext(
        meet=meet,
        settings=settings_from_meet(meet),
        roster=roster,
        statuses=statuses,
        excluded=excluded,
        mat_rules=mat_rules,
        home_prefers_same_mat=home_prefers_same_mat,
    )


def _athlete_entry(athlete: Athlete, status: str) -> AthleteEntry:
    return AthleteEntry(
        id=athlete.id,
        team_id=athlete.team_id,
        weight=athlete.weight,
        birthdate=athlete.birthdate,
        experience_years=athlete.experience_years,
        skill=athlete.skill,
        status=status,
    )


def _home_mat_rules(session: Session, team_id: int, num_mats: int) -> List[MatRule]:
    """Rules indexed by mat (1-based mat_index → list position); missing mats stay permissive."""
    rows = session.exec(
        select(TeamMatRule).where(TeamMatRule.team_id == team_id).order_by(TeamMatRule.mat_index)
    ).all()
    rules = [DEFAULT_MAT_RULE] * max(0, num_mats)
    for row in rows:
        if 1 <= row.mat_index <= num_mats:
            rules[row.mat_index - 1] = MatRule(
                min_experience=row.min_experience,
                max_experience=row.max_experience,
                min_age=row.min_age,
                max_age=row.max_age,
                color=row.color,
            )
    return rules


def load_bouts(session: Session, meet_id: int) -> List[Bout]:
    return list(
        session.exec(select(Bout).where(Bout.meet_id == meet_id).order_by(Bout.mat, Bout.order, Bout.id)).all()
    )


def bout_entry(row: Bout) -> BoutEntry:
    return BoutEntry(
        id=row.id,
        red_id=row.red_id,
        green_id=row.green_id,
        score=row.pairing_score,
        notes=row.notes,
        mat=row.mat,
        order=row.order,
        locked=row.locked,
        source=row.source,
        effective_weight_pct=row.effective_weight_pct,
    )


def _write_placements(session: Session, rows: Sequence[Bout], placed: Sequence[BoutEntry]) -> int:
    """Copy (mat, order) from engine entries onto rows; returns rows that moved."""
    by_id = {row.id: row for row in rows}
    moves: List[Tuple[Bout, int, int]] = []
    for entry in placed:
        row = by_id.get(entry.id)
        if row is None:
            raise MeetSchedulingError(f"Placement for unknown bout {entry.id}")
        if row.mat != entry.mat or row.order != entry.order:
            moves.append((row, entry.mat, entry.order))

    for row, _mat, _order in moves:
        row.mat = None
        row.order = None
        session.add(row)
    session.flush()

    for row, mat, order in moves:
        row.mat = mat
        row.order = order
        session.add(row)
    session.flush()
    return len(moves)


def _renumber_mats(session: Session, meet_id: int, mats: Sequence[int]) -> None:
    """Close order gaps on the given mats, keeping relative order."""
    if not mats:
        return
    rows = [row for row in load_bouts(session, meet_id) if row.mat in set(mats)]
    placed: List[BoutEntry] = []
    per_mat: Dict[int, int] = {}
    for row in rows:
        per_mat[row.mat] = per_mat.get(row.mat, 0) + 1
        placed.append(
            BoutEntry(id=row.id, red_id=row.red_id, green_id=row.green_id, mat=row.mat, order=per_mat[row.mat])
        )
    _write_placements(session, rows, placed)


def _unit_of_work(session: Session, work: Callable[[], T]) -> T:
    try:
        result = work()
        session.commit()
        return result
    except Exception:
        session.rollback()
        raise


# ============================================================================
# Stages (no commit; callers wrap them in a unit of work)
# ============================================================================


def _regenerate(session: Session, ctx: MeetContext, tuning: SchedulingTuning) -> Dict:
    meet_id = ctx.meet.id
    rows = load_bouts(session, meet_id)
    locked_rows = [row for row in rows if row.locked]
    removed = 0
    for row in rows:
        if not row.locked:
            session.delete(row)
            removed += 1
    session.flush()
    # Orders stay dense on mats that keep locked bouts
    _renumber_mats(session, meet_id, sorted({row.mat for row in locked_rows if row.mat is not None}))

    result = generate_pairings(
        ctx.pool,
        ctx.settings,
        locked_bouts=[bout_entry(row) for row in locked_rows],
        excluded_pairs=ctx.excluded,
        tuning=tuning,
    )
    for entry in result.new_bouts:
        session.add(
            Bout(
                meet_id=meet_id,
                red_id=entry.red_id,
                green_id=entry.green_id,
                pairing_score=entry.score,
                effective_weight_pct=entry.effective_weight_pct,
                notes=entry.notes,
                source=entry.source,
            )
        )
    session.flush()

    logger.info(
        "PAIRINGS: meet_id=%s removed=%s created=%s locked_kept=%s unmatched=%s",
        meet_id,
        removed,
        len(result.new_bouts),
        len(locked_rows),
        len(result.unmatched_ids),
    )
    summary = result.to_dict()
    summary["removed"] = removed
    return summary


def _assign(
    session: Session,
    ctx: MeetContext,
    min_rest_gap: Optional[int],
    rest_penalty: float,
    tuning: SchedulingTuning,
) -> Dict:
    meet = ctx.meet
    rows = load_bouts(session, meet.id)
    gap = meet.rest_gap if min_rest_gap is None else min_rest_gap
    placed = assign_all(
        [bout_entry(row) for row in rows],
        meet.num_mats,
        gap,
        rest_penalty,
        tuning,
        athletes=ctx.roster,
        mat_rules=ctx.mat_rules,
        meet_date=meet.date,
        home_team_id=meet.home_team_id,
        prefer_same_mat_for_home=ctx.home_prefers_same_mat,
    )
    moved = _write_placements(session, rows, placed)

    fill = [0] * meet.num_mats
    for entry in placed:
        fill[entry.mat - 1] += 1
    logger.info("MATS: meet_id=%s bouts=%s moved=%s fill=%s", meet.id, len(placed), moved, fill)
    return {"assigned": len(placed), "moved": moved, "mat_counts": fill}


def _sequence(
    session: Session,
    ctx: MeetContext,
    strategy: str,
    seed: Optional[int],
    time_budget_ms: Optional[int],
    pin_locked: bool,
    tuning: SchedulingTuning,
) -> Dict:
    meet = ctx.meet
    rows = load_bouts(session, meet.id)
    result = sequence_bouts(
        [bout_entry(row) for row in rows],
        meet.num_mats,
        meet.rest_gap,
        strategy,
        rng=random.Random(seed),
        statuses=ctx.statuses,
        pin_locked=pin_locked,
        time_budget_ms=time_budget_ms,
        tuning=tuning,
    )
    moved = _write_placements(session, rows, result.bouts)
    logger.info(
        "REORDER: meet_id=%s strategy=%s moved=%s conflicts_before=%s conflicts_after=%s",
        meet.id,
        strategy,
        moved,
        result.histogram_before,
        result.histogram_after,
    )
    summary = result.to_dict()
    summary["moved"] = moved
    return summary


# ============================================================================
# Public operations
# ============================================================================


def regenerate_pairings(session: Session, meet_id: int, tuning: SchedulingTuning = DEFAULT_TUNING) -> Dict:
    """Replace every non-locked bout with a fresh generation pass."""

    def work():
        ctx = load_meet_context(session, meet_id)
        return _regenerate(session, ctx, tuning)

    return _unit_of_work(session, work)


def assign_mats(
    session: Session,
    meet_id: int,
    min_rest_gap: Optional[int] = None,
    rest_penalty: float = DEFAULT_REST_PENALTY,
    sequence: bool = False,
    strategy: str = DEFAULT_STRATEGY,
    seed: Optional[int] = None,
    tuning: SchedulingTuning = DEFAULT_TUNING,
) -> Dict:
    """Batch mat assignment, optionally followed by sequencing in the same transaction."""

    def work():
        ctx = load_meet_context(session, meet_id)
        summary = {"mats": _assign(session, ctx, min_rest_gap, rest_penalty, tuning)}
        if sequence:
            summary["sequence"] = _sequence(session, ctx, strategy, seed, None, True, tuning)
        return summary

    return _unit_of_work(session, work)


def reorder_bouts(
    session: Session,
    meet_id: int,
    strategy: str = DEFAULT_STRATEGY,
    seed: Optional[int] = None,
    time_budget_ms: Optional[int] = None,
    pin_locked: bool = True,
    tuning: SchedulingTuning = DEFAULT_TUNING,
) -> Dict:
    def work():
        ctx = load_meet_context(session, meet_id)
        return _sequence(session, ctx, strategy, seed, time_budget_ms, pin_locked, tuning)

    return _unit_of_work(session, work)


def run_full_pipeline(
    session: Session,
    meet_id: int,
    strategy: str = DEFAULT_STRATEGY,
    seed: Optional[int] = None,
    rest_penalty: float = DEFAULT_REST_PENALTY,
    time_budget_ms: Optional[int] = None,
    tuning: SchedulingTuning = DEFAULT_TUNING,
) -> Dict:
    """Pairings → mats → sequence, committed together or not at all."""

    def work():
        ctx = load_meet_context(session, meet_id)
        return {
            "pairings": _regenerate(session, ctx, tuning),
            "mats": _assign(session, ctx, None, rest_penalty, tuning),
            "sequence": _sequence(session, ctx, strategy, seed, time_budget_ms, True, tuning),
        }

    return _unit_of_work(session, work)


def add_manual_bout(
    session: Session,
    meet_id: int,
    red_id: int,
    green_id: int,
    locked: bool = False,
    tuning: SchedulingTuning = DEFAULT_TUNING,
) -> Tuple[Bout, bool]:
    """
    Coach-created bout placed on one mat without moving any existing bout.

    Eligibility rules are not enforced (the coach overrides them) but the
    broken rule is recorded in the notes. Returns (bout, created); an
    existing bout for the same pair is returned unchanged with created=False.

    Raises:
        AthleteNotFoundError: athlete not on an attending team
        AthleteNotAttendingError: athlete marked NOT_COMING
        MeetConfigError: red_id == green_id, zero mats, bad mat bands
    """

    def work():
        ctx = load_meet_context(session, meet_id)
        if red_id == green_id:
            raise MeetConfigError("A bout needs two different athletes")
        red = _roster_athlete(ctx, red_id)
        green = _roster_athlete(ctx, green_id)
        for athlete in (red, green):
            if not athlete.attending:
                raise AthleteNotAttendingError(f"Athlete {athlete.id} is marked {STATUS_NOT_COMING}")

        rows = load_bouts(session, meet_id)
        key = pair_key(red_id, green_id)
        for row in rows:
            if pair_key(row.red_id, row.green_id) == key:
                return row, False

        score = score_pair(red, green, tuning)
        notes = score.describe()
        reason = ineligibility_reason(red, green, ctx.settings, set(ctx.excluded))
        if reason:
            notes += f" override={reason}"

        entry = BoutEntry(red_id=red_id, green_id=green_id, source=SOURCE_MANUAL)
        placement = assign_one(
            entry,
            [bout_entry(row) for row in rows],
            ctx.roster,
            ctx.mat_rules,
            ctx.meet.num_mats,
            ctx.meet.date,
            home_team_id=ctx.meet.home_team_id,
            prefer_same_mat_for_home=ctx.home_prefers_same_mat,
            tuning=tuning,
        )
        bout = Bout(
            meet_id=meet_id,
            red_id=red_id,
            green_id=green_id,
            pairing_score=round(score.baseline_cost, 4),
            effective_weight_pct=round(score.effective_weight_pct, 4),
            notes=notes,
            mat=placement.mat,
            order=placement.order,
            locked=locked,
            source=SOURCE_MANUAL,
        )
        session.add(bout)
        session.flush()
        logger.info(
            "ADD_BOUT: meet_id=%s red=%s green=%s mat=%s order=%s penalty=%s",
            meet_id,
            red_id,
            green_id,
            placement.mat,
            placement.order,
            placement.penalty,
        )
        return bout, True

    bout, created = _unit_of_work(session, work)
    session.refresh(bout)
    return bout, created


def _roster_athlete(ctx: MeetContext, athlete_id: int) -> AthleteEntry:
    athlete = ctx.roster.get(athlete_id)
    if athlete is None:
        raise AthleteNotFoundError(f"Athlete {athlete_id} is not in meet {ctx.meet.id}")
    return athlete


def list_candidates(
    session: Session,
    meet_id: int,
    athlete_id: int,
    limit: int = 20,
    tuning: SchedulingTuning = DEFAULT_TUNING,
) -> Tuple[AthleteEntry, List[CandidateOpponent]]:
    """Ranked eligible opponents for one attending athlete (read-only)."""
    if not 1 <= limit <= MAX_CANDIDATE_LIMIT:
        raise MeetConfigError(f"limit must be between 1 and {MAX_CANDIDATE_LIMIT}, got {limit}")
    ctx = load_meet_context(session, meet_id)
    target = _roster_athlete(ctx, athlete_id)
    if not target.attending:
        raise AthleteNotAttendingError(f"Athlete {athlete_id} is marked {STATUS_NOT_COMING}")
    ranked = rank_candidates(target, ctx.pool, ctx.settings, set(ctx.excluded), limit=limit, tuning=tuning)
    return target, ranked


def set_athlete_status(session: Session, meet_id: int, athlete_id: int, status: str) -> Dict:
    """
    Record attendance. NOT_COMING removes every bout of the athlete (locked
    ones included) and closes the order gaps on the mats they left.
    """
    if status not in VALID_STATUSES:
        raise MeetConfigError(f"Unknown status '{status}'. Expected one of {sorted(VALID_STATUSES)}")

    def work():
        ctx = load_meet_context(session, meet_id)
        _roster_athlete(ctx, athlete_id)

        row = session.exec(
            select(MeetAthleteStatus).where(
                MeetAthleteStatus.meet_id == meet_id, MeetAthleteStatus.athlete_id == athlete_id
            )
        ).first()
        if row is None:
            row = MeetAthleteStatus(meet_id=meet_id, athlete_id=athlete_id, status=status)
        else:
            row.status = status
        session.add(row)

        removed = 0
        touched_mats: List[int] = []
        if status == STATUS_NOT_COMING:
            for bout in load_bouts(session, meet_id):
                if athlete_id in (bout.red_id, bout.green_id):
                    if bout.mat is not None and bout.mat not in touched_mats:
                        touched_mats.append(bout.mat)
                    session.delete(bout)
                    removed += 1
            session.flush()
            _renumber_mats(session, meet_id, touched_mats)

        logger.info(
            "STATUS: meet_id=%s athlete_id=%s status=%s removed_bouts=%s", meet_id, athlete_id, status, removed
        )
        return {
            "athlete_id": athlete_id,
            "status": status,
            "removed_bouts": removed,
            "renumbered_mats": sorted(touched_mats),
        }

    return _unit_of_work(session, work)


def set_bout_lock(session: Session, bout_id: int, locked: bool) -> Bout:
    def work():
        bout = session.get(Bout, bout_id)
        if not bout:
            raise BoutNotFoundError(f"Bout {bout_id} not found")
        bout.locked = locked
        session.add(bout)
        return bout

    bout = _unit_of_work(session, work)
    session.refresh(bout)
    return bout


def delete_bout(session: Session, bout_id: int) -> None:
    """Delete one bout and close the gap it leaves on its mat."""

    def work():
        bout = session.get(Bout, bout_id)
        if not bout:
            raise BoutNotFoundError(f"Bout {bout_id} not found")
        meet_id, mat = bout.meet_id, bout.mat
        session.delete(bout)
        session.flush()
        if mat is not None:
            _renumber_mats(session, meet_id, [mat])
        logger.info("DELETE_BOUT: meet_id=%s bout_id=%s mat=%s", meet_id, bout_id, mat)

    _unit_of_work(session, work)
