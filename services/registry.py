"""Team registry: team identity and membership for each sport.

A student may hold at most one membership per sport. Creation and update
check that with locking reads before writing; the unique constraint on
(student_id, sport) catches whatever slips past a racing transaction.
"""

import logging

from sqlalchemy import or_
from sqlalchemy.orm import selectinload

from errors import ConflictError, NotFoundError, ValidationError
from models import db, Match, Student, Team, TeamMember, SPORT_LABELS, is_known_sport
from services.transactions import atomic, lock_sport

logger = logging.getLogger(__name__)

MAX_TEAM_NAME_LENGTH = 100


def require_sport(sport) -> str:
    if not is_known_sport(sport):
        raise ValidationError(f'Unknown sport: {sport}', code='unknown_sport')
    return sport


def _clean_team_name(name) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError('Team name is required')
    name = name.strip()
    if len(name) > MAX_TEAM_NAME_LENGTH:
        raise ValidationError(f'Team name must be at most {MAX_TEAM_NAME_LENGTH} characters')
    return name


def _clean_member_ids(member_ids) -> list[int]:
    if member_ids is None:
        return []
    if not isinstance(member_ids, (list, tuple)):
        raise ValidationError('members must be a list of student ids')

    cleaned: list[int] = []
    for value in member_ids:
        if isinstance(value, bool):
            raise ValidationError(f'Invalid student id: {value!r}')
        try:
            cleaned.append(int(value))
        except (TypeError, ValueError):
            raise ValidationError(f'Invalid student id: {value!r}')

    if len(set(cleaned)) != len(cleaned):
        raise ValidationError('Team members must be distinct students')
    return cleaned


def _load_eligible_students(member_ids: list[int], sport: str) -> list[Student]:
    if not member_ids:
        return []

    students = Student.query.filter(Student.id.in_(member_ids)).all()
    found = {student.id for student in students}
    missing = [student_id for student_id in member_ids if student_id not in found]
    if missing:
        raise NotFoundError(f'Student(s) not found: {", ".join(str(i) for i in missing)}')

    ineligible = [student.name for student in students if not student.is_eligible(sport)]
    if ineligible:
        raise ValidationError(
            f'Not registered for {SPORT_LABELS[sport]}: {", ".join(sorted(ineligible))}'
        )
    return students


def _lock_assignments(member_ids: list[int], sport: str, exclude_team_id=None) -> list[TeamMember]:
    if not member_ids:
        return []
    query = TeamMember.query.filter(
        TeamMember.student_id.in_(member_ids),
        TeamMember.sport == sport,
    )
    if exclude_team_id is not None:
        query = query.filter(TeamMember.team_id != exclude_team_id)
    return query.with_for_update().all()


def _lock_teams_named(name: str, sport: str, exclude_team_id=None) -> list[Team]:
    query = Team.query.filter(Team.team_name == name, Team.sport == sport)
    if exclude_team_id is not None:
        query = query.filter(Team.id != exclude_team_id)
    return query.with_for_update().all()


def _assignment_conflict(assignments: list[TeamMember]) -> ConflictError:
    names = sorted(assignment.student.name for assignment in assignments if assignment.student)
    detail = f' ({", ".join(names)})' if names else ''
    return ConflictError(
        f'Conflict: student already assigned{detail}. Please refresh and try again.',
        code='student_already_assigned',
    )


def _duplicate_name_conflict(name: str) -> ConflictError:
    return ConflictError(
        f'Conflict: duplicate team name "{name}" for this sport.',
        code='duplicate_team_name',
    )


def create_team(name, sport, member_ids=None) -> Team:
    """Create a team and its memberships in one transaction."""
    sport = require_sport(sport)
    name = _clean_team_name(name)
    member_ids = _clean_member_ids(member_ids)

    with atomic('create team'):
        _load_eligible_students(member_ids, sport)

        assignments = _lock_assignments(member_ids, sport)
        if assignments:
            raise _assignment_conflict(assignments)

        if _lock_teams_named(name, sport):
            raise _duplicate_name_conflict(name)

        team = Team(team_name=name, sport=sport)
        for student_id in member_ids:
            team.members.append(TeamMember(student_id=student_id, sport=sport))
        db.session.add(team)
        db.session.flush()
        team_id = team.id

    logger.info('Created team %s "%s" for %s with %d member(s)', team_id, name, sport, len(member_ids))
    return team


def update_team(team_id, name=None, member_ids=None) -> Team:
    """Rename a team and/or replace its members. ``None`` keeps the current value.

    Members already on another team of the same sport are rejected, as are
    names taken by another team of the sport. The sport never changes.
    """
    new_name = _clean_team_name(name) if name is not None else None
    new_members = _clean_member_ids(member_ids) if member_ids is not None else None

    with atomic('update team'):
        team = Team.query.filter_by(id=team_id).with_for_update().first()
        if team is None:
            raise NotFoundError(f'Team {team_id} not found')

        if new_members is not None:
            _load_eligible_students(new_members, team.sport)
            assignments = _lock_assignments(new_members, team.sport, exclude_team_id=team.id)
            if assignments:
                raise _assignment_conflict(assignments)

        if new_name is not None and new_name != team.team_name:
            if _lock_teams_named(new_name, team.sport, exclude_team_id=team.id):
                raise _duplicate_name_conflict(new_name)
            team.team_name = new_name

        if new_members is not None:
            team.members.clear()
            # deletes must reach the database before the reinserts
            db.session.flush()
            for student_id in new_members:
                team.members.append(TeamMember(student_id=student_id, sport=team.sport))

        db.session.flush()

    logger.info('Updated team %s', team_id)
    return team


def delete_team(team_id) -> None:
    """Delete a team and its memberships.

    Refused while any match of the sport's bracket references the team.
    """
    with atomic('delete team'):
        team = db.session.get(Team, team_id)
        if team is None:
            raise NotFoundError(f'Team {team_id} not found')

        lock_sport(team.sport)

        referenced = Match.query.filter(
            Match.sport == team.sport,
            or_(
                Match.team1_id == team.id,
                Match.team2_id == team.id,
                Match.winner_id == team.id,
            ),
        ).count()
        if referenced:
            raise ConflictError(
                f'Team "{team.team_name}" is part of the current {SPORT_LABELS[team.sport]} bracket. '
                'Reset the bracket before deleting it.',
                code='team_in_bracket',
            )

        db.session.delete(team)

    logger.info('Deleted team %s', team_id)


def get_team(team_id) -> Team:
    team = (
        Team.query.options(selectinload(Team.members).joinedload(TeamMember.student))
        .filter_by(id=team_id)
        .first()
    )
    if team is None:
        raise NotFoundError(f'Team {team_id} not found')
    return team


def list_teams(sport) -> list[Team]:
    """Teams of a sport in creation order, which is also bracket seeding order."""
    sport = require_sport(sport)
    return (
        Team.query.options(selectinload(Team.members).joinedload(TeamMember.student))
        .filter_by(sport=sport)
        .order_by(Team.created_at.asc(), Team.id.asc())
        .all()
    )
