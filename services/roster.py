"""Student roster with per-sport eligibility."""

import logging

from errors import ConflictError, NotFoundError, ValidationError
from models import db, Student, TeamMember, SPORTS, SPORT_LABELS
from services.registry import require_sport
from services.transactions import atomic

logger = logging.getLogger(__name__)

TEXT_FIELDS = ('name', 'roll_number', 'email', 'phone')
# Frozen while the student plays on any team.
IDENTITY_FIELDS = (('name', 'name'), ('roll_number', 'roll number'))
TRUE_STRINGS = {'1', 'true', 'yes', 'on'}
FALSE_STRINGS = {'0', 'false', 'no', 'off', ''}


def _as_bool(field: str, value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
    raise ValidationError(f'{field} must be true or false')


def _student_fields(payload: dict) -> dict:
    fields = {}
    for name in TEXT_FIELDS:
        if name not in payload or payload[name] is None:
            continue
        value = str(payload[name]).strip()
        if name in ('email', 'phone') and not value:
            value = None
        fields[name] = value
    for sport in SPORTS:
        if sport in payload and payload[sport] is not None:
            fields[sport] = _as_bool(sport, payload[sport])
    return fields


def list_students() -> list[Student]:
    return Student.query.order_by(Student.name.asc(), Student.id.asc()).all()


def available_students(sport) -> list[Student]:
    """Students eligible for a sport who are not yet on one of its teams."""
    sport = require_sport(sport)
    assigned = db.select(TeamMember.student_id).where(TeamMember.sport == sport)
    return (
        Student.query.filter(
            getattr(Student, sport).is_(True),
            Student.id.notin_(assigned),
        )
        .order_by(Student.name.asc(), Student.id.asc())
        .all()
    )


def get_student(student_id) -> Student:
    student = db.session.get(Student, student_id)
    if student is None:
        raise NotFoundError(f'Student {student_id} not found')
    return student


def register_student(payload: dict) -> Student:
    fields = _student_fields(payload)
    errors = Student.validate_format(fields.get('name'), fields.get('roll_number'))
    if errors:
        raise ValidationError('; '.join(errors))

    with atomic('register student'):
        if Student.query.filter_by(roll_number=fields['roll_number']).first():
            raise ConflictError('Roll number already exists', code='duplicate_roll_number')
        student = Student(**fields)
        db.session.add(student)
        db.session.flush()
        student_id = student.id

    logger.info('Registered student %s (%s)', student_id, fields['roll_number'])
    return student


def update_student(student_id, payload: dict) -> Student:
    """Update roster fields.

    While the student plays on a team, the name and roll number are frozen
    and eligibility for that team's sport cannot be withdrawn. Contact
    fields can always change.
    """
    fields = _student_fields(payload)

    with atomic('update student'):
        student = Student.query.filter_by(id=student_id).with_for_update().first()
        if student is None:
            raise NotFoundError(f'Student {student_id} not found')

        errors = Student.validate_format(
            fields.get('name', student.name),
            fields.get('roll_number', student.roll_number),
        )
        if errors:
            raise ValidationError('; '.join(errors))

        roll_number = fields.get('roll_number')
        if roll_number and roll_number != student.roll_number:
            taken = Student.query.filter(
                Student.roll_number == roll_number,
                Student.id != student.id,
            ).first()
            if taken:
                raise ConflictError('Roll number already exists', code='duplicate_roll_number')

        assigned = student.assigned_sports()
        if assigned:
            renamed = [
                label
                for field, label in IDENTITY_FIELDS
                if fields.get(field) and fields[field] != getattr(student, field)
            ]
            if renamed:
                raise ConflictError(
                    f'{student.name} is on a team; {" and ".join(renamed)} cannot change. '
                    'Remove them from the team first.',
                    code='student_assigned',
                )

        revoked = [sport for sport in SPORTS if fields.get(sport) is False and sport in assigned]
        if revoked:
            labels = ', '.join(SPORT_LABELS[sport] for sport in revoked)
            raise ConflictError(
                f'{student.name} is on a team for {labels}. Remove them from the team first.',
                code='student_assigned',
            )

        student.update_student(**fields)
        db.session.flush()

    logger.info('Updated student %s', student_id)
    return student


def delete_student(student_id) -> None:
    with atomic('delete student'):
        student = Student.query.filter_by(id=student_id).with_for_update().first()
        if student is None:
            raise NotFoundError(f'Student {student_id} not found')
        if student.memberships:
            raise ConflictError(
                f'{student.name} is on a team. Remove them from the team first.',
                code='student_assigned',
            )
        db.session.delete(student)

    logger.info('Deleted student %s', student_id)
