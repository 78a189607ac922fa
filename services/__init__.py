"""
Services package for the Sports Day application
Contains the roster, team registry and bracket engine
"""

from .transactions import atomic, lock_sport
from .registry import create_team, update_team, delete_team, get_team, list_teams, require_sport
from .bracket import (
    generate_bracket,
    record_result,
    reset_bracket,
    get_bracket,
    bracket_summary,
)
from .roster import (
    list_students,
    available_students,
    get_student,
    register_student,
    update_student,
    delete_student,
)

__all__ = [
    'atomic',
    'lock_sport',
    'create_team',
    'update_team',
    'delete_team',
    'get_team',
    'list_teams',
    'require_sport',
    'generate_bracket',
    'record_result',
    'reset_bracket',
    'get_bracket',
    'bracket_summary',
    'list_students',
    'available_students',
    'get_student',
    'register_student',
    'update_student',
    'delete_student',
]
