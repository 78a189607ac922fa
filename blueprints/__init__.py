"""
Blueprints package for the Sports Day application
Contains the JSON API blueprints for auth, students, teams and brackets
"""

from .auth import auth_bp
from .students import students_bp
from .teams import teams_bp
from .brackets import brackets_bp

__all__ = ['auth_bp', 'students_bp', 'teams_bp', 'brackets_bp']
