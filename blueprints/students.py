from flask import Blueprint, jsonify

from blueprints.auth import require_admin
from blueprints.common import json_body, success
from services import roster

students_bp = Blueprint('students', __name__, url_prefix='/api/students')


@students_bp.route('', methods=['GET'])
def list_students():
    return jsonify([student.to_dict() for student in roster.list_students()])


@students_bp.route('/by-sport/<sport>', methods=['GET'])
def students_by_sport(sport):
    """Eligible students not yet on a team for this sport"""
    return jsonify([student.to_dict() for student in roster.available_students(sport)])


@students_bp.route('/<int:student_id>', methods=['GET'])
def student_detail(student_id):
    return jsonify(roster.get_student(student_id).to_dict())


@students_bp.route('', methods=['POST'])
@require_admin
def register_student():
    student = roster.register_student(json_body())
    return success('Student registered successfully', status=201, id=student.id)


@students_bp.route('/<int:student_id>', methods=['PUT'])
@require_admin
def update_student(student_id):
    roster.update_student(student_id, json_body())
    return success('Student updated successfully')


@students_bp.route('/<int:student_id>', methods=['DELETE'])
@require_admin
def delete_student(student_id):
    roster.delete_student(student_id)
    return success('Student deleted successfully')
