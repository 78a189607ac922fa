from flask import Blueprint, jsonify

from blueprints.auth import require_admin
from blueprints.common import json_body, success
from services import registry

teams_bp = Blueprint('teams', __name__, url_prefix='/api/teams')


@teams_bp.route('/<sport>', methods=['GET'])
def list_teams(sport):
    """Teams for a sport in creation order, with members"""
    return jsonify([team.to_dict() for team in registry.list_teams(sport)])


@teams_bp.route('/id/<int:team_id>', methods=['GET'])
def team_detail(team_id):
    return jsonify(registry.get_team(team_id).to_dict())


@teams_bp.route('', methods=['POST'])
@require_admin
def create_team():
    payload = json_body()
    team = registry.create_team(
        payload.get('team_name'),
        payload.get('sport'),
        payload.get('members') or [],
    )
    return success('Team created successfully', status=201, id=team.id)


@teams_bp.route('/<int:team_id>', methods=['PUT'])
@require_admin
def update_team(team_id):
    payload = json_body()
    registry.update_team(
        team_id,
        name=payload.get('team_name'),
        member_ids=payload.get('members'),
    )
    return success('Team updated successfully')


@teams_bp.route('/<int:team_id>', methods=['DELETE'])
@require_admin
def delete_team(team_id):
    registry.delete_team(team_id)
    return success('Team deleted successfully')
