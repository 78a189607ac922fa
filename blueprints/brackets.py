from flask import Blueprint, jsonify, current_app

from blueprints.auth import require_admin
from blueprints.common import json_body, success
from errors import ValidationError
from services import bracket as engine

brackets_bp = Blueprint('brackets', __name__, url_prefix='/api/brackets')


@brackets_bp.route('/<sport>', methods=['GET'])
def get_bracket(sport):
    """All matches of a sport ordered by round and match number"""
    return jsonify([match.to_dict() for match in engine.get_bracket(sport)])


@brackets_bp.route('/<sport>/summary', methods=['GET'])
def bracket_summary(sport):
    return jsonify(engine.bracket_summary(sport).to_dict())


@brackets_bp.route('/generate/<sport>', methods=['POST'])
@require_admin
def generate_bracket(sport):
    matches = engine.generate_bracket(sport)
    current_app.logger.info('Bracket generated for %s', sport)
    return success(
        'Bracket generated successfully',
        status=201,
        matches=[match.to_dict() for match in matches],
    )


@brackets_bp.route('/match/<int:match_id>', methods=['PUT'])
@require_admin
def update_match(match_id):
    payload = json_body()
    if 'winner_id' not in payload:
        raise ValidationError('winner_id is required')

    outcome = engine.record_result(match_id, payload['winner_id'])
    message = 'Match updated successfully' if outcome.changed else 'Result already recorded'
    return success(message, **outcome.to_dict())


@brackets_bp.route('/<sport>', methods=['DELETE'])
@require_admin
def reset_bracket(sport):
    removed = engine.reset_bracket(sport)
    return success('Bracket reset successfully', removed=removed)
