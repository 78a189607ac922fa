from flask import request, jsonify

from errors import ValidationError


def json_body() -> dict:
    """Return the request JSON object, rejecting anything else."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError('Request body must be a JSON object')
    return payload


def success(message: str, status: int = 200, **extra):
    body = {'success': True, 'message': message}
    body.update(extra)
    return jsonify(body), status
