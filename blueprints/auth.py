from flask import Blueprint, request, session, jsonify, current_app, g
from werkzeug.security import check_password_hash
from functools import wraps
from datetime import datetime
import pytz

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')
IST = pytz.timezone('Asia/Kolkata')


def load_current_role():
    """Expose the session role as g.is_admin"""
    g.is_admin = session.get('role') == 'admin'


def require_admin(f):
    """Require an admin session before the core service is called"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not getattr(g, 'is_admin', False):
            return jsonify({
                'success': False,
                'error': 'Admin login required',
                'code': 'unauthorized',
                'retryable': False,
            }), 403
        return f(*args, **kwargs)
    return decorated_function


@auth_bp.route('/login', methods=['POST'])
def login():
    """Admin login with the shared admin password"""
    payload = request.get_json(silent=True) or {}
    password = payload.get('password') or ''
    password_hash = current_app.config.get('ADMIN_PASSWORD_HASH')

    if password_hash and isinstance(password, str) and check_password_hash(password_hash, password):
        session.clear()
        session['role'] = 'admin'
        session['logged_in_at'] = datetime.now(IST).isoformat()
        session.modified = True
        current_app.logger.info('Admin logged in from %s', request.remote_addr)
        return jsonify({'success': True, 'message': 'Login successful'})

    current_app.logger.warning('Failed admin login from %s', request.remote_addr)
    return jsonify({'success': False, 'error': 'Invalid password'}), 401


@auth_bp.route('/logout', methods=['POST'])
def logout():
    session.clear()
    return jsonify({'success': True, 'message': 'Logged out'})


@auth_bp.route('/status')
def status():
    return jsonify({
        'is_admin': session.get('role') == 'admin',
        'logged_in_at': session.get('logged_in_at'),
    })
