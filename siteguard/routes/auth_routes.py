"""
Authentication routes: first-run setup, login and logout (JSON API).
"""

from flask import Blueprint, jsonify, request, current_app
from flask_login import login_user, logout_user, login_required, current_user

from siteguard import db
from siteguard.models import User
from siteguard.auth import authenticate, hash_password, validate_password_strength


bp = Blueprint('auth', __name__, url_prefix='/api/auth')


@bp.route('/setup', methods=['POST'])
def setup():
    """
    Create the admin account. Only allowed while no user exists.

    Request body:
        - username: Admin username (required)
        - password: Admin password (required, must pass strength rules)

    Returns:
        JSON with the created username
    """
    if User.query.count() > 0:
        return jsonify({'error': 'Setup already completed'}), 403

    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''

    if not username:
        return jsonify({'error': 'Username is required'}), 400

    is_valid, error_msg = validate_password_strength(password)
    if not is_valid:
        return jsonify({'error': error_msg}), 400

    user = User(username=username, password_hash=hash_password(password))
    db.session.add(user)
    db.session.commit()

    current_app.logger.info(f"Admin account created: {username}")

    login_user(user, remember=True)
    return jsonify({'username': user.username, 'message': 'Setup completed successfully'}), 201


@bp.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''

    if not username or not password:
        return jsonify({'error': 'Username and password are required'}), 400

    user = authenticate(username, password)
    if user is None:
        current_app.logger.warning(f"Failed login attempt for user: {username}")
        return jsonify({'error': 'Invalid username or password'}), 401

    login_user(user, remember=True)
    return jsonify({'username': user.username, 'message': 'Login successful'})


@bp.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'message': 'You have been logged out'})


@bp.route('/me', methods=['GET'])
@login_required
def me():
    return jsonify({'id': current_user.id, 'username': current_user.username})
