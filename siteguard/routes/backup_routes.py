"""
Backup control routes - start, cancel and status of the full-site backup job.
"""

from flask import Blueprint, jsonify, current_app
from flask_login import login_required

from siteguard.backup.errors import AlreadyRunning


bp = Blueprint('backup', __name__, url_prefix='/api/backup')


def _service():
    return current_app.extensions['siteguard']


@bp.route('/start', methods=['POST'])
@login_required
def start_backup():
    """
    Request a full backup. Returns immediately; the job runs in the scheduler.

    Returns:
        202 when scheduled, 409 when a backup is already running,
        503 when the scheduler is not available in this process
    """
    try:
        _service().start_backup()
    except AlreadyRunning as e:
        return jsonify({'error': e.message, 'code': e.code}), 409
    except RuntimeError as e:
        current_app.logger.error(f"Could not schedule backup: {e}")
        return jsonify({'error': 'Backup scheduler is not available'}), 503

    return jsonify({'message': 'Backup scheduled'}), 202


@bp.route('/cancel', methods=['POST'])
@login_required
def cancel_backup():
    """
    Clear the running flag and drop the pending job, if any.

    A job that is already executing keeps running to completion.
    """
    _service().cancel_backup()
    return jsonify({'message': 'Backup cancelled'})


@bp.route('/status', methods=['GET'])
@login_required
def backup_status():
    return jsonify(_service().get_status())
