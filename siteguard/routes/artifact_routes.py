"""
Backup artifact routes - list, download and delete completed archives.
"""

from flask import Blueprint, jsonify, current_app, send_file
from flask_login import login_required

from siteguard.backup.errors import ArtifactNotFound, InvalidArtifactPath, PermissionDenied
from siteguard.backup.service import serialize_artifact


bp = Blueprint('artifacts', __name__, url_prefix='/api/artifacts')


def _service():
    return current_app.extensions['siteguard']


@bp.route('/', methods=['GET'])
@login_required
def list_artifacts():
    """
    Get all backup archives, newest first.

    Returns:
        JSON array with filename, size_bytes, size_mb and modified
    """
    return jsonify([serialize_artifact(a) for a in _service().list_artifacts()])


@bp.route('/<path:filename>/download', methods=['GET'])
@login_required
def download_artifact(filename):
    """
    Stream one archive as an attachment.

    Args:
        filename: Archive file name (no directory components)
    """
    try:
        full_path = _service().artifacts.resolve(filename)
    except InvalidArtifactPath as e:
        return jsonify({'error': e.message}), 400
    except ArtifactNotFound as e:
        return jsonify({'error': e.message}), 404

    return send_file(
        full_path,
        mimetype='application/zip',
        as_attachment=True,
        download_name=full_path.name
    )


@bp.route('/<path:filename>', methods=['DELETE'])
@login_required
def delete_artifact(filename):
    try:
        _service().delete_artifact(filename)
    except InvalidArtifactPath as e:
        return jsonify({'error': e.message}), 400
    except ArtifactNotFound as e:
        return jsonify({'error': e.message}), 404
    except PermissionDenied as e:
        current_app.logger.error(f"Cannot delete backup file {filename}: {e.message}")
        return jsonify({'error': e.message}), 403

    return jsonify({'message': f'Deleted {filename}'})
