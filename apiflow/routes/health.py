"""
Health check endpoint
"""
from datetime import datetime, timezone

from flask import Blueprint, jsonify

bp = Blueprint('health', __name__, url_prefix='/api')


@bp.route('/health', methods=['GET'])
def health_check():
    """Healthcheck endpoint to confirm the API is online"""
    return jsonify({
        'status': 'healthy',
        'message': 'API is online',
        'timestamp': datetime.now(timezone.utc).isoformat()
    }), 200
