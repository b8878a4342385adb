"""
Status routes - health check and scheduler diagnostics.
"""

from flask import Blueprint, jsonify, current_app

from vmbackup_cron.scheduler import get_scheduler_diagnostics


bp = Blueprint('status', __name__)


@bp.route('/health', methods=['GET'])
def health():
    return {'status': 'healthy'}, 200


@bp.route('/api/status', methods=['GET'])
def get_status():
    """
    Get scheduler state and the latest cycle/sweep results.

    Returns:
        JSON with:
        - scheduler: scheduler diagnostics and recent results
        - destination: configured base destination
        - retention: retention window in seconds
        - interval: cycle interval in seconds
    """
    settings = current_app.extensions['vmbackup_cron'].settings

    return jsonify({
        'scheduler': get_scheduler_diagnostics(),
        'destination': settings.dst,
        'retention': int(settings.retention.total_seconds()),
        'interval': int(settings.cycle_interval.total_seconds()),
        'snapshot_mode': 'create' if settings.auto_snapshot else 'existing'
    })
