"""
Activity and scheduled-job API Routes for EcoQuest
"""

from flask import Blueprint, jsonify, request, current_app
from functools import wraps

from activity_dispatcher import record_activity
from auth import require_auth
from challenge_engine import ChallengeEngine
from competition_engine import CompetitionEngine
from errors import Unauthorized
from mission_engine import MissionEngine
from models import db
from schemas import ActivityRequest

activity_bp = Blueprint('activity', __name__, url_prefix='/api/activity')
cron_bp = Blueprint('cron', __name__, url_prefix='/api/cron')


@activity_bp.route('', methods=['POST'])
@require_auth
def post_activity():
    """Record a learning activity and advance matching missions and challenges"""
    req_data = ActivityRequest.model_validate(request.get_json())
    summary = record_activity(request.current_user.id, req_data.activityType, req_data.amount)
    db.session.commit()
    return jsonify({'success': True, 'summary': summary})


# ==================== ADMIN/CRON ENDPOINTS ====================

def require_cron_key(f):
    """Verify admin key (for cron job security)"""
    @wraps(f)
    def decorated(*args, **kwargs):
        admin_key = request.headers.get('X-Admin-Key')
        if admin_key != current_app.config['ADMIN_CRON_KEY']:
            raise Unauthorized('Invalid admin key')
        return f(*args, **kwargs)
    return decorated


@cron_bp.route('/competitions/sweep', methods=['POST'])
@require_cron_key
def sweep_competitions():
    """
    Periodic lifecycle sweep - same transition function the read path uses
    1. Start competitions whose start date has passed
    2. Complete competitions whose end date has passed
    3. Finalize and pay out completed competitions
    4. Deactivate expired challenges
    """
    summary = CompetitionEngine.sync_lifecycle()
    summary['challenges_deactivated'] = ChallengeEngine.deactivate_expired()
    return jsonify({'success': True, 'summary': summary})


@cron_bp.route('/missions/generate', methods=['POST'])
@require_cron_key
def generate_missions():
    """Daily reset - should be called by cron job at midnight UTC"""
    summary = MissionEngine.generate_for_all_users()
    return jsonify({'success': True, 'summary': summary})
