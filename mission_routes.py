"""
Daily Mission API Routes for EcoQuest
"""

from flask import Blueprint, jsonify, request

from auth import require_auth, require_role
from mission_engine import MissionEngine
from schemas import MissionProgressRequest, MissionVerifyRequest
from storage import resolve_proof_reference

missions_bp = Blueprint('missions', __name__, url_prefix='/api/missions')


@missions_bp.route('', methods=['GET'])
@require_auth
def get_missions():
    """Today's missions for the current user, generated on first access"""
    missions = MissionEngine.todays_missions(request.current_user.id)
    return jsonify({'success': True, 'missions': [m.to_dict() for m in missions]})


@missions_bp.route('/progress', methods=['PUT'])
@require_auth
def update_progress():
    req_data = MissionProgressRequest.model_validate(request.get_json())
    mission = MissionEngine.update_progress(req_data.missionId, req_data.amount, user_id=request.current_user.id)
    return jsonify({'success': True, 'mission': mission.to_dict()})


@missions_bp.route('/<int:mission_id>/claim', methods=['POST'])
@require_auth
def claim_reward(mission_id):
    mission, credited = MissionEngine.claim_reward(mission_id, request.current_user.id)
    return jsonify({
        'success': True,
        'credited': credited,
        'message': 'Reward claimed!' if credited else 'Reward already claimed',
        'mission': mission.to_dict()
    })


@missions_bp.route('/<int:mission_id>/proof', methods=['POST'])
@require_auth
def submit_proof(mission_id):
    """Upload proof for an eco action; verification runs before the response"""
    proof_ref, description = resolve_proof_reference(request)
    mission = MissionEngine.submit_proof(mission_id, proof_ref, description, user_id=request.current_user.id)

    proof = mission.proof
    if proof.status == 'approved':
        message = 'Proof verified! Mission completed.'
    elif proof.status == 'needs_review':
        message = 'Proof submitted and waiting for review.'
    else:
        message = proof.rejection_reason or 'Proof rejected.'

    return jsonify({
        'success': True,
        'message': message,
        'verification': {
            'status': proof.status,
            'score': proof.verification_score,
            'feedback': proof.feedback
        },
        'mission': mission.to_dict()
    })


@missions_bp.route('/history', methods=['GET'])
@require_auth
def mission_history():
    days = request.args.get('days', 7, type=int)
    return jsonify({'success': True, **MissionEngine.history(request.current_user.id, days=days)})


# ==================== TEACHER / ADMIN ENDPOINTS ====================

@missions_bp.route('/review', methods=['GET'])
@require_role('teacher', 'admin')
def missions_needing_review():
    return jsonify({'success': True, 'missions': [m.to_dict() for m in MissionEngine.needing_review()]})


@missions_bp.route('/<int:mission_id>/verify', methods=['POST'])
@require_role('teacher', 'admin')
def manual_verify(mission_id):
    req_data = MissionVerifyRequest.model_validate(request.get_json())
    mission = MissionEngine.manual_verify(
        mission_id, req_data.approved, request.current_user.id, reason=req_data.reason
    )
    return jsonify({'success': True, 'mission': mission.to_dict()})
