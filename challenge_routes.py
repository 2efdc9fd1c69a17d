"""
Challenge API Routes for EcoQuest
Joining, progress, proof submission and teacher review
"""

from flask import Blueprint, jsonify, request

from auth import require_auth, require_role, is_admin
from challenge_engine import ChallengeEngine
from schemas import CreateChallengeRequest, ChallengeProgressRequest, ProofApprovalRequest, ProofRejectionRequest
from storage import resolve_proof_reference

challenges_bp = Blueprint('challenges', __name__, url_prefix='/api/challenges')


def _completed_filter():
    value = request.args.get('completed')
    if value is None:
        return None
    return value.lower() in ('1', 'true', 'yes')


@challenges_bp.route('', methods=['GET'])
@require_auth
def list_challenges():
    """Active challenges; query args narrow by difficulty, category or the caller's completions"""
    challenges = ChallengeEngine.list_active(
        user_id=request.current_user.id,
        difficulty=request.args.get('difficulty'),
        category=request.args.get('category'),
        completed=_completed_filter()
    )
    return jsonify({
        'success': True,
        'challenges': [c.to_dict(include_participants=False) for c in challenges]
    })


@challenges_bp.route('/featured', methods=['GET'])
def featured_challenges():
    return jsonify({
        'success': True,
        'challenges': [c.to_dict(include_participants=False) for c in ChallengeEngine.featured()]
    })


@challenges_bp.route('/me', methods=['GET'])
@require_auth
def my_challenges():
    challenges = ChallengeEngine.user_challenges(request.current_user.id)
    return jsonify({'success': True, 'challenges': [c.to_dict() for c in challenges]})


@challenges_bp.route('/me/stats', methods=['GET'])
@require_auth
def my_challenge_stats():
    return jsonify({'success': True, 'stats': ChallengeEngine.user_stats(request.current_user.id)})


@challenges_bp.route('/<int:challenge_id>', methods=['GET'])
@require_auth
def get_challenge(challenge_id):
    challenge = ChallengeEngine.get_challenge(challenge_id)
    return jsonify({'success': True, 'challenge': challenge.to_dict()})


@challenges_bp.route('/<int:challenge_id>/join', methods=['POST'])
@require_auth
def join_challenge(challenge_id):
    challenge = ChallengeEngine.join(challenge_id, request.current_user.id)
    return jsonify({
        'success': True,
        'message': 'Challenge joined successfully',
        'challenge': challenge.to_dict()
    })


@challenges_bp.route('/<int:challenge_id>/progress', methods=['PUT'])
@require_auth
def update_progress(challenge_id):
    req_data = ChallengeProgressRequest.model_validate(request.get_json())
    challenge = ChallengeEngine.update_progress(challenge_id, request.current_user.id, req_data.progress)
    return jsonify({'success': True, 'challenge': challenge.to_dict()})


@challenges_bp.route('/<int:challenge_id>/proof', methods=['POST'])
@require_auth
def submit_proof(challenge_id):
    """Accepts a multipart 'proof' image or a JSON body with proofUrl"""
    proof_ref, description = resolve_proof_reference(request)
    challenge = ChallengeEngine.submit_proof(challenge_id, request.current_user.id, proof_ref, description)
    return jsonify({
        'success': True,
        'message': 'Proof submitted and challenge completed!',
        'challenge': challenge.to_dict()
    })


@challenges_bp.route('/<int:challenge_id>/leave', methods=['DELETE'])
@require_auth
def leave_challenge(challenge_id):
    ChallengeEngine.leave(challenge_id, request.current_user.id)
    return jsonify({'success': True, 'message': 'Left challenge successfully'})


# ==================== TEACHER / ADMIN ENDPOINTS ====================

@challenges_bp.route('', methods=['POST'])
@require_role('teacher', 'admin')
def create_challenge():
    req_data = CreateChallengeRequest.model_validate(request.get_json())
    challenge = ChallengeEngine.create(req_data.to_engine(), created_by=request.current_user.id)
    return jsonify({'success': True, 'challenge': challenge.to_dict()}), 201


@challenges_bp.route('/<int:challenge_id>', methods=['DELETE'])
@require_auth
def delete_challenge(challenge_id):
    user = request.current_user
    ChallengeEngine.delete(challenge_id, user.id, is_admin=is_admin(user))
    return jsonify({'success': True, 'message': 'Challenge deleted'})


@challenges_bp.route('/<int:challenge_id>/proof/<int:user_id>/review', methods=['POST'])
@require_role('teacher', 'admin')
def review_proof(challenge_id, user_id):
    """Score a participant's proof with the keyword heuristic"""
    result = ChallengeEngine.review_proof(challenge_id, user_id)
    return jsonify({'success': True, 'verification': result})


@challenges_bp.route('/<int:challenge_id>/proof/<int:user_id>/approve', methods=['POST'])
@require_role('teacher', 'admin')
def approve_proof(challenge_id, user_id):
    req_data = ProofApprovalRequest.model_validate(request.get_json(silent=True) or {})
    challenge = ChallengeEngine.approve_proof(
        challenge_id, user_id, request.current_user.id,
        score=req_data.score, reason=req_data.reason
    )
    return jsonify({'success': True, 'challenge': challenge.to_dict()})


@challenges_bp.route('/<int:challenge_id>/proof/<int:user_id>/reject', methods=['POST'])
@require_role('teacher', 'admin')
def reject_proof(challenge_id, user_id):
    req_data = ProofRejectionRequest.model_validate(request.get_json(silent=True) or {})
    challenge = ChallengeEngine.reject_proof(challenge_id, user_id, request.current_user.id, reason=req_data.reason)
    return jsonify({'success': True, 'challenge': challenge.to_dict()})
