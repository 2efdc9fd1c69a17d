"""
Competition API Routes for EcoQuest
Registration, scoring, lifecycle control and leaderboards
"""

from flask import Blueprint, jsonify, request

from auth import require_auth, require_role, is_admin
from competition_engine import CompetitionEngine
from schemas import CreateCompetitionRequest, RegisterRequest, ScoreUpdateRequest

competitions_bp = Blueprint('competitions', __name__, url_prefix='/api/competitions')


# ==================== PUBLIC ENDPOINTS ====================

@competitions_bp.route('', methods=['GET'])
def list_competitions():
    """List competitions, optionally filtered by ?status=upcoming|ongoing|completed"""
    competitions = CompetitionEngine.list_competitions(request.args.get('status'))
    return jsonify({
        'success': True,
        'competitions': [c.to_dict(include_participants=False) for c in competitions]
    })


@competitions_bp.route('/featured', methods=['GET'])
def featured_competitions():
    competitions = CompetitionEngine.featured()
    return jsonify({
        'success': True,
        'competitions': [c.to_dict(include_participants=False) for c in competitions]
    })


@competitions_bp.route('/<int:competition_id>', methods=['GET'])
def get_competition(competition_id):
    competition = CompetitionEngine.get(competition_id)
    return jsonify({'success': True, 'competition': competition.to_dict()})


@competitions_bp.route('/<int:competition_id>/leaderboard', methods=['GET'])
def get_leaderboard(competition_id):
    limit = request.args.get('limit', 10, type=int)
    return jsonify({
        'success': True,
        'leaderboard': CompetitionEngine.leaderboard(competition_id, limit=limit)
    })


# ==================== USER ENDPOINTS ====================

@competitions_bp.route('/me', methods=['GET'])
@require_auth
def my_competitions():
    competitions = CompetitionEngine.user_competitions(request.current_user.id)
    return jsonify({
        'success': True,
        'competitions': [c.to_dict(include_participants=False) for c in competitions]
    })


@competitions_bp.route('/me/stats', methods=['GET'])
@require_auth
def my_competition_stats():
    return jsonify({'success': True, 'stats': CompetitionEngine.user_stats(request.current_user.id)})


@competitions_bp.route('/<int:competition_id>/register', methods=['POST'])
@require_auth
def register(competition_id):
    req_data = RegisterRequest.model_validate(request.get_json(silent=True) or {})
    competition = CompetitionEngine.register(competition_id, request.current_user.id, req_data.teamName)
    return jsonify({
        'success': True,
        'message': 'Registered successfully',
        'competition': competition.to_dict()
    }), 201


@competitions_bp.route('/<int:competition_id>/score', methods=['PUT'])
@require_auth
def update_score(competition_id):
    req_data = ScoreUpdateRequest.model_validate(request.get_json())
    competition = CompetitionEngine.update_score(
        competition_id, request.current_user.id,
        req_data.score, accuracy=req_data.accuracy, time=req_data.time
    )
    return jsonify({'success': True, 'competition': competition.to_dict()})


# ==================== TEACHER / ADMIN ENDPOINTS ====================

@competitions_bp.route('', methods=['POST'])
@require_role('teacher', 'admin')
def create_competition():
    req_data = CreateCompetitionRequest.model_validate(request.get_json())
    competition = CompetitionEngine.create(req_data.to_engine(), created_by=request.current_user.id)
    return jsonify({'success': True, 'competition': competition.to_dict()}), 201


@competitions_bp.route('/<int:competition_id>/start', methods=['POST'])
@require_role('teacher', 'admin')
def start_competition(competition_id):
    competition = CompetitionEngine.start(competition_id)
    return jsonify({'success': True, 'competition': competition.to_dict()})


@competitions_bp.route('/<int:competition_id>/end', methods=['POST'])
@require_role('teacher', 'admin')
def end_competition(competition_id):
    competition = CompetitionEngine.end(competition_id)
    return jsonify({'success': True, 'competition': competition.to_dict()})


@competitions_bp.route('/<int:competition_id>/cancel', methods=['POST'])
@require_auth
def cancel_competition(competition_id):
    user = request.current_user
    competition = CompetitionEngine.cancel(competition_id, user_id=user.id, is_admin=is_admin(user))
    return jsonify({
        'success': True,
        'message': 'Competition cancelled and entry fees refunded',
        'competition': competition.to_dict()
    })
