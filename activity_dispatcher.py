"""
Activity Progress Dispatcher
Fans a learning activity out to the user's open missions and challenges
"""

import logging
from datetime import datetime
from typing import Optional, Dict

from challenge_engine import ChallengeEngine
from mission_engine import MissionEngine
from models import db, DailyMission

logger = logging.getLogger('ActivityDispatcher')


# Missions say perfect_score, challenges say perfect_scores
REQUIREMENT_ALIASES = {
    'perfect_score': ('perfect_score', 'perfect_scores'),
    'perfect_scores': ('perfect_score', 'perfect_scores'),
}


def matching_types(activity_type: str):
    return REQUIREMENT_ALIASES.get(activity_type, (activity_type,))


def record_activity(user_id: int, activity_type: str, amount: int = 1,
                    now: Optional[datetime] = None) -> Dict:
    """
    Apply an activity to every open mission and challenge of a matching type.

    Each item runs in its own savepoint; a failure rolls back only that item
    and is logged and counted, never raised. Nothing is committed here: the
    caller commits the activity together with the fan-out.
    Missions or challenges that failed stay behind until the next activity.
    Proof missions are skipped, they only complete through verification.

    Returns:
        Dict with missions_updated, challenges_updated and errors
    """
    now = now or datetime.utcnow()
    types = matching_types(activity_type)
    summary = {'missions_updated': 0, 'challenges_updated': 0, 'errors': 0}

    missions = DailyMission.query.filter(
        DailyMission.user_id == user_id,
        DailyMission.type.in_(types),
        DailyMission.status == 'active',
        DailyMission.is_completed.is_(False),
        DailyMission.requires_proof.is_(False),
        DailyMission.expires_at > now
    ).order_by(DailyMission.id).all()

    for mission in missions:
        mission_id = mission.id
        try:
            with db.session.begin_nested():
                MissionEngine.update_progress(mission_id, amount, now=now)
            summary['missions_updated'] += 1
        except Exception:
            summary['errors'] += 1
            logger.exception(f"Failed to update mission {mission_id} for user {user_id}")

    challenges = ChallengeEngine.open_for_user(user_id, types, now=now)
    targets = []
    for challenge in challenges:
        participant = challenge.find_participant(user_id)
        targets.append((challenge.id, participant.progress + amount))

    for challenge_id, progress in targets:
        try:
            with db.session.begin_nested():
                ChallengeEngine.update_progress(challenge_id, user_id, progress, now=now)
            summary['challenges_updated'] += 1
        except Exception:
            summary['errors'] += 1
            logger.exception(f"Failed to update challenge {challenge_id} for user {user_id}")

    if summary['errors']:
        logger.warning(f"Activity {activity_type} for user {user_id} applied with {summary['errors']} failures")
    else:
        logger.debug(f"Activity {activity_type} x{amount} for user {user_id}: {summary}")
    return summary
