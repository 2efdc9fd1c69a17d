"""
Daily Mission Engine for the EcoQuest progression engine
Generates per-day quota missions, tracks progress and gates proof missions
"""

import logging
from datetime import datetime, timedelta, time
from typing import Optional, Dict, List, Tuple

from sqlalchemy import func

from errors import NotFound, StateError, ValidationError
from ledger import RewardLedger
from models import db, User, DailyMission, MissionCompletion, Proof, insert_or_ignore, atomic
from notifications import NotificationSink
from proof_verifier import verify_mission_proof, APPROVED, NEEDS_REVIEW, MISSION_REJECTION_REASON

logger = logging.getLogger('MissionEngine')


MISSION_TYPES = ('complete_lessons', 'earn_xp', 'perfect_score', 'streak_maintain', 'eco_action')

# Every user gets these three each day
DAILY_CATALOG = [
    {
        'type': 'complete_lessons',
        'title': 'Quick Learner',
        'description': 'Complete 3 lessons to boost your knowledge.',
        'target': 3,
        'reward_xp': 50,
        'reward_coins': 10,
        'requires_proof': False
    },
    {
        'type': 'earn_xp',
        'title': 'XP Grind',
        'description': 'Progress through your curriculum and earn 100 XP.',
        'target': 100,
        'reward_xp': 30,
        'reward_coins': 5,
        'requires_proof': False
    },
    {
        'type': 'perfect_score',
        'title': 'Mastermind',
        'description': 'Get a perfect score (10/10) on any quiz today.',
        'target': 1,
        'reward_xp': 75,
        'reward_coins': 15,
        'requires_proof': False
    },
]

# Plus one real-world action that needs a photo, rotated by day
ECO_ACTIONS = [
    {
        'title': 'Eco Action: Reusable Bag',
        'description': 'Use a reusable bag for shopping today. Upload a photo of you with your reusable bag.',
        'reward_xp': 100,
        'reward_coins': 20
    },
    {
        'title': 'Water Conservation Hero',
        'description': 'Turn off taps while brushing teeth. Take a photo showing your water-saving habit.',
        'reward_xp': 80,
        'reward_coins': 15
    },
    {
        'title': 'Waste Warrior',
        'description': 'Separate your waste into recyclable and non-recyclable. Upload proof of your sorted waste.',
        'reward_xp': 120,
        'reward_coins': 25
    },
    {
        'title': 'Green Commuter',
        'description': 'Use public transport, bicycle, or walk instead of a car. Share a photo of your eco-friendly commute.',
        'reward_xp': 150,
        'reward_coins': 30
    },
    {
        'title': 'Plant Life Supporter',
        'description': 'Water a plant or tend to your garden. Show us your green thumb with a photo!',
        'reward_xp': 90,
        'reward_coins': 18
    },
]


def end_of_day(day):
    return datetime.combine(day, time(23, 59, 59, 999000))


class MissionEngine:
    """Per-user daily missions"""

    @staticmethod
    def catalog_for(day) -> List[Dict]:
        """The fixed catalog for a given date; the eco action rotates daily"""
        eco_action = dict(ECO_ACTIONS[day.toordinal() % len(ECO_ACTIONS)])
        eco_action.update({'type': 'eco_action', 'target': 1, 'requires_proof': True})
        return [dict(entry) for entry in DAILY_CATALOG] + [eco_action]

    @staticmethod
    def get_mission(mission_id: int, user_id: Optional[int] = None) -> DailyMission:
        mission = db.session.get(DailyMission, mission_id)
        if not mission or (user_id is not None and mission.user_id != user_id):
            raise NotFound('Mission not found')
        return mission

    @staticmethod
    @atomic
    def generate(user_id: int, now: Optional[datetime] = None) -> List[DailyMission]:
        """
        Create today's mission set for a user.

        Safe to call repeatedly: UNIQUE(user, type, mission_date) turns
        a second call into a no-op instead of a duplicate set.
        """
        now = now or datetime.utcnow()
        if not db.session.get(User, user_id):
            raise NotFound('User not found')

        today = now.date()
        expires_at = end_of_day(today)

        created = 0
        for entry in MissionEngine.catalog_for(today):
            if insert_or_ignore(DailyMission, user_id=user_id, mission_date=today,
                                expires_at=expires_at, **entry):
                created += 1

        if created:
            logger.info(f"📋 Generated {created} daily missions for user {user_id} ({today})")

        return DailyMission.query.filter_by(
            user_id=user_id,
            mission_date=today
        ).order_by(DailyMission.id).all()

    @staticmethod
    def todays_missions(user_id: int, now: Optional[datetime] = None) -> List[DailyMission]:
        """Unexpired missions for the user, generating today's set when there are none"""
        now = now or datetime.utcnow()
        missions = DailyMission.query.filter(
            DailyMission.user_id == user_id,
            DailyMission.expires_at > now
        ).order_by(DailyMission.id).all()

        if not missions:
            missions = MissionEngine.generate(user_id, now=now)
        return missions

    @staticmethod
    @atomic
    def update_progress(mission_id: int, amount: int, user_id: Optional[int] = None,
                        now: Optional[datetime] = None) -> DailyMission:
        """
        Add to a mission's progress, clamped to its target.

        Completing a mission here does not credit the reward; that happens
        through claim_reward. Proof missions only complete through submit_proof.
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError('Progress amount must be a positive integer')

        mission = MissionEngine.get_mission(mission_id, user_id)
        if mission.requires_proof:
            raise ValidationError('This mission is completed by submitting proof')
        if mission.is_expired(now):
            raise StateError('Mission has expired')

        if mission.is_completed:
            return mission

        mission.progress = min(mission.progress + amount, mission.target)
        if mission.progress >= mission.target:
            mission.is_completed = True
            mission.status = 'completed'
            logger.info(f"✅ Mission {mission.id} ({mission.type}) completed by user {mission.user_id}")

        return mission

    @staticmethod
    @atomic
    def claim_reward(mission_id: int, user_id: int) -> Tuple[DailyMission, bool]:
        """
        Credit a completed mission's reward.

        Returns:
            (mission, credited) where credited is False if it was already paid
        """
        mission = MissionEngine.get_mission(mission_id, user_id)
        if mission.requires_proof:
            raise StateError('Proof missions are credited when their proof is approved')
        if not mission.is_completed:
            raise StateError('Mission is not completed yet')

        credited = MissionEngine._credit(mission)
        return mission, credited

    @staticmethod
    @atomic
    def submit_proof(mission_id: int, proof_ref: str, description: Optional[str] = None,
                     user_id: Optional[int] = None, now: Optional[datetime] = None) -> DailyMission:
        """
        Attach proof to a proof-gated mission and verify it on the spot.

        The reward is credited only when the proof comes back approved.
        """
        now = now or datetime.utcnow()
        mission = MissionEngine.get_mission(mission_id, user_id)

        if not mission.requires_proof:
            raise ValidationError('This mission does not require proof')
        if not isinstance(proof_ref, str) or not proof_ref.strip():
            raise ValidationError('Please upload a proof image')
        if mission.is_expired(now):
            raise StateError('Mission has expired')
        if mission.is_completed:
            raise StateError('Mission is already completed')

        proof = mission.proof or Proof(kind='mission')
        proof.url = proof_ref.strip()
        proof.description = description or ''
        proof.submitted_at = now
        proof.status = 'pending'
        proof.verification_score = 0
        proof.feedback = None
        proof.details = None
        proof.verified_by = None
        proof.rejection_reason = None

        mission.proof = proof
        mission.status = 'pending'
        db.session.add(proof)

        result = MissionEngine.auto_verify(mission, now=now)
        logger.info(f"🔍 Mission {mission.id} proof scored {result['score']} -> {result['outcome']}")

        if proof.status == APPROVED:
            MissionEngine._credit(mission)

        return mission

    @staticmethod
    def auto_verify(mission: DailyMission, now: Optional[datetime] = None) -> Dict:
        """Score the mission's proof and apply the tri-state outcome"""
        proof = mission.proof
        if not proof or not proof.url:
            raise ValidationError('No proof submitted for this mission')

        result = verify_mission_proof(proof.url, proof.description, mission.title)

        details = dict(result['details'])
        details['timestamp'] = (now or datetime.utcnow()).isoformat()
        proof.details = details
        proof.verification_score = result['score']
        proof.feedback = result['feedback']

        if result['outcome'] == APPROVED:
            proof.status = APPROVED
            mission.status = 'completed'
            mission.is_completed = True
            mission.progress = mission.target
        elif result['outcome'] == NEEDS_REVIEW:
            proof.status = NEEDS_REVIEW
            mission.status = 'pending'
        else:
            proof.status = 'rejected'
            mission.status = 'rejected'
            proof.rejection_reason = MISSION_REJECTION_REASON

        return result

    @staticmethod
    @atomic
    def manual_verify(mission_id: int, approved: bool, verified_by: int,
                      reason: Optional[str] = None) -> DailyMission:
        """Administrative override of the automatic verdict"""
        mission = MissionEngine.get_mission(mission_id)
        proof = mission.proof
        if not proof:
            raise StateError('No proof submitted for this mission')

        if not approved and mission.is_completed:
            raise StateError('Mission is already completed')

        proof.verified_by = verified_by
        if approved:
            proof.status = APPROVED
            proof.verification_score = 100
            proof.feedback = reason or 'Proof approved'
            mission.status = 'completed'
            mission.is_completed = True
            mission.progress = mission.target
            MissionEngine._credit(mission)
        else:
            proof.status = 'rejected'
            proof.rejection_reason = reason or 'Proof did not meet requirements'
            proof.feedback = proof.rejection_reason
            mission.status = 'rejected'

        NotificationSink.proof_reviewed(mission.user_id, mission.title, proof.status, proof.feedback)
        logger.info(f"Mission {mission.id} proof manually {proof.status} by user {verified_by}")
        return mission

    @staticmethod
    def needing_review() -> List[DailyMission]:
        return DailyMission.query.join(Proof, DailyMission.proof_id == Proof.id).filter(
            Proof.status == NEEDS_REVIEW,
            DailyMission.status == 'pending'
        ).order_by(Proof.submitted_at).all()

    @staticmethod
    def history(user_id: int, days: int = 7, now: Optional[datetime] = None) -> Dict:
        """Completion stats per mission type over the last N days, plus the latest completions"""
        since = (now or datetime.utcnow()) - timedelta(days=days)

        rows = db.session.query(
            MissionCompletion.mission_type,
            func.count(MissionCompletion.id),
            func.coalesce(func.sum(MissionCompletion.reward_xp), 0),
            func.coalesce(func.sum(MissionCompletion.reward_coins), 0)
        ).filter(
            MissionCompletion.user_id == user_id,
            MissionCompletion.completed_at >= since
        ).group_by(MissionCompletion.mission_type).all()

        completions = MissionCompletion.query.filter_by(user_id=user_id) \
            .order_by(MissionCompletion.completed_at.desc()).limit(20).all()

        return {
            'stats': [{
                'mission_type': mission_type,
                'count': count,
                'total_xp': int(total_xp),
                'total_coins': int(total_coins)
            } for mission_type, count, total_xp, total_coins in rows],
            'completions': [c.to_dict() for c in completions]
        }

    @staticmethod
    def generate_for_all_users(now: Optional[datetime] = None) -> Dict:
        """Daily reset job: make sure every active user has today's set"""
        now = now or datetime.utcnow()
        user_ids = [row[0] for row in db.session.query(User.id).filter(User.is_active.is_(True)).all()]

        for user_id in user_ids:
            MissionEngine.generate(user_id, now=now)

        logger.info(f"✅ Daily missions ensured for {len(user_ids)} users")
        return {'users': len(user_ids), 'date': now.date().isoformat()}

    @staticmethod
    def _credit(mission: DailyMission) -> bool:
        credited = RewardLedger.grant_reward(
            mission.user_id, 'mission', mission.id,
            xp=mission.reward_xp, coins=mission.reward_coins
        )
        if credited:
            db.session.add(MissionCompletion(
                user_id=mission.user_id,
                mission_id=mission.id,
                mission_type=mission.type,
                reward_xp=mission.reward_xp,
                reward_coins=mission.reward_coins
            ))
            NotificationSink.mission_complete(
                mission.user_id, mission.title,
                {'xp': mission.reward_xp, 'coins': mission.reward_coins}
            )
        return credited
