"""
Challenge Engine for the EcoQuest progression engine
Joinable goal-based challenges with per-participant progress and proofs
"""

import logging
from datetime import datetime
from typing import Optional, Dict, List

from sqlalchemy import update

from errors import (
    NotFound, NotParticipant, Conflict, StateError, ChallengeFull, ChallengeClosed,
    ValidationError, Forbidden
)
from ledger import RewardLedger
from models import db, Challenge, ChallengeParticipant, Proof, insert_or_ignore, atomic
from notifications import NotificationSink
from proof_verifier import verify_challenge_proof, APPROVED

logger = logging.getLogger('ChallengeEngine')


CHALLENGE_TYPES = ('daily', 'weekly', 'special', 'community')
REQUIREMENT_TYPES = ('complete_lessons', 'earn_xp', 'perfect_scores', 'time_limit', 'streak', 'help_others')
DIFFICULTIES = ('easy', 'medium', 'hard', 'expert')
CATEGORIES = ('speed', 'accuracy', 'consistency', 'mastery', 'social')


class ChallengeEngine:
    """Challenge participation, progress and proof handling"""

    @staticmethod
    def get_challenge(challenge_id: int) -> Challenge:
        challenge = db.session.get(Challenge, challenge_id)
        if not challenge:
            raise NotFound('Challenge not found')
        return challenge

    @staticmethod
    def get_participant(challenge: Challenge, user_id: int) -> ChallengeParticipant:
        participant = challenge.find_participant(user_id)
        if not participant:
            raise NotParticipant('User not participating in this challenge')
        return participant

    @staticmethod
    def is_open(challenge: Challenge, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        return bool(challenge.is_active) and challenge.start_date <= now <= challenge.end_date

    # ==================== PARTICIPATION ====================

    @staticmethod
    @atomic
    def join(challenge_id: int, user_id: int, now: Optional[datetime] = None) -> Challenge:
        now = now or datetime.utcnow()
        challenge = ChallengeEngine.get_challenge(challenge_id)
        RewardLedger.get_user(user_id)

        if challenge.find_participant(user_id):
            raise Conflict('Already joined this challenge')

        if challenge.max_participants and len(challenge.participants) >= challenge.max_participants:
            raise ChallengeFull('Challenge is full')

        if not ChallengeEngine.is_open(challenge, now):
            raise ChallengeClosed('Challenge is not active')

        # A concurrent join for the same user loses here, on the unique constraint
        if not insert_or_ignore(ChallengeParticipant, challenge_id=challenge.id, user_id=user_id,
                                joined_at=now, progress=0, is_completed=False):
            raise Conflict('Already joined this challenge')

        db.session.expire(challenge, ['participants'])
        NotificationSink.challenge_invite(user_id, challenge)
        logger.info(f"User {user_id} joined challenge {challenge.id}")
        return challenge

    @staticmethod
    @atomic
    def leave(challenge_id: int, user_id: int) -> Challenge:
        """Drop the participant row; any reward already granted stays granted"""
        challenge = ChallengeEngine.get_challenge(challenge_id)
        participant = ChallengeEngine.get_participant(challenge, user_id)

        proof = participant.proof
        challenge.participants.remove(participant)
        db.session.delete(participant)
        if proof:
            db.session.delete(proof)

        logger.info(f"User {user_id} left challenge {challenge.id}")
        return challenge

    # ==================== PROGRESS ====================

    @staticmethod
    @atomic
    def update_progress(challenge_id: int, user_id: int, progress: int,
                        now: Optional[datetime] = None) -> Challenge:
        """
        Set the participant's absolute progress.

        Progress never moves backwards. Reaching the target completes the
        participant and credits the reward exactly once.
        """
        if isinstance(progress, bool) or not isinstance(progress, int) or progress < 0:
            raise ValidationError('Progress must be a non-negative integer')

        challenge = ChallengeEngine.get_challenge(challenge_id)
        participant = ChallengeEngine.get_participant(challenge, user_id)

        if participant.is_completed:
            return challenge

        if progress > participant.progress:
            participant.progress = progress

        if participant.progress >= challenge.requirement_target:
            ChallengeEngine._complete(challenge, participant, now or datetime.utcnow())

        return challenge

    @staticmethod
    def _complete(challenge: Challenge, participant: ChallengeParticipant, now: datetime) -> bool:
        """
        Flip is_completed false -> true in a single conditional UPDATE and credit
        the reward only when this call made the flip.
        """
        db.session.flush()
        result = db.session.execute(
            update(ChallengeParticipant)
            .where(ChallengeParticipant.id == participant.id,
                   ChallengeParticipant.is_completed.is_(False))
            .values(is_completed=True, completed_at=now)
            .execution_options(synchronize_session='fetch')
        )
        if result.rowcount == 0:
            return False

        RewardLedger.grant_reward(
            participant.user_id, 'challenge', challenge.id,
            xp=challenge.reward_xp, coins=challenge.reward_coins
        )
        NotificationSink.mission_complete(
            participant.user_id, challenge.title,
            {'xp': challenge.reward_xp, 'coins': challenge.reward_coins}
        )
        logger.info(f"🏅 User {participant.user_id} completed challenge {challenge.id}")
        return True

    # ==================== PROOFS ====================

    @staticmethod
    @atomic
    def submit_proof(challenge_id: int, user_id: int, proof_ref: str,
                     description: Optional[str] = None, now: Optional[datetime] = None) -> Challenge:
        """
        Store proof and complete the participant immediately.

        Unlike mission proofs, the reward is credited now and the proof stays
        'pending' until a teacher reviews it.
        """
        if not isinstance(proof_ref, str) or not proof_ref.strip():
            raise ValidationError('Proof reference is required')

        now = now or datetime.utcnow()
        challenge = ChallengeEngine.get_challenge(challenge_id)
        participant = ChallengeEngine.get_participant(challenge, user_id)

        proof = participant.proof or Proof(kind='challenge')
        proof.url = proof_ref.strip()
        proof.description = description or ''
        proof.submitted_at = now
        proof.status = 'pending'
        proof.verification_score = 0
        proof.feedback = None
        proof.details = None
        proof.verified_by = None
        proof.rejection_reason = None
        db.session.add(proof)

        participant.proof = proof
        participant.progress = challenge.requirement_target
        ChallengeEngine._complete(challenge, participant, now)

        logger.info(f"📸 Proof submitted by user {user_id} for challenge {challenge.id}")
        return challenge

    @staticmethod
    @atomic
    def review_proof(challenge_id: int, user_id: int, now: Optional[datetime] = None) -> Dict:
        """Score a participant's proof with the challenge heuristic and record the verdict"""
        challenge = ChallengeEngine.get_challenge(challenge_id)
        participant = ChallengeEngine.get_participant(challenge, user_id)
        proof = participant.proof
        if not proof:
            raise StateError('No proof submitted for this challenge')

        result = verify_challenge_proof(proof.url, proof.description, challenge.title)

        details = dict(result['details'])
        details['timestamp'] = (now or datetime.utcnow()).isoformat()
        proof.details = details
        proof.verification_score = result['score']
        proof.feedback = result['feedback']
        proof.status = result['outcome']

        logger.info(f"🔍 Challenge {challenge.id} proof of user {user_id} scored {result['score']} -> {result['outcome']}")
        return {
            'score': result['score'],
            'outcome': result['outcome'],
            'feedback': result['feedback'],
            'proof': proof.to_dict()
        }

    @staticmethod
    @atomic
    def approve_proof(challenge_id: int, user_id: int, reviewer_id: int,
                      score: Optional[int] = None, reason: Optional[str] = None,
                      now: Optional[datetime] = None) -> Challenge:
        if score is not None and (isinstance(score, bool) or not isinstance(score, int) or not 0 <= score <= 100):
            raise ValidationError('Score must be an integer between 0 and 100')

        challenge = ChallengeEngine.get_challenge(challenge_id)
        participant = ChallengeEngine.get_participant(challenge, user_id)
        proof = participant.proof
        if not proof:
            raise StateError('No proof submitted for this challenge')

        proof.status = APPROVED
        proof.verification_score = score if score is not None else 100
        proof.feedback = reason or 'Verification successful.'
        proof.verified_by = reviewer_id

        if not participant.is_completed:
            participant.progress = challenge.requirement_target
            ChallengeEngine._complete(challenge, participant, now or datetime.utcnow())

        NotificationSink.proof_reviewed(user_id, challenge.title, proof.status, proof.feedback)
        return challenge

    @staticmethod
    @atomic
    def reject_proof(challenge_id: int, user_id: int, reviewer_id: int,
                     reason: Optional[str] = None) -> Challenge:
        """Mark the proof rejected; rewards already credited are not reversed"""
        challenge = ChallengeEngine.get_challenge(challenge_id)
        participant = ChallengeEngine.get_participant(challenge, user_id)
        proof = participant.proof
        if not proof:
            raise StateError('No proof submitted for this challenge')

        proof.status = 'rejected'
        proof.rejection_reason = reason or 'Proof did not meet requirements'
        proof.feedback = proof.rejection_reason
        proof.verified_by = reviewer_id

        NotificationSink.proof_reviewed(user_id, challenge.title, proof.status, proof.feedback)
        return challenge

    # ==================== QUERIES ====================

    @staticmethod
    def list_active(user_id: Optional[int] = None, difficulty: Optional[str] = None,
                    completed: Optional[bool] = None, category: Optional[str] = None) -> List[Challenge]:
        query = Challenge.query.filter(Challenge.is_active.is_(True))
        if difficulty:
            query = query.filter(Challenge.difficulty == difficulty)
        if category:
            query = query.filter(Challenge.category == category)

        if user_id is not None and completed is not None:
            completed_ids = db.session.query(ChallengeParticipant.challenge_id).filter(
                ChallengeParticipant.user_id == user_id,
                ChallengeParticipant.is_completed.is_(True)
            )
            if completed:
                query = query.filter(Challenge.id.in_(completed_ids))
            else:
                query = query.filter(~Challenge.id.in_(completed_ids))

        return query.order_by(Challenge.created_at.desc(), Challenge.id.desc()).all()

    @staticmethod
    def open_for_user(user_id: int, requirement_types, now: Optional[datetime] = None) -> List[Challenge]:
        """Active, in-window challenges where the user is a non-completed participant"""
        now = now or datetime.utcnow()
        return Challenge.query.join(ChallengeParticipant).filter(
            ChallengeParticipant.user_id == user_id,
            ChallengeParticipant.is_completed.is_(False),
            Challenge.requirement_type.in_(list(requirement_types)),
            Challenge.is_active.is_(True),
            Challenge.start_date <= now,
            Challenge.end_date >= now
        ).order_by(Challenge.id).all()

    @staticmethod
    def user_challenges(user_id: int) -> List[Challenge]:
        return Challenge.query.join(ChallengeParticipant).filter(
            ChallengeParticipant.user_id == user_id
        ).order_by(Challenge.created_at.desc(), Challenge.id.desc()).all()

    @staticmethod
    def user_stats(user_id: int) -> Dict:
        participations = ChallengeParticipant.query.filter_by(user_id=user_id).all()
        completed = sum(1 for p in participations if p.is_completed)
        return {
            'total': len(participations),
            'completed': completed,
            'pending': len(participations) - completed
        }

    @staticmethod
    def featured(limit: int = 5) -> List[Challenge]:
        return Challenge.query.filter_by(featured=True, is_active=True) \
            .order_by(Challenge.created_at.desc()).limit(limit).all()

    # ==================== ADMINISTRATION ====================

    @staticmethod
    @atomic
    def create(data: Dict, created_by: Optional[int] = None) -> Challenge:
        if data.get('type') not in CHALLENGE_TYPES:
            raise ValidationError(f"Challenge type must be one of {', '.join(CHALLENGE_TYPES)}")
        if data.get('requirement_type') not in REQUIREMENT_TYPES:
            raise ValidationError(f"Requirement type must be one of {', '.join(REQUIREMENT_TYPES)}")
        if not data.get('requirement_target') or data['requirement_target'] <= 0:
            raise ValidationError('Requirement target must be positive')

        start_date = data.get('start_date') or datetime.utcnow()
        if data['end_date'] <= start_date:
            raise ValidationError('End date must be after start date')

        challenge = Challenge(
            title=data['title'],
            description=data.get('description') or '',
            type=data['type'],
            difficulty=data.get('difficulty') or 'medium',
            category=data.get('category') or 'consistency',
            requirement_type=data['requirement_type'],
            requirement_target=data['requirement_target'],
            reward_xp=data.get('reward_xp') or 0,
            reward_coins=data.get('reward_coins') or 0,
            start_date=start_date,
            end_date=data['end_date'],
            is_active=data.get('is_active', True),
            max_participants=data.get('max_participants'),
            featured=data.get('featured', False),
            created_by=created_by
        )
        db.session.add(challenge)
        db.session.flush()
        logger.info(f"Challenge {challenge.id} '{challenge.title}' created by user {created_by}")
        return challenge

    @staticmethod
    @atomic
    def delete(challenge_id: int, user_id: int, is_admin: bool = False) -> None:
        challenge = ChallengeEngine.get_challenge(challenge_id)
        if challenge.created_by != user_id and not is_admin:
            raise Forbidden('Not authorized to delete this challenge')

        for participant in list(challenge.participants):
            if participant.proof:
                db.session.delete(participant.proof)
        db.session.delete(challenge)

    @staticmethod
    @atomic
    def deactivate_expired(now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        result = db.session.execute(
            update(Challenge)
            .where(Challenge.is_active.is_(True), Challenge.end_date < now)
            .values(is_active=False)
            .execution_options(synchronize_session='fetch')
        )
        if result.rowcount:
            logger.info(f"Deactivated {result.rowcount} expired challenges")
        return result.rowcount
