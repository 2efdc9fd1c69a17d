"""
Competition Engine for the EcoQuest progression engine
Registration, scoring, lifecycle transitions and one-time prize distribution
"""

import logging
from datetime import datetime
from typing import Optional, Dict, List

from sqlalchemy import update, func

from errors import NotFound, NotParticipant, Conflict, StateError, CompetitionFull, ValidationError, Forbidden
from ledger import RewardLedger
from models import db, Competition, CompetitionParticipant, LeaderboardEntry, insert_or_ignore, atomic
from notifications import NotificationSink
from mission_engine import end_of_day

logger = logging.getLogger('CompetitionEngine')


COMPETITION_TYPES = ('tournament', 'battle', 'race', 'league')
COMPETITION_FORMATS = ('single_elimination', 'double_elimination', 'round_robin', 'points_based')
CRITERIA_TYPES = ('highest_score', 'fastest_time', 'most_xp', 'accuracy', 'completion_rate')

# Rank -> (prize tier, leaderboard label); everyone below third gets participation
PRIZE_TIERS = {
    1: ('first', 'First Place'),
    2: ('second', 'Second Place'),
    3: ('third', 'Third Place'),
}
PARTICIPATION = ('participation', 'Participation')

LIST_FILTERS = {
    'upcoming': 'registration',
    'ongoing': 'in_progress',
    'completed': 'completed',
    'cancelled': 'cancelled',
}


class CompetitionEngine:
    """Time-boxed ranked events"""

    @staticmethod
    def get_competition(competition_id: int) -> Competition:
        competition = db.session.get(Competition, competition_id)
        if not competition:
            raise NotFound('Competition not found')
        return competition

    @staticmethod
    def rank_participants(competition: Competition) -> List[CompetitionParticipant]:
        """
        Deterministic standings.

        Higher score first (fastest_time: completed entries first, lower time
        first), then earlier registration, then lower participant id.
        """
        if competition.criteria_type == 'fastest_time':
            def key(p):
                return (0 if p.completed else 1, p.time_completed or 0,
                        p.registered_at or datetime.min, p.id)
        else:
            def key(p):
                return (-(p.score or 0), p.registered_at or datetime.min, p.id)

        return sorted(competition.participants, key=key)

    @staticmethod
    def prize_for_rank(competition: Competition, rank: int):
        tier, label = PRIZE_TIERS.get(rank, PARTICIPATION)
        return label, competition.prizes[tier]

    # ==================== LIFECYCLE ====================

    @staticmethod
    @atomic
    def auto_transition(now: Optional[datetime] = None) -> Dict:
        """
        Advance time-triggered statuses in bulk. Running it again with the
        same clock changes nothing; cancelled competitions are never touched.
        """
        now = now or datetime.utcnow()

        started = db.session.execute(
            update(Competition)
            .where(Competition.status == 'registration',
                   Competition.start_date <= now,
                   Competition.end_date > now)
            .values(status='in_progress')
            .execution_options(synchronize_session='fetch')
        ).rowcount

        completed = db.session.execute(
            update(Competition)
            .where(Competition.status.in_(('registration', 'in_progress')),
                   Competition.end_date < now)
            .values(status='completed')
            .execution_options(synchronize_session='fetch')
        ).rowcount

        if started or completed:
            logger.info(f"⏱️ Competition transitions: {started} started, {completed} completed")
        return {'started': started, 'completed': completed}

    @staticmethod
    def finalize_due(now: Optional[datetime] = None) -> List[int]:
        """Distribute prizes for every completed competition that has not been finalized yet"""
        due = [row[0] for row in db.session.query(Competition.id).filter(
            Competition.status == 'completed',
            Competition.finalized.is_(False)
        ).order_by(Competition.id).all()]

        for competition_id in due:
            CompetitionEngine.end(competition_id, now=now)
        return due

    @staticmethod
    def sync_lifecycle(now: Optional[datetime] = None) -> Dict:
        """Single state-transition entry point shared by reads and the periodic sweep"""
        now = now or datetime.utcnow()
        summary = CompetitionEngine.auto_transition(now)
        summary['finalized'] = CompetitionEngine.finalize_due(now)
        return summary

    @staticmethod
    @atomic
    def start(competition_id: int, now: Optional[datetime] = None) -> Competition:
        competition = CompetitionEngine.get_competition(competition_id)
        if competition.status != 'registration':
            raise StateError('Competition cannot be started')

        if len(competition.participants) < competition.min_participants:
            raise StateError(
                f'Need at least {competition.min_participants} participants',
                details={'participants': len(competition.participants),
                         'min_participants': competition.min_participants}
            )

        claimed = db.session.execute(
            update(Competition)
            .where(Competition.id == competition.id, Competition.status == 'registration')
            .values(status='in_progress')
            .execution_options(synchronize_session='fetch')
        )
        if claimed.rowcount == 0:
            raise StateError('Competition cannot be started')

        for participant in competition.participants:
            NotificationSink.competition_started(participant.user_id, competition)

        logger.info(f"🏁 Competition {competition.id} started with {len(competition.participants)} participants")
        return competition

    @staticmethod
    @atomic
    def end(competition_id: int, now: Optional[datetime] = None) -> Competition:
        """
        Rank participants and pay prizes.

        The finalized flag is claimed in a conditional UPDATE before anything
        is paid; a caller that loses the claim gets the snapshot back untouched.
        """
        now = now or datetime.utcnow()
        competition = CompetitionEngine.get_competition(competition_id)
        if competition.status == 'cancelled':
            raise StateError('Cannot end a cancelled competition')

        claimed = db.session.execute(
            update(Competition)
            .where(Competition.id == competition.id,
                   Competition.finalized.is_(False),
                   Competition.status != 'cancelled')
            .values(finalized=True, finalized_at=now, status='completed')
            .execution_options(synchronize_session='fetch')
        )
        if claimed.rowcount == 0:
            logger.info(f"Competition {competition.id} already finalized")
            return competition

        ranked = CompetitionEngine.rank_participants(competition)
        for rank, participant in enumerate(ranked, start=1):
            label, prize = CompetitionEngine.prize_for_rank(competition, rank)
            participant.rank = rank

            db.session.add(LeaderboardEntry(
                competition_id=competition.id,
                user_id=participant.user_id,
                rank=rank,
                score=participant.score or 0,
                prize=label
            ))
            RewardLedger.grant_reward(
                participant.user_id, 'competition_prize', competition.id,
                xp=prize['xp'], coins=prize['coins']
            )
            NotificationSink.competition_result(participant.user_id, competition, rank, label)

        db.session.expire(competition, ['leaderboard'])
        logger.info(f"🏆 Competition {competition.id} finalized: {len(ranked)} participants ranked")
        return competition

    @staticmethod
    @atomic
    def cancel(competition_id: int, user_id: Optional[int] = None, is_admin: bool = False) -> Competition:
        """Cancel and refund entry fees; cancelling twice refunds once"""
        competition = CompetitionEngine.get_competition(competition_id)
        if user_id is not None and not is_admin and competition.created_by != user_id:
            raise Forbidden('Not authorized to cancel this competition')

        if competition.status == 'cancelled':
            return competition
        if competition.status == 'completed' or competition.finalized:
            raise StateError('Cannot cancel a completed competition')

        claimed = db.session.execute(
            update(Competition)
            .where(Competition.id == competition.id,
                   Competition.status.in_(('registration', 'in_progress')),
                   Competition.finalized.is_(False))
            .values(status='cancelled')
            .execution_options(synchronize_session='fetch')
        )
        if claimed.rowcount == 0:
            return competition

        refund = competition.entry_fee_coins or 0
        for participant in competition.participants:
            if refund:
                RewardLedger.add_coins(participant.user_id, refund)
            NotificationSink.competition_cancelled(participant.user_id, competition, refund)

        logger.info(f"Competition {competition.id} cancelled, refunded {refund} coins to "
                    f"{len(competition.participants)} participants")
        return competition

    # ==================== PARTICIPATION ====================

    @staticmethod
    def register(competition_id: int, user_id: int, team_name: Optional[str] = None,
                 now: Optional[datetime] = None) -> Competition:
        now = now or datetime.utcnow()
        CompetitionEngine.sync_lifecycle(now)
        return CompetitionEngine._register(competition_id, user_id, team_name, now)

    @staticmethod
    @atomic
    def _register(competition_id, user_id, team_name, now):
        competition = CompetitionEngine.get_competition(competition_id)
        RewardLedger.get_user(user_id)

        if competition.status != 'registration':
            raise StateError('Registration is closed')
        if not competition.registration_start <= now <= end_of_day(competition.registration_end.date()):
            raise StateError('Registration is closed')

        if competition.max_participants and len(competition.participants) >= competition.max_participants:
            raise CompetitionFull('Competition is full')

        # The unique constraint decides between concurrent registrations
        if not insert_or_ignore(CompetitionParticipant, competition_id=competition.id, user_id=user_id,
                                team_name=team_name, registered_at=now, score=0, accuracy=0,
                                time_completed=0, completed=False):
            raise Conflict('Already registered')

        # Raises InsufficientFunds, which rolls back the participant row too
        RewardLedger.spend_coins(user_id, competition.entry_fee_coins or 0)

        db.session.expire(competition, ['participants'])
        NotificationSink.competition_start(user_id, competition)
        logger.info(f"User {user_id} registered for competition {competition.id}")
        return competition

    @staticmethod
    def update_score(competition_id: int, user_id: int, score: int, accuracy: float = 0,
                     time: int = 0, now: Optional[datetime] = None) -> Competition:
        if isinstance(score, bool) or not isinstance(score, int) or score < 0:
            raise ValidationError('Score must be a non-negative integer')
        if isinstance(time, bool) or not isinstance(time, int) or time < 0:
            raise ValidationError('Time must be a non-negative integer')
        if isinstance(accuracy, bool) or not isinstance(accuracy, (int, float)) or not 0 <= accuracy <= 100:
            raise ValidationError('Accuracy must be between 0 and 100')

        CompetitionEngine.sync_lifecycle(now)
        return CompetitionEngine._update_score(competition_id, user_id, score, accuracy, time)

    @staticmethod
    @atomic
    def _update_score(competition_id, user_id, score, accuracy, time):
        competition = CompetitionEngine.get_competition(competition_id)
        if competition.status != 'in_progress':
            raise StateError('Competition is not in progress')

        participant = competition.find_participant(user_id)
        if not participant:
            raise NotParticipant('Not registered for this competition')

        participant.score = score
        participant.accuracy = accuracy
        participant.time_completed = time
        participant.completed = True

        for rank, ranked in enumerate(CompetitionEngine.rank_participants(competition), start=1):
            ranked.rank = rank

        return competition

    # ==================== QUERIES ====================

    @staticmethod
    def get(competition_id: int, now: Optional[datetime] = None) -> Competition:
        CompetitionEngine.sync_lifecycle(now)
        return CompetitionEngine.get_competition(competition_id)

    @staticmethod
    def list_competitions(status_filter: Optional[str] = None, now: Optional[datetime] = None) -> List[Competition]:
        CompetitionEngine.sync_lifecycle(now)

        query = Competition.query
        if status_filter and status_filter != 'all':
            if status_filter not in LIST_FILTERS:
                raise ValidationError(f"Unknown status filter: {status_filter}")
            query = query.filter(Competition.status == LIST_FILTERS[status_filter])

        return query.order_by(Competition.start_date, Competition.id).all()

    @staticmethod
    def leaderboard(competition_id: int, limit: int = 10, now: Optional[datetime] = None) -> List[Dict]:
        """Final standings once finalized, provisional ones before that"""
        competition = CompetitionEngine.get(competition_id, now=now)

        if competition.finalized:
            return [entry.to_dict() for entry in competition.leaderboard[:limit]]

        standings = []
        for rank, participant in enumerate(CompetitionEngine.rank_participants(competition), start=1):
            entry = participant.to_dict()
            entry['rank'] = rank
            standings.append(entry)
        return standings[:limit]

    @staticmethod
    def user_competitions(user_id: int) -> List[Competition]:
        return Competition.query.join(CompetitionParticipant).filter(
            CompetitionParticipant.user_id == user_id
        ).order_by(Competition.start_date.desc(), Competition.id.desc()).all()

    @staticmethod
    def user_stats(user_id: int) -> Dict:
        participated = CompetitionParticipant.query.filter_by(user_id=user_id).count()
        won = LeaderboardEntry.query.filter_by(user_id=user_id, rank=1).count()
        total_points = db.session.query(
            func.coalesce(func.sum(CompetitionParticipant.score), 0)
        ).filter(CompetitionParticipant.user_id == user_id).scalar()

        return {
            'participated': participated,
            'won': won,
            'total_points': int(total_points)
        }

    @staticmethod
    def featured(limit: int = 5, now: Optional[datetime] = None) -> List[Competition]:
        CompetitionEngine.sync_lifecycle(now)
        return Competition.query.filter(
            Competition.featured.is_(True),
            Competition.status.in_(('registration', 'in_progress'))
        ).order_by(Competition.start_date).limit(limit).all()

    # ==================== ADMINISTRATION ====================

    @staticmethod
    @atomic
    def create(data: Dict, created_by: Optional[int] = None) -> Competition:
        if data.get('type') not in COMPETITION_TYPES:
            raise ValidationError(f"Competition type must be one of {', '.join(COMPETITION_TYPES)}")
        if data.get('format') not in COMPETITION_FORMATS:
            raise ValidationError(f"Competition format must be one of {', '.join(COMPETITION_FORMATS)}")

        criteria_type = data.get('criteria_type') or 'highest_score'
        if criteria_type not in CRITERIA_TYPES:
            raise ValidationError(f"Criteria type must be one of {', '.join(CRITERIA_TYPES)}")

        if data['registration_end'] < data['registration_start']:
            raise ValidationError('Registration must end after it starts')
        if data['end_date'] <= data['start_date']:
            raise ValidationError('End date must be after start date')

        prizes = data.get('prizes') or {}
        competition = Competition(
            title=data['title'],
            description=data.get('description') or '',
            image=data.get('image'),
            type=data['type'],
            format=data['format'],
            criteria_type=criteria_type,
            min_participants=data.get('min_participants') or 2,
            max_participants=data.get('max_participants'),
            registration_start=data['registration_start'],
            registration_end=data['registration_end'],
            start_date=data['start_date'],
            end_date=data['end_date'],
            status='registration',
            entry_fee_coins=data.get('entry_fee_coins') or 0,
            featured=data.get('featured', False),
            created_by=created_by
        )
        for tier in ('first', 'second', 'third', 'participation'):
            prize = prizes.get(tier) or {}
            setattr(competition, f'prize_{tier}_xp', prize.get('xp') or 0)
            setattr(competition, f'prize_{tier}_coins', prize.get('coins') or 0)

        db.session.add(competition)
        db.session.flush()
        logger.info(f"Competition {competition.id} '{competition.title}' created by user {created_by}")
        return competition
