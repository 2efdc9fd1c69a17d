"""
SQLAlchemy ORM Models for the EcoQuest progression engine
Competitions, challenges, daily missions, proofs and the reward ledger
"""

from flask_sqlalchemy import SQLAlchemy
from datetime import datetime
from functools import wraps
import json

db = SQLAlchemy()


def _iso(value):
    return value.isoformat() if value else None


# ==================== USER / LEDGER MODELS ====================

class User(db.Model):
    """User accounts; the XP and coin balances form the reward ledger"""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(50), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)

    # Role & Permissions
    role = db.Column(db.String(20), default='student', nullable=False)  # student, teacher, admin

    # Gamification
    xp_points = db.Column(db.Integer, default=0, nullable=False)
    coins = db.Column(db.Integer, default=0, nullable=False)
    level = db.Column(db.Integer, default=1, nullable=False)

    is_active = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self, include_email=False):
        data = {
            'id': self.id,
            'username': self.username,
            'role': self.role,
            'xp_points': self.xp_points,
            'coins': self.coins,
            'level': self.level,
        }
        if include_email:
            data['email'] = self.email
        return data


class RewardGrant(db.Model):
    """One row per credited reward; the unique key makes crediting idempotent"""
    __tablename__ = 'reward_grants'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    entity_type = db.Column(db.String(30), nullable=False)  # challenge, mission, competition_prize
    entity_id = db.Column(db.Integer, nullable=False)

    xp = db.Column(db.Integer, default=0, nullable=False)
    coins = db.Column(db.Integer, default=0, nullable=False)
    granted_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (db.UniqueConstraint('user_id', 'entity_type', 'entity_id', name='uq_reward_grant'),)

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'xp': self.xp,
            'coins': self.coins,
            'granted_at': _iso(self.granted_at)
        }


class Notification(db.Model):
    """In-app notifications; delivery transport is outside this service"""
    __tablename__ = 'notifications'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    type = db.Column(db.String(40), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text)
    data_json = db.Column(db.Text)
    is_read = db.Column(db.Boolean, default=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def data(self):
        return json.loads(self.data_json) if self.data_json else {}

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'type': self.type,
            'title': self.title,
            'message': self.message,
            'data': self.data,
            'is_read': self.is_read,
            'created_at': _iso(self.created_at)
        }


# ==================== PROOF MODEL ====================

class Proof(db.Model):
    """Evidence attached to a completion claim, shared by missions and challenges"""
    __tablename__ = 'proofs'

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(20), nullable=False)  # mission, challenge

    url = db.Column(db.String(500))
    description = db.Column(db.Text, default='')
    submitted_at = db.Column(db.DateTime, default=datetime.utcnow)

    status = db.Column(db.String(20), default='pending', nullable=False)
    verification_score = db.Column(db.Integer, default=0, nullable=False)
    feedback = db.Column(db.Text)
    details_json = db.Column(db.Text)
    verified_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    rejection_reason = db.Column(db.Text)

    @property
    def details(self):
        return json.loads(self.details_json) if self.details_json else {}

    @details.setter
    def details(self, value):
        self.details_json = json.dumps(value, default=str) if value is not None else None

    def to_dict(self):
        return {
            'id': self.id,
            'kind': self.kind,
            'url': self.url,
            'description': self.description,
            'submitted_at': _iso(self.submitted_at),
            'status': self.status,
            'verification_score': self.verification_score,
            'feedback': self.feedback,
            'details': self.details,
            'verified_by': self.verified_by,
            'rejection_reason': self.rejection_reason
        }


# ==================== COMPETITION MODELS ====================

class Competition(db.Model):
    """Time-boxed ranked event with prize tiers"""
    __tablename__ = 'competitions'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default='')
    image = db.Column(db.String(500))

    type = db.Column(db.String(20), nullable=False)  # tournament, battle, race, league
    format = db.Column(db.String(30), nullable=False)  # single_elimination, round_robin, points_based...
    criteria_type = db.Column(db.String(30), default='highest_score', nullable=False)

    min_participants = db.Column(db.Integer, default=2, nullable=False)
    max_participants = db.Column(db.Integer, nullable=True)

    registration_start = db.Column(db.DateTime, nullable=False)
    registration_end = db.Column(db.DateTime, nullable=False)
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)

    status = db.Column(db.String(20), default='registration', nullable=False, index=True)
    finalized = db.Column(db.Boolean, default=False, nullable=False)
    finalized_at = db.Column(db.DateTime)

    entry_fee_coins = db.Column(db.Integer, default=0, nullable=False)

    # Prizes
    prize_first_xp = db.Column(db.Integer, default=0, nullable=False)
    prize_first_coins = db.Column(db.Integer, default=0, nullable=False)
    prize_second_xp = db.Column(db.Integer, default=0, nullable=False)
    prize_second_coins = db.Column(db.Integer, default=0, nullable=False)
    prize_third_xp = db.Column(db.Integer, default=0, nullable=False)
    prize_third_coins = db.Column(db.Integer, default=0, nullable=False)
    prize_participation_xp = db.Column(db.Integer, default=0, nullable=False)
    prize_participation_coins = db.Column(db.Integer, default=0, nullable=False)

    featured = db.Column(db.Boolean, default=False)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    participants = db.relationship('CompetitionParticipant', backref='competition', lazy='select',
                                   order_by='CompetitionParticipant.id',
                                   cascade='all, delete-orphan')
    leaderboard = db.relationship('LeaderboardEntry', backref='competition', lazy='select',
                                  order_by='LeaderboardEntry.rank',
                                  cascade='all, delete-orphan')

    @property
    def prizes(self):
        return {
            'first': {'xp': self.prize_first_xp, 'coins': self.prize_first_coins},
            'second': {'xp': self.prize_second_xp, 'coins': self.prize_second_coins},
            'third': {'xp': self.prize_third_xp, 'coins': self.prize_third_coins},
            'participation': {'xp': self.prize_participation_xp, 'coins': self.prize_participation_coins}
        }

    def find_participant(self, user_id):
        for participant in self.participants:
            if participant.user_id == user_id:
                return participant
        return None

    def to_dict(self, include_participants=True):
        data = {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'image': self.image,
            'type': self.type,
            'format': self.format,
            'criteria_type': self.criteria_type,
            'min_participants': self.min_participants,
            'max_participants': self.max_participants,
            'registration_start': _iso(self.registration_start),
            'registration_end': _iso(self.registration_end),
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'status': self.status,
            'finalized': self.finalized,
            'entry_fee': {'coins': self.entry_fee_coins},
            'prizes': self.prizes,
            'featured': self.featured,
            'created_by': self.created_by,
            'participant_count': len(self.participants)
        }
        if include_participants:
            data['participants'] = [p.to_dict() for p in self.participants]
            data['leaderboard'] = [entry.to_dict() for entry in self.leaderboard]
        return data


class CompetitionParticipant(db.Model):
    """A user's registration and latest score in a competition"""
    __tablename__ = 'competition_participants'

    id = db.Column(db.Integer, primary_key=True)
    competition_id = db.Column(db.Integer, db.ForeignKey('competitions.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)

    team_name = db.Column(db.String(100))
    registered_at = db.Column(db.DateTime, default=datetime.utcnow)

    score = db.Column(db.Integer, default=0, nullable=False)
    accuracy = db.Column(db.Float, default=0)
    time_completed = db.Column(db.Integer, default=0)  # seconds
    completed = db.Column(db.Boolean, default=False)
    rank = db.Column(db.Integer, nullable=True)

    __table_args__ = (db.UniqueConstraint('competition_id', 'user_id', name='uq_competition_participant'),)

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'team_name': self.team_name,
            'registered_at': _iso(self.registered_at),
            'score': self.score,
            'accuracy': self.accuracy,
            'time_completed': self.time_completed,
            'completed': self.completed,
            'rank': self.rank
        }


class LeaderboardEntry(db.Model):
    """Final standings, written once when a competition is finalized"""
    __tablename__ = 'competition_leaderboard'

    id = db.Column(db.Integer, primary_key=True)
    competition_id = db.Column(db.Integer, db.ForeignKey('competitions.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)

    rank = db.Column(db.Integer, nullable=False)
    score = db.Column(db.Integer, default=0, nullable=False)
    prize = db.Column(db.String(30), nullable=False)  # First Place, Second Place, Third Place, Participation

    __table_args__ = (db.UniqueConstraint('competition_id', 'user_id', name='uq_leaderboard_entry'),)

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'rank': self.rank,
            'score': self.score,
            'prize': self.prize
        }


# ==================== CHALLENGE MODELS ====================

class Challenge(db.Model):
    """Longer-lived, joinable, goal-based activity"""
    __tablename__ = 'challenges'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default='')

    type = db.Column(db.String(20), nullable=False)  # daily, weekly, special, community
    difficulty = db.Column(db.String(20), default='medium')  # easy, medium, hard, expert
    category = db.Column(db.String(30), default='consistency')  # speed, accuracy, consistency, mastery, social

    requirement_type = db.Column(db.String(30), nullable=False)
    requirement_target = db.Column(db.Integer, nullable=False)

    reward_xp = db.Column(db.Integer, default=0, nullable=False)
    reward_coins = db.Column(db.Integer, default=0, nullable=False)

    start_date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)
    is_active = db.Column(db.Boolean, default=True, index=True)
    max_participants = db.Column(db.Integer, nullable=True)  # None means unlimited

    featured = db.Column(db.Boolean, default=False)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    participants = db.relationship('ChallengeParticipant', backref='challenge', lazy='select',
                                   order_by='ChallengeParticipant.id',
                                   cascade='all, delete-orphan')

    def find_participant(self, user_id):
        for participant in self.participants:
            if participant.user_id == user_id:
                return participant
        return None

    def to_dict(self, include_participants=True):
        data = {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'type': self.type,
            'difficulty': self.difficulty,
            'category': self.category,
            'requirements': {'type': self.requirement_type, 'target': self.requirement_target},
            'rewards': {'xp': self.reward_xp, 'coins': self.reward_coins},
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'is_active': self.is_active,
            'max_participants': self.max_participants,
            'featured': self.featured,
            'created_by': self.created_by,
            'participant_count': len(self.participants)
        }
        if include_participants:
            data['participants'] = [p.to_dict() for p in self.participants]
        return data


class ChallengeParticipant(db.Model):
    """Per-user progress inside a challenge"""
    __tablename__ = 'challenge_participants'

    id = db.Column(db.Integer, primary_key=True)
    challenge_id = db.Column(db.Integer, db.ForeignKey('challenges.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)

    joined_at = db.Column(db.DateTime, default=datetime.utcnow)
    progress = db.Column(db.Integer, default=0, nullable=False)
    is_completed = db.Column(db.Boolean, default=False, nullable=False)
    completed_at = db.Column(db.DateTime)

    proof_id = db.Column(db.Integer, db.ForeignKey('proofs.id'), nullable=True)
    proof = db.relationship('Proof')

    __table_args__ = (db.UniqueConstraint('challenge_id', 'user_id', name='uq_challenge_participant'),)

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'joined_at': _iso(self.joined_at),
            'progress': self.progress,
            'is_completed': self.is_completed,
            'completed_at': _iso(self.completed_at),
            'proof': self.proof.to_dict() if self.proof else None
        }


# ==================== DAILY MISSION MODELS ====================

class DailyMission(db.Model):
    """Per-user, per-day quota task"""
    __tablename__ = 'daily_missions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)

    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default='')
    type = db.Column(db.String(30), nullable=False)  # complete_lessons, earn_xp, perfect_score, streak_maintain, eco_action
    mission_date = db.Column(db.Date, nullable=False)

    target = db.Column(db.Integer, nullable=False)
    progress = db.Column(db.Integer, default=0, nullable=False)

    reward_xp = db.Column(db.Integer, default=0, nullable=False)
    reward_coins = db.Column(db.Integer, default=0, nullable=False)

    requires_proof = db.Column(db.Boolean, default=False, nullable=False)
    is_completed = db.Column(db.Boolean, default=False, nullable=False)
    status = db.Column(db.String(20), default='active', nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)

    proof_id = db.Column(db.Integer, db.ForeignKey('proofs.id'), nullable=True)
    proof = db.relationship('Proof')

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (db.UniqueConstraint('user_id', 'type', 'mission_date', name='uq_daily_mission'),)

    def is_expired(self, now=None):
        return self.expires_at <= (now or datetime.utcnow())

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'description': self.description,
            'type': self.type,
            'mission_date': _iso(self.mission_date),
            'target': self.target,
            'progress': self.progress,
            'reward': {'xp': self.reward_xp, 'coins': self.reward_coins},
            'requires_proof': self.requires_proof,
            'is_completed': self.is_completed,
            'status': self.status,
            'expires_at': _iso(self.expires_at),
            'proof': self.proof.to_dict() if self.proof else None
        }


class MissionCompletion(db.Model):
    """History of claimed mission rewards"""
    __tablename__ = 'mission_completions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    mission_id = db.Column(db.Integer, db.ForeignKey('daily_missions.id'), nullable=False)
    mission_type = db.Column(db.String(30), nullable=False)

    reward_xp = db.Column(db.Integer, default=0, nullable=False)
    reward_coins = db.Column(db.Integer, default=0, nullable=False)
    completed_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    __table_args__ = (db.UniqueConstraint('mission_id', name='uq_mission_completion'),)

    def to_dict(self):
        return {
            'id': self.id,
            'mission_id': self.mission_id,
            'mission_type': self.mission_type,
            'reward': {'xp': self.reward_xp, 'coins': self.reward_coins},
            'completed_at': _iso(self.completed_at)
        }


# ==================== HELPERS ====================

def insert_or_ignore(model, **values):
    """
    INSERT a row unless it collides with one of the model's unique constraints.
    The check happens inside the database, so concurrent callers cannot both win.

    Returns:
        True when this call inserted the row
    """
    dialect = db.engine.dialect.name
    if dialect == 'postgresql':
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == 'sqlite':
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"insert_or_ignore is not supported on {dialect}")

    statement = insert(model.__table__).values(**values).on_conflict_do_nothing()
    result = db.session.execute(statement)
    return result.rowcount == 1


def atomic(f):
    """
    Commit the session when the wrapped operation returns, roll back when it raises.
    Inside a savepoint the enclosing unit of work owns the outcome, so the
    operation neither commits nor rolls back.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        if db.session().in_nested_transaction():
            return f(*args, **kwargs)
        try:
            result = f(*args, **kwargs)
            db.session.commit()
            return result
        except Exception:
            db.session.rollback()
            raise
    return decorated
