from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


# --- COMPETITIONS ---
class PrizeTier(BaseModel):
    xp: int = Field(default=0, ge=0)
    coins: int = Field(default=0, ge=0)

class PrizeTable(BaseModel):
    first: Optional[PrizeTier] = None
    second: Optional[PrizeTier] = None
    third: Optional[PrizeTier] = None
    participation: Optional[PrizeTier] = None

class CreateCompetitionRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    image: Optional[str] = None
    type: str
    format: str
    criteriaType: Optional[str] = None
    minParticipants: Optional[int] = Field(default=None, ge=1)
    maxParticipants: Optional[int] = Field(default=None, ge=1)
    registrationStart: datetime
    registrationEnd: datetime
    startDate: datetime
    endDate: datetime
    entryFeeCoins: int = Field(default=0, ge=0)
    prizes: Optional[PrizeTable] = None
    featured: bool = False

    def to_engine(self):
        return {
            'title': self.title,
            'description': self.description,
            'image': self.image,
            'type': self.type,
            'format': self.format,
            'criteria_type': self.criteriaType,
            'min_participants': self.minParticipants,
            'max_participants': self.maxParticipants,
            'registration_start': self.registrationStart,
            'registration_end': self.registrationEnd,
            'start_date': self.startDate,
            'end_date': self.endDate,
            'entry_fee_coins': self.entryFeeCoins,
            'prizes': self.prizes.model_dump(exclude_none=True) if self.prizes else {},
            'featured': self.featured,
        }

class RegisterRequest(BaseModel):
    teamName: Optional[str] = Field(default=None, max_length=100)

class ScoreUpdateRequest(BaseModel):
    score: int
    accuracy: float = 0
    time: int = 0


# --- CHALLENGES ---
class CreateChallengeRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    type: str
    difficulty: Optional[str] = None
    category: Optional[str] = None
    requirementType: str
    requirementTarget: int = Field(gt=0)
    rewardXp: int = Field(default=0, ge=0)
    rewardCoins: int = Field(default=0, ge=0)
    startDate: Optional[datetime] = None
    endDate: datetime
    maxParticipants: Optional[int] = Field(default=None, ge=1)
    featured: bool = False

    def to_engine(self):
        return {
            'title': self.title,
            'description': self.description,
            'type': self.type,
            'difficulty': self.difficulty,
            'category': self.category,
            'requirement_type': self.requirementType,
            'requirement_target': self.requirementTarget,
            'reward_xp': self.rewardXp,
            'reward_coins': self.rewardCoins,
            'start_date': self.startDate,
            'end_date': self.endDate,
            'max_participants': self.maxParticipants,
            'featured': self.featured,
        }

class ChallengeProgressRequest(BaseModel):
    progress: int

class ProofApprovalRequest(BaseModel):
    score: Optional[int] = None
    reason: Optional[str] = None

class ProofRejectionRequest(BaseModel):
    reason: Optional[str] = None


# --- MISSIONS ---
class MissionProgressRequest(BaseModel):
    missionId: int
    amount: int = 1

class MissionVerifyRequest(BaseModel):
    approved: bool
    reason: Optional[str] = None


# --- ACTIVITY ---
class ActivityRequest(BaseModel):
    activityType: str = Field(min_length=1)
    amount: int = 1
