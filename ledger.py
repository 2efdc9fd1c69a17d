"""
Reward Ledger for the EcoQuest progression engine
XP and coin balances with atomic debits and idempotent reward grants
"""

import logging
from typing import Optional

from sqlalchemy import update

from errors import NotFound, InsufficientFunds, ValidationError
from models import db, User, RewardGrant, insert_or_ignore

logger = logging.getLogger('RewardLedger')


class RewardLedger:
    """
    Balance mutations are single UPDATE statements evaluated by the database,
    never read-modify-write in Python. Nothing here commits: the calling
    engine owns the transaction.
    """

    @staticmethod
    def calculate_level(total_xp: int) -> int:
        """Level = sqrt(XP / 100), never below 1"""
        if total_xp <= 0:
            return 1
        return max(1, int((total_xp / 100) ** 0.5))

    @staticmethod
    def get_user(user_id: int) -> User:
        user = db.session.get(User, user_id)
        if not user:
            raise NotFound('User not found')
        return user

    @staticmethod
    def balance(user_id: int) -> dict:
        user = RewardLedger.get_user(user_id)
        return {'xp_points': user.xp_points, 'coins': user.coins, 'level': user.level}

    @staticmethod
    def add_xp(user_id: int, amount: int) -> int:
        """Credit XP and raise the level when the new total crosses a threshold"""
        if amount < 0:
            raise ValidationError('XP amount must not be negative')
        if amount == 0:
            return RewardLedger.get_user(user_id).level

        result = db.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(xp_points=User.xp_points + amount)
            .execution_options(synchronize_session='fetch')
        )
        if result.rowcount == 0:
            raise NotFound('User not found')

        user = RewardLedger.get_user(user_id)
        new_level = RewardLedger.calculate_level(user.xp_points)
        if new_level > (user.level or 1):
            user.level = new_level
            logger.info(f"User {user_id} reached level {new_level}")
        return user.level

    @staticmethod
    def add_coins(user_id: int, amount: int) -> None:
        if amount < 0:
            raise ValidationError('Coin amount must not be negative')
        if amount == 0:
            return

        result = db.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(coins=User.coins + amount)
            .execution_options(synchronize_session='fetch')
        )
        if result.rowcount == 0:
            raise NotFound('User not found')

    @staticmethod
    def spend_coins(user_id: int, amount: int) -> None:
        """Debit coins only if the balance covers the amount, in one statement"""
        if amount < 0:
            raise ValidationError('Coin amount must not be negative')
        if amount == 0:
            return

        result = db.session.execute(
            update(User)
            .where(User.id == user_id, User.coins >= amount)
            .values(coins=User.coins - amount)
            .execution_options(synchronize_session='fetch')
        )
        if result.rowcount == 0:
            user = RewardLedger.get_user(user_id)
            raise InsufficientFunds(
                f'Insufficient coins: {amount} required, {user.coins} available',
                details={'required': amount, 'available': user.coins}
            )

    @staticmethod
    def grant_reward(user_id: int, entity_type: str, entity_id: int,
                     xp: int = 0, coins: int = 0) -> bool:
        """
        Credit a reward at most once per (user, entity_type, entity_id).

        The grant row is inserted first; only the caller whose insert lands
        credits the balances, so repeated or concurrent calls are harmless.

        Returns:
            True if this call credited the reward, False if it was already granted
        """
        inserted = insert_or_ignore(
            RewardGrant,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            xp=xp or 0,
            coins=coins or 0
        )
        if not inserted:
            logger.info(f"Reward for {entity_type} {entity_id} already granted to user {user_id}")
            return False

        RewardLedger.add_xp(user_id, xp or 0)
        RewardLedger.add_coins(user_id, coins or 0)
        logger.info(f"🎁 Granted {xp} XP / {coins} coins to user {user_id} for {entity_type} {entity_id}")
        return True

    @staticmethod
    def find_grant(user_id: int, entity_type: str, entity_id: int) -> Optional[RewardGrant]:
        return RewardGrant.query.filter_by(
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id
        ).first()
