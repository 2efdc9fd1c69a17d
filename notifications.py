"""
Notification sink for the progression engines
Persists one row per message; delivery is handled elsewhere
"""

import json
import logging

from models import db, Notification

logger = logging.getLogger('Notifications')


class NotificationSink:
    """Collects notifications inside the caller's transaction"""

    @staticmethod
    def notify(user_id, type, title, message, data=None):
        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            data_json=json.dumps(data, default=str) if data else None
        )
        db.session.add(notification)
        logger.debug(f"Queued {type} notification for user {user_id}")
        return notification

    @staticmethod
    def competition_start(user_id, competition):
        return NotificationSink.notify(
            user_id,
            'competition_start',
            '🏁 Competition Starting!',
            f'The competition "{competition.title}" is about to start!',
            {'id': competition.id, 'title': competition.title}
        )

    @staticmethod
    def competition_started(user_id, competition):
        return NotificationSink.notify(
            user_id,
            'competition_start',
            '🏁 Competition Started!',
            f'{competition.title} has begun! Good luck!',
            {'id': competition.id, 'title': competition.title}
        )

    @staticmethod
    def competition_result(user_id, competition, rank, prize):
        return NotificationSink.notify(
            user_id,
            'competition_result',
            '🏆 Competition Results',
            f'You ranked #{rank} in {competition.title}!',
            {'competition_id': competition.id, 'rank': rank, 'prize': prize}
        )

    @staticmethod
    def competition_cancelled(user_id, competition, refund):
        return NotificationSink.notify(
            user_id,
            'competition_cancelled',
            'Competition Cancelled',
            f'{competition.title} was cancelled. {refund} coins have been refunded.',
            {'competition_id': competition.id, 'refund': refund}
        )

    @staticmethod
    def challenge_invite(user_id, challenge):
        return NotificationSink.notify(
            user_id,
            'challenge_invite',
            '⚔️ Challenge Joined',
            f"You've joined: {challenge.title}",
            {'id': challenge.id, 'title': challenge.title}
        )

    @staticmethod
    def mission_complete(user_id, title, reward):
        return NotificationSink.notify(
            user_id,
            'mission_complete',
            '✅ Mission Complete!',
            f"You've completed: {title}.",
            {'title': title, 'rewards': reward}
        )

    @staticmethod
    def proof_reviewed(user_id, title, status, feedback=None):
        return NotificationSink.notify(
            user_id,
            'proof_reviewed',
            'Proof Reviewed',
            f'Your proof for "{title}" was {status.replace("_", " ")}.',
            {'title': title, 'status': status, 'feedback': feedback}
        )
