from datetime import timedelta

from activity_dispatcher import record_activity
from challenge_engine import ChallengeEngine
from mission_engine import MissionEngine
from models import db


def _mission(missions, mission_type):
    return next(m for m in missions if m.type == mission_type)


def test_activity_advances_matching_missions(make_user, now):
    user = make_user()
    missions = MissionEngine.generate(user.id, now=now)

    summary = record_activity(user.id, 'earn_xp', 60, now=now)

    assert summary == {'missions_updated': 1, 'challenges_updated': 0, 'errors': 0}
    assert _mission(missions, 'earn_xp').progress == 60
    assert _mission(missions, 'complete_lessons').progress == 0


def test_activity_advances_challenges_by_delta(make_user, make_challenge, now):
    user = make_user()
    challenge = make_challenge(requirement_type='complete_lessons', requirement_target=5)
    ChallengeEngine.join(challenge.id, user.id, now=now)

    record_activity(user.id, 'complete_lessons', 2, now=now)
    record_activity(user.id, 'complete_lessons', 2, now=now)

    assert challenge.find_participant(user.id).progress == 4


def test_perfect_score_alias_reaches_both_engines(make_user, make_challenge, now):
    user = make_user()
    missions = MissionEngine.generate(user.id, now=now)
    challenge = make_challenge(requirement_type='perfect_scores', requirement_target=1, reward_coins=15)
    ChallengeEngine.join(challenge.id, user.id, now=now)

    summary = record_activity(user.id, 'perfect_score', 1, now=now)

    assert summary['missions_updated'] == 1
    assert summary['challenges_updated'] == 1
    assert _mission(missions, 'perfect_score').is_completed is True
    assert challenge.find_participant(user.id).is_completed is True
    assert user.coins == 15


def test_completed_and_expired_items_are_skipped(make_user, make_challenge, now):
    user = make_user()
    MissionEngine.generate(user.id, now=now)
    challenge = make_challenge(requirement_type='earn_xp', requirement_target=10)
    ChallengeEngine.join(challenge.id, user.id, now=now)
    record_activity(user.id, 'earn_xp', 100, now=now)

    summary = record_activity(user.id, 'earn_xp', 5, now=now)
    assert summary == {'missions_updated': 0, 'challenges_updated': 0, 'errors': 0}

    tomorrow = record_activity(user.id, 'complete_lessons', 1, now=now + timedelta(days=1))
    assert tomorrow['missions_updated'] == 0


def test_unrelated_activity_touches_nothing(make_user, now):
    user = make_user()
    MissionEngine.generate(user.id, now=now)

    assert record_activity(user.id, 'help_others', 1, now=now)['missions_updated'] == 0


def test_failures_are_logged_and_counted_not_raised(make_user, make_challenge, now, monkeypatch, caplog):
    """A failing mission update is swallowed; the mission simply lags behind"""
    user = make_user()
    missions = MissionEngine.generate(user.id, now=now)
    challenge = make_challenge(requirement_type='complete_lessons', requirement_target=5)
    ChallengeEngine.join(challenge.id, user.id, now=now)

    def broken_update(*args, **kwargs):
        raise RuntimeError('storage unavailable')

    monkeypatch.setattr(MissionEngine, 'update_progress', broken_update)

    summary = record_activity(user.id, 'complete_lessons', 1, now=now)

    assert summary == {'missions_updated': 0, 'challenges_updated': 1, 'errors': 1}
    assert _mission(missions, 'complete_lessons').progress == 0
    assert challenge.find_participant(user.id).progress == 1
    assert 'Failed to update mission' in caplog.text


def test_proof_missions_are_not_advanced_by_activity(make_user, now):
    user = make_user()
    missions = MissionEngine.generate(user.id, now=now)

    summary = record_activity(user.id, 'eco_action', 1, now=now)

    eco = _mission(missions, 'eco_action')
    assert summary == {'missions_updated': 0, 'challenges_updated': 0, 'errors': 0}
    assert eco.progress == 0
    assert eco.is_completed is False


def test_rejected_missions_are_skipped(make_user, now):
    user = make_user()
    mission = _mission(MissionEngine.generate(user.id, now=now), 'complete_lessons')
    mission.status = 'rejected'
    db.session.commit()

    summary = record_activity(user.id, 'complete_lessons', 3, now=now)

    assert summary['missions_updated'] == 0
    assert mission.is_completed is False


def test_failed_item_keeps_callers_pending_work(make_user, now, monkeypatch):
    user = make_user()
    MissionEngine.generate(user.id, now=now)

    def broken_update(*args, **kwargs):
        raise RuntimeError('storage unavailable')

    monkeypatch.setattr(MissionEngine, 'update_progress', broken_update)
    user.xp_points = 999

    summary = record_activity(user.id, 'complete_lessons', 1, now=now)
    db.session.commit()

    assert summary['errors'] == 1
    db.session.expire_all()
    assert user.xp_points == 999


def test_fan_out_leaves_commit_to_caller(make_user, now):
    user = make_user()
    missions = MissionEngine.generate(user.id, now=now)
    user.xp_points = 999

    summary = record_activity(user.id, 'complete_lessons', 1, now=now)
    assert summary['missions_updated'] == 1

    db.session.rollback()

    assert user.xp_points == 0
    assert _mission(missions, 'complete_lessons').progress == 0
