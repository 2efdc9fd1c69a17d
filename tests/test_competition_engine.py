import pytest
from datetime import timedelta

from competition_engine import CompetitionEngine, COMPETITION_FORMATS, CRITERIA_TYPES
from errors import (
    Conflict, StateError, CompetitionFull, InsufficientFunds, NotParticipant,
    ValidationError, Forbidden, NotFound
)
from models import db, CompetitionParticipant, LeaderboardEntry, Notification, RewardGrant


def _register_all(competition, users, now):
    for user in users:
        CompetitionEngine.register(competition.id, user.id, now=now)


# ==================== REGISTRATION ====================

def test_register_debits_entry_fee(make_user, make_competition, now):
    user = make_user(coins=30)
    competition = make_competition(entry_fee_coins=10)

    CompetitionEngine.register(competition.id, user.id, team_name='Green Team', now=now)

    participant = competition.find_participant(user.id)
    assert participant.team_name == 'Green Team'
    assert user.coins == 20
    assert Notification.query.filter_by(user_id=user.id, type='competition_start').count() == 1


def test_duplicate_registration_conflicts(make_user, make_competition, now):
    user = make_user(coins=30)
    competition = make_competition(entry_fee_coins=10)
    CompetitionEngine.register(competition.id, user.id, now=now)

    with pytest.raises(Conflict):
        CompetitionEngine.register(competition.id, user.id, now=now)

    assert user.coins == 20
    assert CompetitionParticipant.query.filter_by(competition_id=competition.id).count() == 1


def test_registration_lost_to_concurrent_insert_conflicts(make_user, make_competition, now):
    """Another request committed the same registration first; only the database sees it"""
    user = make_user(coins=30)
    competition = make_competition(entry_fee_coins=10)
    db.session.add(CompetitionParticipant(competition_id=competition.id, user_id=user.id, registered_at=now))
    db.session.commit()

    with pytest.raises(Conflict):
        CompetitionEngine.register(competition.id, user.id, now=now)

    assert user.coins == 30
    assert CompetitionParticipant.query.filter_by(competition_id=competition.id).count() == 1
    assert Notification.query.filter_by(user_id=user.id).count() == 0


def test_create_accepts_every_format_and_criteria(app, now):
    dates = {
        'registration_start': now,
        'registration_end': now + timedelta(days=1),
        'start_date': now + timedelta(days=2),
        'end_date': now + timedelta(days=3),
    }
    created = []
    for fmt in COMPETITION_FORMATS:
        for criteria in CRITERIA_TYPES:
            created.append(CompetitionEngine.create(dict(
                dates, title=f'{fmt} {criteria}', type='tournament', format=fmt, criteria_type=criteria
            )))

    assert len(created) == 20
    assert {c.format for c in created} == {'single_elimination', 'double_elimination', 'round_robin', 'points_based'}
    assert {c.criteria_type for c in created} == {'highest_score', 'fastest_time', 'most_xp', 'accuracy', 'completion_rate'}


def test_create_rejects_unknown_criteria(app, now):
    with pytest.raises(ValidationError):
        CompetitionEngine.create({
            'title': 'Odd', 'type': 'race', 'format': 'points_based', 'criteria_type': 'most_accurate',
            'registration_start': now, 'registration_end': now,
            'start_date': now, 'end_date': now + timedelta(days=1),
        })


def test_insufficient_funds_leaves_no_trace(make_user, make_competition, now):
    user = make_user(coins=20)
    competition = make_competition(entry_fee_coins=50)

    with pytest.raises(InsufficientFunds) as excinfo:
        CompetitionEngine.register(competition.id, user.id, now=now)

    assert excinfo.value.details == {'required': 50, 'available': 20}
    assert CompetitionParticipant.query.count() == 0
    assert user.coins == 20


def test_register_after_window_closes(make_user, make_competition, now):
    user = make_user()
    competition = make_competition(registration_end=now - timedelta(days=1))

    with pytest.raises(StateError):
        CompetitionEngine.register(competition.id, user.id, now=now)


def test_registration_stays_open_until_end_of_day(make_user, make_competition, now):
    user = make_user()
    competition = make_competition(registration_end=now.replace(hour=0))

    CompetitionEngine.register(competition.id, user.id, now=now)

    assert competition.find_participant(user.id) is not None


def test_register_full_competition(make_user, make_competition, now):
    first, second = make_user(), make_user()
    competition = make_competition(max_participants=1)
    CompetitionEngine.register(competition.id, first.id, now=now)

    with pytest.raises(CompetitionFull):
        CompetitionEngine.register(competition.id, second.id, now=now)


def test_register_missing_competition(make_user, now):
    user = make_user()

    with pytest.raises(NotFound):
        CompetitionEngine.register(404, user.id, now=now)


# ==================== LIFECYCLE ====================

def test_auto_transition_is_idempotent(make_competition, now):
    competition = make_competition()
    during = now + timedelta(days=1, hours=1)

    assert CompetitionEngine.auto_transition(during) == {'started': 1, 'completed': 0}
    assert CompetitionEngine.auto_transition(during) == {'started': 0, 'completed': 0}
    assert competition.status == 'in_progress'


def test_cancelled_competition_is_never_advanced(make_user, make_competition, now):
    competition = make_competition()
    CompetitionEngine.cancel(competition.id)

    CompetitionEngine.sync_lifecycle(now + timedelta(days=10))

    assert competition.status == 'cancelled'
    assert competition.finalized is False


def test_score_requires_running_competition(make_user, make_competition, now):
    user = make_user()
    competition = make_competition()
    CompetitionEngine.register(competition.id, user.id, now=now)

    with pytest.raises(StateError):
        CompetitionEngine.update_score(competition.id, user.id, 10, now=now)


def test_score_requires_participation(make_user, make_competition, now):
    user, outsider = make_user(), make_user()
    competition = make_competition()
    CompetitionEngine.register(competition.id, user.id, now=now)

    with pytest.raises(NotParticipant):
        CompetitionEngine.update_score(competition.id, outsider.id, 10, now=now + timedelta(days=1, hours=1))


def test_negative_score_is_invalid(make_user, make_competition, now):
    user = make_user()
    competition = make_competition()

    with pytest.raises(ValidationError):
        CompetitionEngine.update_score(competition.id, user.id, -5, now=now)


def test_score_overwrites_previous(make_user, make_competition, now):
    user = make_user()
    competition = make_competition()
    CompetitionEngine.register(competition.id, user.id, now=now)
    during = now + timedelta(days=1, hours=1)

    CompetitionEngine.update_score(competition.id, user.id, 40, accuracy=80.0, time=120, now=during)
    CompetitionEngine.update_score(competition.id, user.id, 25, accuracy=60.0, time=90, now=during)

    participant = competition.find_participant(user.id)
    assert participant.score == 25
    assert participant.time_completed == 90
    assert participant.completed is True


def test_manual_start_requires_min_participants(make_user, make_competition, now):
    user = make_user()
    competition = make_competition(min_participants=2)
    CompetitionEngine.register(competition.id, user.id, now=now)

    with pytest.raises(StateError):
        CompetitionEngine.start(competition.id)

    CompetitionEngine.register(competition.id, make_user().id, now=now)
    CompetitionEngine.start(competition.id)

    assert competition.status == 'in_progress'


# ==================== FINALIZATION ====================

def test_end_ranks_and_pays_prizes(make_user, make_competition, now):
    users = [make_user() for _ in range(4)]
    competition = make_competition()
    _register_all(competition, users, now)
    during = now + timedelta(days=1, hours=1)

    CompetitionEngine.update_score(competition.id, users[0].id, 50, now=during)
    CompetitionEngine.update_score(competition.id, users[1].id, 80, now=during)
    CompetitionEngine.update_score(competition.id, users[2].id, 80, now=during)

    CompetitionEngine.end(competition.id, now=during)

    standings = [(e.user_id, e.rank, e.prize) for e in competition.leaderboard]
    assert standings == [
        (users[1].id, 1, 'First Place'),
        (users[2].id, 2, 'Second Place'),
        (users[0].id, 3, 'Third Place'),
        (users[3].id, 4, 'Participation'),
    ]
    assert competition.status == 'completed'
    assert competition.finalized is True
    assert users[1].xp_points == 500 and users[1].coins == 100
    assert users[3].xp_points == 50 and users[3].coins == 5
    assert Notification.query.filter_by(type='competition_result').count() == 4


def test_leaderboard_is_contiguous_permutation(make_user, make_competition, now):
    users = [make_user() for _ in range(6)]
    competition = make_competition()
    _register_all(competition, users, now)

    CompetitionEngine.end(competition.id, now=now)

    ranks = sorted(e.rank for e in competition.leaderboard)
    assert len(competition.leaderboard) == len(competition.participants)
    assert ranks == list(range(1, 7))


def test_ending_twice_never_pays_twice(make_user, make_competition, now):
    users = [make_user(), make_user()]
    competition = make_competition()
    _register_all(competition, users, now)

    CompetitionEngine.end(competition.id, now=now)
    CompetitionEngine.end(competition.id, now=now)

    assert RewardGrant.query.filter_by(entity_type='competition_prize').count() == 2
    assert LeaderboardEntry.query.count() == 2
    assert users[0].coins + users[1].coins == 150


def test_fastest_time_ranks_lower_time_first(make_user, make_competition, now):
    slow, fast = make_user(), make_user()
    competition = make_competition(criteria_type='fastest_time')
    _register_all(competition, [slow, fast], now)
    during = now + timedelta(days=1, hours=1)

    CompetitionEngine.update_score(competition.id, slow.id, 100, time=300, now=during)
    CompetitionEngine.update_score(competition.id, fast.id, 10, time=120, now=during)
    CompetitionEngine.end(competition.id, now=during)

    assert competition.find_participant(fast.id).rank == 1
    assert competition.find_participant(slow.id).rank == 2


def test_read_path_and_sweep_reach_same_state(make_user, make_competition, now):
    users = [make_user(), make_user()]
    competition = make_competition()
    _register_all(competition, users, now)
    after = now + timedelta(days=5)

    CompetitionEngine.get(competition.id, now=after)
    grants = RewardGrant.query.count()
    CompetitionEngine.sync_lifecycle(after)

    assert competition.status == 'completed'
    assert competition.finalized is True
    assert RewardGrant.query.count() == grants == 2


def test_cannot_end_cancelled_competition(make_competition):
    competition = make_competition()
    CompetitionEngine.cancel(competition.id)

    with pytest.raises(StateError):
        CompetitionEngine.end(competition.id)


# ==================== CANCELLATION ====================

def test_cancel_refunds_once(make_user, make_competition, now):
    users = [make_user(coins=30), make_user(coins=30)]
    competition = make_competition(entry_fee_coins=10)
    _register_all(competition, users, now)

    CompetitionEngine.cancel(competition.id)
    CompetitionEngine.cancel(competition.id)

    assert competition.status == 'cancelled'
    assert [u.coins for u in users] == [30, 30]
    assert Notification.query.filter_by(type='competition_cancelled').count() == 2


def test_cancel_completed_competition(make_user, make_competition, now):
    competition = make_competition()
    CompetitionEngine.end(competition.id, now=now)

    with pytest.raises(StateError):
        CompetitionEngine.cancel(competition.id)


def test_cancel_is_creator_only(make_user, make_competition):
    creator, stranger = make_user(role='teacher'), make_user()
    competition = make_competition(created_by=creator.id)

    with pytest.raises(Forbidden):
        CompetitionEngine.cancel(competition.id, user_id=stranger.id)

    CompetitionEngine.cancel(competition.id, user_id=creator.id)
    assert competition.status == 'cancelled'


# ==================== QUERIES ====================

def test_list_filters(make_competition, now):
    upcoming = make_competition(title='Upcoming')
    make_competition(title='Running', start_date=now - timedelta(hours=1))

    titles = [c.title for c in CompetitionEngine.list_competitions('upcoming', now=now)]
    assert titles == [upcoming.title]
    assert [c.title for c in CompetitionEngine.list_competitions('ongoing', now=now)] == ['Running']

    with pytest.raises(ValidationError):
        CompetitionEngine.list_competitions('someday', now=now)


def test_user_stats_after_win(make_user, make_competition, now):
    winner, runner_up = make_user(), make_user()
    competition = make_competition()
    _register_all(competition, [winner, runner_up], now)
    during = now + timedelta(days=1, hours=1)
    CompetitionEngine.update_score(competition.id, winner.id, 90, now=during)
    CompetitionEngine.update_score(competition.id, runner_up.id, 70, now=during)
    CompetitionEngine.end(competition.id, now=during)

    assert CompetitionEngine.user_stats(winner.id) == {'participated': 1, 'won': 1, 'total_points': 90}
    assert CompetitionEngine.user_stats(runner_up.id)['won'] == 0


def test_provisional_leaderboard_before_finalization(make_user, make_competition, now):
    first, second = make_user(), make_user()
    competition = make_competition()
    _register_all(competition, [first, second], now)
    during = now + timedelta(days=1, hours=1)
    CompetitionEngine.update_score(competition.id, second.id, 40, now=during)

    board = CompetitionEngine.leaderboard(competition.id, now=during)

    assert [(row['user_id'], row['rank']) for row in board] == [(second.id, 1), (first.id, 2)]
