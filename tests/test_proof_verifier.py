import pytest

from errors import ValidationError
from proof_verifier import (
    ProofVerifier, verify_challenge_proof, verify_mission_proof,
    APPROVED, NEEDS_REVIEW, REJECTED, MISSION_REJECTION_REASON, PROFILES
)

PHOTO = 'https://cdn.example.com/uploads/proof.jpg'


# ==================== CHALLENGE PROFILE ====================

def test_waste_proof_is_approved():
    result = verify_challenge_proof(
        PHOTO,
        'I recycled plastic bottles and composted food scraps, photo of my sorted bin attached',
        'Waste Warrior Challenge'
    )

    assert result['details']['category'] == 'waste'
    assert result['details']['keyword_matches'] >= 2
    assert result['score'] >= 70
    assert result['outcome'] == APPROVED


def test_resume_is_rejected_even_with_image():
    result = verify_challenge_proof(
        PHOTO,
        'My Resume: 5 years experience, skills in Excel, education...',
        'Waste Warrior Challenge'
    )

    assert result['score'] == 0
    assert result['outcome'] == REJECTED
    assert result['details']['flagged_as_spam'] is True


def test_missing_photo_scores_zero_in_challenge_profile():
    result = verify_challenge_proof('', 'I recycled plastic bottles', 'Waste Warrior Challenge')

    assert result['score'] == 0
    assert result['outcome'] == REJECTED
    assert result['details']['has_image'] is False


def test_unrelated_description_gets_base_points_only():
    result = verify_challenge_proof(PHOTO, 'Had a nice day', 'Waste Warrior Challenge')

    assert result['score'] == 15
    assert result['outcome'] == REJECTED
    assert 'mismatch' in result['feedback'].lower()


def test_single_match_needs_review():
    result = verify_challenge_proof(PHOTO, 'I planted it', 'Plant a Tree')

    assert result['details']['category'] == 'planting'
    assert result['score'] == 60
    assert result['outcome'] == NEEDS_REVIEW


def test_generic_keywords_used_when_no_category_matches():
    result = verify_challenge_proof(PHOTO, 'Helping the environment', 'Community Day')

    assert result['details']['category'] == 'generic'
    assert result['score'] == 60


def test_length_bonuses_are_cumulative_for_challenges():
    description = 'I switched off every appliance and used solar power. ' * 4
    assert len(description) > 150

    result = verify_challenge_proof(PHOTO, description, 'Save Energy Week')

    # 50 base + capped 50 for keywords + 10 + 10 for length, clamped
    assert result['details']['relevance_score'] == 120
    assert result['score'] == 100


# ==================== MISSION PROFILE ====================

def test_mission_photo_with_description_is_approved():
    result = verify_mission_proof(
        'https://example.com/uploads/p.jpg',
        'Used my reusable bag at the market',
        'Eco Action: Reusable Bag'
    )

    # presence 30 + image 30 + length 15
    assert result['score'] == 75
    assert result['outcome'] == APPROVED


def test_mission_upload_path_without_description_needs_review():
    result = verify_mission_proof('https://example.com/uploads/photo', '', 'Waste Warrior')

    assert result['score'] == 55
    assert result['outcome'] == NEEDS_REVIEW


def test_mission_rejection_uses_stored_reason():
    result = verify_mission_proof('https://example.com/photo', '', 'Waste Warrior')

    assert result['score'] == 30
    assert result['outcome'] == REJECTED
    assert result['feedback'] == MISSION_REJECTION_REASON


def test_mission_profile_does_not_short_circuit_on_missing_photo():
    result = verify_mission_proof(
        None,
        'I recycled and planted a tree for a greener environment today',
        'Plant Life Supporter'
    )

    # keywords capped at 20 plus the top length tier
    assert result['score'] == 40
    assert result['outcome'] == NEEDS_REVIEW


def test_mission_profile_has_no_spam_gate():
    result = verify_mission_proof(PHOTO, 'resume', 'Waste Warrior')

    assert result['details']['flagged_as_spam'] is False
    assert result['score'] > 0


def test_profiles_are_tuned_independently():
    assert PROFILES['mission']['approve_threshold'] == 60
    assert PROFILES['challenge']['approve_threshold'] == 70
    assert PROFILES['mission']['review_threshold'] == PROFILES['challenge']['review_threshold'] == 40


# ==================== GENERAL ====================

@pytest.mark.parametrize('profile', ['challenge', 'mission'])
def test_verification_is_deterministic(profile):
    args = (PHOTO, 'Cleaned up litter and recycled cans at the park', 'Zero Waste Hero')

    first = ProofVerifier.verify(*args, profile_name=profile)
    second = ProofVerifier.verify(*args, profile_name=profile)

    assert first == second


def test_non_string_input_raises():
    with pytest.raises(ValidationError):
        verify_challenge_proof(PHOTO, 12345, 'Waste Warrior Challenge')


def test_unknown_profile_raises():
    with pytest.raises(ValidationError):
        ProofVerifier.verify(PHOTO, 'text', 'title', 'quiz')


def test_score_is_clamped():
    assert ProofVerifier.clamp(140) == 100
    assert ProofVerifier.clamp(-5) == 0
