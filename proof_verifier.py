"""
Proof Verification Heuristic for the EcoQuest progression engine
Deterministic keyword/format scoring of submitted proofs (0-100)
"""

from typing import Optional, Dict, List, Tuple

from errors import ValidationError


APPROVED = 'approved'
NEEDS_REVIEW = 'needs_review'
REJECTED = 'rejected'

IMAGE_EXTENSIONS = ('.jpg', '.jpeg', '.png', '.webp', '.gif')
UPLOAD_MARKERS = ('upload', 'cloudinary')

# Title triggers select which keyword set a description is checked against
KEYWORD_CATEGORIES = [
    {
        'name': 'waste',
        'triggers': ('waste', 'zero', 'hero', 'garbage'),
        'keywords': ('trash', 'plastic', 'recycle', 'bin', 'bottle', 'can', 'waste', 'cleanup',
                     'litter', 'segregation', 'compost', 'biodegradable')
    },
    {
        'name': 'planting',
        'triggers': ('tree', 'plant', 'garden', 'leaf'),
        'keywords': ('tree', 'soil', 'green', 'leaf', 'nature', 'planted', 'pot', 'digging',
                     'watering', 'seedling', 'roots', 'sapling', 'earth')
    },
    {
        'name': 'energy',
        'triggers': ('energy', 'solar', 'electricity', 'power'),
        'keywords': ('solar', 'panel', 'light', 'off', 'saving', 'electricity', 'watt', 'power',
                     'device', 'appliance', 'switched', 'efficiency')
    },
]

GENERIC_KEYWORDS = ('eco', 'environment', 'nature', 'sustainable', 'green', 'planet', 'earth',
                    'protection', 'impact', 'conservation')

# Resume/CV vocabulary: a personal document is never evidence of an eco action
SPAM_KEYWORDS = ('resume', 'cv', 'curriculum vitae', 'experience', 'skills',
                 'education', 'projects', 'internship', 'languages', 'contact',
                 'address', 'objective', 'summary of qualifications', 'hobbies', 'personal details')

MISSION_KEYWORDS = ('eco', 'green', 'sustain', 'recycle', 'environment', 'clean', 'plant', 'tree')

MISSION_REJECTION_REASON = 'Insufficient proof quality. Please provide a clear image with detailed description.'


# Each engine scores proofs with its own tuning of the same pipeline.
# length_bonuses are (minimum length, points); 'cumulative' adds every tier
# reached, 'highest' only the first tier reached.
PROFILES = {
    'challenge': {
        'strict': True,
        'presence_points': 0,
        'image_extension_points': 0,
        'upload_path_points': 0,
        'categories': KEYWORD_CATEGORIES,
        'fallback_keywords': GENERIC_KEYWORDS,
        'keyword_points': 10,
        'keyword_cap': 50,
        'match_base_points': 50,
        'no_match_points': 15,
        'length_bonuses': ((51, 10), (151, 10)),
        'length_bonus_mode': 'cumulative',
        'length_requires_match': True,
        'spam_keywords': SPAM_KEYWORDS,
        'approve_threshold': 70,
        'review_threshold': 40,
    },
    'mission': {
        'strict': False,
        'presence_points': 30,
        'image_extension_points': 30,
        'upload_path_points': 25,
        'categories': [],
        'fallback_keywords': MISSION_KEYWORDS,
        'keyword_points': 5,
        'keyword_cap': 20,
        'match_base_points': 0,
        'no_match_points': 0,
        'length_bonuses': ((50, 20), (20, 15), (10, 10)),
        'length_bonus_mode': 'highest',
        'length_requires_match': False,
        'spam_keywords': (),
        'approve_threshold': 60,
        'review_threshold': 40,
    },
}


class ProofVerifier:
    """Scores a proof without side effects; identical inputs give identical results"""

    @staticmethod
    def get_profile(name: str) -> Dict:
        profile = PROFILES.get(name)
        if profile is None:
            raise ValidationError(f'Unknown verification profile: {name}')
        return profile

    @staticmethod
    def clamp(score: int) -> int:
        return max(0, min(100, score))

    @staticmethod
    def outcome_for(score: int, profile: Dict) -> str:
        if score >= profile['approve_threshold']:
            return APPROVED
        if score >= profile['review_threshold']:
            return NEEDS_REVIEW
        return REJECTED

    @staticmethod
    def format_points(proof_url: str, profile: Dict) -> int:
        """Image extension beats an upload/cloud path; anything else earns nothing"""
        url = proof_url.lower()
        if any(ext in url for ext in IMAGE_EXTENSIONS):
            return profile['image_extension_points']
        if any(marker in url for marker in UPLOAD_MARKERS):
            return profile['upload_path_points']
        return 0

    @staticmethod
    def select_keywords(title: str, profile: Dict) -> Tuple[str, Tuple[str, ...]]:
        title = title.lower()
        for category in profile['categories']:
            if any(trigger in title for trigger in category['triggers']):
                return category['name'], category['keywords']
        return 'generic', profile['fallback_keywords']

    @staticmethod
    def matched_keywords(description: str, keywords) -> List[str]:
        text = description.lower()
        return [keyword for keyword in keywords if keyword in text]

    @staticmethod
    def length_points(description: str, profile: Dict) -> int:
        length = len(description)
        points = 0
        for minimum, bonus in profile['length_bonuses']:
            if length >= minimum:
                points += bonus
                if profile['length_bonus_mode'] == 'highest':
                    break
        return points

    @staticmethod
    def is_spam(description: str, profile: Dict) -> bool:
        text = description.lower()
        return any(keyword in text for keyword in profile['spam_keywords'])

    @staticmethod
    def verify(proof_url: Optional[str], description: Optional[str], title: Optional[str],
               profile_name: str) -> Dict:
        """
        Score a proof against the named profile

        Args:
            proof_url: Stable reference to the uploaded evidence (may be empty)
            description: Free-text description supplied with the proof
            title: Title of the mission/challenge the proof is for
            profile_name: 'challenge' or 'mission'

        Returns:
            Dict with score (0-100), outcome, feedback and details
        """
        if proof_url is not None and not isinstance(proof_url, str):
            raise ValidationError('Proof reference must be a string')
        if description is not None and not isinstance(description, str):
            raise ValidationError('Proof description must be a string')
        if title is not None and not isinstance(title, str):
            raise ValidationError('Title must be a string')

        profile = ProofVerifier.get_profile(profile_name)
        proof_url = (proof_url or '').strip()
        description = description or ''
        title = title or ''

        details = {
            'has_image': bool(proof_url),
            'image_quality': 0,
            'relevance_score': 0,
            'category': None,
            'keyword_matches': 0,
            'flagged_as_spam': False
        }

        if ProofVerifier.is_spam(description, profile):
            details['flagged_as_spam'] = True
            return ProofVerifier._result(
                0, profile, details,
                'A resume/CV or personal document was detected. This is unrelated to the environmental task.'
            )

        if not proof_url and profile['strict']:
            return ProofVerifier._result(
                0, profile, details,
                'No photo evidence provided. Written descriptions without a photo are not admissible.'
            )

        score = 0
        if proof_url:
            score += profile['presence_points']
            details['image_quality'] = ProofVerifier.format_points(proof_url, profile)
            score += details['image_quality']

        category, keywords = ProofVerifier.select_keywords(title, profile)
        details['category'] = category
        matches = ProofVerifier.matched_keywords(description, keywords)
        details['keyword_matches'] = len(matches)

        relevance = 0
        if matches:
            relevance += profile['match_base_points']
            relevance += min(len(matches) * profile['keyword_points'], profile['keyword_cap'])
        else:
            relevance += profile['no_match_points']

        if matches or not profile['length_requires_match']:
            relevance += ProofVerifier.length_points(description, profile)

        details['relevance_score'] = relevance
        score = ProofVerifier.clamp(score + relevance)

        if matches:
            feedback = f'Evidence matched {len(matches)} relevance marker(s) for "{title}".'
        elif profile['strict']:
            feedback = f'Relevance mismatch: nothing in the description links it to "{title}".'
        else:
            feedback = 'Description did not mention the eco action.'

        result = ProofVerifier._result(score, profile, details, feedback)
        if result['outcome'] == REJECTED and not profile['strict']:
            result['feedback'] = MISSION_REJECTION_REASON
        return result

    @staticmethod
    def _result(score: int, profile: Dict, details: Dict, feedback: str) -> Dict:
        score = ProofVerifier.clamp(score)
        return {
            'score': score,
            'outcome': ProofVerifier.outcome_for(score, profile),
            'feedback': feedback,
            'details': details
        }


def verify_challenge_proof(proof_url, description, title) -> Dict:
    return ProofVerifier.verify(proof_url, description, title, 'challenge')


def verify_mission_proof(proof_url, description, title) -> Dict:
    return ProofVerifier.verify(proof_url, description, title, 'mission')
