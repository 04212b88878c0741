"""
Age gate for catalog items flagged with a warning.

Only a narrow heuristic is applied to contraindication text: explicit age
limits ("만 6세 이하", "7세 미만", "12 years or younger", "under 7") and a few
keywords naming a patient group.
"""
import logging
import re

logger = logging.getLogger(__name__)

# (pattern, inclusive) - inclusive limits refuse ages <= N, the others ages < N
AGE_LIMIT_PATTERNS = [
    (re.compile(r'만\s*(\d+)\s*세\s*이하'), True),
    (re.compile(r'(?<!\d)(\d+)\s*세\s*이하'), True),
    (re.compile(r'(\d+)\s*세\s*미만'), False),
    (re.compile(r'(\d+)\s*years?\s*(?:of\s*age\s*)?(?:or|and)\s*(?:younger|under)', re.IGNORECASE), True),
    (re.compile(r'(?:under|below|younger\s+than)\s*(?:the\s*age\s*of\s*)?(\d+)', re.IGNORECASE), False),
]

CHILD_KEYWORDS = ('소아', '어린이', 'children')
SPECIAL_CONDITIONS = ('영아', '유아', '소아', '어린이', '임산부', '수유부', 'infant', 'children', 'pregnan', 'breast')

MINIMUM_AGE = 2
CONSULTATION_AGE = 7


def parse_contraindications(text):
    """
    Pull age limits and special patient groups out of free text.

    Returns:
        dict: {'age_limits': [(age, inclusive), ...], 'special_conditions': [...]}
    """
    result = {'age_limits': [], 'special_conditions': []}
    if not text:
        return result

    for pattern, inclusive in AGE_LIMIT_PATTERNS:
        for match in pattern.finditer(text):
            result['age_limits'].append((int(match.group(1)), inclusive))

    lowered = text.lower()
    result['special_conditions'] = [c for c in SPECIAL_CONDITIONS if c in lowered]
    return result


def get_dosage_adjustment(age):
    """Fraction of the adult dose for an age."""
    if age < 3:
        return 0
    if age < 7:
        return 0.25
    if age < 15:
        return 0.5
    return 1


def is_contraindicated_age(age, restrictions):
    for limit, inclusive in restrictions['age_limits']:
        if (inclusive and age <= limit) or (not inclusive and age < limit):
            return True
    if age < CONSULTATION_AGE and any(k in restrictions['special_conditions'] for k in CHILD_KEYWORDS):
        return True
    return False


def validate_age(age, contraindication_text=''):
    """
    Decide whether a user of ``age`` may take an item with the given
    contraindication text.

    Returns:
        dict: allowed, reason, warnings, adjusted_dosage, requires_consultation
    """
    result = {
        'allowed': True,
        'reason': None,
        'warnings': [],
        'adjusted_dosage': None,
        'requires_consultation': False,
    }

    if age < MINIMUM_AGE:
        return {
            'allowed': False,
            'reason': f"Infants under {MINIMUM_AGE} must not take this item.",
            'warnings': ["Consult a doctor."],
            'adjusted_dosage': None,
            'requires_consultation': True,
        }

    if age < CONSULTATION_AGE:
        result['warnings'].append(f"Under {CONSULTATION_AGE}: consult a doctor before taking.")
        result['requires_consultation'] = True

    restrictions = parse_contraindications(contraindication_text)
    if is_contraindicated_age(age, restrictions):
        logger.info(f"Age {age} refused by contraindication limits {restrictions['age_limits']}")
        return {
            'allowed': False,
            'reason': f"Age {age} is contraindicated for this item.",
            'warnings': ["Consult a doctor."],
            'adjusted_dosage': None,
            'requires_consultation': True,
        }

    adjustment = get_dosage_adjustment(age)
    if adjustment != 1:
        result['adjusted_dosage'] = adjustment
        result['warnings'].append(f"Children take {int(adjustment * 100)}% of the adult dose.")

    return result


def get_basic_age_validation(age):
    """Quick client-side flags that need no contraindication text."""
    return {
        'is_child': age < 15,
        'requires_parental_supervision': age < 18,
        'contraindicated_age': age < CONSULTATION_AGE,
        'dosage_multiplier': get_dosage_adjustment(age),
    }
