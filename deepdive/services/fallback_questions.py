"""Contextual fallback questions.

Used when the reasoning service cannot produce a question after all retries.
The bank is a pure lookup table: symptom keyword -> body area -> ordered
questions, with "*" as the any-area entry and a generic list referencing the
assessed area as the final fallback. Nothing here touches the network.
"""

from typing import Dict, Iterable, List, Optional

from deepdive.domain.models.session import SubjectContext

ANY_AREA = "*"

KEYWORD_ALIASES: Dict[str, str] = {
    "ache": "pain",
    "aching": "pain",
    "hurt": "pain",
    "sore": "pain",
    "tender": "pain",
    "headache": "pain",
    "migraine": "pain",
    "temperature": "fever",
    "chills": "fever",
    "itch": "rash",
    "itchy": "rash",
    "bump": "swelling",
    "swollen": "swelling",
    "lump": "swelling",
    "dizzy": "dizziness",
    "lightheaded": "dizziness",
    "vertigo": "dizziness",
    "tired": "fatigue",
    "exhausted": "fatigue",
    "cough": "cough",
    "numb": "numbness",
    "tingling": "numbness",
    "nausea": "nausea",
    "vomit": "nausea",
}

AREA_ALIASES: Dict[str, str] = {
    "forehead": "head",
    "temple": "head",
    "skull": "head",
    "scalp": "head",
    "ribs": "chest",
    "heart": "chest",
    "belly": "abdomen",
    "stomach": "abdomen",
    "lower back": "back",
    "spine": "back",
    "throat": "neck",
}

QUESTION_BANK: Dict[str, Dict[str, List[str]]] = {
    "pain": {
        "head": [
            "Where exactly in your head is the pain located, and does it stay in one spot or move around?",
            "How would you describe the head pain: throbbing, pressing, sharp, or dull?",
            "Does anything make the head pain better or worse, such as light, noise, or lying down?",
        ],
        "chest": [
            "Does the chest pain get worse when you breathe deeply, cough, or press on the area?",
            "Does the chest pain spread to your arm, jaw, neck, or back?",
            "Did the chest pain start during physical activity or while you were resting?",
        ],
        "abdomen": [
            "Which part of your abdomen hurts most: upper, lower, left, right, or around the navel?",
            "Is the abdominal pain related to eating, and has your appetite changed?",
        ],
        "back": [
            "Does the back pain travel down either leg, or stay in your back?",
            "Did the back pain begin after lifting, twisting, or an injury?",
        ],
        ANY_AREA: [
            "On a scale of 1 to 10, how severe is the pain in your {area} right now, and how has it changed?",
            "Is the pain in your {area} constant, or does it come and go?",
        ],
    },
    "fever": {
        ANY_AREA: [
            "What is the highest temperature you have measured, and when did the fever start?",
            "Along with the fever, have you had chills, sweating, or body aches?",
        ],
    },
    "rash": {
        ANY_AREA: [
            "Has the rash on your {area} spread, changed colour, or started to blister?",
            "Did the rash appear after contact with anything new, such as a food, medication, or product?",
        ],
    },
    "swelling": {
        ANY_AREA: [
            "Is the swelling in your {area} warm, red, or painful to touch?",
            "Has the swelling in your {area} grown, shrunk, or stayed the same since you noticed it?",
        ],
    },
    "dizziness": {
        "head": [
            "Does the dizziness feel like the room is spinning, or more like you might faint?",
            "Does the dizziness happen when you change position, such as standing up or turning your head?",
        ],
        ANY_AREA: [
            "When does the dizziness happen, and how long does each episode last?",
        ],
    },
    "fatigue": {
        ANY_AREA: [
            "How long have you been feeling this tired, and is it affecting your daily activities?",
            "Has your sleep changed recently, in quantity or quality?",
        ],
    },
    "cough": {
        ANY_AREA: [
            "Is the cough dry, or are you bringing up mucus? If so, what colour is it?",
            "Is the cough worse at any particular time of day or night?",
        ],
    },
    "numbness": {
        ANY_AREA: [
            "Exactly where in your {area} do you feel the numbness or tingling, and does it spread?",
            "Is the numbness constant, or does it come and go with certain positions or activities?",
        ],
    },
    "nausea": {
        ANY_AREA: [
            "How often are you feeling nauseous, and have you been able to keep food and fluids down?",
        ],
    },
}

GENERIC_QUESTIONS: List[str] = [
    "Can you describe how the symptoms in your {area} have changed since they first started?",
    "What makes the symptoms in your {area} better or worse?",
    "Have you noticed any other symptoms alongside what you're feeling in your {area}?",
    "How are the symptoms in your {area} affecting your sleep, work, or daily activities?",
]

DEFAULT_AREA = "affected area"


def normalize_area(area: Optional[str]) -> Optional[str]:
    """Lowercase an area and resolve aliases ("forehead" -> "head")."""
    if not area:
        return None
    value = area.strip().lower().replace("_", " ")
    for alias, canonical in AREA_ALIASES.items():
        if alias in value:
            return canonical
    return value or None


def detect_keywords(text: str) -> List[str]:
    """Bank keywords mentioned in text, in order of first appearance."""
    lowered = (text or "").lower()
    hits = []
    for word in list(QUESTION_BANK) + list(KEYWORD_ALIASES):
        position = lowered.find(word)
        if position >= 0:
            keyword = KEYWORD_ALIASES.get(word, word)
            hits.append((position, keyword))
    ordered: List[str] = []
    for _, keyword in sorted(hits):
        if keyword not in ordered:
            ordered.append(keyword)
    return ordered


def candidate_questions(subject: SubjectContext) -> List[str]:
    """All applicable questions for a subject, most specific first."""
    area = normalize_area(subject.area)
    display_area = (subject.area or "").strip() or DEFAULT_AREA
    candidates: List[str] = []

    for keyword in detect_keywords(subject.symptom_text):
        by_area = QUESTION_BANK.get(keyword, {})
        if area and area in by_area:
            candidates.extend(by_area[area])
        candidates.extend(by_area.get(ANY_AREA, []))

    candidates.extend(GENERIC_QUESTIONS)
    return [q.format(area=display_area) for q in candidates]


def contextual_fallback_question(
    subject: SubjectContext,
    asked: Iterable[str] = (),
    turn_number: int = 0,
) -> str:
    """Pick a locally synthesized next question. Never returns a blank string.

    Args:
        subject: Subject being assessed (symptoms and body area/category)
        asked: Questions already in the transcript, skipped if possible
        turn_number: Used to rotate through candidates once all were asked
    """
    candidates = candidate_questions(subject)
    already = {q.strip().lower() for q in asked}
    for question in candidates:
        if question.strip().lower() not in already:
            return question
    return candidates[turn_number % len(candidates)]
