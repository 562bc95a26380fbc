"""Confidence scoring and token estimation shared by the memory tiers.

Confidence for a preference is derived from how often it was observed
versus how often it was contradicted::

    confidence = reinforcements / (reinforcements + contradictions + 1)

    (1, 0)  -> 0.50
    (5, 0)  -> 0.83
    (25, 1) -> 0.93
    (25, 5) -> 0.81

Project soft context and domain patterns use simpler additive boosts
with a ceiling so that nothing learned automatically reaches certainty.
"""

import math

# Personal preferences
ESTABLISHED_CONFIDENCE_THRESHOLD = 0.7
MIN_REINFORCEMENTS_FOR_CONTRADICTION = 3
CONTRADICTION_THRESHOLD_FOR_REVIEW = 3
NEW_PREFERENCE_CONFIDENCE = 0.3
EXPLICIT_PREFERENCE_CONFIDENCE = 0.5
EXPLICIT_PREFERENCE_REINFORCEMENTS = 2
MANUAL_PREFERENCE_REINFORCEMENTS = 5
MIN_PROMPT_PREFERENCE_CONFIDENCE = 0.5

# Project soft context
NEW_CONTEXT_CONFIDENCE = 0.5
CONTEXT_REINFORCEMENT_STEP = 0.1
MANUAL_CONTEXT_CONFIDENCE = 0.8
MIN_CONTEXT_CONFIDENCE = 0.4

# Domain patterns
NEW_PATTERN_CONFIDENCE = 0.4
PATTERN_REINFORCEMENT_STEP = 0.05
MIN_PATTERN_CONFIDENCE = 0.6
MIN_PATTERN_PROJECT_COUNT = 2

# Ceiling for anything reinforced automatically
MAX_LEARNED_CONFIDENCE = 0.95


def clamp_confidence(value: float) -> float:
    return max(0.0, min(1.0, value))


def calculate_confidence(reinforcements: int, contradictions: int) -> float:
    """Confidence from reinforcement and contradiction counts, always in [0, 1]."""
    reinforcements = max(0, reinforcements)
    contradictions = max(0, contradictions)
    return clamp_confidence(reinforcements / (reinforcements + contradictions + 1))


def boost_confidence(current: float, step: float) -> float:
    """Additive boost capped at MAX_LEARNED_CONFIDENCE."""
    return clamp_confidence(min(MAX_LEARNED_CONFIDENCE, current + step))


def estimate_tokens(text: str) -> int:
    """Rough token count: about four characters per token."""
    return math.ceil(len(text) / 4)
