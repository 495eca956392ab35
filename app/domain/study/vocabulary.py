"""
Fixed vocabularies used to normalize free-text study interests.
"""

CANONICAL_TAGS: tuple[str, ...] = (
    "hope",
    "anxiety",
    "peace",
    "trust",
    "suffering",
    "grief",
    "joy",
    "prayer",
    "holiness",
    "justice",
    "mercy",
    "compassion",
    "generosity",
    "money",
    "work",
    "relationships",
    "marriage",
    "parenting",
    "leadership",
    "wisdom",
    "creation",
    "prophecy",
    "mission",
    "identity-in-christ",
    "forgiveness",
    "spiritual-disciplines",
    "apologetics",
)

SENSITIVITY_FLAGS: tuple[str, ...] = (
    "trauma",
    "abuse",
    "addiction",
    "grief",
)

MAX_RELATED_TAGS = 5

CANONICAL_TAG_SET = frozenset(CANONICAL_TAGS)
SENSITIVITY_FLAG_SET = frozenset(SENSITIVITY_FLAGS)
