"""Post-set effort ratings ("feel") and their RPE equivalents."""

import re
from enum import Enum
from typing import Optional


class Feel(str, Enum):
    VERY_HARD = '--'
    HARD = '-'
    JUST_RIGHT = '='
    EASY = '+'
    VERY_EASY = '++'

    @property
    def rpe(self) -> int:
        return FEEL_TO_RPE[self]


FEEL_TO_RPE = {
    Feel.VERY_HARD: 10,
    Feel.HARD: 9,
    Feel.JUST_RIGHT: 8,
    Feel.EASY: 7,
    Feel.VERY_EASY: 6,
}

# "++" and "--" must be tried before their single-character forms
_FEEL_PATTERN = re.compile(r'Feel:\s*(\+\+|\+|=|--|-)', re.IGNORECASE)


def parse_feel(value) -> Optional[Feel]:
    if value is None or isinstance(value, Feel):
        return value
    try:
        return Feel(str(value).strip())
    except ValueError:
        return None


def parse_feel_from_notes(notes: Optional[str]) -> Optional[Feel]:
    """Extract a ``Feel: <tag>`` marker from free-text set notes."""
    if not notes:
        return None
    match = _FEEL_PATTERN.search(notes)
    return Feel(match.group(1)) if match else None


def parse_feel_from_rpe(rpe: Optional[float]) -> Optional[Feel]:
    if not rpe:
        return None
    if rpe >= 9.5:
        return Feel.VERY_HARD
    if rpe >= 8.5:
        return Feel.HARD
    if rpe >= 7.5:
        return Feel.JUST_RIGHT
    if rpe >= 6.5:
        return Feel.EASY
    return Feel.VERY_EASY


def derive_feel(notes: Optional[str] = None, rpe: Optional[float] = None) -> Optional[Feel]:
    """An explicit tag in the notes wins over the numeric RPE."""
    return parse_feel_from_notes(notes) or parse_feel_from_rpe(rpe)
