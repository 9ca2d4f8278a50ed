"""Weight unit conversion and display rounding.

All load math inside loadwise runs in kilograms. Pounds only show up when a
value enters from a user/gym setting or leaves for display.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

from .constants import KG_PER_LB, LB_PER_KG


class WeightUnit(str, Enum):
    KG = 'kg'
    LB = 'lb'

    @classmethod
    def parse(cls, value) -> 'WeightUnit':
        if isinstance(value, WeightUnit):
            return value
        if value is None:
            return cls.KG
        return cls(str(value).strip().lower())

    def other(self) -> 'WeightUnit':
        return WeightUnit.LB if self is WeightUnit.KG else WeightUnit.KG


def kg_to_lb(kg: float) -> float:
    return kg * LB_PER_KG


def lb_to_kg(lb: float) -> float:
    return lb * KG_PER_LB


def convert_weight(value: float, from_unit, to_unit) -> float:
    """Convert ``value`` between units without rounding."""
    from_unit = WeightUnit.parse(from_unit)
    to_unit = WeightUnit.parse(to_unit)
    if from_unit is to_unit:
        return float(value)
    if from_unit is WeightUnit.KG:
        return kg_to_lb(value)
    return lb_to_kg(value)


def to_kg(value: float, unit) -> float:
    return convert_weight(value, unit, WeightUnit.KG)


def round_weight(weight: float, unit) -> float:
    """Round to realistic loading precision: 0.5 kg or 1 lb."""
    unit = WeightUnit.parse(unit)
    if unit is WeightUnit.KG:
        return round(weight * 2) / 2.0
    return float(round(weight))


def from_kg(value_kg: float, unit) -> float:
    """Convert a kg value into ``unit`` and round to display precision."""
    return round_weight(convert_weight(value_kg, WeightUnit.KG, unit), unit)


def normalize_steps(unit, values: Iterable[float]) -> list[float]:
    """
    Canonicalise a user-edited weight list (plates, dumbbells, stack steps).

    Non-positive entries are dropped, values are rounded to the unit's
    precision (1 decimal for kg, whole pounds for lb), duplicates removed and
    the result sorted ascending.
    """
    unit = WeightUnit.parse(unit)
    cleaned = set()
    for v in values:
        try:
            v = float(v)
        except (TypeError, ValueError):
            continue
        if v <= 0:
            continue
        cleaned.add(round(v, 1) if unit is WeightUnit.KG else float(round(v)))
    return sorted(w for w in cleaned if w > 0)


@dataclass
class PlateSum:
    total_kg: float
    total_display: float
    unit_display: WeightUnit


def sum_plates(plates: Sequence[tuple[float, str]], display_unit) -> PlateSum:
    """Sum (weight, unit) pairs that may mix kg and lb plates."""
    display_unit = WeightUnit.parse(display_unit)
    total_kg = sum(to_kg(weight, unit) for weight, unit in plates)
    return PlateSum(
        total_kg=total_kg,
        total_display=from_kg(total_kg, display_unit),
        unit_display=display_unit,
    )


def get_display_unit(exercise_unit=None, user_unit=None, gym_unit=None) -> WeightUnit:
    # exercise preference beats user preference beats gym default
    for candidate in (exercise_unit, user_unit, gym_unit):
        if candidate:
            return WeightUnit.parse(candidate)
    return WeightUnit.KG


def format_weight(weight: float, unit, display_unit=None, show_hint: bool = True) -> str:
    unit = WeightUnit.parse(unit)
    display_unit = WeightUnit.parse(display_unit or unit)
    if unit is display_unit:
        return f"{weight:g} {display_unit.value}"

    weight_kg = to_kg(weight, unit)
    converted = from_kg(weight_kg, display_unit)
    if not show_hint:
        return f"{converted:g} {display_unit.value}"
    # hint shows the native label printed on the plate/dumbbell
    return f"{converted:g} {display_unit.value} (≈ {round_weight(weight, unit):g} {unit.value})"


__all__ = [
    "WeightUnit",
    "kg_to_lb",
    "lb_to_kg",
    "convert_weight",
    "to_kg",
    "from_kg",
    "round_weight",
    "normalize_steps",
    "PlateSum",
    "sum_plates",
    "get_display_unit",
    "format_weight",
]
