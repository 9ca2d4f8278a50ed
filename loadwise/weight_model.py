"""Equipment granularity: what loads a gym can physically build."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .constants import (
    DEFAULT_AUX_INCREMENTS_KG,
    DEFAULT_BAR_TYPES_KG,
    DEFAULT_PLATES_KG_PER_SIDE,
    DEFAULT_SINGLE_MIN_INCREMENT_KG,
    DEFAULT_STACK_INCREMENT_KG,
    MICRO_PLATE_THRESHOLD_KG,
    WEIGHT_MODEL_CACHE_MAX_AGE_SECONDS,
)
from .units import WeightUnit, to_kg

logger = logging.getLogger(__name__)

_EPS = 1e-6


@dataclass
class BarType:
    bar_kg: float


@dataclass
class PlateProfile:
    unit: WeightUnit
    barbell_weight: float
    ezbar_weight: float
    fixedbar_weight: float
    sides: List[float]
    micro: List[float] = field(default_factory=list)


@dataclass
class WeightModel:
    unit: WeightUnit
    bar_types: Dict[str, BarType]
    plates_kg_per_side: List[float]
    single_min_increment_kg: float
    stack_increment_kg: Optional[float] = None
    aux_increments_kg: Optional[List[float]] = None

    def bar_kg(self, bar_type_key: str | None) -> float:
        bar = self.bar_types.get(bar_type_key or 'barbell')
        return bar.bar_kg if bar else DEFAULT_BAR_TYPES_KG['barbell']

    def to_plate_profile(self, bar_type_key: str = 'barbell') -> PlateProfile:
        ezbar = self.bar_types.get('ezbar')
        fixed = self.bar_types.get('fixed')
        return PlateProfile(
            unit=self.unit,
            barbell_weight=self.bar_kg(bar_type_key),
            ezbar_weight=ezbar.bar_kg if ezbar else DEFAULT_BAR_TYPES_KG['ezbar'],
            fixedbar_weight=fixed.bar_kg if fixed else DEFAULT_BAR_TYPES_KG['fixed'],
            sides=list(self.plates_kg_per_side),
            micro=list(self.aux_increments_kg or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unit": self.unit.value,
            "bar_types": {k: {"bar_kg": v.bar_kg} for k, v in self.bar_types.items()},
            "plates_kg_per_side": list(self.plates_kg_per_side),
            "single_min_increment_kg": self.single_min_increment_kg,
            "stack_increment_kg": self.stack_increment_kg,
            "aux_increments_kg": list(self.aux_increments_kg or []),
        }


@dataclass
class InventoryItem:
    weight: float
    unit: WeightUnit = WeightUnit.KG

    @property
    def weight_kg(self) -> float:
        return to_kg(self.weight, self.unit)


@dataclass
class GymInventory:
    """Raw equipment lists owned by a gym, each entry in its native unit."""
    gym_id: str
    plates: List[InventoryItem] = field(default_factory=list)
    dumbbells: List[InventoryItem] = field(default_factory=list)
    stack_steps: List[InventoryItem] = field(default_factory=list)
    machine_aux: List[InventoryItem] = field(default_factory=list)

    @staticmethod
    def _kg(items: Sequence[InventoryItem]) -> List[float]:
        return sorted({round(item.weight_kg, 4) for item in items if item.weight > 0})

    def plates_kg(self) -> List[float]:
        return self._kg(self.plates)

    def dumbbells_kg(self) -> List[float]:
        return self._kg(self.dumbbells)

    def stack_steps_kg(self) -> List[float]:
        return self._kg(self.stack_steps)

    def machine_aux_kg(self) -> List[float]:
        return self._kg(self.machine_aux)

    def is_empty(self) -> bool:
        return not (self.plates or self.dumbbells or self.stack_steps or self.machine_aux)


def default_weight_model() -> WeightModel:
    """Hard-coded global default used whenever no gym model applies."""
    return WeightModel(
        unit=WeightUnit.KG,
        bar_types={key: BarType(kg) for key, kg in DEFAULT_BAR_TYPES_KG.items()},
        plates_kg_per_side=list(DEFAULT_PLATES_KG_PER_SIDE),
        single_min_increment_kg=DEFAULT_SINGLE_MIN_INCREMENT_KG,
        stack_increment_kg=DEFAULT_STACK_INCREMENT_KG,
        aux_increments_kg=list(DEFAULT_AUX_INCREMENTS_KG),
    )


def _smallest_gap(values: Sequence[float]) -> Optional[float]:
    gaps = [b - a for a, b in zip(values, values[1:]) if b - a > _EPS]
    return min(gaps) if gaps else None


def weight_model_from_inventory(inventory: GymInventory) -> WeightModel:
    """Build a gym-specific model; every entry is converted to kg first."""
    plates = sorted(inventory.plates_kg(), reverse=True)
    dumbbells = inventory.dumbbells_kg()
    steps = inventory.stack_steps_kg()
    aux = inventory.machine_aux_kg()

    units = {item.unit for item in inventory.plates}
    unit = units.pop() if len(units) == 1 else WeightUnit.KG

    return WeightModel(
        unit=unit,
        bar_types={key: BarType(kg) for key, kg in DEFAULT_BAR_TYPES_KG.items()},
        plates_kg_per_side=plates or list(DEFAULT_PLATES_KG_PER_SIDE),
        single_min_increment_kg=_smallest_gap(dumbbells) or DEFAULT_SINGLE_MIN_INCREMENT_KG,
        stack_increment_kg=_smallest_gap(steps) or DEFAULT_STACK_INCREMENT_KG,
        aux_increments_kg=aux or list(DEFAULT_AUX_INCREMENTS_KG),
    )


def next_weight_step_kg(load_type: str | None, side_min_plate_kg: float, single_min_increment_kg: float) -> float:
    """
    Smallest meaningful load change for a load type.

    A dual-load (barbell style) lift can only change by one plate per side,
    so its step is twice the smallest side plate. Single-load and stack
    lifts move by their own increment.
    """
    if load_type == 'dual_load':
        return 2 * side_min_plate_kg
    return single_min_increment_kg


@dataclass
class BarbellFill:
    total_kg: float
    per_side: List[float]
    bar_kg: float
    residual_kg: float


def greedy_side_fill(plates_desc: Sequence[float], target_kg: float) -> List[float]:
    """Fill one side largest plate first; never exceeds ``target_kg``."""
    selected: List[float] = []
    remaining = target_kg
    for plate in plates_desc:
        if plate <= 0:
            continue
        while remaining >= plate - _EPS and remaining > _EPS:
            selected.append(plate)
            remaining -= plate
    return selected


def closest_barbell_weight_kg(profile: PlateProfile, desired_kg: float, bar_kg: float = 20.0) -> BarbellFill:
    """Greedy barbell load: regular plates first, then micro plates."""
    per_side_target = max(0.0, desired_kg - bar_kg) / 2.0

    selected = greedy_side_fill(sorted(profile.sides, reverse=True), per_side_target)
    remaining = per_side_target - sum(selected)
    selected += greedy_side_fill(sorted(profile.micro or [], reverse=True), remaining)

    total = bar_kg + 2 * sum(selected)
    return BarbellFill(
        total_kg=round(total, 4),
        per_side=selected,
        bar_kg=bar_kg,
        residual_kg=round(desired_kg - total, 4),
    )


@dataclass
class PlateBreakdown:
    left_side: List[float]
    right_side: List[float]
    micro_plates: List[float]
    bar_kg: float
    total_kg: float


def calculate_plate_breakdown(total_kg: float, profile: PlateProfile, bar_kg: float = 20.0) -> PlateBreakdown:
    fill = closest_barbell_weight_kg(profile, total_kg, bar_kg)
    regular = [p for p in fill.per_side if p >= MICRO_PLATE_THRESHOLD_KG]
    micro = [p for p in fill.per_side if p < MICRO_PLATE_THRESHOLD_KG]
    return PlateBreakdown(
        left_side=regular,
        right_side=list(regular),
        micro_plates=micro,
        bar_kg=bar_kg,
        total_kg=fill.total_kg,
    )


def closest_machine_weight_kg(stack_steps: Sequence[float], aux_steps: Sequence[float], desired_kg: float) -> float:
    """Nearest stack step, optionally with one aux weight added."""
    if not stack_steps:
        return 0.0
    best = stack_steps[0]
    best_diff = abs(desired_kg - best)
    for step in stack_steps:
        for candidate in [step] + [step + aux for aux in aux_steps]:
            diff = abs(desired_kg - candidate)
            if diff < best_diff - _EPS:
                best, best_diff = candidate, diff
    return best


class WeightModelCache:
    """
    Per-process weight model cache.

    Entries are keyed by user and remember which gym they were built for, so
    a gym switch (``select_gym``) or an explicit ``invalidate`` drops them.
    Entries older than ``max_age_seconds`` read as missing.
    """

    def __init__(self, max_age_seconds: float = WEIGHT_MODEL_CACHE_MAX_AGE_SECONDS, clock=time.monotonic):
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        self._entries: Dict[str, tuple[Optional[str], WeightModel, float]] = {}

    def get(self, user_id: str, gym_id: Optional[str]) -> Optional[WeightModel]:
        entry = self._entries.get(str(user_id))
        if entry is None or entry[0] != gym_id:
            return None
        if self._clock() - entry[2] > self.max_age_seconds:
            self._entries.pop(str(user_id), None)
            return None
        return entry[1]

    def put(self, user_id: str, gym_id: Optional[str], model: WeightModel) -> None:
        self._entries[str(user_id)] = (gym_id, model, self._clock())

    def select_gym(self, user_id: str, gym_id: Optional[str]) -> None:
        entry = self._entries.get(str(user_id))
        if entry is not None and entry[0] != gym_id:
            del self._entries[str(user_id)]

    def invalidate(self, user_id: Optional[str] = None) -> None:
        if user_id is None:
            self._entries.clear()
        else:
            self._entries.pop(str(user_id), None)

    def __len__(self) -> int:
        return len(self._entries)


def get_active_weight_model(user_id: str, source, cache: WeightModelCache | None = None) -> WeightModel:
    """
    Resolve the weight model for the user's current gym.

    ``source`` needs ``get_active_gym_id(user_id)`` and
    ``get_gym_inventory(gym_id)``. With a ``cache``, a change of active gym
    drops the user's entry before the lookup. Lookup failures fall back to
    the global default model; this never raises.
    """
    try:
        gym_id = source.get_active_gym_id(user_id)
        if cache is not None:
            cache.select_gym(user_id, gym_id)
            cached = cache.get(user_id, gym_id)
            if cached is not None:
                return cached

        model = None
        if gym_id:
            inventory = source.get_gym_inventory(gym_id)
            if inventory is not None and inventory.plates:
                model = weight_model_from_inventory(inventory)
                logger.info(f"Weight model for user {user_id}: gym {gym_id} ({len(model.plates_kg_per_side)} plate sizes).")
        if model is None:
            model = default_weight_model()

        if cache is not None:
            cache.put(user_id, gym_id, model)
        return model
    except Exception as e:
        logger.warning(f"Weight model lookup failed for user {user_id}, using global default: {e}", exc_info=True)
        return default_weight_model()


__all__ = [
    "BarType",
    "PlateProfile",
    "WeightModel",
    "InventoryItem",
    "GymInventory",
    "default_weight_model",
    "weight_model_from_inventory",
    "next_weight_step_kg",
    "BarbellFill",
    "greedy_side_fill",
    "closest_barbell_weight_kg",
    "PlateBreakdown",
    "calculate_plate_breakdown",
    "closest_machine_weight_kg",
    "WeightModelCache",
    "get_active_weight_model",
]
