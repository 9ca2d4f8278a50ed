"""
Equipment-aware load resolution.

Takes a continuous desired load and snaps it to something the lifter can
actually put on the bar, pick off the rack, or pin on a stack.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from .constants import (
    BARBELL_ACHIEVABLE_TOLERANCE_KG,
    DEFAULT_BAR_TYPES_KG,
    DEFAULT_DUMBBELLS_KG,
    DEFAULT_MACHINE_AUX_KG,
    DEFAULT_PLATES_KG_PER_SIDE,
    DEFAULT_STACK_STEPS_KG,
    DUMBBELL_ACHIEVABLE_TOLERANCE_KG,
    MACHINE_ACHIEVABLE_TOLERANCE_KG,
    MAX_PLATES_PER_SIDE,
    TELEMETRY_MIN_CHANGE_KG,
)
from .telemetry import ResolutionEvent
from .units import WeightUnit, from_kg
from .weight_model import GymInventory, greedy_side_fill

logger = logging.getLogger(__name__)

_EPS = 1e-6


class Implement(str, Enum):
    BARBELL = 'barbell'
    DUMBBELL = 'dumbbell'
    MACHINE = 'machine'

    @classmethod
    def from_load_type(cls, load_type: str | None) -> 'Implement':
        if load_type == 'single_load':
            return cls.DUMBBELL
        if load_type == 'stack':
            return cls.MACHINE
        return cls.BARBELL


class SnapStrategy(str, Enum):
    DOWN = 'down'
    NEAREST = 'nearest'
    UP = 'up'


class EntryMode(str, Enum):
    """How a barbell load was entered: the whole bar, or the plates on one side."""
    TOTAL = 'total'
    PER_SIDE = 'per_side'


@dataclass
class ResolveOptions:
    equipment_ref_id: Optional[str] = None
    snap_strategy: SnapStrategy = SnapStrategy.DOWN
    entry_mode: EntryMode = EntryMode.TOTAL

    @classmethod
    def coerce(cls, opts) -> 'ResolveOptions':
        if opts is None:
            return cls()
        if isinstance(opts, cls):
            return opts
        return cls(
            equipment_ref_id=opts.get('equipment_ref_id'),
            snap_strategy=SnapStrategy(opts.get('snap_strategy') or SnapStrategy.DOWN),
            entry_mode=EntryMode(opts.get('entry_mode') or EntryMode.TOTAL),
        )


@dataclass
class ExerciseLoadInfo:
    load_type: Optional[str] = None
    default_bar_type: Optional[str] = None
    is_unilateral: bool = False


@dataclass
class LoadResolutionResult:
    implement: Implement
    total_kg: float
    details: Dict[str, Any] = field(default_factory=dict)
    source: str = 'default'
    achievable: bool = True
    residual_kg: float = 0.0

    @property
    def desired_kg(self) -> float:
        return self.total_kg + self.residual_kg

    @property
    def per_side_kg(self) -> Optional[float]:
        """Plate load on one side of the bar; None for dumbbells and machines."""
        if self.implement is not Implement.BARBELL or 'bar_kg' not in self.details:
            return None
        return max(0.0, (self.total_kg - self.details['bar_kg']) / 2)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['implement'] = self.implement.value
        data['per_side_kg'] = self.per_side_kg
        return data


def _fallback_result(desired_kg: float) -> LoadResolutionResult:
    return LoadResolutionResult(
        implement=Implement.BARBELL,
        total_kg=desired_kg,
        details={},
        source='default',
        achievable=True,
        residual_kg=0.0,
    )


# --- Barbell ---

def barbell_candidates(bar_kg: float, plates_kg: Sequence[float], desired_kg: float,
                       max_per_side: int = MAX_PLATES_PER_SIDE) -> Dict[float, List[float]]:
    """
    Achievable barbell totals mapped to the plates loaded on one side.

    The search is bounded: the bare bar, every single plate type and every
    pair of plate types up to ``max_per_side`` plates, plus the greedy fill
    of ``desired_kg`` and that fill with one more smallest plate.
    """
    plates = sorted({p for p in plates_kg if p > 0})
    candidates: Dict[float, List[float]] = {}

    def add(per_side: List[float]):
        total = round(bar_kg + 2 * sum(per_side), 4)
        candidates.setdefault(total, sorted(per_side, reverse=True))

    add([])
    if not plates:
        return candidates

    # greedy first so its breakdown wins for totals reachable several ways
    greedy = greedy_side_fill(sorted(plates, reverse=True), max(0.0, desired_kg - bar_kg) / 2.0)
    add(greedy)
    add(greedy + [plates[0]])

    for i, a in enumerate(plates):
        for n in range(1, max_per_side + 1):
            add([a] * n)
        for b in plates[i + 1:]:
            for n in range(1, max_per_side):
                for m in range(1, max_per_side - n + 1):
                    add([a] * n + [b] * m)
    return candidates


def snap_to_candidates(totals: Sequence[float], desired_kg: float, strategy: SnapStrategy) -> float:
    ordered = sorted(totals)
    if strategy is SnapStrategy.DOWN:
        below = [t for t in ordered if t <= desired_kg + _EPS]
        return below[-1] if below else ordered[0]
    if strategy is SnapStrategy.UP:
        above = [t for t in ordered if t >= desired_kg - _EPS]
        return above[0] if above else ordered[-1]
    # min() keeps the first of equal distances, i.e. the lighter one
    return min(ordered, key=lambda t: abs(t - desired_kg))


def _bar_weight(info: ExerciseLoadInfo, options: ResolveOptions, source) -> tuple[float, str]:
    bar_type = info.default_bar_type or 'barbell'
    if options.equipment_ref_id:
        try:
            bar_kg = source.get_equipment_bar_weight(options.equipment_ref_id)
            if bar_kg is not None:
                return float(bar_kg), bar_type
        except Exception as e:
            logger.warning(f"Bar weight lookup failed for equipment {options.equipment_ref_id}: {e}")
    return DEFAULT_BAR_TYPES_KG.get(bar_type, DEFAULT_BAR_TYPES_KG['barbell']), bar_type


def _resolve_barbell(desired_kg: float, info: ExerciseLoadInfo, inventory: Optional[GymInventory],
                     options: ResolveOptions, source) -> LoadResolutionResult:
    bar_kg, bar_type = _bar_weight(info, options, source)
    if options.entry_mode is EntryMode.PER_SIDE:
        desired_kg = bar_kg + 2 * desired_kg
    gym_plates = inventory.plates_kg() if inventory else []
    origin = 'gym' if gym_plates else 'default'

    if desired_kg < bar_kg:
        return LoadResolutionResult(
            implement=Implement.BARBELL,
            total_kg=bar_kg,
            details={"bar_kg": bar_kg, "bar_type": bar_type, "per_side": []},
            source=origin,
            achievable=False,
            residual_kg=round(desired_kg - bar_kg, 4),
        )

    candidates = barbell_candidates(bar_kg, gym_plates or DEFAULT_PLATES_KG_PER_SIDE, desired_kg)
    chosen = snap_to_candidates(list(candidates), desired_kg, options.snap_strategy)
    residual = round(desired_kg - chosen, 4)
    return LoadResolutionResult(
        implement=Implement.BARBELL,
        total_kg=chosen,
        details={"bar_kg": bar_kg, "bar_type": bar_type, "per_side": candidates[chosen]},
        source=origin,
        achievable=abs(residual) < BARBELL_ACHIEVABLE_TOLERANCE_KG,
        residual_kg=residual,
    )


# --- Dumbbell ---

def _resolve_dumbbell(desired_kg: float, inventory: Optional[GymInventory]) -> LoadResolutionResult:
    gym_dumbbells = inventory.dumbbells_kg() if inventory else []
    weights = sorted(gym_dumbbells or DEFAULT_DUMBBELLS_KG)
    chosen = min(weights, key=lambda w: abs(w - desired_kg))
    residual = round(desired_kg - chosen, 4)
    return LoadResolutionResult(
        implement=Implement.DUMBBELL,
        total_kg=chosen,
        details={"dumbbell_kg": chosen},
        source='gym' if gym_dumbbells else 'default',
        achievable=abs(residual) < DUMBBELL_ACHIEVABLE_TOLERANCE_KG,
        residual_kg=residual,
    )


# --- Machine ---

def machine_candidates(stack_steps: Sequence[float], aux_kg: Sequence[float]) -> List[tuple[float, float, List[float]]]:
    """(total, stack step, aux weights) for every step, step + one aux and step + all aux."""
    combos = []
    for step in stack_steps:
        combos.append((round(step, 4), step, []))
        for aux in aux_kg:
            combos.append((round(step + aux, 4), step, [aux]))
        if len(aux_kg) > 1:
            combos.append((round(step + sum(aux_kg), 4), step, list(aux_kg)))
    return combos


def _resolve_machine(desired_kg: float, inventory: Optional[GymInventory]) -> LoadResolutionResult:
    gym_steps = inventory.stack_steps_kg() if inventory else []
    gym_aux = inventory.machine_aux_kg() if inventory else []
    steps = gym_steps or DEFAULT_STACK_STEPS_KG
    aux = gym_aux or DEFAULT_MACHINE_AUX_KG

    def rank(combo):
        total, step, used_aux = combo
        return (round(abs(total - desired_kg), 6), total > desired_kg + _EPS, len(used_aux), -step)

    total, step, used_aux = min(machine_candidates(steps, aux), key=rank)
    residual = round(desired_kg - total, 4)
    return LoadResolutionResult(
        implement=Implement.MACHINE,
        total_kg=total,
        details={"stack_kg": step, "aux_kg": used_aux},
        source='gym' if (gym_steps or gym_aux) else 'default',
        achievable=abs(residual) < MACHINE_ACHIEVABLE_TOLERANCE_KG,
        residual_kg=residual,
    )


# --- Entry point ---

def _fetch_inventory(source, gym_id) -> Optional[GymInventory]:
    if not gym_id:
        return None
    try:
        inventory = source.get_gym_inventory(gym_id)
    except Exception as e:
        logger.warning(f"Gym inventory unavailable for gym {gym_id}, using defaults: {e}")
        return None
    if inventory is None or inventory.is_empty():
        return None
    return inventory


def _emit_resolution(telemetry: Optional[Callable], exercise_id, gym_id, desired_kg: float,
                     result: LoadResolutionResult) -> None:
    if telemetry is None or abs(result.total_kg - desired_kg) < TELEMETRY_MIN_CHANGE_KG:
        return
    event = ResolutionEvent(
        exercise_id=str(exercise_id),
        gym_id=str(gym_id) if gym_id else None,
        implement=result.implement.value,
        source=result.source,
        desired_kg=desired_kg,
        resolved_kg=result.total_kg,
        residual_kg=result.residual_kg,
    )
    try:
        telemetry(event)
    except Exception as e:
        logger.warning(f"Telemetry sink failed for exercise {exercise_id}: {e}")


def resolve_achievable_load(exercise_id, desired_kg: float, gym_id=None, opts=None, *, source,
                            telemetry: Optional[Callable] = None) -> LoadResolutionResult:
    """
    Snap ``desired_kg`` to the closest load the gym can physically build.

    Args:
        exercise_id: Exercise whose load type picks the implement.
        desired_kg: Continuous target load in kg.
        gym_id: Optional gym whose inventory replaces the defaults.
        opts: ``ResolveOptions`` or a dict with ``equipment_ref_id``,
            ``snap_strategy`` ('down', 'nearest' or 'up'; barbell only) and
            ``entry_mode`` ('total' or 'per_side'; per-side barbell entries
            become bar + 2 x desired).
        source: Lookup provider (see ``repositories.PostgresSource``).
        telemetry: Optional callable receiving a ``ResolutionEvent`` when the
            load moves by 0.25 kg or more.

    Returns:
        A ``LoadResolutionResult``. Never raises: unexpected failures
        return the desired load unchanged.
    """
    try:
        options = ResolveOptions.coerce(opts)
        info = source.get_exercise_load_info(exercise_id) or ExerciseLoadInfo()
        implement = Implement.from_load_type(info.load_type)
        inventory = _fetch_inventory(source, gym_id)

        if implement is Implement.DUMBBELL:
            result = _resolve_dumbbell(desired_kg, inventory)
        elif implement is Implement.MACHINE:
            result = _resolve_machine(desired_kg, inventory)
        else:
            result = _resolve_barbell(desired_kg, info, inventory, options, source)
    except Exception as e:
        logger.error(f"Load resolution failed for exercise {exercise_id} at {desired_kg}kg: {e}", exc_info=True)
        return _fallback_result(desired_kg)

    _emit_resolution(telemetry, exercise_id, gym_id, result.desired_kg, result)
    return result


def format_load_suggestion(result: LoadResolutionResult, unit='kg') -> str:
    unit = WeightUnit.parse(unit)
    shown = from_kg(result.total_kg, unit)
    if result.achievable:
        return f"Achievable: {shown:g} {unit.value}"
    desired = from_kg(result.desired_kg, unit)
    diff = from_kg(abs(result.residual_kg), unit)
    sign = '+' if result.total_kg > result.desired_kg else '-'
    return f"Closest: {shown:g} {unit.value} (snapped from {desired:g} {unit.value}, {sign}{diff:g} {unit.value})"


def available_weights(implement, inventory: Optional[GymInventory] = None, bar_kg: float = 20.0,
                      max_kg: Optional[float] = None) -> List[float]:
    """Every total an implement can reach, ascending, for weight pickers."""
    implement = Implement(implement)
    if implement is Implement.DUMBBELL:
        totals = (inventory.dumbbells_kg() if inventory else []) or list(DEFAULT_DUMBBELLS_KG)
    elif implement is Implement.MACHINE:
        steps = (inventory.stack_steps_kg() if inventory else []) or DEFAULT_STACK_STEPS_KG
        aux = (inventory.machine_aux_kg() if inventory else []) or DEFAULT_MACHINE_AUX_KG
        totals = [combo[0] for combo in machine_candidates(steps, aux)]
    else:
        plates = (inventory.plates_kg() if inventory else []) or DEFAULT_PLATES_KG_PER_SIDE
        totals = list(barbell_candidates(bar_kg, plates, bar_kg))
    weights = sorted(set(totals))
    if max_kg is not None:
        weights = [w for w in weights if w <= max_kg + _EPS]
    return weights


__all__ = [
    "Implement",
    "SnapStrategy",
    "EntryMode",
    "ResolveOptions",
    "ExerciseLoadInfo",
    "LoadResolutionResult",
    "barbell_candidates",
    "snap_to_candidates",
    "machine_candidates",
    "resolve_achievable_load",
    "format_load_suggestion",
    "available_weights",
]
