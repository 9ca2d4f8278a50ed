"""Feel-driven progressive overload: single-target and rep-range heuristics."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .constants import DEFAULT_STEP_KG, DEFAULT_TARGET_REPS
from .feel import Feel, derive_feel, parse_feel


@dataclass
class LastSet:
    """Most recent completed set for an exercise, as logged."""
    weight: float
    reps: int
    notes: Optional[str] = None
    rpe: Optional[float] = None
    completed_at: Optional[datetime] = None
    set_index: Optional[int] = None
    grip_key: Optional[str] = None
    had_pain: bool = False

    @property
    def feel(self) -> Optional[Feel]:
        return derive_feel(self.notes, self.rpe)


@dataclass(frozen=True)
class RepRange:
    rep_min: int
    rep_max: int

    @property
    def midpoint(self) -> int:
        return (self.rep_min + self.rep_max) // 2

    def clamp(self, reps: int) -> int:
        return max(self.rep_min, min(self.rep_max, reps))

    def to_dict(self) -> Dict[str, int]:
        return {"rep_min": self.rep_min, "rep_max": self.rep_max}


@dataclass
class EquipmentContext:
    is_unilateral: bool = False
    plate_increment_kg: float = DEFAULT_STEP_KG
    stack_increment_kg: float = 5.0
    is_stack: bool = False
    bar_weight_kg: Optional[float] = None

    @property
    def step_kg(self) -> float:
        if self.is_stack:
            return self.stack_increment_kg
        if self.is_unilateral:
            return self.plate_increment_kg * 2
        return self.plate_increment_kg


@dataclass
class UserContext:
    bad_day: bool = False
    cycle_phase: Optional[str] = None  # 'low' | 'neutral' | 'high'


@dataclass
class Suggestion:
    weight: float
    reps: int
    rationale: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"weight": self.weight, "reps": self.reps, "rationale": list(self.rationale)}


def get_default_rep_range(focus: str | None = None) -> RepRange:
    if focus == 'strength':
        return RepRange(3, 6)
    if focus == 'hypertrophy':
        return RepRange(8, 12)
    if focus == 'endurance':
        return RepRange(12, 20)
    return RepRange(6, 10)


def suggest_target(
    last_weight: float | None = None,
    last_reps: int | None = None,
    feel=None,
    template_target_reps: int | None = None,
    template_target_reps_min: int | None = None,
    template_target_reps_max: int | None = None,
    template_target_weight: float | None = None,
    step_kg: float = DEFAULT_STEP_KG,
) -> Suggestion:
    """
    Single-target progression from the last set's feel.

    Baseline weight is the last weight, then the template weight, then 0.
    Baseline reps are the template target, then the last reps, then 10.
    "--" drops two steps, "-" one, "=" holds, "+" adds a rep and "++" adds
    a step. With no feel, beating the target by 2+ reps adds a step. When a
    min/max is given the reps are clamped into it.
    """
    feel = parse_feel(feel)
    weight = last_weight if last_weight is not None else (template_target_weight if template_target_weight is not None else 0.0)
    target_reps = template_target_reps if template_target_reps is not None else (last_reps if last_reps is not None else DEFAULT_TARGET_REPS)
    reps = target_reps
    rationale = [f"Baseline {weight:g}kg x {reps}"]

    if feel is Feel.VERY_HARD:
        weight -= 2 * step_kg
        rationale.append(f"Felt very hard: -{2 * step_kg:g}kg")
    elif feel is Feel.HARD:
        weight -= step_kg
        rationale.append(f"Felt hard: -{step_kg:g}kg")
    elif feel is Feel.JUST_RIGHT:
        rationale.append("Felt just right: hold")
    elif feel is Feel.EASY:
        reps += 1
        rationale.append("Felt easy: +1 rep")
    elif feel is Feel.VERY_EASY:
        weight += step_kg
        rationale.append(f"Felt very easy: +{step_kg:g}kg")
    elif last_reps is not None and last_reps >= target_reps + 2:
        weight += step_kg
        rationale.append(f"Beat target by {last_reps - target_reps} reps: +{step_kg:g}kg")

    weight = max(0.0, weight)
    if template_target_reps_min is not None and template_target_reps_max is not None:
        reps = RepRange(template_target_reps_min, template_target_reps_max).clamp(reps)
    elif template_target_reps_min is not None:
        reps = max(template_target_reps_min, reps)
    elif template_target_reps_max is not None:
        reps = min(template_target_reps_max, reps)
    return Suggestion(weight=weight, reps=reps, rationale=rationale)


def suggest_target_v2(
    last: Optional[LastSet],
    rep_range: RepRange,
    equipment: EquipmentContext,
    user: UserContext,
    feel=None,
) -> Suggestion:
    """
    Rep-range progression with a conservative mode.

    Reps climb toward the range ceiling one at a time; at the ceiling the
    weight goes up one step and reps reset to the floor. Pain, a declared
    bad day or a low cycle phase hold the weight.
    """
    notes: List[str] = []

    if last is None:
        notes.append("No history: use template baseline")
        return Suggestion(weight=0.0, reps=rep_range.rep_min, rationale=notes)

    feel = parse_feel(feel) or last.feel or Feel.JUST_RIGHT
    rep_min, rep_max = rep_range.rep_min, rep_range.rep_max
    conservative = user.bad_day or last.had_pain or user.cycle_phase == 'low'
    step = equipment.step_kg
    weight = last.weight
    reps = last.reps

    if conservative:
        notes.append("Conservative mode (pain, bad day or low phase)")
        if feel is Feel.VERY_HARD:
            reps = max(rep_min, reps - 1)
            notes.append("Reduce reps slightly")
        return Suggestion(weight=weight, reps=reps, rationale=notes)

    if reps < rep_max:
        if feel is Feel.VERY_HARD:
            notes.append("Too hard: hold until reaching capacity")
        else:
            reps += 1
            notes.append("Below range top: +1 rep")
        return Suggestion(weight=weight, reps=reps, rationale=notes)

    if feel is Feel.VERY_HARD:
        reps = max(rep_min, reps - 1)
        notes.append("Top but too hard: hold weight, -1 rep")
        return Suggestion(weight=weight, reps=reps, rationale=notes)

    weight = max(0.0, weight + step)
    reps = rep_min
    notes.append(f"Top reached: +{step:g}kg, reset reps to {rep_min}")

    if last.reps >= rep_max + 2:
        weight += step
        notes.append(f"Overachieved by 2+: extra +{step:g}kg")

    return Suggestion(weight=weight, reps=reps, rationale=notes)


class ProgressionStrategy:
    """Common interface for the progression heuristics."""

    kind: str = ''

    def suggest(self, last: LastSet, *, feel: Optional[Feel], target_reps: Optional[int],
                rep_range: Optional[RepRange], template_weight: Optional[float], step_kg: float,
                equipment: Optional[EquipmentContext] = None,
                user: Optional[UserContext] = None) -> Suggestion:
        raise NotImplementedError


class SingleTargetStrategy(ProgressionStrategy):
    kind = 'single_target'

    def suggest(self, last, *, feel, target_reps, rep_range, template_weight, step_kg,
                equipment=None, user=None):
        return suggest_target(
            last_weight=last.weight,
            last_reps=last.reps,
            feel=feel,
            template_target_reps=target_reps,
            template_target_reps_min=rep_range.rep_min if rep_range else None,
            template_target_reps_max=rep_range.rep_max if rep_range else None,
            template_target_weight=template_weight,
            step_kg=step_kg,
        )


class RepRangeStrategy(ProgressionStrategy):
    kind = 'rep_range'

    def suggest(self, last, *, feel, target_reps, rep_range, template_weight, step_kg,
                equipment=None, user=None):
        equipment = equipment or EquipmentContext()
        equipment = EquipmentContext(
            is_unilateral=equipment.is_unilateral,
            plate_increment_kg=step_kg,
            stack_increment_kg=equipment.stack_increment_kg,
            is_stack=equipment.is_stack,
            bar_weight_kg=equipment.bar_weight_kg,
        )
        return suggest_target_v2(last, rep_range, equipment, user or UserContext(), feel=feel)


def select_strategy(rep_range: Optional[RepRange]) -> ProgressionStrategy:
    """Range heuristic when the caller supplied a full rep range, single target otherwise."""
    if rep_range is not None:
        return RepRangeStrategy()
    return SingleTargetStrategy()
