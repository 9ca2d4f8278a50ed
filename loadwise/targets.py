"""
Next-set target calculation.

TargetCalculator pulls the last set, the exercise's load info and a readiness
score, runs the progression heuristic, scales by readiness, optionally applies
safety rails and finally snaps the continuous weight to equipment the gym
actually has.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .constants import (
    DEFAULT_STEP_KG,
    DEFAULT_TARGET_REPS,
    FALLBACK_HISTORY_STEP_KG,
    FIRST_TIME_FALLBACK_KG,
    LOW_READINESS_THRESHOLD,
    NO_GRIPS_KEY,
    PROPOSAL_STACK_STEPS_KG,
    READINESS_PROGRESSIVE_BIAS,
    SAFETY_MAX_PCT_DOWN,
    SAFETY_MAX_PCT_UP,
    SAFETY_MAX_REPS,
    SAFETY_MIN_REPS,
    SNAP_NOTICE_THRESHOLD_KG,
)
from .feel import Feel
from .progression import (
    EquipmentContext,
    LastSet,
    RepRange,
    Suggestion,
    UserContext,
    select_strategy,
    suggest_target,
)
from .readiness import clamp_score, readiness_multiplier, scale_by_readiness
from .resolver import (
    ExerciseLoadInfo,
    LoadResolutionResult,
    ResolveOptions,
    SnapStrategy,
    resolve_achievable_load,
)
from .weight_model import (
    WeightModel,
    closest_barbell_weight_kg,
    closest_machine_weight_kg,
    next_weight_step_kg,
)

logger = logging.getLogger(__name__)

Slot = Tuple[str, str, int]


def grip_key(grip_ids: Optional[Sequence[str]]) -> str:
    """Order-independent key for a grip combination."""
    if not grip_ids:
        return NO_GRIPS_KEY
    return ','.join(sorted(str(g) for g in grip_ids))


@dataclass
class SafetyRails:
    """
    Bounds on how far one session may move from the last working set.

    Weight stays within +max_pct_up / -max_pct_down of the last set's
    weight (no weight bound without history); reps stay within
    min_reps..max_reps.
    """
    max_pct_up: float = SAFETY_MAX_PCT_UP
    max_pct_down: float = SAFETY_MAX_PCT_DOWN
    min_reps: int = SAFETY_MIN_REPS
    max_reps: int = SAFETY_MAX_REPS

    def apply(self, weight: float, reps: int, base_kg: Optional[float]) -> Tuple[float, int, List[str]]:
        notes: List[str] = []
        if base_kg:
            up_limit = base_kg * (1 + self.max_pct_up / 100)
            down_limit = base_kg * (1 - self.max_pct_down / 100)
            if weight > up_limit:
                weight = up_limit
                notes.append(f"Safety: capped at +{self.max_pct_up:g}% over {base_kg:g}kg")
            elif weight < down_limit:
                weight = down_limit
                notes.append(f"Safety: held at -{self.max_pct_down:g}% under {base_kg:g}kg")
        if reps < self.min_reps:
            reps = self.min_reps
            notes.append(f"Safety: reps raised to {self.min_reps}")
        elif reps > self.max_reps:
            reps = self.max_reps
            notes.append(f"Safety: reps lowered to {self.max_reps}")
        return weight, reps, notes


@dataclass
class TargetRequest:
    user_id: str
    exercise_id: str
    set_index: int = 1
    gym_id: Optional[str] = None
    grip_ids: Optional[List[str]] = None
    template_reps: Optional[int] = None
    template_reps_min: Optional[int] = None
    template_reps_max: Optional[int] = None
    template_weight: Optional[float] = None
    readiness: Optional[float] = None
    equipment_ref_id: Optional[str] = None
    snap_strategy: SnapStrategy = SnapStrategy.DOWN
    user_context: UserContext = field(default_factory=UserContext)
    safety: Optional[SafetyRails] = None

    @property
    def rep_range(self) -> Optional[RepRange]:
        if self.template_reps_min is None or self.template_reps_max is None:
            return None
        return RepRange(self.template_reps_min, self.template_reps_max)

    @property
    def slot(self) -> Slot:
        return (str(self.user_id), str(self.exercise_id), self.set_index)


@dataclass
class TargetResult:
    weight: float
    reps: int
    baseline_weight: float
    baseline_reps: int
    rationale: List[str] = field(default_factory=list)
    resolution: Optional[LoadResolutionResult] = None
    used_fallback_history: bool = False
    strategy: Optional[str] = None
    feel: Optional[Feel] = None
    readiness_score: Optional[float] = None
    key: str = ''

    @property
    def per_side_kg(self) -> Optional[float]:
        return self.resolution.per_side_kg if self.resolution else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weight": self.weight,
            "reps": self.reps,
            "per_side_kg": self.per_side_kg,
            "baseline_weight": self.baseline_weight,
            "baseline_reps": self.baseline_reps,
            "rationale": list(self.rationale),
            "resolution": self.resolution.to_dict() if self.resolution else None,
            "used_fallback_history": self.used_fallback_history,
            "strategy": self.strategy,
            "feel": self.feel.value if self.feel else None,
            "readiness_score": self.readiness_score,
            "key": self.key,
        }


def target_key(request: TargetRequest, weight: float, reps: int) -> str:
    return f"{request.user_id}-{request.exercise_id}-{request.set_index}-{grip_key(request.grip_ids)}-{weight:g}-{reps}"


class TargetCalculator:
    """
    Orchestrates history, progression, readiness and load resolution.

    ``source`` provides the lookups (see ``repositories.PostgresSource``);
    ``resolver_source`` overrides the one used for load resolution.
    """

    def __init__(self, source, resolver_source=None, telemetry: Optional[Callable] = None):
        self.source = source
        self.resolver_source = resolver_source or source
        self.telemetry = telemetry

    def _last_set(self, request: TargetRequest) -> Tuple[Optional[LastSet], bool]:
        if not request.grip_ids:
            return self.source.get_last_set(request.user_id, request.exercise_id, request.set_index), False

        key = grip_key(request.grip_ids)
        last = self.source.get_last_set(request.user_id, request.exercise_id, request.set_index, key)
        if last is not None:
            return last, False
        last = self.source.get_last_set(request.user_id, request.exercise_id, request.set_index)
        if last is not None:
            logger.info(f"No history for grips '{key}' on exercise {request.exercise_id}; using grip-agnostic history.")
        return last, last is not None

    def _readiness(self, request: TargetRequest) -> Optional[float]:
        if request.readiness is not None:
            return request.readiness
        return self.source.get_readiness_score(request.user_id)

    def _load_info(self, exercise_id) -> ExerciseLoadInfo:
        try:
            return self.source.get_exercise_load_info(exercise_id) or ExerciseLoadInfo()
        except Exception as e:
            logger.warning(f"Load info lookup failed for exercise {exercise_id}: {e}")
            return ExerciseLoadInfo()

    def calculate(self, request: TargetRequest) -> TargetResult:
        rep_range = request.rep_range
        rationale: List[str] = []
        last, used_fallback = self._last_set(request)
        strategy_kind = None
        feel = None

        if last is None:
            estimate = self.source.get_exercise_estimate(request.user_id, request.exercise_id)
            if estimate is not None:
                weight = float(estimate)
                rationale.append(f"First time: estimate {weight:g}kg")
            elif request.template_weight is not None:
                weight = float(request.template_weight)
                rationale.append(f"First time: template {weight:g}kg")
            else:
                weight = FIRST_TIME_FALLBACK_KG
                rationale.append(f"First time: default {weight:g}kg")
            if rep_range is not None:
                reps = rep_range.midpoint
            else:
                reps = request.template_reps if request.template_reps is not None else DEFAULT_TARGET_REPS
        else:
            feel = last.feel
            step_kg = FALLBACK_HISTORY_STEP_KG if used_fallback else DEFAULT_STEP_KG
            strategy = select_strategy(rep_range)
            strategy_kind = strategy.kind
            info = self._load_info(request.exercise_id)
            equipment = EquipmentContext(
                is_unilateral=info.is_unilateral,
                is_stack=info.load_type == 'stack',
            )
            suggestion = strategy.suggest(
                last,
                feel=feel,
                target_reps=rep_range.midpoint if rep_range else request.template_reps,
                rep_range=rep_range,
                template_weight=None,
                step_kg=step_kg,
                equipment=equipment,
                user=request.user_context,
            )
            weight, reps = suggestion.weight, suggestion.reps
            if used_fallback:
                rationale.append(f"Grip-agnostic history: step {step_kg:g}kg")
            rationale.extend(suggestion.rationale)

        baseline_weight, baseline_reps = weight, reps

        score = self._readiness(request)
        if score is not None:
            scale = scale_by_readiness(score)
            bias = READINESS_PROGRESSIVE_BIAS if clamp_score(score) >= LOW_READINESS_THRESHOLD else 1.0
            weight = weight * scale.weight_pct * bias
            reps = max(1, reps + scale.reps_delta)
            rationale.append(f"Readiness {score:g}: x{scale.weight_pct * bias:.3f}, {scale.reps_delta:+d} reps")
            if clamp_score(score) < LOW_READINESS_THRESHOLD and last is not None and reps > last.reps:
                reps = last.reps
                rationale.append(f"Low readiness: reps capped at {last.reps}")

        if rep_range is not None:
            clamped = rep_range.clamp(reps)
            if clamped != reps:
                rationale.append(f"Reps clamped to {rep_range.rep_min}-{rep_range.rep_max}")
            reps = clamped

        if request.safety is not None:
            weight, reps, notes = request.safety.apply(weight, reps, last.weight if last else None)
            rationale.extend(notes)

        resolution = resolve_achievable_load(
            request.exercise_id,
            weight,
            request.gym_id,
            ResolveOptions(equipment_ref_id=request.equipment_ref_id, snap_strategy=request.snap_strategy),
            source=self.resolver_source,
            telemetry=self.telemetry,
        )
        if abs(resolution.total_kg - weight) > SNAP_NOTICE_THRESHOLD_KG:
            rationale.append(f"Snapped to achievable: {weight:.1f}kg -> {resolution.total_kg:g}kg")
        weight = resolution.total_kg

        return TargetResult(
            weight=weight,
            reps=reps,
            baseline_weight=baseline_weight,
            baseline_reps=baseline_reps,
            rationale=rationale,
            resolution=resolution,
            used_fallback_history=used_fallback,
            strategy=strategy_kind,
            feel=feel,
            readiness_score=score,
            key=target_key(request, weight, reps),
        )


class TargetApplier:
    """
    Hands computed targets to a consumer exactly once per key.

    Callers ``begin`` a calculation for a slot (user, exercise, set index)
    and later ``deliver`` its result with the returned ticket. Only the most
    recently begun calculation for a slot may apply; an identical key is
    never applied twice in a row.
    """

    def __init__(self, apply: Callable[[float, int], None]):
        self._apply = apply
        self._tickets: Dict[Slot, int] = {}
        self._applied: Dict[Slot, str] = {}

    def begin(self, slot: Slot) -> int:
        ticket = self._tickets.get(slot, 0) + 1
        self._tickets[slot] = ticket
        return ticket

    def deliver(self, slot: Slot, ticket: int, result: TargetResult) -> bool:
        if ticket != self._tickets.get(slot):
            logger.debug(f"Discarding stale target {result.key} for slot {slot}")
            return False
        if self._applied.get(slot) == result.key:
            return False
        self._apply(result.weight, result.reps)
        self._applied[slot] = result.key
        return True

    def applied_key(self, slot: Slot) -> Optional[str]:
        return self._applied.get(slot)


# --- Equipment-aware proposals ---

@dataclass
class DiscreteSnap:
    before_kg: float
    after_kg: float
    achievable: bool


@dataclass
class TargetProposal:
    proposed_kg: float
    baseline_kg: float
    readiness_score: float
    readiness_multiplier: float
    min_step_kg: float
    rationale: List[str]
    discrete_snap: DiscreteSnap

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposed_kg": self.proposed_kg,
            "baseline_kg": self.baseline_kg,
            "readiness_score": self.readiness_score,
            "readiness_multiplier": self.readiness_multiplier,
            "min_step_kg": self.min_step_kg,
            "rationale": list(self.rationale),
            "discrete_snap": {
                "before_kg": self.discrete_snap.before_kg,
                "after_kg": self.discrete_snap.after_kg,
                "achievable": self.discrete_snap.achievable,
            },
        }


def propose_target_kg(
    last_kg: float | None,
    template_kg: float | None,
    score: float,
    model: WeightModel,
    bar_type_key: str = 'barbell',
    desired_mode: str = 'progress_weight',
) -> TargetProposal:
    """
    Readiness-scaled, plate-snapped weight proposal.

    Each adjustment appends one rationale line, in the order applied.
    ``desired_mode`` is 'progress_weight', 'progress_reps' or 'maintain';
    only 'progress_weight' adds a step on a high-readiness day.
    """
    rationale: List[str] = []

    baseline_kg = last_kg if last_kg is not None else (template_kg if template_kg is not None else 0.0)
    if not last_kg and template_kg:
        rationale.append("Using template baseline (no history)")
    elif last_kg:
        rationale.append(f"Previous performance: {last_kg:g}kg")
    else:
        rationale.append("No baseline available")

    multiplier = readiness_multiplier(score)
    scaled_kg = baseline_kg * multiplier
    if multiplier > 1.0:
        rationale.append(f"Readiness boost: +{(multiplier - 1) * 100:.1f}%")
    elif multiplier < 1.0:
        rationale.append(f"Readiness reduction: {(1 - multiplier) * 100:.1f}%")

    side_plates = [p for p in model.plates_kg_per_side if p > 0]
    min_step_kg = next_weight_step_kg(
        'dual_load',
        min(side_plates) if side_plates else model.single_min_increment_kg / 2,
        model.single_min_increment_kg,
    )

    desired_kg = scaled_kg
    if score >= 70 and desired_mode == 'progress_weight':
        desired_kg += min_step_kg
        rationale.append(f"High readiness: +{min_step_kg:g}kg progression")
    elif score < LOW_READINESS_THRESHOLD:
        desired_kg = max(0.0, scaled_kg - min_step_kg)
        rationale.append(f"Low readiness: -{min_step_kg:g}kg conservation")
    elif score < 70:
        rationale.append("Moderate readiness: maintaining load")

    before_kg = desired_kg
    achievable = True
    if bar_type_key in ('stack', 'machine'):
        after_kg = closest_machine_weight_kg(PROPOSAL_STACK_STEPS_KG, model.aux_increments_kg or [], desired_kg)
    else:
        bar_kg = model.bar_kg(bar_type_key)
        fill = closest_barbell_weight_kg(model.to_plate_profile(bar_type_key), desired_kg, bar_kg)
        after_kg = fill.total_kg
        if abs(fill.residual_kg) > min_step_kg:
            achievable = False
            rationale.append(f"Limited by available plates ({abs(fill.residual_kg):.1f}kg difference)")

    if abs(after_kg - before_kg) > SNAP_NOTICE_THRESHOLD_KG:
        rationale.append(f"Snapped to achievable: {before_kg:.1f}kg -> {after_kg:.1f}kg")

    return TargetProposal(
        proposed_kg=after_kg,
        baseline_kg=baseline_kg,
        readiness_score=score,
        readiness_multiplier=multiplier,
        min_step_kg=min_step_kg,
        rationale=rationale,
        discrete_snap=DiscreteSnap(before_kg=before_kg, after_kg=after_kg, achievable=achievable),
    )


def enhanced_suggest_target(
    last_weight: float | None = None,
    last_reps: int | None = None,
    feel=None,
    template_target_reps: int | None = None,
    template_target_weight: float | None = None,
    step_kg: float = DEFAULT_STEP_KG,
    model: WeightModel | None = None,
    readiness_score: float = 65,
) -> Suggestion:
    """Proposal-backed variant of ``suggest_target`` for callers holding a weight model."""
    reps = template_target_reps if template_target_reps is not None else 8
    if model is None:
        suggestion = suggest_target(
            last_weight=last_weight,
            last_reps=last_reps,
            feel=feel,
            template_target_reps=reps,
            template_target_weight=template_target_weight,
            step_kg=step_kg,
        )
        return suggestion

    proposal = propose_target_kg(last_weight, template_target_weight, readiness_score, model)
    return Suggestion(weight=proposal.proposed_kg, reps=reps, rationale=list(proposal.rationale))
