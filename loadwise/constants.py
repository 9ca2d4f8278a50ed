# loadwise/constants.py

KG_PER_LB = 0.45359237
LB_PER_KG = 2.2046226218

# Global default equipment model
DEFAULT_BAR_TYPES_KG = {
    'barbell': 20.0,
    'ezbar': 7.5,
    'fixed': 20.0,
}
DEFAULT_PLATES_KG_PER_SIDE = [25.0, 20.0, 15.0, 10.0, 5.0, 2.5, 1.25]
DEFAULT_SINGLE_MIN_INCREMENT_KG = 2.5
DEFAULT_STACK_INCREMENT_KG = 5.0
DEFAULT_AUX_INCREMENTS_KG = [2.5]

# Fallback ladders used by the load resolver when a gym has no inventory
DEFAULT_DUMBBELLS_KG = [5.0, 7.5, 10.0, 12.5, 15.0, 17.5, 20.0, 22.5, 25.0, 27.5, 30.0]
DEFAULT_STACK_STEPS_KG = [float(w) for w in range(5, 105, 5)]
DEFAULT_MACHINE_AUX_KG = [2.5, 5.0]

# Barbell search bounds
MAX_PLATES_PER_SIDE = 8
MICRO_PLATE_THRESHOLD_KG = 2.5

# Tolerances
BARBELL_ACHIEVABLE_TOLERANCE_KG = 0.1
DUMBBELL_ACHIEVABLE_TOLERANCE_KG = 0.1
MACHINE_ACHIEVABLE_TOLERANCE_KG = 2.5
TELEMETRY_MIN_CHANGE_KG = 0.25

# Target calculation
DEFAULT_STEP_KG = 2.5
FALLBACK_HISTORY_STEP_KG = 1.25
FIRST_TIME_FALLBACK_KG = 20.0
DEFAULT_TARGET_REPS = 10
READINESS_PROGRESSIVE_BIAS = 1.005
LOW_READINESS_THRESHOLD = 25
NO_GRIPS_KEY = 'no-grips'

# Optional safety rails: bounds relative to the last working set
SAFETY_MAX_PCT_UP = 6.0
SAFETY_MAX_PCT_DOWN = 12.0
SAFETY_MIN_REPS = 5
SAFETY_MAX_REPS = 20

# Stack used by equipment-aware proposals when the exercise is a machine
PROPOSAL_STACK_STEPS_KG = [float(w) for w in range(5, 85, 5)]
SNAP_NOTICE_THRESHOLD_KG = 0.1

# Weight models built from gym inventory are rebuilt after this long
WEIGHT_MODEL_CACHE_MAX_AGE_SECONDS = 300
