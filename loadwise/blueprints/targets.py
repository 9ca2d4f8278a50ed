from flask import Blueprint, request, jsonify, g
from ..app import get_db_connection, release_db_connection, jwt_required, logger
import psycopg2

from ..progression import UserContext
from ..repositories import PostgresSource
from ..resolver import EntryMode, SnapStrategy, resolve_achievable_load, format_load_suggestion
from ..targets import SafetyRails, TargetCalculator, TargetRequest, propose_target_kg
from ..telemetry import get_telemetry_sink
from ..units import WeightUnit
from ..weight_model import WeightModelCache, get_active_weight_model

targets_bp = Blueprint('targets', __name__)

PROPOSAL_MODES = ('progress_weight', 'progress_reps', 'maintain')
DEFAULT_PROPOSAL_READINESS = 65

# shared by the proposal and weight-model routes
weight_model_cache = WeightModelCache()


def _optional(args, name, cast):
    """Returns args[name] cast with `cast`, None when absent; ValueError on junk."""
    raw = args.get(name)
    if raw is None or raw == '':
        return None
    try:
        return cast(raw)
    except (TypeError, ValueError):
        raise ValueError(f"'{name}' must be a valid {cast.__name__}")


def _flag(args, name):
    return str(args.get(name, '')).lower() in ('1', 'true', 'yes')


def _forbidden(user_id):
    if str(user_id) != g.current_user_id:
        logger.warning(f"Forbidden attempt to access targets for user {user_id} by user {g.current_user_id}")
        return jsonify(error="Forbidden. You can only access your own targets."), 403
    return None


def _active_gym_id(source, user_id):
    """The user's active gym, or None when the lookup fails; resolution then uses default equipment."""
    try:
        return source.get_active_gym_id(user_id)
    except psycopg2.Error as e:
        logger.warning(f"Active gym lookup failed for user {user_id}, using default equipment: {e}")
        return None


# --- Next-set target ---
@targets_bp.route('/v1/users/<uuid:user_id>/exercises/<uuid:exercise_id>/target', methods=['GET'])
@jwt_required
def get_next_set_target(user_id, exercise_id):
    forbidden = _forbidden(user_id)
    if forbidden:
        return forbidden

    args = request.args
    try:
        set_index = _optional(args, 'set_index', int)
        template_reps = _optional(args, 'template_reps', int)
        reps_min = _optional(args, 'template_reps_min', int)
        reps_max = _optional(args, 'template_reps_max', int)
        template_weight = _optional(args, 'template_weight', float)
        readiness = _optional(args, 'readiness', float)
        snap_strategy = SnapStrategy(args.get('snap_strategy') or SnapStrategy.DOWN)
        max_pct_up = _optional(args, 'max_pct_up', float)
        max_pct_down = _optional(args, 'max_pct_down', float)
    except ValueError as e:
        return jsonify(error=f"Invalid query parameter: {e}"), 400

    if set_index is None:
        set_index = 1
    if set_index < 1:
        return jsonify(error="'set_index' must be 1 or greater"), 400
    if reps_min is not None and reps_max is not None and reps_min > reps_max:
        return jsonify(error="'template_reps_min' cannot exceed 'template_reps_max'"), 400
    if readiness is not None and not 0 <= readiness <= 100:
        return jsonify(error="'readiness' must be between 0 and 100"), 400
    if max_pct_up is not None and max_pct_up < 0:
        return jsonify(error="'max_pct_up' cannot be negative"), 400
    if max_pct_down is not None and not 0 <= max_pct_down < 100:
        return jsonify(error="'max_pct_down' must be between 0 and 100"), 400

    safety = None
    if _flag(args, 'safety') or max_pct_up is not None or max_pct_down is not None:
        limits = {'max_pct_up': max_pct_up, 'max_pct_down': max_pct_down}
        safety = SafetyRails(**{name: value for name, value in limits.items() if value is not None})

    grip_ids = [gid.strip() for gid in args.get('grip_ids', '').split(',') if gid.strip()]

    conn = None
    try:
        conn = get_db_connection()
        source = PostgresSource(conn)
        gym_id = args.get('gym_id') or _active_gym_id(source, user_id)

        target_request = TargetRequest(
            user_id=str(user_id),
            exercise_id=str(exercise_id),
            set_index=set_index,
            gym_id=gym_id,
            grip_ids=grip_ids or None,
            template_reps=template_reps,
            template_reps_min=reps_min,
            template_reps_max=reps_max,
            template_weight=template_weight,
            readiness=readiness,
            equipment_ref_id=args.get('equipment_ref_id'),
            snap_strategy=snap_strategy,
            user_context=UserContext(
                bad_day=_flag(args, 'bad_day'),
                cycle_phase=args.get('cycle_phase'),
            ),
            safety=safety,
        )
        result = TargetCalculator(source, telemetry=get_telemetry_sink()).calculate(target_request)
        logger.info(f"Target for user {user_id}, exercise {exercise_id}, set {set_index}: {result.weight}kg x {result.reps}")
        return jsonify(result.to_dict()), 200

    except psycopg2.Error as e:
        logger.error(f"Database error calculating target for user {user_id}, exercise {exercise_id}: {e}", exc_info=True)
        return jsonify(error="Database error calculating target."), 500
    finally:
        if conn:
            release_db_connection(conn)


# --- Load resolution ---
@targets_bp.route('/v1/exercises/<uuid:exercise_id>/resolve-load', methods=['POST'])
@jwt_required
def resolve_load(exercise_id):
    data = request.get_json(silent=True)
    if not data:
        return jsonify(error="Request body must be JSON."), 400
    if 'desired_kg' not in data:
        return jsonify(error="Missing required field: desired_kg"), 400

    try:
        desired_kg = float(data['desired_kg'])
        snap_strategy = SnapStrategy(data.get('snap_strategy') or SnapStrategy.DOWN)
        entry_mode = EntryMode(data.get('entry_mode') or EntryMode.TOTAL)
        unit = WeightUnit.parse(data.get('unit'))
    except (TypeError, ValueError) as e:
        return jsonify(error=f"Invalid request body: {e}"), 400
    if desired_kg < 0:
        return jsonify(error="'desired_kg' cannot be negative"), 400

    conn = None
    try:
        conn = get_db_connection()
        source = PostgresSource(conn)
        gym_id = data.get('gym_id') or _active_gym_id(source, g.current_user_id)
        result = resolve_achievable_load(
            str(exercise_id),
            desired_kg,
            gym_id,
            {
                "equipment_ref_id": data.get('equipment_ref_id'),
                "snap_strategy": snap_strategy,
                "entry_mode": entry_mode,
            },
            source=source,
            telemetry=get_telemetry_sink(),
        )
        response = result.to_dict()
        response['suggestion'] = format_load_suggestion(result, unit)
        return jsonify(response), 200

    except psycopg2.Error as e:
        logger.error(f"Database error resolving load for exercise {exercise_id}: {e}", exc_info=True)
        return jsonify(error="Database error resolving load."), 500
    finally:
        if conn:
            release_db_connection(conn)


# --- Equipment-aware proposal ---
@targets_bp.route('/v1/users/<uuid:user_id>/target-proposal', methods=['GET'])
@jwt_required
def get_target_proposal(user_id):
    forbidden = _forbidden(user_id)
    if forbidden:
        return forbidden

    args = request.args
    try:
        last_kg = _optional(args, 'last_kg', float)
        template_kg = _optional(args, 'template_kg', float)
        readiness = _optional(args, 'readiness', float)
    except ValueError as e:
        return jsonify(error=f"Invalid query parameter: {e}"), 400

    mode = args.get('mode', 'progress_weight')
    if mode not in PROPOSAL_MODES:
        return jsonify(error=f"'mode' must be one of {', '.join(PROPOSAL_MODES)}"), 400
    if readiness is not None and not 0 <= readiness <= 100:
        return jsonify(error="'readiness' must be between 0 and 100"), 400

    exercise_id = args.get('exercise_id')
    bar_type = args.get('bar_type')

    conn = None
    try:
        conn = get_db_connection()
        source = PostgresSource(conn)

        if exercise_id:
            if last_kg is None:
                last = source.get_last_set(user_id, exercise_id)
                last_kg = last.weight if last else None
            if not bar_type:
                info = source.get_exercise_load_info(exercise_id)
                if info and info.load_type == 'stack':
                    bar_type = 'stack'
                elif info and info.default_bar_type:
                    bar_type = info.default_bar_type

        if readiness is None:
            readiness = source.get_readiness_score(user_id)
        if readiness is None:
            readiness = DEFAULT_PROPOSAL_READINESS

        model = get_active_weight_model(str(user_id), source, weight_model_cache)
        proposal = propose_target_kg(last_kg, template_kg, readiness, model, bar_type or 'barbell', mode)
        return jsonify(proposal.to_dict()), 200

    except psycopg2.Error as e:
        logger.error(f"Database error building target proposal for user {user_id}: {e}", exc_info=True)
        return jsonify(error="Database error building target proposal."), 500
    finally:
        if conn:
            release_db_connection(conn)


# --- Active weight model ---
@targets_bp.route('/v1/users/<uuid:user_id>/weight-model', methods=['GET'])
@jwt_required
def get_weight_model(user_id):
    forbidden = _forbidden(user_id)
    if forbidden:
        return forbidden

    if _flag(request.args, 'refresh'):
        weight_model_cache.invalidate(str(user_id))

    conn = None
    try:
        conn = get_db_connection()
        model = get_active_weight_model(str(user_id), PostgresSource(conn), weight_model_cache)
        return jsonify(model.to_dict()), 200
    finally:
        if conn:
            release_db_connection(conn)
