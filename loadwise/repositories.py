"""Read-only PostgreSQL lookups feeding the target calculator and load resolver."""

import logging
from typing import Optional

import psycopg2
import psycopg2.extras

from .progression import LastSet
from .resolver import ExerciseLoadInfo
from .units import WeightUnit
from .weight_model import GymInventory, InventoryItem

logger = logging.getLogger(__name__)


def _items(rows) -> list:
    return [
        InventoryItem(weight=float(row['weight']), unit=WeightUnit.parse(row.get('native_unit')))
        for row in rows
        if row.get('weight') is not None
    ]


class PostgresSource:
    """
    Lookups over one pooled psycopg2 connection.

    Every method is a snapshot read. Database errors are logged, the
    connection is rolled back, and the lookup reports "no data" so callers
    fall back to defaults.
    """

    def __init__(self, conn):
        self.conn = conn

    def _cursor(self):
        return self.conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)

    def _rollback(self):
        # a failed statement aborts the transaction; later lookups on this connection need it cleared
        try:
            self.conn.rollback()
        except psycopg2.Error as e:
            logger.error(f"Rollback failed after lookup error: {e}", exc_info=True)

    def get_last_set(self, user_id, exercise_id, set_index: int = 1, grip_key: Optional[str] = None) -> Optional[LastSet]:
        """Most recent completed set; the same set index wins over newer sets at other indexes."""
        sql = """
            SELECT ws.weight, ws.reps, ws.notes, ws.rpe, ws.completed_at,
                   ws.set_index, ws.grip_key, ws.had_pain
            FROM workout_sets ws
            JOIN workouts w ON ws.workout_id = w.id
            WHERE w.user_id = %s
              AND ws.exercise_id = %s
              AND ws.is_completed = TRUE
              AND ws.weight IS NOT NULL
              AND ws.reps IS NOT NULL
        """
        params = [str(user_id), str(exercise_id)]
        if grip_key is not None:
            sql += " AND ws.grip_key = %s"
            params.append(grip_key)
        sql += " ORDER BY (ws.set_index = %s) DESC, ws.completed_at DESC LIMIT 1;"
        params.append(set_index)

        try:
            with self._cursor() as cur:
                cur.execute(sql, tuple(params))
                row = cur.fetchone()
        except psycopg2.Error as e:
            logger.error(f"Database error fetching last set for user {user_id}, exercise {exercise_id}: {e}", exc_info=True)
            self._rollback()
            return None

        if not row:
            return None
        return LastSet(
            weight=float(row['weight']),
            reps=int(row['reps']),
            notes=row.get('notes'),
            rpe=float(row['rpe']) if row.get('rpe') is not None else None,
            completed_at=row.get('completed_at'),
            set_index=row.get('set_index'),
            grip_key=row.get('grip_key'),
            had_pain=bool(row.get('had_pain')),
        )

    def get_exercise_load_info(self, exercise_id) -> Optional[ExerciseLoadInfo]:
        try:
            with self._cursor() as cur:
                cur.execute(
                    "SELECT load_type, default_bar_type, is_unilateral FROM exercises WHERE id = %s;",
                    (str(exercise_id),)
                )
                row = cur.fetchone()
        except psycopg2.Error as e:
            logger.error(f"Database error fetching load info for exercise {exercise_id}: {e}", exc_info=True)
            self._rollback()
            return None
        if not row:
            return None
        return ExerciseLoadInfo(
            load_type=row.get('load_type'),
            default_bar_type=row.get('default_bar_type'),
            is_unilateral=bool(row.get('is_unilateral')),
        )

    def get_equipment_bar_weight(self, equipment_ref_id) -> Optional[float]:
        try:
            with self._cursor() as cur:
                cur.execute("SELECT bar_weight_kg FROM equipment WHERE id = %s;", (str(equipment_ref_id),))
                row = cur.fetchone()
        except psycopg2.Error as e:
            logger.error(f"Database error fetching bar weight for equipment {equipment_ref_id}: {e}", exc_info=True)
            self._rollback()
            return None
        if not row or row['bar_weight_kg'] is None:
            return None
        return float(row['bar_weight_kg'])

    def get_gym_inventory(self, gym_id) -> Optional[GymInventory]:
        try:
            with self._cursor() as cur:
                cur.execute(
                    "SELECT weight, native_unit FROM user_gym_plates WHERE gym_id = %s ORDER BY weight DESC;",
                    (str(gym_id),)
                )
                plates = cur.fetchall()
                cur.execute(
                    "SELECT weight, native_unit FROM user_gym_dumbbells WHERE gym_id = %s ORDER BY weight ASC;",
                    (str(gym_id),)
                )
                dumbbells = cur.fetchall()
                cur.execute(
                    "SELECT weight, native_unit FROM user_gym_stack_steps WHERE gym_id = %s ORDER BY weight ASC;",
                    (str(gym_id),)
                )
                steps = cur.fetchall()
                cur.execute(
                    "SELECT weight, native_unit FROM user_gym_machine_aux WHERE gym_id = %s ORDER BY weight ASC;",
                    (str(gym_id),)
                )
                aux = cur.fetchall()
        except psycopg2.Error as e:
            logger.error(f"Database error fetching inventory for gym {gym_id}: {e}", exc_info=True)
            self._rollback()
            return None

        return GymInventory(
            gym_id=str(gym_id),
            plates=_items(plates),
            dumbbells=_items(dumbbells),
            stack_steps=_items(steps),
            machine_aux=_items(aux),
        )

    def get_readiness_score(self, user_id) -> Optional[float]:
        """Today's readiness (0-100), or None without a check-in in the last 24h."""
        try:
            with self._cursor() as cur:
                cur.execute(
                    """
                    SELECT score FROM readiness_checkins
                    WHERE user_id = %s AND checked_in_at >= NOW() - INTERVAL '1 day'
                    ORDER BY checked_in_at DESC LIMIT 1;
                    """,
                    (str(user_id),)
                )
                row = cur.fetchone()
        except psycopg2.Error as e:
            logger.error(f"Database error fetching readiness for user {user_id}: {e}", exc_info=True)
            self._rollback()
            return None
        if not row or row['score'] is None:
            return None
        return float(row['score'])

    def get_exercise_estimate(self, user_id, exercise_id) -> Optional[float]:
        try:
            with self._cursor() as cur:
                cur.execute(
                    """
                    SELECT estimated_weight FROM exercise_estimates
                    WHERE user_id = %s AND exercise_id = %s AND estimate_type = 'rm10'
                    ORDER BY created_at DESC LIMIT 1;
                    """,
                    (str(user_id), str(exercise_id))
                )
                row = cur.fetchone()
        except psycopg2.Error as e:
            logger.error(f"Database error fetching estimate for user {user_id}, exercise {exercise_id}: {e}", exc_info=True)
            self._rollback()
            return None
        if not row or row['estimated_weight'] is None:
            return None
        return float(row['estimated_weight'])

    def get_active_gym_id(self, user_id) -> Optional[str]:
        # errors propagate; callers decide on the no-gym fallback
        try:
            with self._cursor() as cur:
                cur.execute("SELECT active_gym_id FROM users WHERE id = %s;", (str(user_id),))
                row = cur.fetchone()
        except psycopg2.Error:
            self._rollback()
            raise

        if not row or row['active_gym_id'] is None:
            return None
        return str(row['active_gym_id'])
