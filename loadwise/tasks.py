import os
import logging
import psycopg2
import psycopg2.extras
from redis import Redis
from rq import Queue, Retry, get_current_job

from .app import get_db_connection, release_db_connection

logger = logging.getLogger(__name__)

# Redis connection for RQ
redis_url = os.getenv("REDIS_URL", "redis://redis:6379/0")
redis_conn = Redis.from_url(redis_url)

# Queue shared by the API (producer) and the worker
queue = Queue("telemetry", connection=redis_conn)

DEFAULT_RETRY = Retry(max=3, interval=[10, 30, 60])


def enqueue_resolution_event(event: dict):
    """Enqueue persistence of one load resolution event with retry strategy."""
    return queue.enqueue(
        record_resolution_event,
        event,
        retry=DEFAULT_RETRY,
    )


def record_resolution_event(event: dict):
    """Insert a load resolution event into load_resolution_events."""
    job = get_current_job()
    if job and job.meta.get("retry_count", 0) > 0:
        logger.info(
            "Retry attempt %s for job %s", job.meta["retry_count"], job.id
        )

    conn = None
    try:
        conn = get_db_connection()
        with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(
                """
                INSERT INTO load_resolution_events
                    (exercise_id, gym_id, implement, source, desired_kg, resolved_kg, residual_kg, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING id;
                """,
                (
                    event["exercise_id"],
                    event.get("gym_id"),
                    event["implement"],
                    event["source"],
                    event["desired_kg"],
                    event["resolved_kg"],
                    event["residual_kg"],
                    event["created_at"],
                ),
            )
            row = cur.fetchone()
        conn.commit()
        logger.info(
            "Recorded resolution event %s for exercise %s",
            row["id"] if row else None,
            event["exercise_id"],
        )
        return str(row["id"]) if row else None
    except psycopg2.Error as e:
        if conn:
            conn.rollback()
        logger.error("Database error recording resolution event: %s", e)
        raise
    finally:
        if conn:
            release_db_connection(conn)
