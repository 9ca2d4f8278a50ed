import psycopg2
import os
import sys
from urllib.parse import urlparse

# Database connection details
DATABASE_URL = os.getenv("DATABASE_URL")
DB_NAME_FALLBACK = os.getenv("POSTGRES_DB", "loadwise")
DB_USER_FALLBACK = os.getenv("POSTGRES_USER", "user")
DB_PASSWORD_FALLBACK = os.getenv("POSTGRES_PASSWORD", "password")
DB_HOST_FALLBACK = os.getenv("POSTGRES_HOST", "localhost")
DB_PORT_FALLBACK = os.getenv("POSTGRES_PORT", "5432")


def _fallback_params():
    return {
        'dbname': DB_NAME_FALLBACK,
        'user': DB_USER_FALLBACK,
        'password': DB_PASSWORD_FALLBACK,
        'host': DB_HOST_FALLBACK,
        'port': DB_PORT_FALLBACK
    }


conn_params = {}
if DATABASE_URL:
    try:
        url = urlparse(DATABASE_URL)
        conn_params = {
            'dbname': url.path[1:],
            'user': url.username,
            'password': url.password,
            'host': url.hostname,
            'port': url.port
        }
        _db_connection_method = f"DATABASE_URL to host '{url.hostname}'"
    except Exception as e:
        print(f"Warning: Could not parse DATABASE_URL ('{DATABASE_URL}'): {e}. Falling back to POSTGRES_* variables.")
        conn_params = _fallback_params()
        _db_connection_method = f"POSTGRES_* variables to host '{DB_HOST_FALLBACK}'"
else:
    conn_params = _fallback_params()
    _db_connection_method = f"POSTGRES_* variables to host '{DB_HOST_FALLBACK}'"


# SQL commands to create tables and indexes
SQL_COMMANDS = """
-- Enable UUID generation
CREATE EXTENSION IF NOT EXISTS "pgcrypto";

-- Gyms and their equipment inventory
CREATE TABLE IF NOT EXISTS gyms (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name VARCHAR(255) NOT NULL,
    default_unit VARCHAR(2) NOT NULL DEFAULT 'kg' CHECK (default_unit IN ('kg', 'lb')),
    created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);

-- Users Table (only the fields the engine reads)
CREATE TABLE IF NOT EXISTS users (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    email VARCHAR(255) UNIQUE NOT NULL,
    preferred_unit VARCHAR(2) CHECK (preferred_unit IN ('kg', 'lb')),
    active_gym_id UUID REFERENCES gyms(id) ON DELETE SET NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);

-- Inventory rows carry the unit printed on the equipment
CREATE TABLE IF NOT EXISTS user_gym_plates (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    gym_id UUID NOT NULL REFERENCES gyms(id) ON DELETE CASCADE,
    weight NUMERIC(6,2) NOT NULL CHECK (weight > 0),
    native_unit VARCHAR(2) NOT NULL DEFAULT 'kg' CHECK (native_unit IN ('kg', 'lb')),
    quantity INTEGER NOT NULL DEFAULT 2 CHECK (quantity > 0)
);

CREATE TABLE IF NOT EXISTS user_gym_dumbbells (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    gym_id UUID NOT NULL REFERENCES gyms(id) ON DELETE CASCADE,
    weight NUMERIC(6,2) NOT NULL CHECK (weight > 0),
    native_unit VARCHAR(2) NOT NULL DEFAULT 'kg' CHECK (native_unit IN ('kg', 'lb'))
);

CREATE TABLE IF NOT EXISTS user_gym_stack_steps (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    gym_id UUID NOT NULL REFERENCES gyms(id) ON DELETE CASCADE,
    weight NUMERIC(6,2) NOT NULL CHECK (weight > 0),
    native_unit VARCHAR(2) NOT NULL DEFAULT 'kg' CHECK (native_unit IN ('kg', 'lb'))
);

CREATE TABLE IF NOT EXISTS user_gym_machine_aux (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    gym_id UUID NOT NULL REFERENCES gyms(id) ON DELETE CASCADE,
    weight NUMERIC(6,2) NOT NULL CHECK (weight > 0),
    native_unit VARCHAR(2) NOT NULL DEFAULT 'kg' CHECK (native_unit IN ('kg', 'lb'))
);

-- Bars and other equipment with a known empty weight
CREATE TABLE IF NOT EXISTS equipment (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name VARCHAR(255) NOT NULL,
    bar_weight_kg NUMERIC(5,2)
);

-- Exercises Table
CREATE TABLE IF NOT EXISTS exercises (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name VARCHAR(255) UNIQUE NOT NULL,
    load_type VARCHAR(20) CHECK (load_type IN ('dual_load', 'single_load', 'stack', 'none')),
    default_bar_type VARCHAR(20) DEFAULT 'barbell',
    is_unilateral BOOLEAN NOT NULL DEFAULT FALSE,
    preferred_unit VARCHAR(2) CHECK (preferred_unit IN ('kg', 'lb'))
);

-- Workouts Table
CREATE TABLE IF NOT EXISTS workouts (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    gym_id UUID REFERENCES gyms(id) ON DELETE SET NULL,
    started_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    completed_at TIMESTAMPTZ
);

-- Workout Sets Table
CREATE TABLE IF NOT EXISTS workout_sets (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    workout_id UUID NOT NULL REFERENCES workouts(id) ON DELETE CASCADE,
    exercise_id UUID NOT NULL REFERENCES exercises(id) ON DELETE CASCADE,
    set_index INTEGER NOT NULL CHECK (set_index > 0),
    weight NUMERIC(6,2),
    reps INTEGER,
    rpe NUMERIC(3,1) CHECK (rpe >= 0 AND rpe <= 10),
    notes TEXT,
    grip_key TEXT,
    had_pain BOOLEAN NOT NULL DEFAULT FALSE,
    is_completed BOOLEAN NOT NULL DEFAULT FALSE,
    completed_at TIMESTAMPTZ
);

-- Daily readiness check-ins (0-100)
CREATE TABLE IF NOT EXISTS readiness_checkins (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    score NUMERIC(5,2) NOT NULL CHECK (score >= 0 AND score <= 100),
    checked_in_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);

-- Self-reported starting weights for exercises never logged
CREATE TABLE IF NOT EXISTS exercise_estimates (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    exercise_id UUID NOT NULL REFERENCES exercises(id) ON DELETE CASCADE,
    estimate_type VARCHAR(10) NOT NULL DEFAULT 'rm10',
    estimated_weight NUMERIC(6,2) NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);

-- Revoked JWTs
CREATE TABLE IF NOT EXISTS jwt_blocklist (
    jti VARCHAR(36) PRIMARY KEY,
    created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);

-- Written by the telemetry worker
CREATE TABLE IF NOT EXISTS load_resolution_events (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    exercise_id UUID NOT NULL,
    gym_id UUID,
    implement VARCHAR(10) NOT NULL CHECK (implement IN ('barbell', 'dumbbell', 'machine')),
    source VARCHAR(10) NOT NULL CHECK (source IN ('gym', 'default')),
    desired_kg NUMERIC(7,3) NOT NULL,
    resolved_kg NUMERIC(7,3) NOT NULL,
    residual_kg NUMERIC(7,3) NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);

-- Indexes
CREATE INDEX IF NOT EXISTS idx_workout_sets_exercise_completed ON workout_sets(exercise_id, completed_at DESC);
CREATE INDEX IF NOT EXISTS idx_workout_sets_grip_key ON workout_sets(grip_key);
CREATE INDEX IF NOT EXISTS idx_workouts_user_id ON workouts(user_id);
CREATE INDEX IF NOT EXISTS idx_readiness_checkins_user_time ON readiness_checkins(user_id, checked_in_at DESC);
CREATE INDEX IF NOT EXISTS idx_exercise_estimates_user_exercise ON exercise_estimates(user_id, exercise_id, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_user_gym_plates_gym_id ON user_gym_plates(gym_id);
CREATE INDEX IF NOT EXISTS idx_user_gym_dumbbells_gym_id ON user_gym_dumbbells(gym_id);
CREATE INDEX IF NOT EXISTS idx_user_gym_stack_steps_gym_id ON user_gym_stack_steps(gym_id);
CREATE INDEX IF NOT EXISTS idx_user_gym_machine_aux_gym_id ON user_gym_machine_aux(gym_id);
CREATE INDEX IF NOT EXISTS idx_load_resolution_events_exercise ON load_resolution_events(exercise_id, created_at DESC);
"""

def create_schema():
    conn = None
    try:
        print(f"Attempting to connect using {_db_connection_method}.")
        conn = psycopg2.connect(**conn_params)
        print(f"Successfully connected to database '{conn_params.get('dbname')}' on host '{conn_params.get('host')}'.")
        with conn.cursor() as cur:
            cur.execute(SQL_COMMANDS)
            print("Schema creation commands executed.")
        conn.commit()
        print("Schema created successfully (or already existed).")
    except psycopg2.OperationalError as e:
        print(f"Error connecting to the database using method '{_db_connection_method}': {e}")
        print("Please ensure PostgreSQL is running and accessible, "
              "and that the target database exists with appropriate permissions.")
        sys.exit(1)
    except psycopg2.Error as e:
        print(f"Error during database operation (using '{_db_connection_method}'): {e}")
        if conn:
            conn.rollback()
        sys.exit(1)
    finally:
        if conn:
            conn.close()
            print("Database connection closed.")

if __name__ == "__main__":
    print("Attempting to create/update database schema...")
    create_schema()
    print("Script finished.")
