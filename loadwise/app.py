from flask import Flask, request, jsonify
import psycopg2
import psycopg2.extras  # For RealDictCursor
import psycopg2.pool
import os
from urllib.parse import urlparse
from datetime import timedelta
import logging
import jwt # For JWT decoding
from functools import wraps # For creating decorators
import atexit
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

app = Flask(__name__)

# --- Rate Limiter Configuration ---
# Point at Redis in production; in-memory storage keeps a single process (and tests) self-contained
RATELIMIT_STORAGE_URL = os.getenv("RATELIMIT_STORAGE_URL", "memory://")
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["200 per day", "50 per hour"],
    storage_uri=RATELIMIT_STORAGE_URL,
    strategy="fixed-window",
)
limiter.init_app(app)


# --- Database Connection Pool Configuration ---
MIN_DB_CONNECTIONS = 1
MAX_DB_CONNECTIONS = 10
db_pool = None

def get_db_connection_params():
    """Determines database connection parameters."""
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        try:
            url = urlparse(database_url)
            return {
                'dbname': url.path[1:],
                'user': url.username,
                'password': url.password,
                'host': url.hostname,
                'port': url.port
            }
        except Exception as e:
            app.logger.error(f"Failed to parse DATABASE_URL: {e}. Falling back to POSTGRES_* vars.")

    return {
        'dbname': os.getenv("POSTGRES_DB"),
        'user': os.getenv("POSTGRES_USER"),
        'password': os.getenv("POSTGRES_PASSWORD"),
        'host': os.getenv("POSTGRES_HOST"),
        'port': os.getenv("POSTGRES_PORT", "5432")
    }

def init_db_pool():
    """Initializes the database connection pool."""
    global db_pool
    if db_pool is None:
        try:
            params = get_db_connection_params()
            if not all(params.values()): # Check if any crucial param is None or empty
                 app.logger.error("Database connection parameters are incomplete. Pool not initialized.")
                 return

            app.logger.info(f"Initializing database connection pool for host '{params.get('host')}' db '{params.get('dbname')}'")
            db_pool = psycopg2.pool.SimpleConnectionPool(
                MIN_DB_CONNECTIONS,
                MAX_DB_CONNECTIONS,
                **params
            )
            app.logger.info("Database connection pool initialized successfully.")
        except psycopg2.OperationalError as e:
            app.logger.error(f"Failed to initialize database pool: {e}")
            raise
        except Exception as e:
            app.logger.error(f"An unexpected error occurred during pool initialization: {e}")
            raise

init_db_pool() # Initialize the pool when the app module is loaded

# Register a function to close the pool when the application exits
@atexit.register
def close_db_pool():
    global db_pool
    if db_pool:
        app.logger.info("Closing database connection pool.")
        db_pool.closeall()
        db_pool = None

# --- JWT Configuration ---
# Tokens are issued by the auth service; this engine only verifies them
app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY')
app.config['JWT_ACCESS_TOKEN_EXPIRES'] = timedelta(hours=1)

# Configure logging
logging.basicConfig(level=logging.INFO)
# Use app.logger directly as it's configured by Flask
logger = app.logger


# --- Database Connection Helper ---
def get_db_connection():
    """Gets a connection from the database pool."""
    global db_pool
    if db_pool is None:
        logger.error("Database pool is not initialized. Attempting to re-initialize.")
        init_db_pool()
        if db_pool is None:
             logger.critical("Failed to re-initialize database pool. Cannot get connection.")
             raise psycopg2.pool.PoolError("Database pool not available.")
    try:
        return db_pool.getconn()
    except psycopg2.pool.PoolError as e:
        logger.error(f"Failed to get connection from pool: {e}")
        raise

def release_db_connection(conn):
    """Releases a connection back to the database pool."""
    global db_pool
    if db_pool and conn:
        try:
            db_pool.putconn(conn)
        except psycopg2.pool.PoolError as e:
            logger.error(f"Error releasing connection back to pool: {e}")
        except Exception as e: # Catch any other exception during putconn
            logger.error(f"Unexpected error releasing connection: {e}")


# --- JWT Blocklist Check ---
def check_if_revoked(jwt_payload):
    """
    Checks if the given JWT ID (jti) is in the blocklist.
    """
    jti = jwt_payload.get('jti')
    if not jti:
        logger.warning("JWT payload missing 'jti' claim for blocklist check.")
        return True # Treat as revoked if jti is missing

    conn = None
    try:
        conn = get_db_connection()
        with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute("SELECT EXISTS (SELECT 1 FROM jwt_blocklist WHERE jti = %s);", (jti,))
            result = cur.fetchone()
            if result and result['exists']:
                logger.info(f"Token with JTI {jti} found in blocklist (revoked).")
                return True
            return False
    except psycopg2.Error as e:
        logger.error(f"Database error during JTI blocklist check for {jti}: {e}")
        return True # Deny access when the blocklist cannot be read
    except Exception as e:
        logger.error(f"Unexpected error during JTI blocklist check for {jti}: {e}", exc_info=True)
        return True
    finally:
        if conn:
            release_db_connection(conn)


# --- JWT Required Decorator ---
def jwt_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = None
        if 'Authorization' in request.headers:
            auth_header = request.headers['Authorization']
            parts = auth_header.split()
            if len(parts) == 2 and parts[0].lower() == 'bearer':
                token = parts[1]
            elif len(parts) == 1: # Handle cases where 'Bearer' prefix might be missing by mistake
                token = parts[0]

        if not token:
            logger.warning("JWT token is missing")
            return jsonify(message="Authentication token is missing!"), 401

        try:
            data = jwt.decode(token, app.config['JWT_SECRET_KEY'], algorithms=["HS256"])

            from flask import g

            # Store the entire decoded payload in g for potential use in routes (e.g., accessing jti)
            g.decoded_token_data = data

            if check_if_revoked(data):
                logger.warning(f"Revoked token presented for user_id: {data.get('user_id')}, jti: {data.get('jti')}")
                return jsonify(message="Token has been revoked"), 401

            if 'user_id' not in data:
                logger.error("user_id not in JWT data after decoding and revoke check.")
                return jsonify(message="Invalid token: missing user_id"), 401

            g.current_user_id = data['user_id']

        except jwt.ExpiredSignatureError:
            logger.warning("JWT token has expired")
            return jsonify(message="Your token has expired. Please log in again."), 401
        except jwt.InvalidTokenError as e:
            logger.error(f"Invalid JWT token: {e}")
            return jsonify(message="Invalid token. Please log in again."), 401
        except Exception as e:
            logger.error(f"Error during token decoding: {e}", exc_info=True)
            return jsonify(message="Error processing token."), 500

        return f(*args, **kwargs)
    return decorated_function


@app.errorhandler(Exception)
def handle_exception(e):
    """Generic exception handler."""
    app.logger.error(f"Unhandled exception: {e}", exc_info=True)
    # Check if it's a pool error or general operational error
    if isinstance(e, psycopg2.pool.PoolError):
        return jsonify(error="Database pool error"), 503
    if isinstance(e, psycopg2.OperationalError): # This might catch issues from getconn if pool is down
        return jsonify(error="Database connection error"), 503
    return jsonify(error="An internal server error occurred"), 500


@app.route('/health', methods=['GET'])
@limiter.exempt
def health():
    return jsonify(status="ok"), 200


# Import blueprints after pool initialization and app context is more stable
from .blueprints.targets import targets_bp  # noqa: E402

app.register_blueprint(targets_bp)
