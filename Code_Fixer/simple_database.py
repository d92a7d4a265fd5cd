"""
Simple database connection using psycopg2 directly
Best-effort persistence of session state; every failure is reported, never raised
"""
import os
import json
import psycopg2
import psycopg2.extras
from typing import Optional, Dict, Any


SESSION_TABLE = "code_fixer_session"


def get_db_connection():
    return psycopg2.connect(
        host=os.getenv('POSTGRES_HOST', 'localhost'),
        port=os.getenv('POSTGRES_PORT', '5432'),
        database=os.getenv('POSTGRES_DB', 'code_fixer'),
        user=os.getenv('POSTGRES_USER', 'postgres'),
        password=os.getenv('POSTGRES_PASSWORD', 'password'),
        connect_timeout=int(os.getenv('POSTGRES_CONNECT_TIMEOUT', '3'))
    )


def _to_dict(value):
    """Stored state as a dict; psycopg2 hands JSONB back decoded, TEXT/BYTEA as raw JSON"""
    if isinstance(value, dict):
        return value
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8", errors="replace")
    if not isinstance(value, str):
        return {}
    try:
        decoded = json.loads(value)
    except ValueError:
        return {}
    return decoded if isinstance(decoded, dict) else {}


def init_session_table() -> bool:
    """Create the session table if it does not exist"""
    try:
        conn = get_db_connection()
        cursor = conn.cursor()

        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS {SESSION_TABLE} (
                id TEXT PRIMARY KEY,
                state JSONB NOT NULL,
                updated_at TIMESTAMP NOT NULL DEFAULT NOW()
            )
        """)
        conn.commit()
        return True

    except Exception as e:
        print(f"⚠️ Session table unavailable, sessions stay in memory only: {e}")
        return False
    finally:
        if 'conn' in locals():
            conn.close()


def save_session_state(session_id: str, state: Dict[str, Any]) -> bool:
    """Insert or update the stored state for a session"""
    try:
        conn = get_db_connection()
        cursor = conn.cursor()

        cursor.execute(f"""
            INSERT INTO {SESSION_TABLE} (id, state, updated_at)
            VALUES (%s, %s, NOW())
            ON CONFLICT (id) DO UPDATE SET state = EXCLUDED.state, updated_at = NOW()
        """, (session_id, psycopg2.extras.Json(state)))
        conn.commit()
        return True

    except Exception as e:
        print(f"Error saving session state: {e}")
        return False
    finally:
        if 'conn' in locals():
            conn.close()


def load_session_state(session_id: str) -> Optional[Dict[str, Any]]:
    """Get stored state for a session"""
    try:
        conn = get_db_connection()
        cursor = conn.cursor()

        cursor.execute(f"SELECT state FROM {SESSION_TABLE} WHERE id = %s", (session_id,))

        result = cursor.fetchone()
        if result and result[0] is not None:
            return _to_dict(result[0])
        return None

    except Exception as e:
        print(f"Error loading session state: {e}")
        return None
    finally:
        if 'conn' in locals():
            conn.close()


def delete_session_state(session_id: str) -> bool:
    try:
        conn = get_db_connection()
        cursor = conn.cursor()

        cursor.execute(f"DELETE FROM {SESSION_TABLE} WHERE id = %s", (session_id,))
        conn.commit()
        return cursor.rowcount > 0

    except Exception as e:
        print(f"Error deleting session state: {e}")
        return False
    finally:
        if 'conn' in locals():
            conn.close()
