import logging
import os
from contextlib import contextmanager

import psycopg2
from psycopg2.extras import DictCursor
from dotenv import load_dotenv

load_dotenv()

PK_COLUMN_SQL = 'TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text'

SCHEMA_STATEMENTS = [
    # Admin accounts. Teachers and students never log in; they present tokens/PINs.
    '''CREATE TABLE IF NOT EXISTS users (
           id SERIAL PRIMARY KEY,
           username TEXT UNIQUE NOT NULL,
           password_hash TEXT NOT NULL,
           role TEXT NOT NULL DEFAULT 'admin',
           current_login_at TIMESTAMP,
           last_login_at TIMESTAMP,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
       )''',
    '''CREATE TABLE IF NOT EXISTS login_attempts (
           id SERIAL PRIMARY KEY,
           endpoint TEXT NOT NULL,
           username TEXT NOT NULL,
           ip_address TEXT NOT NULL,
           failures INTEGER NOT NULL DEFAULT 0,
           first_failed_at TIMESTAMP,
           last_failed_at TIMESTAMP,
           locked_until TIMESTAMP,
           UNIQUE(endpoint, username, ip_address)
       )''',
    f'''CREATE TABLE IF NOT EXISTS sessions (
           id {PK_COLUMN_SQL},
           name TEXT UNIQUE NOT NULL,
           start_year INTEGER NOT NULL,
           end_year INTEGER NOT NULL,
           is_current BOOLEAN NOT NULL DEFAULT FALSE,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
       )''',
    f'''CREATE TABLE IF NOT EXISTS terms (
           id {PK_COLUMN_SQL},
           session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
           term_type TEXT NOT NULL CHECK (term_type IN ('first', 'second', 'third')),
           is_current BOOLEAN NOT NULL DEFAULT FALSE,
           start_date DATE,
           end_date DATE,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           UNIQUE(session_id, term_type)
       )''',
    f'''CREATE TABLE IF NOT EXISTS classes (
           id {PK_COLUMN_SQL},
           level TEXT NOT NULL,
           section TEXT,
           session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
       )''',
    f'''CREATE TABLE IF NOT EXISTS subjects (
           id {PK_COLUMN_SQL},
           name TEXT UNIQUE NOT NULL,
           code TEXT,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
       )''',
    f'''CREATE TABLE IF NOT EXISTS students (
           id {PK_COLUMN_SQL},
           admission_number TEXT UNIQUE NOT NULL,
           first_name TEXT NOT NULL,
           last_name TEXT NOT NULL,
           middle_name TEXT,
           gender TEXT,
           date_of_birth DATE,
           class_id TEXT REFERENCES classes(id) ON DELETE SET NULL,
           session_id TEXT NOT NULL REFERENCES sessions(id),
           is_active BOOLEAN NOT NULL DEFAULT TRUE,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
       )''',
    f'''CREATE TABLE IF NOT EXISTS teacher_tokens (
           id {PK_COLUMN_SQL},
           token TEXT UNIQUE NOT NULL,
           class_id TEXT REFERENCES classes(id) ON DELETE CASCADE,
           subject_id TEXT REFERENCES subjects(id) ON DELETE CASCADE,
           is_used BOOLEAN NOT NULL DEFAULT FALSE,
           used_at TIMESTAMP,
           expires_at TIMESTAMP,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
       )''',
    f'''CREATE TABLE IF NOT EXISTS result_pins (
           id {PK_COLUMN_SQL},
           pin TEXT NOT NULL,
           student_id TEXT NOT NULL REFERENCES students(id) ON DELETE CASCADE,
           term_id TEXT REFERENCES terms(id) ON DELETE CASCADE,
           usage_count INTEGER NOT NULL DEFAULT 0,
           max_uses INTEGER NOT NULL DEFAULT 3,
           expires_at TIMESTAMP,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           CHECK (usage_count >= 0 AND usage_count <= max_uses),
           UNIQUE(student_id, term_id, pin)
       )''',
    f'''CREATE TABLE IF NOT EXISTS scores (
           id {PK_COLUMN_SQL},
           student_id TEXT NOT NULL REFERENCES students(id) ON DELETE CASCADE,
           subject_id TEXT NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
           term_id TEXT NOT NULL REFERENCES terms(id) ON DELETE CASCADE,
           class_id TEXT NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
           ca1 DOUBLE PRECISION,
           ca2 DOUBLE PRECISION,
           exam DOUBLE PRECISION,
           total DOUBLE PRECISION,
           grade TEXT,
           teacher_comment VARCHAR(500),
           submitted_at TIMESTAMP,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           UNIQUE(student_id, subject_id, term_id)
       )''',
    '''CREATE TABLE IF NOT EXISTS fee_configs (
           level_name TEXT PRIMARY KEY,
           standard_amount NUMERIC(12, 2) NOT NULL DEFAULT 0,
           updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
       )''',
    '''CREATE TABLE IF NOT EXISTS student_fees (
           student_id TEXT PRIMARY KEY REFERENCES students(id) ON DELETE CASCADE,
           base_fee NUMERIC(12, 2) NOT NULL DEFAULT 0,
           previous_debt NUMERIC(12, 2) NOT NULL DEFAULT 0,
           scholarship_amount NUMERIC(12, 2) NOT NULL DEFAULT 0,
           amount_paid NUMERIC(12, 2) NOT NULL DEFAULT 0,
           updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
       )''',
    'CREATE INDEX IF NOT EXISTS idx_login_attempts_lookup ON login_attempts(endpoint, username, ip_address)',
    'CREATE INDEX IF NOT EXISTS idx_students_class ON students(class_id)',
    'CREATE INDEX IF NOT EXISTS idx_students_admission_upper ON students(UPPER(admission_number))',
    'CREATE INDEX IF NOT EXISTS idx_teacher_tokens_class_subject ON teacher_tokens(class_id, subject_id)',
    'CREATE INDEX IF NOT EXISTS idx_result_pins_student_term ON result_pins(student_id, term_id)',
    'CREATE INDEX IF NOT EXISTS idx_scores_student_term ON scores(student_id, term_id)',
    'CREATE UNIQUE INDEX IF NOT EXISTS uq_sessions_current ON sessions(is_current) WHERE is_current',
    'CREATE UNIQUE INDEX IF NOT EXISTS uq_terms_current ON terms(is_current) WHERE is_current',
]


def database_url():
    url = (os.environ.get('DATABASE_URL') or '').strip()
    if not url:
        raise RuntimeError("DATABASE_URL not found. Set it in .env")
    return url


def _adapt_query(query):
    return query.replace('?', '%s')


def db_execute(cursor, query, params=None):
    if params is None:
        return cursor.execute(_adapt_query(query))
    return cursor.execute(_adapt_query(query), params)


def get_db():
    """Create a PostgreSQL DB connection."""
    return psycopg2.connect(database_url(), cursor_factory=DictCursor, connect_timeout=10)


@contextmanager
def db_connection(commit=False):
    """Yield a connection; commit on clean exit when asked, always close."""
    conn = get_db()
    try:
        yield conn
        if commit:
            conn.commit()
    finally:
        conn.close()


def init_db():
    """Create all tables and indexes if they don't exist."""
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        for statement in SCHEMA_STATEMENTS:
            db_execute(c, statement)
    logging.info("Database schema verified (%d statements).", len(SCHEMA_STATEMENTS))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    init_db()
    print("Database initialized successfully.")
