"""Initial schema for the school result portal.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op


# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None

PK = 'TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text'


def upgrade() -> None:
    """Create all tables and indexes for the result portal."""

    # Admin accounts and login throttling
    op.execute('''CREATE TABLE IF NOT EXISTS users (
                    id SERIAL PRIMARY KEY,
                    username TEXT UNIQUE NOT NULL,
                    password_hash TEXT NOT NULL,
                    role TEXT NOT NULL DEFAULT 'admin',
                    current_login_at TIMESTAMP,
                    last_login_at TIMESTAMP,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')
    op.execute('''CREATE TABLE IF NOT EXISTS login_attempts (
                    id SERIAL PRIMARY KEY,
                    endpoint TEXT NOT NULL,
                    username TEXT NOT NULL,
                    ip_address TEXT NOT NULL,
                    failures INTEGER NOT NULL DEFAULT 0,
                    first_failed_at TIMESTAMP,
                    last_failed_at TIMESTAMP,
                    locked_until TIMESTAMP,
                    UNIQUE(endpoint, username, ip_address)
                )''')

    # Academic calendar
    op.execute(f'''CREATE TABLE IF NOT EXISTS sessions (
                    id {PK},
                    name TEXT UNIQUE NOT NULL,
                    start_year INTEGER NOT NULL,
                    end_year INTEGER NOT NULL,
                    is_current BOOLEAN NOT NULL DEFAULT FALSE,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')
    op.execute(f'''CREATE TABLE IF NOT EXISTS terms (
                    id {PK},
                    session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
                    term_type TEXT NOT NULL CHECK (term_type IN ('first', 'second', 'third')),
                    is_current BOOLEAN NOT NULL DEFAULT FALSE,
                    start_date DATE,
                    end_date DATE,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(session_id, term_type)
                )''')

    # Classes, subjects, students
    op.execute(f'''CREATE TABLE IF NOT EXISTS classes (
                    id {PK},
                    level TEXT NOT NULL,
                    section TEXT,
                    session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')
    op.execute(f'''CREATE TABLE IF NOT EXISTS subjects (
                    id {PK},
                    name TEXT UNIQUE NOT NULL,
                    code TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')
    op.execute(f'''CREATE TABLE IF NOT EXISTS students (
                    id {PK},
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
                )''')

    # Credentials
    op.execute(f'''CREATE TABLE IF NOT EXISTS teacher_tokens (
                    id {PK},
                    token TEXT UNIQUE NOT NULL,
                    class_id TEXT REFERENCES classes(id) ON DELETE CASCADE,
                    subject_id TEXT REFERENCES subjects(id) ON DELETE CASCADE,
                    is_used BOOLEAN NOT NULL DEFAULT FALSE,
                    used_at TIMESTAMP,
                    expires_at TIMESTAMP,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')
    op.execute(f'''CREATE TABLE IF NOT EXISTS result_pins (
                    id {PK},
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
                )''')

    # Scores
    op.execute(f'''CREATE TABLE IF NOT EXISTS scores (
                    id {PK},
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
                )''')

    # Fees
    op.execute('''CREATE TABLE IF NOT EXISTS fee_configs (
                    level_name TEXT PRIMARY KEY,
                    standard_amount NUMERIC(12, 2) NOT NULL DEFAULT 0,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')
    op.execute('''CREATE TABLE IF NOT EXISTS student_fees (
                    student_id TEXT PRIMARY KEY REFERENCES students(id) ON DELETE CASCADE,
                    base_fee NUMERIC(12, 2) NOT NULL DEFAULT 0,
                    previous_debt NUMERIC(12, 2) NOT NULL DEFAULT 0,
                    scholarship_amount NUMERIC(12, 2) NOT NULL DEFAULT 0,
                    amount_paid NUMERIC(12, 2) NOT NULL DEFAULT 0,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    # Indexes
    op.execute('CREATE INDEX IF NOT EXISTS idx_login_attempts_lookup ON login_attempts(endpoint, username, ip_address)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_students_class ON students(class_id)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_students_admission_upper ON students(UPPER(admission_number))')
    op.execute('CREATE INDEX IF NOT EXISTS idx_teacher_tokens_class_subject ON teacher_tokens(class_id, subject_id)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_result_pins_student_term ON result_pins(student_id, term_id)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_scores_student_term ON scores(student_id, term_id)')
    # At most one current session and one current term
    op.execute('CREATE UNIQUE INDEX IF NOT EXISTS uq_sessions_current ON sessions(is_current) WHERE is_current')
    op.execute('CREATE UNIQUE INDEX IF NOT EXISTS uq_terms_current ON terms(is_current) WHERE is_current')


def downgrade() -> None:
    """Drop every table created by upgrade(), children first."""
    for table in (
        'student_fees',
        'fee_configs',
        'scores',
        'result_pins',
        'teacher_tokens',
        'students',
        'subjects',
        'classes',
        'terms',
        'sessions',
        'login_attempts',
        'users',
    ):
        op.execute(f'DROP TABLE IF EXISTS {table} CASCADE')
