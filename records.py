"""Reads and writes against the PostgreSQL store. One function per query or transaction."""

from datetime import datetime, timedelta

from db import db_connection, db_execute

LOGIN_MAX_ATTEMPTS = 4
LOGIN_LOCK_MINUTES = 15

TERM_TYPES = ('first', 'second', 'third')


def _rows(cursor):
    return [dict(row) for row in cursor.fetchall() or []]


def _row(cursor):
    row = cursor.fetchone()
    return dict(row) if row else None


# ==================== ADMIN ACCOUNTS ====================

def get_user(username):
    """Fetch one user by username (case-insensitive)."""
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT username, password_hash, role
               FROM users
               WHERE LOWER(username) = LOWER(?)
               LIMIT 1''',
            ((username or '').strip(),),
        )
        return _row(c)


def ensure_admin_user(username, password_hash):
    """Create the bootstrap admin; an existing account is left untouched."""
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''INSERT INTO users (username, password_hash, role)
               VALUES (?, ?, 'admin')
               ON CONFLICT (username) DO NOTHING
               RETURNING username''',
            ((username or '').strip().lower(), password_hash),
        )
        return c.fetchone() is not None


def set_user_password(username, password_hash):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            'UPDATE users SET password_hash = ? WHERE LOWER(username) = LOWER(?)',
            (password_hash, (username or '').strip()),
        )
        return int(c.rowcount or 0)


def update_login_timestamps(username):
    """Shift current_login_at -> last_login_at and set current_login_at=now."""
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''UPDATE users
               SET last_login_at = current_login_at,
                   current_login_at = CURRENT_TIMESTAMP
               WHERE LOWER(username) = LOWER(?)''',
            ((username or '').strip(),),
        )


def _attempt_key(endpoint, username, ip_address):
    return (
        (endpoint or '').strip().lower(),
        (username or '').strip().lower(),
        (ip_address or '').strip(),
    )


def purge_old_login_attempts():
    """Delete stale login-attempt rows to keep table size small."""
    cutoff = datetime.now() - timedelta(days=7)
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''DELETE FROM login_attempts
               WHERE (locked_until IS NOT NULL AND locked_until < ?)
                  OR (locked_until IS NULL AND last_failed_at IS NOT NULL AND last_failed_at < ?)''',
            (cutoff, cutoff),
        )


def is_login_blocked(endpoint, username, ip_address):
    """Return (blocked, wait_minutes)."""
    purge_old_login_attempts()
    now = datetime.now()
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT failures, locked_until
               FROM login_attempts
               WHERE endpoint = ? AND username = ? AND ip_address = ?
               LIMIT 1''',
            _attempt_key(endpoint, username, ip_address),
        )
        row = c.fetchone()
    if not row or not row[1] or row[1] <= now:
        return False, 0
    remaining = (row[1] - now).total_seconds()
    return True, max(1, int(remaining // 60) + (1 if remaining % 60 else 0))


def register_failed_login(endpoint, username, ip_address):
    """Track a failed login and lock after LOGIN_MAX_ATTEMPTS inside the window."""
    purge_old_login_attempts()
    key = _attempt_key(endpoint, username, ip_address)
    now = datetime.now()
    window_start = now - timedelta(minutes=LOGIN_LOCK_MINUTES)
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT failures, last_failed_at, locked_until
               FROM login_attempts
               WHERE endpoint = ? AND username = ? AND ip_address = ?
               LIMIT 1''',
            key,
        )
        row = c.fetchone()
        if not row:
            db_execute(
                c,
                '''INSERT INTO login_attempts
                   (endpoint, username, ip_address, failures, first_failed_at, last_failed_at, locked_until)
                   VALUES (?, ?, ?, 1, ?, ?, NULL)''',
                key + (now, now),
            )
            return
        failures, last_failed_at, locked_until = int(row[0] or 0), row[1], row[2]
        if locked_until and locked_until > now:
            return
        failures = 1 if not last_failed_at or last_failed_at < window_start else failures + 1
        new_locked_until = now + timedelta(minutes=LOGIN_LOCK_MINUTES) if failures >= LOGIN_MAX_ATTEMPTS else None
        db_execute(
            c,
            '''UPDATE login_attempts
               SET failures = ?, last_failed_at = ?, locked_until = ?
               WHERE endpoint = ? AND username = ? AND ip_address = ?''',
            (failures, now, new_locked_until) + key,
        )


def clear_failed_login(endpoint, username, ip_address):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            'DELETE FROM login_attempts WHERE endpoint = ? AND username = ? AND ip_address = ?',
            _attempt_key(endpoint, username, ip_address),
        )


# ==================== SESSIONS & TERMS ====================

def list_sessions():
    """All sessions, newest first, each with its terms."""
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT id, name, start_year, end_year, is_current FROM sessions ORDER BY start_year DESC')
        sessions = _rows(c)
        db_execute(
            c,
            '''SELECT id, session_id, term_type, is_current, start_date, end_date
               FROM terms
               ORDER BY CASE term_type WHEN 'first' THEN 1 WHEN 'second' THEN 2 ELSE 3 END''',
        )
        terms = _rows(c)
    by_session = {}
    for term in terms:
        by_session.setdefault(term['session_id'], []).append(term)
    for session in sessions:
        session['terms'] = by_session.get(session['id'], [])
    return sessions


def create_session(start_year):
    """Create '<y>/<y+1>' with its three terms in one transaction."""
    name = f'{start_year}/{start_year + 1}'
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''INSERT INTO sessions (name, start_year, end_year)
               VALUES (?, ?, ?)
               RETURNING id, name, start_year, end_year, is_current''',
            (name, start_year, start_year + 1),
        )
        session = _row(c)
        session['terms'] = []
        for term_type in TERM_TYPES:
            db_execute(
                c,
                '''INSERT INTO terms (session_id, term_type)
                   VALUES (?, ?)
                   RETURNING id, session_id, term_type, is_current''',
                (session['id'], term_type),
            )
            session['terms'].append(_row(c))
    return session


def set_current_session(session_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT id FROM sessions WHERE id = ?', (session_id,))
        if not c.fetchone():
            return False
        db_execute(c, 'UPDATE sessions SET is_current = FALSE, updated_at = ? WHERE is_current', (datetime.now(),))
        db_execute(c, 'UPDATE sessions SET is_current = TRUE, updated_at = ? WHERE id = ?', (datetime.now(), session_id))
    return True


def set_current_term(term_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT id FROM terms WHERE id = ?', (term_id,))
        if not c.fetchone():
            return False
        db_execute(c, 'UPDATE terms SET is_current = FALSE, updated_at = ? WHERE is_current', (datetime.now(),))
        db_execute(c, 'UPDATE terms SET is_current = TRUE, updated_at = ? WHERE id = ?', (datetime.now(), term_id))
    return True


def get_current_term():
    """The single current term with its session name, or None."""
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT t.id, t.term_type, t.session_id, s.name AS session_name
               FROM terms t
               JOIN sessions s ON s.id = t.session_id
               WHERE t.is_current
               LIMIT 1''',
        )
        return _row(c)


def get_term(term_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT t.id, t.term_type, t.session_id, s.name AS session_name
               FROM terms t
               JOIN sessions s ON s.id = t.session_id
               WHERE t.id = ?''',
            (term_id,),
        )
        return _row(c)


# ==================== CLASSES & SUBJECTS ====================

def list_classes(session_id=None):
    with db_connection() as conn:
        c = conn.cursor()
        if session_id:
            db_execute(
                c,
                'SELECT id, level, section, session_id FROM classes WHERE session_id = ? ORDER BY level, section',
                (session_id,),
            )
        else:
            db_execute(c, 'SELECT id, level, section, session_id FROM classes ORDER BY level, section')
        return _rows(c)


def get_class(class_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT id, level, section, session_id FROM classes WHERE id = ?', (class_id,))
        return _row(c)


def create_class(level, section, session_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''INSERT INTO classes (level, section, session_id)
               VALUES (?, ?, ?)
               RETURNING id, level, section, session_id''',
            (level, section or None, session_id),
        )
        return _row(c)


def list_subjects():
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT id, name, code FROM subjects ORDER BY name')
        return _rows(c)


def get_subject(subject_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT id, name, code FROM subjects WHERE id = ?', (subject_id,))
        return _row(c)


def create_subject(name, code=None):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            'INSERT INTO subjects (name, code) VALUES (?, ?) RETURNING id, name, code',
            (name, code or None),
        )
        return _row(c)


# ==================== STUDENTS ====================

STUDENT_COLUMNS = '''s.id, s.admission_number, s.first_name, s.last_name, s.middle_name, s.gender,
                     s.date_of_birth, s.class_id, s.session_id, s.is_active'''
STUDENT_EDITABLE_FIELDS = ('first_name', 'last_name', 'middle_name', 'gender', 'date_of_birth', 'class_id')


def list_students(class_id=None, search='', include_inactive=True):
    clauses = []
    params = []
    if class_id:
        clauses.append('s.class_id = ?')
        params.append(class_id)
    if search:
        clauses.append("(s.admission_number ILIKE ? OR s.first_name ILIKE ? OR s.last_name ILIKE ?)")
        pattern = f'%{search.strip()}%'
        params.extend([pattern, pattern, pattern])
    if not include_inactive:
        clauses.append('s.is_active')
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ''
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            f'''SELECT {STUDENT_COLUMNS}, cl.level AS class_level, cl.section AS class_section
                FROM students s
                LEFT JOIN classes cl ON cl.id = s.class_id
                {where}
                ORDER BY s.last_name, s.first_name''',
            tuple(params),
        )
        return _rows(c)


def list_active_students_for_class(class_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT id, admission_number, first_name, last_name, middle_name
               FROM students
               WHERE class_id = ? AND is_active
               ORDER BY last_name, first_name''',
            (class_id,),
        )
        return _rows(c)


def get_student(student_id):
    """One student joined with class level/section."""
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            f'''SELECT {STUDENT_COLUMNS}, cl.level AS class_level, cl.section AS class_section
                FROM students s
                LEFT JOIN classes cl ON cl.id = s.class_id
                WHERE s.id = ?''',
            (student_id,),
        )
        return _row(c)


def insert_student_with_cursor(c, student):
    db_execute(
        c,
        '''INSERT INTO students
           (admission_number, first_name, last_name, middle_name, gender, date_of_birth, class_id, session_id)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)
           RETURNING id, admission_number, class_id''',
        (
            student['admission_number'],
            student['first_name'],
            student['last_name'],
            student.get('middle_name'),
            student.get('gender'),
            student.get('date_of_birth'),
            student.get('class_id'),
            student['session_id'],
        ),
    )
    return _row(c)


def bill_student_with_cursor(c, student_id, level_name):
    """Open a fee record using the configured standard amount for the level."""
    db_execute(c, 'SELECT standard_amount FROM fee_configs WHERE level_name = ?', (level_name,))
    row = c.fetchone()
    if not row:
        return False
    db_execute(
        c,
        '''INSERT INTO student_fees (student_id, base_fee, amount_paid)
           VALUES (?, ?, 0)
           ON CONFLICT (student_id) DO NOTHING''',
        (student_id, row[0]),
    )
    return True


def create_students(students, fee_category_for):
    """
    Insert students and bill each one in a single transaction.

    `fee_category_for(student)` returns the fee level name or None to skip billing.
    A unique violation aborts the whole batch.
    """
    inserted = []
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        for student in students:
            row = insert_student_with_cursor(c, student)
            category = fee_category_for(student)
            if category:
                bill_student_with_cursor(c, row['id'], category)
            inserted.append(row)
    return inserted


def update_student(student_id, fields):
    updates = {k: v for k, v in fields.items() if k in STUDENT_EDITABLE_FIELDS}
    if not updates:
        return get_student(student_id)
    assignments = ', '.join(f'{column} = ?' for column in updates)
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            f'UPDATE students SET {assignments}, updated_at = ? WHERE id = ?',
            tuple(updates.values()) + (datetime.now(), student_id),
        )
        if not c.rowcount:
            return None
    return get_student(student_id)


def set_student_active(student_id, is_active):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            'UPDATE students SET is_active = ?, updated_at = ? WHERE id = ?',
            (bool(is_active), datetime.now(), student_id),
        )
        return int(c.rowcount or 0) > 0


# ==================== TEACHER TOKENS ====================

TOKEN_SELECT = '''SELECT t.id, t.token, t.class_id, t.subject_id, t.is_used, t.used_at, t.expires_at, t.created_at,
                         cl.level AS class_level, cl.section AS class_section, cl.session_id AS class_session_id,
                         sb.name AS subject_name, sb.code AS subject_code
                  FROM teacher_tokens t
                  LEFT JOIN classes cl ON cl.id = t.class_id
                  LEFT JOIN subjects sb ON sb.id = t.subject_id'''


def find_teacher_token(code, class_id=None, subject_id=None):
    """Token by code, optionally constrained to its class/subject pair."""
    clauses = ['t.token = ?']
    params = [(code or '').strip().upper()]
    if class_id is not None:
        clauses.append('t.class_id = ?')
        params.append(class_id)
    if subject_id is not None:
        clauses.append('t.subject_id = ?')
        params.append(subject_id)
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, f"{TOKEN_SELECT} WHERE {' AND '.join(clauses)} LIMIT 1", tuple(params))
        return _row(c)


def list_teacher_tokens():
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, f'{TOKEN_SELECT} ORDER BY t.created_at DESC')
        return _rows(c)


def create_teacher_tokens(codes, class_id, subject_id, expires_at=None):
    created = []
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        for code in codes:
            db_execute(
                c,
                '''INSERT INTO teacher_tokens (token, class_id, subject_id, expires_at)
                   VALUES (?, ?, ?, ?)
                   RETURNING id, token, class_id, subject_id, is_used, expires_at''',
                (code, class_id, subject_id, expires_at),
            )
            created.append(_row(c))
    return created


def delete_teacher_token(token_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'DELETE FROM teacher_tokens WHERE id = ?', (token_id,))
        return int(c.rowcount or 0) > 0


def save_scores_and_claim_token(token_id, term_id, class_id, subject_id, rows, now=None):
    """
    Claim the token and upsert the score rows in one transaction.

    Returns the number of rows saved, or None when the token could not be
    claimed (already used or expired meanwhile); nothing is written then.
    """
    now = now or datetime.now()
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''UPDATE teacher_tokens
               SET is_used = TRUE, used_at = ?
               WHERE id = ? AND is_used = FALSE AND (expires_at IS NULL OR expires_at >= ?)
               RETURNING id''',
            (now, token_id, now),
        )
        if not c.fetchone():
            conn.rollback()
            return None
        saved = 0
        for row in rows:
            db_execute(
                c,
                '''INSERT INTO scores
                   (student_id, subject_id, term_id, class_id, ca1, ca2, exam, total, grade, teacher_comment, submitted_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT (student_id, subject_id, term_id) DO UPDATE
                   SET class_id = EXCLUDED.class_id,
                       ca1 = EXCLUDED.ca1,
                       ca2 = EXCLUDED.ca2,
                       exam = EXCLUDED.exam,
                       total = EXCLUDED.total,
                       grade = EXCLUDED.grade,
                       teacher_comment = EXCLUDED.teacher_comment,
                       submitted_at = EXCLUDED.submitted_at,
                       updated_at = EXCLUDED.submitted_at''',
                (
                    row['student_id'], subject_id, term_id, class_id,
                    row['ca1'], row['ca2'], row['exam'], row['total'], row['grade'],
                    row['teacher_comment'], now,
                ),
            )
            saved += int(c.rowcount or 0)
    return saved


# ==================== RESULT PINS ====================

PIN_COLUMNS = 'p.id, p.pin, p.student_id, p.term_id, p.usage_count, p.max_uses, p.expires_at'


def find_result_pin(admission_number, pin, term_id):
    """PIN matching student (by admission number), term and code; None if any part differs."""
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            f'''SELECT {PIN_COLUMNS}
                FROM result_pins p
                JOIN students s ON s.id = p.student_id
                WHERE UPPER(s.admission_number) = UPPER(?)
                  AND s.is_active
                  AND p.term_id = ?
                  AND UPPER(p.pin) = UPPER(?)
                LIMIT 1''',
            (admission_number, term_id, pin),
        )
        return _row(c)


def get_result_pin(pin_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, f'SELECT {PIN_COLUMNS} FROM result_pins p WHERE p.id = ?', (pin_id,))
        return _row(c)


def consume_result_pin_use(pin_id, now=None):
    """
    Atomically spend one use of a PIN.

    Returns the updated row, or None when the PIN was exhausted or expired
    by the time the update ran.
    """
    now = now or datetime.now()
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            f'''UPDATE result_pins p
                SET usage_count = usage_count + 1, updated_at = ?
                WHERE p.id = ? AND p.usage_count < p.max_uses AND (p.expires_at IS NULL OR p.expires_at >= ?)
                RETURNING {PIN_COLUMNS}''',
            (now, pin_id, now),
        )
        return _row(c)


def create_result_pins(term_id, pins_by_student, max_uses, expires_at=None):
    created = []
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        for student_id, pin in pins_by_student.items():
            db_execute(
                c,
                '''INSERT INTO result_pins (pin, student_id, term_id, max_uses, expires_at)
                   VALUES (?, ?, ?, ?, ?)
                   RETURNING id, pin, student_id, term_id, usage_count, max_uses, expires_at''',
                (pin, student_id, term_id, max_uses, expires_at),
            )
            created.append(_row(c))
    return created


def list_result_pins(term_id=None):
    params = ()
    where = ''
    if term_id:
        where = 'WHERE p.term_id = ?'
        params = (term_id,)
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            f'''SELECT {PIN_COLUMNS}, s.admission_number, s.first_name, s.last_name
                FROM result_pins p
                JOIN students s ON s.id = p.student_id
                {where}
                ORDER BY s.last_name, s.first_name''',
            params,
        )
        return _rows(c)


# ==================== SCORES ====================

def list_student_scores(student_id, term_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT sc.subject_id, sb.name AS subject_name, sb.code AS subject_code,
                      sc.ca1, sc.ca2, sc.exam, sc.total, sc.grade, sc.teacher_comment
               FROM scores sc
               JOIN subjects sb ON sb.id = sc.subject_id
               WHERE sc.student_id = ? AND sc.term_id = ?
               ORDER BY sb.name''',
            (student_id, term_id),
        )
        return _rows(c)


# ==================== FEES ====================

def list_fee_configs():
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT level_name, standard_amount FROM fee_configs ORDER BY level_name')
        return _rows(c)


def get_fee_config(level_name):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(c, 'SELECT level_name, standard_amount FROM fee_configs WHERE level_name = ?', (level_name,))
        return _row(c)


def upsert_fee_config(level_name, standard_amount):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''INSERT INTO fee_configs (level_name, standard_amount, updated_at)
               VALUES (?, ?, ?)
               ON CONFLICT (level_name) DO UPDATE
               SET standard_amount = EXCLUDED.standard_amount, updated_at = EXCLUDED.updated_at
               RETURNING level_name, standard_amount''',
            (level_name, standard_amount, datetime.now()),
        )
        return _row(c)


def get_student_fees(student_id):
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT student_id, base_fee, previous_debt, scholarship_amount, amount_paid
               FROM student_fees
               WHERE student_id = ?''',
            (student_id,),
        )
        return _row(c)


def record_payment(student_id, amount):
    """Add to amount_paid in place so concurrent payments are not lost."""
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''INSERT INTO student_fees (student_id, amount_paid, updated_at)
               VALUES (?, ?, ?)
               ON CONFLICT (student_id) DO UPDATE
               SET amount_paid = student_fees.amount_paid + EXCLUDED.amount_paid,
                   updated_at = EXCLUDED.updated_at
               RETURNING student_id, base_fee, previous_debt, scholarship_amount, amount_paid''',
            (student_id, amount, datetime.now()),
        )
        return _row(c)


FEE_ADJUSTABLE_FIELDS = ('scholarship_amount', 'previous_debt')


def set_student_fee_field(student_id, field, value):
    if field not in FEE_ADJUSTABLE_FIELDS:
        raise ValueError(f'Unsupported fee field: {field}')
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            f'''INSERT INTO student_fees (student_id, {field}, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT (student_id) DO UPDATE
                SET {field} = EXCLUDED.{field}, updated_at = EXCLUDED.updated_at
                RETURNING student_id, base_fee, previous_debt, scholarship_amount, amount_paid''',
            (student_id, value, datetime.now()),
        )
        return _row(c)


# ==================== DASHBOARD ====================

def dashboard_counts(now=None):
    now = now or datetime.now()
    with db_connection() as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''SELECT
                 (SELECT COUNT(*) FROM students WHERE is_active) AS active_students,
                 (SELECT COUNT(*) FROM students) AS total_students,
                 (SELECT COUNT(*) FROM teacher_tokens
                   WHERE NOT is_used AND (expires_at IS NULL OR expires_at >= ?)) AS active_tokens,
                 (SELECT COUNT(*) FROM teacher_tokens WHERE is_used) AS used_tokens,
                 (SELECT COUNT(*) FROM result_pins) AS result_pins''',
            (now,),
        )
        return _row(c)
