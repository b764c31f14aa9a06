"""
School Result Portal

A Flask JSON service for a secondary school: an admin back-office for
sessions, terms, classes, students, fees, teacher tokens and result PINs;
token-gated score entry for teachers; and PIN-gated result lookup for
students.
"""

import logging
import os
import re
from datetime import datetime, timedelta
from functools import wraps

import psycopg2
from psycopg2 import errors as pg_errors
from dotenv import load_dotenv
from flask import Flask, jsonify, request, session
from flask_wtf import FlaskForm
from flask_wtf.csrf import CSRFError, CSRFProtect, generate_csrf
from pydantic import ValidationError
from werkzeug.security import check_password_hash, generate_password_hash
from wtforms import DecimalField, IntegerField, PasswordField, SelectField, StringField, validators

import access_gates
import records
from access_gates import AccessDenied, CredentialFormatError, NotFoundError
from db import init_db
from fees import FEE_CATEGORIES, fee_category_for_level, fee_statement
from grading import UUID_PATTERN, BatchSizeError
from schemas import (
    PinLookupRequest,
    ResultLookupResponse,
    ScoreSubmissionRequest,
    SubmissionResponse,
    TokenValidationRequest,
    TokenValidationResponse,
    validation_message,
)

load_dotenv()

app = Flask(__name__)
ALLOW_INSECURE_DEFAULTS = os.environ.get('ALLOW_INSECURE_DEFAULTS', '').strip().lower() in ('1', 'true', 'yes')
secret_key = os.environ.get('SECRET_KEY')
if not secret_key:
    if ALLOW_INSECURE_DEFAULTS:
        secret_key = 'dev-secret-key-change-me'
    else:
        raise RuntimeError("SECRET_KEY is required in production. Set SECRET_KEY or enable ALLOW_INSECURE_DEFAULTS for local development.")
if not ALLOW_INSECURE_DEFAULTS and len(secret_key) < 32:
    raise RuntimeError("SECRET_KEY is too short. Use at least 32 characters in production.")
app.secret_key = secret_key
app.config['WTF_CSRF_TIME_LIMIT'] = None

csrf = CSRFProtect(app)

DATABASE_URL = os.environ.get('DATABASE_URL', '').strip()
if not DATABASE_URL.startswith(('postgres://', 'postgresql://')):
    raise RuntimeError("PostgreSQL is required. Set DATABASE_URL to a postgresql:// connection string.")
ADMIN_USERNAME = os.environ.get('ADMIN_USERNAME', 'admin').strip().lower()
ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD', '').strip()
SCORE_ENTRY_TICKET_MAX_AGE = int(os.environ.get('SCORE_ENTRY_TICKET_MAX_AGE', '7200'))
RUN_STARTUP_DDL = os.environ.get('RUN_STARTUP_DDL', '1').strip().lower() in ('1', 'true', 'yes')
RUN_STARTUP_BOOTSTRAP = os.environ.get('RUN_STARTUP_BOOTSTRAP', '1').strip().lower() in ('1', 'true', 'yes')

CLASS_LEVELS = ('JSS1', 'JSS2', 'JSS3', 'SSS1', 'SSS2', 'SSS3')
FINAL_CLASS_LEVEL = CLASS_LEVELS[-1]
GENDERS = ('Male', 'Female')
MAX_STUDENT_BATCH = 100
MAX_NAME_LENGTH = 100
MAX_TOKENS_PER_REQUEST = 50
ADMISSION_NUMBER_PATTERN = re.compile(r'^[A-Za-z0-9/\-]+$')
DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')
CONTROL_CHARS = re.compile(r'[\x00-\x1F\x7F]')

# Set up logging
logging.basicConfig(filename=os.environ.get('LOG_FILE', 'app.log'), level=logging.INFO,
                    format='%(asctime)s - %(levelname)s - %(message)s')
if ALLOW_INSECURE_DEFAULTS:
    logging.warning("ALLOW_INSECURE_DEFAULTS is enabled. Development-only fallbacks may be active.")


def create_admin_user():
    """Ensure the bootstrap admin exists; never resets an existing password."""
    if not ADMIN_PASSWORD:
        raise RuntimeError("ADMIN_PASSWORD is required to bootstrap the initial admin account.")
    if not ALLOW_INSECURE_DEFAULTS and len(ADMIN_PASSWORD) < 12:
        raise RuntimeError("ADMIN_PASSWORD is too short. Use at least 12 characters.")
    if records.ensure_admin_user(ADMIN_USERNAME, generate_password_hash(ADMIN_PASSWORD)):
        logging.info("Admin user created: %s", ADMIN_USERNAME)


if RUN_STARTUP_DDL:
    init_db()
else:
    logging.warning("RUN_STARTUP_DDL is disabled. Ensure schema is already migrated before startup.")
if RUN_STARTUP_BOOTSTRAP:
    create_admin_user()

# ==================== HELPERS ====================


def get_client_ip():
    """Best-effort client IP extraction."""
    trust_proxy = os.environ.get('TRUST_PROXY_HEADERS', '').strip().lower() in ('1', 'true', 'yes')
    xff = (request.headers.get('X-Forwarded-For') or '').strip()
    if trust_proxy and xff:
        for part in xff.split(','):
            ip = (part or '').strip()
            if ip:
                return ip
    return (request.remote_addr or '').strip() or 'unknown'


def json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def form_error(form):
    return jsonify({'error': 'Invalid input', 'details': form.errors}), 400


def admin_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if session.get('role') != 'admin':
            return jsonify({'error': 'Admin login required'}), 401
        return view(*args, **kwargs)
    return wrapper


def sanitize_text(value, max_length=MAX_NAME_LENGTH):
    if value is None:
        return ''
    return CONTROL_CHARS.sub('', str(value).strip())[:max_length]


def validate_student_row(row, index=None):
    """
    Validate one student record for admin creation.

    Returns (sanitized, errors). All problems with the row are reported.
    """
    prefix = f'Row {index + 1}: ' if index is not None else ''
    if not isinstance(row, dict):
        return None, [f'{prefix}Invalid student data format']

    errors = []
    admission_number = sanitize_text(row.get('admission_number'), 50).upper()
    first_name = sanitize_text(row.get('first_name'))
    last_name = sanitize_text(row.get('last_name'))
    session_id = sanitize_text(row.get('session_id'), 64)
    class_level = sanitize_text(row.get('class_level'), 10).upper()

    if not admission_number:
        errors.append(f'{prefix}Admission number is required')
    elif not ADMISSION_NUMBER_PATTERN.match(admission_number):
        errors.append(f'{prefix}Admission number contains invalid characters')

    for label, value in (('First name', first_name), ('Last name', last_name)):
        if not value:
            errors.append(f'{prefix}{label} is required')
        elif len(value) < 2:
            errors.append(f'{prefix}{label} must be at least 2 characters')

    if not session_id:
        errors.append(f'{prefix}Session ID is required')
    elif not UUID_PATTERN.match(session_id):
        errors.append(f'{prefix}Invalid session ID format')

    if not class_level:
        errors.append(f'{prefix}Class is required')
    elif class_level not in CLASS_LEVELS:
        errors.append(f'{prefix}Invalid class "{class_level}". Must be one of: {", ".join(CLASS_LEVELS)}')

    optional, optional_errors = _optional_student_fields(row, prefix)
    errors.extend(optional_errors)
    if errors:
        return None, errors
    sanitized = {
        'admission_number': admission_number,
        'first_name': first_name,
        'last_name': last_name,
        'class_level': class_level,
        'session_id': session_id,
        'middle_name': None,
        'gender': None,
        'date_of_birth': None,
        'class_id': None,
    }
    sanitized.update(optional)
    return sanitized, []


def _optional_student_fields(row, prefix=''):
    cleaned = {}
    errors = []
    if 'middle_name' in row:
        cleaned['middle_name'] = sanitize_text(row.get('middle_name')) or None
    if 'gender' in row:
        gender = sanitize_text(row.get('gender'), 10).capitalize()
        if gender and gender not in GENDERS:
            errors.append(f'{prefix}Invalid gender "{gender}". Must be Male or Female')
        cleaned['gender'] = gender or None
    if 'date_of_birth' in row:
        date_of_birth = sanitize_text(row.get('date_of_birth'), 10)
        if date_of_birth and not DATE_PATTERN.match(date_of_birth):
            errors.append(f'{prefix}Invalid date format. Use YYYY-MM-DD')
        cleaned['date_of_birth'] = date_of_birth or None
    if 'class_id' in row:
        cleaned['class_id'] = sanitize_text(row.get('class_id'), 64) or None
    return cleaned, errors


def validate_student_updates(updates):
    """Validate a partial student edit; only the supplied editable fields are checked."""
    cleaned, errors = _optional_student_fields(updates)
    for field, label in (('first_name', 'First name'), ('last_name', 'Last name')):
        if field in updates:
            value = sanitize_text(updates.get(field))
            if len(value) < 2:
                errors.append(f'{label} must be at least 2 characters')
            cleaned[field] = value
    return cleaned, errors


def student_fee_category(student):
    return fee_category_for_level(student.get('class_level'))


def student_fee_statement(student):
    category = fee_category_for_level(student.get('class_level'))
    config = records.get_fee_config(category) or {}
    statement = fee_statement(config.get('standard_amount'), records.get_student_fees(student['id']))
    statement['fee_category'] = category
    return statement


def token_payload(token, now=None):
    payload = dict(token)
    payload['status'] = access_gates.token_status(token, now)
    return payload


def student_status(student):
    """Active, Inactive, or Graduated for an inactive student in the final class."""
    if student.get('is_active'):
        return 'Active'
    if (student.get('class_level') or '').upper() == FINAL_CLASS_LEVEL:
        return 'Graduated'
    return 'Inactive'


def require_current_term():
    term = records.get_current_term()
    if not term:
        raise NotFoundError('No active term found. Please contact admin.')
    return term


# ==================== FORMS ====================


class AdminLoginForm(FlaskForm):
    username = StringField('Username', [validators.DataRequired(), validators.Length(max=80)])
    password = PasswordField('Password', [validators.DataRequired()])


class SessionForm(FlaskForm):
    start_year = IntegerField('Start year', [validators.DataRequired(), validators.NumberRange(min=2000, max=2100)])


class ClassForm(FlaskForm):
    level = SelectField('Level', choices=[(level, level) for level in CLASS_LEVELS])
    section = StringField('Section', [validators.Optional(), validators.Length(max=10)])
    session_id = StringField('Session', [validators.DataRequired(), validators.Length(max=64)])


class SubjectForm(FlaskForm):
    name = StringField('Name', [validators.DataRequired(), validators.Length(min=2, max=100)])
    code = StringField('Code', [validators.Optional(), validators.Length(max=20)])


class TokenRequestForm(FlaskForm):
    class_id = StringField('Class', [validators.DataRequired(), validators.Length(max=64)])
    subject_id = StringField('Subject', [validators.DataRequired(), validators.Length(max=64)])
    count = IntegerField('Count', [validators.Optional(), validators.NumberRange(min=1, max=MAX_TOKENS_PER_REQUEST)], default=1)
    expires_in_days = IntegerField('Expires in (days)', [validators.Optional(), validators.NumberRange(min=1, max=365)])


class PinRequestForm(FlaskForm):
    term_id = StringField('Term', [validators.Optional(), validators.Length(max=64)])
    student_id = StringField('Student', [validators.Optional(), validators.Length(max=64)])
    class_id = StringField('Class', [validators.Optional(), validators.Length(max=64)])
    max_uses = IntegerField('Max uses', [validators.Optional(), validators.NumberRange(min=1, max=50)],
                            default=access_gates.DEFAULT_PIN_MAX_USES)
    expires_in_days = IntegerField('Expires in (days)', [validators.Optional(), validators.NumberRange(min=1, max=365)])


class FeeConfigForm(FlaskForm):
    level_name = SelectField('Category', choices=[(name, name) for name in FEE_CATEGORIES])
    standard_amount = DecimalField('Standard amount', [validators.InputRequired(), validators.NumberRange(min=0)])


class AmountForm(FlaskForm):
    amount = DecimalField('Amount', [validators.InputRequired(), validators.NumberRange(min=0)])


# ==================== ERROR HANDLERS ====================


@app.errorhandler(AccessDenied)
def access_denied(error):
    return jsonify(error.to_dict()), error.status


@app.errorhandler(CredentialFormatError)
@app.errorhandler(BatchSizeError)
def bad_request(error):
    return jsonify({'error': str(error)}), 400


@app.errorhandler(NotFoundError)
def not_found(error):
    return jsonify({'error': str(error)}), 404


@app.errorhandler(psycopg2.Error)
def backing_store_error(error):
    if isinstance(error, pg_errors.UniqueViolation):
        logging.warning("Unique constraint violation: %s", error)
        return jsonify({'error': 'Record already exists', 'details': str(error).strip()}), 409
    logging.exception("Backing store error")
    return jsonify({'error': 'Backing store error', 'details': str(error).strip()}), 500


@app.errorhandler(CSRFError)
def csrf_error(error):
    """Handle CSRF token errors."""
    return jsonify({'error': 'Form token expired/invalid. Fetch a new CSRF token and retry.'}), 400


# ==================== PUBLIC ROUTES ====================


@app.route('/')
def home():
    return jsonify({'service': 'school-result-portal', 'status': 'ok'})


@app.route('/api/teacher-tokens/validate', methods=['POST'])
@csrf.exempt
def validate_teacher_token():
    """Redeem a teacher token and hand back the class roster plus a score-entry ticket."""
    try:
        payload = TokenValidationRequest(**json_body())
    except ValidationError:
        return jsonify({'error': 'Token is required'}), 400

    context = access_gates.redeem_teacher_token(payload.token)
    term = require_current_term()
    return jsonify(score_entry_payload(context, term))


def score_entry_payload(context, term):
    students = records.list_active_students_for_class(context.class_id)
    ticket = access_gates.issue_score_entry_ticket(context, term['id'], app.secret_key)
    response = TokenValidationResponse(
        token={
            'id': context.token_id,
            'class_id': context.class_id,
            'subject_id': context.subject_id,
            'class': context.class_info,
            'subject': context.subject_info,
            'current_term': term,
        },
        students=students,
        ticket=ticket,
    )
    return response.model_dump(by_alias=True)


@app.route('/api/score-entry')
def score_entry_context():
    """Resolve a score-entry ticket back into the score sheet context."""
    data = access_gates.load_score_entry_ticket(
        request.args.get('ticket', ''), app.secret_key, SCORE_ENTRY_TICKET_MAX_AGE
    )
    context = access_gates.redeem_teacher_token(
        data['token'], class_id=data.get('class_id'), subject_id=data.get('subject_id')
    )
    term = records.get_term(data.get('term_id'))
    if not term:
        raise NotFoundError('Term not found')
    return jsonify(score_entry_payload(context, term))


@app.route('/api/scores/submit', methods=['POST'])
@csrf.exempt
def submit_scores():
    try:
        payload = ScoreSubmissionRequest(**json_body())
    except ValidationError as exc:
        return jsonify({'error': validation_message(exc)}), 400

    token, term_id = payload.token, payload.term_id
    class_id, subject_id = payload.class_id, payload.subject_id
    if payload.ticket:
        data = access_gates.load_score_entry_ticket(payload.ticket, app.secret_key, SCORE_ENTRY_TICKET_MAX_AGE)
        token, term_id = data['token'], data.get('term_id')
        class_id, subject_id = data.get('class_id'), data.get('subject_id')

    result = access_gates.submit_scores(token, term_id, class_id, subject_id, payload.scores)
    return jsonify(SubmissionResponse(**result).model_dump())


@app.route('/api/results/validate-pin', methods=['POST'])
@csrf.exempt
def validate_result_pin():
    try:
        payload = PinLookupRequest(**json_body())
    except ValidationError:
        return jsonify({'error': 'Admission number and PIN are required'}), 400

    result = access_gates.view_result_with_pin(payload.admission_number, payload.pin)
    return jsonify(ResultLookupResponse(**result).model_dump(by_alias=True))


# ==================== ADMIN: AUTH ====================


@app.route('/admin/csrf-token')
def admin_csrf_token():
    return jsonify({'csrf_token': generate_csrf()})


@app.route('/admin/login', methods=['POST'])
def admin_login():
    form = AdminLoginForm()
    if not form.validate_on_submit():
        return jsonify({'error': 'Please enter username and password.'}), 400
    username = form.username.data.strip().lower()
    client_ip = get_client_ip()
    blocked, wait_minutes = records.is_login_blocked('admin_login', username, client_ip)
    if blocked:
        return jsonify({'error': f'Too many failed login attempts. Try again in about {wait_minutes} minute(s).'}), 429

    user = records.get_user(username)
    if not user or user.get('role') != 'admin' or not check_password_hash(user['password_hash'], form.password.data):
        records.register_failed_login('admin_login', username, client_ip)
        logging.info("Failed admin login for %s from %s", username, client_ip)
        return jsonify({'error': 'Invalid username or password.'}), 401

    records.clear_failed_login('admin_login', username, client_ip)
    records.update_login_timestamps(user['username'])
    session.clear()
    session['user_id'] = user['username']
    session['role'] = 'admin'
    logging.info("Admin login: %s", user['username'])
    return jsonify({'username': user['username'], 'role': 'admin'})


@app.route('/admin/logout', methods=['POST'])
def admin_logout():
    session.clear()
    return jsonify({'status': 'logged out'})


@app.route('/admin/stats')
@admin_required
def admin_stats():
    stats = records.dashboard_counts()
    stats['current_term'] = records.get_current_term()
    return jsonify(stats)


# ==================== ADMIN: SESSIONS & TERMS ====================


@app.route('/admin/sessions', methods=['GET', 'POST'])
@admin_required
def admin_sessions():
    if request.method == 'GET':
        return jsonify(records.list_sessions())
    form = SessionForm()
    if not form.validate_on_submit():
        return form_error(form)
    created = records.create_session(form.start_year.data)
    logging.info("Session %s created by %s", created['name'], session.get('user_id'))
    return jsonify(created), 201


@app.route('/admin/sessions/<session_id>/current', methods=['POST'])
@admin_required
def admin_set_current_session(session_id):
    if not records.set_current_session(session_id):
        raise NotFoundError('Session not found')
    return jsonify({'current_session_id': session_id})


@app.route('/admin/terms/<term_id>/current', methods=['POST'])
@admin_required
def admin_set_current_term(term_id):
    if not records.set_current_term(term_id):
        raise NotFoundError('Term not found')
    return jsonify({'current_term_id': term_id})


# ==================== ADMIN: CLASSES & SUBJECTS ====================


@app.route('/admin/classes', methods=['GET', 'POST'])
@admin_required
def admin_classes():
    if request.method == 'GET':
        return jsonify(records.list_classes(request.args.get('session_id') or None))
    form = ClassForm()
    if not form.validate_on_submit():
        return form_error(form)
    created = records.create_class(form.level.data, (form.section.data or '').strip(), form.session_id.data.strip())
    return jsonify(created), 201


@app.route('/admin/subjects', methods=['GET', 'POST'])
@admin_required
def admin_subjects():
    if request.method == 'GET':
        return jsonify(records.list_subjects())
    form = SubjectForm()
    if not form.validate_on_submit():
        return form_error(form)
    created = records.create_subject(form.name.data.strip(), (form.code.data or '').strip().upper())
    return jsonify(created), 201


# ==================== ADMIN: STUDENTS ====================


@app.route('/admin/students', methods=['GET', 'POST'])
@admin_required
def admin_students():
    if request.method == 'GET':
        active_only = request.args.get('active_only', '').strip().lower() in ('1', 'true', 'yes')
        return jsonify(records.list_students(
            class_id=request.args.get('class_id') or None,
            search=(request.args.get('q') or '').strip(),
            include_inactive=not active_only,
        ))
    student, errors = validate_student_row(json_body())
    if errors:
        return jsonify({'error': 'Validation failed', 'details': errors}), 400
    created = records.create_students([student], student_fee_category)
    return jsonify(created[0]), 201


@app.route('/admin/students/bulk', methods=['POST'])
@admin_required
def admin_students_bulk():
    """All-or-nothing student import."""
    students = json_body().get('students')
    if not isinstance(students, list):
        return jsonify({'error': 'Invalid request: students must be an array'}), 400
    if not students:
        return jsonify({'error': 'No students provided'}), 400
    if len(students) > MAX_STUDENT_BATCH:
        return jsonify({'error': f'Batch size exceeds limit of {MAX_STUDENT_BATCH} students'}), 400

    valid = []
    all_errors = []
    for index, row in enumerate(students):
        sanitized, errors = validate_student_row(row, index)
        if errors:
            all_errors.extend(errors)
        else:
            valid.append(sanitized)
    if all_errors:
        logging.info("Student import rejected with %d errors", len(all_errors))
        return jsonify({
            'success': False,
            'error': 'Validation failed',
            'details': all_errors,
            'valid_count': len(valid),
            'error_count': len(all_errors),
        }), 400

    seen = set()
    duplicates = []
    for student in valid:
        if student['admission_number'] in seen and student['admission_number'] not in duplicates:
            duplicates.append(student['admission_number'])
        seen.add(student['admission_number'])
    if duplicates:
        return jsonify({'error': 'Duplicate admission numbers in batch', 'details': duplicates}), 400

    inserted = records.create_students(valid, student_fee_category)
    logging.info("Imported %d students", len(inserted))
    return jsonify({'success': True, 'inserted': len(inserted), 'students': inserted})


@app.route('/admin/students/<student_id>', methods=['GET', 'PATCH'])
@admin_required
def admin_student_detail(student_id):
    student = records.get_student(student_id)
    if not student:
        raise NotFoundError('Student not found')
    if request.method == 'GET':
        student['status'] = student_status(student)
        student['fees'] = student_fee_statement(student)
        return jsonify(student)

    fields, errors = validate_student_updates(json_body())
    if errors:
        return jsonify({'error': 'Validation failed', 'details': errors}), 400
    return jsonify(records.update_student(student_id, fields))


@app.route('/admin/students/<student_id>/status', methods=['POST'])
@admin_required
def admin_student_status(student_id):
    status = (json_body().get('status') or '').strip().capitalize()
    if status not in ('Active', 'Inactive'):
        return jsonify({'error': 'Status must be Active or Inactive'}), 400
    if not records.set_student_active(student_id, status == 'Active'):
        raise NotFoundError('Student not found')
    return jsonify({'id': student_id, 'status': status})


# ==================== ADMIN: TEACHER TOKENS ====================


@app.route('/admin/tokens', methods=['GET', 'POST'])
@admin_required
def admin_tokens():
    if request.method == 'GET':
        now = datetime.now()
        return jsonify([token_payload(token, now) for token in records.list_teacher_tokens()])
    form = TokenRequestForm()
    if not form.validate_on_submit():
        return form_error(form)
    if not records.get_class(form.class_id.data) or not records.get_subject(form.subject_id.data):
        raise NotFoundError('Class or subject not found')
    expires_at = None
    if form.expires_in_days.data:
        expires_at = datetime.now() + timedelta(days=form.expires_in_days.data)
    codes = [access_gates.generate_token_code() for _ in range(form.count.data or 1)]
    created = records.create_teacher_tokens(codes, form.class_id.data, form.subject_id.data, expires_at)
    logging.info("%d teacher token(s) generated by %s", len(created), session.get('user_id'))
    return jsonify(created), 201


@app.route('/admin/tokens/<token_id>', methods=['DELETE'])
@admin_required
def admin_delete_token(token_id):
    if not records.delete_teacher_token(token_id):
        raise NotFoundError('Token not found')
    return jsonify({'deleted': token_id})


# ==================== ADMIN: RESULT PINS ====================


@app.route('/admin/pins', methods=['GET', 'POST'])
@admin_required
def admin_pins():
    if request.method == 'GET':
        return jsonify(records.list_result_pins(request.args.get('term_id') or None))
    form = PinRequestForm()
    if not form.validate_on_submit():
        return form_error(form)
    term = records.get_term(form.term_id.data) if form.term_id.data else require_current_term()
    if not term:
        raise NotFoundError('Term not found')

    if form.student_id.data:
        if not records.get_student(form.student_id.data):
            raise NotFoundError('Student not found')
        student_ids = [form.student_id.data]
    elif form.class_id.data:
        student_ids = [s['id'] for s in records.list_active_students_for_class(form.class_id.data)]
    else:
        return jsonify({'error': 'Provide student_id or class_id'}), 400
    if not student_ids:
        return jsonify({'error': 'No active students in class'}), 400

    expires_at = None
    if form.expires_in_days.data:
        expires_at = datetime.now() + timedelta(days=form.expires_in_days.data)
    pins = {student_id: access_gates.generate_pin() for student_id in student_ids}
    created = records.create_result_pins(
        term['id'], pins, form.max_uses.data or access_gates.DEFAULT_PIN_MAX_USES, expires_at
    )
    logging.info("%d result PIN(s) generated for term %s", len(created), term['id'])
    return jsonify(created), 201


# ==================== ADMIN: FEES ====================


@app.route('/admin/fee-configs', methods=['GET', 'PUT'])
@admin_required
def admin_fee_configs():
    if request.method == 'GET':
        return jsonify(records.list_fee_configs())
    form = FeeConfigForm()
    if not form.validate_on_submit():
        return form_error(form)
    return jsonify(records.upsert_fee_config(form.level_name.data, form.standard_amount.data))


def _student_or_404(student_id):
    student = records.get_student(student_id)
    if not student:
        raise NotFoundError('Student not found')
    return student


@app.route('/admin/students/<student_id>/fees')
@admin_required
def admin_student_fees(student_id):
    return jsonify(student_fee_statement(_student_or_404(student_id)))


@app.route('/admin/students/<student_id>/payments', methods=['POST'])
@admin_required
def admin_record_payment(student_id):
    student = _student_or_404(student_id)
    form = AmountForm()
    if not form.validate_on_submit() or not form.amount.data:
        return jsonify({'error': 'Payment amount must be greater than zero'}), 400
    records.record_payment(student_id, form.amount.data)
    logging.info("Payment of %s recorded for student %s", form.amount.data, student_id)
    return jsonify(student_fee_statement(student))


@app.route('/admin/students/<student_id>/scholarship', methods=['PUT'])
@admin_required
def admin_set_scholarship(student_id):
    return _set_fee_field(student_id, 'scholarship_amount')


@app.route('/admin/students/<student_id>/previous-debt', methods=['PUT'])
@admin_required
def admin_set_previous_debt(student_id):
    return _set_fee_field(student_id, 'previous_debt')


def _set_fee_field(student_id, field):
    student = _student_or_404(student_id)
    form = AmountForm()
    if not form.validate_on_submit():
        return form_error(form)
    records.set_student_fee_field(student_id, field, form.amount.data)
    return jsonify(student_fee_statement(student))


if __name__ == '__main__':
    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', '5000')), debug=ALLOW_INSECURE_DEFAULTS)
