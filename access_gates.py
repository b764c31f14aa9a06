"""
Credential gates guarding score entry and result viewing.

Teacher tokens are single use: redeeming only checks them, and the token is
consumed in the same transaction that stores the submitted scores. Result
PINs allow a bounded number of views; every successful lookup spends one use.
Neither gate keeps state between calls, every decision re-reads the store.
"""

import logging
import re
import secrets
from collections import namedtuple
from datetime import datetime

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

import records
from grading import summarize_scores, validate_score_batch

TOKEN_CODE_PATTERN = re.compile(r'^[A-Z0-9]{8,12}$')
ADMISSION_NUMBER_PATTERN = re.compile(r'^[A-Z0-9/\-]+$')
PIN_PATTERN = re.compile(r'^[A-Z0-9]+$', re.IGNORECASE)
ADMISSION_NUMBER_MAX_LENGTH = 50
PIN_MAX_LENGTH = 20

TOKEN_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
TOKEN_LENGTH = 10
PIN_LENGTH = 10
DEFAULT_PIN_MAX_USES = 3
MAX_ERROR_SAMPLES = 10
SCORE_ENTRY_TICKET_SALT = 'score-entry'

TOKEN_INVALID = 'invalid'
TOKEN_USED = 'already used'
TOKEN_EXPIRED = 'expired'
PIN_INVALID = 'invalid credentials'
PIN_EXPIRED = 'expired'
PIN_EXHAUSTED = 'usage exceeded'
TICKET_INVALID = 'invalid ticket'
TICKET_EXPIRED = 'ticket expired'

TOKEN_MESSAGES = {
    TOKEN_INVALID: 'Invalid or mismatched token',
    TOKEN_USED: 'Token has already been used',
    TOKEN_EXPIRED: 'Token has expired',
}
PIN_MESSAGES = {
    PIN_INVALID: 'Invalid admission number or PIN',
    PIN_EXPIRED: 'PIN has expired. Please contact admin for a new PIN.',
    PIN_EXHAUSTED: 'PIN usage limit reached. Please contact admin.',
}

TokenContext = namedtuple(
    'TokenContext',
    ['token_id', 'code', 'class_id', 'subject_id', 'class_info', 'subject_info', 'expires_at'],
)
ResultContext = namedtuple('ResultContext', ['pin_id', 'student_id', 'term_id', 'usage'])


class AccessDenied(Exception):
    """A presented credential does not grant the requested action."""

    def __init__(self, reason, message=None, status=403, details=None):
        super().__init__(message or reason)
        self.reason = reason
        self.message = message or reason
        self.status = status
        self.details = details or {}

    def to_dict(self):
        payload = {'error': self.message, 'reason': self.reason, 'valid': False}
        payload.update(self.details)
        return payload


class CredentialFormatError(ValueError):
    """Malformed token, PIN or admission number; reported before any lookup."""


class NotFoundError(LookupError):
    """A record the whole operation depends on does not exist."""


# ==================== ISSUANCE ====================

def generate_token_code(length=TOKEN_LENGTH):
    """Random upper-case alphanumeric teacher token."""
    return ''.join(secrets.choice(TOKEN_ALPHABET) for _ in range(max(8, min(length, 12))))


def generate_pin(length=PIN_LENGTH):
    """Random numeric result PIN."""
    return ''.join(secrets.choice('0123456789') for _ in range(max(4, min(length, PIN_MAX_LENGTH))))


def token_status(token, now=None):
    """Display status for admin listings: active, used or expired."""
    now = now or datetime.now()
    if token.get('is_used'):
        return 'used'
    if token.get('expires_at') and token['expires_at'] < now:
        return 'expired'
    return 'active'


# ==================== TEACHER TOKEN GATE ====================

def normalize_token_code(code):
    if not code or not isinstance(code, str):
        raise CredentialFormatError('Token is required')
    normalized = code.strip().upper()
    if not TOKEN_CODE_PATTERN.match(normalized):
        raise CredentialFormatError('Invalid token format')
    return normalized


def token_denial_reason(token, now):
    """Return the denial reason for a token row, or None if it may be redeemed."""
    if not token:
        return TOKEN_INVALID
    if token.get('is_used'):
        return TOKEN_USED
    if token.get('expires_at') and token['expires_at'] < now:
        return TOKEN_EXPIRED
    return None


def _deny_token(reason):
    logging.info("Teacher token denied: %s", reason)
    raise AccessDenied(reason, TOKEN_MESSAGES[reason], status=403)


def redeem_teacher_token(code, class_id=None, subject_id=None, now=None):
    """Check a teacher token without consuming it."""
    now = now or datetime.now()
    code = normalize_token_code(code)
    logging.info("Validating token: %s...", code[:4])
    token = records.find_teacher_token(code, class_id=class_id, subject_id=subject_id)
    reason = token_denial_reason(token, now)
    if reason:
        _deny_token(reason)
    return TokenContext(
        token_id=token['id'],
        code=token['token'],
        class_id=token['class_id'],
        subject_id=token['subject_id'],
        class_info={
            'id': token['class_id'],
            'level': token.get('class_level'),
            'section': token.get('class_section'),
            'session_id': token.get('class_session_id'),
        },
        subject_info={
            'id': token['subject_id'],
            'name': token.get('subject_name'),
            'code': token.get('subject_code'),
        },
        expires_at=token.get('expires_at'),
    )


def submit_scores(code, term_id, class_id, subject_id, scores, now=None):
    """
    Store a teacher's score sheet guarded by a single-use token.

    Valid rows are saved even when other rows fail validation. The token is
    consumed only if at least one row is saved; a failed write leaves it usable.
    """
    now = now or datetime.now()
    batch = validate_score_batch(scores)
    context = redeem_teacher_token(code, class_id=class_id, subject_id=subject_id, now=now)
    if not records.get_term(term_id):
        raise NotFoundError('Term not found')

    saved = 0
    if batch.valid_rows:
        saved = records.save_scores_and_claim_token(
            context.token_id, term_id, class_id, subject_id, batch.valid_rows, now=now
        )
        if saved is None:
            # Lost the claim to a concurrent submission or the token expired meanwhile.
            current = records.find_teacher_token(context.code, class_id=class_id, subject_id=subject_id)
            _deny_token(token_denial_reason(current, now) or TOKEN_USED)
        logging.info(
            "Scores saved with token %s...: %d saved, %d rejected",
            context.code[:4], saved, batch.rejected_count,
        )

    return {
        'saved_count': saved,
        'rejected_count': batch.rejected_count,
        'error_count': len(batch.errors),
        'errors': batch.errors[:MAX_ERROR_SAMPLES],
        'message': f'Scores processed. {saved} saved, {batch.rejected_count} failed validation.',
    }


# ==================== SCORE ENTRY TICKET ====================

def _ticket_serializer(secret_key):
    return URLSafeTimedSerializer(secret_key, salt=SCORE_ENTRY_TICKET_SALT)


def issue_score_entry_ticket(context, term_id, secret_key):
    """Signed hand-off from token redemption to the score sheet."""
    return _ticket_serializer(secret_key).dumps({
        'token': context.code,
        'class_id': context.class_id,
        'subject_id': context.subject_id,
        'term_id': term_id,
    })


def load_score_entry_ticket(ticket, secret_key, max_age):
    try:
        data = _ticket_serializer(secret_key).loads(ticket or '', max_age=max_age)
    except SignatureExpired:
        raise AccessDenied(TICKET_EXPIRED, 'Score entry session has expired. Enter your token again.', status=403)
    except BadSignature:
        raise AccessDenied(TICKET_INVALID, 'Invalid score entry session.', status=403)
    if not isinstance(data, dict) or not data.get('token'):
        raise AccessDenied(TICKET_INVALID, 'Invalid score entry session.', status=403)
    return data


# ==================== RESULT PIN GATE ====================

def normalize_admission_number(value):
    text = (value or '').strip().upper()[:ADMISSION_NUMBER_MAX_LENGTH] if isinstance(value, str) else ''
    if not text:
        raise CredentialFormatError('Admission number and PIN are required')
    if not ADMISSION_NUMBER_PATTERN.match(text):
        raise CredentialFormatError('Invalid admission number format')
    return text


def normalize_pin(value):
    text = (value or '').strip()[:PIN_MAX_LENGTH] if isinstance(value, str) else ''
    if not text:
        raise CredentialFormatError('Admission number and PIN are required')
    if not PIN_PATTERN.match(text):
        raise CredentialFormatError('Invalid PIN format')
    return text


def pin_denial_reason(pin, now):
    if not pin:
        return PIN_INVALID
    if pin.get('expires_at') and pin['expires_at'] < now:
        return PIN_EXPIRED
    if int(pin.get('usage_count') or 0) >= int(pin.get('max_uses') or 0):
        return PIN_EXHAUSTED
    return None


def usage_envelope(usage_count, max_uses):
    return {
        'count': int(usage_count),
        'max': int(max_uses),
        'remaining': max(0, int(max_uses) - int(usage_count)),
    }


def _deny_pin(reason, pin):
    logging.info("Result PIN denied: %s", reason)
    if reason == PIN_INVALID:
        raise AccessDenied(reason, PIN_MESSAGES[reason], status=401)
    details = {'expired': True} if reason == PIN_EXPIRED else {}
    if reason == PIN_EXHAUSTED:
        details = {
            'usage_exceeded': True,
            'usage_count': int(pin.get('usage_count') or 0),
            'max_uses': int(pin.get('max_uses') or 0),
        }
    raise AccessDenied(reason, PIN_MESSAGES[reason], status=403, details=details)


def redeem_result_pin(admission_number, pin, term_id, now=None):
    """Spend one use of a result PIN and return the usage envelope."""
    now = now or datetime.now()
    admission_number = normalize_admission_number(admission_number)
    pin = normalize_pin(pin)
    logging.info("Validating PIN for admission: %s...", admission_number[:8])

    record = records.find_result_pin(admission_number, pin, term_id)
    reason = pin_denial_reason(record, now)
    if reason:
        _deny_pin(reason, record)

    updated = records.consume_result_pin_use(record['id'], now=now)
    if updated is None:
        # Another lookup spent the last use (or the PIN expired) since the read.
        current = records.get_result_pin(record['id'])
        _deny_pin(pin_denial_reason(current, now) or PIN_EXHAUSTED, current or record)

    return ResultContext(
        pin_id=updated['id'],
        student_id=updated['student_id'],
        term_id=updated['term_id'],
        usage=usage_envelope(updated['usage_count'], updated['max_uses']),
    )


def view_result_with_pin(admission_number, pin, now=None):
    """Resolve the current term, redeem the PIN and load the student's result."""
    # Validate input format before touching the store.
    admission_number = normalize_admission_number(admission_number)
    pin = normalize_pin(pin)

    term = records.get_current_term()
    if not term:
        raise NotFoundError('No active term found. Please contact admin.')

    context = redeem_result_pin(admission_number, pin, term['id'], now=now)
    student = records.get_student(context.student_id) or {}
    scores = records.list_student_scores(context.student_id, term['id'])
    summary = summarize_scores(scores)
    logging.info(
        "PIN validated for %s. Usage: %d/%d",
        student.get('admission_number', ''), context.usage['count'], context.usage['max'],
    )
    return {
        'valid': True,
        'student': {
            'id': context.student_id,
            'admission_number': student.get('admission_number'),
            'first_name': student.get('first_name'),
            'last_name': student.get('last_name'),
            'middle_name': student.get('middle_name'),
            'class': {'level': student.get('class_level'), 'section': student.get('class_section')},
        },
        'term': {
            'id': term['id'],
            'type': term['term_type'],
            'session': {'name': term.get('session_name')},
        },
        'scores': scores,
        'summary': summary,
        'usage': context.usage,
    }
