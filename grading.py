"""
Score arithmetic and validation for teacher score submissions.

A subject score is made of two continuous assessments (CA1, CA2, each out of
20) and an exam (out of 60). The total is their sum and the letter grade is
derived from the total.
"""

import math
import re
from collections import namedtuple

CA_MAX = 20
EXAM_MAX = 60
COMMENT_MAX_LENGTH = 500
MAX_BATCH_SIZE = 100

# (minimum total, grade), highest band first.
GRADE_BANDS = (
    (70, 'A'),
    (60, 'B'),
    (50, 'C'),
    (45, 'D'),
    (40, 'E'),
)
FAIL_GRADE = 'F'

UUID_PATTERN = re.compile(r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$', re.IGNORECASE)
SLUG_ID_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$')

ScoreValidation = namedtuple('ScoreValidation', ['ok', 'sanitized', 'errors'])
BatchValidation = namedtuple('BatchValidation', ['valid_rows', 'errors', 'rejected_count'])


class BatchSizeError(ValueError):
    """Raised for empty batches or batches above MAX_BATCH_SIZE."""


def compute_total(ca1, ca2, exam):
    """Sum the three components; missing components count as zero."""
    return (ca1 or 0) + (ca2 or 0) + (exam or 0)


def compute_grade(total):
    """Get letter grade from a subject total."""
    total = float(total or 0)
    for minimum, grade in GRADE_BANDS:
        if total >= minimum:
            return grade
    return FAIL_GRADE


def is_valid_student_identifier(value):
    text = (value or '').strip() if isinstance(value, str) else ''
    if not text:
        return False
    return bool(UUID_PATTERN.match(text) or SLUG_ID_PATTERN.match(text))


def _parse_mark(value, maximum, label):
    """Return (number_or_None, error_or_None)."""
    if value is None:
        return None, None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None, None
        try:
            value = float(value)
        except ValueError:
            return None, f'{label} must be a number'
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None, f'{label} must be a number'
    if not math.isfinite(value):
        return None, f'{label} must be a number'
    if value < 0:
        return None, f'{label} cannot be negative'
    if value > maximum:
        return None, f'{label} cannot exceed {maximum}'
    return value, None


def normalize_comment(value):
    text = (value or '').strip() if isinstance(value, str) else ''
    return text[:COMMENT_MAX_LENGTH] or None


def validate_score(score, row_number=None):
    """
    Validate one submitted score row.

    Every rule is checked so that the caller sees all problems with a row at
    once. On success `sanitized` holds the row ready for storage, including
    the derived total and grade.
    """
    prefix = f'Row {row_number}: ' if row_number is not None else ''
    if not isinstance(score, dict):
        return ScoreValidation(False, None, [f'{prefix}Invalid score data format'])

    errors = []
    student_id = score.get('student_id')
    if not student_id:
        errors.append(f'{prefix}Missing student_id')
    elif not is_valid_student_identifier(student_id):
        errors.append(f'{prefix}Invalid student_id format')

    marks = {}
    for field, maximum, label in (('ca1', CA_MAX, 'CA1'), ('ca2', CA_MAX, 'CA2'), ('exam', EXAM_MAX, 'Exam')):
        marks[field], error = _parse_mark(score.get(field), maximum, label)
        if error:
            errors.append(f'{prefix}{error}')

    if errors:
        return ScoreValidation(False, None, errors)

    total = compute_total(marks['ca1'], marks['ca2'], marks['exam'])
    sanitized = {
        'student_id': student_id.strip(),
        'ca1': marks['ca1'],
        'ca2': marks['ca2'],
        'exam': marks['exam'],
        'total': total,
        'grade': compute_grade(total),
        'teacher_comment': normalize_comment(score.get('teacher_comment')),
    }
    return ScoreValidation(True, sanitized, [])


def validate_score_batch(scores):
    """Validate a whole submission; valid rows survive even if others fail."""
    if not isinstance(scores, (list, tuple)) or not scores:
        raise BatchSizeError('No scores provided')
    if len(scores) > MAX_BATCH_SIZE:
        raise BatchSizeError(f'Too many scores. Maximum {MAX_BATCH_SIZE} students per submission.')

    valid_rows = []
    errors = []
    rejected = 0
    for index, score in enumerate(scores, start=1):
        result = validate_score(score, row_number=index)
        if result.ok:
            valid_rows.append(result.sanitized)
        else:
            rejected += 1
            errors.extend(result.errors)
    return BatchValidation(valid_rows, errors, rejected)


def summarize_scores(scores):
    """Overall totals for a result sheet: total marks, average and overall grade."""
    subject_totals = []
    for score in scores or []:
        total = score.get('total')
        if total is None:
            total = compute_total(score.get('ca1'), score.get('ca2'), score.get('exam'))
        subject_totals.append(float(total))
        if not score.get('grade'):
            score['grade'] = compute_grade(total)
    total_marks = round(sum(subject_totals), 1)
    average = round(total_marks / len(subject_totals), 1) if subject_totals else 0.0
    return {
        'subject_count': len(subject_totals),
        'total_marks': total_marks,
        'average': average,
        'overall_grade': compute_grade(average),
    }
