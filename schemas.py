from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

# ---------------- REQUESTS ----------------


class TokenValidationRequest(BaseModel):
    token: str


class ScoreSubmissionRequest(BaseModel):
    """Either a signed score-entry ticket or the explicit token/term/class/subject fields."""
    token: Optional[str] = None
    ticket: Optional[str] = None
    term_id: Optional[str] = None
    class_id: Optional[str] = None
    subject_id: Optional[str] = None
    # Rows stay loosely typed: per-row problems are collected, not raised.
    scores: List[Any]

    @model_validator(mode='after')
    def check_credentials(self):
        if self.ticket:
            return self
        if not all([self.token, self.term_id, self.class_id, self.subject_id]):
            raise ValueError('Missing required fields: token, scores, term_id, class_id, subject_id')
        return self


class PinLookupRequest(BaseModel):
    admission_number: str
    pin: str


# ---------------- RESPONSES ----------------


class ClassInfo(BaseModel):
    id: Optional[str] = None
    level: Optional[str] = None
    section: Optional[str] = None
    session_id: Optional[str] = None


class SubjectInfo(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    code: Optional[str] = None


class TermInfo(BaseModel):
    id: str
    term_type: str
    session_id: Optional[str] = None
    session_name: Optional[str] = None


class StudentBrief(BaseModel):
    id: str
    admission_number: str
    first_name: str
    last_name: str
    middle_name: Optional[str] = None


class TokenInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    class_id: str
    subject_id: str
    class_: ClassInfo = Field(alias='class')
    subject: SubjectInfo
    current_term: TermInfo


class TokenValidationResponse(BaseModel):
    valid: bool = True
    token: TokenInfo
    students: List[StudentBrief]
    ticket: str


class SubmissionResponse(BaseModel):
    saved_count: int
    rejected_count: int
    error_count: int
    errors: List[str]
    message: str


class UsageEnvelope(BaseModel):
    count: int
    max: int
    remaining: int


class ScoreLine(BaseModel):
    subject_id: str
    subject_name: str
    subject_code: Optional[str] = None
    ca1: Optional[float] = None
    ca2: Optional[float] = None
    exam: Optional[float] = None
    total: Optional[float] = None
    grade: Optional[str] = None
    teacher_comment: Optional[str] = None


class ResultSummary(BaseModel):
    subject_count: int
    total_marks: float
    average: float
    overall_grade: str


class ResultStudent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    admission_number: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    middle_name: Optional[str] = None
    class_: ClassInfo = Field(default_factory=ClassInfo, alias='class')


class ResultTerm(BaseModel):
    id: str
    type: str
    session: dict


class ResultLookupResponse(BaseModel):
    valid: bool = True
    student: ResultStudent
    term: ResultTerm
    scores: List[ScoreLine]
    summary: ResultSummary
    usage: UsageEnvelope


def validation_message(exc: ValidationError) -> str:
    """First human-readable message from a pydantic ValidationError."""
    errors = exc.errors()
    if not errors:
        return 'Invalid request'
    first = errors[0]
    message = str(first.get('msg') or 'Invalid request')
    if message.startswith('Value error, '):
        return message[len('Value error, '):]
    location = '.'.join(str(part) for part in first.get('loc') or ())
    return f'{location}: {message}' if location else message
