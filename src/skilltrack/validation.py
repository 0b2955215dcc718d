"""Field-level validation for submitted records: evidence, OTJ logs, tasks,
progress reviews, learning goals and ILR manual entries.

Each ``validate_*`` function takes the submitted mapping and returns
``(cleaned, errors)``.  ``errors`` maps field names to a message; when it is
empty, ``cleaned`` holds typed values ready to assign to a model.
"""

import math
import re
from datetime import date
from urllib.parse import urlparse

from skilltrack.models import EvidenceItem, LearningGoal, OtjLogEntry, ProgressReview, Task

_VALID_ACTIVITY_TYPES = {t for t, _ in OtjLogEntry.ACTIVITY_TYPES}
_VALID_CATEGORIES = {c for c, _ in OtjLogEntry.CATEGORIES}
_VALID_EVIDENCE_TYPES = {t for t, _ in EvidenceItem.EVIDENCE_TYPES}
_SUBMITTABLE_STATUSES = {"draft", "submitted"}
_VALID_TASK_STATUSES = {s for s, _ in Task.STATUSES}
_VALID_GOAL_STATUSES = {s for s, _ in LearningGoal.STATUSES}
# "rescheduled" is only reached through the reschedule action
_EDITABLE_REVIEW_STATUSES = {s for s, _ in ProgressReview.STATUSES} - {"rescheduled"}

MIN_DURATION_MINUTES = 30
MAX_DURATION_MINUTES = 24 * 60

_ULN_RE = re.compile(r"^\d{10}$")
_UKPRN_RE = re.compile(r"^\d{8}$")
_ACADEMIC_YEAR_RE = re.compile(r"^(\d{4})/(\d{2})$")


def validate_url(url: str) -> bool:
    """Return True if *url* is a well-formed http or https URL."""
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _text(data, key) -> str:
    value = data.get(key)
    return value.strip() if isinstance(value, str) else ""


def parse_date(value):
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        return None


def as_id(value):
    """Return *value* if it is a JSON integer id; booleans and strings are not ids."""
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _parse_int(value):
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _check_length(errors, field, value, label, minimum=None, maximum=None):
    if minimum is not None and len(value) < minimum:
        errors[field] = f"{label} must be at least {minimum} characters"
    elif maximum is not None and len(value) > maximum:
        errors[field] = f"{label} must be less than {maximum} characters"


def _duration_minutes(data):
    """Read the duration from ``durationMinutes`` or, failing that, ``hours``."""
    if data.get("durationMinutes") not in (None, ""):
        minutes = _parse_int(data.get("durationMinutes"))
        return minutes
    raw = data.get("hours")
    if raw in (None, "") or isinstance(raw, bool):
        return None
    try:
        hours = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(hours):
        return None
    return round(hours * 60)


def validate_otj_entry(data, partial=False, today=None):
    """Validate an OTJ log entry submission.

    With *partial* set (PATCH), only the fields present in *data* are
    checked and returned.
    """
    today = today or date.today()
    errors: dict[str, str] = {}
    cleaned: dict = {}

    def present(*keys):
        return not partial or any(k in data for k in keys)

    if present("date"):
        entry_date = parse_date(data.get("date"))
        if entry_date is None:
            errors["date"] = "Date is required (YYYY-MM-DD)"
        elif entry_date > today:
            errors["date"] = "Date cannot be in the future"
        else:
            cleaned["date"] = entry_date

    if present("durationMinutes", "hours"):
        minutes = _duration_minutes(data)
        if minutes is None or not MIN_DURATION_MINUTES <= minutes <= MAX_DURATION_MINUTES:
            errors["durationMinutes"] = "Hours must be between 0.5 and 24"
        else:
            cleaned["duration_minutes"] = minutes

    if present("activityType"):
        activity_type = _text(data, "activityType")
        if activity_type not in _VALID_ACTIVITY_TYPES:
            errors["activityType"] = f"Activity type '{activity_type}' is not recognised"
        else:
            cleaned["activity_type"] = activity_type

    if present("category"):
        category = _text(data, "category") or ("otj" if not partial else "")
        if category not in _VALID_CATEGORIES:
            errors["category"] = "Category must be 'otj' or 'enrichment'"
        else:
            cleaned["category"] = category

    if present("description"):
        description = _text(data, "description")
        _check_length(errors, "description", description, "Description", minimum=10)
        cleaned["description"] = description

    if present("reflection"):
        reflection = _text(data, "reflection")
        _check_length(errors, "reflection", reflection, "Reflection", maximum=2000)
        cleaned["reflection"] = reflection

    if present("ksbId"):
        raw = data.get("ksbId")
        if raw in (None, ""):
            cleaned["ksb_id"] = None
        else:
            ksb_id = _parse_int(raw)
            if ksb_id is None:
                errors["ksbId"] = "KSB id must be a number"
            else:
                cleaned["ksb_id"] = ksb_id

    if not partial:
        status = _text(data, "status") or "draft"
        if status not in _SUBMITTABLE_STATUSES:
            errors["status"] = "Status must be 'draft' or 'submitted'"
        else:
            cleaned["status"] = status

    return cleaned, errors


def validate_evidence(data, partial=False):
    """Validate an evidence submission; at least one KSB must be selected."""
    errors: dict[str, str] = {}
    cleaned: dict = {}

    def present(key):
        return not partial or key in data

    if present("title"):
        title = _text(data, "title")
        _check_length(errors, "title", title, "Title", minimum=5, maximum=100)
        cleaned["title"] = title

    if present("description"):
        description = _text(data, "description")
        _check_length(errors, "description", description, "Description", minimum=10, maximum=1000)
        cleaned["description"] = description

    if present("evidenceType"):
        evidence_type = _text(data, "evidenceType")
        if evidence_type not in _VALID_EVIDENCE_TYPES:
            errors["evidenceType"] = f"Evidence type '{evidence_type}' is not recognised"
        else:
            cleaned["evidence_type"] = evidence_type

    if present("reflection"):
        reflection = _text(data, "reflection")
        _check_length(errors, "reflection", reflection, "Reflection", minimum=10, maximum=1000)
        cleaned["reflection"] = reflection

    if present("externalLink"):
        link = _text(data, "externalLink")
        if link and not validate_url(link):
            errors["externalLink"] = "Please enter a valid URL"
        cleaned["external_link"] = link or None

    if present("ksbIds"):
        raw_ids = data.get("ksbIds")
        ids = [_parse_int(i) for i in raw_ids] if isinstance(raw_ids, list) else []
        if not ids:
            errors["ksbIds"] = "Select at least one KSB"
        elif any(i is None for i in ids):
            errors["ksbIds"] = "KSB ids must be numbers"
        else:
            cleaned["ksb_ids"] = list(dict.fromkeys(ids))

    if not partial:
        status = _text(data, "status") or "draft"
        if status not in _SUBMITTABLE_STATUSES:
            errors["status"] = "Status must be 'draft' or 'submitted'"
        else:
            cleaned["status"] = status

    return cleaned, errors


def parse_academic_year(value):
    """Return a normalised ``YYYY/YY`` academic year, or None if malformed."""
    match = _ACADEMIC_YEAR_RE.match((value or "").strip())
    if not match:
        return None
    start, end = int(match.group(1)), int(match.group(2))
    if (start + 1) % 100 != end:
        return None
    return match.group(0)


def parse_return_period(value):
    """Accept ``7``, ``"7"``, ``"07"`` or ``"R07"``; return 1-14 or None."""
    if isinstance(value, str):
        value = value.strip().upper().removeprefix("R")
    period = _parse_int(value)
    if period is None or not 1 <= period <= 14:
        return None
    return period


def validate_ilr_learner(learner, today=None):
    """Validate one ILR learner record.

    Returns ``(cleaned, errors, warnings)``.  Errors make the record
    unusable; warnings flag optional data that is missing.
    """
    today = today or date.today()
    errors: dict[str, str] = {}
    warnings: dict[str, str] = {}
    cleaned: dict = {}

    for key, field in (("firstName", "first_name"), ("lastName", "last_name")):
        value = _text(learner, key)
        if not value:
            errors[key] = "Required"
        cleaned[field] = value

    dob = parse_date(learner.get("dateOfBirth"))
    if dob is None:
        errors["dateOfBirth"] = "Date of birth must be a valid date (YYYY-MM-DD)"
    elif dob >= today:
        errors["dateOfBirth"] = "Date of birth must be in the past"
    cleaned["date_of_birth"] = dob

    uln = _text(learner, "uln")
    if not _ULN_RE.match(uln):
        errors["uln"] = "ULN must be exactly 10 digits"
    cleaned["uln"] = uln

    ukprn = _text(learner, "ukprn")
    if not _UKPRN_RE.match(ukprn):
        errors["ukprn"] = "UKPRN must be exactly 8 digits"
    cleaned["ukprn"] = ukprn

    for key, field in (
        ("postcode", "postcode"),
        ("aimReference", "aim_reference"),
        ("fundingModel", "funding_model"),
    ):
        value = _text(learner, key)
        if not value:
            errors[key] = "Required"
        cleaned[field] = value.upper() if key == "postcode" else value

    for key, field in (("startDate", "start_date"), ("plannedEndDate", "planned_end_date")):
        raw = learner.get(key)
        parsed = parse_date(raw)
        if raw and parsed is None:
            errors[key] = "Must be a valid date (YYYY-MM-DD)"
        elif parsed is None:
            warnings[key] = "Missing"
        cleaned[field] = parsed

    if cleaned.get("start_date") and cleaned.get("planned_end_date"):
        if cleaned["planned_end_date"] < cleaned["start_date"]:
            errors["plannedEndDate"] = "Planned end date is before the start date"

    cleaned["employer_name"] = _text(learner, "employerName")
    cleaned["learn_ref_number"] = _text(learner, "learnRefNumber") or None

    return cleaned, errors, warnings


def validate_task(data, partial=False):
    """Validate a task set for a learner; ``assignedToId`` is fixed once created."""
    errors: dict[str, str] = {}
    cleaned: dict = {}

    def present(key):
        return not partial or key in data

    if not partial:
        learner_id = as_id(data.get("assignedToId"))
        if learner_id is None:
            errors["assignedToId"] = "Must be a user id"
        else:
            cleaned["assigned_to_id"] = learner_id

    if present("title"):
        title = _text(data, "title")
        _check_length(errors, "title", title, "Title", minimum=3, maximum=255)
        cleaned["title"] = title

    if present("description"):
        cleaned["description"] = _text(data, "description")

    if present("dueDate"):
        due = parse_date(data.get("dueDate"))
        if due is None:
            errors["dueDate"] = "Due date is required (YYYY-MM-DD)"
        else:
            cleaned["due_date"] = due

    if present("ksbId"):
        raw = data.get("ksbId")
        if raw is None:
            cleaned["ksb_id"] = None
        elif as_id(raw) is None:
            errors["ksbId"] = "KSB id must be a number"
        else:
            cleaned["ksb_id"] = raw

    if present("status"):
        status = _text(data, "status") or ("pending" if not partial else "")
        if status not in _VALID_TASK_STATUSES:
            errors["status"] = "Status must be one of: " + ", ".join(s for s, _ in Task.STATUSES)
        else:
            cleaned["status"] = status

    return cleaned, errors


def validate_review(data, partial=False):
    """Validate a progress review.

    ``learnerId`` and ``scheduledDate`` are only accepted on create; a review
    is moved to a new date through the reschedule action.
    """
    errors: dict[str, str] = {}
    cleaned: dict = {}

    def present(key):
        return not partial or key in data

    if not partial:
        learner_id = as_id(data.get("learnerId"))
        if learner_id is None:
            errors["learnerId"] = "Must be a user id"
        else:
            cleaned["learner_id"] = learner_id
        scheduled = parse_date(data.get("scheduledDate"))
        if scheduled is None:
            errors["scheduledDate"] = "Scheduled date is required (YYYY-MM-DD)"
        else:
            cleaned["scheduled_date"] = scheduled
        for key, field in (("tutorId", "tutor_id"), ("employerId", "employer_id")):
            raw = data.get(key)
            if raw is None:
                continue
            if as_id(raw) is None:
                errors[key] = "Must be a user id"
            else:
                cleaned[field] = raw

    if present("title"):
        title = _text(data, "title")
        _check_length(errors, "title", title, "Title", minimum=3, maximum=255)
        cleaned["title"] = title

    for key, field, maximum in (
        ("description", "description", 2000),
        ("location", "location", 255),
        ("notes", "notes", 5000),
    ):
        if key in data:
            value = _text(data, key)
            _check_length(errors, key, value, key.capitalize(), maximum=maximum)
            cleaned[field] = value

    if "actualDate" in data:
        raw = data.get("actualDate")
        actual = parse_date(raw)
        if raw not in (None, "") and actual is None:
            errors["actualDate"] = "Must be a valid date (YYYY-MM-DD)"
        else:
            cleaned["actual_date"] = actual

    if partial and "status" in data:
        status = _text(data, "status")
        if status not in _EDITABLE_REVIEW_STATUSES:
            errors["status"] = "Status must be one of: " + ", ".join(sorted(_EDITABLE_REVIEW_STATUSES))
        else:
            cleaned["status"] = status

    return cleaned, errors


def validate_goal(data, partial=False):
    """Validate a learning goal."""
    errors: dict[str, str] = {}
    cleaned: dict = {}

    def present(key):
        return not partial or key in data

    if present("title"):
        title = _text(data, "title")
        _check_length(errors, "title", title, "Title", minimum=3, maximum=255)
        cleaned["title"] = title

    if present("description"):
        description = _text(data, "description")
        _check_length(errors, "description", description, "Description", maximum=2000)
        cleaned["description"] = description

    if present("targetDate"):
        raw = data.get("targetDate")
        target = parse_date(raw)
        if raw not in (None, "") and target is None:
            errors["targetDate"] = "Must be a valid date (YYYY-MM-DD)"
        else:
            cleaned["target_date"] = target

    if present("status"):
        status = _text(data, "status") or ("active" if not partial else "")
        if status not in _VALID_GOAL_STATUSES:
            errors["status"] = "Status must be 'active' or 'completed'"
        else:
            cleaned["status"] = status

    return cleaned, errors
