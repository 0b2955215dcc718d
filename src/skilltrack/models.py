"""Database models for apprenticeship tracking."""

from datetime import date, datetime

from flask_sqlalchemy import SQLAlchemy

from skilltrack.roles import Role

db = SQLAlchemy()


def _iso(value):
    return value.isoformat() if value is not None else None


class User(db.Model):
    """An authenticated user of the application, in any role."""

    __tablename__ = "app_user"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    first_name = db.Column(db.String(255))
    last_name = db.Column(db.String(255))
    role = db.Column(db.String(50), nullable=False, default=Role.LEARNER.value)
    status = db.Column(db.String(50), nullable=False, default="active")
    google_sub = db.Column(db.String(255), unique=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    STATUSES = [
        ("unverified", "Unverified"),
        ("pending_approval", "Pending Approval"),
        ("active", "Active"),
        ("suspended", "Suspended"),
        ("deactivated", "Deactivated"),
    ]

    @property
    def role_enum(self) -> Role:
        return Role(self.role)

    @property
    def full_name(self):
        return " ".join(p for p in (self.first_name, self.last_name) if p) or self.email

    def summary(self):
        """The subset of fields shown when another record names this user."""
        return {"id": self.id, "firstName": self.first_name, "lastName": self.last_name, "role": self.role}

    def to_dict(self):
        return {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "role": self.role,
            "status": self.status,
        }


class ApprenticeshipStandard(db.Model):
    """Reference data for an apprenticeship standard and its OTJ requirement."""

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), unique=True, nullable=False)  # e.g. ST0122
    title = db.Column(db.String(200), nullable=False)
    level = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text, default="")
    minimum_otj_hours = db.Column(db.Float, nullable=True)  # weekly minimum

    ksbs = db.relationship("KsbElement", backref="standard", lazy="select", order_by="KsbElement.code")

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "title": self.title,
            "level": self.level,
            "description": self.description,
            "minimumOtjHours": self.minimum_otj_hours,
        }


# Many-to-many association table
evidence_ksbs = db.Table(
    "evidence_ksbs",
    db.Column("evidence_id", db.Integer, db.ForeignKey("evidence_item.id"), primary_key=True),
    db.Column("ksb_id", db.Integer, db.ForeignKey("ksb_element.id"), primary_key=True),
)


class KsbElement(db.Model):
    """A Knowledge, Skill or Behaviour required by a standard."""

    id = db.Column(db.Integer, primary_key=True)
    standard_id = db.Column(db.Integer, db.ForeignKey("apprenticeship_standard.id"), nullable=False)
    type = db.Column(db.String(12), nullable=False)  # knowledge, skill, behavior
    code = db.Column(db.String(10), nullable=False)  # e.g. K1, S3, B2
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")

    __table_args__ = (db.UniqueConstraint("standard_id", "code", name="uq_ksb_standard_code"),)

    TYPES = [
        ("knowledge", "Knowledge"),
        ("skill", "Skills"),
        ("behavior", "Behaviors"),
    ]

    def to_dict(self):
        return {
            "id": self.id,
            "standardId": self.standard_id,
            "type": self.type,
            "code": self.code,
            "title": self.title,
            "description": self.description,
        }


class LearnerProfile(db.Model):
    """Links a learner to their standard and to the staff who support them."""

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), unique=True, nullable=False)
    standard_id = db.Column(db.Integer, db.ForeignKey("apprenticeship_standard.id"), nullable=True)
    start_date = db.Column(db.Date, nullable=True)
    expected_end_date = db.Column(db.Date, nullable=True)
    tutor_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=True)
    iqa_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=True)
    training_provider_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=True)
    uln = db.Column(db.String(10), nullable=True)
    employer_name = db.Column(db.String(255), default="")

    user = db.relationship("User", foreign_keys=[user_id])
    standard = db.relationship("ApprenticeshipStandard")

    def staff_ids(self) -> set[int]:
        """Return the ids of every staff member associated with this learner."""
        return {i for i in (self.tutor_id, self.iqa_id, self.training_provider_id) if i is not None}

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "standardId": self.standard_id,
            "startDate": _iso(self.start_date),
            "expectedEndDate": _iso(self.expected_end_date),
            "tutorId": self.tutor_id,
            "iqaId": self.iqa_id,
            "trainingProviderId": self.training_provider_id,
            "uln": self.uln,
            "employerName": self.employer_name,
        }


class OtjLogEntry(db.Model):
    """A single off-the-job training session logged by a learner."""

    id = db.Column(db.Integer, primary_key=True)
    learner_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=False)
    date = db.Column(db.Date, nullable=False, default=date.today)
    duration_minutes = db.Column(db.Integer, nullable=False)
    activity_type = db.Column(db.String(50), nullable=False, default="other")
    category = db.Column(db.String(20), nullable=False, default="otj")
    description = db.Column(db.Text, nullable=False)
    reflection = db.Column(db.Text, default="")
    ksb_id = db.Column(db.Integer, db.ForeignKey("ksb_element.id"), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="draft")
    verifier_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=True)
    verified_at = db.Column(db.DateTime, nullable=True)
    iqa_verifier_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=True)
    iqa_verified_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    ksb = db.relationship("KsbElement")

    ACTIVITY_TYPES = [
        ("course", "Online Course"),
        ("research", "Research and Reading"),
        ("workshop", "Workshop or Webinar"),
        ("project", "Project Work"),
        ("mentoring", "Mentoring Session"),
        ("other", "Other"),
    ]

    CATEGORIES = [
        ("otj", "Off-The-Job Training (OTJ)"),
        ("enrichment", "Enrichment Activity"),
    ]

    STATUSES = [
        ("draft", "Draft"),
        ("submitted", "Submitted"),
        ("approved", "Approved"),
        ("rejected", "Rejected"),
    ]

    @property
    def hours(self) -> float:
        return self.duration_minutes / 60

    def to_dict(self):
        return {
            "id": self.id,
            "learnerId": self.learner_id,
            "date": _iso(self.date),
            "durationMinutes": self.duration_minutes,
            "hours": round(self.hours, 2),
            "activityType": self.activity_type,
            "category": self.category,
            "description": self.description,
            "reflection": self.reflection or "",
            "ksbId": self.ksb_id,
            "status": self.status,
            "verifierId": self.verifier_id,
            "verifiedAt": _iso(self.verified_at),
            "iqaVerifierId": self.iqa_verifier_id,
            "iqaVerifiedAt": _iso(self.iqa_verified_at),
            "createdAt": _iso(self.created_at),
        }


class EvidenceItem(db.Model):
    """A piece of portfolio evidence mapped to one or more KSBs."""

    id = db.Column(db.Integer, primary_key=True)
    learner_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=False)
    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=False)
    evidence_type = db.Column(db.String(20), nullable=False, default="other")
    reflection = db.Column(db.Text, default="")
    external_link = db.Column(db.String(500), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="draft")
    submission_date = db.Column(db.Date, nullable=True)
    reviewer_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    ksbs = db.relationship("KsbElement", secondary=evidence_ksbs, backref="evidence_items", lazy="select")

    EVIDENCE_TYPES = [
        ("image", "Image"),
        ("video", "Video"),
        ("document", "Document"),
        ("project", "Project"),
        ("presentation", "Presentation"),
        ("other", "Other"),
    ]

    STATUSES = [
        ("draft", "Draft"),
        ("submitted", "Submitted"),
        ("in_review", "In Review"),
        ("approved", "Approved"),
        ("needs_revision", "Needs Revision"),
    ]

    # Statuses in which the owner may still edit the item
    EDITABLE_STATUSES = ("draft", "needs_revision")

    @property
    def ksb_ids(self) -> list[int]:
        return sorted(k.id for k in self.ksbs)

    def to_dict(self):
        return {
            "id": self.id,
            "learnerId": self.learner_id,
            "title": self.title,
            "description": self.description,
            "evidenceType": self.evidence_type,
            "reflection": self.reflection or "",
            "externalLink": self.external_link,
            "status": self.status,
            "submissionDate": _iso(self.submission_date),
            "reviewerId": self.reviewer_id,
            "reviewedAt": _iso(self.reviewed_at),
            "ksbIds": self.ksb_ids,
            "createdAt": _iso(self.created_at),
        }


class FeedbackItem(db.Model):
    """A message from a staff member to a learner about a log entry or evidence."""

    id = db.Column(db.Integer, primary_key=True)
    sender_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=False)
    recipient_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=False)
    message = db.Column(db.Text, nullable=False)
    related_item_type = db.Column(db.String(20), nullable=True)  # otj_log, evidence, task, review
    related_item_id = db.Column(db.Integer, nullable=True)
    read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    sender = db.relationship("User", foreign_keys=[sender_id])

    def to_dict(self):
        return {
            "id": self.id,
            "senderId": self.sender_id,
            "recipientId": self.recipient_id,
            "message": self.message,
            "relatedItemType": self.related_item_type,
            "relatedItemId": self.related_item_id,
            "read": self.read,
            "createdAt": _iso(self.created_at),
            "sender": self.sender.summary() if self.sender else None,
        }


class Task(db.Model):
    """A piece of work a staff member sets for a learner, optionally against a KSB."""

    id = db.Column(db.Integer, primary_key=True)
    assigned_to_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=False)
    assigned_by_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=False)
    ksb_id = db.Column(db.Integer, db.ForeignKey("ksb_element.id"), nullable=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, default="")
    due_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending")
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    ksb = db.relationship("KsbElement")
    assigned_by = db.relationship("User", foreign_keys=[assigned_by_id])

    STATUSES = [
        ("pending", "Pending"),
        ("in_progress", "In Progress"),
        ("completed", "Completed"),
    ]

    # Tasks in these statuses show on the learner's dashboard
    OPEN_STATUSES = ("pending", "in_progress")

    def to_dict(self):
        return {
            "id": self.id,
            "assignedToId": self.assigned_to_id,
            "assignedById": self.assigned_by_id,
            "ksbId": self.ksb_id,
            "title": self.title,
            "description": self.description or "",
            "dueDate": _iso(self.due_date),
            "status": self.status,
            "createdAt": _iso(self.created_at),
            "ksb": {
                "id": self.ksb.id,
                "type": self.ksb.type,
                "code": self.ksb.code,
                "description": self.ksb.title,
            } if self.ksb else None,
            "assignedBy": self.assigned_by.summary() if self.assigned_by else None,
        }


class WeeklyTimesheet(db.Model):
    """A learner's OTJ week, totalled from their log and signed off by a tutor."""

    id = db.Column(db.Integer, primary_key=True)
    learner_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=False)
    week_start = db.Column(db.Date, nullable=False)  # always a Monday
    total_minutes = db.Column(db.Integer, nullable=False, default=0)
    minimum_hours = db.Column(db.Float, nullable=False)
    met_requirement = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(db.String(20), nullable=False, default="pending")
    learner_notes = db.Column(db.Text, default="")
    reviewer_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=True)
    tutor_notes = db.Column(db.Text, default="")
    reviewed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (db.UniqueConstraint("learner_id", "week_start", name="uq_timesheet_learner_week"),)

    STATUSES = [
        ("pending", "Pending"),
        ("complete", "Complete"),
        ("incomplete", "Incomplete"),
    ]

    def to_dict(self):
        return {
            "id": self.id,
            "learnerId": self.learner_id,
            "weekStart": _iso(self.week_start),
            "totalMinutes": self.total_minutes,
            "totalHours": round(self.total_minutes / 60, 2),
            "minimumRequiredHours": self.minimum_hours,
            "metRequirement": self.met_requirement,
            "status": self.status,
            "learnerNotes": self.learner_notes or "",
            "reviewerId": self.reviewer_id,
            "tutorNotes": self.tutor_notes or "",
            "reviewedAt": _iso(self.reviewed_at),
        }


class ProgressReview(db.Model):
    """A scheduled progress review between a learner, their tutor and employer."""

    id = db.Column(db.Integer, primary_key=True)
    learner_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=False)
    tutor_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=False)
    employer_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, default="")
    scheduled_date = db.Column(db.Date, nullable=False)
    actual_date = db.Column(db.Date, nullable=True)
    location = db.Column(db.String(255), default="")
    status = db.Column(db.String(20), nullable=False, default="scheduled")
    notes = db.Column(db.Text, default="")
    rescheduling_notes = db.Column(db.Text, default="")
    learner_signed_at = db.Column(db.DateTime, nullable=True)
    tutor_signed_at = db.Column(db.DateTime, nullable=True)
    employer_signed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    STATUSES = [
        ("scheduled", "Scheduled"),
        ("completed", "Completed"),
        ("cancelled", "Cancelled"),
        ("rescheduled", "Rescheduled"),
    ]

    # Reviews still expected to take place
    UPCOMING_STATUSES = ("scheduled", "rescheduled")

    # Signing party -> column holding the user id expected to sign
    SIGNATORIES = {"learner": "learner_id", "tutor": "tutor_id", "employer": "employer_id"}

    def required_signatories(self):
        return [r for r, column in self.SIGNATORIES.items() if getattr(self, column) is not None]

    def is_fully_signed(self) -> bool:
        return all(getattr(self, f"{r}_signed_at") is not None for r in self.required_signatories())

    def to_dict(self):
        return {
            "id": self.id,
            "learnerId": self.learner_id,
            "tutorId": self.tutor_id,
            "employerId": self.employer_id,
            "title": self.title,
            "description": self.description or "",
            "scheduledDate": _iso(self.scheduled_date),
            "actualDate": _iso(self.actual_date),
            "location": self.location or "",
            "status": self.status,
            "notes": self.notes or "",
            "reschedulingNotes": self.rescheduling_notes or "",
            "signedByLearner": self.learner_signed_at is not None,
            "learnerSignedAt": _iso(self.learner_signed_at),
            "signedByTutor": self.tutor_signed_at is not None,
            "tutorSignedAt": _iso(self.tutor_signed_at),
            "signedByEmployer": self.employer_signed_at is not None,
            "employerSignedAt": _iso(self.employer_signed_at),
        }


class LearningGoal(db.Model):
    """A personal learning goal a learner sets and tracks."""

    id = db.Column(db.Integer, primary_key=True)
    learner_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, default="")
    target_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="active")
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    STATUSES = [
        ("active", "Active"),
        ("completed", "Completed"),
    ]

    def to_dict(self):
        return {
            "id": self.id,
            "learnerId": self.learner_id,
            "title": self.title,
            "description": self.description or "",
            "targetDate": _iso(self.target_date),
            "status": self.status,
            "createdAt": _iso(self.created_at),
        }


class IlrUpload(db.Model):
    """A record of one ILR return file uploaded for processing."""

    id = db.Column(db.Integer, primary_key=True)
    filename = db.Column(db.String(255), nullable=False)
    academic_year = db.Column(db.String(7), nullable=False)  # e.g. 2024/25
    return_period = db.Column(db.Integer, nullable=False)  # R01..R14
    upload_date = db.Column(db.DateTime, default=datetime.utcnow)
    status = db.Column(db.String(20), nullable=False, default="processing")
    learner_count = db.Column(db.Integer, nullable=True)
    validation_errors = db.Column(db.Integer, nullable=True)
    validation_warnings = db.Column(db.Integer, nullable=True)
    messages = db.Column(db.Text, default="")  # newline-separated validation messages
    uploaded_by_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=True)

    uploaded_by = db.relationship("User")
    learners = db.relationship("IlrLearnerRecord", backref="upload", lazy="select")

    @property
    def return_label(self) -> str:
        return f"R{self.return_period:02d} ({self.academic_year})"

    def to_dict(self):
        return {
            "id": self.id,
            "filename": self.filename,
            "academicYear": self.academic_year,
            "returnPeriod": self.return_period,
            "uploadDate": _iso(self.upload_date),
            "status": self.status,
            "learnerCount": self.learner_count,
            "uploadedBy": self.uploaded_by.role if self.uploaded_by else None,
            "validationErrors": self.validation_errors,
            "validationWarnings": self.validation_warnings,
            "messages": [m for m in (self.messages or "").split("\n") if m],
        }


class IlrLearnerRecord(db.Model):
    """A learner as reported in an ILR return (uploaded or entered manually)."""

    id = db.Column(db.Integer, primary_key=True)
    upload_id = db.Column(db.Integer, db.ForeignKey("ilr_upload.id"), nullable=True)
    learn_ref_number = db.Column(db.String(12), nullable=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    date_of_birth = db.Column(db.Date, nullable=True)
    uln = db.Column(db.String(10), nullable=False)
    postcode = db.Column(db.String(10), default="")
    ukprn = db.Column(db.String(8), default="")
    aim_reference = db.Column(db.String(8), default="")
    funding_model = db.Column(db.String(4), default="")
    employer_name = db.Column(db.String(255), default="")
    status = db.Column(db.String(20), nullable=False, default="active")
    start_date = db.Column(db.Date, nullable=True)
    planned_end_date = db.Column(db.Date, nullable=True)
    completion_status = db.Column(db.String(20), default="continuing")
    academic_year = db.Column(db.String(7), nullable=False)
    return_period = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    STATUSES = [
        ("active", "Active"),
        ("completed", "Completed"),
        ("withdrawn", "Withdrawn"),
    ]

    # ILR CompStatus codes -> (record status, completion status)
    COMP_STATUS_CODES = {
        "1": ("active", "continuing"),
        "2": ("completed", "achieved"),
        "3": ("withdrawn", "withdrawn"),
        "6": ("active", "break_in_learning"),
    }

    def to_dict(self):
        return {
            "id": self.id,
            "uploadId": self.upload_id,
            "learnRefNumber": self.learn_ref_number,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "dateOfBirth": _iso(self.date_of_birth),
            "uln": self.uln,
            "postcode": self.postcode,
            "ukprn": self.ukprn,
            "aimReference": self.aim_reference,
            "fundingModel": self.funding_model,
            "employerName": self.employer_name,
            "status": self.status,
            "startDate": _iso(self.start_date),
            "plannedEndDate": _iso(self.planned_end_date),
            "completionStatus": self.completion_status,
            "academicYear": self.academic_year,
            "returnPeriod": self.return_period,
        }
