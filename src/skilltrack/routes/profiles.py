"""Learner profile and apprenticeship standard endpoints."""

from datetime import date

from flask import Blueprint, jsonify, request

from skilltrack.auth import capability_required, json_error, learner_access_error, login_required
from skilltrack.models import ApprenticeshipStandard, LearnerProfile, User, db
from skilltrack.roles import Capability, Role
from skilltrack.standards import ksbs_for_standard, profile_for
from skilltrack.validation import as_id

bp = Blueprint("profiles", __name__, url_prefix="/api")

# Profile field -> role the referenced user must hold
_STAFF_FIELDS = {
    "tutorId": ("tutor_id", {Role.ASSESSOR}),
    "iqaId": ("iqa_id", {Role.IQA}),
    "trainingProviderId": ("training_provider_id", {Role.TRAINING_PROVIDER}),
}


@bp.route("/learner-profile/<int:user_id>")
@login_required
def get_profile(user_id, ctx):
    denied = learner_access_error(ctx, user_id)
    if denied:
        return denied
    profile = profile_for(user_id)
    if profile is None:
        return json_error("Learner profile not found", 404)
    return jsonify(profile.to_dict())


@bp.route("/learner-profile", methods=["POST"])
@capability_required(Capability.MANAGE_PROFILES)
def save_profile(ctx):
    """Create or replace a learner's profile (standard and assigned staff)."""
    data = request.get_json(silent=True) or {}
    errors = {}

    user_id = as_id(data.get("userId"))
    learner = db.session.get(User, user_id) if user_id is not None else None
    if learner is None or learner.role != Role.LEARNER.value:
        errors["userId"] = "Must reference an existing learner"

    standard_id = data.get("standardId")
    if standard_id is not None and (
        as_id(standard_id) is None or db.session.get(ApprenticeshipStandard, standard_id) is None
    ):
        errors["standardId"] = "Unknown apprenticeship standard"

    staff = {}
    for key, (field, roles) in _STAFF_FIELDS.items():
        staff_id = data.get(key)
        if staff_id is None:
            staff[field] = None
            continue
        member = db.session.get(User, staff_id) if as_id(staff_id) is not None else None
        if member is None or Role.parse(member.role) not in roles:
            errors[key] = "Must reference a user with the " + "/".join(r.value for r in roles) + " role"
        staff[field] = staff_id

    dates = {}
    for key, field in (("startDate", "start_date"), ("expectedEndDate", "expected_end_date")):
        raw = data.get(key)
        try:
            dates[field] = date.fromisoformat(raw) if raw else None
        except (TypeError, ValueError):
            errors[key] = "Must be a valid date (YYYY-MM-DD)"

    uln = (data.get("uln") or "").strip()
    if uln and not (len(uln) == 10 and uln.isdigit()):
        errors["uln"] = "ULN must be exactly 10 digits"

    if errors:
        return json_error("Validation error", 422, errors=errors)

    profile = profile_for(learner.id)
    created = profile is None
    if created:
        profile = LearnerProfile(user_id=learner.id)
        db.session.add(profile)
    profile.standard_id = standard_id
    for field, value in {**staff, **dates}.items():
        setattr(profile, field, value)
    profile.uln = uln or None
    profile.employer_name = (data.get("employerName") or "").strip()
    db.session.commit()
    return jsonify(profile.to_dict()), 201 if created else 200


@bp.route("/apprenticeship-standards")
@login_required
def list_standards(ctx):
    standards = ApprenticeshipStandard.query.order_by(ApprenticeshipStandard.code).all()
    return jsonify([s.to_dict() for s in standards])


@bp.route("/apprenticeship-standard/<int:standard_id>")
@login_required
def get_standard(standard_id, ctx):
    standard = db.session.get(ApprenticeshipStandard, standard_id)
    if standard is None:
        return json_error("Apprenticeship standard not found", 404)
    return jsonify(standard.to_dict())


@bp.route("/apprenticeship-standard/<int:standard_id>/ksbs")
@login_required
def list_standard_ksbs(standard_id, ctx):
    if db.session.get(ApprenticeshipStandard, standard_id) is None:
        return json_error("Apprenticeship standard not found", 404)
    return jsonify([k.to_dict() for k in ksbs_for_standard(standard_id)])
