"""ILR management routes: upload, manual entry, learner search, stats and export."""

import logging
import math
from datetime import date

from flask import Blueprint, Response, current_app, jsonify, request
from sqlalchemy import func, or_

from skilltrack.auth import capability_required, json_error
from skilltrack.ilr import ALLOWED_EXTENSIONS, IlrFileError, build_export_xml, parse_ilr, read_xml_bytes
from skilltrack.models import IlrLearnerRecord, IlrUpload, LearnerProfile, db
from skilltrack.roles import Capability, Role
from skilltrack.standards import associated_learner_ids
from skilltrack.validation import parse_academic_year, parse_return_period, validate_ilr_learner

logger = logging.getLogger(__name__)

bp = Blueprint("ilr", __name__, url_prefix="/api/ilr")

_SORT_COLUMNS = {
    "name": (IlrLearnerRecord.last_name, IlrLearnerRecord.first_name),
    "uln": (IlrLearnerRecord.uln,),
    "employer": (IlrLearnerRecord.employer_name,),
    "startDate": (IlrLearnerRecord.start_date,),
}


def _sees_all_records(ctx) -> bool:
    return ctx.can(Capability.MANAGE_ILR) or ctx.role is Role.TRAINING_PROVIDER


def _scoped_records(ctx):
    """ILR learner records visible to *ctx*.

    Back-office roles and training providers see every record; assessors
    only see records whose ULN matches one of their learners' profiles.
    """
    query = IlrLearnerRecord.query
    if _sees_all_records(ctx):
        return query
    ulns = [
        p.uln
        for p in LearnerProfile.query.filter(
            LearnerProfile.user_id.in_(associated_learner_ids(ctx.user_id))
        )
        if p.uln
    ]
    return query.filter(IlrLearnerRecord.uln.in_(ulns))


def _upload_visible(ctx, upload) -> bool:
    if ctx.can(Capability.MANAGE_ILR):
        return True
    return upload.status == "complete" and not upload.validation_errors


@bp.route("/stats")
@capability_required(Capability.VIEW_ILR)
def stats(ctx):
    counts = dict(
        _scoped_records(ctx)
        .with_entities(IlrLearnerRecord.status, func.count(IlrLearnerRecord.id))
        .group_by(IlrLearnerRecord.status)
        .all()
    )
    result = {
        "activeLearners": counts.get("active", 0),
        "completedLearners": counts.get("completed", 0),
        "withdrawnLearners": counts.get("withdrawn", 0),
    }
    if _sees_all_records(ctx):
        uploads = IlrUpload.query.all()
        result.update({
            "returnsSubmitted": sum(1 for u in uploads if u.status == "complete"),
            "returnsPending": sum(1 for u in uploads if u.status == "processing"),
            "returnsWithErrors": sum(
                1 for u in uploads if u.status == "failed" or (u.validation_errors or 0) > 0
            ),
        })
    return jsonify(result)


@bp.route("/recent-uploads")
@capability_required(Capability.VIEW_ILR)
def recent_uploads(ctx):
    """Newest uploads first, plus the label of the latest completed return."""
    limit = max(1, min(request.args.get("limit", 10, type=int), 50))
    all_uploads = IlrUpload.query.order_by(IlrUpload.upload_date.desc(), IlrUpload.id.desc()).all()
    uploads = [u for u in all_uploads if _upload_visible(ctx, u)]
    latest = next((u for u in all_uploads if u.status == "complete"), None)
    return jsonify({
        "latestReturn": latest.return_label if latest else "No completed returns",
        "latestReturnDate": latest.upload_date.isoformat() if latest else None,
        "uploads": [u.to_dict() for u in uploads[:limit]],
        "totalUploads": len(uploads),
        "pendingUploads": sum(1 for u in uploads if u.status == "processing"),
    })


def _period_errors(academic_year, return_period):
    errors = {}
    year = parse_academic_year(academic_year if isinstance(academic_year, str) else "")
    if year is None:
        errors["academicYear"] = "Academic year must look like 2024/25"
    period = parse_return_period(return_period)
    if period is None:
        errors["returnPeriod"] = "Return period must be between 1 and 14"
    return year, period, errors


@bp.route("/upload", methods=["POST"])
@capability_required(Capability.MANAGE_ILR)
def upload(ctx):
    """Accept an ILR return (``.xml`` or ``.zip``) and store its valid learners.

    Form fields: ``ilrFile``, ``academicYear`` and ``returnPeriod``.  An
    upload row is kept even when the document cannot be read, with status
    ``failed`` and the reason in its messages.
    """
    file = request.files.get("ilrFile")
    if file is None or not file.filename:
        return json_error("No file uploaded", 400)
    if not file.filename.lower().endswith(ALLOWED_EXTENSIONS):
        return json_error("Only XML and ZIP files are allowed", 400)

    year, period, errors = _period_errors(request.form.get("academicYear"), request.form.get("returnPeriod"))
    if errors:
        return json_error("Validation error", 422, errors=errors)

    record = IlrUpload(
        filename=file.filename,
        academic_year=year,
        return_period=period,
        status="processing",
        uploaded_by_id=ctx.user_id,
    )
    db.session.add(record)
    db.session.flush()

    try:
        payload = read_xml_bytes(file.filename, file.read(), max_size=current_app.config["MAX_CONTENT_LENGTH"])
        result = parse_ilr(payload)
    except IlrFileError as exc:
        logger.warning("ILR upload %s (%s) rejected: %s", record.id, file.filename, exc)
        record.status = "failed"
        record.messages = str(exc)
        db.session.commit()
        return json_error(str(exc), 422, upload=record.to_dict())

    for parsed in result.valid:
        db.session.add(IlrLearnerRecord(
            upload_id=record.id,
            academic_year=year,
            return_period=period,
            **parsed.cleaned,
        ))
    record.status = "complete"
    record.learner_count = len(result.valid)
    record.validation_errors = result.error_count
    record.validation_warnings = result.warning_count
    record.messages = "\n".join(result.messages())
    db.session.commit()
    logger.info(
        "ILR upload %s stored: %s learners=%d errors=%d warnings=%d",
        record.id, record.return_label, record.learner_count,
        record.validation_errors, record.validation_warnings,
    )
    return jsonify(record.to_dict()), 201


@bp.route("/manual-entry", methods=["POST"])
@capability_required(Capability.MANAGE_ILR)
def manual_entry(ctx):
    """Add a single learner record keyed in by hand.

    Body: ``{"learnerData": {...}, "academicYear": "2024/25", "returnPeriod": 7}``.
    """
    data = request.get_json(silent=True) or {}
    learner = data.get("learnerData")
    if not isinstance(learner, dict):
        return json_error("Validation error", 422, errors={"learnerData": "Required"})

    cleaned, errors, warnings = validate_ilr_learner(learner)
    year, period, period_errors = _period_errors(data.get("academicYear"), data.get("returnPeriod"))
    errors.update(period_errors)
    status = learner.get("status", "active")
    if not isinstance(status, str) or status not in {s for s, _ in IlrLearnerRecord.STATUSES}:
        errors["status"] = "Status must be active, completed or withdrawn"
    if errors:
        return json_error("Validation error", 422, errors=errors)

    completion = {"active": "continuing", "completed": "achieved", "withdrawn": "withdrawn"}[status]
    record = IlrLearnerRecord(
        academic_year=year, return_period=period, status=status, completion_status=completion, **cleaned
    )
    db.session.add(record)
    db.session.commit()
    logger.info("Manual ILR learner %s added for R%02d (%s)", record.id, period, year)
    return jsonify({
        "message": "Learner record created successfully",
        "learner": record.to_dict(),
        "warnings": warnings,
    }), 201


@bp.route("/learners")
@capability_required(Capability.VIEW_ILR)
def learners(ctx):
    """Search ILR learner records.

    Query args: ``search`` (name, ULN or employer), ``status`` (default
    ``all``), ``sort`` (name, uln, employer, startDate), ``order`` (asc or
    desc), ``page`` and ``limit``.
    """
    query = _scoped_records(ctx)

    search = request.args.get("search", "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                IlrLearnerRecord.first_name.ilike(pattern),
                IlrLearnerRecord.last_name.ilike(pattern),
                IlrLearnerRecord.uln.like(pattern),
                IlrLearnerRecord.employer_name.ilike(pattern),
            )
        )

    status = request.args.get("status", "all")
    if status != "all":
        query = query.filter(IlrLearnerRecord.status == status)

    columns = _SORT_COLUMNS.get(request.args.get("sort", "name"), _SORT_COLUMNS["name"])
    descending = request.args.get("order", "asc") == "desc"
    query = query.order_by(*(c.desc() if descending else c.asc() for c in columns), IlrLearnerRecord.id)

    page = max(1, request.args.get("page", 1, type=int))
    limit = max(1, min(request.args.get("limit", 20, type=int), 100))
    pagination = query.paginate(page=page, per_page=limit, error_out=False)
    return jsonify({
        "learners": [r.to_dict() for r in pagination.items],
        "totalLearners": pagination.total,
        "currentPage": page,
        "totalPages": math.ceil(pagination.total / limit),
        "pageSize": limit,
    })


@bp.route("/learners/<int:record_id>")
@capability_required(Capability.VIEW_ILR)
def learner_detail(record_id, ctx):
    record = _scoped_records(ctx).filter(IlrLearnerRecord.id == record_id).first()
    if record is None:
        return json_error("Learner record not found", 404)
    return jsonify(record.to_dict())


@bp.route("/export")
@capability_required(Capability.MANAGE_ILR)
def export(ctx):
    """Download the learners held for one return period as an ILR XML document."""
    if not request.args.get("academicYear") or not request.args.get("returnPeriod"):
        return json_error("Academic year and return period are required", 400)
    year, period, errors = _period_errors(request.args["academicYear"], request.args["returnPeriod"])
    if errors:
        return json_error("Validation error", 422, errors=errors)

    records = (
        IlrLearnerRecord.query.filter_by(academic_year=year, return_period=period)
        .order_by(IlrLearnerRecord.last_name, IlrLearnerRecord.id)
        .all()
    )
    ukprn = current_app.config["ILR_UKPRN"]
    payload = build_export_xml(records, year, ukprn=ukprn, prepared=date.today())
    logger.info("ILR export for R%02d (%s): %d learners", period, year, len(records))
    filename = f"ILR-{ukprn}-R{period:02d}-{year.replace('/', '')}.xml"
    return Response(
        payload,
        mimetype="application/xml",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
