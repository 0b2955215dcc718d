"""Standard lookups and the learner -> profile -> standard resolution chain."""

import logging

from sqlalchemy import or_

from skilltrack.models import ApprenticeshipStandard, KsbElement, LearnerProfile, db
from skilltrack.standards_data import STANDARDS

logger = logging.getLogger(__name__)

DEFAULT_MINIMUM_OTJ_HOURS = 6.0


def resolve_minimum_otj_hours(standard) -> float:
    """Return the standard's weekly OTJ minimum, or 6 hours if it is unavailable.

    A missing standard, or one without a configured minimum, is a recoverable
    gap in reference data rather than an error.
    """
    if standard is None or standard.minimum_otj_hours is None:
        return DEFAULT_MINIMUM_OTJ_HOURS
    return float(standard.minimum_otj_hours)


def profile_for(learner_id: int):
    return LearnerProfile.query.filter_by(user_id=learner_id).first()


def associated_learner_ids(staff_id: int) -> list[int]:
    """Return the ids of learners whose profile names *staff_id* as tutor, IQA or provider."""
    profiles = LearnerProfile.query.filter(
        or_(
            LearnerProfile.tutor_id == staff_id,
            LearnerProfile.iqa_id == staff_id,
            LearnerProfile.training_provider_id == staff_id,
        )
    ).all()
    return [p.user_id for p in profiles]


def standard_for_profile(profile):
    """Return the profile's standard, or None (logged) if it cannot be found."""
    if profile is None or profile.standard_id is None:
        return None
    standard = db.session.get(ApprenticeshipStandard, profile.standard_id)
    if standard is None:
        logger.info(
            "Standard %s for learner %s not found; using default OTJ minimum of %.0fh",
            profile.standard_id, profile.user_id, DEFAULT_MINIMUM_OTJ_HOURS,
        )
    return standard


def ksb_error_for_learner(ksb_id, learner_id):
    """Return an error message if *ksb_id* is not part of the learner's standard."""
    if ksb_id is None:
        return None
    ksb = db.session.get(KsbElement, ksb_id)
    if ksb is None:
        return "Unknown KSB"
    profile = profile_for(learner_id)
    if profile is not None and profile.standard_id is not None and ksb.standard_id != profile.standard_id:
        return "KSB is not part of the learner's apprenticeship standard"
    return None


def ksbs_for_standard(standard_id):
    if standard_id is None:
        return []
    return KsbElement.query.filter_by(standard_id=standard_id).order_by(KsbElement.code).all()


def seed_standards() -> int:
    """Insert standard and KSB reference data that is not already present.

    Keyed by standard code and (standard, KSB code) so new KSBs added to an
    existing standard are still inserted.  Returns the number of rows added;
    the caller commits.
    """
    added = 0
    existing = {s.code: s for s in ApprenticeshipStandard.query.all()}
    for item in STANDARDS:
        standard = existing.get(item["code"])
        if standard is None:
            standard = ApprenticeshipStandard(
                code=item["code"],
                title=item["title"],
                level=item["level"],
                description=item["description"],
                minimum_otj_hours=item["minimum_otj_hours"],
            )
            db.session.add(standard)
            db.session.flush()
            added += 1
        have = {k.code for k in KsbElement.query.filter_by(standard_id=standard.id)}
        for ksb in item["ksbs"]:
            if ksb["code"] in have:
                continue
            db.session.add(KsbElement(standard_id=standard.id, **ksb))
            added += 1
    return added
