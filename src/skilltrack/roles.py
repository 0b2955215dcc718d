"""User roles and the capabilities each role grants.

Access decisions go through :func:`has_capability` rather than comparing role
strings at call sites.  Learner-specific access (a tutor seeing their own
learners) additionally needs the learner's profile; see
:func:`is_associated_staff`.
"""

import enum


class Role(str, enum.Enum):
    LEARNER = "learner"
    ADMIN = "admin"
    TRAINING_PROVIDER = "training_provider"
    ASSESSOR = "assessor"
    IQA = "iqa"
    OPERATIONS = "operations"

    @classmethod
    def parse(cls, value):
        """Return the Role for *value*, or None if it is not a known role."""
        try:
            return cls(value)
        except ValueError:
            return None


class Capability(enum.Enum):
    VIEW_ALL_LEARNERS = "view_all_learners"
    VIEW_ASSOCIATED_LEARNERS = "view_associated_learners"
    VERIFY_OTJ = "verify_otj"
    IQA_VERIFY = "iqa_verify"
    REVIEW_EVIDENCE = "review_evidence"
    EDIT_LOCKED_RECORDS = "edit_locked_records"
    MANAGE_PROFILES = "manage_profiles"
    MANAGE_ILR = "manage_ilr"
    VIEW_ILR = "view_ilr"
    ASSIGN_TASKS = "assign_tasks"
    SCHEDULE_REVIEWS = "schedule_reviews"


ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.LEARNER: frozenset(),
    Role.ASSESSOR: frozenset({
        Capability.VIEW_ASSOCIATED_LEARNERS,
        Capability.VERIFY_OTJ,
        Capability.REVIEW_EVIDENCE,
        Capability.VIEW_ILR,
        Capability.ASSIGN_TASKS,
        Capability.SCHEDULE_REVIEWS,
    }),
    Role.TRAINING_PROVIDER: frozenset({
        Capability.VIEW_ASSOCIATED_LEARNERS,
        Capability.VERIFY_OTJ,
        Capability.REVIEW_EVIDENCE,
        Capability.VIEW_ILR,
        Capability.ASSIGN_TASKS,
        Capability.SCHEDULE_REVIEWS,
    }),
    Role.IQA: frozenset({
        Capability.VIEW_ASSOCIATED_LEARNERS,
        Capability.VERIFY_OTJ,
        Capability.IQA_VERIFY,
        Capability.REVIEW_EVIDENCE,
        Capability.ASSIGN_TASKS,
        Capability.SCHEDULE_REVIEWS,
    }),
    Role.ADMIN: frozenset({
        Capability.VIEW_ALL_LEARNERS,
        Capability.VERIFY_OTJ,
        Capability.REVIEW_EVIDENCE,
        Capability.EDIT_LOCKED_RECORDS,
        Capability.MANAGE_PROFILES,
        Capability.MANAGE_ILR,
        Capability.VIEW_ILR,
        Capability.ASSIGN_TASKS,
        Capability.SCHEDULE_REVIEWS,
    }),
    Role.OPERATIONS: frozenset({
        Capability.VIEW_ALL_LEARNERS,
        Capability.VERIFY_OTJ,
        Capability.EDIT_LOCKED_RECORDS,
        Capability.MANAGE_PROFILES,
        Capability.MANAGE_ILR,
        Capability.VIEW_ILR,
        Capability.SCHEDULE_REVIEWS,
    }),
}


def has_capability(role: Role, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


def is_associated_staff(user_id: int, role: Role, profile) -> bool:
    """Return True if *user_id* is the tutor, IQA or training provider on *profile*.

    Only roles holding VIEW_ASSOCIATED_LEARNERS can be associated; a learner
    whose id happens to be stored on another profile never is.
    """
    if profile is None or not has_capability(role, Capability.VIEW_ASSOCIATED_LEARNERS):
        return False
    return user_id in profile.staff_ids()
