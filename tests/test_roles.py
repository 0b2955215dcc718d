"""Tests for the role/capability model and AuthContext."""

import pytest

from skilltrack.auth import AuthContext
from skilltrack.models import LearnerProfile
from skilltrack.roles import Capability, Role, has_capability, is_associated_staff


def test_parse_known_and_unknown_roles():
    assert Role.parse("iqa") is Role.IQA
    assert Role.parse("tutor") is None
    assert Role.parse(None) is None


@pytest.mark.parametrize(
    "role, capability, expected",
    [
        (Role.ADMIN, Capability.VIEW_ALL_LEARNERS, True),
        (Role.OPERATIONS, Capability.VIEW_ALL_LEARNERS, True),
        (Role.ASSESSOR, Capability.VIEW_ALL_LEARNERS, False),
        (Role.IQA, Capability.IQA_VERIFY, True),
        (Role.ASSESSOR, Capability.IQA_VERIFY, False),
        (Role.OPERATIONS, Capability.REVIEW_EVIDENCE, False),
        (Role.TRAINING_PROVIDER, Capability.VIEW_ILR, True),
        (Role.IQA, Capability.VIEW_ILR, False),
        (Role.TRAINING_PROVIDER, Capability.MANAGE_ILR, False),
        (Role.LEARNER, Capability.VERIFY_OTJ, False),
        (Role.IQA, Capability.ASSIGN_TASKS, True),
        (Role.OPERATIONS, Capability.ASSIGN_TASKS, False),
        (Role.OPERATIONS, Capability.SCHEDULE_REVIEWS, True),
    ],
)
def test_role_capabilities(role, capability, expected):
    assert has_capability(role, capability) is expected


def test_learner_has_no_capabilities():
    assert not any(has_capability(Role.LEARNER, c) for c in Capability)


def _profile():
    return LearnerProfile(user_id=1, tutor_id=10, iqa_id=11, training_provider_id=12)


def test_staff_named_on_profile_are_associated():
    profile = _profile()
    assert is_associated_staff(10, Role.ASSESSOR, profile)
    assert is_associated_staff(11, Role.IQA, profile)
    assert is_associated_staff(12, Role.TRAINING_PROVIDER, profile)
    assert not is_associated_staff(13, Role.ASSESSOR, profile)
    assert not is_associated_staff(10, Role.ASSESSOR, None)


def test_learner_id_stored_as_staff_is_not_associated():
    assert not is_associated_staff(10, Role.LEARNER, _profile())


def test_auth_context_can_view_learner():
    profile = _profile()
    assert AuthContext(1, Role.LEARNER).can_view_learner(1, profile)
    assert not AuthContext(2, Role.LEARNER).can_view_learner(1, profile)
    assert AuthContext(99, Role.ADMIN).can_view_learner(1, None)
    assert AuthContext(10, Role.ASSESSOR).can_view_learner(1, profile)
    assert not AuthContext(13, Role.ASSESSOR).can_view_learner(1, profile)
