"""Auth helpers: the per-request AuthContext and access-control decorators."""

from dataclasses import dataclass
from functools import wraps

from flask import g, jsonify

from skilltrack.roles import Capability, Role, has_capability, is_associated_staff


@dataclass(frozen=True)
class AuthContext:
    """Who is making the current request.

    Built once per request from the session and handed to each view by
    :func:`login_required` as the ``ctx`` keyword argument.
    """

    user_id: int
    role: Role

    def can(self, capability: Capability) -> bool:
        return has_capability(self.role, capability)

    def can_view_learner(self, learner_id: int, profile) -> bool:
        """Self, back-office roles, or staff associated through *profile*."""
        if self.user_id == learner_id:
            return True
        if self.can(Capability.VIEW_ALL_LEARNERS):
            return True
        return is_associated_staff(self.user_id, self.role, profile)


def context_for(user):
    """Return an AuthContext for *user*, or None for anonymous/unknown roles."""
    if user is None:
        return None
    role = Role.parse(user.role)
    if role is None:
        return None
    return AuthContext(user_id=user.id, role=role)


def json_error(message: str, status: int, **extra):
    body = {"message": message}
    body.update(extra)
    return jsonify(body), status


def learner_access_error(ctx: AuthContext, learner_id: int):
    """Return a 403/404 response if *ctx* may not see *learner_id*'s records, else None."""
    from skilltrack.standards import profile_for

    profile = profile_for(learner_id)
    if ctx.can_view_learner(learner_id, profile):
        return None
    if ctx.role is Role.LEARNER:
        return json_error("Forbidden - You can only access your own records", 403)
    if profile is None and ctx.can(Capability.VIEW_ASSOCIATED_LEARNERS):
        return json_error("Learner profile not found", 404)
    return json_error("Forbidden - You are not associated with this learner", 403)


def login_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        ctx = g.get("ctx")
        if ctx is None:
            return json_error("Unauthorized", 401)
        return f(*args, ctx=ctx, **kwargs)

    return decorated


def capability_required(capability: Capability):
    """Like :func:`login_required`, and also answer 403 without *capability*."""

    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            ctx = g.get("ctx")
            if ctx is None:
                return json_error("Unauthorized", 401)
            if not ctx.can(capability):
                return json_error("Forbidden - Insufficient permissions", 403)
            return f(*args, ctx=ctx, **kwargs)

        return decorated

    return decorator
