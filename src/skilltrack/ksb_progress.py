"""KSB progress calculator -- achieved/total per KSB type and focus areas."""

import re
from dataclasses import dataclass

KSB_TYPES = ("knowledge", "skill", "behavior")
APPROVED = "approved"
DEFAULT_FOCUS_LIMIT = 5

# Older records spell the category the British way
_TYPE_ALIASES = {"behaviour": "behavior", "skills": "skill"}


@dataclass(frozen=True)
class KsbProgressItem:
    type: str
    achieved: int
    total: int

    @property
    def applicable(self) -> bool:
        return self.total > 0

    @property
    def percent(self) -> float:
        """Progress bar width; 0 when the standard has no KSBs of this type."""
        if self.total == 0:
            return 0.0
        return self.achieved / self.total * 100

    def to_dict(self):
        return {
            "type": self.type,
            "achieved": self.achieved,
            "total": self.total,
            "percent": round(self.percent, 1),
            "applicable": self.applicable,
        }


@dataclass(frozen=True)
class FocusArea:
    type: str
    code: str
    name: str
    remaining: int

    def to_dict(self):
        return {"type": self.type, "code": self.code, "name": self.name, "remaining": self.remaining}


def _get(obj, name, default=None):
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def normalise_type(value) -> str:
    value = (value or "").strip().lower()
    return _TYPE_ALIASES.get(value, value)


def code_sort_key(code: str):
    """Sort KSB codes naturally: K2 before K10, and letter prefixes grouped."""
    return [int(part) if part.isdigit() else part for part in re.split(r"(\d+)", code or "")]


def _evidence_ksb_ids(item):
    ids = _get(item, "ksb_ids")
    if ids is None:
        ids = [_get(k, "id") for k in (_get(item, "ksbs") or [])]
    return ids


def approved_ksb_ids(evidence) -> set:
    """Return the ids of every KSB linked to at least one approved evidence item."""
    approved = set()
    for item in evidence:
        if _get(item, "status") != APPROVED:
            continue
        approved.update(i for i in _evidence_ksb_ids(item) if i is not None)
    return approved


def calculate_progress(ksbs, evidence) -> list[KsbProgressItem]:
    """Return one progress item per KSB type (knowledge, skill, behavior).

    *total* counts the distinct KSBs of the type in *ksbs* (the learner's
    requirement set).  *achieved* counts those among them with approved
    evidence; evidence linked to KSBs outside the requirement set is ignored,
    so ``achieved <= total`` always holds.
    """
    approved = approved_ksb_ids(evidence)
    by_type: dict[str, set] = {t: set() for t in KSB_TYPES}
    for k in ksbs:
        ksb_type = normalise_type(_get(k, "type"))
        if ksb_type in by_type:
            by_type[ksb_type].add(_get(k, "id"))

    return [
        KsbProgressItem(type=t, achieved=len(ids & approved), total=len(ids))
        for t, ids in by_type.items()
    ]


def find_focus_areas(ksbs, evidence, limit: int = DEFAULT_FOCUS_LIMIT) -> list[FocusArea]:
    """Return KSBs with no approved evidence, most remaining first, then by code.

    Each KSB is a single done/not-done target, so ``remaining`` is 1 for
    every focus area and ties are broken by code in natural order.
    """
    approved = approved_ksb_ids(evidence)
    seen = set()
    areas = []
    for k in ksbs:
        ksb_id = _get(k, "id")
        if ksb_id in approved or ksb_id in seen:
            continue
        seen.add(ksb_id)
        code = _get(k, "code") or ""
        areas.append(FocusArea(
            type=normalise_type(_get(k, "type")),
            code=code,
            name=_get(k, "title") or code,
            remaining=1,
        ))
    areas.sort(key=lambda a: (-a.remaining, code_sort_key(a.code)))
    return areas[:max(limit, 0)]


def overall_percent(items) -> float:
    achieved = sum(i.achieved for i in items)
    total = sum(i.total for i in items)
    return achieved / total * 100 if total else 0.0
