"""Apprenticeship standard reference data seeded at startup.

Each standard needs:
  - code:              IfATE standard reference (e.g. 'ST0122')
  - title:             Occupational title
  - level:             Apprenticeship level integer
  - description:       Short description
  - minimum_otj_hours: Weekly off-the-job minimum in hours
  - ksbs:              List of {type, code, title}; type is knowledge/skill/behavior
"""

STANDARDS = [
    {
        "code": "ST0122",
        "title": "Digital Marketing Specialist",
        "level": 4,
        "description": (
            "Define, design, build and implement digital campaigns across a "
            "variety of online and social media platforms to drive customer "
            "acquisition, engagement and retention."
        ),
        "minimum_otj_hours": 6,
        "ksbs": [
            {"type": "knowledge", "code": "K1", "title": "Digital Marketing Principles"},
            {"type": "knowledge", "code": "K2", "title": "Content Strategy Development"},
            {"type": "knowledge", "code": "K3", "title": "SEO Fundamentals"},
            {"type": "skill", "code": "S1", "title": "Social Media Management"},
            {"type": "skill", "code": "S2", "title": "Analytics and Reporting"},
            {"type": "behavior", "code": "B1", "title": "Professional Communication"},
            {"type": "behavior", "code": "B2", "title": "Time Management"},
        ],
    },
    {
        "code": "ST0787",
        "title": "Systems Thinking Practitioner",
        "level": 7,
        "description": (
            "Apply systems thinking methodologies to complex real-world "
            "problems: engage stakeholders, design interventions and evaluate "
            "outcomes across organisational systems."
        ),
        "minimum_otj_hours": 6,
        "ksbs": [
            {"type": "knowledge", "code": "K1", "title": "Systems thinking"},
            {"type": "knowledge", "code": "K2", "title": "Systems approaches"},
            {"type": "knowledge", "code": "K3", "title": "Intervention and engagement"},
            {"type": "knowledge", "code": "K4", "title": "Reflective practice"},
            {"type": "knowledge", "code": "K5", "title": "Facilitation"},
            {"type": "skill", "code": "S1", "title": "Systems modelling"},
            {"type": "skill", "code": "S2", "title": "Boundary setting"},
            {"type": "skill", "code": "S3", "title": "Stakeholder engagement"},
            {"type": "skill", "code": "S4", "title": "Intervention design"},
            {"type": "skill", "code": "S5", "title": "Evaluation"},
            {"type": "behavior", "code": "B1", "title": "Curiosity"},
            {"type": "behavior", "code": "B2", "title": "Collaboration"},
            {"type": "behavior", "code": "B3", "title": "Ethical practice"},
        ],
    },
]

STANDARDS_BY_CODE = {s["code"]: s for s in STANDARDS}
