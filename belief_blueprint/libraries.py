from __future__ import annotations

from typing import Any, Dict, List, Optional

PREVIEW_CAP = 10

THEMES: Dict[str, Dict[str, Any]] = {
    "health_discipline": {
        "title": "Health & Discipline",
        "requiresPro": True,
        "items": [
            "I always fall off routines",
            "If I miss one day, the streak is ruined",
            "Healthy food is joyless",
            "I don't have the discipline others have",
            "My energy is fixed and usually low",
            "If I can't do a full workout, it's not worth starting",
            "My body resists change",
            "Rest days mean I'm lazy",
            "I should look perfect before going to the gym",
            "Mood must come before action",
        ],
    },
    "leadership_imposter": {
        "title": "Leadership & Imposter Syndrome (corporate)",
        "requiresPro": True,
        "items": [
            "I'll be exposed as not good enough",
            "Others are more qualified than me",
            "If I speak up and I'm wrong, I'm finished",
            "I must have all the answers to lead",
            "Delegation proves I'm not capable",
            "Visibility makes me a target",
            "My wins are luck, not skill",
            "Asking for help shows weakness",
            "If I set boundaries, I'll be seen as difficult",
            "I have to overwork to deserve my role",
        ],
    },
    "money_beliefs": {
        "title": "Money Beliefs",
        "requiresPro": True,
        "items": [
            "Making more money means sacrificing my integrity",
            "I'm not the kind of person who becomes wealthy",
            "If I earn a lot, people will resent me",
            "Money always leaves as fast as it comes",
            "I need money to make money",
            "Charging high fees is greedy",
            "I must work harder, not smarter, to deserve income",
            "Creative work doesn't pay well",
            "I'm bad with numbers so I'll fail with money",
            "I can either be spiritual or wealthy, not both",
        ],
    },
    "relationships_boundaries": {
        "title": "Relationships & Boundaries",
        "requiresPro": True,
        "items": [
            "Saying no will make me unlovable",
            "If I share needs, I'll be seen as needy",
            "Keeping the peace is more important than my truth",
            "If I set boundaries, I'll push people away",
            "Love means fixing the other person",
            "I must earn affection by over-giving",
            "Conflict means the relationship is failing",
            "My worth depends on their approval",
            "I should tolerate disrespect to avoid being alone",
            "If I don't respond immediately, I'm a bad partner/friend",
        ],
    },
    "entrepreneur_risk_tolerance": {
        "title": "Entrepreneur Risk Tolerance",
        "requiresPro": True,
        "items": [
            "If I can't guarantee success, I shouldn't start",
            "Failure would permanently damage my reputation",
            "I must wait until everything is perfect",
            "Taking small risks is pointless",
            "Investing in myself is irresponsible",
            "One bad month means the business is doomed",
            "I must do everything myself to stay safe",
            "Saying no to any client is risky",
            "Experiments waste time I should spend executing",
            "Borrowing credibility is safer than leading with my voice",
        ],
    },
}

def get_theme(key: str) -> Optional[Dict[str, Any]]:
    return THEMES.get((key or "").strip())

def list_themes() -> List[Dict[str, Any]]:
    return [
        {"key": k, "title": t["title"], "count": len(t["items"]), "requiresPro": bool(t.get("requiresPro"))}
        for k, t in THEMES.items()
    ]

def pro_theme_keys() -> List[str]:
    return [k for k, t in THEMES.items() if t.get("requiresPro")]

def preview(cap: int = PREVIEW_CAP) -> List[Dict[str, Any]]:
    """Free themes share ``cap`` preview items; Pro themes preview nothing."""
    free = [k for k, t in THEMES.items() if not t.get("requiresPro")]
    per_theme = max(1, cap // len(free)) if free else 0
    budget = cap
    out = []
    for k, t in THEMES.items():
        items = [] if t.get("requiresPro") else list(t["items"][:min(per_theme, budget)])
        budget -= len(items)
        out.append({"theme": k, "items": items})
    return out
