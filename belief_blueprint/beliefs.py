from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

SCAN_PROMPTS = [
    "List 3 cases where this belief wasn't true.",
    "If it were 10% easier, what would you attempt this week?",
    "Who can reflect evidence back to you?",
]
SCAN_SEVERITY = 6
SAFETY_NOTE = "Not therapy; if distressed, use local crisis resources. Say 'gentle mode' for softer pacing."

_SCAN_RULES = [
    (re.compile(r"pricing|charge|fee|price", re.I), "I can't charge high fees"),
    (re.compile(r"rejection|no\b|ghost", re.I), "People will reject me"),
    (re.compile(r"time|busy|delay|procrastinat", re.I), "I never have enough time"),
]
DEFAULT_BELIEF = "I'm not ready / I'm not enough"

def infer_belief(text: str) -> str:
    for rx, belief in _SCAN_RULES:
        if rx.search(text or ""):
            return belief
    return DEFAULT_BELIEF

def reframe_steps(belief: str, context: str = "") -> List[str]:
    b = (belief or "").strip() or "I'm not enough"
    c = (context or "").strip()
    where = f" in: {c}" if c else ""
    return [
        f'Name it precisely: "{b}". Write 1-2 sentences that capture how it shows up{where}.',
        "Counter-evidence: list 5 concrete facts from the past month that weaken this belief.",
        'Workable reframe: "I don\'t need certainty to act; I can take one useful step today toward what matters."',
        "Submodalities shift: shrink/dim the 'threat' image; brighten/bring closer the 'capable' scene.",
        "As-if experiment: act for 10 minutes as if the belief were 30% quieter; then note what changed.",
        "Anchor: 4/6 breath for 2 minutes; say your reframe aloud; take the next 60-second action.",
    ]

PLAN_CAUTIONS = [
    "Keep daily tasks under 20 minutes to avoid overwhelm.",
    "Track effort, not perfection; missing a day is data, not failure.",
    "If distress rises, pause and switch to Gentle Mode (breathing, journaling).",
]

def seven_day_plan(belief: str, goal: str) -> List[str]:
    b, g = belief.strip(), goal.strip()
    return [
        f'Day 1 - Name & Notice: Write the belief "{b}" and list 3 recent moments it showed up. Then write the goal: "{g}".',
        f'Day 2 - Evidence scan: List 5 facts that contradict "{b}". Circle the strongest 2.',
        f'Day 3 - Micro-proof #1: Do a 15-20 min task that moves "{g}" forward. Log how you felt before/after.',
        f'Day 4 - Reframe draft: Turn "{b}" into a workable reframe (e.g. "I can take one concrete step today toward {g}"). Read it aloud 3 times.',
        f'Day 5 - Micro-proof #2: Do the next smallest step for "{g}". Message one person for accountability.',
        "Day 6 - Friction audit: List top 3 blockers. For each, write 1 friction-reduction (timer, checklist, calendar block).",
        "Day 7 - Review & lock-in: Note 3 wins this week. Book 2 calendar blocks for next week's first two micro-steps.",
    ]

# =========================
# QUESTIONNAIRE ANALYSIS
# =========================
NEGATIVE_PHRASES = [
    "i can't", "i cannot", "i'm not", "im not", "i am not",
    "i always fail", "never works", "not good enough", "i should have",
]
CONTROL_PHRASES = ["out of my control", "nothing i can do", "depends on others", "can't change"]

THEME_BUCKETS = {
    "fear_of_failure": re.compile(r"\bfail|failure|mistake|risk\b", re.I),
    "self_efficacy": re.compile(r"\bconfiden|capable|can\b", re.I),
    "control_vs_external": re.compile(r"\bcontrol|depends|others\b", re.I),
    "clarity_and_direction": re.compile(r"\bclarity|direction|goal|plan\b", re.I),
    "resources_time": re.compile(r"\btime|resource|money|budget\b", re.I),
    "approval_and_judgment": re.compile(r"\bjudge|approval|validation|others think\b", re.I),
}

def _as_text(value: Any) -> str:
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value)
    return "" if value is None else str(value)

def _as_number(text: str) -> Optional[float]:
    try:
        return float(text)
    except ValueError:
        return None

def _belief(belief: str, hits: List[Dict[str, str]], base: float) -> Dict[str, Any]:
    return {
        "belief": belief,
        "evidence_from_responses": hits,
        "confidence": round(min(1.0, base + len(hits) * 0.1), 2),
    }

def analyze_beliefs(questionnaire_id: str, responses: Dict[str, Any], metadata: Optional[Dict[str, Any]] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    texts = [_as_text(v) for v in responses.values()]

    markers: List[str] = []
    neg_hits: List[Dict[str, str]] = []
    ctrl_hits: List[Dict[str, str]] = []
    for t in texts:
        s = t.lower().replace("’", "'")
        if not s.strip():
            continue
        if re.search(r"[?!]$", s) and "questioning_tone" not in markers:
            markers.append("questioning_tone")
        if re.search(r"\balways\b|\bnever\b", s) and "absolutist_language" not in markers:
            markers.append("absolutist_language")
        if re.search(r"\bshould\b|\bmust\b", s) and "deontic_modal" not in markers:
            markers.append("deontic_modal")
        neg_hits.extend({"snippet": p} for p in NEGATIVE_PHRASES if p in s)
        ctrl_hits.extend({"snippet": p} for p in CONTROL_PHRASES if p in s)

    themes = [name for name, rx in THEME_BUCKETS.items() if any(rx.search(t) for t in texts)]

    limiting = []
    if neg_hits:
        limiting.append(_belief("I'm not good enough / I will fail", neg_hits, 0.4))
    if ctrl_hits:
        limiting.append(_belief("Outcomes are outside my control", ctrl_hits, 0.4))

    supporting = []
    high = [n for n in (_as_number(t) for t in texts) if n is not None and n >= 7]
    if high:
        supporting.append(_belief("My actions can improve results", [{"snippet": "High self-reported confidence (7/10 or more)"}], 0.5 + 0.1 * (len(high) - 1)))

    contradictions = []
    if limiting and supporting:
        contradictions.append("Co-existence of low-control statements with high self-efficacy indicators.")

    recommendations = []
    if any("not good enough" in b["belief"] for b in limiting):
        recommendations.append("Reframe: Identify one piece of evidence you handled a similar challenge well.")
    if any("outside my control" in b["belief"] for b in limiting):
        recommendations.append("Circle of control: List 3 levers you can directly influence this week.")

    summary = " ".join(s for s in [
        f"Detected themes: {', '.join(themes)}." if themes else "No strong thematic clusters detected.",
        f"Limiting beliefs hypothesized: {len(limiting)}." if limiting else "No strong limiting beliefs detected.",
        "Supporting beliefs present." if supporting else "",
    ] if s)

    stamp = int((now or datetime.now()).timestamp() * 1000)
    return {
        "analysis_id": f"an-{stamp}",
        "questionnaire_id": questionnaire_id,
        "salient_themes": themes,
        "limiting_beliefs": limiting,
        "supporting_beliefs": supporting,
        "contradictions": contradictions,
        "emotional_markers": [],
        "language_patterns": markers,
        "recommendations": recommendations,
        "summary": summary,
        "metadata": metadata,
    }

# =========================
# EXTENDED REPORT MODEL
# =========================
REFRAME_TO = "I'm learning targeted skills and my actions influence outcomes."
SOCRATIC_PROMPTS = [
    "What evidence contradicts this when you zoom into the last 30 days?",
    "If a close friend said this, how would you challenge it compassionately?",
    "What would change if this belief were 20% less true?",
]
ACTION_PLAN = {
    "days_1_30": ["Daily 10-minute belief check-in", "One tiny experiment per week", "Evidence log"],
    "days_31_60": ["Scale successful micro-tests", "One public share per week", "Ask for feedback"],
    "days_61_90": ["Document new playbook", "Automate recurring steps", "Set next 90-day target"],
}
TRIGGER_SWAPS = [
    {"trigger": "Interview rejection email", "swap": "Extract 1 learning + schedule next outreach in 10 minutes"},
    {"trigger": "Rumination words: always/never", "swap": "Replace with specific scope + recent data point"},
]
LANGUAGE_CUE_CHALLENGES = [
    {"cue": "always/never", "method": "Scope challenge: define timeframe & context"},
    {"cue": "should/must", "method": "Definition split: replace with want/choose + reason"},
    {"cue": "out of my control", "method": "Circle of control: list 3 direct levers"},
]
SCORECARD = [
    {"label": "Weekly experiments shipped", "type": "weekly", "template": "Count >= 1"},
    {"label": "Evidence entries logged", "type": "weekly", "template": "Count >= 3"},
    {"label": "Self-talk reframe uses", "type": "daily", "template": ">= 1 deliberate swap/day"},
]
AFFIRMATIONS = [
    "Small experiments compound.",
    "I influence outcomes through deliberate practice.",
    "Discomfort is a sign of growth, not danger.",
]

def _mentions(values: List[str], needle: str) -> bool:
    return any(needle in v.lower() for v in values)

def _theme_pattern(name: str) -> Dict[str, Any]:
    return {
        "name": name,
        "pull": ["Autonomy", "Progress"] if "self_efficacy" in name else ["Safety", "Certainty"],
        "push": ["Public evaluation", "High stakes"] if "fear_of_failure" in name else ["Ambiguity"],
        "origin": "Modeled external locus of control" if "control" in name else "Generalized past outcomes",
        "effect": "Defers action due to perceived constraints" if "resources_time" in name else "Avoidance or over-planning",
    }

def enrich_analysis(base: Dict[str, Any]) -> Dict[str, Any]:
    """Lift an analysis payload into the extended model the full report renders.

    Deterministic: the same payload always yields the same extension. Keys of
    ``base`` are kept as they are.
    """
    limiting = [b["belief"] for b in base.get("limiting_beliefs") or []]
    supporting = [b["belief"] for b in base.get("supporting_beliefs") or []]
    themes = list(base.get("salient_themes") or [])
    patterns = list(base.get("language_patterns") or [])
    contradictions = list(base.get("contradictions") or [])

    snapshot = {
        "core_identity_belief": next(
            (b for b in limiting if re.search(r"fail|enough|worth", b, re.I)), "I'm not good enough"
        ),
        "competing_belief": supporting[0] if supporting else "My actions can improve results",
        "family_imprint": "Rules/shoulds from early caretakers" if _mentions(patterns, "deontic") else "Achievement = worth",
    }
    if _mentions(themes, "approval"):
        snapshot["justice_trigger"] = "Perceived unfair judgment/approval withholding"
    if contradictions:
        snapshot["present_contradiction"] = contradictions[0]

    belief_map = [
        {
            "belief": b,
            "impact": "Avoids or delays action; narrows options; drains motivation",
            "language_tells": ["always/never", "can't", "not good enough"],
            "origin_cues": ["Past failures recalled vividly"],
            "model_tag": "overgeneralization",
        }
        for b in limiting
    ] + [
        {
            "belief": b,
            "impact": "Increases initiative; sustains effort",
            "language_tells": ["I can", "I will", "I'm learning"],
            "origin_cues": ["Recent wins, mentor models"],
            "model_tag": "capability_belief",
        }
        for b in supporting
    ]

    return {
        **base,
        "executive_snapshot": snapshot,
        "patterns": [_theme_pattern(t) for t in themes],
        "belief_map": belief_map,
        "strengths": (
            ["Growth orientation", "Willingness to self-rate", "Action bias when confident"]
            if supporting else ["Self-awareness emerging"]
        ),
        "socratic_dialogues": [
            {"belief": b, "pattern": "Overgeneralization / Low-control assumption", "prompts": list(SOCRATIC_PROMPTS)}
            for b in limiting
        ],
        "reframes": [
            {
                "from": b,
                "to": REFRAME_TO,
                "why_this_matters": "It restores agency and unlocks experimentation.",
                "meaning": "Progress is proof; results follow repetitions.",
                "actions": ["List 3 controllable levers", "1 tiny test this week", "Log evidence of influence"],
                "example": "Ran 1 outreach test, got 2 replies, iterated message.",
            }
            for b in limiting
        ],
        "action_plan": {k: list(v) for k, v in ACTION_PLAN.items()},
        "triggers_swaps": [dict(t) for t in TRIGGER_SWAPS],
        "language_cues_challenges": [dict(c) for c in LANGUAGE_CUE_CHALLENGES],
        "measures_of_progress": [dict(m) for m in SCORECARD],
        "affirmations": list(AFFIRMATIONS),
    }

def analyze_answers(questionnaire_id: str, answers: List[Dict[str, str]], depth: str = "standard", now: Optional[datetime] = None) -> Dict[str, Any]:
    """Analyze free-form ``{q, a}`` answers; the summary notes how many came in."""
    analysis = analyze_beliefs(questionnaire_id, {str(i): qa["a"] for i, qa in enumerate(answers)}, now=now)
    analysis.pop("metadata", None)
    lead = f"Detected {len(answers)} responses{' (deep mode)' if depth == 'deep' else ''}."
    analysis["summary"] = f"{lead} {analysis['summary']}"
    return analysis
