import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from belief_blueprint import beliefs, config, libraries
from belief_blueprint.access import AccessGate, AccessVerdict
from belief_blueprint.deps import client_ip, enforce_access, get_gate, get_rate_counter, require_access
from belief_blueprint.rate_limit import WindowCounter, check_daily_quota
from belief_blueprint.schemas import AnalysisBody, IngestBody, PlanBody, ReframeBody, ScanBody
from belief_blueprint.trials import iso

logger = logging.getLogger(__name__)

router = APIRouter()

# =========================
# FREE
# =========================
@router.post("/api/beliefs/scan")
async def beliefs_scan(body: ScanBody, request: Request, counter: WindowCounter = Depends(get_rate_counter)):
    identity = body.anonId or f"ip:{client_ip(request)}"
    quota = check_daily_quota(counter, identity, config.FREE_DAILY_LIMIT)
    if not quota.allowed:
        logger.info("free scan limit reached for %s", identity)
        return JSONResponse(
            {
                "error": "FREE_LIMIT_REACHED",
                "message": f"Daily free limit reached ({quota.limit}/day). Pro unlocks unlimited scans, NLP reframes, and a 7-day plan.",
                "upgradeUrl": config.UPGRADE_URL,
                "resetAt": iso(quota.reset_at),
            },
            status_code=429,
        )

    return {
        "belief": beliefs.infer_belief(f"{body.situation} {body.emotion}".strip()),
        "prompts": beliefs.SCAN_PROMPTS,
        "severity": beliefs.SCAN_SEVERITY,
        "usage": {"todayCount": quota.count, "todayLimit": quota.limit},
        "safety": beliefs.SAFETY_NOTE,
    }

@router.get("/api/libraries/themes")
async def library_themes():
    return {"themes": libraries.list_themes(), "preview": libraries.preview()}

# =========================
# PRO (license or trial)
# =========================
@router.post("/api/beliefs/reframe")
async def beliefs_reframe(body: ReframeBody, verdict: AccessVerdict = Depends(require_access(allow_trial=True))):
    return {
        "belief": body.belief.strip(),
        "context": body.context.strip(),
        "steps": beliefs.reframe_steps(body.belief, body.context),
        "via": verdict.via.value,
    }

@router.post("/api/actions/plan", dependencies=[Depends(require_access(allow_trial=True))])
async def actions_plan(body: PlanBody):
    return {
        "belief": body.belief.strip(),
        "goal": body.goal.strip(),
        "plan": beliefs.seven_day_plan(body.belief, body.goal),
        "cautions": beliefs.PLAN_CAUTIONS,
    }

@router.post("/api/analysis/beliefs", dependencies=[Depends(require_access(allow_trial=True))])
async def analyze_responses(body: AnalysisBody, request: Request):
    analysis = beliefs.analyze_answers(
        body.questionnaire_id or "qid-unknown",
        [qa.model_dump() for qa in body.responses],
        depth=body.options.depth,
        now=request.app.state.clock(),
    )
    return {
        "ok": True,
        "analysis_id": analysis["analysis_id"],
        "analysis_payload": analysis,
        "extended": beliefs.enrich_analysis(analysis),
    }

@router.post("/api/analysis/beliefs/ingest-responses", dependencies=[Depends(require_access(allow_trial=True))])
async def ingest_responses(body: IngestBody, request: Request):
    analysis = beliefs.analyze_beliefs(body.questionnaire_id, body.responses, body.metadata, now=request.app.state.clock())
    return {"ok": True, "endpoint": "analysis/beliefs/ingest-responses", "analysis": analysis}

@router.get("/api/libraries/{theme}")
async def library_theme(theme: str, request: Request, gate: AccessGate = Depends(get_gate)):
    data = libraries.get_theme(theme)
    if data is None:
        raise HTTPException(status_code=404, detail="Not found")

    # only Pro themes are gated
    if data.get("requiresPro"):
        await enforce_access(request, gate, allow_trial=True)

    return {"key": theme.strip(), "title": data["title"], "items": data["items"]}
