import logging
import os
import traceback

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse

from .builder import default_rule
from .payplan import PayPlanEngine, rollup_threaded
from .schemas import (
    CalculateRequest,
    PayBreakdown,
    PreviewRequest,
    ProjectionRequest,
    RollupRequest,
    ValidateRequest,
)
from .validation import InvalidRuleConfiguration


# ─── Config ───
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").strip().upper()
STRICT_BASE_SALARY = os.environ.get("PAYPLAN_STRICT_BASE_SALARY", "false").strip().lower() in ("1", "true", "yes")
MAX_ROLLUP = int(os.environ.get("PAYPLAN_MAX_ROLLUP", "200"))

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("main")


# ─── App setup ───
app = FastAPI(title="Pay Plan Engine")


@app.exception_handler(InvalidRuleConfiguration)
async def _invalid_plan(request: Request, exc: InvalidRuleConfiguration):
    logger.info(f"Rejected pay plan at {request.url.path}: {exc}")
    body = {"ok": False, "error": exc.message, "index": exc.index}
    if exc.consultant is not None:
        body["consultant"] = exc.consultant
    return JSONResponse(body, status_code=422)


@app.exception_handler(Exception)
async def _exc(request: Request, exc: Exception):
    logger.error(f"Unhandled exception at {request.url}: {traceback.format_exc()}")
    return JSONResponse({"ok": False, "error": "Internal error"}, status_code=500)


def _engine(rules) -> PayPlanEngine:
    return PayPlanEngine(rules, strict_base_salary=STRICT_BASE_SALARY)


@app.get("/health")
async def health():
    return {"ok": True}


# ─── Pay plan ───
@app.post("/api/payplan/calculate", response_model=PayBreakdown)
async def calculate(body: CalculateRequest):
    return _engine(body.rules).evaluate(body.transactions)


@app.post("/api/payplan/preview")
async def preview(body: PreviewRequest):
    commission = _engine(body.rules).preview(body.transaction)
    return {"commission": str(commission)}


@app.post("/api/payplan/project")
async def project(body: ProjectionRequest):
    engine = _engine(body.rules)
    breakdown = engine.project_income(body.units, body.front_pvr, body.back_pvr, condition=body.condition)
    return {
        "breakdown": breakdown.model_dump(mode="json"),
        "simple_estimate": str(engine.simple_estimate(body.units, body.avg_commission)),
        "milestones": engine.milestones(breakdown),
    }


@app.post("/api/payplan/validate")
async def validate(body: ValidateRequest):
    engine = _engine(body.rules)
    return {"ok": True, "warnings": list(engine.warnings), "plan": engine.share_payload()["rules"]}


@app.get("/api/payplan/defaults/{kind}")
async def defaults(kind: str):
    try:
        rule = default_rule(kind)
    except InvalidRuleConfiguration as e:
        raise HTTPException(status_code=404, detail=e.message)
    return rule.model_dump(mode="json", by_alias=True)


@app.post("/api/payplan/rollup")
async def rollup(body: RollupRequest):
    if len(body.consultants) > MAX_ROLLUP:
        return JSONResponse(
            {"ok": False, "error": f"Too many consultants ({len(body.consultants)} > {MAX_ROLLUP})"},
            status_code=413,
        )

    plans = {name: (c.rules, c.transactions) for name, c in body.consultants.items()}
    results = await rollup_threaded(plans, strict_base_salary=STRICT_BASE_SALARY)
    logger.info(f"Rollup evaluated {len(results)} consultant(s)")
    return {n: r.model_dump(mode="json") for n, r in results.items()}
