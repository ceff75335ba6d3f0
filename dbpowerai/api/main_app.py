from dotenv import load_dotenv
load_dotenv()

import hmac
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.engine import make_url

from dbpowerai.config.startup_config import get_startup_config, initialize_system_config
from dbpowerai.core.agent.analysis_graph import analyze_with_validation, build_orchestrator
from dbpowerai.core.agent.llm_tracker import LLMCallError, TokenTrackingLLM, get_global_tracker
from dbpowerai.core.agent.validation_suite import run_validation_suite
from dbpowerai.core.notifications.slack import send_slack_message
from dbpowerai.core.sql.analysis_result import estimate_tokens
from dbpowerai.core.sql.heuristic_analyzer import fake_analysis
from dbpowerai.core.sql.sql_advisor import AdvisorError, SQLAdvisor
from dbpowerai.core.storage.result_store import ResultStore

STARTUP_CONFIG = get_startup_config()

logging.basicConfig(
    level=getattr(logging, STARTUP_CONFIG.logging_level.upper(), logging.INFO),
    format=STARTUP_CONFIG.logging_format
)
logger = logging.getLogger(__name__)

# Global state
RESULT_STORE: Optional[ResultStore] = None


def _ensure_sqlite_directory(database_url: str):
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load configuration and open the result store."""
    global STARTUP_CONFIG, RESULT_STORE

    try:
        logger.info("🚀 Initializing DBPowerAI analysis service...")
        STARTUP_CONFIG = initialize_system_config()

        database_url = STARTUP_CONFIG.database_url
        _ensure_sqlite_directory(database_url)
        RESULT_STORE = ResultStore.from_url(database_url)
        logger.info(f"[PASS] Result store ready at {database_url}")

        if not STARTUP_CONFIG.openai_api_key:
            logger.warning("OPENAI_API_KEY not set - /analyze will use heuristic analysis only")

        yield

    except Exception as e:
        logger.error(f"Failed to initialize analysis service: {e}")
        raise
    finally:
        usage = get_global_tracker().get_session_stats()
        logger.info(f"[EXIT] Shutting down after {usage['total_calls']} LLM calls ({usage['total_tokens']} tokens)")
        RESULT_STORE = None


app = FastAPI(
    title=STARTUP_CONFIG.api_title,
    description="SQL performance analysis with structural anti-pattern detection and validated rewrites",
    version="1.0.0",
    lifespan=lifespan
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    logger.error(f"Validation error on {request.method} {request.url}: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={
            "detail": exc.errors(),
            "message": "Request validation failed"
        }
    )


# Pydantic Models
class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    query: str
    schema_text: Optional[str] = Field(None, alias="schema")
    explain: Optional[str] = None


class OptimizeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    query: str
    db: str
    schema_text: Optional[str] = Field(None, alias="schema")
    execution_plan: Optional[str] = Field(None, alias="executionPlan")


class TestCaseRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    query: str
    schema_text: Optional[str] = Field(None, alias="schema")
    explain: Optional[str] = None
    test_type: Optional[str] = None


class RunTestsRequest(BaseModel):
    tests: List[TestCaseRequest] = []


def require_api_key(authorization: Optional[str] = Header(None)):
    """Bearer-key check shared by the webhook and admin routes."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized: Missing or invalid Authorization header")

    expected_key = STARTUP_CONFIG.webhook_api_key
    provided_key = authorization[len("Bearer "):]
    if not expected_key or not hmac.compare_digest(provided_key, expected_key):
        raise HTTPException(status_code=401, detail="Unauthorized: Invalid API key")


def _require_query(query: str):
    if not query or not query.strip():
        raise HTTPException(status_code=400, detail="Query is required")


def _record_analysis(query: str, analysis: Dict[str, Any], source: str):
    if RESULT_STORE is None:
        return
    try:
        RESULT_STORE.record_analysis(query, analysis, source=source)
    except Exception:
        logger.exception(f"Failed to record {source} analysis")


# API Endpoints

@app.post("/analyze")
def analyze_query(payload: AnalyzeRequest):
    """Validated LLM analysis, or heuristic analysis when no OpenAI key is configured."""
    _require_query(payload.query)

    result = analyze_with_validation(
        payload.query,
        STARTUP_CONFIG.openai_api_key,
        persistence_sink=RESULT_STORE,
        config=STARTUP_CONFIG,
        schema=payload.schema_text,
        explain=payload.explain,
    )
    response = result.to_dict()
    _record_analysis(payload.query, response, source="analyze")

    response["estimatedTokens"] = estimate_tokens(payload.query, payload.schema_text, payload.explain)
    return response


@app.post("/optimize")
def optimize_query(payload: OptimizeRequest):
    """Structure-aware advisor report for a given database engine."""
    _require_query(payload.query)
    if not payload.db or not payload.db.strip():
        raise HTTPException(status_code=400, detail="Database type is required")

    api_key = STARTUP_CONFIG.openai_api_key
    if not api_key:
        raise HTTPException(status_code=503, detail="OpenAI API key not configured")

    llm = TokenTrackingLLM(
        model=STARTUP_CONFIG.analyzer_model,
        temperature=STARTUP_CONFIG.analyzer_temperature,
        timeout=STARTUP_CONFIG.request_timeout_seconds,
        json_mode=True,
        api_key=api_key,
    )
    get_global_tracker().register_llm("advisor", llm)

    try:
        report = SQLAdvisor(llm).optimize(
            payload.query, payload.db, schema=payload.schema_text, execution_plan=payload.execution_plan
        )
    except AdvisorError as e:
        logger.error(f"Advisor failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    finally:
        usage = llm.get_call_stats()
        logger.info(
            f"Advisor used {usage['total_tokens']} tokens in {usage['total_calls']} call(s), "
            f"{usage['total_duration']:.2f}s"
        )

    data = report.to_dict()
    record_id = None
    if RESULT_STORE is not None:
        try:
            record_id = RESULT_STORE.record_advisor_report(
                payload.query, payload.db, data, schema=payload.schema_text, execution_plan=payload.execution_plan
            )
        except Exception:
            logger.exception("Failed to record advisor report")

    data["id"] = record_id
    data["estimatedTokens"] = estimate_tokens(payload.query, payload.schema_text, payload.execution_plan)
    return {"success": True, "data": data}


@app.post("/webhook", dependencies=[Depends(require_api_key)])
def webhook_analyze(payload: AnalyzeRequest):
    """Heuristic analysis for external callers, forwarded to Slack when configured."""
    _require_query(payload.query)

    analysis = fake_analysis(payload.query).to_dict()
    _record_analysis(payload.query, analysis, source="webhook")

    webhook_url = STARTUP_CONFIG.slack_webhook_url
    if webhook_url:
        send_slack_message(
            webhook_url,
            {"sql": payload.query, "schema": payload.schema_text, "explain": payload.explain},
            analysis,
            timeout=STARTUP_CONFIG.slack_timeout_seconds,
        )

    return analysis


@app.post("/admin/run-tests", dependencies=[Depends(require_api_key)])
def run_admin_tests(payload: RunTestsRequest):
    """Run a batch of queries through the validated workflow and report pass/fail counts."""
    if not payload.tests:
        raise HTTPException(status_code=400, detail="Invalid request: tests array is required")

    api_key = STARTUP_CONFIG.openai_api_key
    if not api_key:
        raise HTTPException(status_code=503, detail="OpenAI API key not configured")

    try:
        orchestrator = build_orchestrator(api_key, RESULT_STORE, STARTUP_CONFIG)
    except LLMCallError as e:
        raise HTTPException(status_code=503, detail=str(e))

    tests = [
        {"query": case.query, "schema": case.schema_text, "explain": case.explain, "test_type": case.test_type}
        for case in payload.tests
    ]
    return run_validation_suite(orchestrator, tests, store=RESULT_STORE).to_dict()


@app.get("/health")
async def health_check():
    """Service status, configured integrations and LLM usage for this process."""
    health_info = {
        "status": "healthy" if RESULT_STORE is not None else "degraded",
        "components": {
            "result_store": RESULT_STORE is not None,
            "openai_configured": bool(STARTUP_CONFIG.openai_api_key),
            "slack_configured": bool(STARTUP_CONFIG.slack_webhook_url),
            "webhook_key_configured": bool(STARTUP_CONFIG.webhook_api_key),
        },
        "llm_usage": get_global_tracker().get_session_stats(),
        "timestamp": datetime.now().isoformat()
    }
    return health_info


if __name__ == "__main__":
    uvicorn.run(app, host=STARTUP_CONFIG.api_host, port=STARTUP_CONFIG.api_port, log_level="info")
