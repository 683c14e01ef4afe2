# analysis_service.py
# Code skill scoring API
# - sha256 content hash per submission (integrity + dedup)
# - Submission lifecycle: pending -> analyzing -> completed | failed
# - At most one in-flight analysis per submission id (409 otherwise)
# - Timeout-bounded async pipeline, scoring off the event loop
#
# Run:
#   pip install -e .
#   python analysis_service.py          (or: uvicorn analysis_service:app --port 3001)
#
# Endpoints:
#   POST /analyze
#   GET  /analysis/{submission_id}
#   GET  /submission/{submission_id}
#   GET  /stats
#   GET  /health
#   GET  /scoring/rules
#   POST /score/security

import asyncio
import hashlib
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from code_scoring_engine import (
    CodeScoringEngine,
    MAX_SCORE,
    RULESET_HASH,
    SCORE_WEIGHTS,
    VERSIONS,
    version_block,
)
from registry import (
    Evaluation,
    EvaluationNotFoundError,
    Submission,
    SubmissionConflictError,
    SubmissionNotFoundError,
    SubmissionRegistry,
    ValidationError,
)
from security_rules import evaluate_security, rules_table

logger = logging.getLogger(__name__)

# ===============================
# ===== CONFIGURATION ===========
# ===============================
API_KEY = os.getenv("CSS_API_KEY", "")
ANALYSIS_DELAY_SECONDS = float(os.getenv("CSS_ANALYSIS_DELAY_SECONDS", "1.0"))
ANALYSIS_TIMEOUT_SECONDS = float(os.getenv("CSS_ANALYSIS_TIMEOUT_SECONDS", "30.0"))
CORS_ORIGINS = [o.strip() for o in os.getenv("CSS_CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("CSS_LOG_LEVEL", "INFO")
MAX_BODY_BYTES = int(os.getenv("CSS_MAX_BODY_BYTES", str(10 * 1024 * 1024)))
SCORING_WORKERS = int(os.getenv("CSS_SCORING_WORKERS", "4"))
PORT = int(os.getenv("PORT", "3001"))

SERVICE_NAME = "Code Skill Scoring Service"
OPEN_PATHS = ("/health", "/docs", "/openapi.json", "/redoc")


class AnalysisFailure(Exception):
    """Scoring pipeline failed or timed out; the submission is marked failed"""


def sha256_hex(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================
# ===== ANALYSIS PIPELINE =====
# =============================

class AnalysisService:
    """
    Drives one submission through the registry and the scoring engine.

    The registry is injected so it can be replaced by persistent storage
    without touching scoring.
    """

    def __init__(
        self,
        registry: SubmissionRegistry,
        engine: Optional[CodeScoringEngine] = None,
        delay_seconds: float = ANALYSIS_DELAY_SECONDS,
        timeout_seconds: float = ANALYSIS_TIMEOUT_SECONDS,
        max_workers: int = SCORING_WORKERS,
    ):
        self.registry = registry
        self.engine = engine or CodeScoringEngine()
        self.delay_seconds = delay_seconds
        self.timeout_seconds = timeout_seconds
        # A timed-out scoring call keeps its worker until it returns; the pool
        # bounds how many such stragglers can pile up.
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="scoring")

    async def submit(
        self, submission_id: str, code: str, force_rescore: bool = False
    ) -> Tuple[Submission, Evaluation, bool]:
        """Register, score and store one submission. Returns (submission, evaluation, cached)."""
        if not submission_id or not code:
            raise ValidationError("Code and submissionId are required")

        code_hash = sha256_hex(code)
        self.registry.begin(submission_id, code_hash)
        self.registry.mark_analyzing(submission_id)
        logger.info("Starting analysis for submission %s", submission_id)

        try:
            evaluation, cached = await asyncio.wait_for(
                self._run_pipeline(submission_id, code, code_hash, force_rescore),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            logger.error("Analysis timed out for submission %s after %.1fs", submission_id, self.timeout_seconds)
            self.registry.fail(submission_id, "timeout")
            raise AnalysisFailure(f"Analysis timed out after {self.timeout_seconds}s") from exc
        except asyncio.CancelledError:
            logger.warning("Analysis cancelled for submission %s", submission_id)
            self.registry.fail(submission_id, "cancelled")
            raise
        except Exception as exc:
            logger.exception("Analysis error for submission %s", submission_id)
            self.registry.fail(submission_id, f"{type(exc).__name__}: {exc}")
            raise AnalysisFailure("Analysis failed") from exc

        submission = self.registry.complete(submission_id, evaluation)
        logger.info(
            "Analysis completed for submission %s: final=%d cached=%s",
            submission_id, evaluation.final_score, cached,
        )
        return submission, evaluation, cached

    async def _run_pipeline(
        self, submission_id: str, code: str, code_hash: str, force_rescore: bool
    ) -> Tuple[Evaluation, bool]:
        if not force_rescore:
            previous = self.registry.find_by_hash(code_hash)
            if previous is not None and previous.scoring_version.get("ruleset_hash") == RULESET_HASH:
                return self._reuse(submission_id, previous), True

        # Placeholder for heavier (e.g. model-assisted) analysis
        await asyncio.sleep(self.delay_seconds)

        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(self.executor, self.engine.score_code, code)
        metrics = result.metrics
        evaluation = Evaluation(
            submission_id=submission_id,
            code_hash=code_hash,
            complexity=result.complexity,
            security=result.security,
            quality=result.quality,
            final_score=result.final_score,
            lines_of_code=metrics.lines_of_code,
            functions=metrics.functions,
            events=metrics.events,
            modifiers=metrics.modifiers,
            scoring_version=version_block(),
        )
        return evaluation, False

    @staticmethod
    def _reuse(submission_id: str, previous: Evaluation) -> Evaluation:
        return Evaluation(
            submission_id=submission_id,
            code_hash=previous.code_hash,
            complexity=previous.complexity,
            security=previous.security,
            quality=previous.quality,
            final_score=previous.final_score,
            lines_of_code=previous.lines_of_code,
            functions=previous.functions,
            events=previous.events,
            modifiers=previous.modifiers,
            scoring_version=dict(previous.scoring_version),
        )


# ===============================
# === BASIC API KEY SECURITY ====
# ===============================

class APIKeyMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, api_key: str = ""):
        super().__init__(app)
        self.api_key = api_key

    async def dispatch(self, request, call_next):
        # Allow health and docs without a key
        if request.url.path in OPEN_PATHS:
            return await call_next(request)
        if self.api_key and request.headers.get("x-api-key") != self.api_key:
            return JSONResponse({"detail": "Unauthorized"}, status_code=401)
        return await call_next(request)


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, max_body_bytes: int = MAX_BODY_BYTES):
        super().__init__(app)
        self.max_body_bytes = max_body_bytes

    async def dispatch(self, request, call_next):
        length = request.headers.get("content-length")
        if length is not None:
            try:
                too_large = int(length) > self.max_body_bytes
            except ValueError:
                return JSONResponse({"detail": "Invalid Content-Length"}, status_code=400)
            if too_large:
                logger.warning("Rejected %s body of %s bytes", request.url.path, length)
                return JSONResponse({"detail": "Request body too large"}, status_code=413)
        return await call_next(request)


# ----- Request models -----
class AnalyzeRequest(BaseModel):
    # Chunked bodies carry no Content-Length and skip BodySizeLimitMiddleware
    code: Optional[str] = Field(default=None, max_length=MAX_BODY_BYTES)
    submissionId: Optional[str] = None
    forceRescore: Optional[bool] = False


class SecurityPreviewRequest(BaseModel):
    code: str


def get_analysis_service(request: Request) -> AnalysisService:
    """Dependency for getting the app's analysis service"""
    return request.app.state.analysis_service


def get_registry(request: Request) -> SubmissionRegistry:
    """Dependency for getting the app's submission registry"""
    return request.app.state.analysis_service.registry


# ----- Endpoints -----
router = APIRouter()


@router.get("/")
def root():
    return {
        "service": SERVICE_NAME,
        "version": VERSIONS["core"],
        "description": "Complexity, security and quality scoring for submitted code",
        "features": [
            "Single submission analysis",
            "Submission lifecycle tracking",
            "Content-hash deduplication",
            "Security pattern breakdown",
        ],
    }


@router.get("/health")
def health():
    return {"status": "OK", "timestamp": utc_iso()}


@router.post("/analyze")
async def analyze(req: AnalyzeRequest, service: AnalysisService = Depends(get_analysis_service)):
    """Score code and store the evaluation under submissionId"""
    try:
        submission, evaluation, cached = await service.submit(
            req.submissionId, req.code, force_rescore=bool(req.forceRescore)
        )
    except ValidationError as ve:
        raise HTTPException(status_code=400, detail=str(ve))
    except SubmissionConflictError as ce:
        logger.warning("Rejected concurrent submission: %s", ce)
        raise HTTPException(status_code=409, detail=str(ce))
    except AnalysisFailure:
        raise HTTPException(status_code=500, detail="Analysis failed")
    except Exception:
        logger.exception("Unexpected error analyzing submission %s", req.submissionId)
        raise HTTPException(status_code=500, detail="Analysis failed")

    return {
        "submissionId": submission.id,
        "codeHash": submission.code_hash,
        "results": evaluation.to_results(),
        "status": submission.status.value,
        "cached": cached,
    }


@router.get("/analysis/{submission_id}")
def get_analysis(submission_id: str, registry: SubmissionRegistry = Depends(get_registry)):
    """Retrieve the evaluation of a completed submission"""
    try:
        return registry.get_evaluation(submission_id).to_dict()
    except EvaluationNotFoundError:
        raise HTTPException(status_code=404, detail="Analysis not found")


@router.get("/submission/{submission_id}")
def get_submission(submission_id: str, registry: SubmissionRegistry = Depends(get_registry)):
    try:
        return registry.get(submission_id).to_dict()
    except SubmissionNotFoundError:
        raise HTTPException(status_code=404, detail="Submission not found")


@router.get("/stats")
def stats(registry: SubmissionRegistry = Depends(get_registry)):
    return registry.stats().to_dict()


@router.get("/scoring/rules")
def scoring_rules():
    return {
        "weights": {
            "securityWeight": SCORE_WEIGHTS["security"],
            "complexityWeight": SCORE_WEIGHTS["complexity"],
            "qualityWeight": SCORE_WEIGHTS["quality"],
            "maxScore": MAX_SCORE,
        },
        "security": rules_table(),
        "scoring_version": version_block(),
    }


@router.post("/score/security")
def score_security(req: SecurityPreviewRequest):
    """Security breakdown for a snippet, without registering a submission"""
    result = evaluate_security(req.code, verbose=True)
    return {
        "security": result["final_score"],
        "penalties_total": result["penalties_total"],
        "bonuses_total": result["bonuses_total"],
        "breakdown": [
            {"category": category, "label": label, "delta": delta, "occurrences": found}
            for category, label, delta, found in result["breakdown"]
        ],
        "scoring_version": version_block(),
    }


def create_app(
    registry: Optional[SubmissionRegistry] = None,
    delay_seconds: Optional[float] = None,
    timeout_seconds: Optional[float] = None,
    api_key: Optional[str] = None,
    max_body_bytes: Optional[int] = None,
) -> FastAPI:
    app = FastAPI(title=SERVICE_NAME, version=VERSIONS["core"])

    app.add_middleware(
        BodySizeLimitMiddleware,
        max_body_bytes=MAX_BODY_BYTES if max_body_bytes is None else max_body_bytes,
    )
    app.add_middleware(APIKeyMiddleware, api_key=API_KEY if api_key is None else api_key)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.analysis_service = AnalysisService(
        registry if registry is not None else SubmissionRegistry(),
        delay_seconds=ANALYSIS_DELAY_SECONDS if delay_seconds is None else delay_seconds,
        timeout_seconds=ANALYSIS_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds,
    )
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logger.info("%s running on port %d", SERVICE_NAME, PORT)
    uvicorn.run(app, host="0.0.0.0", port=PORT)
