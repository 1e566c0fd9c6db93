import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.concurrency import run_in_threadpool

from vizengine.core.config import get_settings
from vizengine.core.errors import ErrorCodes, FeedbackSubmissionError, ValidationError, get_error_response
from vizengine.core.sanitization import sanitize_for_logging
from vizengine.core.schemas import (
    ChartFeedbackRecord, ChartSuggestion, ColumnClassification, ColumnProfile, ColumnRequest, Dataset,
    FeedbackRecord, HierarchyNode, HierarchyRelation, HierarchyRequest, LearnedRule, LearningJobResult,
    OverrideRequest, Row, SemanticType, SuggestRequest, TreeRequest,
)
from vizengine.services.engine import VisualizationEngine, get_engine
from vizengine.services.hierarchy import LEVELS_SUFFIX

logger = logging.getLogger(__name__)

router = APIRouter()


# Registered on app.state by main.py; RateLimitExceeded is handled there
limiter = Limiter(key_func=get_remote_address)


def suggest_rate_limit() -> str:
    """Current per-IP limit for chart suggestions, read at request time."""
    return f"{get_settings().rate_limit_per_minute}/minute"


def _http_error(request: Request, status_code: int, error_code: str,
                additional_detail: Optional[str] = None) -> HTTPException:
    error_info = get_error_response(error_code, additional_detail)
    error_info['correlation_id'] = getattr(request.state, 'correlation_id', 'unknown')
    return HTTPException(status_code=status_code, detail=error_info)


def _dataset(request: Request, rows: List[Row]) -> Dataset:
    max_rows = get_settings().max_dataset_rows
    if len(rows) > max_rows:
        raise _http_error(
            request, 413, ErrorCodes.DATASET_TOO_LARGE,
            f"Maximum is {max_rows} rows, received {len(rows)}."
        )
    return Dataset(rows=rows)


def _require_columns(request: Request, dataset: Dataset, *columns: str):
    missing = [c for c in columns if c not in dataset.columns]
    if missing:
        names = ", ".join(sanitize_for_logging(c, 100) for c in missing)
        raise _http_error(request, 404, ErrorCodes.UNKNOWN_COLUMN, f"Unknown column(s): {names}.")


@router.get("/health")
async def health_check():
    return {"status": "ok"}


# Profiling and classification

@router.post("/profile", response_model=ColumnProfile)
def profile_column(body: ColumnRequest, request: Request,
                   engine: VisualizationEngine = Depends(get_engine)):
    dataset = _dataset(request, body.rows)
    _require_columns(request, dataset, body.column)
    return engine.profile_column(dataset, body.column)


@router.post("/classify", response_model=ColumnClassification)
def classify_column(body: ColumnRequest, request: Request,
                    engine: VisualizationEngine = Depends(get_engine)):
    dataset = _dataset(request, body.rows)
    _require_columns(request, dataset, body.column)
    return engine.classify_column(dataset, body.column)


@router.post("/columns/override", response_model=ColumnClassification)
def override_column(body: OverrideRequest, request: Request,
                    engine: VisualizationEngine = Depends(get_engine)):
    """Force a column's semantic type; records feedback when it changes the active type."""
    dataset = _dataset(request, body.rows) if body.rows is not None else None
    return engine.override_column_type(body.column, body.type, dataset)


@router.delete("/columns/override/{column_name}")
def clear_override(column_name: str, engine: VisualizationEngine = Depends(get_engine)):
    return {"column": column_name, "cleared": engine.clear_override(column_name)}


# Hierarchies

@router.post("/hierarchies", response_model=List[HierarchyRelation])
def detect_hierarchies(body: HierarchyRequest, request: Request,
                       engine: VisualizationEngine = Depends(get_engine)):
    dataset = _dataset(request, body.rows)
    if body.columns:
        _require_columns(request, dataset, *body.columns)
    return engine.detect_hierarchies(dataset, body.columns)


@router.post("/hierarchies/tree", response_model=List[HierarchyNode])
def build_hierarchy_tree(body: TreeRequest, request: Request,
                         engine: VisualizationEngine = Depends(get_engine)):
    dataset = _dataset(request, body.rows)
    _require_columns(request, dataset, body.parent)
    if body.child and body.child != f"{body.parent}{LEVELS_SUFFIX}":
        _require_columns(request, dataset, body.child)
    return engine.build_hierarchy_tree(dataset, body.parent, body.child,
                                       max_depth=body.max_depth, max_breadth=body.max_breadth)


# Recommendation

async def _suggest(body: SuggestRequest, request: Request, engine: VisualizationEngine) -> ChartSuggestion:
    dataset = _dataset(request, body.rows)
    if body.columns:
        _require_columns(request, dataset, *body.columns)
    try:
        return await run_in_threadpool(engine.suggest_chart, dataset, body.columns, body.query)
    except ValidationError as e:
        logger.info(f"Suggestion rejected: {e}")
        raise _http_error(request, 422, ErrorCodes.VALIDATION_ERROR, " ".join(f"{i}." for i in e.issues))


@router.post("/suggest", response_model=ChartSuggestion)
@limiter.limit(suggest_rate_limit)
async def suggest_chart(request: Request, body: SuggestRequest,
                        engine: VisualizationEngine = Depends(get_engine)):
    """
    Recommend a chart type, bindings and aggregation for the rows.

    Rate limited per IP address (RATE_LIMIT_PER_MINUTE).
    """
    try:
        return await _suggest(body, request, engine)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Unexpected error suggesting chart: {e}", exc_info=True)
        raise _http_error(request, 500, ErrorCodes.UNKNOWN_ERROR)


# Feedback and learning

@router.post("/feedback", response_model=FeedbackRecord, status_code=201)
def submit_feedback(record: FeedbackRecord, request: Request,
                    engine: VisualizationEngine = Depends(get_engine)):
    try:
        return engine.record_feedback(record)
    except FeedbackSubmissionError as e:
        raise _http_error(request, 400, ErrorCodes.FEEDBACK_REJECTED, str(e))


@router.post("/feedback/chart", response_model=ChartFeedbackRecord, status_code=201)
def submit_chart_feedback(record: ChartFeedbackRecord, request: Request,
                          engine: VisualizationEngine = Depends(get_engine)):
    try:
        return engine.record_chart_feedback(record)
    except FeedbackSubmissionError as e:
        raise _http_error(request, 400, ErrorCodes.FEEDBACK_REJECTED, str(e))


@router.post("/learning/run", response_model=LearningJobResult)
def run_learning_job(request: Request, engine: VisualizationEngine = Depends(get_engine)):
    result = engine.run_learning_job()
    if result.status == "failed":
        raise _http_error(request, 500, ErrorCodes.LEARNING_JOB_FAILED)
    return result


@router.get("/learning/rules", response_model=List[LearnedRule])
def get_active_rules(engine: VisualizationEngine = Depends(get_engine)):
    return engine.get_active_rules()


@router.get("/learning/confidence")
def get_confidence(column: str, type: SemanticType,
                   engine: VisualizationEngine = Depends(get_engine)) -> Dict[str, Any]:
    return {"column": column, "type": type, "confidence": engine.get_confidence(column, type)}


@router.get("/learning/status")
def learning_status(engine: VisualizationEngine = Depends(get_engine)):
    return engine.scheduler.status()
