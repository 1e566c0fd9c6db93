"""
Metrics endpoint for performance monitoring.
"""
from fastapi import APIRouter, Depends

from vizengine.core.performance import PerformanceMonitor
from vizengine.services.engine import VisualizationEngine, get_engine

router = APIRouter()


@router.get("/metrics")
async def get_metrics(engine: VisualizationEngine = Depends(get_engine)):
    """
    Get performance metrics and learning job state.

    Returns timing statistics for all tracked engine operations and
    requests, the number of active learned rules and the scheduler status.
    """
    return {
        'performance': PerformanceMonitor.get_all_metrics(),
        'learning': {
            'active_rules': len(engine.get_active_rules()),
            'scheduler': engine.scheduler.status(),
        }
    }
