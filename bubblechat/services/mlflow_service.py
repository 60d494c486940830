"""
services/mlflow_service.py
--------------------------
MLflow tracking for completion-service calls.

One run per call, grouped under the "bubblechat" experiment:
  params   model, kind (chat | summary), mock flag, environment
  metrics  latency, prompt / reply size, history depth, candidate count,
           whether the provider blocked the prompt
  tags     kind, user (chat calls only)

Tracking is opt-in (MLFLOW_ENABLED) and mlflow is an optional extra
(`pip install .[tracking]`). With either missing every function here is a
no-op, and a tracking failure is logged, never raised.
"""

from dataclasses import asdict, dataclass
from typing import Optional

from bubblechat.core.config import settings
from bubblechat.core.logging import get_logger

logger = get_logger(__name__)

EXPERIMENT_NAME = "bubblechat"


@dataclass
class CallMetrics:
    latency_ms: float
    prompt_chars: int
    response_chars: int
    history_turns: int = 0
    candidates: int = 1
    blocked: bool = False


def _get_mlflow():
    """The mlflow module, or None when tracking is off or not installed."""
    if not settings.MLFLOW_ENABLED:
        return None
    try:
        import mlflow
        return mlflow
    except ImportError:
        logger.warning("MLFLOW_ENABLED but mlflow is not installed; run: pip install .[tracking]")
        return None


def setup_mlflow() -> None:
    """Point mlflow at MLFLOW_TRACKING_URI and select the experiment. Called at startup."""
    mlflow = _get_mlflow()
    if mlflow is None:
        return

    mlflow.set_tracking_uri(settings.MLFLOW_TRACKING_URI)
    if mlflow.get_experiment_by_name(EXPERIMENT_NAME) is None:
        mlflow.create_experiment(EXPERIMENT_NAME)
        logger.info("MLflow experiment created", experiment=EXPERIMENT_NAME)
    mlflow.set_experiment(EXPERIMENT_NAME)
    logger.info("MLflow tracking initialised", uri=settings.MLFLOW_TRACKING_URI)


def track_llm_call(
    kind: str,
    metrics: CallMetrics,
    mock: bool,
    user_id: Optional[str] = None,
) -> Optional[str]:
    """
    Record one completion call.

    Returns:
        The MLflow run id, or None if nothing was recorded.
    """
    mlflow = _get_mlflow()
    if mlflow is None:
        return None

    model = settings.LLM_SUMMARY_MODEL if kind == "summary" else settings.LLM_MODEL
    try:
        mlflow.set_experiment(EXPERIMENT_NAME)
        with mlflow.start_run(run_name=f"{kind}-call") as run:
            mlflow.log_params({
                "model":       "mock" if mock else model,
                "kind":        kind,
                "mock_mode":   mock,
                "environment": settings.APP_ENV,
            })
            mlflow.log_metrics({
                name: float(value) for name, value in asdict(metrics).items()
            })
            tags = {"kind": kind}
            if user_id:
                tags["user"] = user_id
            mlflow.set_tags(tags)
            return run.info.run_id
    except Exception as exc:
        logger.warning("MLflow tracking failed (non-fatal)", kind=kind, error=str(exc))
        return None
