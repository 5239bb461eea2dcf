"""Central MLflow setup for DSPy tracing and mapping-run metrics."""

import logging
from contextlib import contextmanager
from typing import Dict, Optional

import mlflow

from import_mapper.config import AppConfig, get_config

logger = logging.getLogger(__name__)

# Track if autolog has been initialized
_autolog_initialized = False


def setup_mlflow_tracing(experiment_name: Optional[str] = None, config: Optional[AppConfig] = None):
    """
    Set up MLflow tracing for DSPy.

    Enables DSPy autologging so every external inference call is traced.
    Does nothing when MLflow is disabled in config.

    Args:
        experiment_name: Name of the MLflow experiment. If None, uses config default.
        config: Application config (defaults to the global config)
    """
    global _autolog_initialized

    config = config or get_config()
    if not config.mlflow.enabled:
        return

    if config.mlflow.tracking_uri:
        mlflow.set_tracking_uri(config.mlflow.tracking_uri)

    mlflow.set_experiment(experiment_name or config.mlflow.experiment_name)

    if not _autolog_initialized:
        mlflow.dspy.autolog()
        _autolog_initialized = True


@contextmanager
def mlflow_run(
    experiment_name: Optional[str] = None,
    run_name: Optional[str] = None,
    config: Optional[AppConfig] = None,
):
    """
    Context manager grouping operations under a single MLflow run.

    Yields without doing anything when MLflow is disabled. Runs nest under
    an already active run.

    Example:
        >>> with mlflow_run(experiment_name="field_mapping", run_name="upload-42"):
        ...     orchestrator.run(content)
    """
    config = config or get_config()

    if not config.mlflow.enabled:
        yield
        return

    setup_mlflow_tracing(experiment_name=experiment_name, config=config)
    with mlflow.start_run(run_name=run_name or config.mlflow.run_name, nested=True):
        yield


def log_mapping_run(
    run_id: str,
    metrics: Dict[str, float],
    params: Optional[Dict[str, str]] = None,
    config: Optional[AppConfig] = None,
) -> None:
    """
    Record the metrics of one mapping run.

    Tracking failures are logged and swallowed; they never affect a run.

    Args:
        run_id: Mapping run identifier (used as MLflow run name)
        metrics: Numeric metrics (confidence, cost, elapsed time, counts)
        params: Optional string parameters (final state, strategies)
        config: Application config (defaults to the global config)
    """
    config = config or get_config()
    if not config.mlflow.enabled:
        return

    try:
        with mlflow_run(experiment_name="field_mapping", run_name=run_id, config=config):
            mlflow.log_metrics(metrics)
            if params:
                mlflow.log_params(params)
    except Exception as e:
        logger.warning(f"Failed to log mapping run {run_id} to MLflow: {e}")
