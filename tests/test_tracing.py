"""Tests for the MLflow helpers."""

import mlflow

from conftest import make_config
from import_mapper.utils.infrastructure.mlflow import log_mapping_run, mlflow_run


def test_disabled_tracking_never_touches_mlflow(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("mlflow must not be called")

    monkeypatch.setattr(mlflow, "start_run", fail)
    config = make_config()

    with mlflow_run(run_name="disabled", config=config):
        pass
    log_mapping_run("run-1", metrics={"overall_confidence": 90.0}, config=config)


def test_tracking_errors_do_not_propagate(monkeypatch):
    def unreachable(*args, **kwargs):
        raise ConnectionError("tracking server unreachable")

    monkeypatch.setattr("import_mapper.utils.infrastructure.mlflow._autolog_initialized", True)
    monkeypatch.setattr(mlflow, "set_tracking_uri", lambda uri: None)
    monkeypatch.setattr(mlflow, "set_experiment", lambda name: None)
    monkeypatch.setattr(mlflow, "start_run", unreachable)
    config = make_config(mlflow={"enabled": True})

    log_mapping_run("run-1", metrics={"overall_confidence": 90.0}, params={"state": "accepted"}, config=config)
