from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from app.stockflow.core.errors import is_lock_timeout, setup_exception_handlers
from app.stockflow.core.metrics import metrics


def test_lock_timeout_increments_metric():
    metrics.reset()
    app = FastAPI()
    setup_exception_handlers(app)

    @app.get("/lock-timeout")
    def lock_timeout():
        raise OperationalError("UPDATE warehouse_stock", {}, Exception("database is locked"))

    with TestClient(app, raise_server_exceptions=False) as client:
        response = client.get("/lock-timeout")

    assert response.status_code == 409
    assert response.json()["code"] == "LOCK_TIMEOUT"

    content = metrics.render().content.decode("utf-8")
    if metrics.enabled:
        assert "lock_wait_timeout_total 1.0" in content
    else:
        assert "metrics_disabled" in content


def test_is_lock_timeout_ignores_other_errors():
    assert is_lock_timeout(OperationalError("SELECT 1", {}, Exception("no such table: orders"))) is False
    assert is_lock_timeout(ValueError("database is locked")) is False


def test_transfer_metrics_are_rendered():
    metrics.reset()
    metrics.increment_transfer_executed()
    metrics.increment_transfer_execution_failure("INSUFFICIENT_STOCK")

    content = metrics.render().content.decode("utf-8")
    if metrics.enabled:
        assert "transfers_executed_total 1.0" in content
        assert 'transfer_execution_failures_total{code="INSUFFICIENT_STOCK"} 1.0' in content
