"""Tests for the plain-text state report."""

from datetime import datetime

from stack_deployer.config import AppConfig
from stack_deployer.report import write_state_report

from conftest import FakeInvoker


def test_report_sections_and_name(tmp_path):
    events = "\n".join(f"event {i}" for i in range(15))
    invoker = FakeInvoker({
        "kubectl get pods,svc,ingress,hpa": "pod/devops-app-1 Running",
        "kubectl get pods,svc -n monitoring": "pod/grafana-0 Running",
        "kubectl logs": "GET /health 200",
        "kubectl get events": events,
    })
    path = write_state_report(invoker, AppConfig(), tmp_path, now=datetime(2024, 5, 1, 12, 30, 0))

    assert path.name == "deploy-report-20240501-123000.txt"
    text = path.read_text(encoding="utf-8")
    for heading in ("Kubernetes Resources:", "Monitoring Stack:", "Application Logs", "Events:"):
        assert heading in text
    assert "pod/grafana-0 Running" in text
    assert "event 14" in text
    assert "event 4\n" not in text


def test_report_records_unavailable_sections(tmp_path):
    invoker = FakeInvoker({"kubectl logs": 1})
    path = write_state_report(invoker, AppConfig(), tmp_path)

    assert "(unavailable:" in path.read_text(encoding="utf-8")
