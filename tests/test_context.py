from concurrent.futures import ThreadPoolExecutor

import pytest

from eksdeploy.context import RunContext
from eksdeploy.errors import VariableConflictError


def test_record_is_insert_if_absent():
    context = RunContext({"STACK_NAME": "grafana-eks"})
    assert context.record("EFS_ID", "fs-123") is True
    assert context.record("EFS_ID", "fs-123") is False
    assert context["EFS_ID"] == "fs-123"
    assert len(context) == 2


def test_conflicting_value_is_refused():
    context = RunContext()
    context.record("EFS_ID", "fs-123")
    with pytest.raises(VariableConflictError):
        context.record("EFS_ID", "fs-456")
    assert context["EFS_ID"] == "fs-123"


def test_builtins_cannot_be_overwritten():
    context = RunContext({"CLUSTER_NAME": "grafana-eks-cluster"})
    with pytest.raises(VariableConflictError):
        context.record("CLUSTER_NAME", "other")


def test_concurrent_records_insert_once():
    context = RunContext()
    with ThreadPoolExecutor(max_workers=8) as pool:
        inserted = list(pool.map(lambda _: context.record("ALB_DNS", "alb.example.com"), range(50)))
    assert inserted.count(True) == 1
    assert context.snapshot() == {"ALB_DNS": "alb.example.com"}
