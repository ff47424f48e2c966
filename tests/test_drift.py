"""Unit tests for drift.py - Drift detection."""

import pytest

from drift import DriftDetector, DriftResult, DriftState, values_equal
from policy import ABSENT, FieldPolicyTable, PolicyKind


@pytest.fixture
def detector():
    return DriftDetector(
        FieldPolicyTable(
            {
                "name": PolicyKind.IMMUTABLE,
                "dns_name": PolicyKind.SERVER_AUTHORITATIVE,
                "password": PolicyKind.WRITE_ONLY,
                "command": PolicyKind.MUTABLE,
                "replicas": PolicyKind.MUTABLE,
            }
        )
    )


class TestDriftDetector:
    """Tests for DriftDetector.detect."""

    def test_vanished_when_not_observed(self, detector):
        result = detector.detect({"command": "run"}, None)
        assert result.state == DriftState.VANISHED
        assert not result.has_drift

    def test_unchanged_when_matching(self, detector):
        result = detector.detect(
            {"name": "a", "command": "run"}, {"name": "a", "command": "run"}
        )
        assert result.state == DriftState.UNCHANGED
        assert result.drifted == []

    def test_mutable_mismatch_is_drift(self, detector):
        result = detector.detect({"command": "run"}, {"command": "serve"})
        assert result.has_drift
        assert result.drifted == ["command"]

    def test_write_only_never_drifts(self, detector):
        result = detector.detect({"password": "secret"}, {})
        assert result.state == DriftState.UNCHANGED

    def test_immutable_not_compared(self, detector):
        result = detector.detect({"name": "a"}, {"name": "b"})
        assert result.state == DriftState.UNCHANGED

    def test_absent_desired_is_unmanaged(self, detector):
        result = detector.detect(
            {"command": ABSENT, "dns_name": ABSENT}, {"command": "serve"}
        )
        assert result.state == DriftState.UNCHANGED

    def test_missing_observation_value_is_drift(self, detector):
        result = detector.detect({"replicas": 2}, {})
        assert result.drifted == ["replicas"]

    def test_drifted_in_schema_order(self, detector):
        result = detector.detect(
            {"replicas": 2, "command": "run", "dns_name": "a.internal"},
            {"replicas": 3, "command": "serve", "dns_name": "b.internal"},
        )
        assert result.drifted == ["dns_name", "command", "replicas"]

    def test_default_result(self):
        assert DriftResult().state == DriftState.UNCHANGED


class TestValuesEqual:
    """Tests for values_equal."""

    def test_lists_and_tuples(self):
        assert values_equal(["a", "b"], ("a", "b"))
        assert not values_equal(["a", "b"], ["b", "a"])
        assert not values_equal(["a"], ["a", "b"])

    def test_int_and_float(self):
        assert values_equal(1, 1.0)

    def test_bool_is_not_int(self):
        assert not values_equal(True, 1)
        assert values_equal(False, False)

    def test_absent_differs_from_value(self):
        assert not values_equal("x", ABSENT)
