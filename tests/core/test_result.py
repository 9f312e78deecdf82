"""
Tests for the Result[P] envelope.

Validates:
    - Generic payloads
    - Frozen immutability
    - warnings default and has_warning()
"""

from dataclasses import FrozenInstanceError, dataclass

import pytest

from pymultifit.core.result import Result
from pymultifit.core.compute.timing import Timer


@dataclass(frozen=True)
class FakeParams:
    """Minimal payload for testing."""
    value: float


def _result(**kwargs):
    defaults = dict(
        params=FakeParams(value=1.0),
        info={},
        timing=None,
        backend_name="cpu",
    )
    defaults.update(kwargs)
    return Result(**defaults)


class TestResultConstruction:

    def test_basic_creation(self):
        result = _result(
            params=FakeParams(value=42.0),
            info={"n_tests": 57},
            timing={"total_seconds": 0.01, "tree": 0.008},
            backend_name="cpu_multifit",
        )
        assert result.params.value == 42.0
        assert result.info["n_tests"] == 57
        assert result.timing["tree"] == 0.008
        assert result.backend_name == "cpu_multifit"

    def test_warnings_default_empty(self):
        result = _result()
        assert result.warnings == ()
        assert isinstance(result.warnings, tuple)


class TestHasWarning:

    def test_substring_match(self):
        result = _result(warnings=("Constant margins excluded from testing",))
        assert result.has_warning("Constant margins")
        assert not result.has_warning("guards")

    def test_no_warnings(self):
        assert not _result().has_warning("anything")


class TestImmutability:

    def test_cannot_set_params(self):
        result = _result()
        with pytest.raises(FrozenInstanceError):
            result.params = FakeParams(value=2.0)


class TestTimer:

    def test_sections_accumulate(self):
        timer = Timer()
        timer.start()
        with timer.section('tree'):
            pass
        with timer.section('tree'):
            pass
        with timer.section('adjust'):
            pass
        timer.stop()
        timing = timer.result()
        assert set(timing) == {'total_seconds', 'tree', 'adjust'}
        assert timing['tree'] >= 0.0

    def test_result_before_stop_raises(self):
        timer = Timer()
        timer.start()
        with pytest.raises(RuntimeError):
            timer.result()

    def test_stop_before_start_raises(self):
        with pytest.raises(RuntimeError):
            Timer().stop()
