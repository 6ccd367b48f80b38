"""
Tests unitarios para la politica de backoff exponencial.
"""
import pytest

from practice_sync.shared.utils.backoff import BackoffPolicy


class TestBackoffPolicy:
    """Tests para BackoffPolicy."""

    def test_delay_grows_exponentially(self) -> None:
        """Sin jitter el retardo se duplica por intento."""
        policy = BackoffPolicy(base_delay=1.0, max_delay=60.0, jitter_ratio=0.0)

        assert [policy.delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_delay_is_capped(self) -> None:
        policy = BackoffPolicy(base_delay=1.0, max_delay=30.0, jitter_ratio=0.0)

        assert policy.delay(10) == 30.0

    def test_jitter_stays_within_ratio(self) -> None:
        """El jitter suma como maximo jitter_ratio del retardo base."""
        low = BackoffPolicy(base_delay=2.0, max_delay=60.0, jitter_ratio=0.25, rand=lambda: 0.0)
        high = BackoffPolicy(base_delay=2.0, max_delay=60.0, jitter_ratio=0.25, rand=lambda: 1.0)

        assert low.delay(1) == 4.0
        assert high.delay(1) == 5.0

    def test_negative_attempt_uses_base(self) -> None:
        policy = BackoffPolicy(base_delay=3.0, max_delay=60.0, jitter_ratio=0.0)

        assert policy.base_for(-1) == 3.0

    @pytest.mark.parametrize("kwargs", [
        {"base_delay": -1.0, "max_delay": 10.0},
        {"base_delay": 1.0, "max_delay": -10.0},
        {"base_delay": 1.0, "max_delay": 10.0, "jitter_ratio": 1.5},
    ])
    def test_rejects_invalid_configuration(self, kwargs) -> None:
        with pytest.raises(ValueError):
            BackoffPolicy(**kwargs)
