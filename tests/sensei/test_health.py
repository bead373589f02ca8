"""Tests for health status and the observable holder."""

from rolodojo.sensei import HealthState, HealthStatus, ObservableValue


class TestHealthStatus:
    def test_default_is_unknown(self):
        status = HealthStatus()
        assert status.state is HealthState.UNKNOWN
        assert status.is_healthy is False

    def test_healthy_needs_model(self):
        assert HealthStatus(HealthState.HEALTHY, resolved_model="llama3.3").is_healthy
        assert not HealthStatus(HealthState.HEALTHY).is_healthy
        assert not HealthStatus(HealthState.DEGRADED_NO_MODEL, resolved_model="x").is_healthy

    def test_check_time_is_not_part_of_equality(self):
        first = HealthStatus(HealthState.HEALTHY, resolved_model="llama3.3", checked_at=1.0)
        second = HealthStatus(HealthState.HEALTHY, resolved_model="llama3.3", checked_at=2.0)
        assert first == second

    def test_repeated_check_notifies_once(self):
        seen = []
        holder = ObservableValue(HealthStatus())
        holder.subscribe(seen.append)

        holder.set(HealthStatus(HealthState.HEALTHY, resolved_model="llama3.3", checked_at=1.0))
        holder.set(HealthStatus(HealthState.HEALTHY, resolved_model="llama3.3", checked_at=2.0))

        assert len(seen) == 1
        assert holder.value.checked_at == 2.0


class TestObservableValue:
    """Listeners see changes only."""

    def test_notifies_on_change(self):
        seen = []
        holder = ObservableValue(1)
        holder.subscribe(seen.append)

        holder.set(2)
        holder.set(2)
        holder.set(3)

        assert holder.value == 3
        assert seen == [2, 3]

    def test_unsubscribe(self):
        seen = []
        holder = ObservableValue("a")
        unsubscribe = holder.subscribe(seen.append)
        unsubscribe()
        unsubscribe()

        holder.set("b")

        assert seen == []

    def test_failing_listener_does_not_block_others(self):
        seen = []
        holder = ObservableValue(0)

        def broken(value):
            raise RuntimeError("boom")

        holder.subscribe(broken)
        holder.subscribe(seen.append)
        holder.set(1)

        assert seen == [1]
