"""Tests for the recovery escalation state machine.

Exercises the real RecoveryEscalator with mocked container, device and
probe collaborators. time.sleep is patched out everywhere.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from unittest.mock import MagicMock, call, patch

import pytest

from accelwatch.config.watchdog import WatchdogConfig
from accelwatch.device import DeviceController
from accelwatch.errors import (
    ContainerAbsent,
    ContainerCommandError,
    ContainerEngineError,
    PrivilegedActionFailed,
)
from accelwatch.models import HealthCheckResult, HealthStatus, Target
from accelwatch.probe import HealthProbe
from accelwatch.recovery import (
    TRANSITIONS,
    EscalationEvent,
    EscalationState,
    InvalidTransition,
    RecoveryAttempt,
    RecoveryEscalator,
    RecoveryOutcome,
    RecoveryTier,
)

pytestmark = pytest.mark.unit

HEALTHY = HealthCheckResult(HealthStatus.HEALTHY)
HUNG = HealthCheckResult(HealthStatus.HUNG, detail="timed out")


@pytest.fixture(autouse=True)
def no_sleep() -> Iterator[MagicMock]:
    with patch("accelwatch.recovery.time.sleep") as mock_sleep:
        yield mock_sleep


@pytest.fixture
def device() -> MagicMock:
    return MagicMock(spec=DeviceController)


@pytest.fixture
def probe() -> MagicMock:
    """Probe whose re-check after a soft restart reports a hang."""
    probe = MagicMock(spec=HealthProbe)
    probe.check.return_value = HUNG
    return probe


@pytest.fixture
def escalator(
    target: Target,
    mock_containers: MagicMock,
    device: MagicMock,
    probe: MagicMock,
    watchdog_config: WatchdogConfig,
) -> RecoveryEscalator:
    return RecoveryEscalator(target, mock_containers, device, probe, config=watchdog_config)


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------


class TestTransitionTable:
    def test_every_state_is_reachable(self) -> None:
        targets = set(TRANSITIONS.values())
        assert targets == set(EscalationState)

    def test_cooldown_only_left_by_expiry(self) -> None:
        leaving = {
            event
            for (state, event), new_state in TRANSITIONS.items()
            if state is EscalationState.COOLDOWN and new_state is not EscalationState.COOLDOWN
        }
        assert leaving == {EscalationEvent.COOLDOWN_EXPIRED}

    def test_module_reload_always_ends_in_cooldown(self) -> None:
        outgoing = {
            new_state
            for (state, _), new_state in TRANSITIONS.items()
            if state is EscalationState.TIER_MODULE_RELOAD
        }
        assert outgoing == {EscalationState.COOLDOWN}

    def test_invalid_transition_raises(self, escalator: RecoveryEscalator) -> None:
        with pytest.raises(InvalidTransition):
            escalator._transition(EscalationEvent.RELOADED)
        assert escalator.state is EscalationState.IDLE


# ---------------------------------------------------------------------------
# Healthy path
# ---------------------------------------------------------------------------


class TestHealthy:
    def test_initial_state(self, escalator: RecoveryEscalator) -> None:
        assert escalator.state is EscalationState.IDLE
        assert escalator.tier is RecoveryTier.NONE
        assert len(escalator.history) == 0
        assert escalator.cooldown_remaining == 0.0

    def test_repeated_healthy_never_recovers(
        self, escalator: RecoveryEscalator, mock_containers: MagicMock, device: MagicMock
    ) -> None:
        for _ in range(10):
            assert escalator.handle(HEALTHY) is None
        assert escalator.state is EscalationState.IDLE
        mock_containers.restart.assert_not_called()
        assert device.method_calls == []

    def test_absent_raises(self, escalator: RecoveryEscalator) -> None:
        with pytest.raises(ContainerAbsent):
            escalator.handle(HealthCheckResult(HealthStatus.ABSENT))


# ---------------------------------------------------------------------------
# Soft restart tier
# ---------------------------------------------------------------------------


class TestSoftRestart:
    def test_first_hang_restarts_container(
        self,
        escalator: RecoveryEscalator,
        mock_containers: MagicMock,
        no_sleep: MagicMock,
        watchdog_config: WatchdogConfig,
    ) -> None:
        attempt = escalator.handle(HUNG)

        mock_containers.restart.assert_called_once_with("claude-npu-dev")
        no_sleep.assert_any_call(watchdog_config.restart_grace)
        assert attempt is not None
        assert attempt.tier is RecoveryTier.SOFT_RESTART
        assert attempt.outcome is RecoveryOutcome.FAILED
        assert escalator.state is EscalationState.TIER_SOFT_RESTART
        assert escalator.tier is RecoveryTier.SOFT_RESTART

    def test_restart_resolves_hang(
        self, escalator: RecoveryEscalator, probe: MagicMock
    ) -> None:
        probe.check.return_value = HEALTHY

        attempt = escalator.handle(HUNG)

        assert attempt is not None
        assert attempt.outcome is RecoveryOutcome.SUCCEEDED
        assert escalator.state is EscalationState.IDLE
        assert escalator.tier is RecoveryTier.NONE

    def test_healthy_after_soft_restart_resets(
        self, escalator: RecoveryEscalator, device: MagicMock
    ) -> None:
        escalator.handle(HUNG)
        assert escalator.handle(HEALTHY) is None

        assert escalator.state is EscalationState.IDLE
        assert escalator.tier is RecoveryTier.NONE
        device.unload_module.assert_not_called()

    def test_restart_command_failure_recorded(
        self, escalator: RecoveryEscalator, mock_containers: MagicMock, probe: MagicMock
    ) -> None:
        mock_containers.restart.side_effect = ContainerCommandError("restart", "claude-npu-dev", "boom")

        attempt = escalator.handle(HUNG)

        assert attempt is not None
        assert attempt.outcome is RecoveryOutcome.FAILED
        assert "boom" in attempt.detail
        assert escalator.state is EscalationState.TIER_SOFT_RESTART
        probe.check.assert_not_called()

    def test_container_removed_during_recheck(
        self, escalator: RecoveryEscalator, probe: MagicMock
    ) -> None:
        probe.check.return_value = HealthCheckResult(HealthStatus.ABSENT)
        with pytest.raises(ContainerAbsent):
            escalator.handle(HUNG)


# ---------------------------------------------------------------------------
# Module reload tier
# ---------------------------------------------------------------------------


class TestModuleReload:
    def test_second_hang_reloads_module(
        self, escalator: RecoveryEscalator, mock_containers: MagicMock, device: MagicMock
    ) -> None:
        escalator.handle(HUNG)
        mock_containers.reset_mock()

        attempt = escalator.handle(HUNG)

        assert device.method_calls == [call.unload_module("amdxdna"), call.load_module("amdxdna")]
        mock_containers.restart.assert_called_once_with("claude-npu-dev")
        assert attempt is not None
        assert attempt.tier is RecoveryTier.MODULE_RELOAD
        assert attempt.outcome is RecoveryOutcome.SUCCEEDED
        assert escalator.state is EscalationState.COOLDOWN
        assert escalator.tier is RecoveryTier.MODULE_RELOAD
        assert escalator.cooldown_remaining > 0

    def test_unload_pauses_before_reload(
        self,
        escalator: RecoveryEscalator,
        no_sleep: MagicMock,
        watchdog_config: WatchdogConfig,
    ) -> None:
        watchdog_config.module_reload_pause = 1.5
        watchdog_config.post_reload_settle = 2.5
        escalator.handle(HUNG)
        no_sleep.reset_mock()

        escalator.handle(HUNG)

        assert no_sleep.call_args_list == [call(1.5), call(2.5)]

    def test_privileged_failure_still_enters_cooldown(
        self, escalator: RecoveryEscalator, device: MagicMock, mock_containers: MagicMock
    ) -> None:
        device.load_module.side_effect = PrivilegedActionFailed(
            "modprobe amdxdna", "sudo: a password is required"
        )
        escalator.handle(HUNG)

        attempt = escalator.handle(HUNG)

        assert attempt is not None
        assert attempt.outcome is RecoveryOutcome.FAILED
        assert "password is required" in attempt.detail
        assert escalator.state is EscalationState.COOLDOWN
        # The container is still restarted after a failed reload
        assert mock_containers.restart.call_count == 2

    def test_unload_failure_does_not_stop_reload(
        self, escalator: RecoveryEscalator, device: MagicMock
    ) -> None:
        device.unload_module.side_effect = PrivilegedActionFailed("rmmod amdxdna", "in use")
        escalator.handle(HUNG)

        attempt = escalator.handle(HUNG)

        device.load_module.assert_called_once_with("amdxdna")
        assert attempt is not None
        assert attempt.outcome is RecoveryOutcome.FAILED

    def test_pci_unbind_and_rebind(
        self,
        mock_containers: MagicMock,
        device: MagicMock,
        probe: MagicMock,
        watchdog_config: WatchdogConfig,
    ) -> None:
        target = Target("claude-npu-dev", "/dev/accel/accel0", "amdxdna", pci_address="0000:c5:00.1")
        escalator = RecoveryEscalator(target, mock_containers, device, probe, config=watchdog_config)
        escalator.handle(HUNG)

        with patch.object(escalator, "_is_bound", return_value=False):
            escalator.handle(HUNG)

        assert device.method_calls == [
            call.unbind("amdxdna", "0000:c5:00.1"),
            call.unload_module("amdxdna"),
            call.load_module("amdxdna"),
            call.bind("amdxdna", "0000:c5:00.1"),
        ]

    def test_pci_already_bound_after_modprobe(
        self,
        mock_containers: MagicMock,
        device: MagicMock,
        probe: MagicMock,
        watchdog_config: WatchdogConfig,
    ) -> None:
        target = Target("claude-npu-dev", "/dev/accel/accel0", "amdxdna", pci_address="0000:c5:00.1")
        escalator = RecoveryEscalator(target, mock_containers, device, probe, config=watchdog_config)
        escalator.handle(HUNG)

        with patch.object(escalator, "_is_bound", return_value=True):
            escalator.handle(HUNG)

        device.bind.assert_not_called()

    def test_container_removed_during_reload(
        self, escalator: RecoveryEscalator, mock_containers: MagicMock
    ) -> None:
        escalator.handle(HUNG)
        mock_containers.restart.side_effect = ContainerAbsent("claude-npu-dev")

        with pytest.raises(ContainerAbsent):
            escalator.handle(HUNG)

        assert escalator.state is EscalationState.COOLDOWN
        assert escalator.history[-1].outcome is RecoveryOutcome.FAILED


# ---------------------------------------------------------------------------
# Cooldown
# ---------------------------------------------------------------------------


class TestCooldown:
    def _reach_cooldown(self, escalator: RecoveryEscalator) -> None:
        escalator.handle(HUNG)
        escalator.handle(HUNG)
        assert escalator.state is EscalationState.COOLDOWN

    def test_hang_during_cooldown_not_escalated(
        self, escalator: RecoveryEscalator, mock_containers: MagicMock, device: MagicMock
    ) -> None:
        self._reach_cooldown(escalator)
        mock_containers.reset_mock()
        device.reset_mock()

        for _ in range(5):
            assert escalator.handle(HUNG) is None

        mock_containers.restart.assert_not_called()
        assert device.method_calls == []
        assert escalator.state is EscalationState.COOLDOWN

    def test_healthy_during_cooldown_resets_tier_only(self, escalator: RecoveryEscalator) -> None:
        self._reach_cooldown(escalator)

        assert escalator.handle(HEALTHY) is None

        assert escalator.tier is RecoveryTier.NONE
        assert escalator.state is EscalationState.COOLDOWN

    def test_cooldown_expiry_returns_to_idle(self, escalator: RecoveryEscalator) -> None:
        self._reach_cooldown(escalator)
        escalator.cooldown_until = time.monotonic() - 1

        assert escalator.handle(HEALTHY) is None

        assert escalator.state is EscalationState.IDLE
        assert escalator.tier is RecoveryTier.NONE

    def test_hang_after_cooldown_starts_new_episode(
        self, escalator: RecoveryEscalator, mock_containers: MagicMock, device: MagicMock
    ) -> None:
        self._reach_cooldown(escalator)
        escalator.cooldown_until = time.monotonic() - 1
        device.reset_mock()

        attempt = escalator.handle(HUNG)

        assert attempt is not None
        assert attempt.tier is RecoveryTier.SOFT_RESTART
        assert escalator.state is EscalationState.TIER_SOFT_RESTART
        device.unload_module.assert_not_called()

    def test_zero_cooldown_expires_on_next_cycle(
        self, escalator: RecoveryEscalator, watchdog_config: WatchdogConfig
    ) -> None:
        watchdog_config.cooldown = 0
        self._reach_cooldown(escalator)

        escalator.handle(HEALTHY)

        assert escalator.state is EscalationState.IDLE


# ---------------------------------------------------------------------------
# Escalation properties
# ---------------------------------------------------------------------------


class TestEscalationProperties:
    @pytest.mark.parametrize("hangs", [1, 2, 3, 4, 7])
    def test_tier_after_consecutive_hangs(self, escalator: RecoveryEscalator, hangs: int) -> None:
        attempts = 0
        for _ in range(hangs):
            if escalator.handle(HUNG) is not None:
                attempts += 1

        assert escalator.tier == min(hangs, 2)
        # At most one attempt per handled cycle, and none once cooling down
        assert attempts == min(hangs, 2)
        assert len(escalator.history) == attempts

    @pytest.mark.parametrize("hangs", [1, 2, 5])
    def test_single_healthy_resets_tier(self, escalator: RecoveryEscalator, hangs: int) -> None:
        for _ in range(hangs):
            escalator.handle(HUNG)

        escalator.handle(HEALTHY)

        assert escalator.tier is RecoveryTier.NONE

    def test_tier_never_decreases_within_episode(self, escalator: RecoveryEscalator) -> None:
        tiers = []
        for _ in range(6):
            escalator.handle(HUNG)
            tiers.append(escalator.tier)
        assert tiers == sorted(tiers)

    def test_three_hangs_scenario(self, escalator: RecoveryEscalator) -> None:
        first = escalator.handle(HUNG)
        second = escalator.handle(HUNG)
        third = escalator.handle(HUNG)

        assert first is not None and first.tier is RecoveryTier.SOFT_RESTART
        assert first.outcome is RecoveryOutcome.FAILED
        assert second is not None and second.tier is RecoveryTier.MODULE_RELOAD
        assert third is None
        assert escalator.state is EscalationState.COOLDOWN


# Container engine failures mid-recovery
# ---------------------------------------------------------------------------


class TestEngineErrorsDuringRecovery:
    def test_restart_engine_error_records_soft_restart(
        self, escalator: RecoveryEscalator, mock_containers: MagicMock, probe: MagicMock
    ) -> None:
        mock_containers.restart.side_effect = ContainerEngineError("podman ps timed out")

        attempt = escalator.handle(HUNG)

        assert attempt is not None
        assert attempt.tier is RecoveryTier.SOFT_RESTART
        assert attempt.outcome is RecoveryOutcome.FAILED
        assert "podman ps timed out" in attempt.detail
        assert list(escalator.history) == [attempt]
        assert escalator.state is EscalationState.TIER_SOFT_RESTART
        probe.check.assert_not_called()

    def test_recheck_engine_error_records_soft_restart(
        self, escalator: RecoveryEscalator, probe: MagicMock
    ) -> None:
        probe.check.side_effect = ContainerEngineError("cannot connect")

        attempt = escalator.handle(HUNG)

        assert attempt is not None
        assert attempt.outcome is RecoveryOutcome.FAILED
        assert "cannot connect" in attempt.detail
        assert len(escalator.history) == 1

    def test_restart_engine_error_during_reload_enters_cooldown(
        self, escalator: RecoveryEscalator, mock_containers: MagicMock
    ) -> None:
        escalator.handle(HUNG)
        mock_containers.restart.side_effect = ContainerEngineError("podman ps timed out")

        attempt = escalator.handle(HUNG)

        assert escalator.state is EscalationState.COOLDOWN
        assert attempt is not None
        assert attempt.tier is RecoveryTier.MODULE_RELOAD
        assert escalator.history[-1].outcome is RecoveryOutcome.FAILED
        assert "podman ps timed out" in escalator.history[-1].detail

    def test_next_cycle_after_failed_reload_is_handled(
        self, escalator: RecoveryEscalator, mock_containers: MagicMock
    ) -> None:
        escalator.handle(HUNG)
        mock_containers.restart.side_effect = ContainerEngineError("podman ps timed out")
        escalator.handle(HUNG)

        assert escalator.handle(HEALTHY) is None
        assert escalator.handle(HUNG) is None
        assert escalator.state is EscalationState.COOLDOWN

    def test_unexpected_error_during_reload_still_enters_cooldown(
        self, escalator: RecoveryEscalator, device: MagicMock
    ) -> None:
        escalator.handle(HUNG)
        device.load_module.side_effect = OSError("sudo missing")

        with pytest.raises(OSError):
            escalator.handle(HUNG)

        assert escalator.state is EscalationState.COOLDOWN
        assert escalator.history[-1].detail == "module reload interrupted"

    def test_one_record_per_reload(self, escalator: RecoveryEscalator, mock_containers: MagicMock) -> None:
        escalator.handle(HUNG)
        mock_containers.restart.side_effect = ContainerEngineError("podman ps timed out")
        escalator.handle(HUNG)

        tiers = [attempt.tier for attempt in escalator.history]
        assert tiers == [RecoveryTier.SOFT_RESTART, RecoveryTier.MODULE_RELOAD]


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


class TestHistory:
    def test_history_is_bounded(
        self, target: Target, mock_containers: MagicMock, device: MagicMock, probe: MagicMock
    ) -> None:
        config = WatchdogConfig(history_size=2, cooldown=0, restart_grace=0)
        escalator = RecoveryEscalator(target, mock_containers, device, probe, config=config)
        for _ in range(6):
            escalator.handle(HUNG)
        assert len(escalator.history) == 2

    def test_on_attempt_callback(
        self,
        target: Target,
        mock_containers: MagicMock,
        device: MagicMock,
        probe: MagicMock,
        watchdog_config: WatchdogConfig,
    ) -> None:
        seen: list[RecoveryAttempt] = []
        escalator = RecoveryEscalator(
            target, mock_containers, device, probe, config=watchdog_config, on_attempt=seen.append
        )
        escalator.handle(HUNG)
        assert seen == list(escalator.history)

    def test_attempt_is_immutable(self) -> None:
        attempt = RecoveryAttempt(RecoveryTier.SOFT_RESTART, RecoveryOutcome.FAILED, "x")
        with pytest.raises(AttributeError):
            attempt.outcome = RecoveryOutcome.SUCCEEDED  # type: ignore[misc]

    def test_attempt_to_dict(self) -> None:
        attempt = RecoveryAttempt(RecoveryTier.MODULE_RELOAD, RecoveryOutcome.SUCCEEDED, "ok", timestamp=1.0)
        assert attempt.to_dict() == {
            "tier": "MODULE_RELOAD",
            "outcome": "succeeded",
            "detail": "ok",
            "timestamp": 1.0,
        }
