from datetime import timedelta

from driver_hours.config import AlertSettings
from driver_hours.models import ActivityCategory, RuleKind
from driver_hours.monitor import ComplianceMonitor

from conftest import T0, hours


def lead_key(rule: RuleKind, episode: str) -> str:
    return f"lead:{rule.value}:{episode}"


def start_driving(monitor: ComplianceMonitor) -> str:
    session_id = monitor.manager.start_program(T0)
    monitor.manager.set_activity(ActivityCategory.DRIVING, T0)
    return session_id


class ExplodingSink:
    def present(self, alert_key, message, *, persistent, urgent, actions):
        raise RuntimeError("display unavailable")


class TestArming:
    def test_timers_fire_a_lead_time_before_each_threshold(self, monitor):
        start_driving(monitor)
        armed = monitor.scheduler.armed()

        assert set(armed) == set(RuleKind)
        assert armed[RuleKind.MAX_DRIVING].fire_at == T0 + hours(8)
        assert armed[RuleKind.MANDATORY_BREAK].fire_at == T0 + hours(4)
        assert armed[RuleKind.DAILY_REST].fire_at == T0 + hours(12)
        assert armed[RuleKind.MANDATORY_BREAK].handle.delay == 4 * 3600

    def test_driving_timer_waits_for_driving(self, monitor):
        monitor.manager.start_program(T0)
        monitor.manager.set_activity(ActivityCategory.WORK, T0)
        assert RuleKind.MAX_DRIVING not in monitor.scheduler.armed()

    def test_recomputing_without_changes_is_idempotent(self, monitor, timers):
        start_driving(monitor)
        before = {rule: timer.key for rule, timer in monitor.scheduler.armed().items()}
        created = len(timers.created)

        monitor.scheduler.on_topology_change(T0)
        monitor.scheduler.on_topology_change(T0 + hours(1))

        after = monitor.scheduler.armed()
        assert {rule: timer.key for rule, timer in after.items()} == before
        assert len(timers.created) == created

    def test_disabled_compliance_alerts_arm_nothing(self, clock, timers, sink, store):
        monitor = ComplianceMonitor(
            store=store,
            clock=clock,
            sink=sink,
            timer_factory=timers,
            settings=AlertSettings(compliance_alerts=False),
        )
        start_driving(monitor)
        assert monitor.scheduler.armed() == {}


class TestDelivery:
    def test_timer_delivers_warning_once(self, monitor, clock, sink):
        session_id = start_driving(monitor)
        handle = monitor.scheduler.armed()[RuleKind.MANDATORY_BREAK].handle
        key = lead_key(RuleKind.MANDATORY_BREAK, f"{session_id}@{T0.isoformat()}")

        clock.set(T0 + hours(4))
        handle.fire()

        assert monitor.alerts.is_active(key)
        delivered = [item for item in sink.presented if item["key"] == key]
        assert delivered[0]["message"] == "Mandatory break required in 30 minutes!"
        assert delivered[0]["urgent"] is True
        assert delivered[0]["actions"] == ("break",)

        monitor.scheduler.on_periodic_tick(T0 + hours(4) + timedelta(minutes=1))
        monitor.scheduler.on_topology_change(T0 + hours(4) + timedelta(minutes=2))

        assert sink.keys().count(key) == 1
        assert RuleKind.MANDATORY_BREAK not in monitor.scheduler.armed()

    def test_late_arming_delivers_immediately(self, monitor, sink):
        monitor.manager.start_program(T0)
        monitor.manager.set_activity(ActivityCategory.WORK, T0)
        monitor.manager.set_activity(
            ActivityCategory.DRIVING, T0 + timedelta(hours=4, minutes=10)
        )

        messages = [item["message"] for item in sink.presented]
        assert "Mandatory break required in 20 minutes!" in messages

    def test_crossed_threshold_delivers_violation(self, monitor):
        session_id = start_driving(monitor)
        monitor.manager.set_activity(ActivityCategory.WORK, T0 + hours(5))

        key = f"violation:MANDATORY_BREAK_REQUIRED:{session_id}@{T0.isoformat()}"
        assert monitor.alerts.is_active(key)
        assert RuleKind.MANDATORY_BREAK not in monitor.scheduler.armed()

    def test_violation_is_delivered_once_per_episode(self, monitor, sink):
        session_id = start_driving(monitor)
        key = f"violation:MANDATORY_BREAK_REQUIRED:{session_id}@{T0.isoformat()}"

        monitor.scheduler.on_periodic_tick(T0 + hours(4.5))
        monitor.scheduler.on_periodic_tick(T0 + hours(4.75))

        assert sink.keys().count(key) == 1

    def test_early_warning_on_periodic_tick(self, monitor, sink):
        session_id = start_driving(monitor)
        monitor.scheduler.on_periodic_tick(T0 + hours(3.7))

        key = f"warning:APPROACHING_MANDATORY_BREAK:{session_id}@{T0.isoformat()}"
        assert key in sink.keys()
        warning = [item for item in sink.presented if item["key"] == key][0]
        assert warning["persistent"] is False

    def test_sink_failure_is_not_fatal(self, clock, timers, store):
        monitor = ComplianceMonitor(
            store=store, clock=clock, sink=ExplodingSink(), timer_factory=timers
        )
        start_driving(monitor)
        monitor.manager.set_activity(ActivityCategory.WORK, T0 + hours(5))

        assert monitor.manager.current_activity().category is ActivityCategory.WORK
        assert len(monitor.alerts.active()) == 1


class TestReprojection:
    def test_break_cancels_pending_break_warning(self, monitor, clock, sink):
        session_id = start_driving(monitor)
        handle = monitor.scheduler.armed()[RuleKind.MANDATORY_BREAK].handle

        clock.set(T0 + hours(3.9))
        monitor.manager.set_activity(ActivityCategory.BREAK)

        assert handle.cancelled
        assert RuleKind.MANDATORY_BREAK not in monitor.scheduler.armed()

        clock.set(T0 + hours(4))
        handle.fire()
        assert monitor.scheduler.on_timer_fire(RuleKind.MANDATORY_BREAK) is False

        key = lead_key(RuleKind.MANDATORY_BREAK, f"{session_id}@{T0.isoformat()}")
        assert key not in sink.keys()

    def test_driving_timer_cancelled_when_driving_stops(self, monitor):
        start_driving(monitor)
        handle = monitor.scheduler.armed()[RuleKind.MAX_DRIVING].handle

        monitor.manager.set_activity(ActivityCategory.WORK, T0 + hours(2))
        assert handle.cancelled
        assert RuleKind.MAX_DRIVING not in monitor.scheduler.armed()

        monitor.manager.set_activity(ActivityCategory.DRIVING, T0 + hours(3))
        # Two hours of driving remain banked, so the warning moves out by the pause.
        assert monitor.scheduler.armed()[RuleKind.MAX_DRIVING].fire_at == T0 + hours(9)

    def test_break_end_arms_new_episode(self, monitor):
        session_id = start_driving(monitor)
        resumed = T0 + timedelta(hours=4, minutes=12)
        monitor.manager.set_activity(ActivityCategory.BREAK, T0 + hours(3.5))
        monitor.manager.set_activity(ActivityCategory.DRIVING, resumed)

        timer = monitor.scheduler.armed()[RuleKind.MANDATORY_BREAK]
        assert timer.key == lead_key(
            RuleKind.MANDATORY_BREAK, f"{session_id}@{resumed.isoformat()}"
        )
        assert timer.fire_at == resumed + hours(4)

    def test_superseded_handle_is_ignored(self, monitor, clock, sink):
        start_driving(monitor)
        stale = monitor.scheduler.armed()[RuleKind.MANDATORY_BREAK].handle
        monitor.manager.set_activity(ActivityCategory.BREAK, T0 + hours(1))
        monitor.manager.set_activity(ActivityCategory.DRIVING, T0 + hours(2))

        clock.set(T0 + hours(4))
        stale.fire()

        assert not any(key.startswith("lead:mandatory_break") for key in sink.keys())
        assert RuleKind.MANDATORY_BREAK in monitor.scheduler.armed()


class TestTeardown:
    def test_end_program_cancels_everything(self, monitor, timers):
        start_driving(monitor)
        handles = [timer.handle for timer in monitor.scheduler.armed().values()]
        monitor.manager.set_activity(ActivityCategory.WORK, T0 + hours(5))
        assert monitor.alerts.active()

        monitor.end_program(T0 + hours(6))

        assert monitor.scheduler.armed() == {}
        assert monitor.alerts.active() == []
        assert all(handle.cancelled for handle in handles)
        assert timers.pending() == []

    def test_next_session_starts_clean(self, monitor, sink):
        start_driving(monitor)
        monitor.scheduler.on_periodic_tick(T0 + hours(4.5))
        monitor.end_program(T0 + hours(5))

        later = T0 + hours(20)
        second = monitor.manager.start_program(later)
        monitor.manager.set_activity(ActivityCategory.DRIVING, later)
        monitor.scheduler.on_periodic_tick(later + hours(4.5))

        key = f"violation:MANDATORY_BREAK_REQUIRED:{second}@{later.isoformat()}"
        assert key in sink.keys()


class TestSafety:
    def test_speeding_raises_safety_alert(self, monitor, timers):
        monitor.manager.start_program(T0)
        monitor.signals.update(speed_kmh=112.0, speed_limit_kmh=90.0, accuracy_m=5.0)
        monitor.scheduler.on_periodic_tick(T0 + timedelta(minutes=1))

        assert monitor.alerts.is_active("speed_violation")
        alert = [a for a in monitor.alerts.active() if a.key == "speed_violation"][0]
        alert.dismiss_handle.fire()
        assert not monitor.alerts.is_active("speed_violation")

    def test_no_checks_without_session(self, monitor, sink):
        monitor.signals.update(fuel_percent=5.0)
        monitor.scheduler.on_periodic_tick(T0)
        assert sink.presented == []


class TestLoop:
    def test_start_and_stop(self, monitor):
        monitor.start()
        assert monitor.scheduler._thread.is_alive()
        monitor.stop()
        assert monitor.scheduler._thread is None
