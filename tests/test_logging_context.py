"""Tests for scoped logging context."""

import threading

from notifier.logging.context import (
    bind_log_context,
    clear_log_context,
    get_log_context,
    log_context,
    reset_log_context,
)


def test_empty_context():
    """Test that context starts empty."""
    assert get_log_context() == {}


def test_bind_and_reset():
    token = bind_log_context(job_name="daily-report-reminders", run_id="a1b2c3")
    assert get_log_context() == {"job_name": "daily-report-reminders", "run_id": "a1b2c3"}

    reset_log_context(token)
    assert get_log_context() == {}


def test_nested_binds_restore_in_reverse_order():
    outer = bind_log_context(job_name="weekly-compliance-alerts")
    inner = bind_log_context(org_id="org-1")
    assert get_log_context() == {"job_name": "weekly-compliance-alerts", "org_id": "org-1"}

    reset_log_context(inner)
    assert get_log_context() == {"job_name": "weekly-compliance-alerts"}

    reset_log_context(outer)
    assert get_log_context() == {}


def test_inner_value_overrides_outer():
    with log_context(org_id="org-1"):
        with log_context(org_id="org-2"):
            assert get_log_context() == {"org_id": "org-2"}
        assert get_log_context() == {"org_id": "org-1"}


def test_context_manager_yields_bound_fields():
    with log_context(job_name="meeting-reminders") as fields:
        with log_context(meeting_id="meeting-1") as inner_fields:
            assert inner_fields == {"job_name": "meeting-reminders", "meeting_id": "meeting-1"}
        assert fields == {"job_name": "meeting-reminders"}

    assert get_log_context() == {}


def test_context_restored_after_exception():
    try:
        with log_context(notification_id="n-1"):
            raise ValueError("Template failed")
    except ValueError:
        pass

    assert get_log_context() == {}


def test_clear_context():
    bind_log_context(run_id="a1b2c3", org_id="org-1")

    clear_log_context()

    assert get_log_context() == {}


def test_get_returns_copy():
    """Mutating the returned mapping does not change the bound context."""
    with log_context(run_id="a1b2c3"):
        context = get_log_context()
        context["org_id"] = "modified"

        assert get_log_context() == {"run_id": "a1b2c3"}


def test_worker_threads_start_empty():
    """Fields bound on one thread are not visible on a scheduler worker thread."""
    seen = {}

    def worker():
        seen["before"] = get_log_context()
        with log_context(job_name="task-due-reminders"):
            seen["inside"] = get_log_context()

    with log_context(run_id="main-thread"):
        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

        assert get_log_context() == {"run_id": "main-thread"}

    assert seen["before"] == {}
    assert seen["inside"] == {"job_name": "task-due-reminders"}
