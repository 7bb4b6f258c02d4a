import signal
import threading
import time

import pytest

from sysmond.lifecycle import (
    CancellationToken,
    OrchestratorState,
    WorkerOrchestrator,
    exit_grace_delay,
)


def waiting_worker(token, started=None):
    def run():
        if started is not None:
            started.set()
        token.wait()
        return "cancelled"

    return run


def make_orchestrator(workers, token, notifier, **kwargs):
    kwargs.setdefault("exit_grace", 0)
    kwargs.setdefault("join_poll", 0.05)
    return WorkerOrchestrator(workers, token, notifier, **kwargs)


def test_token_cancel_is_idempotent():
    token = CancellationToken()
    assert not token.is_cancelled()
    assert token.cancel() is True
    assert token.cancel() is False
    assert token.is_cancelled()
    assert token.wait(0) is True


def test_token_wait_times_out():
    token = CancellationToken()
    start = time.monotonic()
    assert token.wait(0.05) is False
    assert time.monotonic() - start >= 0.04


def test_runs_all_workers_and_collects_results(token, notifier):
    orchestrator = make_orchestrator(
        [("a", lambda: 1), ("b", lambda: 2)], token, notifier
    )

    assert orchestrator.run() == 0
    assert orchestrator.results == {"a": 1, "b": 2}
    assert orchestrator.state == OrchestratorState.EXITED
    assert notifier.bodies_containing("All workers have finished")


def test_workers_run_concurrently(token, notifier):
    barrier = threading.Barrier(3, timeout=5)
    workers = [(f"w{i}", barrier.wait) for i in range(3)]
    orchestrator = make_orchestrator(workers, token, notifier)

    assert orchestrator.run() == 0
    assert len(orchestrator.results) == 3


def test_worker_exception_does_not_stop_others(token, notifier):
    def broken():
        raise RuntimeError("boom")

    orchestrator = make_orchestrator([("broken", broken), ("ok", lambda: 0)], token, notifier)

    assert orchestrator.run() == 0
    assert isinstance(orchestrator.results["broken"], RuntimeError)
    assert orchestrator.results["ok"] == 0


def test_first_interrupt_cancels_and_workers_drain(token, notifier):
    started = threading.Event()
    orchestrator = make_orchestrator(
        [("a", waiting_worker(token, started)), ("b", waiting_worker(token))], token, notifier
    )

    def interrupt():
        started.wait(5)
        orchestrator.handle_interrupt(signal.SIGINT, None)

    threading.Thread(target=interrupt).start()

    assert orchestrator.run() == 0
    assert token.is_cancelled()
    assert orchestrator.results == {"a": "cancelled", "b": "cancelled"}


def test_repeated_interrupts_while_stopping_are_ignored(token, notifier):
    orchestrator = make_orchestrator([], token, notifier)
    orchestrator.state = OrchestratorState.RUNNING

    orchestrator.handle_interrupt(signal.SIGINT, None)
    assert orchestrator.state == OrchestratorState.STOPPING

    orchestrator.handle_interrupt(signal.SIGINT, None)
    assert orchestrator.state == OrchestratorState.STOPPING
    assert token.is_cancelled()


def test_interrupt_during_grace_exits_immediately(token, notifier):
    slept = []

    def sleep(seconds):
        slept.append(seconds)
        # Second Ctrl+C arrives while the grace delay is running
        orchestrator.handle_interrupt(signal.SIGINT, None)
        slept.append("finished")

    orchestrator = make_orchestrator(
        [("a", lambda: 0)], token, notifier, exit_grace=3.0, sleep=sleep
    )

    with pytest.raises(SystemExit) as exc:
        orchestrator.run()

    assert exc.value.code == 0
    assert slept == [3.0]
    assert orchestrator.state == OrchestratorState.EXITED


def test_interrupt_during_grace_ignored_without_instance_lock(token, notifier):
    slept = []

    def sleep(seconds):
        orchestrator.handle_interrupt(signal.SIGINT, None)
        slept.append(seconds)

    orchestrator = make_orchestrator(
        [("a", lambda: 0)],
        token,
        notifier,
        owns_instance_lock=False,
        exit_grace=3.0,
        sleep=sleep,
    )

    assert orchestrator.run() == 0
    assert slept == [3.0]
    assert orchestrator.state == OrchestratorState.EXITED


def test_exit_grace_delay_ignores_sigint():
    seen = []

    def sleep(seconds):
        seen.append((seconds, signal.getsignal(signal.SIGINT)))

    previous = signal.getsignal(signal.SIGINT)
    exit_grace_delay(2.0, sleep)

    assert seen == [(2.0, signal.SIG_IGN)]
    assert signal.getsignal(signal.SIGINT) is previous


def test_exit_grace_delay_skipped_when_zero():
    calls = []
    exit_grace_delay(0, calls.append)
    assert calls == []
