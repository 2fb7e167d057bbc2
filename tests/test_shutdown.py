import signal
import threading

import pytest

from conftest import ECHO_SERVER, python_command
from serverwrap.local.supervisor import MessageSource, SupervisorState
from serverwrap.local.supervisor.shutdown import ShutdownCoordinator


class FakeSupervisor:
    name = "fake"

    def __init__(self, stop_requested: bool = False) -> None:
        self.stop_requested = stop_requested
        self.stop_calls = []

    def stop(self, wait: bool = True) -> bool:
        self.stop_calls.append(wait)
        return True


class FakeWorker:
    def __init__(self, name: str, log: list, interruptions: int = 0) -> None:
        self.name = name
        self.log = log
        self.interruptions = interruptions

    def stop(self) -> None:
        self.log.append(("stop", self.name))

    def join(self, timeout=None) -> None:
        if self.interruptions:
            self.interruptions -= 1
            raise KeyboardInterrupt
        self.log.append(("join", self.name))


@pytest.fixture()
def restore_sigterm():
    original = signal.getsignal(signal.SIGTERM)
    yield
    signal.signal(signal.SIGTERM, original)


class TestShutdownAll:

    def test_stops_everything_before_joining(self) -> None:
        log = []
        workers = [FakeWorker(name, log) for name in ("monitor", "stdout", "stderr", "stdin")]
        ShutdownCoordinator(FakeSupervisor(), handle_signals=False).shutdown_all(workers)

        assert log[:4] == [("stop", w.name) for w in workers]
        assert log[4:] == [("join", w.name) for w in workers]

    def test_interrupted_join_is_resumed_and_reraised(self) -> None:
        log = []
        workers = [FakeWorker("monitor", log, interruptions=2), FakeWorker("stdout", log)]

        with pytest.raises(KeyboardInterrupt):
            ShutdownCoordinator(FakeSupervisor(), handle_signals=False).shutdown_all(workers)

        assert ("join", "monitor") in log
        assert ("join", "stdout") in log

    def test_failing_stop_does_not_prevent_joins(self) -> None:
        log = []

        class Broken(FakeWorker):
            def stop(self) -> None:
                raise RuntimeError("cannot stop")

        workers = [Broken("broken", log), FakeWorker("ok", log)]
        ShutdownCoordinator(FakeSupervisor(), handle_signals=False).shutdown_all(workers)
        assert log == [("stop", "ok"), ("join", "broken"), ("join", "ok")]


class TestTerminationHooks:

    def test_install_and_uninstall_signal_handlers(self, restore_sigterm) -> None:
        def previous(signum, frame) -> None:
            pass

        signal.signal(signal.SIGTERM, previous)
        coordinator = ShutdownCoordinator(FakeSupervisor())
        coordinator.install()
        assert signal.getsignal(signal.SIGTERM) == coordinator._on_signal

        coordinator.uninstall()
        assert signal.getsignal(signal.SIGTERM) is previous

    def test_signal_stops_once_and_chains(self, restore_sigterm) -> None:
        received = []
        signal.signal(signal.SIGTERM, lambda signum, frame: received.append(signum))
        supervisor = FakeSupervisor()
        coordinator = ShutdownCoordinator(supervisor)
        coordinator.install()
        try:
            coordinator._on_signal(signal.SIGTERM, None)
            coordinator._on_signal(signal.SIGTERM, None)
            coordinator._on_interpreter_exit()
            coordinator.stopper.join(timeout=5)
        finally:
            coordinator.uninstall()

        assert supervisor.stop_calls == [False]
        assert received == [signal.SIGTERM]

    def test_default_action_exits(self, restore_sigterm) -> None:
        signal.signal(signal.SIGTERM, signal.SIG_DFL)
        coordinator = ShutdownCoordinator(FakeSupervisor())
        coordinator.install()
        try:
            with pytest.raises(SystemExit) as excinfo:
                coordinator._on_signal(signal.SIGTERM, None)
            coordinator.stopper.join(timeout=5)
        finally:
            coordinator.uninstall()

        assert excinfo.value.code == 128 + signal.SIGTERM
        assert coordinator.supervisor.stop_calls == [False]

    def test_stop_in_progress_is_not_interrupted(self, restore_sigterm) -> None:
        signal.signal(signal.SIGTERM, signal.SIG_DFL)
        supervisor = FakeSupervisor(stop_requested=True)
        coordinator = ShutdownCoordinator(supervisor)
        coordinator.install()
        try:
            coordinator._on_signal(signal.SIGTERM, None)
        finally:
            coordinator.uninstall()

        assert coordinator.stopper is None
        assert supervisor.stop_calls == []

    def test_signal_after_uninstall_off_main_thread_is_passed_on(self, restore_sigterm) -> None:
        received = []

        def previous(signum, frame) -> None:
            received.append(signum)

        signal.signal(signal.SIGTERM, previous)
        supervisor = FakeSupervisor()
        coordinator = ShutdownCoordinator(supervisor)
        coordinator.install()

        worker = threading.Thread(target=coordinator.uninstall)
        worker.start()
        worker.join(timeout=5)
        assert signal.getsignal(signal.SIGTERM) == coordinator._on_signal

        coordinator._on_signal(signal.SIGTERM, None)
        assert received == [signal.SIGTERM]
        assert supervisor.stop_calls == []
        assert signal.getsignal(signal.SIGTERM) is previous

    def test_interpreter_exit_stops_the_server(self) -> None:
        supervisor = FakeSupervisor()
        coordinator = ShutdownCoordinator(supervisor, handle_signals=False)
        coordinator.install()
        coordinator._on_interpreter_exit()
        coordinator.uninstall()

        assert supervisor.stop_calls == [False]


class TestTerminationOfRealServer:
    """Termination hooks driving a real supervisor and server process."""

    @staticmethod
    def _assert_stopped_once(supervisor, sink) -> None:
        assert supervisor.state is SupervisorState.STOPPED
        assert supervisor.exit_code == 0
        assert sink.texts(MessageSource.STDOUT).count("got: stop") == 1
        assert all(not worker.is_alive() for worker in supervisor.workers)

    def test_signal_stops_server_and_chains(self, make_supervisor, sink, restore_sigterm) -> None:
        received = []
        signal.signal(signal.SIGTERM, lambda signum, frame: received.append(signum))
        supervisor = make_supervisor(handle_signals=True)
        assert supervisor.start(python_command(ECHO_SERVER))

        signal.raise_signal(signal.SIGTERM)
        stopper = supervisor._coordinator.stopper
        stopper.join(timeout=30)

        assert not stopper.is_alive()
        assert received == [signal.SIGTERM]
        self._assert_stopped_once(supervisor, sink)
        assert supervisor.stop() is False

    def test_signal_while_state_lock_is_held(self, make_supervisor, sink, restore_sigterm) -> None:
        signal.signal(signal.SIGTERM, lambda signum, frame: None)
        supervisor = make_supervisor(handle_signals=True)
        assert supervisor.start(python_command(ECHO_SERVER))

        with supervisor._state_lock:
            signal.raise_signal(signal.SIGTERM)
        stopper = supervisor._coordinator.stopper
        stopper.join(timeout=30)

        assert not stopper.is_alive()
        self._assert_stopped_once(supervisor, sink)

    def test_signal_while_stdin_is_being_written(self, make_supervisor, sink, restore_sigterm) -> None:
        signal.signal(signal.SIGTERM, lambda signum, frame: None)
        supervisor = make_supervisor(handle_signals=True)
        assert supervisor.start(python_command(ECHO_SERVER))

        with supervisor._injector._write_lock:
            signal.raise_signal(signal.SIGTERM)
        stopper = supervisor._coordinator.stopper
        stopper.join(timeout=30)

        assert not stopper.is_alive()
        self._assert_stopped_once(supervisor, sink)

    def test_default_action_exits_after_stopping(self, make_supervisor, sink, restore_sigterm) -> None:
        signal.signal(signal.SIGTERM, signal.SIG_DFL)
        supervisor = make_supervisor(handle_signals=True)
        assert supervisor.start(python_command(ECHO_SERVER))

        with pytest.raises(SystemExit):
            signal.raise_signal(signal.SIGTERM)
        assert supervisor.stop() in (True, False)

        self._assert_stopped_once(supervisor, sink)

    def test_signal_racing_explicit_stop(self, make_supervisor, sink, restore_sigterm) -> None:
        signal.signal(signal.SIGTERM, lambda signum, frame: None)
        supervisor = make_supervisor(handle_signals=True)
        assert supervisor.start(python_command(ECHO_SERVER))

        results = []
        explicit = threading.Thread(target=lambda: results.append(supervisor.stop()))
        explicit.start()
        signal.raise_signal(signal.SIGTERM)
        explicit.join(timeout=30)
        if supervisor._coordinator.stopper is not None:
            supervisor._coordinator.stopper.join(timeout=30)

        assert not explicit.is_alive()
        assert supervisor.stop() is False
        self._assert_stopped_once(supervisor, sink)

    def test_interpreter_exit_stops_server(self, make_supervisor, sink) -> None:
        supervisor = make_supervisor()
        assert supervisor.start(python_command(ECHO_SERVER))

        supervisor._coordinator._on_interpreter_exit()

        self._assert_stopped_once(supervisor, sink)
        assert supervisor.stop() is False
