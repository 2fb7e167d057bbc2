import io
import subprocess
import threading

from conftest import RecordingSink, python_command, wait_until
from serverwrap.local.supervisor.commands import CommandQueue, CommandRequest
from serverwrap.local.supervisor.injector import CommandInjector
from serverwrap.local.supervisor.models import MessageSource
from serverwrap.local.supervisor.monitor import ExitMonitor
from serverwrap.local.supervisor.relay import StreamRelay
from serverwrap.local.supervisor.worker import Worker


class FakeStdin:
    """Stands in for a process's stdin pipe and records what was written."""

    def __init__(self, broken: bool = False) -> None:
        self.broken = broken
        self.data = b""
        self.closed = False

    def write(self, data: bytes) -> int:
        if self.broken:
            raise BrokenPipeError(32, "Broken pipe")
        self.data += data
        return len(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True


class FailingPipe:
    def readline(self) -> bytes:
        raise OSError("read failed")

    def close(self) -> None:
        pass


class ExplodingSink:
    def receive(self, message) -> None:
        raise RuntimeError("boom")


class TestWorker:

    def test_exception_in_run_ends_the_thread(self) -> None:
        class Failing(Worker):
            def run(self) -> None:
                raise RuntimeError("broken worker")

        worker = Failing("failing")
        worker.start()
        worker.join(timeout=5)
        assert not worker.is_alive()

    def test_join_without_start_returns(self) -> None:
        class Idle(Worker):
            def run(self) -> None:
                pass

        worker = Idle("idle")
        worker.join()
        worker.stop()
        assert worker.stop_requested


class TestStreamRelay:

    def test_lines_are_forwarded_in_order(self) -> None:
        sink = RecordingSink()
        pipe = io.BytesIO(b"first\nsecond\r\nthird")
        relay = StreamRelay(pipe, MessageSource.STDOUT, [sink], name="srv")
        relay.start()
        relay.join(timeout=5)

        assert sink.texts(MessageSource.STDOUT) == ["first", "second", "third"]
        assert relay.lines_relayed == 3
        assert relay.name == "srv-stdout-relay"
        assert pipe.closed

    def test_invalid_bytes_are_replaced(self) -> None:
        sink = RecordingSink()
        relay = StreamRelay(io.BytesIO(b"caf\xe9\n"), MessageSource.STDERR, [sink])
        relay.start()
        relay.join(timeout=5)

        assert sink.texts(MessageSource.STDERR) == ["caf\ufffd"]

    def test_read_error_is_reported(self) -> None:
        sink = RecordingSink()
        relay = StreamRelay(FailingPipe(), MessageSource.STDOUT, [sink])
        relay.start()
        relay.join(timeout=5)

        assert not relay.is_alive()
        assert any("read failed" in text for text in sink.texts(MessageSource.INTERNAL))

    def test_failing_consumer_does_not_stop_the_others(self) -> None:
        sink = RecordingSink()
        relay = StreamRelay(io.BytesIO(b"a\nb\n"), MessageSource.STDOUT, [ExplodingSink(), sink])
        relay.start()
        relay.join(timeout=5)

        assert sink.texts() == ["a", "b"]


class TestCommandInjector:

    def test_inject_writes_one_line(self) -> None:
        pipe = FakeStdin()
        injector = CommandInjector(pipe, RecordingSink())
        assert injector.inject(CommandRequest("say", "hi"))
        assert pipe.data == b"say hi\n"
        assert injector.lines_written == 1

    def test_source_is_polled(self) -> None:
        pipe = FakeStdin()
        queue = CommandQueue()
        injector = CommandInjector(pipe, RecordingSink(), queue, poll_interval=0.01)
        queue.put("list")
        queue.put("save-all")
        injector.start()

        assert wait_until(lambda: injector.lines_written == 2)
        injector.stop()
        injector.join(timeout=5)
        assert pipe.data == b"list\nsave-all\n"
        assert pipe.closed

    def test_stopped_injector_drops_commands(self) -> None:
        pipe = FakeStdin()
        injector = CommandInjector(pipe, RecordingSink())
        injector.stop()

        assert not injector.accepting
        assert not injector.inject(CommandRequest("say", "hi"))
        assert pipe.data == b""

    def test_broken_pipe_is_reported(self) -> None:
        sink = RecordingSink()
        injector = CommandInjector(FakeStdin(broken=True), sink)

        assert not injector.inject(CommandRequest("stop"))
        assert not injector.accepting
        assert any("stop" in text for text in sink.texts(MessageSource.INTERNAL))

    def test_concurrent_writes_do_not_interleave(self) -> None:
        pipe = FakeStdin()
        injector = CommandInjector(pipe, RecordingSink())

        def send(word: str) -> None:
            for _ in range(50):
                injector.inject(CommandRequest("say", word * 20))

        threads = [threading.Thread(target=send, args=(word,)) for word in "abc"]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        lines = pipe.data.decode().splitlines()
        assert len(lines) == 150
        assert set(lines) == {"say " + word * 20 for word in "abc"}


class TestExitMonitor:

    def test_reports_exit_code_once(self) -> None:
        sink = RecordingSink()
        codes = []
        process = subprocess.Popen(python_command("import sys; sys.exit(5)"))
        monitor = ExitMonitor(process, sink, codes.append, name="srv")
        monitor.start()

        assert monitor.wait_for_exit(timeout=10)
        monitor.join(timeout=10)
        assert monitor.exit_code == 5
        assert codes == [5]
        assert sink.texts(MessageSource.INTERNAL) == ["Server process exited with code 5"]
