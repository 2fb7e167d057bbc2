import pytest

from serverwrap.local.supervisor.commands import CommandQueue, CommandRequest


class TestCommandRequest:

    def test_to_line(self) -> None:
        assert CommandRequest("say", "hello there").to_line() == "say hello there"
        assert CommandRequest("list").to_line() == "list"

    def test_parse(self) -> None:
        request = CommandRequest.parse("  whitelist add  Steve ")
        assert request.name == "whitelist"
        assert request.arguments == "add  Steve"

    def test_empty_name_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            CommandRequest("")

    @pytest.mark.parametrize("name, arguments", [("say", "a\nstop"), ("say\r", ""), ("op", "x\r\ny")])
    def test_line_breaks_are_rejected(self, name, arguments) -> None:
        with pytest.raises(ValueError):
            CommandRequest(name, arguments)


class TestCommandQueue:

    def test_fifo_order(self) -> None:
        queue = CommandQueue()
        queue.put("save-all")
        queue.put_line("say bye")
        assert len(queue) == 2
        assert queue.poll() == CommandRequest("save-all")
        assert queue.poll() == CommandRequest("say", "bye")
        assert queue.poll() is None

    def test_blank_lines_are_ignored(self) -> None:
        queue = CommandQueue()
        queue.put_line("   ")
        assert queue.poll() is None
