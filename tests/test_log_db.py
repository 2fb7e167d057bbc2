import logging

from serverwrap.local.database import LogDBManager
from serverwrap.log.handler import SQLiteHandler
from serverwrap.log.setup import MainFormatter


def make_entry(timestamp: float, message: str, module: str = "srv", func_name: str = "stdout") -> dict:
    return {
        "timestamp": timestamp, "level": "INFO", "module": module,
        "funcName": func_name, "lineno": 0, "message": message,
    }


class TestLogDBManager:

    def test_rows_with_equal_timestamps_are_kept(self, tmp_path) -> None:
        db = LogDBManager(tmp_path / "logs.db")
        db.initialize_database()
        db.insert_log_batch([make_entry(1000.0, "first"), make_entry(1000.0, "second")])

        entries = db.fetch_last_entries(10)
        assert [e.message.split(" - ")[-1] for e in entries] == ["first", "second"]

    def test_fetch_last_entries_limit_and_filter(self, tmp_path) -> None:
        db = LogDBManager(tmp_path / "logs.db")
        db.initialize_database()
        db.insert_log_batch([
            make_entry(1.0, "a"),
            make_entry(2.0, "b", module="serverwrap"),
            make_entry(3.0, "c"),
        ])

        assert [e.message.split(" - ")[-1] for e in db.fetch_last_entries(2)] == ["b", "c"]
        only_server = db.fetch_last_entries(10, module="srv")
        assert [e.message.split(" - ")[-1] for e in only_server] == ["a", "c"]
        assert only_server[0].source == "stdout"


class TestSQLiteHandler:

    def test_server_output_records_their_stream(self, tmp_path) -> None:
        path = tmp_path / "logs.db"
        handler = SQLiteHandler(path, buffer_size=1, flush_interval=60)
        try:
            record = logging.LogRecord("proc.lobby", logging.ERROR, __file__, 1, "Exception in thread", None, None)
            record.source = "stderr"
            handler.emit(record)
        finally:
            handler.close()

        entries = LogDBManager(path).fetch_last_entries(5)
        assert len(entries) == 1
        assert entries[0].module == "lobby"
        assert entries[0].source == "stderr"
        assert entries[0].level == "ERROR"


class TestMainFormatter:

    def test_server_output_is_printed_raw(self) -> None:
        formatter = MainFormatter()
        raw = logging.LogRecord("proc.lobby", logging.INFO, __file__, 1, "[12:00] Done (1s)!", None, None)
        own = logging.LogRecord("serverwrap.x", logging.INFO, __file__, 1, "hello", None, None)

        assert formatter.format(raw) == "[12:00] Done (1s)!"
        assert formatter.format(own).endswith("- INFO     - [serverwrap.x] - hello")
