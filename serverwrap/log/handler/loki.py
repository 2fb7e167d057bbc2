import os
import sys
import socket
import logging
import requests
import threading
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from serverwrap.local.config import effective_settings as config


class LokiHandler(logging.Handler):
    """
    A custom logging handler that sends logs to a Grafana Loki instance
    in batches using a background thread.
    """
    def __init__(self, url: str, org_id: Optional[str] = None, job: str = "serverwrap", batch_size: int = 200):
        """
        Initializes the Loki handler.

        :param url: The base URL of the Loki instance.
        :param org_id: The tenant ID for Loki (e.g., 'X-Scope-OrgID').
        :param job: Value of the `job` label on every stream.
        :param batch_size: Number of buffered records that forces a push.
        """
        super().__init__()
        self.url = f"{url.rstrip('/')}/loki/api/v1/push"
        self.org_id = org_id
        self.job = job
        self.log_buffer: Deque[Dict[str, Any]] = deque()
        self.buffer_lock = threading.Lock()
        self.flush_interval = config.LOG_BUFFER_FLUSH_INTERVAL
        self.batch_size = batch_size
        self.hostname = os.getenv('COMPUTERNAME') or os.getenv('HOSTNAME') or socket.gethostname()

        self.stop_event = threading.Event()
        self.flush_thread = threading.Thread(target=self._periodic_flush, daemon=True)
        self.flush_thread.name = "LokiFlushThread"
        self.flush_thread.start()

    def _periodic_flush(self) -> None:
        """
        Periodically flushes the log buffer. This runs in a background thread.
        The final flush is called when the handler is closed.
        """
        while not self.stop_event.wait(self.flush_interval):
            self.flush()
        # Final flush on stop, ensuring any remaining logs are sent
        self.flush()

    def build_entry(self, record: logging.LogRecord) -> Dict[str, Any]:
        """
        Converts a log record into one Loki stream entry.

        :param record: The log record to convert.
        :return: A `{"stream": labels, "values": [[ns, line]]}` dictionary.
        """
        labels = {
            "job": self.job,
            "level": record.levelname.lower(),
            "hostname": self.hostname,
        }
        # Server output is pushed raw and labelled with the server and stream it came from.
        if record.name.startswith('proc.'):
            msg = record.getMessage()
            labels["logger"] = record.name.split('.', 1)[-1]
            labels["source"] = getattr(record, 'source', 'stdout')
        else:
            msg = self.format(record)
            labels["logger"] = record.name

        return {"stream": labels, "values": [[str(int(record.created * 1e9)), msg]]}

    def emit(self, record: logging.LogRecord) -> None:
        """
        Adds a record to the internal buffer. If the buffer exceeds the batch size, it triggers a flush.

        :param record: The log record to be processed.
        """
        try:
            log_entry = self.build_entry(record)
            with self.buffer_lock:
                self.log_buffer.append(log_entry)
                if len(self.log_buffer) >= self.batch_size:
                    self._flush_locked()
        except Exception as e:
            print(f"ERROR: LokiHandler failed to process a log record: {e}", file=sys.stderr)

    def _flush_locked(self) -> None:
        """
        Sends the buffered logs to Loki. This method assumes the buffer lock is already held.
        """
        if not self.log_buffer:
            return

        logs_to_send: List[Dict[str, Any]] = list(self.log_buffer)
        self.log_buffer.clear()

        # Release the lock before making a blocking network call
        self.buffer_lock.release()
        try:
            headers = {'Content-Type': 'application/json'}
            if self.org_id:
                headers['X-Scope-OrgID'] = self.org_id

            response = requests.post(self.url, json={"streams": logs_to_send}, headers=headers, timeout=5)
            # 204 No Content is the success status for Loki push
            if response.status_code != 204:
                print(
                    f"ERROR: Loki returned non-204 status: {response.status_code} - {response.text}",
                    file=sys.stderr,
                )
        except requests.RequestException as e:
            print(f"CRITICAL: Failed to send {len(logs_to_send)} logs to Loki: {e}", file=sys.stderr)
        finally:
            self.buffer_lock.acquire()

    def flush(self) -> None:
        """
        Public method to trigger a manual flush of the log buffer in a thread-safe manner.
        """
        with self.buffer_lock:
            self._flush_locked()

    def close(self) -> None:
        """
        Shuts down the handler, ensuring all buffered logs are flushed and threads are joined.
        """
        self.stop_event.set()
        if self.flush_thread.is_alive():
            # Wait for the flush thread to finish its last loop
            self.flush_thread.join(timeout=self.flush_interval + 2)
        super().close()
