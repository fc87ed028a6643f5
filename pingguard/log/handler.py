import logging
import socket
import sys
import threading
from collections import deque
from typing import Any, Deque, Dict, List, Optional

import requests

from pingguard.local.config import effective_settings as config


class LokiHandler(logging.Handler):
    """
    Ships supervisor log records to a Grafana Loki instance.

    Records are buffered and pushed in batches by a background thread so a
    slow or unreachable Loki never stalls the event loop. Relayed child
    output (the `proc.*` loggers) is labelled with the child's name.
    """
    def __init__(self, url: str, org_id: Optional[str] = None, job: str = "pingguard"):
        """
        :param url: The base URL of the Loki instance.
        :param org_id: The tenant ID for Loki (sent as 'X-Scope-OrgID').
        :param job: The value of the 'job' stream label.
        """
        super().__init__()
        self.url = f"{url.rstrip('/')}/loki/api/v1/push"
        self.org_id = org_id
        self.job = job
        self.hostname = socket.gethostname() or 'unknown-host'
        self.flush_interval = config.LOG_BUFFER_FLUSH_INTERVAL
        self.batch_size = config.LOG_BUFFER_BATCH_SIZE
        self.session = requests.Session()

        self._buffer: Deque[Dict[str, Any]] = deque()
        self._buffer_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._batch_ready = threading.Event()
        self._flush_thread = threading.Thread(target=self._periodic_flush, daemon=True, name="LokiFlushThread")
        self._flush_thread.start()

    def _periodic_flush(self) -> None:
        """Flushes on every interval tick or when a full batch is waiting."""
        while not self._stop_event.is_set():
            self._batch_ready.wait(self.flush_interval)
            self._batch_ready.clear()
            self.flush()
        self.flush()

    def _labels_for(self, record: logging.LogRecord) -> Dict[str, str]:
        labels = {
            "job": self.job,
            "level": record.levelname.lower(),
            "hostname": self.hostname,
        }
        if record.name.startswith('proc.'):
            labels["source"] = "child"
            labels["child"] = record.name.split('.', 1)[-1]
        else:
            labels["source"] = "supervisor"
            labels["logger"] = record.name
        return labels

    def emit(self, record: logging.LogRecord) -> None:
        """
        Formats a log record and queues it for the next push.

        :param record: The log record to be processed.
        """
        try:
            msg = record.getMessage() if record.name.startswith('proc.') else self.format(record)
            entry = {
                "stream": self._labels_for(record),
                "values": [[str(int(record.created * 1e9)), msg]],
            }
            with self._buffer_lock:
                self._buffer.append(entry)
                if len(self._buffer) >= self.batch_size:
                    self._batch_ready.set()
        except Exception:
            self.handleError(record)

    def _drain(self) -> List[Dict[str, Any]]:
        with self._buffer_lock:
            entries = list(self._buffer)
            self._buffer.clear()
        return entries

    def flush(self) -> None:
        """Pushes everything currently buffered to Loki."""
        entries = self._drain()
        if not entries:
            return

        headers = {'Content-Type': 'application/json'}
        if self.org_id:
            headers['X-Scope-OrgID'] = self.org_id
        try:
            response = self.session.post(self.url, json={"streams": entries}, headers=headers, timeout=5)
            # 204 No Content is the success status for Loki push
            if response.status_code != 204:
                print(
                    f"ERROR: Loki returned non-204 status: {response.status_code} - {response.text}",
                    file=sys.stderr,
                )
        except requests.RequestException as e:
            print(f"CRITICAL: Failed to send {len(entries)} logs to Loki: {e}", file=sys.stderr)

    def close(self) -> None:
        """Stops the flush thread after a final push."""
        self._stop_event.set()
        self._batch_ready.set()
        if self._flush_thread.is_alive():
            self._flush_thread.join(timeout=self.flush_interval + 2)
        self.session.close()
        super().close()
