# ousterlab/io.py
from __future__ import annotations

import queue
import threading
from typing import Optional

from .pcd import FlushRequest
from .utils import log

_STOP = None


class SinkError(RuntimeError):
    """The sink thread failed to write a frame file."""


class PcdSink:
    """
    Single writer thread draining an unbounded FIFO of FlushRequests.

    submit() never blocks. Files are written in submission order, one file
    per request (header bytes then body bytes). The queue has no bound, so a
    slow disk grows memory; a write failure stops the writer and is raised
    from close() (or from the next submit()).
    """

    def __init__(self, name: str = "pcd-sink"):
        self._q: "queue.Queue[Optional[FlushRequest]]" = queue.Queue()
        self._error: Optional[OSError] = None
        self._closed = False
        self.written = 0
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    def submit(self, req: FlushRequest) -> None:
        if self._closed:
            raise SinkError("submit() on a closed sink")
        self._raise_if_failed()
        self._q.put_nowait(req)

    def close(self) -> None:
        """Wait until every queued request is written, then stop the writer."""
        if not self._closed:
            self._closed = True
            self._q.put(_STOP)
            self._thread.join()
        self._raise_if_failed()

    def __enter__(self) -> "PcdSink":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
            return
        # already unwinding: stop the writer but keep the original exception
        try:
            self.close()
        except SinkError as e:
            log.error(f"Sink also failed while unwinding: {e}")

    def _raise_if_failed(self) -> None:
        if self._error is not None:
            raise SinkError(f"Failed to write frame file: {self._error}") from self._error

    def _run(self) -> None:
        while True:
            req = self._q.get()
            if req is _STOP:
                return
            if self._error is not None:
                continue  # writer is dead; drain until stop
            try:
                with open(req.path, "wb") as f:
                    f.write(req.header.encode("ascii"))
                    f.write(req.body)
            except OSError as e:
                log.error(f"Cannot write {req.path}: {e}")
                self._error = e
                continue
            self.written += 1
            log.debug(f"Wrote {req.path} ({req.points} points)")
