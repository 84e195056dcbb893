import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from typing import Any, Callable, Optional

from s3imgserver.logger import LogContext

DEFAULT_MAX_WORKERS = 4


class BackgroundTasks:
  """Runs cache maintenance off the response path.

  Work items are ordinary futures, so callers that care (tests, shutdown) can wait
  for them while request handlers simply fire and forget.
  """

  def __init__(self, log: LogContext, max_workers: int = DEFAULT_MAX_WORKERS):
    self.log = log
    self.executor = ThreadPoolExecutor(
        max_workers=max_workers, thread_name_prefix='s3imgserver-bg')
    self.lock = threading.Lock()
    self.pending: set[Future] = set()

  def submit(self, name: str, fn: Callable[..., Any], *args: Any) -> Optional[Future]:
    """Returns None when the queue no longer accepts work, e.g. after shutdown."""
    try:
      future = self.executor.submit(fn, *args)
    except RuntimeError as e:
      self.log.log_error('failed to schedule background task', {'task': name, 'reason': str(e)})
      return None

    with self.lock:
      self.pending.add(future)

    def done(f: Future) -> None:
      with self.lock:
        self.pending.discard(f)
      e = f.exception()
      if e is not None:
        self.log.log_error('background task failed', {'task': name, 'reason': str(e)})

    future.add_done_callback(done)
    return future

  def wait(self, timeout: Optional[float] = None) -> bool:
    """Blocks until every submitted task has finished. Returns False on timeout."""
    with self.lock:
      pending = list(self.pending)
    if len(pending) == 0:
      return True
    _, not_done = wait_futures(pending, timeout=timeout)
    return len(not_done) == 0

  def shutdown(self) -> None:
    self.executor.shutdown(wait=True)
