import threading
from concurrent.futures import Future
from typing import Callable, Generic, TypeVar

T = TypeVar('T')


class SingleFlight(Generic[T]):
  """Coalesces concurrent calls for the same key into one execution.

  The first caller for a key runs `fn`; callers arriving while it is in flight wait
  for and share its result, including any exception it raised.
  """

  def __init__(self) -> None:
    self.lock = threading.Lock()
    self.flights: dict[str, Future] = {}

  def do(self, key: str, fn: Callable[[], T]) -> tuple[T, bool]:
    """Returns the result and whether it was shared with an earlier caller."""
    with self.lock:
      future = self.flights.get(key)
      leader = future is None
      if future is None:
        future = Future()
        self.flights[key] = future

    if not leader:
      return future.result(), True

    try:
      result = fn()
    except BaseException as e:
      future.set_exception(e)
      raise
    else:
      future.set_result(result)
    finally:
      with self.lock:
        del self.flights[key]

    return result, False

  def in_flight(self, key: str) -> bool:
    with self.lock:
      return key in self.flights
