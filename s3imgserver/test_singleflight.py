import threading
import time

import pytest

from s3imgserver.singleflight import SingleFlight

KEY = 'photos_w100_h100_ctrue_cat.webp'
FOLLOWERS = 4


def test_sequential_calls_run_each_time() -> None:
  flights: SingleFlight[int] = SingleFlight()
  calls = []

  def fn() -> int:
    calls.append(1)
    return len(calls)

  assert flights.do(KEY, fn) == (1, False)
  assert flights.do(KEY, fn) == (2, False)
  assert not flights.in_flight(KEY)


def run_concurrently(flights: SingleFlight[int], fn, release: threading.Event) -> list:
  results: list = []
  lock = threading.Lock()

  def call() -> None:
    try:
      r = flights.do(KEY, fn)
    except Exception as e:
      r = e
    with lock:
      results.append(r)

  leader = threading.Thread(target=call)
  leader.start()
  while not flights.in_flight(KEY):
    time.sleep(0.001)

  followers = [threading.Thread(target=call) for _ in range(FOLLOWERS)]
  for t in followers:
    t.start()
  # Give the followers time to block on the shared result.
  time.sleep(0.2)
  release.set()

  for t in [leader, *followers]:
    t.join(timeout=5)
  return results


def test_concurrent_calls_share_one_execution() -> None:
  flights: SingleFlight[int] = SingleFlight()
  release = threading.Event()
  calls = []

  def fn() -> int:
    calls.append(1)
    release.wait(timeout=5)
    return 42

  results = run_concurrently(flights, fn, release)

  assert len(calls) == 1
  assert sorted(results) == [(42, False)] + [(42, True)] * FOLLOWERS
  assert not flights.in_flight(KEY)


def test_exceptions_are_shared() -> None:
  flights: SingleFlight[int] = SingleFlight()
  release = threading.Event()
  calls = []

  def fn() -> int:
    calls.append(1)
    release.wait(timeout=5)
    raise ValueError('origin down')

  results = run_concurrently(flights, fn, release)

  assert len(calls) == 1
  assert len(results) == FOLLOWERS + 1
  assert all(isinstance(r, ValueError) for r in results)

  with pytest.raises(ValueError):
    flights.do(KEY, fn)
