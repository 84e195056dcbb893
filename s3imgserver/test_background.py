import threading
from pathlib import Path

from s3imgserver.background import BackgroundTasks


def test_wait_for_submitted_tasks(tasks: BackgroundTasks) -> None:
  done = []
  release = threading.Event()

  def work(n: int) -> int:
    release.wait(timeout=5)
    done.append(n)
    return n

  futures = [tasks.submit('work', work, n) for n in range(3)]
  assert not tasks.wait(timeout=0.05)

  release.set()
  assert tasks.wait(timeout=5)
  assert sorted(done) == [0, 1, 2]
  assert [f.result() for f in futures] == [0, 1, 2]


def test_failed_task_does_not_block(tasks: BackgroundTasks) -> None:

  def fail() -> None:
    raise OSError('disk full')

  future = tasks.submit('fail', fail)

  assert tasks.wait(timeout=5)
  assert isinstance(future.exception(), OSError)
  assert tasks.wait()


def test_submit_after_shutdown(tasks: BackgroundTasks, tmp_path: Path) -> None:
  tasks.shutdown()

  assert tasks.submit('late', lambda: None) is None
  assert tasks.wait(timeout=5)
  assert 'failed to schedule background task' in (tmp_path / 'test.log').read_text()
