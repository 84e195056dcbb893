import dataclasses
import os
import time
from concurrent.futures import Future
from enum import Enum
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Callable, Optional

from s3imgserver.background import BackgroundTasks
from s3imgserver.descriptor import TransformSpec
from s3imgserver.logger import LogContext
from s3imgserver.typing import CachePath


class CacheStatus(Enum):
  HIT = 0
  MISS = 1
  STALE = 2


@dataclasses.dataclass(frozen=True)
class CacheLookup:
  status: CacheStatus
  body: Optional[bytes] = None

  @property
  def hit(self) -> bool:
    return self.status == CacheStatus.HIT


CACHE_MISS = CacheLookup(CacheStatus.MISS)
CACHE_STALE = CacheLookup(CacheStatus.STALE)


def cache_key(prefix: str, spec: TransformSpec) -> CachePath:
  # Shared cache directories depend on this exact shape.
  crop = 'true' if spec.crop else 'false'
  return CachePath(
      f'{spec.cache_path}/{prefix}_w{spec.width}_h{spec.height}_c{crop}_'
      f'{spec.basename}{spec.image_type.extension()}')


def is_fresh(cache_time: int, mtime: float, now: float) -> bool:
  if cache_time == 0:
    return True
  return now - mtime < cache_time


class CacheStore:
  """Transformed images on local disk, one file per cache key.

  The filesystem is the only index: an entry's age is its mtime, and stale entries
  are removed lazily when a lookup observes them.
  """

  def __init__(
      self,
      log: LogContext,
      tasks: BackgroundTasks,
      now: Callable[[], float] = time.time,
  ):
    self.log = log
    self.tasks = tasks
    self.now = now

  def lookup(self, prefix: str, spec: TransformSpec) -> CacheLookup:
    path = cache_key(prefix, spec)
    try:
      st = os.stat(path)
    except FileNotFoundError:
      return CACHE_MISS
    except OSError as e:
      self.log.log_warning('failed to stat cache', {'reason': str(e), 'cache': path})
      return CACHE_MISS

    if not is_fresh(spec.cache_time, st.st_mtime, self.now()):
      self.log.log_debug('stale cache found', {'cache': path, 'mtime': st.st_mtime})
      self.tasks.submit('remove stale cache', self.remove, path, st.st_mtime)
      return CACHE_STALE

    try:
      body = Path(path).read_bytes()
    except OSError as e:
      self.log.log_warning('failed to read cache', {'reason': str(e), 'cache': path})
      return CACHE_MISS

    self.log.log_debug('from cache', {'cache': path, 'img_size': len(body)})
    return CacheLookup(CacheStatus.HIT, body)

  def write(self, prefix: str, spec: TransformSpec, body: bytes) -> bool:
    path = cache_key(prefix, spec)
    directory = os.path.dirname(path) or '.'
    tmp: Optional[str] = None
    try:
      os.makedirs(directory, exist_ok=True)
      with NamedTemporaryFile(dir=directory, prefix='.tmp-', delete=False) as f:
        tmp = f.name
        f.write(body)
      os.chmod(tmp, 0o644)
      os.replace(tmp, path)
    except OSError as e:
      self.log.log_error('failed to write cache', {'reason': str(e), 'cache': path})
      self.discard_temporary(tmp)
      return False

    self.log.log_debug('cache written', {'cache': path, 'img_size': len(body)})
    return True

  def schedule_write(self, prefix: str, spec: TransformSpec, body: bytes) -> Optional[Future]:
    return self.tasks.submit('write cache', self.write, prefix, spec, body)

  def remove(self, path: CachePath, mtime: float) -> None:
    # Leave the file alone if it was rewritten after it was found stale.
    try:
      if os.stat(path).st_mtime != mtime:
        return
      os.remove(path)
    except FileNotFoundError:
      pass
    except OSError as e:
      self.log.log_warning('failed to remove stale cache', {'reason': str(e), 'cache': path})

  def discard_temporary(self, tmp: Optional[str]) -> None:
    if tmp is None:
      return
    try:
      os.remove(tmp)
    except FileNotFoundError:
      pass
    except OSError as e:
      self.log.log_warning('failed to remove temporary file', {'reason': str(e), 'tmp': tmp})
