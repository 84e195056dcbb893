import io
import logging
from logging import Logger
from pathlib import Path
from typing import Any, Generator

import pytest
from botocore.exceptions import ClientError
from pyvips import Image  # type: ignore

from s3imgserver.background import BackgroundTasks
from s3imgserver.logger import LogContext, MyJsonFormatter


class FakeS3:
  """Stands in for an S3 client; serves objects from a dict and counts requests."""

  def __init__(self, objects: dict[tuple[str, str], bytes] | None = None):
    self.objects = objects if objects is not None else {}
    self.requests: list[tuple[str, str]] = []

  def get_object(self, Bucket: str, Key: str) -> dict[str, Any]:
    self.requests.append((Bucket, Key))
    if (Bucket, Key) not in self.objects:
      raise ClientError(
          {
              'Error': {
                  'Code': 'NoSuchKey',
                  'Message': 'The specified key does not exist.',
              },
              'ResponseMetadata': {
                  'HTTPStatusCode': 404,
              },
          }, 'GetObject')

    return {
        'Body': io.BytesIO(self.objects[(Bucket, Key)]),
        'ResponseMetadata': {
            'HTTPStatusCode': 200,
        },
    }


def two_tone(width: int, height: int, suffix: str = '.png') -> bytes:
  """White left half, black right half."""
  half = width // 2
  white = (Image.black(half, height, bands=3) + 255).cast('uchar')
  black = Image.black(width - half, height, bands=3)
  return white.join(black, 'horizontal').write_to_buffer(suffix)


def solid(width: int, height: int, value: int, suffix: str = '.png') -> bytes:
  return (Image.black(width, height, bands=3) + value).cast('uchar').write_to_buffer(suffix)


def load(body: bytes) -> Image:
  return Image.new_from_buffer(body, '')


def size_of(body: bytes) -> tuple[int, int]:
  image = load(body)
  return (image.get('width'), image.get('height'))


@pytest.fixture
def logger(tmp_path: Path) -> Generator[Logger, None, None]:
  log = logging.getLogger(f's3imgserver.test.{tmp_path.name}')
  log.setLevel(logging.DEBUG)
  log.propagate = False

  log_file = open(tmp_path / 'test.log', 'w')
  log_handler = logging.StreamHandler()
  log_handler.setFormatter(MyJsonFormatter())
  log_handler.setLevel(logging.DEBUG)
  log_handler.setStream(log_file)
  log.addHandler(log_handler)

  yield log

  log.removeHandler(log_handler)
  log_file.close()


@pytest.fixture
def log(logger: Logger) -> LogContext:
  return LogContext(logger)


@pytest.fixture
def tasks(log: LogContext) -> Generator[BackgroundTasks, None, None]:
  tasks = BackgroundTasks(log)
  yield tasks
  tasks.wait()
  tasks.shutdown()
