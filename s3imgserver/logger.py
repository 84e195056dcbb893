import datetime
import logging
import sys
from logging import Logger
from typing import Any

from pythonjsonlogger.jsonlogger import JsonFormatter

import s3imgserver


class MyJsonFormatter(JsonFormatter):

  def __init__(self) -> None:
    super().__init__(json_ensure_ascii=False)

  def add_fields(self, log_record: Any, record: Any, message_dict: Any) -> None:
    log_record['_ts'] = datetime.datetime.now(datetime.UTC).strftime('%Y-%m-%dT%H:%M:%S.%fZ')

    if log_record.get('level'):
      log_record['level'] = log_record['level'].upper()
    else:
      log_record['level'] = record.levelname

    log_record['version'] = s3imgserver.version

    super().add_fields(log_record, record, message_dict)


def init_logging(level: int | str = logging.DEBUG) -> Logger:
  # https://stackoverflow.com/a/11548754/1160341
  logger = logging.getLogger()
  logger.setLevel(level)
  for h in logger.handlers:
    logger.removeHandler(h)

  logging.getLogger('botocore').setLevel(logging.WARNING)
  logging.getLogger('urllib3').setLevel(logging.INFO)

  log = logging.getLogger('s3imgserver')
  for h in log.handlers:
    log.removeHandler(h)
  log_handler = logging.StreamHandler()
  log_handler.setFormatter(MyJsonFormatter())
  log_handler.setLevel(level)
  log_handler.setStream(sys.stderr)
  log.addHandler(log_handler)
  log.setLevel(level)
  log.propagate = False

  return log


class LogContext:
  """Structured logging helpers shared by the pipeline components."""

  def __init__(self, log: Logger, **context: Any):
    self.log = log
    self.context = context

  def bind(self, **context: Any) -> 'LogContext':
    return LogContext(self.log, **{**self.context, **context})

  def log_debug(self, message: str, dict: dict[str, Any]) -> None:
    self.log.debug({
        'message': message,
        **self.context,
        **dict,
    })

  def log_info(self, message: str, dict: dict[str, Any]) -> None:
    self.log.info({
        'message': message,
        **self.context,
        **dict,
    })

  def log_warning(self, message: str, dict: dict[str, Any]) -> None:
    self.log.warning({
        'message': message,
        **self.context,
        **dict,
    })

  def log_error(self, message: str, dict: dict[str, Any]) -> None:
    self.log.error({
        'message': message,
        **self.context,
        **dict,
    })
