from pathlib import Path

from s3imgserver.descriptor import TransformSpec
from s3imgserver.logger import LogContext
from s3imgserver.transform import Transformer


class FallbackError(Exception):
  pass


class FallbackProvider:
  """Serves the handler's error image in place of a result that could not be produced."""

  def __init__(self, log: LogContext, transformer: Transformer):
    self.log = log
    self.transformer = transformer

  def provide(self, spec: TransformSpec) -> bytes:
    if spec.fallback_image == '':
      raise FallbackError('error image not specified')

    try:
      body = Path(spec.fallback_image).read_bytes()
    except OSError as e:
      raise FallbackError(f'failed to read error image: {e}') from e

    if not spec.fallback_resize:
      return body

    return self.transformer.apply(body, spec.width, spec.height, spec.crop, spec.image_type)
