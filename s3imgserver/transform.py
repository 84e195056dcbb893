import dataclasses
import time
from typing import Optional

from pyvips import CompassDirection, Extend, Image, Kernel  # type: ignore

from s3imgserver.descriptor import ImageType
from s3imgserver.logger import LogContext

QUALITY = 75


class TransformError(Exception):
  pass


@dataclasses.dataclass(eq=True, frozen=True)
class Size:
  width: int
  height: int

  @classmethod
  def from_image(cls, image: Image) -> 'Size':
    return cls(image.get('width'), image.get('height'))


def calc_target(original: Size, width: int, height: int) -> Size:
  if width == 0 and height == 0:
    return original
  if width == 0:
    width = max(1, round(original.width * height / original.height))
  if height == 0:
    height = max(1, round(original.height * width / original.width))
  return Size(width, height)


def calc_scale(original: Size, target: Size, crop: bool) -> float:
  horizontal = target.width / original.width
  vertical = target.height / original.height
  # Cover the target when cropping, fit inside it otherwise.
  return max(horizontal, vertical) if crop else min(horizontal, vertical)


class Transformer:
  """Resizes, crops and re-encodes images with libvips."""

  def __init__(self, log: LogContext):
    self.log = log

  def resize(
      self,
      body: bytes,
      width: int,
      height: int,
      crop: bool,
      image_type: ImageType,
  ) -> bytes:
    try:
      image: Image = Image.new_from_buffer(body, '')
      original = Size.from_image(image)
      target = calc_target(original, width, height)

      if target != original:
        image = image.resize(calc_scale(original, target, crop), kernel=Kernel.CUBIC)
        if Size.from_image(image) != target:
          image = image.gravity(
              CompassDirection.CENTRE, target.width, target.height, extend=Extend.WHITE)

      if image_type.is_lossy():
        return image.write_to_buffer(image_type.extension(), Q=QUALITY)
      return image.write_to_buffer(image_type.extension())
    except Exception as e:
      raise TransformError(str(e)) from e

  def try_apply(
      self,
      body: bytes,
      width: int,
      height: int,
      crop: bool,
      image_type: ImageType,
  ) -> Optional[bytes]:
    start_ns = time.time_ns()
    try:
      resized = self.resize(body, width, height, crop, image_type)
    except TransformError as e:
      self.log.log_warning('failed to resize', {'reason': str(e), 'img_size': len(body)})
      return None

    self.log.log_debug(
        'resized', {
            'width': width,
            'height': height,
            'crop': crop,
            'format': image_type.name,
            'img_size': len(resized),
            'vips_us': (time.time_ns() - start_ns) // 1000,
        })
    return resized

  def apply(self, body: bytes, width: int, height: int, crop: bool, image_type: ImageType) -> bytes:
    """Returns the transformed image, or `body` unchanged when it cannot be transformed."""
    resized = self.try_apply(body, width, height, crop, image_type)
    return body if resized is None else resized
