import dataclasses
import math
import os
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

from s3imgserver.config import HandlerConfig
from s3imgserver.typing import S3Key

MAX_DIMENSION = 3064

DEFAULT_ALLOWED_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.gif', '.webp')

TRUE_STRINGS = frozenset(['1', 't', 'true', 'y', 'yes', 'on'])


class ValidationError(Exception):

  def __init__(self, message: str, spec: 'TransformSpec'):
    super().__init__(message)
    self.spec = spec


class ImageType(Enum):
  WEBP = '.webp'
  JPEG = '.jpg'
  PNG = '.png'

  def extension(self) -> str:
    return self.value

  def mime(self) -> str:
    return MIME_TYPES[self]

  def is_lossy(self) -> bool:
    return self in (ImageType.WEBP, ImageType.JPEG)

  @classmethod
  def maybe_from_name(cls, name: str) -> Optional['ImageType']:
    """Looks up a format by its extension without the leading dot (`webp`, `jpg`, `png`)."""
    if name == '':
      return None
    return IMAGE_TYPES_BY_EXTENSION.get(f'.{name}')


IMAGE_TYPES_BY_EXTENSION: Mapping[str, ImageType] = MappingProxyType(
    {t.extension(): t for t in ImageType})

MIME_TYPES: Mapping[ImageType, str] = MappingProxyType(
    {
        ImageType.WEBP: 'image/webp',
        ImageType.JPEG: 'image/jpeg',
        ImageType.PNG: 'image/png',
    })

DEFAULT_IMAGE_TYPE = ImageType.WEBP


@dataclasses.dataclass(eq=True, frozen=True)
class TransformSpec:
  bucket: str
  path: str
  filename: str
  width: int
  height: int
  crop: bool
  image_type: ImageType
  cache_time: int
  cache_path: str
  fallback_image: str
  fallback_resize: bool

  @property
  def key(self) -> S3Key:
    return S3Key(f'{self.path}{self.filename}')

  @property
  def basename(self) -> str:
    return os.path.splitext(self.filename)[0]

  @property
  def cache_enabled(self) -> bool:
    return 0 <= self.cache_time


def parse_dimension(s: Optional[str]) -> int:
  if s is None:
    return 0

  try:
    f = float(s)
  except ValueError:
    return 0

  if not math.isfinite(f):
    return 0

  return max(0, min(int(f), MAX_DIMENSION))


def parse_bool(s: str) -> bool:
  return s.strip().lower() in TRUE_STRINGS


def default_image_type(handler: HandlerConfig) -> ImageType:
  configured = ImageType.maybe_from_name(handler.output_format.lstrip('.').lower())
  return DEFAULT_IMAGE_TYPE if configured is None else configured


def accept_filename(filename: str, allowed: tuple[str, ...]) -> str:
  _, ext = os.path.splitext(filename)
  accepted = allowed if 0 < len(allowed) else DEFAULT_ALLOWED_EXTENSIONS
  return filename if ext in accepted else ''


def new_transform_spec(
    qs: Mapping[str, str],
    handler: HandlerConfig,
    filename: str,
) -> TransformSpec:
  """Builds the transform for one request.

  `qs` holds the first value of each query parameter. Raises `ValidationError` when
  the object name is rejected by the allow-list or the handler has no bucket; the
  error carries the spec so the fallback image can still be sized as requested.
  """
  crop = True
  if qs.get('c', '') != '':
    crop = parse_bool(qs['c'])

  image_type = default_image_type(handler)
  requested = ImageType.maybe_from_name(qs.get('f', ''))
  if requested is not None:
    image_type = requested

  spec = TransformSpec(
      bucket=handler.aws.bucket_name,
      path=handler.aws.file_path,
      filename=accept_filename(filename, handler.allowed_formats),
      width=parse_dimension(qs.get('w')),
      height=parse_dimension(qs.get('h')),
      crop=crop,
      image_type=image_type,
      cache_time=handler.cache_time,
      cache_path=handler.cache_path,
      fallback_image=handler.error_image,
      fallback_resize=handler.error_resize_crop)

  if spec.filename == '':
    raise ValidationError(f'file name not allowed: {filename}', spec)
  if spec.bucket == '':
    raise ValidationError('bucket cannot be an empty string', spec)

  return spec
