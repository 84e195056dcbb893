import dataclasses
import json
from pathlib import Path
from typing import Optional

from s3imgserver.typing import AwsConfigDict, ConfigDict, HandlerConfigDict

DEFAULT_CACHE_TIME = 7 * 24 * 60 * 60
DEFAULT_HTTP_PORT = 80
DEFAULT_FETCH_TIMEOUT = 10.0
DEFAULT_REGION = 'us-east-1'


class ConfigError(Exception):
  pass


@dataclasses.dataclass(eq=True, frozen=True)
class AwsConfig:
  access: str
  secret: str
  bucket_name: str
  file_path: str = ''
  region: str = DEFAULT_REGION
  endpoint_url: Optional[str] = None
  timeout: float = DEFAULT_FETCH_TIMEOUT

  @classmethod
  def from_dict(cls, d: AwsConfigDict) -> 'AwsConfig':
    return cls(
        access=d.get('aws_access', ''),
        secret=d.get('aws_secret', ''),
        bucket_name=d.get('bucket_name', ''),
        file_path=d.get('file_path', ''),
        region=d.get('region', DEFAULT_REGION),
        endpoint_url=d.get('endpoint_url'),
        timeout=float(d.get('timeout', DEFAULT_FETCH_TIMEOUT)))


@dataclasses.dataclass(eq=True, frozen=True)
class HandlerConfig:
  name: str
  aws: AwsConfig
  prefix: str = ''
  error_image: str = ''
  error_resize_crop: bool = True
  allowed_formats: tuple[str, ...] = ()
  output_format: str = ''
  cache_path: str = ''
  # Seconds; 0 never expires, negative disables the cache.
  cache_time: int = DEFAULT_CACHE_TIME

  @property
  def route_prefix(self) -> str:
    return self.prefix if self.prefix != '' else self.name

  @property
  def cache_prefix(self) -> str:
    # Cache file names carry only the first segment of the route prefix.
    return self.route_prefix.split('/', 1)[0]

  @classmethod
  def from_dict(cls, d: HandlerConfigDict) -> 'HandlerConfig':
    if 'name' not in d:
      raise ConfigError('handler without name')
    if 'aws' not in d or not isinstance(d['aws'], dict):
      raise ConfigError(f'handler "{d["name"]}" has no aws section')

    cache_time = d.get('cache_time')
    return cls(
        name=d['name'],
        aws=AwsConfig.from_dict(d['aws']),
        prefix=d.get('prefix', ''),
        error_image=d.get('error_image', ''),
        error_resize_crop=d.get('error_resize_crop', True),
        allowed_formats=tuple(d.get('allowed_formats') or ()),
        output_format=d.get('output_format', ''),
        cache_path=d.get('cache_path', ''),
        cache_time=DEFAULT_CACHE_TIME if cache_time is None else int(cache_time))


@dataclasses.dataclass(eq=True, frozen=True)
class Config:
  handlers: tuple[HandlerConfig, ...]
  http_port: int = DEFAULT_HTTP_PORT
  https_enabled: bool = False
  https_strict: bool = False
  https_port: int = 0
  https_cert: str = ''
  https_key: str = ''
  log_level: str = 'INFO'

  def validate_https(self) -> bool:
    return (
        self.https_enabled and self.https_key != '' and self.https_cert != ''
        and self.https_port != 0 and self.https_port != self.http_port)

  @classmethod
  def from_dict(cls, d: ConfigDict) -> 'Config':
    try:
      return cls(
          handlers=tuple(HandlerConfig.from_dict(h) for h in d.get('handlers', [])),
          http_port=int(d.get('http_port') or DEFAULT_HTTP_PORT),
          https_enabled=bool(d.get('https_enabled', False)),
          https_strict=bool(d.get('https_strict', False)),
          https_port=int(d.get('https_port', 0)),
          https_cert=d.get('https_cert', ''),
          https_key=d.get('https_key', ''),
          log_level=d.get('log_level', 'INFO').upper())
    except (TypeError, ValueError, AttributeError) as e:
      raise ConfigError(f'invalid configuration: {e}') from e


def load_config(path: str | Path) -> Config:
  try:
    content = Path(path).read_text()
  except OSError as e:
    raise ConfigError(f'failed to read {path}: {e}') from e

  try:
    d = json.loads(content)
  except json.JSONDecodeError as e:
    raise ConfigError(f'failed to parse {path}: {e}') from e

  if not isinstance(d, dict):
    raise ConfigError(f'failed to parse {path}: top level must be an object')

  return Config.from_dict(d)
