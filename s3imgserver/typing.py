from typing import NewType, NotRequired, Optional, TypedDict

S3Key = NewType('S3Key', str)
CachePath = NewType('CachePath', str)


class AwsConfigDict(TypedDict):
  aws_access: str
  aws_secret: str
  bucket_name: str
  file_path: NotRequired[str]
  region: NotRequired[str]
  endpoint_url: NotRequired[Optional[str]]
  timeout: NotRequired[float]


class HandlerConfigDict(TypedDict):
  name: str
  prefix: NotRequired[str]
  aws: AwsConfigDict
  error_image: NotRequired[str]
  error_resize_crop: NotRequired[bool]
  allowed_formats: NotRequired[Optional[list[str]]]
  output_format: NotRequired[str]
  cache_path: NotRequired[str]
  cache_time: NotRequired[Optional[int]]


class ConfigDict(TypedDict):
  handlers: list[HandlerConfigDict]
  http_port: NotRequired[int]
  https_enabled: NotRequired[bool]
  https_strict: NotRequired[bool]
  https_port: NotRequired[int]
  https_cert: NotRequired[str]
  https_key: NotRequired[str]
  log_level: NotRequired[str]
