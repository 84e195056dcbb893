import json
from pathlib import Path
from typing import Any

import pytest

from s3imgserver.config import (
    DEFAULT_CACHE_TIME,
    AwsConfig,
    Config,
    ConfigError,
    HandlerConfig,
    load_config
)

HANDLER = {
    'name': 'photos',
    'aws': {
        'aws_access': 'access',
        'aws_secret': 'secret',
        'bucket_name': 'bucket',
        'file_path': 'img/',
    },
    'error_image': 'error.png',
    'allowed_formats': ['.jpg', '.png'],
    'output_format': 'jpg',
    'cache_path': '/var/cache/img',
    'cache_time': 3600,
}


def write_config(tmp_path: Path, content: Any) -> Path:
  path = tmp_path / 'config.json'
  path.write_text(content if isinstance(content, str) else json.dumps(content))
  return path


def test_load_config(tmp_path: Path) -> None:
  config = load_config(
      write_config(tmp_path, {
          'http_port': 8080,
          'log_level': 'debug',
          'handlers': [HANDLER],
      }))

  assert config == Config(
      handlers=(
          HandlerConfig(
              name='photos',
              aws=AwsConfig(
                  access='access', secret='secret', bucket_name='bucket', file_path='img/'),
              error_image='error.png',
              allowed_formats=('.jpg', '.png'),
              output_format='jpg',
              cache_path='/var/cache/img',
              cache_time=3600),),
      http_port=8080,
      log_level='DEBUG')


def test_handler_defaults() -> None:
  handler = HandlerConfig.from_dict({
      'name': 'photos',
      'aws': {
          'aws_access': '',
          'aws_secret': '',
          'bucket_name': 'bucket',
      },
      'cache_time': None,
  })

  assert handler.cache_time == DEFAULT_CACHE_TIME
  assert handler.route_prefix == 'photos'
  assert handler.allowed_formats == ()
  assert handler.error_resize_crop is True
  assert handler.aws.timeout == 10.0


def test_prefix_override() -> None:
  handler = HandlerConfig.from_dict({**HANDLER, 'prefix': 'p'})  # type: ignore
  assert handler.route_prefix == 'p'


@pytest.mark.parametrize(
    'prefix,cache_prefix', [('', 'photos'), ('p', 'p'), ('p/v2', 'p')])
def test_cache_prefix(prefix: str, cache_prefix: str) -> None:
  handler = HandlerConfig.from_dict({**HANDLER, 'prefix': prefix})  # type: ignore
  assert handler.cache_prefix == cache_prefix


def test_zero_and_negative_cache_time() -> None:
  assert HandlerConfig.from_dict({**HANDLER, 'cache_time': 0}).cache_time == 0  # type: ignore
  assert HandlerConfig.from_dict({**HANDLER, 'cache_time': -1}).cache_time == -1  # type: ignore


@pytest.mark.parametrize(
    'content', [
        '{',
        '[]',
        {
            'handlers': [{
                'aws': {}
            }]
        },
        {
            'handlers': [{
                'name': 'photos'
            }]
        },
        {
            'handlers': [HANDLER],
            'http_port': 'eighty'
        },
    ],
    ids=['broken', 'not-object', 'no-name', 'no-aws', 'bad-port'])
def test_invalid_config(tmp_path: Path, content: Any) -> None:
  with pytest.raises(ConfigError):
    load_config(write_config(tmp_path, content))


def test_missing_config(tmp_path: Path) -> None:
  with pytest.raises(ConfigError, match='failed to read'):
    load_config(tmp_path / 'missing.json')


@pytest.mark.parametrize(
    'https,valid', [
        ({}, False),
        ({
            'https_enabled': True,
            'https_port': 443,
            'https_cert': 'c',
            'https_key': 'k'
        }, True),
        ({
            'https_enabled': False,
            'https_port': 443,
            'https_cert': 'c',
            'https_key': 'k'
        }, False),
        ({
            'https_enabled': True,
            'https_port': 443,
            'https_cert': '',
            'https_key': 'k'
        }, False),
        ({
            'https_enabled': True,
            'https_port': 80,
            'https_cert': 'c',
            'https_key': 'k'
        }, False),
    ])
def test_validate_https(https: dict[str, Any], valid: bool) -> None:
  config = Config.from_dict({'handlers': [], **https})  # type: ignore
  assert config.validate_https() is valid
