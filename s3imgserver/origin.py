from http import HTTPStatus
from typing import Any, Optional

import boto3
from botocore.awsrequest import AWSRequest
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from mypy_boto3_s3.client import S3Client

from s3imgserver.config import AwsConfig
from s3imgserver.logger import LogContext
from s3imgserver.typing import S3Key

ACL_HEADER = 'x-amz-acl'
ACL_PUBLIC_READ = 'public-read'


class FetchError(Exception):

  def __init__(self, message: str, status: Optional[int] = None):
    super().__init__(message)
    self.status = status


def client_error_status(exception: ClientError) -> Optional[int]:
  return exception.response.get('ResponseMetadata', {}).get('HTTPStatusCode')


def add_acl_header(request: AWSRequest, **_: Any) -> None:
  # SigV4 stamps X-Amz-Date itself; only the ACL header has to be added before signing.
  request.headers[ACL_HEADER] = ACL_PUBLIC_READ


def new_s3_client(aws: AwsConfig) -> S3Client:
  sess = boto3.Session(
      aws_access_key_id=aws.access or None,
      aws_secret_access_key=aws.secret or None,
      region_name=aws.region)
  s3: S3Client = sess.client(
      's3',
      endpoint_url=aws.endpoint_url,
      config=BotoConfig(
          connect_timeout=aws.timeout,
          read_timeout=aws.timeout,
          retries={
              'total_max_attempts': 1,
              'mode': 'standard',
          }))
  s3.meta.events.register('before-sign.s3.GetObject', add_acl_header)
  return s3


class OriginClient:
  """Fetches source objects from S3 with a single signed GET."""

  def __init__(self, log: LogContext, s3: S3Client):
    self.log = log
    self.s3 = s3

  @classmethod
  def from_config(cls, log: LogContext, aws: AwsConfig) -> 'OriginClient':
    return cls(log, new_s3_client(aws))

  def fetch(self, bucket: str, key: S3Key) -> bytes:
    try:
      res = self.s3.get_object(Bucket=bucket, Key=key)
      status = res.get('ResponseMetadata', {}).get('HTTPStatusCode', HTTPStatus.OK)
      if status != HTTPStatus.OK:
        raise FetchError(f'unexpected status from origin: {status}', status)
      body = res['Body'].read()
    except ClientError as e:
      raise FetchError(f'origin request failed: {e}', client_error_status(e)) from e
    except BotoCoreError as e:
      raise FetchError(f'origin request failed: {e}') from e

    self.log.log_debug('retrieved image from origin', {
        'bucket': bucket,
        'key': key,
        'img_size': len(body),
    })
    return body
