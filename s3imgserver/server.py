import dataclasses
import threading
from http import HTTPStatus
from logging import Logger
from typing import Callable, Mapping, Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse

import s3imgserver
from s3imgserver.background import BackgroundTasks
from s3imgserver.cache import CacheStore, cache_key
from s3imgserver.config import Config, HandlerConfig
from s3imgserver.descriptor import TransformSpec, ValidationError, new_transform_spec
from s3imgserver.fallback import FallbackError, FallbackProvider
from s3imgserver.logger import LogContext
from s3imgserver.origin import FetchError, OriginClient
from s3imgserver.singleflight import SingleFlight
from s3imgserver.transform import Transformer

TOKEN_PARAM = 't'

Verifier = Callable[[str], bool]


@dataclasses.dataclass(frozen=True)
class ImageResponse:
  status: int
  body: bytes
  content_type: Optional[str]
  reason: str


@dataclasses.dataclass(frozen=True)
class Produced:
  body: bytes
  transformed: bool


def first_values(request: Request) -> dict[str, str]:
  qs: dict[str, str] = {}
  for k, v in request.query_params.multi_items():
    qs.setdefault(k, v)
  return qs


class ImgHandler:
  """The request pipeline for one configured route prefix."""

  def __init__(
      self,
      log: LogContext,
      config: HandlerConfig,
      origin: OriginClient,
      cache: CacheStore,
      transformer: Transformer,
      fallback: FallbackProvider,
      flights: SingleFlight[Produced],
      verify: Optional[Verifier] = None,
  ):
    self.log = log
    self.config = config
    self.prefix = config.route_prefix
    self.cache_prefix = config.cache_prefix
    self.origin = origin
    self.cache = cache
    self.transformer = transformer
    self.fallback = fallback
    self.flights = flights
    self.verify = verify

  def fallback_response(self, log: LogContext, spec: TransformSpec, reason: str) -> ImageResponse:
    try:
      body = self.fallback.provide(spec)
    except FallbackError as e:
      log.log_warning('no fallback image', {'reason': str(e)})
      body = b''

    return ImageResponse(
        status=HTTPStatus.NOT_FOUND, body=body, content_type=None, reason=reason)

  def produce(self, log: LogContext, spec: TransformSpec) -> Produced:
    source = self.origin.fetch(spec.bucket, spec.key)
    resized = self.transformer.try_apply(
        source, spec.width, spec.height, spec.crop, spec.image_type)
    if resized is None:
      return Produced(body=source, transformed=False)

    if spec.cache_enabled:
      self.cache.schedule_write(self.cache_prefix, spec, resized)
    return Produced(body=resized, transformed=True)

  def process(self, filename: str, qs: Mapping[str, str]) -> ImageResponse:
    # The token stays out of the logs.
    params = {k: v for k, v in qs.items() if k != TOKEN_PARAM}
    log = self.log.bind(prefix=self.prefix, filename=filename, qs=params)

    try:
      spec = new_transform_spec(qs, self.config, filename)
    except ValidationError as e:
      log.log_warning('invalid request', {'reason': str(e)})
      return self.fallback_response(log, e.spec, 'invalid request')

    if self.verify is not None and not self.verify(qs.get(TOKEN_PARAM, '')):
      log.log_warning('token rejected', {})
      return self.fallback_response(log, spec, 'token rejected')

    try:
      if spec.cache_enabled:
        lookup = self.cache.lookup(self.cache_prefix, spec)
        if lookup.hit and lookup.body is not None:
          return ImageResponse(
              status=HTTPStatus.OK,
              body=lookup.body,
              content_type=spec.image_type.mime(),
              reason='from cache')

      # Routes sharing a cache prefix may still point at different buckets.
      produced, shared = self.flights.do(
          cache_key(self.prefix, spec), lambda: self.produce(log, spec))
    except FetchError as e:
      log.log_warning('failed to fetch', {'reason': str(e), 'status': e.status})
      return self.fallback_response(log, spec, 'failed to fetch')
    except Exception as e:
      log.log_error('error during process()', {'reason': str(e)})
      return self.fallback_response(log, spec, 'error occurred')

    log.log_debug('produced', {'transformed': produced.transformed, 'shared': shared})
    return ImageResponse(
        status=HTTPStatus.OK,
        body=produced.body,
        content_type=spec.image_type.mime() if produced.transformed else None,
        reason='from origin')


class ImgServer:
  """Holds one pipeline per handler plus the state they share."""

  def __init__(self, log: LogContext, handlers: list[ImgHandler], tasks: BackgroundTasks):
    self.log = log
    self.handlers = handlers
    self.tasks = tasks
    self.lock = threading.Lock()
    self.closed = False

  @classmethod
  def from_config(
      cls,
      logger: Logger,
      config: Config,
      verify: Optional[Verifier] = None,
  ) -> 'ImgServer':
    log = LogContext(logger)
    tasks = BackgroundTasks(log)
    transformer = Transformer(log)
    fallback = FallbackProvider(log, transformer)
    cache = CacheStore(log, tasks)
    flights: SingleFlight[Produced] = SingleFlight()

    handlers = [
        ImgHandler(
            log=log.bind(handler=h.name),
            config=h,
            origin=OriginClient.from_config(log, h.aws),
            cache=cache,
            transformer=transformer,
            fallback=fallback,
            flights=flights,
            verify=verify) for h in config.handlers
    ]
    return cls(log, handlers, tasks)

  def close(self) -> None:
    with self.lock:
      if self.closed:
        return
      self.closed = True

    self.tasks.wait()
    self.tasks.shutdown()


def new_endpoint(handler: ImgHandler) -> Callable[[Request, str], Response]:

  def endpoint(request: Request, filename: str) -> Response:
    result = handler.process(filename, first_values(request))
    # Starlette derives Content-Length from the body, including the empty one.
    return Response(content=result.body, status_code=result.status, media_type=result.content_type)

  return endpoint


def create_app(server: ImgServer) -> FastAPI:

  app = FastAPI(title='s3imgserver', version=s3imgserver.version)

  for handler in server.handlers:
    app.add_api_route(
        f'/{handler.prefix}/{{filename}}',
        new_endpoint(handler),
        methods=['GET'],
        name=f'image:{handler.prefix}')
    server.log.log_info('route registered', {'prefix': handler.prefix})

  @app.get('/healthz', response_class=PlainTextResponse)
  def healthz() -> str:
    return 'ok'

  return app
