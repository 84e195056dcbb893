import argparse
import asyncio
import sys
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse

from s3imgserver.config import Config, ConfigError, load_config
from s3imgserver.logger import LogContext, init_logging
from s3imgserver.server import ImgServer, Verifier, create_app

DEFAULT_CONFIG = 'config.json'
HOST = '0.0.0.0'


def create_redirect_app(https_port: int) -> FastAPI:
  app = FastAPI(openapi_url=None, docs_url=None, redoc_url=None)

  @app.api_route('/{path:path}', methods=['GET', 'HEAD'])
  def redirect(request: Request, path: str) -> RedirectResponse:
    host = request.headers.get('host', '').split(':', 1)[0]
    netloc = host if https_port == 443 else f'{host}:{https_port}'
    url = request.url.replace(scheme='https', netloc=netloc)
    return RedirectResponse(str(url), status_code=301)

  return app


def server_configs(config: Config, app: FastAPI) -> list[uvicorn.Config]:
  configs = []
  if config.validate_https():
    configs.append(
        uvicorn.Config(
            app,
            host=HOST,
            port=config.https_port,
            ssl_certfile=config.https_cert,
            ssl_keyfile=config.https_key,
            log_config=None))

  if config.validate_https() and config.https_strict:
    configs.append(
        uvicorn.Config(
            create_redirect_app(config.https_port),
            host=HOST,
            port=config.http_port,
            log_config=None))
  else:
    configs.append(uvicorn.Config(app, host=HOST, port=config.http_port, log_config=None))

  return configs


async def serve(configs: list[uvicorn.Config]) -> None:
  await asyncio.gather(*(uvicorn.Server(c).serve() for c in configs))


def run(verify: Optional[Verifier] = None, argv: Optional[list[str]] = None) -> int:
  parser = argparse.ArgumentParser(description='On-demand image resizing proxy for S3')
  parser.add_argument('-c', dest='config', default=DEFAULT_CONFIG, help='Configuration')
  args = parser.parse_args(argv)

  try:
    config = load_config(args.config)
  except ConfigError as e:
    print(f'Error: {e}', file=sys.stderr)
    return 1

  logger = init_logging(config.log_level)
  log = LogContext(logger)

  server = ImgServer.from_config(logger, config, verify)
  app = create_app(server)
  configs = server_configs(config, app)
  log.log_info('starting', {
      'handlers': [h.prefix for h in server.handlers],
      'ports': [c.port for c in configs],
      'https': config.validate_https(),
  })

  try:
    asyncio.run(serve(configs))
  finally:
    # Listeners share the app, so background work stops only after all of them exit.
    server.close()
  return 0


def main() -> None:
  sys.exit(run())


if __name__ == '__main__':
  main()
