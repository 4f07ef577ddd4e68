"""
Ticket pipeline service entry point.

USAGE:
    ticket-pipeline [--services api,fulfillment,analytics] [--port 3000]
    uvicorn --factory ticket_pipeline.main:app_factory   (environment only)

One process serves HTTP and runs the enabled stages on the same event loop.
The stages can also be run as three separate services:

    ticket-pipeline --services api --port 3000
    ticket-pipeline --services fulfillment --port 3001
    ticket-pipeline --services analytics --port 4000
"""

import argparse
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .analytics_service.routes import router as analytics_router
from .config import PipelineConfig, load_config
from .fulfillment_service.routes import router as fulfillment_router
from .logger import setup_logger
from .messaging.bus import BrokerConnection
from .order_service.routes import router as order_router
from .pipeline import Pipeline

logger = logging.getLogger(__name__)


def create_app(
    config: PipelineConfig,
    broker: Optional[BrokerConnection] = None,
    pipeline: Optional[Pipeline] = None,
) -> FastAPI:
    pipeline = pipeline or Pipeline(config, broker)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await pipeline.start()
        yield
        await pipeline.stop()

    app = FastAPI(title="Ticket Pipeline", lifespan=lifespan)
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def bad_request(request: Request, exc: RequestValidationError):
        # Client input errors are reported as 400, never 422
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "detail": jsonable_errors(exc)},
        )

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "service": "+".join(sorted(config.services)),
            **pipeline.health(),
        }

    if config.runs("api"):
        app.include_router(order_router)
    if config.runs("fulfillment"):
        app.include_router(fulfillment_router)
    if config.runs("analytics"):
        app.include_router(analytics_router)

    return app


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Ticket order pipeline (order API, fulfillment, analytics)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  RABBITMQ_URL               AMQP URL (required)
  ENABLED_SERVICES           api,fulfillment,analytics (default: all)
  HTTP_HOST / HTTP_PORT      Bind address (default: 0.0.0.0:3000)
  KEEPALIVE_INTERVAL         Consumer keep-alive sweep in seconds (default: 300)
  LOG_LEVEL                  Logging level (default: INFO)
  LOG_FORMAT                 json or text (default: json)
        """,
    )
    parser.add_argument("--services", type=str, help="Comma separated stages to run (overrides ENABLED_SERVICES)")
    parser.add_argument("--host", type=str, help="Bind host (overrides HTTP_HOST)")
    parser.add_argument("--port", type=int, help="Bind port (overrides HTTP_PORT)")
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (overrides LOG_LEVEL)",
    )
    parser.add_argument("--log-format", type=str, choices=["json", "text"], help="Log output format (overrides LOG_FORMAT)")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> PipelineConfig:
    overrides = {
        "enabled_services": args.services,
        "http_host": args.host,
        "http_port": args.port,
        "log_level": args.log_level,
        "log_format": args.log_format,
    }
    return load_config(**{k: v for k, v in overrides.items() if v is not None})


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        config = build_config(args)
    except Exception as e:
        print(f"ERROR: Failed to load configuration: {e}", file=sys.stderr)
        return 1

    setup_logger(
        service_name="ticket-" + "+".join(sorted(config.services)),
        log_level=config.log_level,
        log_format=config.log_format,
    )
    logger.info(
        "Starting ticket pipeline",
        extra={
            "services": sorted(config.services),
            "order_queue": config.order_queue,
            "analytics_queue": config.analytics_queue,
            "port": config.http_port,
        },
    )

    uvicorn.run(create_app(config), host=config.http_host, port=config.http_port, log_config=None)
    return 0


def app_factory() -> FastAPI:
    """Build the app from the environment: `uvicorn --factory ticket_pipeline.main:app_factory`."""
    config = load_config()
    setup_logger("ticket-pipeline", config.log_level, config.log_format)
    return create_app(config)


if __name__ == "__main__":
    sys.exit(main())
