"""Public HTTP entrypoint for STK push payments.

Thin layer over `PaymentService`: decodes request bodies, relays the core's
results, and maps the error taxonomy onto status codes. The gateway callback
route always answers 200 so Daraja does not redeliver.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from stkpay.common.config import Settings, settings
from stkpay.common.errors import (
    AuthError,
    GatewayError,
    MalformedCallbackError,
    PaymentError,
    TransactionNotFoundError,
    ValidationError,
)
from stkpay.common.logging import configure_logging, logger, trace_id_ctx
from stkpay.common.metrics import (
    http_request_duration_seconds,
    http_requests_total,
    metrics_response,
)
from stkpay.common.startup import log_startup_config
from stkpay.common.tracing import instrument_app, setup_tracing
from stkpay.services.orchestrator.schemas import CALLBACK_FAILED, StkPushRequest
from stkpay.services.orchestrator.service import PaymentService
from stkpay.services.orchestrator.store import TransactionStore
from stkpay.services.provider_adapter.client import DarajaClient


def build_service(config: Settings, client: DarajaClient | None = None) -> PaymentService:
    """Wire a fresh, empty transaction store and gateway client together."""

    client = client or DarajaClient(
        config.gateway_base_url,
        token_timeout=config.token_timeout_seconds,
        push_timeout=config.push_timeout_seconds,
    )
    return PaymentService(TransactionStore(), client, config, service_name=config.service_name)


def create_app(config: Settings | None = None, client: DarajaClient | None = None) -> FastAPI:
    """Build the FastAPI app with its own `PaymentService`."""

    config = config or settings
    configure_logging(config.service_name, config.log_level)
    if config.otel_enabled:
        setup_tracing(config.service_name, config.otel_exporter_otlp_endpoint)
    log_startup_config(
        config,
        [
            "environment",
            "mpesa_environment",
            "gateway_base_url",
            "mpesa_consumer_key",
            "mpesa_consumer_secret",
            "mpesa_shortcode",
            "mpesa_passkey",
            "callback_url",
            "settled_retention_seconds",
        ],
    )
    service = build_service(config, client)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        """Run the retention purge loop with app lifecycle when enabled."""

        purge_task = None
        if config.settled_retention_seconds is not None:
            purge_task = asyncio.create_task(service.retention_worker())
        yield
        if purge_task is not None:
            purge_task.cancel()

    app = FastAPI(title="STK Push Payments", lifespan=lifespan)
    app.state.service = service
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if config.otel_enabled:
        instrument_app(app)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        """Bodies FastAPI cannot decode are caller errors in the same shape as `ValidationError`."""

        logger.warning("request rejected path=%s errors=%s", request.url.path, exc.errors())
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid request body"})

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Record request count and latency, and bind a trace id for logs."""

        trace_id_ctx.set(request.headers.get("x-correlation-id") or str(uuid4()))
        start = perf_counter()
        route = request.url.path
        method = request.method
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            route_obj = request.scope.get("route")
            if route_obj is not None and getattr(route_obj, "path", None):
                route = route_obj.path
            return response
        finally:
            elapsed = max(0.0, perf_counter() - start)
            http_request_duration_seconds.labels(
                service=config.service_name,
                route=route,
                method=method,
            ).observe(elapsed)
            http_requests_total.labels(
                service=config.service_name,
                route=route,
                method=method,
                status_code=str(status_code),
            ).inc()

    @app.get("/")
    def root():
        return {"message": "app is running well"}

    @app.get("/api")
    def liveness():
        """Liveness payload used by the frontend."""

        return {
            "status": "Backend is running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": config.environment,
        }

    @app.get("/api/debug/config")
    def debug_config():
        """Report which gateway settings are present, never their values."""

        return {
            "success": True,
            "config": {**config.gateway_config_presence(), "environment": config.environment},
        }

    @app.post("/api/mpesa/stk-push")
    async def stk_push(req: StkPushRequest):
        """Prompt the customer's phone for payment authorization."""

        try:
            result = await service.initiate(req)
        except ValidationError as exc:
            return JSONResponse(status_code=400, content={"success": False, "error": exc.message})
        except (AuthError, GatewayError) as exc:
            logger.error("stk push failed: %s details=%s", exc.message, exc.details)
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "error": "Failed to initiate payment",
                    "details": exc.details if exc.details is not None else exc.message,
                },
            )
        except PaymentError as exc:
            logger.error("stk push failed: %s", exc.message)
            return JSONResponse(
                status_code=500,
                content={"success": False, "error": "Failed to initiate payment", "details": exc.message},
            )
        return {
            "success": True,
            "message": "STK Push initiated successfully",
            "checkoutRequestId": result.checkout_request_id,
            "customerMessage": result.customer_message,
        }

    @app.post("/api/mpesa/callback")
    async def mpesa_callback(request: Request):
        """Gateway result notification; acknowledged with 200 in every case."""

        try:
            body = await request.json()
            logger.info("callback received body=%s", body)
            ack = await service.reconcile(body)
        except (ValueError, MalformedCallbackError) as exc:
            logger.warning("malformed callback rejected: %s", exc)
            ack = CALLBACK_FAILED
        except Exception:
            logger.exception("callback processing failed")
            ack = CALLBACK_FAILED
        return ack.model_dump()

    @app.get("/api/transactions/{checkout_request_id}")
    async def get_transaction(checkout_request_id: str):
        """Current status of one transaction for polling clients."""

        try:
            txn = await service.get_status(checkout_request_id)
        except TransactionNotFoundError as exc:
            return JSONResponse(status_code=404, content={"success": False, "error": exc.message})
        return {"success": True, "transaction": txn.to_public()}

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    @app.get("/health")
    def health():
        """Container health probe endpoint."""

        return {"ok": True}

    return app


app = create_app()
