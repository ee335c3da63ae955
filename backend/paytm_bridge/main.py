"""
Paytm Bridge - FastAPI Application

Payment mediator between merchant storefronts and the Paytm gateway.
Creates signed orders, reconciles them from callbacks and status inquiries.
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional
import logging

from .config import settings as default_settings
from .container import ServiceContainer, build_container
from .exceptions import ConflictError, PaymentError
from .api.payments import router as payments_router


logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


configure_logging(default_settings.log_level)


def _error_response(status_code: int, content: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, **content})


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        container: Prebuilt services (tests inject one with a mock gateway);
            built from environment settings when omitted
    """
    container = container or build_container(default_settings)
    settings = container.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        - Startup: create tables, start reconciliation sweep if enabled
        - Shutdown: stop sweep, close gateway client and engine
        """
        logger.info("Starting Paytm bridge server...")
        logger.info(
            f"Environment: {settings.environment}, MID: {settings.paytm_mid}, "
            f"authenticity policy: {settings.authenticity_policy}"
        )
        if settings.authenticity_policy == "permissive" and settings.environment == "production":
            logger.warning("Permissive authenticity policy in production: unsigned callbacks will be applied")

        try:
            await container.startup()
        except Exception as e:
            logger.error(f"Failed to start services: {e}")
            raise

        logger.info("Server startup complete")

        yield

        logger.info("Shutting down Paytm bridge server...")
        await container.shutdown()

    app = FastAPI(
        title="Paytm Bridge API",
        description="Paytm payment mediation: order initiation, callbacks, reconciliation",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PaymentError)
    async def payment_error_handler(request: Request, exc: PaymentError):
        """
        Handle payment errors with the standard error envelope.

        Conflicts are logged as audit events; details are withheld in production.
        """
        log = logger.warning if isinstance(exc, ConflictError) or exc.http_status < 500 else logger.error
        log(f"Payment error: {exc.error_code} - {exc.message}", extra={"details": exc.details})

        content = exc.to_dict()
        if not settings.expose_error_details:
            content["details"] = {}
        return _error_response(exc.http_status, content)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        """Unknown routes and unsupported methods use the same envelope."""
        if exc.status_code == 404:
            error_code, message = "paytm:route_not_found", "Route not found"
        elif exc.status_code == 405:
            error_code, message = "paytm:method_not_allowed", "Method not allowed"
        else:
            error_code, message = "paytm:http_error", str(exc.detail)
        return _error_response(exc.status_code, {
            "error_code": error_code,
            "message": message,
            "details": {"requestedPath": request.url.path}
        })

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        """Reshape FastAPI request validation failures into the same envelope."""
        logger.warning(f"Request validation error on {request.url.path}")
        return _error_response(400, {
            "error_code": "paytm:validation",
            "message": "Invalid request",
            "details": {"errors": jsonable_encoder(exc.errors())} if settings.expose_error_details else {}
        })

    @app.exception_handler(Exception)
    async def general_error_handler(request: Request, exc: Exception):
        """
        Catch-all handler for unexpected errors.

        Logs full exception for debugging but returns generic message to client.
        """
        logger.error(f"Unexpected error: {str(exc)}", exc_info=True)
        return _error_response(500, {
            "error_code": "internal_error",
            "message": "An unexpected error occurred",
            "details": {"error_type": type(exc).__name__} if settings.expose_error_details else {}
        })

    @app.get("/")
    async def root():
        return {
            "success": True,
            "message": "Paytm Payment Gateway API",
            "version": "1.0.0",
            "endpoints": {
                "health": "/api/health",
                "initiate": "POST /api/paytm/initiate",
                "callback": "POST /api/paytm/callback",
                "status": "GET /api/paytm/status/{order_id}",
                "payments": "GET /api/paytm/payments",
                "transactionStatus": "POST /api/paytm/transaction-status",
                "cancel": "POST /api/paytm/cancel/{order_id}",
            }
        }

    @app.get("/api/health")
    async def health_check():
        """
        Health check endpoint for monitoring and load balancers.

        Returns server status and non-secret gateway configuration.
        """
        return {
            "success": True,
            "message": "Paytm Payment Gateway Server is running",
            "timestamp": datetime.utcnow().isoformat(),
            "config": {
                "MID": settings.paytm_mid,
                "WEBSITE": settings.paytm_website,
                "ENVIRONMENT": settings.environment,
                "PAYTM_URL": settings.paytm_url,
                "AUTHENTICITY_POLICY": settings.authenticity_policy,
                "RECONCILIATION_SWEEP": settings.reconciliation_sweep_enabled,
            }
        }

    app.include_router(payments_router, prefix="/api/paytm", tags=["Paytm"])

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "paytm_bridge.main:create_app",
        factory=True,
        host=default_settings.host,
        port=default_settings.port,
        log_level=default_settings.log_level.lower()
    )
