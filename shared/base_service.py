"""
Base service class for the auth middleware HTTP surface.
"""

from contextlib import asynccontextmanager
from typing import Dict, Optional
import os
import time

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST

from shared.config import BaseConfig
from shared.errors import AuthLayerException
from shared.logging import clear_context, configure_logging, get_logger, set_request_id
from shared.metrics import MetricsCollector, get_metrics_collector


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, config: BaseConfig, metrics: Optional[MetricsCollector] = None):
        self.service_name = service_name
        self.config = config
        self.logger = get_logger(service_name)
        self.metrics = metrics if metrics is not None else get_metrics_collector(service_name)
        self._start_time = time.time()

        # Configure logging
        configure_logging(service_name, self.config.log_level)

        # Create FastAPI app
        self.app = self._create_app()

        # Set up middleware
        self._setup_middleware()

        # Set up routes
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""
        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"Auth middleware - {self.service_name.title()} Service",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
            lifespan=self._lifespan,
        )

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        self.logger.info("Service starting", service=self.service_name)
        yield
        await self._shutdown()
        self.logger.info("Service stopped", service=self.service_name)

    async def _shutdown(self) -> None:
        """Release resources on shutdown. Override in subclasses."""

    def _setup_middleware(self):
        """Set up middleware."""

        # CORS middleware
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if self.config.env == "local" else [],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        # Request timing middleware
        @self.app.middleware("http")
        async def add_request_timing(request: Request, call_next):
            start_time = time.time()
            set_request_id(request.headers.get("X-Request-ID"))

            try:
                response = await call_next(request)
                duration = time.time() - start_time

                self.metrics.record_http_request(
                    method=request.method,
                    endpoint=request.url.path,
                    status_code=response.status_code,
                    duration=duration
                )

                self.logger.info(
                    "HTTP request",
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=round(duration * 1000, 2)
                )
                return response
            finally:
                clear_context()

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            return {
                "service": self.service_name,
                "status": "ok",
                "uptime_seconds": self._get_uptime(),
                "dependencies": self._check_dependencies(),
                "version": "1.0.0",
                "commit": os.getenv("GIT_COMMIT", "unknown")
            }

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            return Response(
                content=self.metrics.render(),
                media_type=CONTENT_TYPE_LATEST
            )

        # Error handlers
        @self.app.exception_handler(AuthLayerException)
        async def auth_layer_exception_handler(request: Request, exc: AuthLayerException):
            """Handle AuthLayerException."""
            log = self.logger.error if exc.http_status >= 500 else self.logger.warning
            log(
                "Auth layer error",
                code=exc.code,
                message=exc.message,
                status_code=exc.http_status,
                path=request.url.path
            )
            return JSONResponse(
                status_code=exc.http_status,
                content=exc.to_response().model_dump()
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions."""
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            return JSONResponse(
                status_code=500,
                content={
                    "code": 500,
                    "error": "INTERNAL_ERROR",
                    "message": "Internal server error",
                    "details": {}
                }
            )

    def _check_dependencies(self) -> Dict[str, str]:
        """Report configured dependencies. Override in subclasses."""
        return {}

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
