"""
Request/response logging middleware with timing and field masking.
"""
import time
from typing import Any
import json

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.logging_config import get_logger
from core.config import settings
from core.settings import payment_settings


logger = get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every HTTP request and its outcome.

    Bodies are logged only when enabled, truncated, and with sensitive keys
    replaced by ``***``. Webhook signature headers are never logged.
    """

    SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    SENSITIVE_FIELDS = {
        "password", "token", "secret", "api_key", "key_secret",
        "card", "card_number", "cvv", "expiry_month", "expiry_year",
        "email", "contact", "vpa", "bank_account",
    }

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.enable_body_log_default: bool = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT
        self.max_body_log_bytes: int = settings.LOG_REQUEST_BODY_MAX_BYTES
        self.masked_headers = {
            payment_settings.webhook.signature_header.lower(),
            "authorization",
            "cookie",
        }

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        start_time = time.time()
        request_info = await self._get_request_info(request)
        logger.info("request_started", **request_info)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=time.time() - start_time,
                error=str(exc),
                error_type=type(exc).__name__,
                **request_info,
                exc_info=True,
            )
            raise

        duration = time.time() - start_time
        self._log_response(response, duration, request_info)
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    async def _get_request_info(self, request: Request) -> dict:
        info: dict[str, Any] = {
            "method": request.method,
            "path": request.url.path,
            "query_params": dict(request.query_params),
            "headers": self._sanitize_headers(request),
        }
        if request.method in ["POST", "PUT", "PATCH"] and self._should_log_body(request):
            body_snippet = await self._extract_and_sanitize_body(request)
            if body_snippet is not None:
                info["body"] = body_snippet
            else:
                info["has_body"] = True
        user_agent = request.headers.get("User-Agent")
        if user_agent:
            info["user_agent"] = user_agent
        return info

    def _sanitize_headers(self, request: Request) -> dict:
        return {
            k: ("***" if k.lower() in self.masked_headers else v)
            for k, v in request.headers.items()
            if k.lower().startswith("x-") or k.lower() in self.masked_headers
        }

    def _should_log_body(self, request: Request) -> bool:
        # X-Log-Body: true/false overrides the environment default
        header = (request.headers.get("X-Log-Body") or "").lower()
        if header in {"true", "1", "yes"}:
            return True
        if header in {"false", "0", "no"}:
            return False
        return bool(self.enable_body_log_default and settings.DEBUG)

    async def _extract_and_sanitize_body(self, request: Request) -> Any:
        try:
            body = await request.body()
        except Exception:
            return None
        if not body:
            return None

        snippet = body[: self.max_body_log_bytes]
        content_type = request.headers.get("content-type", "").lower()
        text = snippet.decode("utf-8", errors="ignore")
        if "application/json" in content_type:
            try:
                return self._sanitize_data(json.loads(text))
            except ValueError:
                # truncated JSON is logged as text
                return text
        return text

    def _sanitize_data(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {
                k: ("***" if str(k).lower() in self.SENSITIVE_FIELDS else self._sanitize_data(v))
                for k, v in data.items()
            }
        if isinstance(data, list):
            return [self._sanitize_data(v) for v in data]
        return data

    def _log_response(self, response: Response, duration: float, request_info: dict):
        status_code = response.status_code
        log_data = {"status_code": status_code, "duration": duration, **request_info}
        if status_code < 400:
            logger.info("request_completed", **log_data)
        elif status_code < 500:
            logger.warning("request_client_error", **log_data)
        else:
            logger.error("request_server_error", **log_data)
