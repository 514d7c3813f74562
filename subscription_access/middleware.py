"""
FastAPI middleware for subscription enforcement.

Gates inbound requests against the tenant's subscription snapshot.
Denials return 403 with the same body shape the backend uses for
subscription errors and are logged by the audit module.
"""

import logging
from typing import Callable, Optional, Tuple

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from .errors import AccessDenied
from .models import Action
from .service import SubscriptionAccessService

logger = logging.getLogger(__name__)

ContextResolver = Callable[[Request], Tuple[Optional[str], Optional[str]]]

SKIP_PATHS = ("/health",)
SKIP_PREFIXES = ("/api/webhooks/",)


def request_context(request: Request) -> Tuple[Optional[str], Optional[str]]:
    """
    Default (tenant_id, role) lookup.

    An upstream auth middleware is expected to set request.state.tenant_id
    and request.state.role.
    """
    return getattr(request.state, "tenant_id", None), getattr(request.state, "role", None)


def denial_response(error: AccessDenied) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={
            "success": False,
            "message": f"Subscription restriction: {error.reason}",
            "error": error.error_code,
            "reason": error.reason,
        },
    )


class SubscriptionGateMiddleware(BaseHTTPMiddleware):
    """
    Enforces subscription restrictions on every request with a tenant context.

    Skips:
    - health checks and billing webhooks
    - requests without a tenant (left to the auth layer)
    """

    def __init__(
        self,
        app,
        service: SubscriptionAccessService,
        context_resolver: Optional[ContextResolver] = None,
    ):
        super().__init__(app)
        self.service = service
        self.context_resolver = context_resolver or request_context

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in SKIP_PATHS or path.startswith(SKIP_PREFIXES):
            return await call_next(request)

        tenant_id, role = self.context_resolver(request)
        if not tenant_id:
            return await call_next(request)

        payload = None
        if request.method in ("POST", "PUT", "PATCH") and "application/json" in request.headers.get("content-type", ""):
            try:
                body = await request.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                payload = body

        access = self.service.access_for(tenant_id, role)
        try:
            access.enforce(Action(path=path, verb=request.method, payload=payload))
        except AccessDenied as e:
            return denial_response(e)

        return await call_next(request)
