"""
FastAPI endpoints for the paywall.

POST {prefix}/pay     {"resource_id": ...}            -> invoice + token
POST {prefix}/verify  {"token": ..., "preimage": ...}  -> unlocked content

verify also accepts "Authorization: L402 <token>[:<preimage>]". Every
failure on verify answers {"settled": false}.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Union

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import PaywallConfig
from .errors import GatewayFailure, NotApplicable, StorageFailure, TokenExpired, TokenInvalid
from .l402 import format_challenge, format_challenge_body, parse_authorization

if TYPE_CHECKING:
    from .paywall import Paywall

logger = logging.getLogger(__name__)


@dataclass
class Resource:
    """What the content layer knows about a gated resource."""
    config: PaywallConfig
    published_at: Optional[float] = None
    title: Optional[str] = None


class PayRequest(BaseModel):
    resource_id: Union[str, int]


class VerifyRequest(BaseModel):
    token: Optional[str] = None
    preimage: Optional[str] = None


def _locked(status_code: int) -> JSONResponse:
    return JSONResponse({"settled": False}, status_code=status_code)


def create_paywall_router(
    paywall: "Paywall",
    resolve: Callable[[str], Awaitable[Optional[Resource]]],
    unlock: Optional[Callable[[str], Any]] = None,
    prefix: str = "/paywall",
) -> APIRouter:
    """
    Build the paywall router.

    Args:
        paywall: Paywall instance.
        resolve: async resource_id -> Resource, or None if unknown.
        unlock: resource_id -> protected content (sync or async). Optional.
        prefix: Route prefix.

    Returns:
        APIRouter to include in an app.
    """
    router = APIRouter(prefix=prefix)

    @router.post("/pay")
    async def pay(body: PayRequest) -> JSONResponse:
        resource_id = str(body.resource_id)
        resource = await resolve(resource_id)
        if resource is None:
            logger.error("Paywall resource not found: %s", resource_id)
            return JSONResponse({"error": "invalid resource"}, status_code=404)

        try:
            grant = await paywall.request_access(
                resource_id,
                resource.config,
                published_at=resource.published_at,
                title=resource.title,
            )
        except NotApplicable:
            return JSONResponse({"resource_id": resource_id, "paywall": False})
        except GatewayFailure as exc:
            return JSONResponse(
                {"error": f"Lightning gateway error: {exc}"},
                status_code=503 if exc.transient else 502,
            )
        except StorageFailure:
            return JSONResponse({"error": "Invoice store unavailable"}, status_code=503)

        return JSONResponse(
            format_challenge_body(
                resource_id=grant.resource_id,
                payment_request=grant.payment_request,
                token=grant.token,
                payment_hash=grant.payment_hash,
                amount=grant.amount,
            ),
            headers={"WWW-Authenticate": format_challenge(grant.payment_request, grant.token)},
        )

    @router.post("/verify")
    async def verify(request: Request, body: Optional[VerifyRequest] = None) -> JSONResponse:
        token = body.token if body else None
        preimage = body.preimage if body else None

        if not token:
            credentials = parse_authorization(request.headers.get("authorization"))
            if credentials:
                token, preimage = credentials.token, preimage or credentials.preimage

        if not token:
            logger.error("Token not provided")
            return _locked(404)

        try:
            result = await paywall.verify_access(token, preimage)
        except (TokenInvalid, TokenExpired):
            return _locked(404)
        except GatewayFailure:
            return _locked(502)
        except StorageFailure:
            return _locked(503)

        if not result.unlocked:
            return _locked(402)

        content = None
        if unlock is not None:
            content = unlock(result.resource_id)
            if inspect.isawaitable(content):
                content = await content

        return JSONResponse({
            "settled": True,
            "resource_id": result.resource_id,
            "amount": result.amount,
            "content": content,
        })

    return router
