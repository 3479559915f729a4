from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Annotated, Any

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.concurrency import run_in_threadpool

from alegi.config import Settings, get_settings
from alegi.core.firebase import verify_id_token

logger = logging.getLogger(__name__)

security_scheme = HTTPBearer()

SIGNATURE_PREFIX = "sha256="


@dataclass(frozen=True)
class Principal:
  """Authenticated end user resolved from a bearer token."""

  user_id: str
  claims: dict[str, Any]


def compute_signature(body: bytes, secret: str) -> str:
  return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
  """Constant-time check of a hex HMAC-SHA256 over the raw body; an optional sha256= prefix is accepted."""
  if not signature:
    return False
  provided = signature.strip()
  if provided.startswith(SIGNATURE_PREFIX):
    provided = provided[len(SIGNATURE_PREFIX) :]
  expected = compute_signature(body, secret)
  return hmac.compare_digest(provided.lower().encode("ascii", "replace"), expected.encode("ascii"))


async def require_internal_service(
  settings: Annotated[Settings, Depends(get_settings)], x_internal_service: str | None = Header(default=None), x_service_secret: str | None = Header(default=None)
) -> str:
  """Guard machine-to-machine routes with the service identity + secret header pair."""
  # Secure-by-default: without a configured secret nothing can be authenticated.
  if not settings.internal_service_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Internal service authentication is not configured.")
  name_valid = secrets.compare_digest((x_internal_service or "").encode(), settings.internal_service_name.encode())
  secret_valid = secrets.compare_digest((x_service_secret or "").encode(), settings.internal_service_secret.encode())
  if not (name_valid and secret_valid):
    logger.warning("Unauthorized internal call from service %r", x_internal_service)
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid service credentials.")
  return settings.internal_service_name


async def resolve_principal(id_token: str) -> Principal | None:
  """Verify a Firebase ID token off the event loop; None when it is invalid."""
  decoded_claims = await run_in_threadpool(verify_id_token, id_token)
  if not decoded_claims:
    return None
  uid = decoded_claims.get("uid")
  if not uid:
    return None
  return Principal(user_id=str(uid), claims=decoded_claims)


async def get_current_principal(token: Annotated[HTTPAuthorizationCredentials, Depends(security_scheme)]) -> Principal:
  """Verify the bearer token for user-facing case routes."""
  principal = await resolve_principal(token.credentials)
  if principal is None:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authentication credentials", headers={"WWW-Authenticate": "Bearer"})
  return principal
