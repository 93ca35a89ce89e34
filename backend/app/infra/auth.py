"""Authentication helpers for FastAPI endpoints.

The platform's identity service issues the tokens; this module only verifies
them. Dev headers are honoured in development only.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError

from app.infra import jwt as jwt_helper
from app.obs import logging as obs_logging
from app.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	display_name: Optional[str] = None
	roles: Tuple[str, ...] = ()

	def has_role(self, role: str) -> bool:
		return role in self.roles


_bearer_scheme = HTTPBearer(auto_error=False)


def _parse_roles(claim: object) -> Tuple[str, ...]:
	if isinstance(claim, (list, tuple)):
		return tuple(str(r).strip() for r in claim if str(r).strip())
	if isinstance(claim, str):
		return tuple(part.strip() for part in claim.split(",") if part.strip())
	return ()


def verify_access_jwt(token: str) -> AuthenticatedUser:
	"""Decode and validate an access JWT and return an AuthenticatedUser.

	Roles can be a list[str] or a comma-separated string under roles/role/scp.
	"""
	try:
		payload = jwt_helper.decode_access(token)
	except InvalidTokenError:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")

	display_name = payload.get("name") or payload.get("display_name")
	return AuthenticatedUser(
		id=str(payload["sub"]).strip(),
		display_name=str(display_name) if display_name is not None else None,
		roles=_parse_roles(payload.get("roles") or payload.get("role") or payload.get("scp")),
	)


async def get_optional_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_user_roles: Optional[str] = Header(default=None, alias="X-User-Roles"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> Optional[AuthenticatedUser]:
	"""Resolve the caller if any credentials were presented.

	In development we allow simple headers. In all other environments, headers are
	ignored and a valid Bearer JWT is required. A bad token is still a 401.
	"""
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)
	if settings.is_dev() and x_user_id and x_user_id.strip():
		return AuthenticatedUser(id=x_user_id.strip(), roles=_parse_roles(x_user_roles))
	return None


async def get_current_user(user: Optional[AuthenticatedUser] = Depends(get_optional_user)) -> AuthenticatedUser:
	if user is None:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	obs_logging.bind_user(user.id)
	return user
