from dataclasses import dataclass, field

from jose import JWTError, jwt
from starlette.requests import Request

from app.core.config import get_settings


ADMIN_ROLES = {"admin", "system.admin"}


@dataclass
class AuthUser:
    sub: str
    roles: list[str]
    studios: list[str] = field(default_factory=list)

    @property
    def is_anonymous(self) -> bool:
        return self.sub == "anonymous"

    def can_access_studio(self, studio_slug: str) -> bool:
        if ADMIN_ROLES.intersection(role.lower() for role in self.roles):
            return True
        return studio_slug in self.studios


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    if not token:
        return AuthUser(sub="anonymous", roles=["guest"])

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return AuthUser(sub="anonymous", roles=["guest"])

    subject = str(payload.get("sub", "anonymous"))
    roles = payload.get("roles", ["user"])
    if not isinstance(roles, list):
        roles = ["user"]
    studios = payload.get("studios", [])
    if not isinstance(studios, list):
        studios = []
    context = getattr(request.state, "context", None)
    if context is not None:
        context.user_id = subject
    return AuthUser(sub=subject, roles=[str(role) for role in roles], studios=[str(slug) for slug in studios])
