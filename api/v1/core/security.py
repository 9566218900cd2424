from dataclasses import dataclass, field

from fastapi import Depends, Header, HTTPException, status

from api.config.settings import AuthMode, Settings, SettingsDep


@dataclass
class Principal:
    """Represents the caller submitting or managing jobs."""

    user_id: str
    org_id: str
    roles: list[str] = field(default_factory=list)
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles


async def get_principal(
    x_user_id: str | None = Header(None, alias="X-User-ID"),
    x_org_id: str | None = Header(None, alias="X-Org-ID"),
    x_roles: str | None = Header(None, alias="X-Roles"),
    settings: Settings = SettingsDep,
) -> Principal:
    """
    Dependency injection function to get the current principal.

    Behavior based on AUTH_MODE of the settings the app was built with:
    - none: Returns dev defaults with admin role
    - dev: Identity taken from X-User-ID / X-Org-ID (and optional X-Roles)
    - oidc: No token verifier ships with this service, so every request is
      rejected with 401. Production requires oidc, which means a production
      deployment serves /v1/healthz only until a verifier is plugged in here;
      run behind a gateway in a non-production environment with dev mode
      meanwhile.
    """
    if settings.auth_mode == AuthMode.NONE:
        return Principal(
            user_id=settings.dev_user_id, org_id=settings.dev_org_id, roles=["admin"]
        )
    elif settings.auth_mode == AuthMode.DEV:
        if not x_user_id or not x_org_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="X-User-ID and X-Org-ID headers are required in dev auth mode",
            )

        roles = [r.strip() for r in (x_roles or "admin").split(",") if r.strip()]
        return Principal(user_id=x_user_id, org_id=x_org_id, roles=roles)
    elif settings.auth_mode == AuthMode.OIDC:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="OIDC authentication is not configured for this service",
        )
    else:
        raise ValueError(f"Unknown auth mode: {settings.auth_mode}")


async def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    """Restrict maintenance endpoints to admins."""
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required"
        )
    return principal


# Convenience type aliases for dependency injection
PrincipalDep = Depends(get_principal)
AdminPrincipalDep = Depends(require_admin)
