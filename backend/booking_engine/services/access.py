"""
Ownership checks for the explicit acting identity.

Unrelated actors get NotFoundException so resource existence does not leak;
related actors attempting a provider-only action get ForbiddenException.
"""

from typing import Optional

from ..core.actor import Actor
from ..core.exceptions import ForbiddenException, NotFoundException


def ensure_can_view(
    actor: Actor,
    *,
    provider_id: str,
    client_id: Optional[str] = None,
    resource: str = "Resource",
    resource_id: Optional[str] = None,
) -> None:
    """
    Provider actors see their own data; client actors see data tied to them.

    When client_id is None the resource is provider-wide (e.g. a calendar),
    and the caller is expected to have verified the client belongs to it.
    """
    if actor.is_provider and actor.actor_id == provider_id:
        return
    if actor.is_client and (client_id is None or actor.actor_id == client_id):
        return
    raise NotFoundException(
        f"{resource} not found",
        code=f"{resource.upper().replace(' ', '_')}_NOT_FOUND",
        details={"id": resource_id} if resource_id else {},
    )


def ensure_provider(actor: Actor, provider_id: str, action: str) -> None:
    """Provider-only actions; call after ensure_can_view."""
    if actor.is_provider and actor.actor_id == provider_id:
        return
    raise ForbiddenException(
        f"Only the provider may {action}",
        code="PROVIDER_ONLY",
        details={"action": action},
    )
