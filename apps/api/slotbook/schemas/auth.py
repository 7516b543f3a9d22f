"""Actor context passed from the admin auth dependency into services."""

from pydantic import BaseModel

from slotbook.db.enums import ActorRole


class ActorContext(BaseModel):
    """Who is acting in the admin console and which provider they are bound to."""
    actor_id: str
    role: ActorRole
    provider_id: str | None = None

    def can_access_provider(self, provider_id: str) -> bool:
        if self.role == ActorRole.OWNER:
            return True
        return self.provider_id == provider_id

    @property
    def scoped_provider_id(self) -> str | None:
        """Provider filter to force on list queries (None = all providers)."""
        return self.provider_id if self.role == ActorRole.PROVIDER else None
