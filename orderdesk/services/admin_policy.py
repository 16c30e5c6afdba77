"""Authorization policy for kitchen/admin operations and admin notifications."""

import logging

from supabase import Client

from orderdesk.schemas.auth import UserContext

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


class AdminPolicy:
    """Single source of truth for who is an admin and who hears about new orders.

    Admin rights come from the ``role`` column of the ``customers`` table,
    keyed by the auth user id. Notification recipients come from
    configuration, per location.
    """

    def __init__(
        self,
        client: Client,
        location_admins: dict[str, list[str]] | None = None,
        fallback_email: str = "",
    ) -> None:
        self.client = client
        self.location_admins = location_admins or {}
        self.fallback_email = fallback_email

    async def get_role(self, user: UserContext) -> str | None:
        response = (
            self.client.table("customers")
            .select("role")
            .eq("auth_id", str(user.user_id))
            .maybe_single()
            .execute()
        )
        if response and response.data:
            return response.data.get("role")
        return None

    async def is_admin(self, user: UserContext) -> bool:
        """Check whether the user may manage orders.

        Args:
            user: Authenticated user context.

        Returns:
            bool: True if the stored role (or, lacking one, the token role) is admin.
        """
        role = await self.get_role(user)
        if role is None:
            role = user.role
        is_admin = role == ADMIN_ROLE
        if not is_admin:
            logger.info("User %s denied admin access (role=%s)", user.user_id, role)
        return is_admin

    def admin_recipients(self, location: str) -> list[str]:
        """Addresses alerted about new orders at ``location``, without duplicates."""
        recipients = list(self.location_admins.get(location, []))
        if self.fallback_email and self.fallback_email not in recipients:
            recipients.append(self.fallback_email)
        return recipients
