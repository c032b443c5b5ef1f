"""
User settings: profile fields, theme and notification toggles.
"""
from typing import Dict, Any, Optional

from .schema import Profile, utc_now
from .store import BaseStore

THEMES = ("light", "dark", "system")
NOTIFICATION_KEYS = ("email", "agent_updates")


class ProfileService:
    def __init__(self, store: BaseStore):
        self.store = store

    def get_profile(self, user_id: str) -> Profile:
        """Stored profile, or defaults for a user who never saved settings."""
        return self.store.get_profile(user_id) or Profile(id=user_id)

    def update_profile(
        self,
        user_id: str,
        full_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
        email: Optional[str] = None,
        theme: Optional[str] = None,
        notifications: Optional[Dict[str, Any]] = None,
    ) -> Profile:
        profile = self.get_profile(user_id)
        if full_name is not None:
            profile.full_name = full_name.strip()
        if avatar_url is not None:
            profile.avatar_url = avatar_url.strip()
        if email is not None:
            profile.email = email.strip()
        if theme is not None:
            if theme not in THEMES:
                raise ValueError(f"theme must be one of {THEMES}")
            profile.theme = theme
        if notifications:
            unknown = set(notifications) - set(NOTIFICATION_KEYS)
            if unknown:
                raise ValueError(f"Unknown notification settings: {sorted(unknown)}")
            profile.notifications.update({k: bool(v) for k, v in notifications.items()})
        profile.updated_at = utc_now()
        if not self.store.save_profile(profile):
            raise RuntimeError(f"Failed to save profile {user_id}")
        return profile
