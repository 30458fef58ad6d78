from typing import Optional

from common.config import settings


def user_for_authorization(header: Optional[str]) -> Optional[str]:
    """Map an ``Authorization: Bearer`` header to a user id, or None if it is not accepted."""
    if not header or not header.startswith("Bearer "):
        return None
    token = header.split(" ")[1]
    token_map = settings.token_user_map
    if token_map:
        mapped_user = token_map.get(token)
        if mapped_user:
            return mapped_user
    if token not in settings.auth_tokens:
        return None
    return "usr_dev"
