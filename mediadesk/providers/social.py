"""Social publishers."""
import logging
import secrets
import threading
from pathlib import Path
from typing import Optional

from mediadesk.core.errors import PlatformAuthError
from mediadesk.core.models import AuthGrant, PostContent, PublishReceipt, SocialPlatform, new_id, now_ms

logger = logging.getLogger(__name__)

# Local tokens stay valid for a day
TOKEN_LIFETIME_MS = 24 * 60 * 60 * 1000


class DryRunPublisher:
    """Publisher that performs no network traffic.

    Authentication issues local tokens. Publishing checks that the attached
    media exist and records the post in memory, so a whole distribution
    flow can be exercised offline.
    """

    def __init__(self, base_url: str = "dry-run://"):
        self._base_url = base_url
        self._lock = threading.Lock()
        self._posts: list[tuple[str, str, PostContent]] = []

    @property
    def posts(self) -> list[tuple[str, str, PostContent]]:
        """Recorded (platform_id, post_id, content) tuples."""
        with self._lock:
            return list(self._posts)

    def authenticate(self, platform: SocialPlatform, auth_code: Optional[str]) -> AuthGrant:
        if auth_code is not None and not auth_code.strip():
            raise PlatformAuthError(platform.id, f"Empty authorization code for {platform.id}")
        return AuthGrant(
            access_token=secrets.token_hex(16),
            refresh_token=secrets.token_hex(16),
            expires_at=now_ms() + TOKEN_LIFETIME_MS,
            scope=("publish",),
        )

    def publish(self, platform: SocialPlatform, content: PostContent) -> PublishReceipt:
        if not content.text.strip() and not content.media:
            raise ValueError("Post has neither text nor media")
        missing = [m for m in content.media if not Path(m).is_file()]
        if missing:
            raise FileNotFoundError(f"Media not found: {', '.join(missing)}")

        post_id = new_id()
        with self._lock:
            self._posts.append((platform.id, post_id, content))
        logger.debug(f"[dry-run] {platform.id} post {post_id}: {len(content.media)} media")
        return PublishReceipt(post_id=post_id, post_url=f"{self._base_url}{platform.id}/{post_id}")
