"""Test doubles shared by the test modules.

Stub providers and publishers behave deterministically and record what
they were asked to do, so tests can assert on call order and arguments
without loading any model or touching the network.
"""
from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Optional

from PIL import Image

from mediadesk.core.errors import ConfigurationError
from mediadesk.core.models import AuthGrant, PostContent, PublishReceipt, SocialPlatform


class StubProvider:
    """Capability provider whose per-item behavior is scripted.

    ``outcomes`` maps an item to either a payload or an exception instance
    to raise. Items not listed return ``default``.
    """

    def __init__(
        self,
        outcomes: Optional[dict[str, Any]] = None,
        default: Any = "ok",
        fail_configure: Optional[Exception] = None,
        name: str = "stub",
    ):
        self._outcomes = outcomes or {}
        self._default = default
        self._fail_configure = fail_configure
        self._name = name
        self._configured = False
        self.calls: list[str] = []
        self.options: Optional[dict[str, Any]] = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_configured(self) -> bool:
        return self._configured

    def configure(self, options: dict[str, Any]) -> None:
        self.options = options
        if self._fail_configure is not None:
            raise self._fail_configure
        if options.get("reject"):
            raise ConfigurationError("rejected")
        self._configured = True

    def process(self, item: str) -> Any:
        self.calls.append(item)
        outcome = self._outcomes.get(item, self._default)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class StubCategorizer(StubProvider):
    """Stub provider with the custom category surface of a categorizer."""

    def __init__(self, **kwargs: Any):
        super().__init__(**kwargs)
        self.custom: list[str] = []

    def all_categories(self) -> list[str]:
        return ["people", "nature"] + self.custom

    def add_custom_categories(self, categories) -> list[str]:
        self.custom.extend(c for c in categories if c not in self.custom)
        return self.all_categories()

    def remove_custom_categories(self, categories) -> list[str]:
        self.custom = [c for c in self.custom if c not in categories]
        return self.all_categories()


class StubPublisher:
    """Publisher with scripted failures.

    Args:
        fail_publish: Exception raised by every publish call
        fail_auth: Exception raised by every authenticate call
        barrier: Optional barrier every publish call waits on (proves concurrency)
    """

    def __init__(
        self,
        fail_publish: Optional[Exception] = None,
        fail_auth: Optional[Exception] = None,
        barrier: Optional[threading.Barrier] = None,
    ):
        self._fail_publish = fail_publish
        self._fail_auth = fail_auth
        self._barrier = barrier
        self._lock = threading.Lock()
        self.published: list[tuple[str, PostContent]] = []
        self.auth_codes: list[Optional[str]] = []

    def authenticate(self, platform: SocialPlatform, auth_code: Optional[str]) -> AuthGrant:
        self.auth_codes.append(auth_code)
        if self._fail_auth is not None:
            raise self._fail_auth
        return AuthGrant(access_token=f"token-{platform.id}", refresh_token="refresh", scope=("publish",))

    def publish(self, platform: SocialPlatform, content: PostContent) -> PublishReceipt:
        if self._barrier is not None:
            self._barrier.wait(timeout=5)
        if self._fail_publish is not None:
            raise self._fail_publish
        with self._lock:
            self.published.append((platform.id, content))
        return PublishReceipt(post_id=f"{platform.id}-1", post_url=f"https://{platform.id}.example/1")


def make_image(path: Path, size: tuple[int, int] = (64, 48), color: tuple[int, int, int] = (200, 30, 30)) -> Path:
    """Write a solid-color image and return its path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path)
    return path
