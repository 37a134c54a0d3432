"""Settings values exposed for cross-module use.

Values are sourced from environment variables, ``.env`` or ``config.json``
via ``shared.config``. Rate cache tunables live on
``services.rate_cache.config.RateCacheConfig.from_settings``.
"""
from __future__ import annotations

from shared.config import settings as _config_settings

# Re-export the shared Settings instance so existing imports keep working.
settings = _config_settings

user_agent: str = settings.USER_AGENT

__all__ = ["settings", "user_agent"]
