"""
Centralized AI provider API key management with format validation
"""
import logging
from typing import Dict, List, Optional

from proposal_ai.core.exceptions import AuthConfigError, ValidationError

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("openai", "anthropic", "google")

# Expected key prefixes; providers not listed have no documented prefix
KEY_PREFIXES = {
    "anthropic": "sk-ant-",
    "openai": "sk-",
}


def mask_key(key: str) -> str:
    if len(key) <= 14:
        return key[:4] + "..."
    return f"{key[:10]}...{key[-4:]}"


class APIKeyManager:
    """Holds one API key per provider and validates its format before use"""

    def __init__(self, openai_key: Optional[str] = None, anthropic_key: Optional[str] = None,
                 google_key: Optional[str] = None):
        self._keys: Dict[str, Optional[str]] = {}
        self._load_keys({
            "openai": openai_key,
            "anthropic": anthropic_key,
            "google": google_key,
        })

    @classmethod
    def from_settings(cls, settings) -> "APIKeyManager":
        return cls(
            openai_key=settings.OPENAI_API_KEY,
            anthropic_key=settings.ANTHROPIC_API_KEY,
            google_key=settings.GOOGLE_AI_API_KEY,
        )

    def _load_keys(self, raw_keys: Dict[str, Optional[str]]):
        for provider, key in raw_keys.items():
            key = key.strip() if key else None
            self._keys[provider] = key or None

            if not key:
                logger.warning(f"[API_KEYS] No {provider} API key configured")
            elif not self.validate_key(provider, key):
                logger.error(f"[API_KEYS] Invalid {provider} API key format: {mask_key(key)}")
            else:
                logger.info(f"[API_KEYS] {provider} API key loaded: {mask_key(key)}")

    @staticmethod
    def validate_key(provider: str, key: Optional[str]) -> bool:
        """Validate an API key's format for a provider"""
        if not key:
            return False

        if ' ' in key or '\n' in key or '\t' in key:
            return False

        prefix = KEY_PREFIXES.get(provider)
        if prefix and not key.startswith(prefix):
            return False

        return True

    def available_providers(self) -> List[str]:
        """Providers with a key configured (valid or not)"""
        return [p for p in SUPPORTED_PROVIDERS if self._keys.get(p)]

    def has_key(self, provider: str) -> bool:
        return bool(self._keys.get(provider.lower()))

    def get_key(self, provider: str) -> Optional[str]:
        """Get the raw API key for a provider"""
        return self._keys.get(provider.lower())

    def require_key(self, provider: str) -> str:
        """Return a usable key or raise AuthConfigError naming the provider"""
        provider = provider.lower()
        if provider not in SUPPORTED_PROVIDERS:
            raise ValidationError(f"Unsupported provider: {provider}", field="provider")

        key = self._keys.get(provider)
        if not key:
            raise AuthConfigError(
                provider,
                f"{provider} API key is not configured",
                details={"availableKeys": self.available_providers()},
            )

        if not self.validate_key(provider, key):
            raise AuthConfigError(provider, f"{provider} API key format is invalid")

        return key
