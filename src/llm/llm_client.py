import json
import logging
from typing import Any, Optional

from llm.providers.base import LLMProvider

logger = logging.getLogger(__name__)


class LLMClient:
    """Provider-agnostic wrapper that turns raw model text into a JSON object."""

    def __init__(self, provider: LLMProvider):
        self.provider = provider

    @property
    def provider_name(self) -> str:
        return getattr(self.provider, "name", type(self.provider).__name__)

    def complete(self, *, system: str, user: str) -> str:
        """Return the JSON object embedded in the model output, or '{}' if none is found."""
        raw = self.provider.generate(system=system, user=user)
        return _json_slice(raw) or "{}"

    def complete_json(self, *, system: str, user: str) -> dict[str, Any]:
        text = self.complete(system=system, user=user)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"LLM returned unparseable JSON: {e}")
            return {}
        return data if isinstance(data, dict) else {}


def _json_slice(raw: Optional[str]) -> Optional[str]:
    # Models sometimes wrap the object in prose or code fences
    if not raw:
        return None
    start = raw.find("{")
    end = raw.rfind("}")
    if start == -1 or end <= start:
        return None
    return raw[start : end + 1]
