"""Infer the active provider from model metadata."""

from typing import Any, Optional

from ...models.providers import ProviderName


def _model_field(model: Any, key: str) -> str:
    if isinstance(model, dict):
        value = model.get(key)
    else:
        value = getattr(model, key, None)
    return value.lower() if isinstance(value, str) else ""


def detect_provider_from_model(model: Any) -> Optional[ProviderName]:
    """Map a ``{provider, id}`` model descriptor to a provider.

    The declared provider string is matched first; only when no provider
    token matches is the model id consulted. Within a pass, the first
    provider in registration order wins. Returns None when nothing matches.
    """
    if not model:
        return None
    provider_value = _model_field(model, "provider")
    id_value = _model_field(model, "id")

    if provider_value:
        for name in ProviderName:
            if any(token in provider_value for token in name.detection.provider_tokens):
                return name

    if id_value:
        for name in ProviderName:
            if any(token in id_value for token in name.detection.model_tokens):
                return name

    return None
