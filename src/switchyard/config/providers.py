"""Provider configuration registry.

Defines available models, costs, and capabilities for each AI provider.
"""

from __future__ import annotations

from typing import TypedDict


class ModelConfig(TypedDict):
    """Configuration for a specific AI model."""
    provider: str
    cost_input_1m: float  # Cost per 1M input tokens (USD)
    cost_output_1m: float # Cost per 1M output tokens (USD)
    context_window: int
    supports_json_output: bool
    supports_search: bool


class ProviderConfig(TypedDict):
    """Configuration for an AI provider."""
    name: str
    models: dict[str, ModelConfig]
    env_var_key: str


PROVIDER_REGISTRY: dict[str, ProviderConfig] = {
    "anthropic": {
        "name": "Anthropic",
        "env_var_key": "SWITCHYARD_ANTHROPIC_API_KEY",
        "models": {
            "claude-sonnet-4-20250514": {
                "provider": "anthropic",
                "cost_input_1m": 3.00,
                "cost_output_1m": 15.00,
                "context_window": 200000,
                "supports_json_output": False,
                "supports_search": False,
            },
            "claude-haiku-4-5-20251001": {
                "provider": "anthropic",
                "cost_input_1m": 0.80,
                "cost_output_1m": 4.00,
                "context_window": 200000,
                "supports_json_output": False,
                "supports_search": False,
            },
        },
    },
    "gemini": {
        "name": "Google Gemini",
        "env_var_key": "SWITCHYARD_GEMINI_API_KEY",
        "models": {
            "gemini-2.5-flash": {
                "provider": "gemini",
                "cost_input_1m": 0.30,
                "cost_output_1m": 2.50,
                "context_window": 1000000,
                "supports_json_output": True,
                "supports_search": True,
            },
            "gemini-2.5-pro": {
                "provider": "gemini",
                "cost_input_1m": 1.25,
                "cost_output_1m": 10.00,
                "context_window": 1000000,
                "supports_json_output": True,
                "supports_search": True,
            },
            "gemini-2.0-flash": {
                "provider": "gemini",
                "cost_input_1m": 0.10,
                "cost_output_1m": 0.40,
                "context_window": 1000000,
                "supports_json_output": True,
                "supports_search": True,
            },
        },
    },
}

def get_model_config(model_name: str) -> ModelConfig | None:
    """Retrieve configuration for a specific model name."""
    for provider in PROVIDER_REGISTRY.values():
        if model_name in provider["models"]:
            return provider["models"][model_name]
    return None

def get_provider_for_model(model_name: str) -> str | None:
    """Return the provider name (key) for a given model."""
    config = get_model_config(model_name)
    return config["provider"] if config else None

def list_available_models() -> list[dict]:
    """Return a flat list of all available models with metadata."""
    models = []
    for p_key, p_val in PROVIDER_REGISTRY.items():
        for m_key, m_val in p_val["models"].items():
            models.append({
                "id": m_key,
                "name": m_key,
                "provider": p_val["name"],
                "provider_id": p_key,
                "context_window": m_val["context_window"],
                "supports_search": m_val["supports_search"],
            })
    return models
