"""Configuration routes."""

from __future__ import annotations

from fastapi import APIRouter, Request

from switchyard.config.providers import PROVIDER_REGISTRY, list_available_models

router = APIRouter(tags=["config"])


@router.get("/config/models")
async def get_models() -> dict[str, list]:
    """Return list of available AI models."""
    return {"models": list_available_models()}


@router.get("/config/providers")
async def get_providers(request: Request) -> dict[str, list]:
    """Return supported providers and whether a platform key is registered."""
    registry = request.app.state.orchestrator.registry
    return {
        "providers": [
            {"id": key, "name": val["name"], "configured": registry.has(key)}
            for key, val in PROVIDER_REGISTRY.items()
        ]
    }
