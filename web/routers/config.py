"""Configuration endpoints."""

import json
from typing import Any

from fastapi import APIRouter, Depends

from release_pipeline.config import Settings, print_settings_json
from web.deps import get_app_settings

router = APIRouter()


@router.get("")
def get_config(settings: Settings = Depends(get_app_settings)) -> dict[str, Any]:
    """Get effective configuration.

    Returns:
        Current configuration as JSON.
    """
    config: dict[str, Any] = json.loads(print_settings_json(settings))
    return config
