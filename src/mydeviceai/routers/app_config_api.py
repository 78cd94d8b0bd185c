"""Configuration API endpoints."""

from fastapi import APIRouter, HTTPException

from mydeviceai.config import get_config, save_config
from mydeviceai.logger import get_logger
from mydeviceai.models.config import AppConfig

logger = get_logger(__name__)

router = APIRouter(prefix="/api/app-config", tags=["app-config"])


@router.get("", response_model=AppConfig)
async def get_current_config() -> AppConfig:
    """Get current application configuration.

    Returns:
        Current configuration
    """
    return get_config()


@router.put("", response_model=AppConfig)
async def update_config(config: AppConfig) -> AppConfig:
    """Validate and save the application configuration.

    Path and runtime changes apply to services created after the next restart.

    Args:
        config: New configuration

    Returns:
        Saved configuration

    Raises:
        HTTPException: If the config file cannot be written
    """
    try:
        save_config(config)
    except OSError as e:
        raise HTTPException(status_code=500, detail=f"Failed to save config: {str(e)}") from e
    logger.info("Configuration saved", release_tag=config.runtime.release_tag, data_dir=str(config.paths.data_dir))
    return config
