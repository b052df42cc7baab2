from pathlib import Path
from typing import Optional, Type, TypeVar

import structlog
import yaml
from pydantic import BaseModel

from trinetra.config.schema import GlobalConfig
from trinetra.utils import expand_env_vars

logger = structlog.get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


def _warn_unknown_keys(model: BaseModel, path: str, config_path: Path) -> None:
    """Recursively warn about unknown keys in a model and its nested models."""
    if hasattr(model, "model_extra") and model.model_extra:
        logger.warning("Unknown keys in %s at %s: %s", path, config_path, list(model.model_extra.keys()))

    for field_name, field_value in model.__dict__.items():
        if isinstance(field_value, BaseModel):
            _warn_unknown_keys(field_value, f"{path}.{field_name}", config_path)


def load_config(path: Path, model_class: Type[T]) -> T:
    """Load and validate configuration from a YAML file.

    Args:
        path: Path to the trinetra.yml file.
        model_class: The Pydantic model class to use for validation.

    Returns:
        The validated configuration model (defaults when the file is absent).
    """
    if not path.exists():
        return model_class()

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Failed to read config file %s: %s", path, e)
        return model_class()

    expanded = expand_env_vars(raw)
    model = model_class.model_validate(expanded)
    _warn_unknown_keys(model, "root", path)
    return model


def load_global_config(path: Optional[Path] = None) -> GlobalConfig:
    """Load global-level configuration."""
    if path is None:
        path = Path("~/.trinetra/trinetra.yml").expanduser()
    return load_config(path, GlobalConfig)
