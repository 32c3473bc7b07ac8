# src/sepstrat/utils/config.py
"""OmegaConf configuration loading and validation utilities.

This module provides:
- Config loading from YAML with optional CLI overrides
- The packaged default configuration
- Schema validation for required fields
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from omegaconf import DictConfig, MissingMandatoryValue, OmegaConf

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "configs" / "default.yaml"


class ConfigError(Exception):
    """Configuration validation error."""

    pass


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    overrides: Optional[List[str]] = None,
    resolve: bool = True,
) -> DictConfig:
    """Load configuration from YAML file with optional CLI overrides.

    Args:
        config_path: Path to YAML configuration file. If None, the packaged
            default configuration is loaded.
        overrides: List of CLI overrides in "key=value" format.
            Example: ["stratify.k=15", "alignment.var_adj=false"]
        resolve: If True, resolve interpolations (${...}).

    Returns:
        OmegaConf DictConfig object.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ConfigError: If config loading fails.

    Example:
        >>> cfg = load_config("config.yaml", overrides=["stratify.k=15"])
        >>> print(cfg.stratify.k)
        15
    """
    config_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        cfg = OmegaConf.load(config_path)
        logger.info(f"Loaded config from: {config_path}")

        if overrides:
            override_cfg = OmegaConf.from_dotlist(overrides)
            cfg = merge_configs(cfg, override_cfg)
            logger.info(f"Applied {len(overrides)} config overrides")

        if resolve:
            OmegaConf.resolve(cfg)

        return cfg

    except Exception as e:
        raise ConfigError(f"Failed to load config from {config_path}: {e}") from e


def validate_config(
    cfg: DictConfig,
    schema: Optional[Dict[str, type]] = None,
) -> None:
    """Validate configuration against schema.

    Args:
        cfg: Configuration to validate.
        schema: Optional schema dict mapping dotted paths to expected types.
            If None, uses the default stratification schema.

    Raises:
        ConfigError: If validation fails with detailed error messages.
    """
    if schema is None:
        schema = _get_default_schema()

    errors = []
    for path, expected_type in schema.items():
        try:
            value = OmegaConf.select(cfg, path)
            if value is None:
                errors.append(f"Missing required field: {path}")
            elif expected_type is list:
                if not hasattr(value, "__iter__") or isinstance(value, (str, dict)):
                    errors.append(
                        f"Invalid type for {path}: expected list, "
                        f"got {type(value).__name__}"
                    )
            elif expected_type is float and isinstance(value, int) and not isinstance(value, bool):
                continue
            elif expected_type is not None and not isinstance(value, expected_type):
                errors.append(
                    f"Invalid type for {path}: expected {expected_type.__name__}, "
                    f"got {type(value).__name__}"
                )
        except MissingMandatoryValue:
            errors.append(f"Missing required field: {path}")

    k = OmegaConf.select(cfg, "stratify.k")
    if isinstance(k, int) and k < 1:
        errors.append(f"stratify.k must be >= 1, got {k}")

    if errors:
        error_msg = "Configuration validation failed:\n  " + "\n  ".join(errors)
        raise ConfigError(error_msg)

    logger.info("Configuration validation passed")


def _get_default_schema() -> Dict[str, type]:
    """Get default schema for the stratification config.

    Returns:
        Dictionary mapping dotted paths to expected types.
    """
    return {
        "stratify.gene_set": str,
        "stratify.k": int,
        "stratify.verbose": bool,
        "alignment.sigma": float,
        "alignment.cos_norm_in": bool,
        "alignment.cos_norm_out": bool,
        "alignment.var_adj": bool,
        "alignment.smoothing": str,
        "projection.k": int,
        "sensitivity.k_values": list,
    }


def to_dict(cfg: DictConfig, resolve: bool = True) -> Dict[str, Any]:
    """Convert OmegaConf DictConfig to plain Python dict."""
    return OmegaConf.to_container(cfg, resolve=resolve)


def merge_configs(*configs: DictConfig) -> DictConfig:
    """Merge multiple configs with later configs taking precedence."""
    return OmegaConf.merge(*configs)


def save_config(
    cfg: DictConfig,
    save_path: Union[str, Path],
    resolve: bool = True,
) -> None:
    """Save configuration to YAML file."""
    save_path = Path(save_path)
    save_path.parent.mkdir(parents=True, exist_ok=True)

    with open(save_path, "w") as f:
        OmegaConf.save(cfg, f, resolve=resolve)

    logger.info(f"Saved config to: {save_path}")


def get_value(
    cfg: Optional[DictConfig],
    path: str,
    default: Any = None,
) -> Any:
    """Safely get a nested config value with default.

    Args:
        cfg: Configuration object (None yields the default).
        path: Dotted path to value (e.g., "alignment.sigma").
        default: Default value if path doesn't exist.

    Returns:
        Config value or default.

    Example:
        >>> sigma = get_value(cfg, "alignment.sigma", default=0.1)
    """
    if cfg is None:
        return default
    try:
        value = OmegaConf.select(cfg, path)
    except MissingMandatoryValue:
        return default
    return value if value is not None else default
