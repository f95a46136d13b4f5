# ════════════════════════════════════════════════════════════════════════════════
# Tensor Optim - YAML Configuration Loader
# ════════════════════════════════════════════════════════════════════════════════
# OptimizerConfig and configuration management from YAML files.
#
# Design Principles:
# - A YAML section names the optimizer and its hyperparameters
# - Pydantic validation ensures type safety at load time
# - Only fields present in the file count as explicitly set options
# - Environment variable interpolation for per-run overrides
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Type, Union

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
)

from tensor_optim.core.errors import (
    ConfigurationError,
    SchemaValidationError,
    YAMLParseError,
)
from tensor_optim.core.types import (
    AdamOptions,
    LineSearchOptions,
    OptimizerOptions,
    OptimizerType,
    SGDOptions,
)


OPTIONS_BY_TYPE: Dict[OptimizerType, Type[OptimizerOptions]] = {
    OptimizerType.SGD: SGDOptions,
    OptimizerType.ADAM: AdamOptions,
    OptimizerType.LINE_SEARCH: LineSearchOptions,
}


# ═════════════════════════════════════════════════════════════════════════════════
# Environment Variable Interpolation
# ═════════════════════════════════════════════════════════════════════════════════

ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


def interpolate_env_vars(value: Any) -> Any:
    """
    Recursively interpolate environment variables in configuration values.

    Supports ${VAR_NAME} syntax with optional default: ${VAR_NAME:-default}

    Args:
        value: Configuration value (string, dict, list, or primitive)

    Returns:
        Value with environment variables substituted

    Example:
        "${OPT_LR}" -> actual value
        "${OPT_LR:-0.01}" -> "0.01" if OPT_LR not set
    """
    if isinstance(value, str):
        def replace_env_var(match: re.Match) -> str:
            var_spec = match.group(1)

            if ":-" in var_spec:
                var_name, default = var_spec.split(":-", 1)
            else:
                var_name, default = var_spec, ""

            return os.environ.get(var_name.strip(), default)

        return ENV_VAR_PATTERN.sub(replace_env_var, value)

    elif isinstance(value, dict):
        return {k: interpolate_env_vars(v) for k, v in value.items()}

    elif isinstance(value, list):
        return [interpolate_env_vars(item) for item in value]

    return value


# ═════════════════════════════════════════════════════════════════════════════════
# Optimizer Configuration
# ═════════════════════════════════════════════════════════════════════════════════

class OptimizerConfig(BaseModel):
    """
    Optimizer selection plus hyperparameters, loaded from YAML.

    Every hyperparameter is optional here; range checks happen when the
    config is turned into the algorithm's options record, so the same
    bounds apply to YAML and programmatic construction.

    Example YAML:
    ```yaml
    optimizer:
      optimizer_type: sgd
      lr: 0.05
      momentum: 0.9
      nesterov: true
    ```
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    optimizer_type: OptimizerType = Field(
        default=OptimizerType.SGD,
        description="Optimizer algorithm selection"
    )

    lr: Optional[float] = Field(default=None, description="Learning rate")

    # SGD
    momentum: Optional[float] = None
    dampening: Optional[float] = None
    nesterov: Optional[bool] = None
    maximize: Optional[bool] = None

    # Adam
    betas: Optional[Tuple[float, float]] = None
    eps: Optional[float] = None
    amsgrad: Optional[bool] = None

    # Shared regularization
    weight_decay: Optional[float] = None

    # Line search
    shrink: Optional[float] = None
    armijo_c: Optional[float] = None
    max_evals: Optional[int] = None

    @property
    def options_class(self) -> Type[OptimizerOptions]:
        return OPTIONS_BY_TYPE[self.optimizer_type]

    def to_options(self) -> OptimizerOptions:
        """
        Build the options record for ``optimizer_type``.

        Fields left out of the config stay unset in the record.

        Raises:
            ConfigurationError: If a field does not apply to the optimizer
            SchemaValidationError: If a value is out of range
        """
        options_class = self.options_class
        given = {
            name: getattr(self, name)
            for name in self.model_fields_set
            if name != "optimizer_type" and getattr(self, name) is not None
        }

        unknown = sorted(set(given) - set(options_class.model_fields))
        if unknown:
            raise ConfigurationError(
                message=f"Fields not supported by '{self.optimizer_type.value}': {', '.join(unknown)}",
                field_path=unknown[0],
                remediation="Remove the fields or select a different optimizer_type"
            )

        try:
            return options_class(**given)
        except ValidationError as e:
            raise SchemaValidationError(
                message=f"Invalid '{self.optimizer_type.value}' options",
                validation_errors=_format_validation_errors(e),
                cause=e
            )


def _format_validation_errors(e: ValidationError) -> Tuple[str, ...]:
    errors = []
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", []))
        msg = err.get("msg", "Unknown error")
        errors.append(f"{loc}: {msg}" if loc else msg)
    return tuple(errors)


# ═════════════════════════════════════════════════════════════════════════════════
# YAML Loading Functions
# ═════════════════════════════════════════════════════════════════════════════════

def load_optimizer_config(
    yaml_path: Union[str, Path],
    *,
    config_key: str = "optimizer",
    interpolate_env: bool = True,
) -> OptimizerConfig:
    """
    Load OptimizerConfig from YAML file.

    The optimizer config can be a dedicated file or a section within a
    larger training config.

    Args:
        yaml_path: Path to YAML configuration file
        config_key: Top-level key containing optimizer config (default: "optimizer")
        interpolate_env: Whether to substitute ${VAR} with environment variables

    Returns:
        Validated OptimizerConfig instance

    Raises:
        YAMLParseError: If YAML syntax is invalid
        SchemaValidationError: If configuration doesn't match schema
        ConfigurationError: For other configuration issues
    """
    yaml_path = Path(yaml_path)

    if not yaml_path.exists():
        raise ConfigurationError(
            message=f"Configuration file not found: {yaml_path}",
            yaml_file=str(yaml_path),
            remediation="Ensure the YAML file exists at the specified path"
        )

    try:
        with open(yaml_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        line = getattr(e, "problem_mark", None)
        raise YAMLParseError(
            message=f"Failed to parse YAML: {e}",
            yaml_file=str(yaml_path),
            line=line.line + 1 if line else None,
            column=line.column + 1 if line else None,
            cause=e
        )

    if raw_config is None:
        raise ConfigurationError(
            message="Empty configuration file",
            yaml_file=str(yaml_path),
            remediation="Add optimizer configuration to the YAML file"
        )

    if not isinstance(raw_config, dict):
        raise ConfigurationError(
            message="Configuration root must be a mapping",
            yaml_file=str(yaml_path),
            expected="mapping",
            got=type(raw_config).__name__
        )

    # Assume entire file is the optimizer config when the key is absent
    optimizer_config = raw_config.get(config_key, raw_config)

    if interpolate_env:
        optimizer_config = interpolate_env_vars(optimizer_config)

    try:
        return OptimizerConfig.model_validate(optimizer_config)
    except ValidationError as e:
        raise SchemaValidationError(
            message="Optimizer configuration validation failed",
            yaml_file=str(yaml_path),
            validation_errors=_format_validation_errors(e),
            cause=e
        )


def load_optimizer_config_from_dict(
    config_dict: Dict[str, Any],
    *,
    interpolate_env: bool = True,
) -> OptimizerConfig:
    """
    Create OptimizerConfig from dictionary.

    Useful for programmatic configuration or testing.
    """
    if interpolate_env:
        config_dict = interpolate_env_vars(config_dict)

    try:
        return OptimizerConfig.model_validate(config_dict)
    except ValidationError as e:
        raise SchemaValidationError(
            message="Optimizer configuration validation failed",
            validation_errors=_format_validation_errors(e),
            cause=e
        )


# ═════════════════════════════════════════════════════════════════════════════════
# Export
# ═════════════════════════════════════════════════════════════════════════════════

__all__ = [
    "OPTIONS_BY_TYPE",
    "OptimizerConfig",
    "load_optimizer_config",
    "load_optimizer_config_from_dict",
    "interpolate_env_vars",
]
