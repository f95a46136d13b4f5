# ════════════════════════════════════════════════════════════════════════════════
# Tensor Optim - Core Package
# ════════════════════════════════════════════════════════════════════════════════
# Core types, errors, and configuration for the optimizer base layer.
# ════════════════════════════════════════════════════════════════════════════════

from tensor_optim.core.types import (
    # Constants
    DEFAULT_LR,
    DEFAULT_BETAS,
    DEFAULT_EPS,
    # Selection
    OptimizerType,
    # Options
    OptimizerOptions,
    SGDOptions,
    AdamOptions,
    LineSearchOptions,
    # Groups
    ParamGroup,
    normalize_params,
)

from tensor_optim.core.errors import (
    # Base
    OptimError,
    # Configuration
    ConfigurationError,
    YAMLParseError,
    SchemaValidationError,
    # Parameters
    ParameterError,
    InvalidParameterError,
    DuplicateMembershipError,
    # Optimization
    OptimizationError,
    # Checkpoint
    CheckpointError,
    CheckpointSaveError,
    CheckpointLoadError,
)

from tensor_optim.core.config import (
    OPTIONS_BY_TYPE,
    OptimizerConfig,
    load_optimizer_config,
    load_optimizer_config_from_dict,
    interpolate_env_vars,
)

__all__ = [
    # Types - Constants
    "DEFAULT_LR",
    "DEFAULT_BETAS",
    "DEFAULT_EPS",
    # Types - Options
    "OptimizerType",
    "OptimizerOptions",
    "SGDOptions",
    "AdamOptions",
    "LineSearchOptions",
    # Types - Groups
    "ParamGroup",
    "normalize_params",
    # Errors
    "OptimError",
    "ConfigurationError",
    "YAMLParseError",
    "SchemaValidationError",
    "ParameterError",
    "InvalidParameterError",
    "DuplicateMembershipError",
    "OptimizationError",
    "CheckpointError",
    "CheckpointSaveError",
    "CheckpointLoadError",
    # Config
    "OPTIONS_BY_TYPE",
    "OptimizerConfig",
    "load_optimizer_config",
    "load_optimizer_config_from_dict",
    "interpolate_env_vars",
]
