# ════════════════════════════════════════════════════════════════════════════════
# Tensor Optim
# ════════════════════════════════════════════════════════════════════════════════
# Generic base layer for gradient-based optimizers over PyTorch tensors:
# parameter groups with overridable options, identity-keyed per-parameter
# state, legacy index-addressed buffers, zero-grad and archive hooks.
#
# Quick Start:
#   from tensor_optim import SGD
#   optimizer = SGD(model.parameters(), lr=0.1, momentum=0.9)
#   optimizer.zero_grad(); loss.backward(); optimizer.step()
# ════════════════════════════════════════════════════════════════════════════════

__version__ = "0.1.0"

from tensor_optim.core import (
    # Types
    OptimizerType,
    OptimizerOptions,
    SGDOptions,
    AdamOptions,
    LineSearchOptions,
    ParamGroup,
    # Errors
    OptimError,
    ConfigurationError,
    YAMLParseError,
    SchemaValidationError,
    ParameterError,
    InvalidParameterError,
    DuplicateMembershipError,
    OptimizationError,
    CheckpointError,
    CheckpointSaveError,
    CheckpointLoadError,
    # Config
    OptimizerConfig,
    load_optimizer_config,
    load_optimizer_config_from_dict,
)

from tensor_optim.optimizers import (
    OptimizerBase,
    Optimizer,
    LossClosureOptimizer,
    ParamStateMap,
    SGD,
    Adam,
    LineSearchSGD,
    create_optimizer,
)

from tensor_optim.serialize import (
    OutputArchive,
    InputArchive,
    save_optimizer,
    load_optimizer,
)

__all__ = [
    "__version__",
    # Types
    "OptimizerType",
    "OptimizerOptions",
    "SGDOptions",
    "AdamOptions",
    "LineSearchOptions",
    "ParamGroup",
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
    "OptimizerConfig",
    "load_optimizer_config",
    "load_optimizer_config_from_dict",
    # Optimizers
    "OptimizerBase",
    "Optimizer",
    "LossClosureOptimizer",
    "ParamStateMap",
    "SGD",
    "Adam",
    "LineSearchSGD",
    "create_optimizer",
    # Serialization
    "OutputArchive",
    "InputArchive",
    "save_optimizer",
    "load_optimizer",
]
