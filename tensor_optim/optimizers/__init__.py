# ════════════════════════════════════════════════════════════════════════════════
# Tensor Optim - Optimizers Package
# ════════════════════════════════════════════════════════════════════════════════
# Base optimizer contracts plus the bundled algorithms.
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, Union

from torch import Tensor

from tensor_optim.core.config import OptimizerConfig
from tensor_optim.core.errors import OptimizationError
from tensor_optim.core.types import OptimizerType

from tensor_optim.optimizers.base import (
    OptimizerBase,
    Optimizer,
    LossClosureOptimizer,
    ParamStateMap,
    StateRecord,
    LossClosure,
)

from tensor_optim.optimizers.sgd import SGD
from tensor_optim.optimizers.adam import Adam
from tensor_optim.optimizers.line_search import LineSearchSGD


OPTIMIZER_REGISTRY: Dict[OptimizerType, Callable[..., OptimizerBase]] = {
    OptimizerType.SGD: SGD,
    OptimizerType.ADAM: Adam,
    OptimizerType.LINE_SEARCH: LineSearchSGD,
}


def create_optimizer(
    name_or_config: Union[str, OptimizerType, OptimizerConfig],
    params: Iterable[Any],
    **overrides: Any,
) -> OptimizerBase:
    """
    Factory function to create optimizers by name or from a config.

    Supported optimizers:
    - sgd: SGD with optional (Nesterov) momentum
    - adam: Adam / AMSGrad
    - line_search: Gradient descent with backtracking line search

    Args:
        name_or_config: Optimizer name (case-insensitive), OptimizerType, or OptimizerConfig
        params: Parameters or parameter groups
        **overrides: Hyperparameters taking precedence over the config

    Returns:
        Configured optimizer instance

    Raises:
        OptimizationError: If the optimizer name is unknown
    """
    kwargs: Dict[str, Any] = {}

    if isinstance(name_or_config, OptimizerConfig):
        optimizer_type = name_or_config.optimizer_type
        kwargs.update(name_or_config.to_options().explicit())
    elif isinstance(name_or_config, OptimizerType):
        optimizer_type = name_or_config
    else:
        name = str(name_or_config).lower().replace("-", "_").replace(" ", "_")
        try:
            optimizer_type = OptimizerType(name)
        except ValueError:
            available = ", ".join(sorted(t.value for t in OptimizerType))
            raise OptimizationError(
                message=f"Unknown optimizer: '{name_or_config}'. Available: {available}",
                optimizer_type=str(name_or_config),
            ) from None

    kwargs.update(overrides)
    return OPTIMIZER_REGISTRY[optimizer_type](params, **kwargs)


__all__ = [
    # Base
    "OptimizerBase",
    "Optimizer",
    "LossClosureOptimizer",
    "ParamStateMap",
    "StateRecord",
    "LossClosure",
    # Algorithms
    "SGD",
    "Adam",
    "LineSearchSGD",
    # Factory
    "OPTIMIZER_REGISTRY",
    "create_optimizer",
]
