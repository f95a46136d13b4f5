# ════════════════════════════════════════════════════════════════════════════════
# Tensor Optim - Line Search Gradient Descent
# ════════════════════════════════════════════════════════════════════════════════
# Steepest descent with a backtracking (Armijo) line search.
#
# Each step evaluates the loss at the current point and then at shrinking
# trial steps along -∇f until sufficient decrease is observed, so it needs
# the loss closure and cannot implement the no-argument step contract.
#
# Complexity Analysis:
# - step(): O(evals * (params + closure cost)) time
# - Memory: 2x parameters (origin + search direction) during a step
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import logging
from typing import Iterable, List, Union

import torch
from torch import Tensor

from tensor_optim.core.errors import OptimizationError
from tensor_optim.core.types import LineSearchOptions, ParamGroup
from tensor_optim.optimizers.base import (
    GroupLike,
    LossClosure,
    LossClosureOptimizer,
)

logger = logging.getLogger(__name__)


class LineSearchSGD(LossClosureOptimizer):
    """
    Gradient descent with backtracking line search.

    A trial step ``t`` starts at ``lr`` and is accepted once
    ``f(θ - t·g) <= f(θ) - c·t·‖g‖²``; otherwise ``t`` is multiplied by
    ``shrink``. If no trial passes within ``max_evals`` evaluations the
    last (smallest) trial is kept. The returned loss is the one evaluated
    at the accepted point, and gradients are left as that evaluation
    produced them.

    Only one parameter group is supported, since the search runs jointly
    over all parameters.

    Per-parameter state records the accepted ``step_size`` and the number
    of closure evaluations ``func_evals`` spent by the last step.

    Args:
        params: Parameters to optimize
        lr: Initial trial step (default: 1.0)
        shrink: Step multiplier after a rejected trial (default: 0.5)
        armijo_c: Sufficient decrease constant (default: 1e-4)
        max_evals: Maximum trial evaluations per step (default: 20)

    Example:
        ```python
        optimizer = LineSearchSGD(model.parameters(), lr=1.0)

        def closure():
            optimizer.zero_grad()
            loss = loss_fn(model(inputs), targets)
            loss.backward()
            return loss

        loss = optimizer.step(closure)
        ```
    """

    options_class = LineSearchOptions

    def __init__(
        self,
        params: Union[Iterable[Tensor], Iterable[GroupLike]],
        lr: float = 1.0,
        shrink: float = 0.5,
        armijo_c: float = 1e-4,
        max_evals: int = 20,
    ):
        defaults = LineSearchOptions(
            lr=lr,
            shrink=shrink,
            armijo_c=armijo_c,
            max_evals=max_evals,
        )
        super().__init__(params, defaults)
        if len(self.param_groups) != 1:
            raise OptimizationError(
                message="LineSearchSGD doesn't support per-parameter options (parameter groups)",
                optimizer_type=type(self).__name__,
            )

    def add_param_group(self, param_group: GroupLike) -> ParamGroup:
        raise OptimizationError(
            message="LineSearchSGD doesn't support per-parameter options (parameter groups)",
            optimizer_type=type(self).__name__,
        )

    @torch.no_grad()
    def step(self, closure: LossClosure) -> Tensor:
        options: LineSearchOptions = self.param_groups[0].options

        loss = self._evaluate(closure)
        evals = 1

        params: List[Tensor] = []
        directions: List[Tensor] = []
        for _, p in self._iter_params_with_grad():
            params.append(p)
            directions.append(p.grad.detach().clone())

        slope = sum(float(d.pow(2).sum()) for d in directions)
        if not params or slope == 0.0:
            return loss

        origins = [p.detach().clone() for p in params]
        f0 = float(loss)
        t = options.lr

        for trial in range(options.max_evals):
            for p, origin, d in zip(params, origins, directions):
                p.copy_(origin).add_(d, alpha=-t)

            loss = self._evaluate(closure)
            evals += 1

            if float(loss) <= f0 - options.armijo_c * t * slope:
                break
            if trial + 1 < options.max_evals:
                t *= options.shrink
        else:
            logger.debug(
                f"Line search hit max_evals={options.max_evals} without sufficient "
                f"decrease, keeping step {t:.3e}"
            )

        for p in params:
            self.state[p] = {"step_size": t, "func_evals": evals}
        return loss

    def save(self, archive) -> None:
        self._write_state(archive, "line_search")

    def load(self, archive) -> None:
        self._read_state(archive, "line_search")


__all__ = ["LineSearchSGD"]
