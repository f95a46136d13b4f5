# ════════════════════════════════════════════════════════════════════════════════
# Tensor Optim - SGD Optimizer
# ════════════════════════════════════════════════════════════════════════════════
# Stochastic gradient descent with optional (Nesterov) momentum.
#
# Complexity Analysis:
# - step(): O(params) time
# - Memory: 1x parameters for momentum buffers (only when momentum > 0)
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

from typing import Any, Dict, Iterable, Union

import torch
from torch import Tensor

from tensor_optim.core.types import SGDOptions
from tensor_optim.optimizers.base import (
    GroupLike,
    Optimizer,
    StateRecord,
)


class SGD(Optimizer):
    """
    SGD with momentum, dampening, L2 weight decay and Nesterov momentum.

    Algorithm:
    ```
    g_t = ∇f(θ_{t-1}) + λθ_{t-1}
    b_t = μ b_{t-1} + (1 - τ) g_t          (b_1 = g_1)
    d_t = g_t + μ b_t   if nesterov else b_t
    θ_t = θ_{t-1} - η d_t
    ```

    The momentum buffer is created on a parameter's first update and
    kept in ``state[param]["momentum_buffer"]``.

    Args:
        params: Parameters or parameter groups to optimize
        lr: Learning rate (default: 1e-3)
        momentum: Momentum factor (default: 0)
        dampening: Momentum dampening (default: 0)
        weight_decay: L2 penalty (default: 0)
        nesterov: Use Nesterov momentum (default: False)
        maximize: Maximize the objective (default: False)

    Example:
        ```python
        optimizer = SGD(model.parameters(), lr=0.1, momentum=0.9)

        for batch in dataloader:
            optimizer.zero_grad()
            loss_fn(model(batch)).backward()
            optimizer.step()
        ```
    """

    options_class = SGDOptions

    def __init__(
        self,
        params: Union[Iterable[Tensor], Iterable[GroupLike]],
        lr: float = 1e-3,
        momentum: float = 0.0,
        dampening: float = 0.0,
        weight_decay: float = 0.0,
        nesterov: bool = False,
        *,
        maximize: bool = False,
    ):
        defaults = SGDOptions(
            lr=lr,
            momentum=momentum,
            dampening=dampening,
            weight_decay=weight_decay,
            nesterov=nesterov,
            maximize=maximize,
        )
        super().__init__(params, defaults)

    def _init_state(self, param: Tensor, options: SGDOptions) -> StateRecord:
        return {"momentum_buffer": None}

    @torch.no_grad()
    def step(self) -> None:
        for group, p in self._iter_params_with_grad():
            if p not in self.state:
                self.state[p] = self._init_state(p, group.options)
            self._step_param(p, p.grad, self.state[p], group.options)

    def _step_param(
        self,
        param: Tensor,
        grad: Tensor,
        state: Dict[str, Any],
        options: SGDOptions,
    ) -> None:
        d_p = -grad if options.maximize else grad

        if options.weight_decay != 0:
            d_p = d_p.add(param, alpha=options.weight_decay)

        if options.momentum != 0:
            buf = state.get("momentum_buffer")
            if buf is None:
                buf = torch.clone(d_p).detach()
                state["momentum_buffer"] = buf
            else:
                buf.mul_(options.momentum).add_(d_p, alpha=1.0 - options.dampening)

            if options.nesterov:
                d_p = d_p.add(buf, alpha=options.momentum)
            else:
                d_p = buf

        param.add_(d_p, alpha=-options.lr)

    def save(self, archive) -> None:
        self._write_state(archive, "sgd")

    def load(self, archive) -> None:
        self._read_state(archive, "sgd")


__all__ = ["SGD"]
