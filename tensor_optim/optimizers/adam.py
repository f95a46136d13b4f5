# ════════════════════════════════════════════════════════════════════════════════
# Tensor Optim - Adam Optimizer
# ════════════════════════════════════════════════════════════════════════════════
# Adam with L2-coupled weight decay and optional AMSGrad.
#
# Complexity Analysis:
# - step(): O(params) time
# - Memory: 2x parameters (exp_avg + exp_avg_sq), 3x with AMSGrad
#
# Reference: Adam: A Method for Stochastic Optimization (ICLR 2015)
# https://arxiv.org/abs/1412.6980
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, Tuple, Union

import torch
from torch import Tensor

from tensor_optim.core.types import DEFAULT_BETAS, DEFAULT_EPS, AdamOptions
from tensor_optim.optimizers.base import (
    GroupLike,
    Optimizer,
    StateRecord,
)


class Adam(Optimizer):
    """
    Adam optimizer.

    Algorithm:
    ```
    g_t = ∇f(θ_{t-1}) + λθ_{t-1}
    m_t = β₁ * m_{t-1} + (1 - β₁) * g_t
    v_t = β₂ * v_{t-1} + (1 - β₂) * g_t²
    m̂_t = m_t / (1 - β₁^t)
    v̂_t = v_t / (1 - β₂^t)
    θ_t = θ_{t-1} - η * m̂_t / (√v̂_t + ε)
    ```

    Weight decay is added to the gradient (coupled L2), unlike AdamW.

    Args:
        params: Parameters or parameter groups to optimize
        lr: Learning rate (default: 1e-3)
        betas: Coefficients for computing running averages (default: (0.9, 0.999))
        eps: Term for numerical stability (default: 1e-8)
        weight_decay: L2 penalty (default: 0)
        amsgrad: Use AMSGrad variant (default: False)
    """

    options_class = AdamOptions

    def __init__(
        self,
        params: Union[Iterable[Tensor], Iterable[GroupLike]],
        lr: float = 1e-3,
        betas: Tuple[float, float] = DEFAULT_BETAS,
        eps: float = DEFAULT_EPS,
        weight_decay: float = 0.0,
        *,
        amsgrad: bool = False,
    ):
        defaults = AdamOptions(
            lr=lr,
            betas=betas,
            eps=eps,
            weight_decay=weight_decay,
            amsgrad=amsgrad,
        )
        super().__init__(params, defaults)

    def _init_state(self, param: Tensor, options: AdamOptions) -> StateRecord:
        """
        Allocate moment buffers for ``param``.

        - step: Step counter for bias correction
        - exp_avg: First moment
        - exp_avg_sq: Second moment
        - max_exp_avg_sq: Running max of second moment (AMSGrad only)
        """
        state: StateRecord = {"step": 0}
        state["exp_avg"] = torch.zeros_like(param, memory_format=torch.preserve_format)
        state["exp_avg_sq"] = torch.zeros_like(param, memory_format=torch.preserve_format)
        if options.amsgrad:
            state["max_exp_avg_sq"] = torch.zeros_like(
                param, memory_format=torch.preserve_format
            )
        return state

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
        options: AdamOptions,
    ) -> None:
        beta1, beta2 = options.betas

        if options.weight_decay != 0:
            grad = grad.add(param, alpha=options.weight_decay)

        state["step"] += 1
        step = state["step"]

        exp_avg = state["exp_avg"]
        exp_avg_sq = state["exp_avg_sq"]

        exp_avg.mul_(beta1).add_(grad, alpha=1.0 - beta1)
        exp_avg_sq.mul_(beta2).addcmul_(grad, grad, value=1.0 - beta2)

        bias_correction1 = 1.0 - beta1 ** step
        bias_correction2_sqrt = math.sqrt(1.0 - beta2 ** step)

        if options.amsgrad:
            max_exp_avg_sq = state["max_exp_avg_sq"]
            torch.maximum(max_exp_avg_sq, exp_avg_sq, out=max_exp_avg_sq)
            denom = (max_exp_avg_sq.sqrt() / bias_correction2_sqrt).add_(options.eps)
        else:
            denom = (exp_avg_sq.sqrt() / bias_correction2_sqrt).add_(options.eps)

        step_size = options.lr / bias_correction1
        param.addcdiv_(exp_avg, denom, value=-step_size)

    def save(self, archive) -> None:
        self._write_state(archive, "adam")

    def load(self, archive) -> None:
        self._read_state(archive, "adam")


__all__ = ["Adam"]
