# ════════════════════════════════════════════════════════════════════════════════
# Tensor Optim - Core Types
# ════════════════════════════════════════════════════════════════════════════════
# Pydantic-based option records and parameter group container.
#
# Design Principles:
# - Immutable option records via frozen Pydantic models
# - Per-field "explicitly set" tracking through model_fields_set
# - Group options resolved once, at registration, never on read
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import (
    Any,
    Final,
    Iterable,
    List,
    Optional,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from torch import Tensor

from tensor_optim.core.errors import ConfigurationError

# ─────────────────────────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────────────────────────

DEFAULT_LR: Final[float] = 1e-3
DEFAULT_BETAS: Final[Tuple[float, float]] = (0.9, 0.999)
DEFAULT_EPS: Final[float] = 1e-8

OptionsT = TypeVar("OptionsT", bound="OptimizerOptions")


# ═════════════════════════════════════════════════════════════════════════════════
# Section 1: Optimizer Selection
# ═════════════════════════════════════════════════════════════════════════════════

class OptimizerType(str, enum.Enum):
    """
    Bundled optimizer implementations.

    - SGD: Stochastic gradient descent with optional (Nesterov) momentum
    - ADAM: Adam with L2-coupled weight decay, optional AMSGrad
    - LINE_SEARCH: Steepest descent with backtracking (Armijo) line search,
      requires a loss closure
    """
    SGD = "sgd"
    ADAM = "adam"
    LINE_SEARCH = "line_search"


# ═════════════════════════════════════════════════════════════════════════════════
# Section 2: Option Records
# ═════════════════════════════════════════════════════════════════════════════════

class OptimizerOptions(BaseModel):
    """
    Hyperparameters shared by every optimizer.

    One instance is the optimizer-wide default; each parameter group holds
    its own resolved instance. A field counts as explicitly set when it was
    passed at construction (pydantic's ``model_fields_set``), which is what
    lets a group override a subset of fields and inherit the rest.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    lr: float = Field(
        default=DEFAULT_LR, ge=0.0,
        description="Learning rate"
    )

    def is_set(self, name: str) -> bool:
        """True if ``name`` was given explicitly rather than defaulted."""
        return name in self.model_fields_set

    def explicit(self) -> dict:
        """Explicitly set fields as a plain dict."""
        return {name: getattr(self, name) for name in self.model_fields_set}

    def merged_over(self: OptionsT, defaults: "OptimizerOptions") -> OptionsT:
        """
        Resolve this record against ``defaults``.

        Fields set explicitly here win; every other field shared with
        ``defaults`` takes the value ``defaults`` carries. When ``defaults``
        is a subclass of this record's type the result takes the subclass,
        so a bare ``OptimizerOptions(lr=...)`` override still yields a full
        record. The result is re-validated so cross-field constraints hold
        on the combination.
        """
        target = type(defaults) if isinstance(defaults, type(self)) else type(self)
        shared = target.model_fields.keys() & type(defaults).model_fields.keys()
        values = {name: getattr(defaults, name) for name in shared}
        values.update(self.explicit())
        return target.model_validate(values)

    def snapshot(self: OptionsT) -> OptionsT:
        """Independent copy with the same explicitly-set fields."""
        return self.model_copy(deep=True)


class SGDOptions(OptimizerOptions):
    """
    SGD hyperparameters.

    Nesterov momentum requires a positive momentum and zero dampening.
    """
    momentum: float = Field(
        default=0.0, ge=0.0,
        description="Momentum factor"
    )
    dampening: float = Field(
        default=0.0, ge=0.0,
        description="Dampening applied to the momentum update"
    )
    weight_decay: float = Field(
        default=0.0, ge=0.0,
        description="L2 penalty added to the gradient"
    )
    nesterov: bool = Field(
        default=False,
        description="Use Nesterov momentum"
    )
    maximize: bool = Field(
        default=False,
        description="Maximize the objective instead of minimizing"
    )

    @model_validator(mode="after")
    def check_nesterov(self) -> "SGDOptions":
        if self.nesterov and (self.momentum <= 0.0 or self.dampening != 0.0):
            raise ValueError("Nesterov momentum requires a momentum and zero dampening")
        return self


class AdamOptions(OptimizerOptions):
    """
    Adam hyperparameters.
    """
    betas: Tuple[float, float] = Field(
        default=DEFAULT_BETAS,
        description="Decay rates for the first and second moment estimates"
    )
    eps: float = Field(
        default=DEFAULT_EPS, ge=0.0,
        description="Numerical stability term added to the denominator"
    )
    weight_decay: float = Field(
        default=0.0, ge=0.0,
        description="L2 penalty added to the gradient"
    )
    amsgrad: bool = Field(
        default=False,
        description="Use the AMSGrad variant (running max of second moment)"
    )

    @field_validator("betas")
    @classmethod
    def check_betas(cls, v: Tuple[float, float]) -> Tuple[float, float]:
        for i, beta in enumerate(v):
            if not 0.0 <= beta < 1.0:
                raise ValueError(f"Invalid beta parameter at index {i}: {beta}")
        return v


class LineSearchOptions(OptimizerOptions):
    """
    Backtracking line search hyperparameters.

    ``lr`` is the initial trial step; it is multiplied by ``shrink`` until
    the Armijo sufficient-decrease condition holds or ``max_evals`` trial
    points have been evaluated. The evaluation at the starting point is
    not counted.
    """
    lr: float = Field(
        default=1.0, gt=0.0,
        description="Initial trial step size"
    )
    shrink: float = Field(
        default=0.5, gt=0.0, lt=1.0,
        description="Step size multiplier after a rejected trial"
    )
    armijo_c: float = Field(
        default=1e-4, gt=0.0, lt=1.0,
        description="Sufficient decrease constant"
    )
    max_evals: int = Field(
        default=20, ge=1,
        description="Maximum trial-point evaluations per step"
    )


# ═════════════════════════════════════════════════════════════════════════════════
# Section 3: Parameter Groups
# ═════════════════════════════════════════════════════════════════════════════════

@dataclass
class ParamGroup:
    """
    An ordered set of parameters sharing one options record.

    ``options`` stays None until the group is registered with an optimizer,
    which fills it from the optimizer's defaults.
    """
    params: List[Tensor] = field(default_factory=list)
    options: Optional[OptimizerOptions] = None

    def __post_init__(self) -> None:
        self.params = normalize_params(self.params)

    def has_options(self) -> bool:
        return self.options is not None

    def __len__(self) -> int:
        return len(self.params)

    @classmethod
    def from_dict(
        cls,
        group: dict,
        options_class: Type[OptimizerOptions] = OptimizerOptions,
    ) -> "ParamGroup":
        """
        Build a group from a ``{"params": ..., "lr": ...}`` mapping.

        Non-``params`` keys become explicitly-set fields of ``options_class``.
        A mapping with only ``params`` yields a group without options.
        Values are validated later, together with the defaults they are
        merged over, so cross-field checks see the combined record.
        """
        if "params" not in group:
            raise ConfigurationError(
                message="Parameter group mapping requires a 'params' key",
                field_path="params",
            )
        overrides = {k: v for k, v in group.items() if k != "params"}
        unknown = sorted(set(overrides) - set(options_class.model_fields))
        if unknown:
            raise ConfigurationError(
                message=f"Unknown {options_class.__name__} fields in parameter group: "
                        f"{', '.join(unknown)}",
                field_path=unknown[0],
            )
        options = options_class.model_construct(**overrides) if overrides else None
        return cls(params=group["params"], options=options)


def normalize_params(params: Union[Tensor, Iterable[Any]]) -> List[Any]:
    """Turn a tensor or an ordered iterable of tensors into a list."""
    if isinstance(params, Tensor):
        return [params]
    if isinstance(params, (set, frozenset)):
        raise TypeError(
            "optimizer parameters need to be organized in ordered collections, "
            "but the ordering of tensors in sets will change between runs"
        )
    return list(params)


# ═════════════════════════════════════════════════════════════════════════════════
# Export
# ═════════════════════════════════════════════════════════════════════════════════

__all__ = [
    "DEFAULT_LR",
    "DEFAULT_BETAS",
    "DEFAULT_EPS",
    "OptimizerType",
    "OptimizerOptions",
    "SGDOptions",
    "AdamOptions",
    "LineSearchOptions",
    "ParamGroup",
    "normalize_params",
]
