# ════════════════════════════════════════════════════════════════════════════════
# Tensor Optim - Base Optimizer
# ════════════════════════════════════════════════════════════════════════════════
# Parameter, group, option and state bookkeeping shared by every optimizer.
# No update arithmetic lives here.
#
# Key Features:
# - Parameter groups with per-group options resolved at registration
# - Identity-keyed per-parameter state that survives group growth
# - Legacy flat parameter view derived from a designated group
# - Lazily grown, self-correcting index-addressed buffers
# - Archive hooks and positional state_dict for checkpointing
#
# Complexity Analysis:
# - add_param_group(): O(group params) time
# - zero_grad(): O(params) time, O(params) space for the visited set
# - state_dict()/load_state_dict(): O(params) time and space
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import abc
import logging
import warnings
from collections.abc import MutableMapping
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    ClassVar,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
    Union,
)

import torch
from pydantic import ValidationError
from torch import Tensor

from tensor_optim.core.errors import (
    CheckpointLoadError,
    ConfigurationError,
    DuplicateMembershipError,
    InvalidParameterError,
    OptimizationError,
)
from tensor_optim.core.types import (
    OptimizerOptions,
    ParamGroup,
    normalize_params,
)

if TYPE_CHECKING:
    from tensor_optim.serialize.archive import InputArchive, OutputArchive

logger = logging.getLogger(__name__)

# ═════════════════════════════════════════════════════════════════════════════════
# Type Definitions
# ═════════════════════════════════════════════════════════════════════════════════

T = TypeVar("T")

# Per-parameter state record (owned by the concrete optimizer)
StateRecord = Dict[str, Any]

# Loss closure for optimizers that re-evaluate the objective
LossClosure = Callable[[], Tensor]

GroupLike = Union[ParamGroup, Dict[str, Any]]


# ═════════════════════════════════════════════════════════════════════════════════
# Identity-Keyed State Map
# ═════════════════════════════════════════════════════════════════════════════════

class ParamStateMap(MutableMapping):
    """
    Mapping from parameter identity to an opaque state record.

    Each parameter gets an integer token the first time it is registered.
    Entries live under the token, never under the tensor itself, so tensor
    ``__eq__``/``__hash__`` semantics never come into play. The map holds a
    reference to every registered tensor, which keeps ``id(tensor)`` from
    being recycled while the token is alive.

    Entries for parameters that are no longer used elsewhere are not
    reclaimed.
    """

    def __init__(self) -> None:
        self._tokens: Dict[int, int] = {}
        self._params: Dict[int, Tensor] = {}
        self._entries: Dict[int, Any] = {}
        self._next_token = 0

    def register(self, param: Tensor) -> int:
        """Return the token for ``param``, assigning one if it is new."""
        token = self._tokens.get(id(param))
        if token is None:
            token = self._next_token
            self._next_token += 1
            self._tokens[id(param)] = token
            self._params[token] = param
        return token

    def token_of(self, param: Tensor) -> Optional[int]:
        return self._tokens.get(id(param))

    def __getitem__(self, param: Tensor) -> Any:
        token = self._tokens.get(id(param))
        if token is None or token not in self._entries:
            raise KeyError("no optimizer state for parameter")
        return self._entries[token]

    def __setitem__(self, param: Tensor, value: Any) -> None:
        self._entries[self.register(param)] = value

    def __delitem__(self, param: Tensor) -> None:
        token = self._tokens.get(id(param))
        if token is None or token not in self._entries:
            raise KeyError("no optimizer state for parameter")
        del self._entries[token]

    def __contains__(self, param: object) -> bool:
        token = self._tokens.get(id(param))
        return token is not None and token in self._entries

    def __iter__(self) -> Iterator[Tensor]:
        for token in list(self._entries):
            yield self._params[token]

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        """Drop every state entry; tokens stay assigned."""
        self._entries.clear()

    def __repr__(self) -> str:
        return f"ParamStateMap(entries={len(self._entries)}, registered={len(self._tokens)})"


# ═════════════════════════════════════════════════════════════════════════════════
# Optimizer Base
# ═════════════════════════════════════════════════════════════════════════════════

class OptimizerBase:
    """
    Bookkeeping shared by all optimizers: groups, defaults, state.

    The group list is the single source of truth for which parameters are
    optimized. The legacy flat parameter list (``parameters()``, ``size()``,
    ``add_parameters()``) is a view of one designated group: the implicit
    group created from a flat parameter list, or the group created by the
    first ``add_parameters`` call.

    Group options are resolved once, when the group is registered: a group
    without options receives a snapshot of the current defaults, a group
    with options inherits every field it did not set explicitly. Later
    changes to ``defaults`` never reach already registered groups.

    Args:
        params: Iterable of tensors, or of ``ParamGroup``/dict groups
        defaults: Fallback options (default: ``options_class()``)

    Raises:
        InvalidParameterError: If any parameter is not a leaf tensor
        DuplicateMembershipError: If a parameter appears twice
        ConfigurationError: If group options are invalid
    """

    options_class: ClassVar[Type[OptimizerOptions]] = OptimizerOptions

    def __init__(
        self,
        params: Union[Iterable[Tensor], Iterable[GroupLike]],
        defaults: Optional[OptimizerOptions] = None,
    ):
        self._defaults = self._coerce_defaults(defaults)
        self.param_groups: List[ParamGroup] = []
        self.state = ParamStateMap()

        # id(param) -> index of the owning group
        self._owners: Dict[int, int] = {}
        self._legacy_group: Optional[ParamGroup] = None

        items = normalize_params(params)
        is_group = [isinstance(item, (ParamGroup, dict)) for item in items]

        if items and all(is_group):
            self._add_param_groups([self._as_group(item) for item in items])
        elif any(is_group):
            raise InvalidParameterError(
                message="Cannot mix parameter groups and bare parameters",
                remediation="Wrap bare parameters in a ParamGroup"
            )
        else:
            self._legacy_group = self._add_param_groups([ParamGroup(params=items)])[0]

    # ─────────────────────────────────────────────────────────────────────────────
    # Defaults
    # ─────────────────────────────────────────────────────────────────────────────

    @property
    def defaults(self) -> OptimizerOptions:
        """Options used for groups registered from now on."""
        return self._defaults

    @defaults.setter
    def defaults(self, value: OptimizerOptions) -> None:
        self._defaults = self._coerce_defaults(value)

    def _coerce_defaults(self, defaults: Optional[OptimizerOptions]) -> OptimizerOptions:
        if defaults is None:
            return self.options_class()
        if isinstance(defaults, self.options_class):
            return defaults.snapshot()
        self._check_options_type(defaults, "defaults")
        try:
            return defaults.merged_over(self.options_class())
        except ValidationError as e:
            raise ConfigurationError(
                message=f"Invalid defaults for {type(self).__name__}",
                cause=e
            )

    # ─────────────────────────────────────────────────────────────────────────────
    # Group Registration
    # ─────────────────────────────────────────────────────────────────────────────

    def add_param_group(self, param_group: GroupLike) -> ParamGroup:
        """
        Validate and register a parameter group.

        The registered group is a copy: the caller's group object is not
        modified. Either the whole group is registered or, on error,
        nothing changes.

        Returns:
            The registered group with resolved options
        """
        return self._add_param_groups([self._as_group(param_group)])[0]

    def add_parameters(self, params: Union[Tensor, Iterable[Tensor]]) -> None:
        """
        Append parameters to the legacy flat parameter list.

        Deprecated: use ``add_param_group``. Does not create a group unless
        the optimizer has no legacy group yet.
        """
        warnings.warn(
            "add_parameters() is deprecated, use add_param_group() instead",
            DeprecationWarning,
            stacklevel=2,
        )
        params = normalize_params(params)

        if self._legacy_group is None:
            self._legacy_group = self._add_param_groups([ParamGroup(params=params)])[0]
            return

        group_index = self._group_index(self._legacy_group)
        claimed = dict(self._owners)
        self._validate_params(params, group_index, claimed)

        for p in params:
            self._owners[id(p)] = group_index
            self.state.register(p)
        self._legacy_group.params.extend(params)

    def _as_group(self, item: Any) -> ParamGroup:
        if isinstance(item, ParamGroup):
            return item
        if isinstance(item, dict):
            return ParamGroup.from_dict(item, self.options_class)
        raise InvalidParameterError(
            message=f"Expected a ParamGroup or dict, got {type(item).__name__}"
        )

    def _add_param_groups(self, groups: Sequence[ParamGroup]) -> List[ParamGroup]:
        # Validate and resolve everything first so a failure leaves no trace
        claimed = dict(self._owners)
        resolved: List[ParamGroup] = []
        for offset, group in enumerate(groups):
            group_index = len(self.param_groups) + offset
            self._validate_params(group.params, group_index, claimed)
            resolved.append(ParamGroup(
                params=list(group.params),
                options=self._resolve_options(group, group_index),
            ))

        for group in resolved:
            group_index = len(self.param_groups)
            for p in group.params:
                self._owners[id(p)] = group_index
                self.state.register(p)
            self.param_groups.append(group)
            logger.debug(
                f"Registered param group {group_index} with {len(group)} params "
                f"(lr={group.options.lr})"
            )
        return resolved

    def _validate_params(
        self,
        params: Sequence[Any],
        group_index: int,
        claimed: Dict[int, int],
    ) -> None:
        """Check leaf-ness and membership; records new members in ``claimed``."""
        for i, p in enumerate(params):
            if not isinstance(p, Tensor):
                raise InvalidParameterError(
                    message=f"Optimizer expected Tensor, got {type(p).__name__}",
                    param_index=i,
                    group_index=group_index,
                )
            if not p.is_leaf:
                raise InvalidParameterError(
                    message="can't optimize a non-leaf Tensor",
                    param_index=i,
                    group_index=group_index,
                    remediation="Pass the leaf tensor, or call .detach().requires_grad_()"
                )

        pending: Dict[int, int] = {}
        for i, p in enumerate(params):
            owner = claimed.get(id(p), pending.get(id(p)))
            if owner is not None:
                raise DuplicateMembershipError(
                    message="some parameters appear in more than one parameter group",
                    param_index=i,
                    group_index=group_index,
                    existing_group_index=owner,
                )
            pending[id(p)] = group_index
        claimed.update(pending)

    def _resolve_options(self, group: ParamGroup, group_index: int) -> OptimizerOptions:
        if not group.has_options():
            return self._defaults.snapshot()
        self._check_options_type(group.options, f"param group {group_index}")
        try:
            return group.options.merged_over(self._defaults)
        except ValidationError as e:
            raise ConfigurationError(
                message=f"Invalid options for param group {group_index}",
                cause=e
            )

    def _check_options_type(self, options: Any, where: str) -> None:
        """Accept ``options_class`` records and bare ``OptimizerOptions`` only."""
        if isinstance(options, self.options_class) or type(options) is OptimizerOptions:
            return
        raise ConfigurationError(
            message=f"Invalid options for {where} of {type(self).__name__}",
            expected=self.options_class.__name__,
            got=type(options).__name__,
            remediation=f"Pass {self.options_class.__name__} or OptimizerOptions"
        )

    def _group_index(self, group: ParamGroup) -> int:
        for i, g in enumerate(self.param_groups):
            if g is group:
                return i
        raise ValueError("group is not registered with this optimizer")

    # ─────────────────────────────────────────────────────────────────────────────
    # Parameter Views
    # ─────────────────────────────────────────────────────────────────────────────

    def parameters(self) -> Sequence[Tensor]:
        """
        The legacy flat parameter list.

        This is the legacy group's own list; appending to it adds
        parameters to that group. An optimizer built from groups only has
        no legacy list and returns an empty tuple; use ``add_parameters``
        to create one.
        """
        if self._legacy_group is None:
            return ()
        return self._legacy_group.params

    def size(self) -> int:
        """Number of parameters in the legacy flat list (not group totals)."""
        return len(self.parameters())

    def __len__(self) -> int:
        return self.size()

    def all_parameters(self) -> Iterator[Tensor]:
        """Every parameter across all groups, each yielded once."""
        seen = set()
        for group in self.param_groups:
            for p in group.params:
                if id(p) in seen:
                    continue
                seen.add(id(p))
                yield p

    def _iter_params_with_grad(self) -> Iterator[Tuple[ParamGroup, Tensor]]:
        seen = set()
        for group in self.param_groups:
            for p in group.params:
                if id(p) in seen or p.grad is None:
                    continue
                seen.add(id(p))
                yield group, p

    # ─────────────────────────────────────────────────────────────────────────────
    # Gradient Reset
    # ─────────────────────────────────────────────────────────────────────────────

    def zero_grad(self, set_to_none: bool = False) -> None:
        """
        Reset gradients of all parameters.

        Each parameter is visited at most once. Parameters without a
        gradient are left alone; no gradient is materialized.

        Args:
            set_to_none: If True, drop gradients instead of zeroing them
        """
        for p in self.all_parameters():
            if p.grad is None:
                continue
            if set_to_none:
                p.grad = None
                continue
            if p.grad.grad_fn is not None:
                p.grad.detach_()
            else:
                p.grad.requires_grad_(False)
            p.grad.zero_()

    # ─────────────────────────────────────────────────────────────────────────────
    # Legacy Buffers
    # ─────────────────────────────────────────────────────────────────────────────

    def buffer_at(self, buffers: List[T], index: int, zero: T = 0) -> T:
        """
        Access ``buffers[index]``, growing the list with ``zero`` if needed.
        """
        if index < 0:
            raise IndexError(f"buffer index must be non-negative, got {index}")
        if len(buffers) <= index:
            buffers.extend([zero] * (index + 1 - len(buffers)))
        return buffers[index]

    def tensor_buffer_at(self, buffers: List[Tensor], index: int) -> Tensor:
        """
        Access a tensor buffer matched to ``parameters()[index]``.

        Missing slots up to ``index`` are filled with zeros shaped like the
        parameter at the same position. If the slot's device or dtype no
        longer matches its parameter, it is cast and stored back, so later
        calls return the cached tensor unchanged.
        """
        params = self.parameters()
        if index < 0 or index >= len(params):
            raise IndexError(
                f"buffer index {index} out of range for {len(params)} parameters"
            )

        for i in range(len(buffers), index + 1):
            buffers.append(torch.zeros_like(params[i]))

        param = params[index]
        buffer = buffers[index]
        if buffer.device != param.device or buffer.dtype != param.dtype:
            logger.debug(
                f"Casting buffer {index} from {buffer.device}/{buffer.dtype} "
                f"to {param.device}/{param.dtype}"
            )
            buffers[index] = buffer.to(device=param.device, dtype=param.dtype)
        return buffers[index]

    # ─────────────────────────────────────────────────────────────────────────────
    # Serialization
    # ─────────────────────────────────────────────────────────────────────────────

    def save(self, archive: "OutputArchive") -> None:
        """Write optimizer state to ``archive``. Nothing at this layer."""

    def load(self, archive: "InputArchive") -> None:
        """Read optimizer state from ``archive``. Nothing at this layer."""

    def _layout(self) -> List[int]:
        return [len(group) for group in self.param_groups]

    def _write_state(self, archive: "OutputArchive", prefix: str) -> None:
        """
        Write every state record under ``<prefix>/<group>/<index>/<field>``.

        Keys are positional; the group layout is recorded alongside so a
        load into a differently shaped optimizer is detected.
        """
        archive.write(f"{prefix}/layout", torch.tensor(self._layout(), dtype=torch.int64))
        for group_index, group in enumerate(self.param_groups):
            for param_index, p in enumerate(group.params):
                if p not in self.state:
                    continue
                for name, value in self.state[p].items():
                    if value is None:
                        continue
                    archive.write(f"{prefix}/{group_index}/{param_index}/{name}", value)

    def _read_state(self, archive: "InputArchive", prefix: str) -> None:
        """Inverse of ``_write_state``; replaces state for every matched parameter."""
        layout_key = f"{prefix}/layout"
        if layout_key not in archive:
            logger.warning(f"No '{prefix}' state in archive, keeping current state")
            return

        saved_layout = archive.read(layout_key).tolist()
        if saved_layout != self._layout():
            raise CheckpointLoadError(
                message=f"Archive group layout {saved_layout} does not match "
                        f"optimizer layout {self._layout()}",
                remediation="Load into an optimizer built over the same parameter groups"
            )

        records: Dict[Tuple[int, int], StateRecord] = {}
        head = f"{prefix}/"
        for key in archive.keys():
            if not key.startswith(head) or key == layout_key:
                continue
            try:
                group_index, param_index, name = key[len(head):].split("/", 2)
                position = (int(group_index), int(param_index))
            except ValueError:
                raise CheckpointLoadError(
                    message=f"Malformed state key '{key}', expected "
                            f"'{prefix}/<group>/<index>/<field>'",
                    unexpected_keys=(key,),
                ) from None
            records.setdefault(position, {})[name] = archive.read(key)

        for group_index, group in enumerate(self.param_groups):
            for param_index, p in enumerate(group.params):
                record = records.get((group_index, param_index))
                if record is not None:
                    self.state[p] = _cast_state(record, p)

    def state_dict(self) -> Dict[str, Any]:
        """
        Return optimizer state as a dictionary.

        Parameters are referred to by their flat position across groups,
        so the result can be loaded into a new optimizer over the same
        parameter layout. Format compatible with torch.save().
        """
        packed_state: Dict[int, StateRecord] = {}
        param_groups = []
        index = 0

        for group in self.param_groups:
            indices = []
            for p in group.params:
                if p in self.state:
                    packed_state[index] = self.state[p]
                indices.append(index)
                index += 1
            param_groups.append({
                "options": group.options.model_dump(),
                "params": indices,
            })

        return {"state": packed_state, "param_groups": param_groups}

    def load_state_dict(self, state_dict: Dict[str, Any]) -> None:
        """
        Load optimizer state from ``state_dict()`` output.

        Raises:
            OptimizationError: If group count or group sizes differ
        """
        saved_groups = state_dict.get("param_groups", [])
        if len(saved_groups) != len(self.param_groups):
            raise OptimizationError(
                message=f"Loaded state has {len(saved_groups)} param groups, "
                        f"but optimizer has {len(self.param_groups)}",
                optimizer_type=type(self).__name__,
            )
        for group_index, (group, saved) in enumerate(zip(self.param_groups, saved_groups)):
            if len(saved["params"]) != len(group):
                raise OptimizationError(
                    message=f"Param group {group_index} has {len(group)} params, "
                            f"loaded state has {len(saved['params'])}",
                    optimizer_type=type(self).__name__,
                )

        # Validate every group before touching any of them
        loaded_options: List[OptimizerOptions] = []
        for group_index, (group, saved) in enumerate(zip(self.param_groups, saved_groups)):
            try:
                loaded_options.append(type(group.options).model_validate(saved["options"]))
            except ValidationError as e:
                raise OptimizationError(
                    message=f"Invalid options for param group {group_index} in loaded state",
                    optimizer_type=type(self).__name__,
                    cause=e
                )

        packed_state = state_dict.get("state", {})
        for group, saved, options in zip(self.param_groups, saved_groups, loaded_options):
            group.options = options
            for index, p in zip(saved["params"], group.params):
                if index in packed_state:
                    self.state[p] = _cast_state(packed_state[index], p)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"lr={self._defaults.lr}, "
            f"param_groups={len(self.param_groups)}, "
            f"params={sum(1 for _ in self.all_parameters())})"
        )


def _cast_state(record: StateRecord, param: Tensor) -> StateRecord:
    """Copy a state record onto ``param``'s device; floating tensors take its dtype."""
    cast: StateRecord = {}
    for name, value in record.items():
        if isinstance(value, Tensor):
            if value.is_floating_point():
                value = value.to(device=param.device, dtype=param.dtype, copy=True)
            else:
                value = value.to(device=param.device, copy=True)
        cast[name] = value
    return cast


# ═════════════════════════════════════════════════════════════════════════════════
# Step Contracts
# ═════════════════════════════════════════════════════════════════════════════════

class Optimizer(OptimizerBase, abc.ABC):
    """
    Optimizer with a no-argument ``step()``.

    ``step`` updates every parameter in place from its current gradient
    and state. Parameters without a gradient are skipped.
    """

    @abc.abstractmethod
    def step(self) -> None:
        """Perform a single optimization step."""


class LossClosureOptimizer(OptimizerBase, abc.ABC):
    """
    Optimizer whose ``step`` needs the loss function.

    Algorithms such as line search or conjugate gradient evaluate the loss
    several times per update. ``closure`` must clear gradients, recompute
    the loss, call ``backward()`` and return the loss; ``step`` returns the
    last loss it evaluated.
    """

    @abc.abstractmethod
    def step(self, closure: LossClosure) -> Tensor:
        """Perform a single optimization step and return the final loss."""

    @staticmethod
    def _evaluate(closure: LossClosure) -> Tensor:
        with torch.enable_grad():
            return closure()


# ═════════════════════════════════════════════════════════════════════════════════
# Export
# ═════════════════════════════════════════════════════════════════════════════════

__all__ = [
    "OptimizerBase",
    "Optimizer",
    "LossClosureOptimizer",
    "ParamStateMap",
    "StateRecord",
    "LossClosure",
]
