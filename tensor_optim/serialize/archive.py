# ════════════════════════════════════════════════════════════════════════════════
# Tensor Optim - Optimizer Archives
# ════════════════════════════════════════════════════════════════════════════════
# Key-value archives that optimizers write their state into and read it
# back from, persisted with torch.save / torch.load.
#
# Usage:
#   archive = OutputArchive()
#   archive << optimizer              # optimizer.save(archive)
#   archive.save_to("optim.pt")
#
#   archive = InputArchive().load_from("optim.pt")
#   archive >> optimizer              # optimizer.load(archive)
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import logging
import os
import pickle
from collections import OrderedDict
from pathlib import Path
from typing import (
    TYPE_CHECKING,
    Any,
    BinaryIO,
    Dict,
    List,
    Mapping,
    Optional,
    Union,
)

import torch
from torch import Tensor

from tensor_optim.core.errors import CheckpointLoadError, CheckpointSaveError

if TYPE_CHECKING:
    from tensor_optim.optimizers.base import OptimizerBase

logger = logging.getLogger(__name__)

FileLike = Union[str, os.PathLike, BinaryIO]

# Value types an archive accepts (all loadable with weights_only=True)
_SCALAR_TYPES = (bool, int, float, str)


def _describe(f: FileLike) -> Optional[str]:
    return str(f) if isinstance(f, (str, os.PathLike)) else None


# ═════════════════════════════════════════════════════════════════════════════════
# Output Archive
# ═════════════════════════════════════════════════════════════════════════════════

class OutputArchive:
    """
    Write-side archive.

    Values are tensors or plain scalars stored under string keys.
    Tensors are detached and cloned on write, so later in-place updates
    to optimizer state do not leak into an archive that was already
    written.
    """

    def __init__(self) -> None:
        self._values: "OrderedDict[str, Any]" = OrderedDict()

    def write(self, key: str, value: Union[Tensor, bool, int, float, str]) -> None:
        if isinstance(value, Tensor):
            value = value.detach().clone()
        elif not isinstance(value, _SCALAR_TYPES):
            raise TypeError(
                f"Archive values must be tensors or scalars, got {type(value).__name__} for '{key}'"
            )
        self._values[key] = value

    def keys(self) -> List[str]:
        return list(self._values)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def save_to(self, f: FileLike) -> None:
        """
        Persist the archive to a path or binary file object.

        Raises:
            CheckpointSaveError: If writing fails
        """
        try:
            torch.save(dict(self._values), f)
        except (OSError, RuntimeError, pickle.PicklingError) as e:
            raise CheckpointSaveError(
                message=f"Failed to write optimizer archive: {e}",
                checkpoint_path=_describe(f),
                cause=e
            )

    def __lshift__(self, optimizer: "OptimizerBase") -> "OutputArchive":
        optimizer.save(self)
        return self

    def __repr__(self) -> str:
        return f"OutputArchive(keys={len(self._values)})"


# ═════════════════════════════════════════════════════════════════════════════════
# Input Archive
# ═════════════════════════════════════════════════════════════════════════════════

class InputArchive:
    """
    Read-side archive.

    Built empty and filled with ``load_from``, or directly from a mapping.
    """

    def __init__(self, values: Optional[Mapping[str, Any]] = None) -> None:
        self._values: Dict[str, Any] = dict(values or {})

    def load_from(
        self,
        f: FileLike,
        map_location: Optional[Union[str, torch.device]] = None,
    ) -> "InputArchive":
        """
        Load archive contents from a path or binary file object.

        Returns:
            self, for chaining

        Raises:
            CheckpointLoadError: If the file is missing or unreadable
        """
        try:
            values = torch.load(f, map_location=map_location, weights_only=True)
        except FileNotFoundError as e:
            raise CheckpointLoadError(
                message="Optimizer archive not found",
                checkpoint_path=_describe(f),
                cause=e
            )
        except (OSError, RuntimeError, EOFError, pickle.UnpicklingError) as e:
            raise CheckpointLoadError(
                message=f"Failed to read optimizer archive: {e}",
                checkpoint_path=_describe(f),
                cause=e
            )

        if not isinstance(values, dict):
            raise CheckpointLoadError(
                message=f"Archive root must be a dict, got {type(values).__name__}",
                checkpoint_path=_describe(f),
            )
        self._values = dict(values)
        return self

    def read(self, key: str) -> Any:
        try:
            return self._values[key]
        except KeyError:
            raise CheckpointLoadError(
                message=f"Key '{key}' not found in archive",
                missing_keys=(key,),
            ) from None

    def try_read(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def keys(self) -> List[str]:
        return list(self._values)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __rshift__(self, optimizer: "OptimizerBase") -> "InputArchive":
        optimizer.load(self)
        return self

    def __repr__(self) -> str:
        return f"InputArchive(keys={len(self._values)})"


# ═════════════════════════════════════════════════════════════════════════════════
# File Helpers
# ═════════════════════════════════════════════════════════════════════════════════

def save_optimizer(optimizer: "OptimizerBase", path: Union[str, Path]) -> None:
    """Write ``optimizer``'s state to ``path``."""
    archive = OutputArchive()
    archive << optimizer
    archive.save_to(path)
    logger.info(f"Optimizer state saved to {path} ({len(archive)} entries)")


def load_optimizer(
    optimizer: "OptimizerBase",
    path: Union[str, Path],
    map_location: Optional[Union[str, torch.device]] = None,
) -> None:
    """Restore ``optimizer``'s state from ``path``."""
    archive = InputArchive().load_from(path, map_location=map_location)
    archive >> optimizer
    logger.info(f"Optimizer state loaded from {path}")


__all__ = [
    "OutputArchive",
    "InputArchive",
    "save_optimizer",
    "load_optimizer",
]
