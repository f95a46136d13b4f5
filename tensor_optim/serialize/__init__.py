# ════════════════════════════════════════════════════════════════════════════════
# Tensor Optim - Serialization Package
# ════════════════════════════════════════════════════════════════════════════════

from tensor_optim.serialize.archive import (
    OutputArchive,
    InputArchive,
    save_optimizer,
    load_optimizer,
)

__all__ = [
    "OutputArchive",
    "InputArchive",
    "save_optimizer",
    "load_optimizer",
]
