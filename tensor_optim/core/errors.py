# ════════════════════════════════════════════════════════════════════════════════
# Tensor Optim - Error Hierarchy
# ════════════════════════════════════════════════════════════════════════════════
# Optimizer error types for precise diagnostics.
# All errors carry structured context for debugging.
#
# Design Principles:
# - Exception hierarchy mirrors optimizer failure modes
# - Each error carries actionable remediation hints
# - Context dict for structured logging
# - Chaining via __cause__ for root cause analysis
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


# ═════════════════════════════════════════════════════════════════════════════════
# Base Optimizer Error
# ═════════════════════════════════════════════════════════════════════════════════

@dataclass
class OptimError(Exception):
    """
    Base exception for all optimizer-related errors.

    Carries structured context for debugging and logging.

    Attributes:
        message: Human-readable error description
        context: Structured key-value context for debugging
        cause: Original exception that caused this error
        remediation: Suggested fix or next steps
    """
    message: str
    context: Dict[str, Any] = field(default_factory=dict)
    cause: Optional[Exception] = None
    remediation: Optional[str] = None

    def __post_init__(self) -> None:
        """Chain cause exception for traceback preservation."""
        super().__init__(self.message)
        if self.cause is not None:
            self.__cause__ = self.cause

    def __str__(self) -> str:
        parts = [f"{type(self).__name__}: {self.message}"]

        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"  Context: {ctx_str}")

        if self.remediation:
            parts.append(f"  Remediation: {self.remediation}")

        if self.cause:
            parts.append(f"  Caused by: {type(self.cause).__name__}: {self.cause}")

        return "\n".join(parts)

    def with_context(self, **kwargs: Any) -> "OptimError":
        """Add additional context, returns self for chaining."""
        self.context.update(kwargs)
        return self


# ═════════════════════════════════════════════════════════════════════════════════
# Configuration Errors
# ═════════════════════════════════════════════════════════════════════════════════

@dataclass
class ConfigurationError(OptimError):
    """
    Error in optimizer configuration (YAML or programmatic).

    Raised when:
    - Configuration file is missing or empty
    - Required fields are missing
    - Field values are out of valid range
    """
    field_path: Optional[str] = None
    expected: Optional[str] = None
    got: Optional[str] = None
    yaml_file: Optional[str] = None

    def __str__(self) -> str:
        parts = [f"ConfigurationError: {self.message}"]

        if self.yaml_file:
            parts.append(f"  File: {self.yaml_file}")

        if self.field_path:
            parts.append(f"  Field: {self.field_path}")

        if self.expected and self.got:
            parts.append(f"  Expected: {self.expected}")
            parts.append(f"  Got: {self.got}")

        if self.remediation:
            parts.append(f"  Remediation: {self.remediation}")

        return "\n".join(parts)


@dataclass
class YAMLParseError(ConfigurationError):
    """
    Error parsing YAML configuration file.

    Provides line/column info for syntax errors.
    """
    line: Optional[int] = None
    column: Optional[int] = None

    def __str__(self) -> str:
        location = ""
        if self.line is not None:
            location = f" at line {self.line}"
            if self.column is not None:
                location += f", column {self.column}"

        file_info = f" in {self.yaml_file}" if self.yaml_file else ""
        return f"YAMLParseError{file_info}{location}: {self.message}"


@dataclass
class SchemaValidationError(ConfigurationError):
    """
    Pydantic schema validation failed.

    Carries full validation error details.
    """
    validation_errors: Tuple[str, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        parts = [f"SchemaValidationError: {self.message}"]

        if self.yaml_file:
            parts.append(f"  File: {self.yaml_file}")

        for error in self.validation_errors:
            parts.append(f"  - {error}")

        return "\n".join(parts)


# ═════════════════════════════════════════════════════════════════════════════════
# Parameter Registration Errors
# ═════════════════════════════════════════════════════════════════════════════════

@dataclass
class ParameterError(OptimError):
    """
    Base error for parameter registration failures.

    Always a programmer error: the offending call registers nothing.
    """
    param_index: Optional[int] = None
    group_index: Optional[int] = None

    def __str__(self) -> str:
        where = []
        if self.group_index is not None:
            where.append(f"group {self.group_index}")
        if self.param_index is not None:
            where.append(f"param {self.param_index}")
        loc = f" [{', '.join(where)}]" if where else ""
        parts = [f"{type(self).__name__}{loc}: {self.message}"]

        if self.remediation:
            parts.append(f"  Remediation: {self.remediation}")

        return "\n".join(parts)


@dataclass
class InvalidParameterError(ParameterError):
    """
    A parameter handle cannot be optimized.

    Raised when:
    - The handle is not a tensor
    - The tensor is not a leaf (it has recorded computation history)
    """


@dataclass
class DuplicateMembershipError(ParameterError):
    """
    A parameter would belong to more than one group.

    Double membership makes zero_grad and per-group option
    resolution ambiguous, so it is rejected at registration.
    """
    existing_group_index: Optional[int] = None

    def __str__(self) -> str:
        base = super().__str__()
        if self.existing_group_index is not None:
            base += f"\n  Already in group: {self.existing_group_index}"
        return base


# ═════════════════════════════════════════════════════════════════════════════════
# Optimization Errors
# ═════════════════════════════════════════════════════════════════════════════════

@dataclass
class OptimizationError(OptimError):
    """
    Optimizer state or layout error.

    Raised when:
    - Loaded state does not match the optimizer's group layout
    - An unknown optimizer type is requested
    """
    optimizer_type: Optional[str] = None

    def __str__(self) -> str:
        opt_info = f" [{self.optimizer_type}]" if self.optimizer_type else ""
        return f"OptimizationError{opt_info}: {self.message}"


# ═════════════════════════════════════════════════════════════════════════════════
# Checkpoint Errors
# ═════════════════════════════════════════════════════════════════════════════════

@dataclass
class CheckpointError(OptimError):
    """
    Base error for archive save/load operations.
    """
    checkpoint_path: Optional[str] = None

    def __str__(self) -> str:
        path_info = f" [{self.checkpoint_path}]" if self.checkpoint_path else ""
        return f"CheckpointError{path_info}: {self.message}"


@dataclass
class CheckpointSaveError(CheckpointError):
    """
    Failed to write an archive.

    Causes:
    - Disk full
    - Permission denied
    - Serialization error
    """

    def __str__(self) -> str:
        parts = [f"CheckpointSaveError: {self.message}"]

        if self.checkpoint_path:
            parts.append(f"  Path: {self.checkpoint_path}")

        return "\n".join(parts)


@dataclass
class CheckpointLoadError(CheckpointError):
    """
    Failed to read an archive.

    Causes:
    - File not found
    - File corrupted
    - Key mismatch between archive and optimizer
    """
    missing_keys: Tuple[str, ...] = field(default_factory=tuple)
    unexpected_keys: Tuple[str, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        parts = [f"CheckpointLoadError: {self.message}"]

        if self.checkpoint_path:
            parts.append(f"  Path: {self.checkpoint_path}")

        if self.missing_keys:
            parts.append(f"  Missing keys: {', '.join(self.missing_keys[:5])}")
            if len(self.missing_keys) > 5:
                parts.append(f"    ... and {len(self.missing_keys) - 5} more")

        if self.unexpected_keys:
            parts.append(f"  Unexpected keys: {', '.join(self.unexpected_keys[:5])}")
            if len(self.unexpected_keys) > 5:
                parts.append(f"    ... and {len(self.unexpected_keys) - 5} more")

        return "\n".join(parts)


# ═════════════════════════════════════════════════════════════════════════════════
# Export
# ═════════════════════════════════════════════════════════════════════════════════

__all__ = [
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
]
