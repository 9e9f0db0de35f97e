"""Custom exceptions for OEM partition operations.

Every failure carries the context needed to diagnose it without re-running
the (destructive, one-shot) disk operation: disk name, partition index,
requested sizes, or the exact command that failed.

Exception Hierarchy:
    StorageError (base)
        ├── InvalidFormatError
        ├── InvalidInputError
        ├── ToolExecutionError
        │   └── ExtensionStepError
        ├── PartitionTableError
        │   ├── LayoutPlanError
        │   ├── ShrinkRejectedError
        │   └── LayoutInconsistencyError
        ├── MountError
        │   └── UnmountFailedError
        ├── VerityImageError
        ├── VerityOutputParseError
        ├── BootConfigError
        │   ├── BootConfigIOError
        │   └── BootConfigParseError
        ├── InsufficientDiskSizeError
        └── PipelineAbortedError

Usage:
    from oem_seal.storage.exceptions import InvalidFormatError

    if not match:
        raise InvalidFormatError(size, "expected <number>[B|K|M|G]")
"""

from __future__ import annotations

from typing import Sequence


class StorageError(Exception):
    """Base exception for all OEM partition operations."""



class InvalidFormatError(StorageError):
    """A size string could not be parsed or converted exactly."""

    def __init__(self, value: str, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid size format {value!r}: {reason}")


class InvalidInputError(StorageError):
    """Missing or out-of-range input (disk, partition index, destination)."""

    def __init__(self, message: str, **context):
        self.context = context
        if context:
            details = ", ".join(f"{key}={value!r}" for key, value in context.items())
            message = f"{message} ({details})"
        super().__init__(message)


class ToolExecutionError(StorageError):
    """An external tool exited non-zero."""

    def __init__(
        self,
        command: Sequence[str],
        returncode: int,
        output: str = "",
    ):
        self.command = list(command)
        self.returncode = returncode
        self.output = output
        message = output or "Command failed"
        super().__init__(
            f"Command failed ({' '.join(self.command)}) "
            f"with exit code {returncode}: {message}"
        )


class ExtensionStepError(ToolExecutionError):
    """A partition tool call failed during one step of the OEM extension."""

    def __init__(
        self,
        step: str,
        disk: str,
        state_index: int,
        oem_index: int,
        cause: ToolExecutionError,
    ):
        self.step = step
        self.disk = disk
        self.state_index = state_index
        self.oem_index = oem_index
        super().__init__(cause.command, cause.returncode, cause.output)
        self.args = (
            f"OEM extension step '{step}' failed on {disk} "
            f"(stateful={state_index}, oem={oem_index}): {cause}",
        )


class PartitionTableError(StorageError):
    """The partition table could not be read or has an unexpected shape."""

    def __init__(self, disk: str, reason: str):
        self.disk = disk
        self.reason = reason
        super().__init__(f"Partition table error on {disk}: {reason}")


class LayoutPlanError(PartitionTableError):
    """The requested layout cannot be reached from the current table."""


class ShrinkRejectedError(PartitionTableError):
    """The target OEM size is not larger than the current one."""

    def __init__(self, disk: str, oem_index: int, current_bytes: int, target_bytes: int):
        self.oem_index = oem_index
        self.current_bytes = current_bytes
        self.target_bytes = target_bytes
        super().__init__(
            disk,
            f"partition {oem_index} is {current_bytes} bytes, target "
            f"{target_bytes} bytes; only extension is supported",
        )


class LayoutInconsistencyError(PartitionTableError):
    """The table re-read after the extension does not match the plan."""

    def __init__(self, disk: str, mismatches: Sequence[str]):
        self.mismatches = list(mismatches)
        super().__init__(
            disk, "layout verification failed: " + "; ".join(self.mismatches)
        )


class MountError(StorageError):
    """Base exception for mount-related errors."""



class UnmountFailedError(MountError):
    """Failed to unmount a partition."""

    def __init__(self, device_name: str, reason: str = ""):
        self.device_name = device_name
        self.reason = reason
        msg = f"Failed to unmount {device_name}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class VerityImageError(StorageError):
    """The veritysetup container image could not be loaded."""

    def __init__(self, image_path: str, reason: str):
        self.image_path = image_path
        self.reason = reason
        super().__init__(f"Cannot load veritysetup image at {image_path!r}: {reason}")


class VerityOutputParseError(StorageError):
    """veritysetup output is missing the root hash or salt."""

    def __init__(self, missing: Sequence[str], output: str, data_blocks: int):
        self.missing = list(missing)
        self.output = output
        self.data_blocks = data_blocks
        super().__init__(
            f"Cannot find {', '.join(repr(f) for f in self.missing)} in veritysetup "
            f"output (data_blocks={data_blocks}): {output.strip() or '(empty)'}"
        )


class BootConfigError(StorageError):
    """Base exception for boot configuration patching."""



class BootConfigIOError(BootConfigError):
    """The boot configuration file could not be read or written."""

    def __init__(self, path: str, action: str, reason: str):
        self.path = path
        self.action = action
        self.reason = reason
        super().__init__(f"Cannot {action} boot config at {path}: {reason}")


class BootConfigParseError(BootConfigError):
    """A dm= kernel parameter could not be parsed."""

    def __init__(self, path: str, line_number: int, reason: str):
        self.path = path
        self.line_number = line_number
        self.reason = reason
        super().__init__(f"Malformed dm= parameter in {path}:{line_number}: {reason}")


class InsufficientDiskSizeError(StorageError):
    """The requested disk is too small for the OEM partition budget."""

    def __init__(self, requested_gb: int, required_gb: int, reason: str = ""):
        self.requested_gb = requested_gb
        self.required_gb = required_gb
        self.reason = reason
        msg = (
            f"'disk-size-gb' must be at least {required_gb} "
            f"(requested {requested_gb})"
        )
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PipelineAbortedError(StorageError):
    """A pipeline stage failed; later stages were not run."""

    def __init__(self, stage: str, completed_stages: Sequence[str], cause: Exception):
        self.stage = stage
        self.completed_stages = list(completed_stages)
        self.cause = cause
        last = self.completed_stages[-1] if self.completed_stages else "none"
        super().__init__(
            f"Stage '{stage}' failed (last completed stage: {last}): {cause}"
        )
