"""Custom exceptions for the penvault note vault.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_VALIDATION_FAILED = 1002

    # Attachment errors (2xxx)
    ATTACHMENT_NOT_FOUND = 2001
    ORPHAN_ATTACHMENT = 2002

    # Bundle errors (3xxx)
    BUNDLE_INVALID = 3001

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    TRANSACTION_FAILED = 4003

    # Envelope errors (5xxx)
    UNSUPPORTED_CONTAINER = 5001
    DECRYPT_FAILED = 5002

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001


class PenvaultError(Exception):
    """Base exception for all penvault errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NoteNotFoundError(PenvaultError):
    """Raised when a note cannot be found."""

    def __init__(self, note_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Note with ID '{note_id}' not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"note_id": note_id},
        )
        self.note_id = note_id


class AttachmentNotFoundError(PenvaultError):
    """Raised when an image or file attachment cannot be found."""

    def __init__(self, kind: str, attachment_id: int):
        super().__init__(
            f"{kind.capitalize()} with ID {attachment_id} not found",
            code=ErrorCode.ATTACHMENT_NOT_FOUND,
            details={"kind": kind, "attachment_id": attachment_id},
        )
        self.kind = kind
        self.attachment_id = attachment_id


class OrphanAttachmentError(PenvaultError):
    """Raised when an attachment is added to a note that does not exist."""

    def __init__(self, kind: str, note_id: str, name: Optional[str] = None):
        details: Dict[str, Any] = {"kind": kind, "note_id": note_id}
        if name:
            details["name"] = name
        super().__init__(
            f"Cannot attach {kind} to missing note '{note_id}'",
            code=ErrorCode.ORPHAN_ATTACHMENT,
            details=details,
        )
        self.kind = kind
        self.note_id = note_id
        self.name = name


class BundleValidationError(PenvaultError):
    """Raised when an export bundle document is malformed."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        details = {}
        if original_error:
            details["original_error"] = str(original_error)[:200]
        super().__init__(message, code=ErrorCode.BUNDLE_INVALID, details=details)
        self.original_error = original_error


class StorageError(PenvaultError):
    """Raised for storage/persistence errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if path:
            # Don't expose full paths in error messages
            details["path_hint"] = path.split("/")[-1] if "/" in path else path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error


class TransactionError(StorageError):
    """Raised when a multi-entity write is aborted.

    The transaction has been rolled back: the store is exactly as it was
    before the operation started, and the caller may retry.
    """

    def __init__(self, operation: str, original_error: Optional[Exception] = None):
        super().__init__(
            f"Transaction '{operation}' failed and was rolled back",
            operation=operation,
            code=ErrorCode.TRANSACTION_FAILED,
            original_error=original_error,
        )


class UnsupportedContainerError(PenvaultError):
    """Raised when an envelope's format or version is not recognized."""

    def __init__(self, message: str, **details: Any):
        super().__init__(
            message, code=ErrorCode.UNSUPPORTED_CONTAINER, details=dict(details)
        )


class DecryptError(PenvaultError):
    """Raised when an envelope cannot be opened.

    Wrong password, corrupted ciphertext and tampering all produce the same
    message and carry no details.
    """

    def __init__(self):
        super().__init__(
            "Unable to decrypt envelope: wrong password or corrupted data",
            code=ErrorCode.DECRYPT_FAILED,
        )


class ConfigurationError(PenvaultError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID,
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key


class ValidationError(PenvaultError):
    """Raised for general validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value
