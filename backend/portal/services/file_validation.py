"""Upload validation.

Every check here runs before anything is written to object storage.
"""
import logging
import unicodedata
from typing import Any, Optional

from portal.core.config import settings
from portal.core.errors import FileOperationError, ValidationError

logger = logging.getLogger(__name__)

MB = 1024 * 1024

RESERVED_NAMES = (
    {"CON", "PRN", "AUX", "NUL"}
    | {f"COM{n}" for n in range(1, 10)}
    | {f"LPT{n}" for n in range(1, 10)}
)

DANGEROUS_EXTENSIONS = {
    "exe", "bat", "cmd", "com", "pif", "scr", "vbs", "js", "jar",
    "app", "deb", "pkg", "dmg", "rpm", "msi", "run", "bin",
    "sh", "ps1", "psm1", "psd1", "ps1xml", "psc1", "psc2",
    "msh", "msh1", "msh2", "mshxml", "msh1xml", "msh2xml",
}

DANGEROUS_MIME_TYPES = {
    "application/x-executable",
    "application/x-msdownload",
    "application/x-msdos-program",
    "application/x-msdos-windows",
    "application/x-download",
    "application/bat",
    "application/x-bat",
    "application/com",
    "application/x-com",
    "application/exe",
    "application/x-exe",
    "application/x-winexe",
    "application/msdos-windows",
    "text/javascript",
    "application/javascript",
    "application/x-javascript",
}

MIME_TYPES_BY_EXTENSION: dict[str, tuple[str, ...]] = {
    "jpg": ("image/jpeg", "image/jpg"),
    "jpeg": ("image/jpeg", "image/jpg"),
    "png": ("image/png",),
    "gif": ("image/gif",),
    "webp": ("image/webp",),
    "pdf": ("application/pdf",),
    "txt": ("text/plain",),
    "csv": ("text/csv", "application/csv"),
    "json": ("application/json",),
    "doc": ("application/msword",),
    "docx": ("application/vnd.openxmlformats-officedocument.wordprocessingml.document",),
    "xls": ("application/vnd.ms-excel",),
    "xlsx": ("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",),
    "ppt": ("application/vnd.ms-powerpoint",),
    "pptx": ("application/vnd.openxmlformats-officedocument.presentationml.presentation",),
    "zip": ("application/zip", "application/x-zip-compressed"),
    "rar": ("application/x-rar-compressed",),
    "7z": ("application/x-7z-compressed",),
}

MAX_SIZE_BY_TYPE = {
    "image": 10 * MB,
    "video": 100 * MB,
    "audio": 50 * MB,
    "application/pdf": 25 * MB,
    "text": 5 * MB,
}
DEFAULT_MAX_SIZE = 50 * MB

MALWARE_SIGNATURES = (
    "eval(",
    "document.write",
    "<script",
    "javascript:",
    "vbscript:",
    "onload=",
    "onerror=",
    "onclick=",
)

GENERIC_CONTENT_TYPES = {"", "application/octet-stream"}


def file_extension(filename: str) -> str:
    return filename.rsplit(".", 1)[-1].lower() if "." in filename else ""


def resolve_content_type(filename: str, content_type: Optional[str]) -> str:
    """Fall back to the extension map when the browser sent no useful type."""
    declared = (content_type or "").split(";")[0].strip().lower()
    if declared in GENERIC_CONTENT_TYPES:
        candidates = MIME_TYPES_BY_EXTENSION.get(file_extension(filename))
        return candidates[0] if candidates else "application/octet-stream"
    return declared


def max_size_for(content_type: str) -> int:
    if content_type in MAX_SIZE_BY_TYPE:
        return MAX_SIZE_BY_TYPE[content_type]
    return MAX_SIZE_BY_TYPE.get(content_type.split("/")[0], DEFAULT_MAX_SIZE)


def validate_filename(filename: str) -> None:
    if not filename or not filename.strip():
        raise ValidationError("file", "File name is required", filename)
    if len(filename) > 255:
        raise ValidationError("file", "File name is too long", filename)
    if any(unicodedata.category(ch) == "Cc" for ch in filename):
        raise ValidationError("file", "Invalid file name", filename)
    if ".." in filename or "/" in filename or "\\" in filename:
        raise ValidationError("file", "Invalid file name", filename)
    if filename.startswith("."):
        raise ValidationError("file", "Hidden files are not allowed", filename)
    if filename.split(".")[0].strip().upper() in RESERVED_NAMES:
        raise ValidationError("file", "This file name is reserved", filename)


def max_upload_bytes() -> int:
    return settings.MAX_UPLOAD_SIZE_MB * MB


def check_upload_size(size: Optional[int]) -> None:
    if size is not None and size > max_upload_bytes():
        raise FileOperationError(
            "FILE_TOO_LARGE",
            f"File exceeds {settings.MAX_UPLOAD_SIZE_MB}MB",
            {"size": size},
        )


async def read_upload(upload: Any) -> bytes:
    """Read an uploaded file, never buffering more than one byte past the limit."""
    check_upload_size(upload.size)
    data = await upload.read(max_upload_bytes() + 1)
    check_upload_size(len(data))
    return data


def scan_content(data: bytes, content_type: str) -> bool:
    """Return False when a small text file carries a script-injection signature."""
    if not content_type.startswith("text/") or len(data) >= settings.CONTENT_SCAN_MAX_BYTES:
        return True
    text = data.decode("utf-8", errors="ignore").lower()
    return not any(signature in text for signature in MALWARE_SIGNATURES)


def validate_upload(filename: str, content_type: Optional[str], data: bytes) -> str:
    """Validate an upload and return the content type to store it under."""
    validate_filename(filename)

    extension = file_extension(filename)
    declared = (content_type or "").split(";")[0].strip().lower()
    if extension in DANGEROUS_EXTENSIONS or declared in DANGEROUS_MIME_TYPES:
        raise ValidationError("file", "This file type is not allowed for security reasons", filename)

    resolved = resolve_content_type(filename, content_type)
    if resolved not in settings.ALLOWED_MIME_TYPES or extension not in settings.ALLOWED_EXTENSIONS:
        raise FileOperationError(
            "INVALID_FILE_TYPE",
            f"File type {resolved} is not allowed",
            {"filename": filename, "content_type": resolved},
        )
    if resolved not in MIME_TYPES_BY_EXTENSION.get(extension, ()):
        raise ValidationError("file", "File extension does not match file type", filename)

    size = len(data)
    if size == 0:
        raise ValidationError("file", "File is empty", filename)
    check_upload_size(size)
    type_limit = max_size_for(resolved)
    if size > type_limit:
        raise ValidationError(
            "file",
            f"File size exceeds {type_limit // MB}MB limit for this file type",
            size,
        )

    if not scan_content(data, resolved):
        logger.warning("Rejected %s: suspicious content", filename)
        raise FileOperationError("MALWARE_DETECTED", "File contains suspicious content", {"filename": filename})

    return resolved
