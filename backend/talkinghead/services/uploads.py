from __future__ import annotations
"""Input artifacts — validation, storage in media_volume, and reload by workers.

Uploaded files are written once under ``<MEDIA_VOLUME>/uploads/`` and then
only read, by exactly one job.
"""

import os
import re
import time
import uuid
from dataclasses import dataclass

from talkinghead.errors import InputValidationError

UPLOAD_SUBDIR = "uploads"

MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".heic": "image/heic",
    ".mp3": "audio/mp3",
    ".wav": "audio/wav",
    ".m4a": "audio/m4a",
    ".aac": "audio/aac",
}
DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass
class InputArtifact:
    """One uploaded file: bytes plus what the provider needs to know about it."""

    filename: str
    mime_type: str
    data: bytes
    path: str | None = None  # relative to MEDIA_VOLUME once stored


@dataclass
class GenerationInputs:
    image: InputArtifact
    audio: InputArtifact


def guess_mime_type(filename: str, fallback: str | None = None) -> str:
    """MIME type from the file extension, else the client's hint, else octet-stream."""
    ext = os.path.splitext(filename or "")[1].lower()
    if ext in MIME_TYPES:
        return MIME_TYPES[ext]
    if fallback and fallback != DEFAULT_MIME_TYPE:
        return fallback
    return DEFAULT_MIME_TYPE


def safe_filename(original: str, now_ms: int | None = None) -> str:
    """``<epoch-ms>_<basename with whitespace replaced by underscores>``."""
    name = os.path.basename((original or "").replace("\\", "/")) or "upload"
    name = re.sub(r"\s+", "_", name)
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{stamp}_{name}"


def too_large(kind: str, max_bytes: int) -> InputValidationError:
    return InputValidationError(
        f"The {kind} file exceeds the {max_bytes // (1024 * 1024)}MB limit.", status_code=413
    )


def validate_artifact(
    kind: str,
    filename: str | None,
    data: bytes | None,
    max_bytes: int,
    content_type: str | None = None,
) -> InputArtifact:
    """Check one required upload and wrap it; raises InputValidationError."""
    if not filename or data is None:
        raise InputValidationError("image and audio files are both required.")
    if len(data) == 0:
        raise InputValidationError(f"The {kind} file is empty.")
    if len(data) > max_bytes:
        raise too_large(kind, max_bytes)
    return InputArtifact(
        filename=filename,
        mime_type=guess_mime_type(filename, content_type),
        data=data,
    )


def save_artifact(media_volume: str, artifact: InputArtifact) -> str:
    """Write the artifact to media_volume and record its relative path."""
    dir_path = os.path.join(media_volume, UPLOAD_SUBDIR)
    os.makedirs(dir_path, exist_ok=True)

    stored_name = safe_filename(artifact.filename)
    if os.path.exists(os.path.join(dir_path, stored_name)):
        stored_name = f"{uuid.uuid4().hex[:8]}_{stored_name}"
    rel_path = f"{UPLOAD_SUBDIR}/{stored_name}"
    with open(os.path.join(media_volume, rel_path), "wb") as f:
        f.write(artifact.data)

    artifact.path = rel_path
    return rel_path


def load_artifact(
    media_volume: str, rel_path: str, filename: str, mime_type: str | None = None
) -> InputArtifact:
    """Re-read a stored artifact (queue workers run in another process)."""
    root = os.path.realpath(media_volume)
    full_path = os.path.realpath(os.path.join(root, rel_path))
    if os.path.commonpath([root, full_path]) != root:
        raise InputValidationError(f"Artifact path escapes the media volume: {rel_path}")
    with open(full_path, "rb") as f:
        data = f.read()
    return InputArtifact(
        filename=filename,
        mime_type=mime_type or guess_mime_type(filename),
        data=data,
        path=rel_path,
    )
