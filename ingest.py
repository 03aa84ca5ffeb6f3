"""Turn uploaded image files into data-URL records.

A batch is all-or-nothing with respect to the 10-image cap, but individual
files that cannot be decoded are reported back instead of aborting the batch.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import mimetypes
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from PIL import Image, UnidentifiedImageError

from errors import IngestError, TooManyImagesError
from records import UploadedImage, new_id

log = logging.getLogger(__name__)

MAX_IMAGES = 10
PRODUCT_IMAGE_ID = "product-main"
TOO_MANY_MESSAGE = f"You can only upload up to {MAX_IMAGES} images."

# (filename, raw bytes, declared mime type or None)
FileSource = Tuple[str, bytes, Optional[str]]


@dataclass
class IngestResult:
    images: List[UploadedImage]
    added: List[UploadedImage] = field(default_factory=list)
    failures: List[Tuple[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "images": [img.to_dict() for img in self.images],
            "added": [img.id for img in self.added],
            "failures": [{"filename": f, "reason": r} for f, r in self.failures],
        }


# ---------------------------------------------------------------------------
# Data URL helpers
# ---------------------------------------------------------------------------

def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def split_data_url(data_url: str) -> Tuple[str, bytes]:
    """Return (mime_type, raw bytes) for a base64 data URL."""
    if not data_url or not data_url.startswith("data:") or "," not in data_url:
        raise ValueError("Not a data URL")
    header, payload = data_url.split(",", 1)
    mime = header[5:].split(";")[0] or "application/octet-stream"
    if ";base64" not in header:
        raise ValueError("Only base64 data URLs are supported")
    try:
        return mime, base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Invalid base64 payload: {exc}") from exc


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def _decode(source: FileSource, image_id: Optional[str] = None) -> UploadedImage:
    filename, data, declared = source
    if not data:
        raise IngestError(f"{filename or 'file'} is empty")
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
            img.verify()
    except (
        UnidentifiedImageError,
        Image.DecompressionBombError,
        OSError,
        SyntaxError,
        ValueError,
    ) as exc:
        raise IngestError(f"{filename or 'file'} is not a readable image: {exc}") from exc

    mime = declared or ""
    if not mime.startswith("image/"):
        mime = mimetypes.guess_type(filename or "")[0] or Image.MIME.get(fmt or "", "") or ""
    if not mime.startswith("image/"):
        raise IngestError(f"{filename or 'file'} has unsupported type {mime or 'unknown'}")

    return UploadedImage(
        id=image_id or new_id(),
        data_url=to_data_url(data, mime),
        mime_type=mime,
    )


def ingest_files(
    files: Sequence[FileSource],
    existing: Sequence[UploadedImage] = (),
) -> IngestResult:
    """Decode a batch of files and append them to ``existing``.

    Raises TooManyImagesError (nothing decoded) if the batch would push the
    collection past MAX_IMAGES.
    """
    files = list(files)
    existing = list(existing)
    if len(existing) + len(files) > MAX_IMAGES:
        log.info("Rejected batch of %d images (%d already held)", len(files), len(existing))
        raise TooManyImagesError(TOO_MANY_MESSAGE)
    if not files:
        return IngestResult(images=existing)

    added: List[UploadedImage] = []
    failures: List[Tuple[str, str]] = []
    with ThreadPoolExecutor(max_workers=min(len(files), 4)) as executor:
        futures = [executor.submit(_decode, f) for f in files]
        # Results are collected in input order once every decode has settled
        for source, future in zip(files, futures):
            try:
                added.append(future.result())
            except IngestError as exc:
                log.warning("Dropped upload %r: %s", source[0], exc)
                failures.append((source[0], str(exc)))

    log.debug("Ingested %d/%d images", len(added), len(files))
    return IngestResult(images=existing + added, added=added, failures=failures)


def ingest_paths(
    paths: Iterable[str],
    existing: Sequence[UploadedImage] = (),
) -> IngestResult:
    """Read files from disk and ingest them. Unreadable paths are failures."""
    sources: List[FileSource] = []
    unreadable: List[Tuple[str, str]] = []
    for p in paths:
        path = Path(p)
        try:
            sources.append((path.name, path.read_bytes(), None))
        except OSError as exc:
            unreadable.append((path.name, str(exc)))

    if len(existing) + len(sources) + len(unreadable) > MAX_IMAGES:
        raise TooManyImagesError(TOO_MANY_MESSAGE)

    result = ingest_files(sources, existing)
    result.failures = unreadable + result.failures
    return result


def ingest_one(source: FileSource) -> UploadedImage:
    """Ingest the single product image slot. Raises IngestError on failure."""
    return _decode(source, image_id=PRODUCT_IMAGE_ID)
