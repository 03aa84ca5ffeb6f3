import base64

import pytest
from PIL import Image

from conftest import make_png
from errors import IngestError, TooManyImagesError
from ingest import (
    MAX_IMAGES,
    PRODUCT_IMAGE_ID,
    ingest_files,
    ingest_one,
    ingest_paths,
    split_data_url,
    to_data_url,
)


def _files(n, data):
    return [(f"ref{i}.png", data, "image/png") for i in range(n)]


def test_batch_over_cap_is_rejected_entirely(png_bytes):
    with pytest.raises(TooManyImagesError, match="up to 10 images"):
        ingest_files(_files(12, png_bytes))


def test_batch_over_cap_leaves_existing_unchanged(png_bytes):
    existing = ingest_files(_files(8, png_bytes)).images
    snapshot = list(existing)
    with pytest.raises(TooManyImagesError):
        ingest_files(_files(3, png_bytes), existing)
    assert existing == snapshot


def test_exactly_at_cap_is_accepted(png_bytes):
    existing = ingest_files(_files(4, png_bytes)).images
    result = ingest_files(_files(MAX_IMAGES - 4, png_bytes), existing)
    assert len(result.images) == MAX_IMAGES
    assert result.images[:4] == existing


def test_images_become_data_urls_in_input_order():
    red, blue = make_png("red"), make_png("blue")
    result = ingest_files([("a.png", red, "image/png"), ("b.png", blue, "image/png")])
    assert [img.data_url for img in result.images] == [to_data_url(red, "image/png"), to_data_url(blue, "image/png")]
    assert all(img.mime_type == "image/png" for img in result.images)
    assert len({img.id for img in result.images}) == 2
    assert result.failures == []


def test_undecodable_file_is_reported_not_dropped_silently(png_bytes):
    result = ingest_files([
        ("good.png", png_bytes, "image/png"),
        ("notes.txt", b"hello", "text/plain"),
        ("empty.png", b"", "image/png"),
    ])
    assert len(result.images) == 1
    assert [f for f, _ in result.failures] == ["notes.txt", "empty.png"]


def test_oversized_image_is_reported_not_raised(monkeypatch, png_bytes):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 10)
    result = ingest_files([("huge.png", png_bytes, "image/png")])
    assert result.images == []
    assert result.added == []
    assert [f for f, _ in result.failures] == ["huge.png"]


def test_mime_type_inferred_when_not_declared():
    jpeg = make_png(fmt="JPEG")
    by_name = ingest_files([("photo.jpg", jpeg, None)]).images[0]
    by_content = ingest_files([("upload", jpeg, "application/octet-stream")]).images[0]
    assert by_name.mime_type == "image/jpeg"
    assert by_content.mime_type == "image/jpeg"
    assert by_content.data_url.startswith("data:image/jpeg;base64,")


def test_split_data_url(png_bytes):
    mime, data = split_data_url(to_data_url(png_bytes, "image/png"))
    assert mime == "image/png"
    assert data == png_bytes
    with pytest.raises(ValueError):
        split_data_url("https://example.com/a.png")
    with pytest.raises(ValueError):
        split_data_url("data:image/png;base64,@@not-base64@@")


def test_ingest_one_uses_product_slot_id(png_bytes):
    image = ingest_one(("shoe.png", png_bytes, "image/png"))
    assert image.id == PRODUCT_IMAGE_ID
    assert base64.b64decode(image.data_url.split(",", 1)[1]) == png_bytes
    with pytest.raises(IngestError):
        ingest_one(("shoe.png", b"garbage", "image/png"))


def test_ingest_paths_reports_missing_files(tmp_path, png_bytes):
    good = tmp_path / "look.png"
    good.write_bytes(png_bytes)
    result = ingest_paths([str(good), str(tmp_path / "missing.png")])
    assert len(result.images) == 1
    assert result.failures[0][0] == "missing.png"
