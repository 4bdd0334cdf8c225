from io import BytesIO

from PIL import Image

from receipt_ledger.utils.image_processing import prepare_for_model


def _png(width: int, height: int) -> bytes:
    buf = BytesIO()
    Image.new("RGB", (width, height), color=(200, 200, 200)).save(buf, format="PNG")
    return buf.getvalue()


def test_small_image_passes_through():
    data = _png(100, 50)
    assert prepare_for_model(data, "image/png", max_edge=200) == (data, "image/png")


def test_large_image_is_downscaled_to_jpeg():
    out, mime = prepare_for_model(_png(800, 400), "image/png", max_edge=200)
    assert mime == "image/jpeg"
    with Image.open(BytesIO(out)) as img:
        assert img.size == (200, 100)


def test_undecodable_data_passes_through():
    data = b"\x00\x01not-an-image"
    assert prepare_for_model(data, "image/heic", max_edge=10) == (data, "image/heic")
