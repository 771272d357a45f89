import logging

import pytest

import distinline
from distinline import decode_data_uri, encode_asset


@pytest.mark.parametrize("name, mime", [
    ("favicon.ico", "image/x-icon"),
    ("font.ttf", "font/ttf"),
    ("font.woff2", "font/woff2"),
    ("FONT.WOFF2", "font/woff2"),
])
def test_encode_round_trip(tmp_path, name, mime):
    payload = bytes(range(256)) * 3 + b"\x00\xff"
    path = tmp_path / name
    path.write_bytes(payload)

    uri = encode_asset(str(path))

    assert uri.startswith(f"data:{mime};base64,")
    assert decode_data_uri(uri) == (mime, payload)


def test_encode_empty_file(tmp_path):
    path = tmp_path / "empty.ttf"
    path.write_bytes(b"")
    assert encode_asset(str(path)) == "data:font/ttf;base64,"


def test_unsupported_extension_warns(tmp_path, caplog):
    path = tmp_path / "logo.png"
    path.write_bytes(b"\x89PNG")
    with caplog.at_level(logging.WARNING, logger="distinline"):
        assert encode_asset(str(path)) is None
    assert "Unsupported type" in caplog.text
    assert "logo.png" in caplog.text


def test_missing_file_is_logged(tmp_path, caplog):
    with caplog.at_level(logging.ERROR, logger="distinline"):
        assert encode_asset(str(tmp_path / "gone.woff2")) is None
    assert "Base64 conversion failed" in caplog.text


def test_decode_rejects_plain_urls():
    with pytest.raises(ValueError):
        decode_data_uri("favicon.ico")
    with pytest.raises(ValueError):
        decode_data_uri("data:font/ttf,abc")


def test_mime_map():
    assert distinline.MIME_MAP == {
        ".ico": "image/x-icon",
        ".ttf": "font/ttf",
        ".woff2": "font/woff2",
    }
