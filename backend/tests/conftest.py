from __future__ import annotations

import io
import zipfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from send2ereader.config import settings
from send2ereader.main import app
from send2ereader.utils.converters import ConverterResult

KINDLE_AGENT = "Mozilla/5.0 (X11; U; Linux armv7l like Android; en-us) AppleWebKit/531.2+ (KHTML, like Gecko) Version/5.0 Safari/533.2+ Kindle/3.0+"
KOBO_AGENT = "Mozilla/5.0 (Linux; U; Android 2.0; en-us;) AppleWebKit/538.1 (KHTML, like Gecko) Version/4.0 Mobile Safari/538.1 (Kobo Touch 0377/4.20.14622)"
DESKTOP_AGENT = "Mozilla/5.0 (X11; Linux x86_64; rv:124.0) Gecko/20100101 Firefox/124.0"
FIXED_DATE = (2020, 1, 1, 0, 0, 0)


def make_epub() -> bytes:
    """Smallest archive that still carries the EPUB signature."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr(zipfile.ZipInfo("mimetype", date_time=FIXED_DATE), "application/epub+zip")
        zf.writestr(zipfile.ZipInfo("META-INF/container.xml", date_time=FIXED_DATE), "<container/>")
    return buffer.getvalue()


def make_mobi() -> bytes:
    return b"\x00" * 60 + b"BOOKMOBI" + b"\x00" * 64


PDF_BYTES = b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n1 0 obj\n<<>>\nendobj\n"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def upload_dir(tmp_path: Path, monkeypatch) -> Path:
    path = tmp_path / "uploads"
    monkeypatch.setattr(settings, "UPLOAD_DIR", path)
    return path


@pytest.fixture
def static_dir(tmp_path: Path, monkeypatch) -> Path:
    path = tmp_path / "static"
    path.mkdir()
    monkeypatch.setattr(settings, "STATIC_DIR", path)
    return path


@pytest.fixture
def client(upload_dir: Path, static_dir: Path):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def registry(client):
    return app.state.registry


def fake_converter(returncode: int = 0, output: str = "", produce: bool = True):
    """Side effect for a patched ``run_converter`` that writes the requested output file."""

    async def _run(executable: str, *args: str, cwd: Path) -> ConverterResult:
        if produce:
            out_name = args[args.index("-o") + 1]
            (Path(cwd) / out_name).write_bytes(b"converted")
        return ConverterResult(returncode=returncode, output=output)

    return _run
