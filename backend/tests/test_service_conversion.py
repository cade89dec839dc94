import sys
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from send2ereader.config import settings
from send2ereader.errors import ConversionError
from send2ereader.services.conversion import (
    KEPUBIFY,
    KINDLEGEN,
    TYPE_EPUB,
    ConversionOptions,
    choose_converter,
    convert,
    dispatch,
    passthrough_name,
)
from send2ereader.services.devices import DeviceClass
from send2ereader.utils.converters import run_converter

from .conftest import fake_converter


@pytest.fixture
def staged_epub(tmp_path: Path) -> Path:
    path = tmp_path / "files-1700000000000-abc123.epub"
    path.write_bytes(b"epub")
    return path


@pytest.mark.parametrize(
    "mimetype, device, options, expected",
    [
        (TYPE_EPUB, DeviceClass.KINDLE, ConversionOptions(kindlegen=True), KINDLEGEN),
        (TYPE_EPUB, DeviceClass.KOBO, ConversionOptions(kepubify=True), KEPUBIFY),
        (TYPE_EPUB, DeviceClass.KINDLE, ConversionOptions(), None),
        (TYPE_EPUB, DeviceClass.KINDLE, ConversionOptions(kepubify=True), None),
        (TYPE_EPUB, DeviceClass.KOBO, ConversionOptions(kindlegen=True), None),
        (TYPE_EPUB, DeviceClass.GENERIC, ConversionOptions(kindlegen=True, kepubify=True), None),
        ("application/pdf", DeviceClass.KINDLE, ConversionOptions(kindlegen=True), None),
    ],
)
def test_choose_converter(mimetype, device, options, expected):
    assert choose_converter(mimetype, device, options) is expected


@pytest.mark.parametrize(
    "name, expected",
    [("Book.EPUB", "Book.epub"), ("Book.epub", "Book.epub"), ("Doc.Pdf", "Doc.pdf"), ("notes.txt", "notes.txt")],
)
def test_passthrough_name_is_idempotent(name, expected):
    assert passthrough_name(name) == expected
    assert passthrough_name(passthrough_name(name)) == expected


def test_display_names():
    assert KINDLEGEN.display_name("book.epub") == "book.mobi"
    assert KINDLEGEN.display_name("book.kepub.epub") == "book.mobi"
    assert KEPUBIFY.display_name("book.epub") == "book.kepub.epub"
    assert KEPUBIFY.display_name("book.kepub.epub") == "book.kepub.epub"


@pytest.mark.parametrize(
    "converter, filename, expected",
    [
        (KINDLEGEN, "book.cbz", "book.mobi"),
        (KINDLEGEN, "book.PDF", "book.mobi"),
        (KINDLEGEN, "my.book.epub", "my.book.mobi"),
        (KEPUBIFY, "book.pdf", "book.kepub.epub"),
        (KEPUBIFY, "book", "book.kepub.epub"),
    ],
)
def test_display_name_follows_produced_format(converter, filename, expected):
    assert converter.display_name(filename) == expected


def test_converter_arguments(staged_epub: Path):
    mobi = KINDLEGEN.output_path(staged_epub)
    assert KINDLEGEN.arguments(staged_epub, mobi) == [
        staged_epub.name, "-dont_append_source", "-c1", "-o", mobi.name,
    ]
    kepub = KEPUBIFY.output_path(staged_epub)
    assert kepub.name == "files-1700000000000-abc123.kepub.epub"
    assert KEPUBIFY.arguments(staged_epub, kepub) == ["-v", "-u", "-o", kepub.name, staged_epub.name]


@pytest.mark.asyncio
async def test_passthrough_keeps_staged_file(staged_epub: Path):
    with patch("send2ereader.services.conversion.run_converter", new_callable=AsyncMock) as mock_run:
        record = await dispatch(staged_epub, "Book.EPUB", TYPE_EPUB, DeviceClass.KINDLE, ConversionOptions())

    mock_run.assert_not_called()
    assert record.name == "Book.epub"
    assert record.path == staged_epub
    assert record.conversion is None
    assert staged_epub.exists()


@pytest.mark.asyncio
@pytest.mark.parametrize("returncode", [0, 1])
async def test_kindlegen_exit_codes_zero_and_one_succeed(staged_epub: Path, returncode: int):
    intermediate = staged_epub.with_suffix(".mobi8")
    intermediate.write_bytes(b"mobi8")

    with patch(
        "send2ereader.services.conversion.run_converter",
        side_effect=fake_converter(returncode, "Warning(prcgen): some warning"),
    ) as mock_run:
        record = await dispatch(
            staged_epub, "book.epub", TYPE_EPUB, DeviceClass.KINDLE, ConversionOptions(kindlegen=True)
        )

    assert mock_run.call_args.args[0] == "kindlegen"
    assert record.name == "book.mobi"
    assert record.conversion == "kindlegen"
    assert record.path == staged_epub.with_suffix(".mobi")
    assert record.path.exists()
    assert not staged_epub.exists()
    assert not intermediate.exists()


@pytest.mark.asyncio
async def test_kindlegen_other_exit_code_fails(staged_epub: Path):
    with patch(
        "send2ereader.services.conversion.run_converter",
        side_effect=fake_converter(2, "Error(core): broken"),
    ):
        with pytest.raises(ConversionError) as excinfo:
            await dispatch(staged_epub, "book.epub", TYPE_EPUB, DeviceClass.KINDLE, ConversionOptions(kindlegen=True))

    assert excinfo.value.returncode == 2
    assert "kindlegen error code: 2" in excinfo.value.detail
    assert "broken" in excinfo.value.detail
    assert list(staged_epub.parent.iterdir()) == []


@pytest.mark.asyncio
async def test_kepubify_exit_code_one_fails(staged_epub: Path):
    with patch("send2ereader.services.conversion.run_converter", side_effect=fake_converter(1, "oops")):
        with pytest.raises(ConversionError) as excinfo:
            await dispatch(staged_epub, "book.epub", TYPE_EPUB, DeviceClass.KOBO, ConversionOptions(kepubify=True))

    assert excinfo.value.returncode == 1
    assert list(staged_epub.parent.iterdir()) == []


@pytest.mark.asyncio
async def test_kepubify_success(staged_epub: Path):
    with patch("send2ereader.services.conversion.run_converter", side_effect=fake_converter(0)) as mock_run:
        record = await dispatch(staged_epub, "book.epub", TYPE_EPUB, DeviceClass.KOBO, ConversionOptions(kepubify=True))

    assert mock_run.call_args.args[0] == "kepubify"
    assert record.name == "book.kepub.epub"
    assert record.conversion == "kepubify"
    assert record.path.name.endswith(".kepub.epub")
    assert not staged_epub.exists()


@pytest.mark.asyncio
async def test_launch_failure_is_a_conversion_error(staged_epub: Path):
    with patch(
        "send2ereader.services.conversion.run_converter",
        side_effect=FileNotFoundError("No such file or directory: 'kindlegen'"),
    ):
        with pytest.raises(ConversionError) as excinfo:
            await dispatch(staged_epub, "book.epub", TYPE_EPUB, DeviceClass.KINDLE, ConversionOptions(kindlegen=True))

    assert excinfo.value.detail.startswith("kindlegen error:")
    assert not staged_epub.exists()


@pytest.mark.asyncio
async def test_missing_output_is_a_conversion_error(staged_epub: Path):
    with patch("send2ereader.services.conversion.run_converter", side_effect=fake_converter(0, produce=False)):
        with pytest.raises(ConversionError):
            await dispatch(staged_epub, "book.epub", TYPE_EPUB, DeviceClass.KOBO, ConversionOptions(kepubify=True))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "filename, device, options, suffix",
    [
        ("book.pdf", DeviceClass.KOBO, ConversionOptions(kepubify=True), ".kepub.epub"),
        ("book.cbz", DeviceClass.KINDLE, ConversionOptions(kindlegen=True), ".mobi"),
    ],
)
async def test_converted_record_name_matches_stored_format(staged_epub: Path, filename, device, options, suffix):
    with patch("send2ereader.services.conversion.run_converter", side_effect=fake_converter(0)):
        record = await dispatch(staged_epub, filename, TYPE_EPUB, device, options)

    assert record.path.name.endswith(suffix)
    assert record.name == "book" + suffix


# ----------------------------------------------------------------------
# Real subprocesses
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_run_converter_merges_stderr_into_output(tmp_path: Path):
    result = await run_converter("sh", "-c", "echo warn; echo oops >&2; exit 1", cwd=tmp_path)

    assert result.returncode == 1
    assert "warn" in result.output
    assert "oops" in result.output


@pytest.mark.asyncio
async def test_run_converter_runs_inside_cwd(tmp_path: Path):
    (tmp_path / "input.epub").write_bytes(b"epub")

    result = await run_converter("sh", "-c", "ls", cwd=tmp_path)

    assert result.returncode == 0
    assert "input.epub" in result.output


@pytest.mark.asyncio
async def test_run_converter_replaces_undecodable_output(tmp_path: Path):
    result = await run_converter(sys.executable, "-c", "import sys; sys.stdout.buffer.write(b'\\xff ok')", cwd=tmp_path)

    assert result.returncode == 0
    assert result.output == "\ufffd ok"


@pytest.mark.asyncio
async def test_run_converter_missing_binary_raises(tmp_path: Path):
    with pytest.raises(OSError):
        await run_converter(str(tmp_path / "no-such-converter"), "x", cwd=tmp_path)


@pytest.mark.asyncio
async def test_kindlegen_warning_exit_through_real_process(staged_epub: Path, monkeypatch):
    script = staged_epub.parent / "kindlegen.sh"
    script.write_text('#!/bin/sh\necho "Warning(prcgen): hyperlink not resolved"\necho mobi > "$5"\nexit 1\n')
    script.chmod(0o755)
    monkeypatch.setattr(settings, "KINDLEGEN_PATH", str(script))

    output_path = await convert(KINDLEGEN, staged_epub)

    assert output_path == staged_epub.with_suffix(".mobi")
    assert output_path.read_text() == "mobi\n"
    assert not staged_epub.exists()


@pytest.mark.asyncio
async def test_missing_converter_binary_is_a_conversion_error(staged_epub: Path, monkeypatch):
    monkeypatch.setattr(settings, "KEPUBIFY_PATH", str(staged_epub.parent / "no-such-kepubify"))

    with pytest.raises(ConversionError) as excinfo:
        await convert(KEPUBIFY, staged_epub)

    assert excinfo.value.detail.startswith("kepubify error:")
    assert not staged_epub.exists()
