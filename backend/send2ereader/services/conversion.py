"""Conversion policy: which converter, if any, an accepted upload goes through.

| content type | device class | requested flag | converter  |
|--------------|--------------|----------------|------------|
| EPUB         | Kindle       | kindlegen      | kindlegen  |
| EPUB         | Kobo         | kepubify       | kepubify   |
| anything else                                | passthrough |
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, List, Optional

from ..config import settings
from ..errors import ConversionError
from ..models.session import FileRecord
from ..utils.converters import run_converter
from ..utils.storage import delete_file, delete_files
from .devices import DeviceClass

logger = logging.getLogger(__name__)

TYPE_EPUB = "application/epub+zip"
TYPE_MOBI = "application/x-mobipocket-ebook"

_SUFFIX_RE = re.compile(r"(\.kepub\.epub|\.[^.]*)$", re.IGNORECASE)
_EPUB_RE = re.compile(r"\.epub$", re.IGNORECASE)
_PDF_RE = re.compile(r"\.pdf$", re.IGNORECASE)


@dataclass
class ConversionOptions:
    """Conversions the uploader asked for."""

    kindlegen: bool = False
    kepubify: bool = False


class Converter:
    name: str = ""
    success_codes: FrozenSet[int] = frozenset({0})
    extension: str = ""

    @property
    def executable(self) -> str:
        raise NotImplementedError

    def output_path(self, input_path: Path) -> Path:
        raise NotImplementedError

    def arguments(self, input_path: Path, output_path: Path) -> List[str]:
        raise NotImplementedError

    def leftovers(self, input_path: Path) -> List[Path]:
        """Files deleted after every run, whatever the outcome."""
        return [input_path]

    def display_name(self, filename: str) -> str:
        """Swap the final extension (``.kepub.epub`` counts as one) for the produced one."""
        return _SUFFIX_RE.sub("", filename) + self.extension


class KindleGen(Converter):
    """EPUB to MOBI. Exit code 1 only signals warnings."""

    name = "kindlegen"
    success_codes = frozenset({0, 1})
    extension = ".mobi"

    @property
    def executable(self) -> str:
        return settings.KINDLEGEN_PATH

    def output_path(self, input_path: Path) -> Path:
        return input_path.with_suffix(self.extension)

    def arguments(self, input_path: Path, output_path: Path) -> List[str]:
        return [input_path.name, "-dont_append_source", "-c1", "-o", output_path.name]

    def leftovers(self, input_path: Path) -> List[Path]:
        return [input_path, input_path.with_suffix(".mobi8")]


class Kepubify(Converter):
    """EPUB to Kobo-flavoured EPUB."""

    name = "kepubify"
    extension = ".kepub.epub"

    @property
    def executable(self) -> str:
        return settings.KEPUBIFY_PATH

    def output_path(self, input_path: Path) -> Path:
        return input_path.with_name(input_path.stem + self.extension)

    def arguments(self, input_path: Path, output_path: Path) -> List[str]:
        return ["-v", "-u", "-o", output_path.name, input_path.name]


KINDLEGEN = KindleGen()
KEPUBIFY = Kepubify()


def choose_converter(
    mimetype: str,
    device_class: DeviceClass,
    options: ConversionOptions,
) -> Optional[Converter]:
    if mimetype != TYPE_EPUB:
        return None
    if device_class is DeviceClass.KINDLE and options.kindlegen:
        return KINDLEGEN
    if device_class is DeviceClass.KOBO and options.kepubify:
        return KEPUBIFY
    return None


def passthrough_name(filename: str) -> str:
    """Lowercase the ``.epub`` and ``.pdf`` extensions; idempotent."""
    return _PDF_RE.sub(".pdf", _EPUB_RE.sub(".epub", filename))


async def convert(converter: Converter, input_path: Path) -> Path:
    """Run ``converter`` on ``input_path`` and return the produced file.

    The input (and any known intermediate) is gone afterwards whether the run
    succeeded or not.
    """
    output_path = converter.output_path(input_path)
    try:
        result = await run_converter(
            converter.executable,
            *converter.arguments(input_path, output_path),
            cwd=input_path.parent,
        )
    except OSError as exc:
        logger.error("Could not launch %s: %s", converter.name, exc)
        delete_file(output_path)
        raise ConversionError(f"{converter.name} error: {exc}") from exc
    finally:
        delete_files(converter.leftovers(input_path))

    if result.returncode not in converter.success_codes:
        logger.error("%s failed with code %s: %s", converter.name, result.returncode, result.output)
        delete_file(output_path)
        raise ConversionError(
            f"{converter.name} error code: {result.returncode}\n{result.output}",
            returncode=result.returncode,
            output=result.output,
        )

    if result.returncode != 0:
        logger.warning("%s finished with warnings: %s", converter.name, result.output)

    if not output_path.exists():
        raise ConversionError(f"{converter.name} produced no output", returncode=result.returncode, output=result.output)

    return output_path


async def dispatch(
    staged_path: Path,
    filename: str,
    mimetype: str,
    device_class: DeviceClass,
    options: ConversionOptions,
) -> FileRecord:
    """Convert or pass through an accepted upload and describe the stored result."""
    converter = choose_converter(mimetype, device_class, options)
    if converter is None:
        return FileRecord(name=passthrough_name(filename), path=staged_path)

    logger.info("Converting %s with %s", filename, converter.name)
    output_path = await convert(converter, staged_path)
    return FileRecord(
        name=converter.display_name(filename),
        path=output_path,
        conversion=converter.name,
    )
