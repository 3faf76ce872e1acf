"""Conversion job model and scratch-file handling.

A ConversionJob is parsed from one queue message body:

    {"file": "http://h/reports/q1.docx", "back_url": "http://cb/x"}

Filenames derived from the source URL are pure functions of the URL, so a
redelivered message always produces the same names and the same calls.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from docgen.core.errors import ValidationError

logger = logging.getLogger(__name__)

FALLBACK_STEM = "document"
FALLBACK_PDF_FILENAME = f"{FALLBACK_STEM}.pdf"

# Input extension assumed when the source URL does not reveal one
DEFAULT_SOURCE_SUFFIX = ".docx"

SCRATCH_PREFIX = "docgen-"

# How much of an invalid body ends up in the error message
BODY_EXCERPT_CHARS = 100


def check_http_url(url: str) -> str:
    """Return ``url`` if it is an absolute http(s) URL with a host.

    Raises:
        ValueError: Unparseable URL, other scheme, missing host, or a NUL
            character (raw or percent-encoded).
    """
    try:
        parts = urlsplit(url)
        host = parts.hostname
    except ValueError as e:
        raise ValueError(f"not a valid URL ({e})") from e
    if parts.scheme not in ("http", "https"):
        raise ValueError("must be an http or https URL")
    if not host:
        raise ValueError("URL has no host")
    if "\x00" in unquote(url):
        raise ValueError("URL must not contain NUL characters")
    return url


def source_basename(url: str) -> str:
    """Return the percent-decoded last path segment of a URL, or "" if there is none."""
    path = urlsplit(url).path
    if not path or path.endswith("/"):
        return ""
    # An encoded slash must not smuggle a directory into the filename
    name = unquote(PurePosixPath(path).name).rsplit("/", 1)[-1]
    if name in ("", ".", ".."):
        return ""
    return name


def split_name(name: str) -> tuple[str, str]:
    """Split a filename into ``(stem, suffix)``.

    A lone leading dot starts the extension, so ``.docx`` has an empty stem
    and the suffix ``.docx``.
    """
    suffix = PurePosixPath(name).suffix
    if suffix:
        return name[: -len(suffix)], suffix
    if name.startswith(".") and name.count(".") == 1 and len(name) > 1:
        return "", name
    return name, ""


def derive_pdf_filename(url: str) -> str:
    """Source basename with its extension replaced by ``.pdf``.

    Falls back to ``document.pdf`` when no stem can be determined.
    """
    stem, _ = split_name(source_basename(url))
    return f"{stem}.pdf" if stem else FALLBACK_PDF_FILENAME


class ConversionJob(BaseModel):
    """One document-conversion request."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )

    source_file_url: str = Field(alias="file", min_length=1)
    callback_url: str | None = Field(default=None, alias="back_url")

    @field_validator("callback_url", mode="before")
    @classmethod
    def empty_callback_means_none(cls, v: object) -> object:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return v

    @field_validator("source_file_url")
    @classmethod
    def source_is_http_url(cls, v: str) -> str:
        return check_http_url(v)

    @field_validator("callback_url")
    @classmethod
    def callback_is_http_url(cls, v: str | None) -> str | None:
        return check_http_url(v) if v is not None else None

    @classmethod
    def from_message(cls, body: bytes | str) -> ConversionJob:
        """Parse a queue message body.

        Raises:
            ValidationError: Body is not a JSON object with a non-empty ``file`` string.
        """
        try:
            return cls.model_validate_json(body)
        except PydanticValidationError as e:
            text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
            problems = "; ".join(
                f"{'.'.join(str(x) for x in err['loc']) or 'body'}: {err['msg']}"
                for err in e.errors()
            )
            raise ValidationError(
                f"Invalid payload: {text[:BODY_EXCERPT_CHARS]!r} ({problems})"
            ) from e

    @property
    def source_filename(self) -> str:
        return source_basename(self.source_file_url)

    @property
    def source_suffix(self) -> str:
        _, suffix = split_name(self.source_filename)
        return suffix or DEFAULT_SOURCE_SUFFIX

    @property
    def gateway_filename(self) -> str:
        """Filename presented to the gateway; always carries a stem and an extension."""
        stem, suffix = split_name(self.source_filename)
        return f"{stem or FALLBACK_STEM}{suffix or DEFAULT_SOURCE_SUFFIX}"

    @property
    def pdf_filename(self) -> str:
        return derive_pdf_filename(self.source_file_url)


class WorkingFiles:
    """Scratch input/output files owned by one job.

    Both files are removed when the context exits, whatever the outcome.
    Deletion errors are logged and swallowed so they never replace the
    job's own exception.

    Example:
        with WorkingFiles(suffix=".docx") as files:
            await transfer.download(url, files.input_path)
            files.output_path.write_bytes(pdf)
    """

    def __init__(
        self, suffix: str = DEFAULT_SOURCE_SUFFIX, scratch_dir: str | None = None
    ) -> None:
        self.suffix = suffix
        self.scratch_dir = scratch_dir
        self._input_path: Path | None = None
        self._output_path: Path | None = None

    @property
    def input_path(self) -> Path:
        if self._input_path is None:
            msg = "WorkingFiles must be used as a context manager"
            raise RuntimeError(msg)
        return self._input_path

    @property
    def output_path(self) -> Path:
        if self._output_path is None:
            msg = "WorkingFiles must be used as a context manager"
            raise RuntimeError(msg)
        return self._output_path

    @property
    def paths(self) -> tuple[Path, ...]:
        return tuple(p for p in (self._input_path, self._output_path) if p is not None)

    def __enter__(self) -> WorkingFiles:
        fd, name = tempfile.mkstemp(
            prefix=SCRATCH_PREFIX, suffix=self.suffix, dir=self.scratch_dir
        )
        os.close(fd)
        self._input_path = Path(name)
        self._output_path = self._input_path.with_name(self._input_path.name + ".pdf")
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()

    def cleanup(self) -> None:
        """Delete both scratch files if present."""
        for path in self.paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Could not delete scratch file %s: %s", path, e)
