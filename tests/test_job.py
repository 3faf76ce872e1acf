"""Tests for the ConversionJob payload model and WorkingFiles."""

from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError

from docgen.core.errors import JobStep, ValidationError
from docgen.worker.job import (
    ConversionJob,
    WorkingFiles,
    check_http_url,
    derive_pdf_filename,
    source_basename,
    split_name,
)


class TestSourceBasename:
    """Tests for filename extraction from source URLs."""

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("http://h/reports/q1.docx", "q1.docx"),
            ("http://h/q1.docx?download=1#page", "q1.docx"),
            ("http://h/Annual%20Report.odt", "Annual Report.odt"),
            ("http://h/reports/", ""),
            ("http://h", ""),
            ("http://h/..", ""),
            ("http://h/a%2Fb.docx", "b.docx"),
        ],
    )
    def test_basename(self, url, expected):
        assert source_basename(url) == expected


class TestSplitName:
    """Tests for stem/suffix splitting."""

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("q1.docx", ("q1", ".docx")),
            ("archive.tar.gz", ("archive.tar", ".gz")),
            ("README", ("README", "")),
            (".docx", ("", ".docx")),
            (".tar.gz", (".tar", ".gz")),
            ("", ("", "")),
        ],
    )
    def test_split(self, name, expected):
        assert split_name(name) == expected


class TestCheckHttpUrl:
    """Tests for source and callback URL checks."""

    @pytest.mark.parametrize(
        "url", ["http://h/", "https://files.example.com/a.docx?x=1", "http://[::1]:8080/a"]
    )
    def test_accepts(self, url):
        assert check_http_url(url) == url

    @pytest.mark.parametrize(
        ("url", "reason"),
        [
            ("http://", "no host"),
            ("http://[::1", "not a valid URL"),
            ("http://h/a.d%00ocx", "NUL"),
            ("ftp://h/a.docx", "http or https"),
            ("/local/a.docx", "http or https"),
        ],
    )
    def test_rejects(self, url, reason):
        with pytest.raises(ValueError, match=reason):
            check_http_url(url)


class TestDerivePdfFilename:
    """Tests for the output filename."""

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("http://h/reports/q1.docx", "q1.pdf"),
            ("http://h/archive.tar.gz", "archive.tar.pdf"),
            ("http://h/README", "README.pdf"),
            ("http://h/", "document.pdf"),
            ("http://h/.docx", "document.pdf"),
            ("http://h/.tar.gz", ".tar.pdf"),
        ],
    )
    def test_pdf_filename(self, url, expected):
        assert derive_pdf_filename(url) == expected

    def test_same_url_same_name(self):
        """Derivation is a pure function of the URL."""
        url = "http://h/reports/q1.docx"
        assert derive_pdf_filename(url) == derive_pdf_filename(url)


class TestConversionJobParsing:
    """Tests for ConversionJob.from_message."""

    def test_full_payload(self):
        job = ConversionJob.from_message(
            b'{"file": "http://h/reports/q1.docx", "back_url": "http://cb/x"}'
        )
        assert job.source_file_url == "http://h/reports/q1.docx"
        assert job.callback_url == "http://cb/x"

    def test_callback_optional(self):
        job = ConversionJob.from_message('{"file": "http://h/q1.docx"}')
        assert job.callback_url is None

    @pytest.mark.parametrize("back_url", ['""', '"   "', "null"])
    def test_empty_callback_means_none(self, back_url):
        job = ConversionJob.from_message(f'{{"file": "http://h/q1.docx", "back_url": {back_url}}}')
        assert job.callback_url is None

    def test_unknown_keys_ignored(self):
        job = ConversionJob.from_message(
            '{"file": "http://h/q1.docx", "command": "create", "owner": 7}'
        )
        assert job.source_file_url == "http://h/q1.docx"

    @pytest.mark.parametrize(
        "body",
        [
            b"not json",
            b"[]",
            b"{}",
            b'{"file": ""}',
            b'{"file": 42}',
            b'{"back_url": "http://cb/x"}',
            b'{"file": "http://"}',
            b'{"file": "http://[::1"}',
            b'{"file": "http://h/a.d%00ocx"}',
            b'{"file": "reports/q1.docx"}',
            b'{"file": "http://h/q1.docx", "back_url": "callback"}',
        ],
    )
    def test_invalid_payload(self, body):
        with pytest.raises(ValidationError) as exc_info:
            ConversionJob.from_message(body)
        assert exc_info.value.step == JobStep.PARSE
        assert exc_info.value.message.startswith("Invalid payload:")

    def test_error_excerpt_is_bounded(self):
        body = b'{"nope": "' + b"x" * 1000 + b'"}'
        with pytest.raises(ValidationError) as exc_info:
            ConversionJob.from_message(body)
        assert "x" * 101 not in exc_info.value.message

    def test_job_is_frozen(self):
        job = ConversionJob.from_message('{"file": "http://h/q1.docx"}')
        with pytest.raises(PydanticValidationError):
            job.source_file_url = "http://other/"


class TestConversionJobFilenames:
    """Tests for the derived filename properties."""

    def test_with_extension(self):
        job = ConversionJob(file="http://h/reports/q1.docx")
        assert job.source_filename == "q1.docx"
        assert job.source_suffix == ".docx"
        assert job.gateway_filename == "q1.docx"
        assert job.pdf_filename == "q1.pdf"

    def test_other_office_format(self):
        job = ConversionJob(file="http://h/sheet.xlsx")
        assert job.source_suffix == ".xlsx"
        assert job.gateway_filename == "sheet.xlsx"
        assert job.pdf_filename == "sheet.pdf"

    def test_without_extension(self):
        """The gateway still gets a filename with an extension."""
        job = ConversionJob(file="http://h/download?id=5")
        assert job.source_filename == "download"
        assert job.source_suffix == ".docx"
        assert job.gateway_filename == "download.docx"
        assert job.pdf_filename == "download.pdf"

    def test_without_basename(self):
        job = ConversionJob(file="http://h/")
        assert job.source_filename == ""
        assert job.gateway_filename == "document.docx"
        assert job.pdf_filename == "document.pdf"

    def test_dotfile_has_no_stem(self):
        """A name like .docx is an extension only and falls back to document."""
        job = ConversionJob(file="http://h/.docx")
        assert job.source_suffix == ".docx"
        assert job.gateway_filename == "document.docx"
        assert job.pdf_filename == "document.pdf"

    def test_populate_by_field_name(self):
        job = ConversionJob(source_file_url="http://h/a.docx", callback_url="http://cb/x")
        assert job.callback_url == "http://cb/x"


class TestWorkingFiles:
    """Tests for scratch file lifecycle."""

    def test_paths_created_in_scratch_dir(self, tmp_path):
        with WorkingFiles(suffix=".odt", scratch_dir=str(tmp_path)) as files:
            assert files.input_path.parent == tmp_path
            assert files.input_path.name.startswith("docgen-")
            assert files.input_path.suffix == ".odt"
            assert files.input_path.exists()
            assert files.output_path == files.input_path.with_name(
                files.input_path.name + ".pdf"
            )

    def test_both_files_removed_on_success(self, tmp_path):
        with WorkingFiles(scratch_dir=str(tmp_path)) as files:
            files.input_path.write_bytes(b"source")
            files.output_path.write_bytes(b"%PDF")
        assert list(tmp_path.iterdir()) == []

    def test_files_removed_and_error_propagates(self, tmp_path):
        """Cleanup runs on failure and the original exception is kept."""
        with pytest.raises(ValueError, match="boom"):
            with WorkingFiles(scratch_dir=str(tmp_path)) as files:
                files.input_path.write_bytes(b"source")
                raise ValueError("boom")
        assert list(tmp_path.iterdir()) == []

    def test_missing_output_is_fine(self, tmp_path):
        with WorkingFiles(scratch_dir=str(tmp_path)):
            pass
        assert list(tmp_path.iterdir()) == []

    def test_file_removed_early_is_fine(self, tmp_path):
        with WorkingFiles(scratch_dir=str(tmp_path)) as files:
            files.input_path.unlink()
        assert list(tmp_path.iterdir()) == []

    def test_paths_unavailable_outside_context(self):
        files = WorkingFiles()
        with pytest.raises(RuntimeError):
            _ = files.input_path
        with pytest.raises(RuntimeError):
            _ = files.output_path

    def test_each_job_gets_distinct_files(self, tmp_path):
        with WorkingFiles(scratch_dir=str(tmp_path)) as a, WorkingFiles(
            scratch_dir=str(tmp_path)
        ) as b:
            assert a.input_path != b.input_path
