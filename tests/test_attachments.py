import pytest

from relay_mailer.core import Attachment
from relay_mailer.errors import AttachmentNotFoundError, ValidationError
from relay_mailer.mime import DEFAULT_CONTENT_TYPE, guess_content_type, resolve


class TestGuessContentType:
    @pytest.mark.parametrize("filename, expected", [
        ("report.pdf", "application/pdf"),
        ("photo.png", "image/png"),
        ("dir/notes.txt", "text/plain"),
        ("README", DEFAULT_CONTENT_TYPE),
        ("archive.unknownext", DEFAULT_CONTENT_TYPE),
        ("", DEFAULT_CONTENT_TYPE),
        ("notes.txt.gz", "application/gzip"),
        ("backup.tar.gz", "application/gzip"),
        ("logs.tar.bz2", "application/x-bzip2"),
        ("dump.sql.xz", "application/x-xz"),
    ])
    def test_guess(self, filename, expected):
        assert guess_content_type(filename) == expected


class TestResolve:
    def test_existing_content_returned_without_reading(self):
        attachment = Attachment("text/plain", "f.txt", source_path="/does/not/exist", content=b"AB")
        assert resolve(attachment) == b"AB"

    def test_loads_and_caches(self, temp_dir):
        path = temp_dir / "data.bin"
        path.write_bytes(b"\x00\x01\x02")
        attachment = Attachment("application/octet-stream", "data.bin", source_path=str(path))

        assert resolve(attachment) == b"\x00\x01\x02"
        assert attachment.content == b"\x00\x01\x02"

        # A second resolve must not touch the disk
        path.unlink()
        assert resolve(attachment) == b"\x00\x01\x02"

    def test_missing_file(self, temp_dir):
        attachment = Attachment("text/plain", "gone.txt", source_path=str(temp_dir / "gone.txt"))
        with pytest.raises(AttachmentNotFoundError):
            resolve(attachment)
        assert attachment.content is None

    def test_directory_fails_validation(self, temp_dir):
        attachment = Attachment("text/plain", "dir", source_path=str(temp_dir))
        with pytest.raises(ValidationError, match="directory"):
            resolve(attachment)
        assert attachment.content is None

    def test_no_content_and_no_path(self):
        with pytest.raises(ValidationError):
            resolve(Attachment("text/plain", "empty.txt"))
