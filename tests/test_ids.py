import pytest

from clipvault.errors import ValidationError
from clipvault.utils.ids import (
    Kind,
    blob_path,
    generate_id,
    parse_blob_path,
    text_path,
    to_base36,
    validate_user_id,
)


class TestBase36:
    def test_small_values(self):
        assert to_base36(0) == "0"
        assert to_base36(35) == "z"
        assert to_base36(36) == "10"

    def test_matches_int_parsing(self):
        value = 1767225600123
        assert int(to_base36(value), 36) == value

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            to_base36(-1)


class TestGenerateId:
    def test_unique(self):
        ids = {generate_id() for _ in range(2000)}
        assert len(ids) == 2000

    def test_time_component_never_decreases(self):
        stamps = [int(generate_id()[:-5], 36) for _ in range(200)]
        assert stamps == sorted(stamps)

    def test_alphabet(self):
        entry_id = generate_id()
        assert entry_id.isalnum()
        assert entry_id == entry_id.lower()


class TestPaths:
    def test_blob_path_layout(self):
        assert blob_path(Kind.SCREENSHOTS, "u1", "abc") == "screenshots/u1/abc.png"
        assert blob_path(Kind.OCR, "u1", "abc") == "ocr/u1/abc.json"
        assert text_path("u1", "abc") == "text/u1/abc.txt"

    def test_parse_recovers_parts(self):
        assert parse_blob_path("ocr/u-7/k3x9a.json") == (Kind.OCR, "u-7", "k3x9a")

    @pytest.mark.parametrize("path", [
        "screenshots/u1/abc.txt",
        "videos/u1/abc.png",
        "screenshots/abc.png",
        "screenshots//abc.png",
        "screenshots/u1/.png",
        "screenshots/u1/extra/abc.png",
    ])
    def test_parse_rejects_foreign_paths(self, path):
        assert parse_blob_path(path) is None


class TestValidateUserId:
    def test_accepts_plain_id(self):
        assert validate_user_id("device-42") == "device-42"

    @pytest.mark.parametrize("user_id", ["", "   ", "a/b"])
    def test_rejects_bad_ids(self, user_id):
        with pytest.raises(ValidationError):
            validate_user_id(user_id)
