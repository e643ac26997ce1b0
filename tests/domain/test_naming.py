import pytest

from storekit.domain.naming import (
    BucketRef,
    InvalidBucketName,
    InvalidObjectKey,
    bucket_identifier,
    validate_object_key,
)


class TestBucketIdentifier:
    def test_appends_account_id(self):
        assert bucket_identifier("photos", "1250000000") == "photos-1250000000"

    def test_already_suffixed_name_is_kept(self):
        assert bucket_identifier("photos-1250000000", "1250000000") == (
            "photos-1250000000"
        )

    def test_requires_name_and_account(self):
        with pytest.raises(InvalidBucketName):
            bucket_identifier("  ", "1250000000")
        with pytest.raises(InvalidBucketName):
            bucket_identifier("photos", "")


class TestBucketRef:
    def test_identifier(self):
        ref = BucketRef(name="photos", account_id="1250000000")

        assert ref.identifier == "photos-1250000000"

    @pytest.mark.parametrize("name", ["Photos", "my_bucket", "-photos", "a..b"])
    def test_rejects_invalid_names(self, name):
        with pytest.raises(InvalidBucketName):
            BucketRef(name=name, account_id="1250000000")

    def test_rejects_identifier_over_63_characters(self):
        with pytest.raises(InvalidBucketName, match="3-63"):
            BucketRef(name="a" * 60, account_id="1250000000")


class TestObjectKey:
    def test_accepts_nested_keys(self):
        assert validate_object_key("media/2024/video.mp4") == "media/2024/video.mp4"

    def test_rejects_empty_key(self):
        with pytest.raises(InvalidObjectKey):
            validate_object_key("")

    def test_limit_counts_utf8_bytes(self):
        with pytest.raises(InvalidObjectKey):
            validate_object_key("é" * 513)
