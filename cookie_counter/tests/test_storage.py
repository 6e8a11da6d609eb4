import os
import tempfile
import unittest
from unittest.mock import patch

from botocore.exceptions import ClientError

from cookie_counter.errors import DependencyError
from cookie_counter.storage import LocalPhotoStorage, S3PhotoStorage


class LocalPhotoStorageTests(unittest.TestCase):
    def test_copies_into_upload_dir(self):
        with tempfile.TemporaryDirectory() as tmp:
            src = os.path.join(tmp, "src.jpg")
            with open(src, "wb") as f:
                f.write(b"jpeg bytes")
            storage = LocalPhotoStorage(upload_dir=os.path.join(tmp, "uploads"))

            url = storage.upload_file(src, "uploads/123-cookie.jpg", "image/jpeg")

            self.assertEqual(url, "/uploads/123-cookie.jpg")
            with open(os.path.join(tmp, "uploads", "123-cookie.jpg"), "rb") as f:
                self.assertEqual(f.read(), b"jpeg bytes")

    def test_missing_source_raises_dependency_error(self):
        with tempfile.TemporaryDirectory() as tmp:
            storage = LocalPhotoStorage(upload_dir=tmp)
            with self.assertRaises(DependencyError):
                storage.upload_file(
                    os.path.join(tmp, "nope.jpg"), "uploads/x.jpg", "image/jpeg"
                )


class S3PhotoStorageTests(unittest.TestCase):
    @patch("cookie_counter.storage.boto3.client")
    def test_upload_is_public_and_returns_url(self, mock_client_factory):
        client = mock_client_factory.return_value
        storage = S3PhotoStorage(bucket="cookiecounter--uploads", region="us-east-2")

        url = storage.upload_file("/tmp/a.jpg", "uploads/1-a.jpg", "image/jpeg")

        client.upload_file.assert_called_once_with(
            "/tmp/a.jpg",
            "cookiecounter--uploads",
            "uploads/1-a.jpg",
            ExtraArgs={"ContentType": "image/jpeg", "ACL": "public-read"},
        )
        self.assertEqual(
            url,
            "https://cookiecounter--uploads.s3.us-east-2.amazonaws.com/uploads/1-a.jpg",
        )

    @patch("cookie_counter.storage.boto3.client")
    def test_custom_endpoint_url(self, mock_client_factory):
        storage = S3PhotoStorage(
            bucket="photos", endpoint="http://localhost:9000/", public_read=False
        )
        url = storage.upload_file("/tmp/a.jpg", "uploads/1-a.jpg", "image/jpeg")
        self.assertEqual(url, "http://localhost:9000/photos/uploads/1-a.jpg")
        _, kwargs = mock_client_factory.return_value.upload_file.call_args
        self.assertNotIn("ACL", kwargs["ExtraArgs"])

    @patch("cookie_counter.storage.boto3.client")
    def test_client_errors_are_wrapped(self, mock_client_factory):
        mock_client_factory.return_value.upload_file.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject"
        )
        storage = S3PhotoStorage(bucket="photos", region="us-east-2")
        with self.assertRaises(DependencyError):
            storage.upload_file("/tmp/a.jpg", "uploads/1-a.jpg", "image/jpeg")


if __name__ == "__main__":
    unittest.main()
