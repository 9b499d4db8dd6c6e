from __future__ import annotations

import asyncio
import unittest
from unittest.mock import patch

from cloudinary.exceptions import Error as CloudinaryError

from marketplace_api.core.errors import ImageHostError, ImageTooLargeError, InvalidImageError
from marketplace_api.services.image_host import (
    CloudinaryImageHost,
    RepoImageHost,
    check_image,
    decode_data_url,
)

from support import PNG_BYTES, PNG_DATA_URL, _FakeRepoFileClient


class ImageChecksTestCase(unittest.TestCase):
    def test_decode_data_url(self):
        data, content_type = decode_data_url(PNG_DATA_URL)
        self.assertEqual(data, PNG_BYTES)
        self.assertEqual(content_type, "image/png")

    def test_decode_bare_base64(self):
        data, content_type = decode_data_url(PNG_DATA_URL.split(",", 1)[1])
        self.assertEqual(data, PNG_BYTES)
        self.assertIsNone(content_type)

    def test_decode_rejects_invalid_payload(self):
        with self.assertRaises(InvalidImageError):
            decode_data_url("data:image/png;base64,***")

    def test_check_image(self):
        self.assertEqual(check_image(PNG_BYTES, "photo.PNG", "image/png", 1024), "png")
        self.assertEqual(check_image(PNG_BYTES, None, "image/jpeg", 1024), "jpg")
        with self.assertRaises(InvalidImageError):
            check_image(PNG_BYTES, "doc.pdf", "application/pdf", 1024)
        with self.assertRaises(InvalidImageError):
            check_image(PNG_BYTES, "photo.bmp", "image/bmp", 1024)
        with self.assertRaises(InvalidImageError):
            check_image(b"", "photo.png", "image/png", 1024)
        with self.assertRaises(ImageTooLargeError):
            check_image(PNG_BYTES, "photo.png", "image/png", 10)


class CloudinaryImageHostTestCase(unittest.TestCase):
    def setUp(self):
        self.host = CloudinaryImageHost("demo", "key", "secret", "marketplace-products")

    @patch("marketplace_api.services.image_host.cloudinary.uploader.upload")
    def test_upload_sends_folder_and_credentials(self, upload):
        upload.return_value = {
            "secure_url": "https://res.cloudinary.com/demo/image/upload/product_1.png",
            "public_id": "marketplace-products/product_1",
        }
        hosted = asyncio.run(self.host.upload(PNG_BYTES, "desk.png", "image/png"))
        self.assertEqual(hosted.public_id, "marketplace-products/product_1")
        self.assertTrue(hosted.url.startswith("https://res.cloudinary.com/"))
        kwargs = upload.call_args.kwargs
        self.assertEqual(kwargs["folder"], "marketplace-products")
        self.assertEqual(kwargs["cloud_name"], "demo")
        self.assertTrue(kwargs["public_id"].startswith("product_"))

    @patch("marketplace_api.services.image_host.cloudinary.uploader.upload")
    def test_base64_data_url_passed_through(self, upload):
        upload.return_value = {"secure_url": "https://x/y.png", "public_id": "p"}
        asyncio.run(self.host.upload_base64(PNG_DATA_URL))
        self.assertEqual(upload.call_args.args[0], PNG_DATA_URL)

    @patch("marketplace_api.services.image_host.cloudinary.uploader.upload")
    def test_upload_error_wrapped(self, upload):
        upload.side_effect = CloudinaryError("bad credentials")
        with self.assertRaises(ImageHostError):
            asyncio.run(self.host.upload(PNG_BYTES, "desk.png", "image/png"))

    @patch("marketplace_api.services.image_host.cloudinary.uploader.destroy")
    def test_delete(self, destroy):
        destroy.return_value = {"result": "ok"}
        asyncio.run(self.host.delete("marketplace-products/product_1"))
        self.assertEqual(destroy.call_args.args, ("marketplace-products/product_1",))

        destroy.return_value = {"result": "error"}
        with self.assertRaises(ImageHostError):
            asyncio.run(self.host.delete("marketplace-products/product_1"))


class RepoImageHostTestCase(unittest.TestCase):
    def setUp(self):
        self.repo = _FakeRepoFileClient()
        self.host = RepoImageHost(self.repo, "images/")

    def test_upload_commits_file_and_returns_raw_url(self):
        hosted = asyncio.run(self.host.upload(PNG_BYTES, "desk.png", "image/png"))
        self.assertTrue(hosted.public_id.startswith("images/product_"))
        self.assertTrue(hosted.public_id.endswith(".png"))
        self.assertEqual(self.repo.files[hosted.public_id][0], PNG_BYTES)
        self.assertEqual(hosted.url, self.repo.raw_url(hosted.public_id))

    def test_base64_upload(self):
        hosted = asyncio.run(self.host.upload_base64(PNG_DATA_URL))
        self.assertEqual(self.repo.files[hosted.public_id][0], PNG_BYTES)

    def test_delete_removes_file_and_ignores_missing(self):
        hosted = asyncio.run(self.host.upload(PNG_BYTES, "desk.png", "image/png"))
        asyncio.run(self.host.delete(hosted.public_id))
        self.assertNotIn(hosted.public_id, self.repo.files)
        asyncio.run(self.host.delete(hosted.public_id))

    def test_repository_failure_wrapped(self):
        self.repo.fail_puts = 1
        with self.assertRaises(ImageHostError):
            asyncio.run(self.host.upload(PNG_BYTES, "desk.png", "image/png"))


if __name__ == "__main__":
    unittest.main()
