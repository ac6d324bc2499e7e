import io
import os
import re
import tempfile
import unittest

from PIL import Image

from errors import PayloadTooLargeError, ReceiptStorageError, UnsupportedMediaError, ValidationError
from receipts import ReceiptProcessor, timestamp_filename


def make_image_bytes(width, height, fmt='PNG', mode='RGB'):
    color = (200, 30, 30, 128) if mode == 'RGBA' else 'red'
    buffer = io.BytesIO()
    Image.new(mode, (width, height), color).save(buffer, format=fmt)
    return buffer.getvalue()


class ReceiptProcessorTests(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.upload_root = os.path.join(self.tmp.name, 'uploads')
        self.processor = ReceiptProcessor(self.upload_root)

    def tearDown(self):
        self.tmp.cleanup()

    def stored_files(self):
        if not os.path.isdir(self.upload_root):
            return []
        return os.listdir(self.upload_root)

    def open_stored(self, receipt_url):
        with Image.open(self.processor.path_for(receipt_url)) as img:
            img.load()
            return img.format, img.mode, img.size

    def test_rejects_non_image_content_type(self):
        with self.assertRaises(UnsupportedMediaError):
            self.processor.ingest(b'%PDF-1.4 fake', 'application/pdf')
        with self.assertRaises(UnsupportedMediaError):
            self.processor.ingest(make_image_bytes(10, 10), None)
        self.assertEqual(self.stored_files(), [])

    def test_rejects_oversized_buffer_without_writing(self):
        processor = ReceiptProcessor(self.upload_root, max_bytes=1024)
        data = make_image_bytes(10, 10) + b'\0' * 2048
        with self.assertRaises(PayloadTooLargeError):
            processor.ingest(data, 'image/png')
        self.assertEqual(self.stored_files(), [])

    def test_rejects_empty_upload(self):
        with self.assertRaises(ValidationError):
            self.processor.ingest(b'', 'image/png')

    def test_rejects_bytes_that_are_not_an_image(self):
        with self.assertRaises(UnsupportedMediaError):
            self.processor.ingest(b'definitely not a png', 'image/png')
        self.assertEqual(self.stored_files(), [])

    def test_wide_image_is_downscaled_to_max_width(self):
        url = self.processor.ingest(make_image_bytes(2400, 1000), 'image/png')
        self.assertEqual(self.open_stored(url)[2], (1200, 500))

    def test_narrow_image_keeps_its_dimensions(self):
        url = self.processor.ingest(make_image_bytes(800, 600), 'image/png')
        self.assertEqual(self.open_stored(url)[2], (800, 600))

    def test_image_at_exact_max_width_is_untouched(self):
        url = self.processor.ingest(make_image_bytes(1200, 300, fmt='JPEG'), 'image/jpeg')
        self.assertEqual(self.open_stored(url)[2], (1200, 300))

    def test_transparent_png_is_reencoded_as_rgb_jpeg(self):
        url = self.processor.ingest(make_image_bytes(50, 40, mode='RGBA'), 'image/png')
        fmt, mode, size = self.open_stored(url)
        self.assertEqual(fmt, 'JPEG')
        self.assertEqual(mode, 'RGB')
        self.assertEqual(size, (50, 40))

    def test_content_type_parameters_are_ignored(self):
        url = self.processor.ingest(make_image_bytes(10, 10), 'image/png; charset=binary')
        self.assertTrue(url.startswith('/uploads/'))

    def test_returns_relative_url_from_name_factory(self):
        processor = ReceiptProcessor(self.upload_root, name_factory=lambda: 'fixed.jpg')
        url = processor.ingest(make_image_bytes(10, 10), 'image/png')
        self.assertEqual(url, '/uploads/fixed.jpg')
        self.assertEqual(self.stored_files(), ['fixed.jpg'])

    def test_name_collision_does_not_overwrite(self):
        processor = ReceiptProcessor(self.upload_root, name_factory=lambda: 'fixed.jpg')
        processor.ingest(make_image_bytes(10, 10), 'image/png')
        with self.assertRaises(ReceiptStorageError):
            processor.ingest(make_image_bytes(20, 20), 'image/png')
        self.assertEqual(self.open_stored('/uploads/fixed.jpg')[2], (10, 10))

    def test_write_failure_raises_receipt_storage_error(self):
        processor = ReceiptProcessor(self.upload_root, name_factory=lambda: os.path.join('missing', 'x.jpg'))
        with self.assertRaises(ReceiptStorageError):
            processor.ingest(make_image_bytes(10, 10), 'image/png')
        self.assertEqual(self.stored_files(), [])

    def test_discard_removes_stored_receipt(self):
        url = self.processor.ingest(make_image_bytes(10, 10), 'image/png')
        self.processor.discard(url)
        self.assertEqual(self.stored_files(), [])
        # Already gone
        self.processor.discard(url)

    def test_timestamp_filename_format(self):
        name = timestamp_filename()
        self.assertRegex(name, re.compile(r'^\d{13,}-\d+\.jpg$'))


if __name__ == '__main__':
    unittest.main()
