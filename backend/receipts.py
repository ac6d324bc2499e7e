"""
Receipt ingestion: validate an uploaded image, normalize it with Pillow and
store it under the upload directory.

Every stored receipt is a JPEG no wider than the configured maximum, so the
upload directory only ever holds web-safe, bounded files regardless of what
the client sent.
"""

import io
import logging
import os
import random
import time
from collections import namedtuple

from PIL import Image, ImageOps, UnidentifiedImageError
from werkzeug.utils import secure_filename

from errors import PayloadTooLargeError, ReceiptStorageError, UnsupportedMediaError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_MAX_WIDTH = 1200
DEFAULT_QUALITY = 80

Upload = namedtuple('Upload', ['data', 'content_type', 'filename'])


def timestamp_filename():
    """Millisecond timestamp plus a random suffix, e.g. 1718000000000-482913377.jpg"""
    return f"{int(time.time() * 1000)}-{random.randint(0, 10 ** 9)}.jpg"


class ReceiptProcessor:

    def __init__(self, upload_root, max_bytes=DEFAULT_MAX_BYTES, max_width=DEFAULT_MAX_WIDTH,
                 quality=DEFAULT_QUALITY, url_prefix='/uploads', name_factory=timestamp_filename):
        self.upload_root = upload_root
        self.max_bytes = max_bytes
        self.max_width = max_width
        self.quality = quality
        self.url_prefix = url_prefix.rstrip('/')
        self.name_factory = name_factory

    def validate(self, data, content_type):
        """Reject non-image content types, empty buffers and oversized buffers."""
        media_type = (content_type or '').split(';', 1)[0].strip().lower()
        if not media_type.startswith('image/'):
            raise UnsupportedMediaError('Only images are allowed')
        if not data:
            raise ValidationError('Receipt file is empty')
        if len(data) > self.max_bytes:
            raise PayloadTooLargeError(f'Receipt exceeds the {self.max_bytes // (1024 * 1024)}MB limit')

    def resize(self, image):
        width, height = image.size
        if width <= self.max_width:
            return image
        new_height = max(1, round(height * self.max_width / width))
        return image.resize((self.max_width, new_height), Image.LANCZOS)

    def normalize(self, data):
        """Decode, orient, flatten to RGB, downscale and re-encode as JPEG bytes."""
        try:
            source = Image.open(io.BytesIO(data))
            source.load()
        except Image.DecompressionBombError:
            raise PayloadTooLargeError('Receipt image has too many pixels')
        except (UnidentifiedImageError, OSError, SyntaxError):
            raise UnsupportedMediaError('Could not decode the uploaded image')

        image = ImageOps.exif_transpose(source)

        # JPEG has no alpha channel; flatten transparency onto white
        if image.mode in ('RGBA', 'LA') or (image.mode == 'P' and 'transparency' in image.info):
            rgba = image.convert('RGBA')
            image = Image.new('RGB', rgba.size, (255, 255, 255))
            image.paste(rgba, mask=rgba.getchannel('A'))
        elif image.mode != 'RGB':
            image = image.convert('RGB')

        image = self.resize(image)

        buffer = io.BytesIO()
        image.save(buffer, format='JPEG', quality=self.quality, optimize=True)
        return buffer.getvalue()

    def path_for(self, receipt_url):
        filename = secure_filename(receipt_url.rsplit('/', 1)[-1])
        return os.path.join(self.upload_root, filename)

    def ingest(self, data, content_type):
        """
        Validate and normalize an uploaded image, write it to the upload
        directory and return its relative URL (e.g. /uploads/<filename>).

        Nothing touches the disk until the image has been fully validated and
        re-encoded.
        """
        self.validate(data, content_type)
        encoded = self.normalize(data)

        filename = self.name_factory()
        destination = os.path.join(self.upload_root, filename)
        try:
            os.makedirs(self.upload_root, exist_ok=True)
            with open(destination, 'xb') as fh:
                fh.write(encoded)
        except FileExistsError:
            raise ReceiptStorageError(f'Receipt file {filename} already exists')
        except OSError as exc:
            if os.path.exists(destination):
                os.remove(destination)
            logger.exception('Failed to write receipt %s', destination)
            raise ReceiptStorageError(f'Failed to store receipt: {exc}')

        logger.info('Stored receipt %s (%d bytes)', filename, len(encoded))
        return f'{self.url_prefix}/{filename}'

    def discard(self, receipt_url):
        """Remove a stored receipt; a missing file is ignored."""
        path = self.path_for(receipt_url)
        try:
            os.remove(path)
        except FileNotFoundError:
            return
        except OSError:
            logger.warning('Could not remove receipt %s', path, exc_info=True)
            return
        logger.info('Discarded receipt %s', path)
