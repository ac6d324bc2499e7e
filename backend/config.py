import os

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


class Config:
    # Storage
    DATABASE_PATH = os.environ.get('DATABASE_PATH', os.path.join(BASE_DIR, 'database.sqlite'))
    UPLOAD_ROOT = os.environ.get('UPLOAD_ROOT', os.path.join(BASE_DIR, 'uploads'))
    RECEIPT_URL_PREFIX = '/uploads'

    # Receipt normalization
    MAX_RECEIPT_BYTES = int(os.environ.get('MAX_RECEIPT_BYTES', 10 * 1024 * 1024))
    RECEIPT_MAX_WIDTH = int(os.environ.get('RECEIPT_MAX_WIDTH', 1200))
    RECEIPT_JPEG_QUALITY = int(os.environ.get('RECEIPT_JPEG_QUALITY', 80))

    # Room for the multipart envelope around the receipt; MAX_CONTENT_LENGTH
    # is MAX_RECEIPT_BYTES plus this unless set explicitly
    MULTIPART_OVERHEAD_BYTES = 1024 * 1024

    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    HOST = os.environ.get('HOST', '0.0.0.0')
    PORT = int(os.environ.get('PORT', 5000))
    DEBUG = os.environ.get('FLASK_DEBUG', 'False').lower() == 'true'
