import logging
import os

from flask import Flask, jsonify, request, send_from_directory
from flask_cors import CORS
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from config import Config
from errors import PayloadTooLargeError, TrackerError
from receipts import ReceiptProcessor, Upload
from service import BillService
from store import Store

logger = logging.getLogger(__name__)


def create_app(overrides=None):
    """
    Build the Flask app, open its store and wire the bill service.

    The store stays open for the life of the app; close it with
    app.extensions['store'].close() on shutdown.
    """
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)
    if not app.config.get('MAX_CONTENT_LENGTH'):
        app.config['MAX_CONTENT_LENGTH'] = app.config['MAX_RECEIPT_BYTES'] + app.config['MULTIPART_OVERHEAD_BYTES']

    # This is for frontend communication
    CORS(app, resources={r'/api/*': {'origins': app.config['CORS_ORIGINS']}})

    os.makedirs(app.config['UPLOAD_ROOT'], exist_ok=True)

    store = Store(app.config['DATABASE_PATH']).open()
    receipts = ReceiptProcessor(
        app.config['UPLOAD_ROOT'],
        max_bytes=app.config['MAX_RECEIPT_BYTES'],
        max_width=app.config['RECEIPT_MAX_WIDTH'],
        quality=app.config['RECEIPT_JPEG_QUALITY'],
        url_prefix=app.config['RECEIPT_URL_PREFIX'],
    )
    app.extensions['store'] = store
    app.extensions['bill_service'] = BillService(store, receipts)

    register_error_handlers(app)
    register_routes(app)
    return app


def get_service(app):
    return app.extensions['bill_service']


def extract_form_payload():
    """Normalize fields from multipart/urlencoded forms or a JSON body."""
    if request.form:
        return request.form.to_dict()
    return request.get_json(silent=True) or {}


def extract_receipt():
    """Return the uploaded 'receipt' file as an Upload, or None if none was attached."""
    file_storage = request.files.get('receipt')
    if not file_storage or not file_storage.filename:
        return None
    return Upload(file_storage.read(), file_storage.mimetype, file_storage.filename)


def register_error_handlers(app):

    @app.errorhandler(TrackerError)
    def handle_tracker_error(error):
        if error.status_code >= 500:
            logger.error('%s on %s %s: %s', type(error).__name__, request.method, request.path, error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(RequestEntityTooLarge)
    def handle_request_too_large(error):
        too_large = PayloadTooLargeError('Upload exceeds the maximum allowed size')
        return jsonify(too_large.to_dict()), too_large.status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        if isinstance(error, HTTPException):
            return jsonify({'error': error.description}), error.code
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return jsonify({'error': 'Internal server error'}), 500


def register_routes(app):

    @app.route('/ping', methods=['GET'])
    def health_check():
        """
        Health check endpoint to verify the API is running
        """
        return jsonify({
            'status': 'healthy',
            'message': 'Payback tracker API is running',
            'version': '1.0.0'
        }), 200

    @app.route('/', methods=['GET'])
    def home():
        """
        Root endpoint with basic API information
        """
        return jsonify({
            'message': 'Welcome to the payback tracker API',
            'description': 'Track a monthly shared bill and who has paid the payer back',
            'endpoints': {
                'health_check': '/ping',
                'members': '/api/members',
                'bills': '/api/bills?month=&year=',
                'summary': '/api/bills/summary?month=&year=',
                'payments': '/api/member_payments',
                'receipts': app.config['RECEIPT_URL_PREFIX'] + '/<filename>'
            }
        }), 200

    @app.route('/uploads/<path:filename>', methods=['GET'])
    def serve_upload(filename):
        """Serve stored receipts as-is."""
        return send_from_directory(app.config['UPLOAD_ROOT'], filename, as_attachment=False)

    # Members

    @app.route('/api/members', methods=['GET'])
    def list_members():
        return jsonify(get_service(app).list_members()), 200

    @app.route('/api/members', methods=['POST'])
    def add_member():
        """
        Add a member to the group. Body: {name, email?}
        """
        data = request.get_json(silent=True)
        member = get_service(app).add_member(data)
        return jsonify(member), 201

    @app.route('/api/members/<int:member_id>', methods=['DELETE'])
    def delete_member(member_id):
        """
        Delete a member along with the bills they paid and every payment tied to them
        """
        removed = get_service(app).delete_member(member_id)
        return jsonify({'success': True, 'removed': removed}), 200

    # Bills

    @app.route('/api/bills', methods=['GET'])
    def get_bill():
        """
        Bill for ?month=&year= with its payments, or null when none was set
        """
        bill = get_service(app).get_bill(request.args.get('month'), request.args.get('year'))
        return jsonify(bill), 200

    @app.route('/api/bills/summary', methods=['GET'])
    def get_bill_summary():
        """
        Split amount and paid/pending status of every member for ?month=&year=
        """
        summary = get_service(app).month_summary(request.args.get('month'), request.args.get('year'))
        return jsonify(summary), 200

    @app.route('/api/bills', methods=['POST'])
    def set_bill():
        """
        Create or update the bill for a month. Fields: month, year, payer_id,
        total_amount and an optional 'receipt' image file.
        """
        bill = get_service(app).set_bill(extract_form_payload(), extract_receipt())
        return jsonify(bill), 200

    # Payments

    @app.route('/api/member_payments', methods=['POST'])
    def record_payment():
        """
        Record (or update) a member's payback. Fields: bill_id, member_id,
        amount and an optional 'receipt' image file.
        """
        payment = get_service(app).record_payment(extract_form_payload(), extract_receipt())
        return jsonify(payment), 200

    @app.route('/api/member_payments/<int:bill_id>/<int:member_id>', methods=['DELETE'])
    def mark_unpaid(bill_id, member_id):
        """
        Mark a member as unpaid by removing their payment row; missing rows are fine
        """
        removed = get_service(app).mark_unpaid(bill_id, member_id)
        return jsonify({'success': True, 'removed': removed}), 200


if __name__ == '__main__':
    logging.basicConfig(
        level=Config.LOG_LEVEL,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )
    app = create_app()
    try:
        app.run(
            host=Config.HOST,
            port=Config.PORT,
            debug=Config.DEBUG
        )
    finally:
        app.extensions['store'].close()
