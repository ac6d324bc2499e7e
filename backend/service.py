import logging

from errors import TrackerError, ValidationError
from splitting import build_month_view
from store import require_amount, require_int, require_month

logger = logging.getLogger(__name__)


class BillService:
    """
    Request-facing operations over the store.

    Mutations that carry a receipt run in a fixed order: parse required
    fields, check references, ingest the receipt, then write the row. A
    receipt that fails ingestion means no row is written; a row write that
    fails after ingestion discards the stored receipt.
    """

    def __init__(self, store, receipts):
        self.store = store
        self.receipts = receipts

    # Members

    def list_members(self):
        return self.store.list_members()

    def add_member(self, data):
        if not isinstance(data, dict):
            raise ValidationError('Request body must be a JSON object')
        return self.store.add_member(data.get('name'), data.get('email'))

    def delete_member(self, member_id):
        return self.store.delete_member(member_id)

    # Bills

    def get_bill(self, month, year):
        if month in (None, '') or year in (None, ''):
            raise ValidationError('Month and year are required')
        return self.store.get_bill(month, year)

    def month_summary(self, month, year):
        bill = self.get_bill(month, year)
        view = build_month_view(self.store.list_members(), bill)
        view['month'] = require_month(month)
        view['year'] = require_int(year, 'year')
        return view

    def set_bill(self, fields, receipt=None):
        """
        Create or update the bill for fields['month']/fields['year'].
        """
        month = require_month(fields.get('month'))
        year = require_int(fields.get('year'), 'year')
        payer_id = require_int(fields.get('payer_id'), 'payer_id')
        total_amount = require_amount(fields.get('total_amount'), 'total_amount')

        if self.store.get_member(payer_id) is None:
            raise ValidationError(f'Payer {payer_id} is not a member')

        receipt_url = self._ingest(receipt)
        try:
            bill = self.store.upsert_bill(month, year, payer_id, total_amount, receipt_url)
        except Exception:
            self._discard(receipt_url)
            raise
        return bill

    # Payments

    def record_payment(self, fields, receipt=None):
        bill_id = require_int(fields.get('bill_id'), 'bill_id')
        member_id = require_int(fields.get('member_id'), 'member_id')
        amount = require_amount(fields.get('amount'), 'amount')

        bill = self.store.get_bill_by_id(bill_id)
        if bill is None:
            raise ValidationError(f'Bill {bill_id} does not exist')
        if self.store.get_member(member_id) is None:
            raise ValidationError(f'Member {member_id} does not exist')
        if bill['payer_id'] == member_id:
            raise ValidationError('The payer of a bill cannot pay themselves back')

        receipt_url = self._ingest(receipt)
        try:
            payment = self.store.upsert_payment(bill_id, member_id, amount, receipt_url)
        except Exception:
            self._discard(receipt_url)
            raise
        return payment

    def mark_unpaid(self, bill_id, member_id):
        # Drops the row along with its amount and receipt reference
        return self.store.delete_payment(bill_id, member_id)

    # Receipts

    def _ingest(self, receipt):
        if receipt is None:
            return None
        try:
            return self.receipts.ingest(receipt.data, receipt.content_type)
        except TrackerError as exc:
            logger.warning('Rejected receipt %r: %s', receipt.filename, exc)
            raise

    def _discard(self, receipt_url):
        if receipt_url:
            self.receipts.discard(receipt_url)
