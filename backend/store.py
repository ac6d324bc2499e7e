"""
SQLite storage for members, monthly bills and member paybacks.

Uniqueness and referential rules live in the schema itself; the Store wraps
every write in one explicit transaction so a failure never leaves partial rows.
"""

import logging
import math
import os
import sqlite3
import threading
from contextlib import contextmanager

from errors import ConflictError, StorageError, ValidationError

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS members (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT UNIQUE
);

CREATE TABLE IF NOT EXISTS monthly_bills (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    month INTEGER NOT NULL CHECK (month BETWEEN 1 AND 12),
    year INTEGER NOT NULL,
    payer_id INTEGER NOT NULL,
    total_amount REAL NOT NULL CHECK (total_amount > 0),
    receipt_url TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (payer_id) REFERENCES members (id),
    UNIQUE (month, year)
);

CREATE TABLE IF NOT EXISTS member_payments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    bill_id INTEGER NOT NULL,
    member_id INTEGER NOT NULL,
    amount REAL NOT NULL CHECK (amount > 0),
    receipt_url TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (bill_id) REFERENCES monthly_bills (id),
    FOREIGN KEY (member_id) REFERENCES members (id),
    UNIQUE (bill_id, member_id)
);
"""


def require_int(value, field):
    """Parse a required integer field (form values arrive as strings)."""
    if value is None or (isinstance(value, str) and not value.strip()) or isinstance(value, bool):
        raise ValidationError(f'{field} is required')
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f'{field} must be an integer')
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f'{field} must be an integer')
    # SQLite integers are signed 64-bit
    if not -2 ** 63 <= number < 2 ** 63:
        raise ValidationError(f'{field} is out of range')
    return number


def require_amount(value, field):
    """Parse a required amount; it must be a positive, finite number."""
    if value is None or (isinstance(value, str) and not value.strip()) or isinstance(value, bool):
        raise ValidationError(f'{field} is required')
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be a number')
    if not math.isfinite(amount) or amount <= 0:
        raise ValidationError(f'{field} must be greater than 0')
    return amount


def require_month(value):
    month = require_int(value, 'month')
    if not 1 <= month <= 12:
        raise ValidationError('month must be between 1 and 12')
    return month


def _is_unique_violation(exc):
    return 'UNIQUE constraint failed' in str(exc)


class Store:
    # Member deletion runs these in order inside one transaction
    MEMBER_CASCADE = (
        'DELETE FROM member_payments WHERE member_id = ?',
        'DELETE FROM member_payments WHERE bill_id IN (SELECT id FROM monthly_bills WHERE payer_id = ?)',
        'DELETE FROM monthly_bills WHERE payer_id = ?',
        'DELETE FROM members WHERE id = ?',
    )

    def __init__(self, database_path):
        self.database_path = database_path
        self._conn = None
        self._lock = threading.Lock()

    # Lifecycle

    def open(self):
        if self._conn is not None:
            return self
        if self.database_path != ':memory:':
            directory = os.path.dirname(os.path.abspath(self.database_path))
            os.makedirs(directory, exist_ok=True)
        conn = sqlite3.connect(self.database_path, check_same_thread=False, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute('PRAGMA foreign_keys = ON')
        conn.executescript(SCHEMA)
        self._conn = conn
        logger.info('Opened store at %s', self.database_path)
        return self

    def close(self):
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.info('Closed store at %s', self.database_path)

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _connection(self):
        if self._conn is None:
            raise StorageError('Store is not open')
        return self._conn

    @contextmanager
    def reading(self):
        with self._lock:
            conn = self._connection()
            try:
                yield conn
            except sqlite3.Error as exc:
                raise StorageError(f'Database error: {exc}') from exc

    @contextmanager
    def transaction(self):
        """Run the block as one BEGIN/COMMIT unit; any exception rolls everything back."""
        with self._lock:
            conn = self._connection()
            conn.execute('BEGIN IMMEDIATE')
            try:
                yield conn
                conn.execute('COMMIT')
            except sqlite3.Error as exc:
                if conn.in_transaction:
                    conn.execute('ROLLBACK')
                raise StorageError(f'Database error: {exc}') from exc
            except BaseException:
                if conn.in_transaction:
                    conn.execute('ROLLBACK')
                raise

    # Members

    def list_members(self):
        with self.reading() as conn:
            rows = conn.execute('SELECT id, name, email FROM members ORDER BY id').fetchall()
        return [dict(row) for row in rows]

    def get_member(self, member_id):
        with self.reading() as conn:
            row = conn.execute('SELECT id, name, email FROM members WHERE id = ?', (member_id,)).fetchone()
        return dict(row) if row else None

    def add_member(self, name, email=None):
        if not isinstance(name, str) or not name.strip():
            raise ValidationError('Name is required')
        name = name.strip()
        if email is not None and not isinstance(email, str):
            raise ValidationError('email must be a string')
        email = (email or '').strip().lower() or None

        with self.transaction() as conn:
            try:
                cursor = conn.execute('INSERT INTO members (name, email) VALUES (?, ?)', (name, email))
            except sqlite3.IntegrityError as exc:
                if _is_unique_violation(exc):
                    raise ConflictError(f'Email {email} is already used by another member')
                raise
            member_id = cursor.lastrowid

        logger.info('Added member %s (%s)', member_id, name)
        return {'id': member_id, 'name': name, 'email': email}

    def delete_member(self, member_id):
        """
        Remove a member together with every payment they made, every bill they
        paid and the payments recorded against those bills. An unknown id
        removes nothing.
        """
        member_id = require_int(member_id, 'member_id')
        with self.transaction() as conn:
            removed = [conn.execute(sql, (member_id,)).rowcount for sql in self.MEMBER_CASCADE]

        summary = {
            'payments': removed[0] + removed[1],
            'bills': removed[2],
        }
        logger.info('Deleted member %s with %s payments and %s bills',
                    member_id, summary['payments'], summary['bills'])
        return summary

    # Bills

    def _fetch_bill(self, conn, month, year):
        bill = conn.execute(
            """
            SELECT b.*, m.name AS payer_name
            FROM monthly_bills b
            JOIN members m ON b.payer_id = m.id
            WHERE b.month = ? AND b.year = ?
            """,
            (month, year)
        ).fetchone()
        if not bill:
            return None

        payments = conn.execute(
            """
            SELECT p.*, m.name AS member_name
            FROM member_payments p
            JOIN members m ON p.member_id = m.id
            WHERE p.bill_id = ?
            ORDER BY p.id
            """,
            (bill['id'],)
        ).fetchall()

        result = dict(bill)
        result['payments'] = [dict(row) for row in payments]
        return result

    def get_bill(self, month, year):
        month = require_month(month)
        year = require_int(year, 'year')
        with self.reading() as conn:
            return self._fetch_bill(conn, month, year)

    def get_bill_by_id(self, bill_id):
        with self.reading() as conn:
            row = conn.execute('SELECT * FROM monthly_bills WHERE id = ?', (bill_id,)).fetchone()
        return dict(row) if row else None

    def upsert_bill(self, month, year, payer_id, total_amount, receipt_url=None):
        """
        Insert the bill for (month, year) or, if one exists, replace its payer
        and amount. The receipt is only replaced when a new one is given.
        """
        month = require_month(month)
        year = require_int(year, 'year')
        payer_id = require_int(payer_id, 'payer_id')
        total_amount = require_amount(total_amount, 'total_amount')

        with self.transaction() as conn:
            if not conn.execute('SELECT 1 FROM members WHERE id = ?', (payer_id,)).fetchone():
                raise ValidationError(f'Payer {payer_id} is not a member')
            try:
                conn.execute(
                    'INSERT INTO monthly_bills (month, year, payer_id, total_amount, receipt_url) VALUES (?, ?, ?, ?, ?)',
                    (month, year, payer_id, total_amount, receipt_url)
                )
            except sqlite3.IntegrityError as exc:
                if not _is_unique_violation(exc):
                    raise
                conn.execute(
                    """
                    UPDATE monthly_bills
                    SET payer_id = ?, total_amount = ?, receipt_url = COALESCE(?, receipt_url)
                    WHERE month = ? AND year = ?
                    """,
                    (payer_id, total_amount, receipt_url, month, year)
                )
                # The payer owes nothing on their own bill
                conn.execute(
                    'DELETE FROM member_payments WHERE member_id = ? AND bill_id IN '
                    '(SELECT id FROM monthly_bills WHERE month = ? AND year = ?)',
                    (payer_id, month, year)
                )
            bill = self._fetch_bill(conn, month, year)

        logger.info('Set bill %s for %02d/%s: payer %s, total %.2f',
                    bill['id'], month, year, payer_id, total_amount)
        return bill

    # Payments

    def upsert_payment(self, bill_id, member_id, amount, receipt_url=None):
        bill_id = require_int(bill_id, 'bill_id')
        member_id = require_int(member_id, 'member_id')
        amount = require_amount(amount, 'amount')

        with self.transaction() as conn:
            bill = conn.execute('SELECT payer_id FROM monthly_bills WHERE id = ?', (bill_id,)).fetchone()
            if not bill:
                raise ValidationError(f'Bill {bill_id} does not exist')
            if not conn.execute('SELECT 1 FROM members WHERE id = ?', (member_id,)).fetchone():
                raise ValidationError(f'Member {member_id} does not exist')
            if bill['payer_id'] == member_id:
                raise ValidationError('The payer of a bill cannot pay themselves back')
            try:
                conn.execute(
                    'INSERT INTO member_payments (bill_id, member_id, amount, receipt_url) VALUES (?, ?, ?, ?)',
                    (bill_id, member_id, amount, receipt_url)
                )
            except sqlite3.IntegrityError as exc:
                if not _is_unique_violation(exc):
                    raise
                conn.execute(
                    """
                    UPDATE member_payments
                    SET amount = ?, receipt_url = COALESCE(?, receipt_url)
                    WHERE bill_id = ? AND member_id = ?
                    """,
                    (amount, receipt_url, bill_id, member_id)
                )
            payment = conn.execute(
                """
                SELECT p.*, m.name AS member_name
                FROM member_payments p
                JOIN members m ON p.member_id = m.id
                WHERE p.bill_id = ? AND p.member_id = ?
                """,
                (bill_id, member_id)
            ).fetchone()

        logger.info('Recorded payment of %.2f from member %s on bill %s', amount, member_id, bill_id)
        return dict(payment)

    def delete_payment(self, bill_id, member_id):
        """Remove the payment row if there is one. Returns whether a row was removed."""
        bill_id = require_int(bill_id, 'bill_id')
        member_id = require_int(member_id, 'member_id')
        with self.transaction() as conn:
            cursor = conn.execute(
                'DELETE FROM member_payments WHERE bill_id = ? AND member_id = ?',
                (bill_id, member_id)
            )
        removed = cursor.rowcount > 0
        if removed:
            logger.info('Removed payment of member %s on bill %s', member_id, bill_id)
        return removed
