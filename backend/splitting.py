"""
Read-side projection of one month: even split amount and paid/pending status
for every member. Pure functions only; nothing here touches the store.
"""

PAID = 'paid'
PENDING = 'pending'


def compute_split_amount(bill, member_count):
    """Even share of the bill total, or None when there is no bill."""
    if not bill:
        return None
    return bill['total_amount'] / max(member_count, 1)


def member_status(member, bill, split_amount):
    is_payer = bool(bill) and member['id'] == bill['payer_id']
    payment = None
    if bill:
        payment = next((p for p in bill.get('payments', []) if p['member_id'] == member['id']), None)

    is_paid = is_payer or payment is not None
    if is_payer:
        display_amount = None
    elif payment is not None:
        display_amount = payment['amount']
    else:
        display_amount = split_amount

    return {
        'id': member['id'],
        'name': member['name'],
        'email': member.get('email'),
        'is_payer': is_payer,
        'is_paid': is_paid,
        'status': PAID if is_paid else PENDING,
        'display_amount': display_amount,
        'payment': payment,
    }


def build_month_view(members, bill):
    """
    Combine the member list with the bill (or None) for a month.

    The payer always counts as paid; every other member is paid once a
    payment row exists for them on the bill.
    """
    split_amount = compute_split_amount(bill, len(members))
    statuses = [member_status(member, bill, split_amount) for member in members]

    outstanding = sum(
        s['display_amount'] for s in statuses
        if not s['is_paid'] and s['display_amount'] is not None
    )

    return {
        'bill': bill,
        'split_amount': split_amount,
        'members': statuses,
        'paid_count': sum(1 for s in statuses if s['is_paid']),
        'outstanding': outstanding if bill else None,
    }
