import unittest
from datetime import date

from seed_db import seed
from splitting import build_month_view
from store import Store


class SeedTests(unittest.TestCase):

    def test_seed_creates_sample_group_for_given_month(self):
        with Store(':memory:') as store:
            bill = seed(store, today=date(2024, 6, 15))

            self.assertEqual((bill['month'], bill['year']), (6, 2024))
            self.assertEqual(bill['payer_name'], 'Alice')
            self.assertEqual([p['member_name'] for p in bill['payments']], ['Bob'])

            view = build_month_view(store.list_members(), bill)
            self.assertEqual([m['status'] for m in view['members']], ['paid', 'paid', 'pending'])


if __name__ == '__main__':
    unittest.main()
