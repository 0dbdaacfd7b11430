from __future__ import annotations

import unittest

from partsledger.errors import InvalidQuantity, NotFound
from partsledger.services.barcode_service import assign_barcode, list_barcodes, lookup_barcode
from partsledger.services.catalog_service import deactivate_part
from partsledger.services.inventory_query_service import inventory_by_location
from tests.support import add_location, add_part, make_sessionmaker, stock


class BarcodeServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_sessionmaker()()
        self.part = add_part(self.db)

    def tearDown(self) -> None:
        self.db.close()

    def test_assign_and_lookup_trims_value(self) -> None:
        assign_barcode(self.db, part_id=self.part.id, value=' 0012345678905 ', pack_qty=4, vendor='Acme')
        barcode, part = lookup_barcode(self.db, value='0012345678905\n')
        self.assertEqual(part.id, self.part.id)
        self.assertEqual((barcode.barcode_value, barcode.pack_qty, barcode.vendor), ('0012345678905', 4, 'Acme'))

    def test_reassigning_to_same_part_updates_in_place(self) -> None:
        first = assign_barcode(self.db, part_id=self.part.id, value='ABC-1')
        second = assign_barcode(self.db, part_id=self.part.id, value='ABC-1', pack_qty=6)
        self.assertEqual(first.id, second.id)
        self.assertEqual(second.pack_qty, 6)
        self.assertEqual([b.barcode_value for b in list_barcodes(self.db, part_id=self.part.id)], ['ABC-1'])

    def test_value_belongs_to_one_part(self) -> None:
        other = add_part(self.db, sku='FLT-200')
        assign_barcode(self.db, part_id=self.part.id, value='ABC-1')
        with self.assertRaises(ValueError):
            assign_barcode(self.db, part_id=other.id, value='ABC-1')

    def test_validation(self) -> None:
        with self.assertRaises(ValueError):
            assign_barcode(self.db, part_id=self.part.id, value='   ')
        with self.assertRaises(InvalidQuantity):
            assign_barcode(self.db, part_id=self.part.id, value='ABC-1', pack_qty=0)
        with self.assertRaises(ValueError):
            lookup_barcode(self.db, value='')
        with self.assertRaises(NotFound):
            lookup_barcode(self.db, value='UNKNOWN')

    def test_inactive_part_is_not_found(self) -> None:
        assign_barcode(self.db, part_id=self.part.id, value='ABC-1')
        deactivate_part(self.db, part_id=self.part.id)
        with self.assertRaises(NotFound):
            lookup_barcode(self.db, value='ABC-1')

    def test_stock_by_location_for_scanned_part(self) -> None:
        warehouse = add_location(self.db)
        bay = add_location(self.db, name='Service Bay')
        stock(self.db, warehouse, self.part, 8)
        stock(self.db, bay, self.part, 2)
        rows = inventory_by_location(self.db, part_id=self.part.id)
        self.assertEqual(
            [(row['location_name'], row['on_hand_qty'], row['available_qty']) for row in rows],
            [('Main Warehouse', 8, 8), ('Service Bay', 2, 2)],
        )
        only_bay = inventory_by_location(self.db, part_id=self.part.id, location_id=bay.id)
        self.assertEqual(len(only_bay), 1)


if __name__ == '__main__':
    unittest.main()
