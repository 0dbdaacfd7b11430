from __future__ import annotations

import unittest
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

from fastapi.testclient import TestClient

from partsledger.db import get_db
from partsledger.main import app
from partsledger.services.scan_bridge_service import ScanBridgeManager
from tests.support import make_sessionmaker

MANAGER = {'X-Principal-Id': 'pm-1', 'X-Principal-Role': 'PARTS_MANAGER'}
TECH = {'X-Principal-Id': 'tech-1', 'X-Principal-Role': 'TECHNICIAN'}
SHOP_MANAGER = {'X-Principal-Id': 'sm-1', 'X-Principal-Role': 'SHOP_MANAGER'}
ADVISOR = {'X-Principal-Id': 'sa-1', 'X-Principal-Role': 'service_advisor'}


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        session_factory = make_sessionmaker()

        def override_get_db():
            db = session_factory()
            try:
                yield db
            finally:
                db.close()

        self._previous_bridge = app.state.scan_bridge
        app.state.scan_bridge = ScanBridgeManager(ttl=timedelta(minutes=30))
        app.dependency_overrides[get_db] = override_get_db
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        app.state.scan_bridge = self._previous_bridge

    def _location(self, name: str = 'Main Warehouse') -> int:
        response = self.client.post('/api/locations', json={'name': name, 'locationType': 'WAREHOUSE'}, headers=MANAGER)
        self.assertEqual(response.status_code, 201)
        return response.json()['id']

    def _part(self, sku: str = 'BRK-100') -> int:
        response = self.client.post(
            '/api/parts',
            json={'sku': sku, 'name': f'Part {sku}', 'defaultCost': '12.50', 'defaultRetailPrice': '30.00'},
            headers=MANAGER,
        )
        self.assertEqual(response.status_code, 201)
        return response.json()['id']

    def _receive(self, location_id: int, part_id: int, qty: int):
        return self.client.post(
            '/api/inventory/receive',
            json={'locationId': location_id, 'partId': part_id, 'qty': qty, 'unitCost': '11.00'},
            headers=MANAGER,
        )


class AccessTests(ApiTestCase):
    def test_health_is_open(self) -> None:
        response = self.client.get('/healthz')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.text, 'ok')

    def test_missing_principal_is_401(self) -> None:
        self.assertEqual(self.client.get('/api/inventory/levels', params={'locationId': 1}).status_code, 401)
        bad_role = {'X-Principal-Id': 'x', 'X-Principal-Role': 'JANITOR'}
        self.assertEqual(self.client.get('/api/inventory/levels', params={'locationId': 1}, headers=bad_role).status_code, 401)

    def test_role_is_enforced(self) -> None:
        response = self.client.post('/api/locations', json={'name': 'Annex'}, headers=TECH)
        self.assertEqual(response.status_code, 403)
        self.assertEqual(self.client.get('/api/inventory/transactions', headers=TECH).status_code, 403)


class InventoryApiTests(ApiTestCase):
    def test_catalog_uses_camel_case(self) -> None:
        response = self.client.post(
            '/api/parts',
            json={'sku': ' flt-9 ', 'name': 'Oil filter', 'defaultCost': '3.10'},
            headers=MANAGER,
        )
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body['sku'], 'FLT-9')
        self.assertEqual(body['defaultCost'], '3.10')
        self.assertIn('defaultRetailPrice', body)

        duplicate = self.client.post('/api/parts', json={'sku': 'FLT-9', 'name': 'Again'}, headers=MANAGER)
        self.assertEqual(duplicate.status_code, 400)
        self.assertEqual(duplicate.json()['error'], 'BAD_REQUEST')

    def test_receive_sell_and_read_back(self) -> None:
        location_id = self._location()
        part_id = self._part()

        received = self._receive(location_id, part_id, 5)
        self.assertEqual(received.status_code, 201)
        self.assertEqual(received.json()['txType'], 'RECEIVE')
        self.assertEqual(received.json()['qtyChange'], 5)
        self.assertEqual(received.json()['performedBy'], 'pm-1')

        sale = self.client.post(
            '/api/inventory/sale',
            json={'locationId': location_id, 'partId': part_id, 'qty': 2, 'referenceId': 'INV-77'},
            headers=ADVISOR,
        )
        self.assertEqual(sale.status_code, 201)
        self.assertEqual(sale.json()['qtyChange'], -2)
        self.assertEqual(sale.json()['referenceType'], 'SALE')

        levels = self.client.get('/api/inventory/levels', params={'locationId': location_id}, headers=TECH).json()
        self.assertEqual(len(levels), 1)
        self.assertEqual((levels[0]['onHandQty'], levels[0]['availableQty'], levels[0]['stockStatus']), (3, 3, 'NORMAL'))

        history = self.client.get('/api/inventory/transactions', params={'partId': part_id}, headers=MANAGER).json()
        self.assertEqual([tx['txType'] for tx in history], ['SALE', 'RECEIVE'])

        replay = self.client.get(
            '/api/inventory/ledger-replay',
            params={'locationId': location_id, 'partId': part_id},
            headers=MANAGER,
        ).json()
        self.assertTrue(replay['consistent'])
        self.assertEqual(replay['onHand'], 3)

    def test_domain_errors_map_to_status_codes(self) -> None:
        location_id = self._location()
        part_id = self._part()
        self._receive(location_id, part_id, 1)

        oversell = self.client.post(
            '/api/inventory/sale',
            json={'locationId': location_id, 'partId': part_id, 'qty': 2},
            headers=MANAGER,
        )
        self.assertEqual(oversell.status_code, 409)
        self.assertEqual(oversell.json()['error'], 'INSUFFICIENT_STOCK')

        zero = self._receive(location_id, part_id, 0)
        self.assertEqual(zero.status_code, 400)
        self.assertEqual(zero.json()['error'], 'INVALID_QUANTITY')

        missing = self._receive(location_id, 9999, 1)
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()['error'], 'NOT_FOUND')

    def test_adjust_reports_no_op(self) -> None:
        location_id = self._location()
        part_id = self._part()
        self._receive(location_id, part_id, 4)
        payload = {'locationId': location_id, 'partId': part_id, 'reasonCode': 'DATA_CORRECTION', 'setToQty': 6}

        first = self.client.post('/api/inventory/adjust', json=payload, headers=MANAGER).json()
        self.assertTrue(first['changed'])
        self.assertEqual(first['transaction']['qtyChange'], 2)

        second = self.client.post('/api/inventory/adjust', json=payload, headers=MANAGER).json()
        self.assertEqual(second, {'changed': False, 'transaction': None})

    def test_consume_for_work_order(self) -> None:
        location_id = self._location()
        part_id = self._part()
        self._receive(location_id, part_id, 5)
        payload = {'locationId': location_id, 'partId': part_id, 'qty': 2, 'workOrderId': ' WO-42 '}

        consumed = self.client.post('/api/inventory/consume', json=payload, headers=TECH)
        self.assertEqual(consumed.status_code, 201)
        body = consumed.json()
        self.assertEqual((body['txType'], body['qtyChange'], body['reservedChange']), ('ISSUE', -2, 0))
        self.assertEqual((body['referenceType'], body['referenceId']), ('WORK_ORDER', 'WO-42'))
        self.assertEqual(body['performedBy'], 'tech-1')

        self.assertEqual(self.client.post('/api/inventory/consume', json=payload, headers=ADVISOR).status_code, 403)
        missing_work_order = dict(payload, workOrderId='  ')
        self.assertEqual(self.client.post('/api/inventory/consume', json=missing_work_order, headers=TECH).status_code, 422)
        too_many = self.client.post('/api/inventory/consume', json=dict(payload, qty=4), headers=TECH)
        self.assertEqual(too_many.status_code, 409)
        self.assertEqual(too_many.json()['error'], 'INSUFFICIENT_STOCK')

        levels = self.client.get('/api/inventory/levels', params={'locationId': location_id}, headers=TECH).json()
        self.assertEqual(levels[0]['onHandQty'], 3)

    def test_stock_settings_drive_alerts(self) -> None:
        location_id = self._location()
        part_id = self._part()
        self._receive(location_id, part_id, 2)

        settings = self.client.put(
            '/api/inventory/settings',
            json={'locationId': location_id, 'partId': part_id, 'minStockLevel': 5, 'binLocation': ' A-3 '},
            headers=MANAGER,
        )
        self.assertEqual(settings.status_code, 200)
        self.assertEqual(settings.json()['binLocation'], 'A-3')

        alerts = self.client.get('/api/inventory/alerts', params={'locationId': location_id}, headers=TECH).json()
        self.assertEqual([row['stockStatus'] for row in alerts], ['LOW'])
        status = self.client.get('/api/inventory/status', params={'locationId': location_id}, headers=TECH).json()
        self.assertEqual((status['totalItems'], status['lowStock'], status['outOfStock']), (1, 1, 0))


class WorkflowApiTests(ApiTestCase):
    def test_work_order_part_line_flow(self) -> None:
        location_id = self._location()
        part_id = self._part()
        self._receive(location_id, part_id, 3)
        base = '/api/work-orders/WO-42/parts'

        created = self.client.post(base, json={'partId': part_id, 'locationId': location_id, 'qtyRequested': 5}, headers=TECH)
        self.assertEqual(created.status_code, 201)
        line = created.json()
        self.assertEqual((line['status'], line['qtyReserved'], line['unitPrice']), ('BACKORDERED', 3, '30.00'))

        over = self.client.post(f"{base}/{line['id']}/issue", json={'qtyToIssue': 4}, headers=TECH)
        self.assertEqual(over.status_code, 400)
        self.assertEqual(over.json()['error'], 'INVALID_QUANTITY')

        issued = self.client.post(f"{base}/{line['id']}/issue", json={'qtyToIssue': 3}, headers=TECH).json()
        self.assertEqual(issued['qtyIssued'], 3)

        cancelled = self.client.post(f"{base}/{line['id']}/cancel", headers=TECH).json()
        self.assertEqual((cancelled['status'], cancelled['qtyRequested']), ('ISSUED', 3))

        listed = self.client.get(base, headers=TECH).json()
        self.assertEqual([item['id'] for item in listed], [line['id']])
        other = self.client.post(f"/api/work-orders/WO-43/parts/{line['id']}/reserve", headers=TECH)
        self.assertEqual(other.status_code, 404)

    def test_failed_send_names_the_line(self) -> None:
        warehouse = self._location()
        bay = self._location('Service Bay')
        pads = self._part('BRK-100')
        filters = self._part('FLT-200')
        self._receive(warehouse, pads, 5)

        created = self.client.post(
            '/api/transfers',
            json={
                'fromLocationId': warehouse,
                'toLocationId': bay,
                'lines': [{'partId': pads, 'qty': 2}, {'partId': filters, 'qty': 1}],
            },
            headers=MANAGER,
        )
        self.assertEqual(created.status_code, 201)
        transfer = created.json()
        self.assertEqual(transfer['status'], 'DRAFT')
        self.assertEqual(len(transfer['lines']), 2)

        sent = self.client.post(f"/api/transfers/{transfer['id']}/send", headers=MANAGER)
        self.assertEqual(sent.status_code, 409)
        body = sent.json()
        self.assertEqual((body['error'], body['reason']), ('TRANSFER_LINE_FAILED', 'INSUFFICIENT_STOCK'))
        self.assertEqual((body['lineNumber'], body['partId']), (2, filters))

        detail = self.client.get(f"/api/transfers/{transfer['id']}", headers=TECH).json()
        self.assertEqual(detail['status'], 'DRAFT')
        levels = self.client.get('/api/inventory/levels', params={'locationId': warehouse}, headers=TECH).json()
        self.assertEqual([row['onHandQty'] for row in levels if row['partId'] == pads], [5])

    def test_transfer_send_and_receive(self) -> None:
        warehouse = self._location()
        bay = self._location('Service Bay')
        pads = self._part()
        self._receive(warehouse, pads, 5)
        transfer = self.client.post(
            '/api/transfers',
            json={'fromLocationId': warehouse, 'toLocationId': bay, 'lines': [{'partId': pads, 'qty': 4}]},
            headers=MANAGER,
        ).json()

        sent = self.client.post(f"/api/transfers/{transfer['id']}/send", headers=MANAGER).json()
        self.assertEqual(sent['status'], 'SENT')
        self.assertEqual(sent['lines'][0]['unitCostAtTime'], '11.00')

        line_id = sent['lines'][0]['id']
        received = self.client.post(
            f"/api/transfers/{transfer['id']}/receive",
            json={'lines': [{'lineId': line_id, 'qtyReceived': 3}]},
            headers=MANAGER,
        ).json()
        self.assertEqual(received['status'], 'RECEIVED')
        self.assertEqual(received['lines'][0]['qtyReceived'], 3)

        listed = self.client.get('/api/transfers', params={'locationId': bay, 'status': 'RECEIVED'}, headers=TECH).json()
        self.assertEqual([item['id'] for item in listed], [transfer['id']])

    def test_cycle_count_flow(self) -> None:
        location_id = self._location()
        part_id = self._part()
        self._receive(location_id, part_id, 8)

        count = self.client.post('/api/cycle-counts', json={'locationId': location_id}, headers=MANAGER).json()
        self.assertEqual(count['status'], 'DRAFT')
        line_id = count['lines'][0]['id']

        counted = self.client.put(
            f"/api/cycle-counts/{count['id']}/lines/{line_id}",
            json={'countedQty': 6},
            headers=TECH,
        ).json()
        self.assertEqual((counted['status'], counted['lines'][0]['varianceQty']), ('COUNTING', -2))

        early = self.client.post(f"/api/cycle-counts/{count['id']}/approve", headers=MANAGER)
        self.assertEqual(early.status_code, 409)
        self.assertEqual(early.json()['error'], 'INVALID_TRANSITION')

        self.client.post(f"/api/cycle-counts/{count['id']}/submit", headers=TECH)
        approved = self.client.post(f"/api/cycle-counts/{count['id']}/approve", headers=MANAGER).json()
        self.assertEqual(approved, {'id': count['id'], 'status': 'APPROVED', 'variancesPosted': 1})

    def test_barcode_lookup(self) -> None:
        location_id = self._location()
        part_id = self._part()
        self._receive(location_id, part_id, 7)

        assigned = self.client.post('/api/barcodes', json={'partId': part_id, 'barcode': '0012345678905', 'packQty': 2}, headers=MANAGER)
        self.assertEqual(assigned.status_code, 201)
        self.assertEqual(assigned.json()['barcodeValue'], '0012345678905')

        found = self.client.get('/api/barcodes/lookup/0012345678905', headers=TECH).json()
        self.assertEqual(found['part']['id'], part_id)
        self.assertEqual(found['barcode']['packQty'], 2)
        self.assertEqual([row['onHandQty'] for row in found['inventoryByLocation']], [7])

        missing = self.client.get('/api/barcodes/lookup/UNKNOWN', headers=TECH)
        self.assertEqual(missing.status_code, 404)

    def test_receiving_ticket_flow(self) -> None:
        location_id = self._location()
        pads = self._part('BRK-100')
        filters = self._part('FLT-200')

        created = self.client.post(
            '/api/receiving',
            json={'locationId': location_id, 'vendorName': 'Acme Parts', 'referenceNumber': 'PO-881'},
            headers=MANAGER,
        )
        self.assertEqual(created.status_code, 201)
        ticket = created.json()
        self.assertEqual((ticket['status'], ticket['lines']), ('DRAFT', []))
        self.assertEqual(self.client.post('/api/receiving', json={'locationId': location_id}, headers=TECH).status_code, 403)

        self.client.post(
            f"/api/receiving/{ticket['id']}/lines",
            json={'partId': pads, 'qtyReceived': 4, 'unitCost': '9.00'},
            headers=MANAGER,
        )
        with_lines = self.client.post(
            f"/api/receiving/{ticket['id']}/lines",
            json={'partId': filters, 'qtyReceived': 2, 'binLocationOverride': 'C-1'},
            headers=MANAGER,
        ).json()
        self.assertEqual([line['unitCost'] for line in with_lines['lines']], ['9.00', '12.50'])

        posted = self.client.post(f"/api/receiving/{ticket['id']}/post", headers=MANAGER)
        self.assertEqual(posted.status_code, 200)
        self.assertEqual((posted.json()['status'], posted.json()['postedBy']), ('POSTED', 'pm-1'))

        again = self.client.post(f"/api/receiving/{ticket['id']}/post", headers=MANAGER)
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()['error'], 'INVALID_TRANSITION')

        levels = self.client.get('/api/inventory/levels', params={'locationId': location_id}, headers=TECH).json()
        self.assertEqual(
            sorted((row['sku'], row['onHandQty'], row['binLocation']) for row in levels),
            [('BRK-100', 4, None), ('FLT-200', 2, 'C-1')],
        )
        history = self.client.get(
            '/api/inventory/transactions',
            params={'referenceType': 'RECEIVING_TICKET', 'referenceId': ticket['ticketNumber']},
            headers=MANAGER,
        ).json()
        self.assertEqual(len(history), 2)

        listed = self.client.get('/api/receiving', params={'locationId': location_id, 'status': 'POSTED'}, headers=TECH).json()
        self.assertEqual([item['id'] for item in listed], [ticket['id']])

    def test_adjustment_document_flow(self) -> None:
        location_id = self._location()
        part_id = self._part()
        self._receive(location_id, part_id, 6)

        drafted = self.client.post(
            '/api/adjustments',
            json={
                'locationId': location_id,
                'partId': part_id,
                'adjustmentType': 'DELTA',
                'deltaQty': -1,
                'reasonCode': 'DAMAGED',
            },
            headers=SHOP_MANAGER,
        )
        self.assertEqual(drafted.status_code, 201)
        adjustment = drafted.json()
        self.assertEqual((adjustment['status'], adjustment['createdBy']), ('DRAFT', 'sm-1'))

        edited = self.client.put(f"/api/adjustments/{adjustment['id']}", json={'deltaQty': -2}, headers=SHOP_MANAGER).json()
        self.assertEqual(edited['deltaQty'], -2)

        self.assertEqual(self.client.post(f"/api/adjustments/{adjustment['id']}/post", headers=SHOP_MANAGER).status_code, 403)
        posted = self.client.post(f"/api/adjustments/{adjustment['id']}/post", headers=MANAGER).json()
        self.assertEqual((posted['status'], posted['qtyChange'], posted['postedBy']), ('POSTED', -2, 'pm-1'))

        levels = self.client.get('/api/inventory/levels', params={'locationId': location_id}, headers=TECH).json()
        self.assertEqual(levels[0]['onHandQty'], 4)
        detail = self.client.get(f"/api/adjustments/{adjustment['id']}", headers=TECH).json()
        self.assertEqual(detail['status'], 'POSTED')

        other = self.client.post(
            '/api/adjustments',
            json={'locationId': location_id, 'partId': part_id, 'adjustmentType': 'DELTA', 'deltaQty': 1, 'reasonCode': 'OTHER'},
            headers=MANAGER,
        )
        self.assertEqual(other.status_code, 400)
        self.assertEqual(other.json()['error'], 'BAD_REQUEST')


class ScanBridgeApiTests(ApiTestCase):
    def _session(self) -> tuple[dict, str]:
        response = self.client.post('/api/scan-bridge/session', headers=TECH)
        self.assertEqual(response.status_code, 201)
        ticket = response.json()
        write_token = parse_qs(urlparse(ticket['mobileUrl']).query)['writeToken'][0]
        return ticket, write_token

    def test_session_requires_principal(self) -> None:
        self.assertEqual(self.client.post('/api/scan-bridge/session').status_code, 401)

    def test_ticket_shape(self) -> None:
        ticket, _ = self._session()
        self.assertEqual(set(ticket), {'sessionId', 'readToken', 'mobileUrl', 'expiresAt'})
        self.assertTrue(ticket['mobileUrl'].startswith('http://testserver/api/scan-bridge/mobile?'))

    def test_forwarded_host_shapes_mobile_url(self) -> None:
        headers = dict(TECH, **{'X-Forwarded-Proto': 'https', 'X-Forwarded-Host': 'parts.example.test'})
        ticket = self.client.post('/api/scan-bridge/session', headers=headers).json()
        self.assertTrue(ticket['mobileUrl'].startswith('https://parts.example.test/api/scan-bridge/mobile?'))

    def test_scan_post_and_close(self) -> None:
        ticket, write_token = self._session()
        scan_url = f"/api/scan-bridge/session/{ticket['sessionId']}/scan"

        accepted = self.client.post(scan_url, json={'writeToken': write_token, 'barcode': ' ABC-1 '})
        self.assertEqual(accepted.status_code, 201)
        self.assertEqual(accepted.json(), {'ok': True, 'sequence': 1})

        wrong = self.client.post(scan_url, json={'writeToken': ticket['readToken'], 'barcode': 'ABC-1'})
        self.assertEqual(wrong.status_code, 403)
        self.assertEqual(wrong.json()['error'], 'INVALID_TOKEN')

        empty = self.client.post(scan_url, json={'writeToken': write_token, 'barcode': '  '})
        self.assertEqual(empty.status_code, 400)

        unknown = self.client.post('/api/scan-bridge/session/nope/scan', json={'writeToken': write_token, 'barcode': 'A'})
        self.assertEqual(unknown.status_code, 404)

        closed = self.client.post(f"/api/scan-bridge/session/{ticket['sessionId']}/close", json={'token': write_token})
        self.assertEqual(closed.status_code, 204)
        again = self.client.post(f"/api/scan-bridge/session/{ticket['sessionId']}/close", json={'token': ticket['readToken']})
        self.assertEqual(again.status_code, 204)

        late = self.client.post(scan_url, json={'writeToken': write_token, 'barcode': 'ABC-2'})
        self.assertEqual(late.status_code, 410)
        self.assertEqual(late.json()['error'], 'SESSION_EXPIRED')

    def test_event_stream_rejections(self) -> None:
        ticket, write_token = self._session()
        events_url = f"/api/scan-bridge/session/{ticket['sessionId']}/events"

        self.assertEqual(self.client.get(events_url, params={'readToken': write_token}).status_code, 403)
        self.assertEqual(self.client.get('/api/scan-bridge/session/nope/events', params={'readToken': 'x'}).status_code, 404)

        self.client.post(f"/api/scan-bridge/session/{ticket['sessionId']}/close", json={'token': ticket['readToken']})
        self.assertEqual(self.client.get(events_url, params={'readToken': ticket['readToken']}).status_code, 410)

    def test_mobile_page(self) -> None:
        ticket, write_token = self._session()
        self.assertEqual(self.client.get('/api/scan-bridge/mobile').status_code, 400)

        page = self.client.get('/api/scan-bridge/mobile', params={'session': ticket['sessionId'], 'writeToken': write_token})
        self.assertEqual(page.status_code, 200)
        self.assertIn('text/html', page.headers['content-type'])
        self.assertIn(ticket['sessionId'], page.text)
        self.assertEqual(page.headers['referrer-policy'], 'no-referrer')
        self.assertEqual(page.headers['cache-control'], 'no-store')
        self.assertEqual(page.headers['x-robots-tag'], 'noindex, nofollow, noarchive')


if __name__ == '__main__':
    unittest.main()
