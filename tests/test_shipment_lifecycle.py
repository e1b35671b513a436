"""
ShipmentLifecycleManager against the in-memory FakeGateway.
"""
import logging

import pytest
from sqlalchemy.orm import sessionmaker

from app.exceptions import (
    AggregatorError,
    ConfigurationError,
    InvalidStateError,
    NotServiceableError,
    RequiresConfirmationError,
    UnknownOutcomeError,
    ValidationError,
)
from app.models import Notification, Order, OrderStatus
from app.services.notifications import DatabaseNotificationBridge
from app.services.shipment_lifecycle import ShipmentLifecycleManager, shipment_state
from app.services.shipping_settings import SettingsStore
from app.services.shipping_utils import aggregator_order_id
from app.services.shiprocket_types import CreatedOrder, OrderDetails, TrackingResult


@pytest.fixture
def manager(db_session, fake_gateway):
    return ShipmentLifecycleManager(
        db_session, SettingsStore(db_session), lambda: fake_gateway, DatabaseNotificationBridge(db_session)
    )


class TestCreateShipment:
    async def test_payload_sends_product_value_only(self, manager, fake_gateway, shipping_settings, make_order):
        order = make_order(total="1000.00", shipping_charges="100.00", payment_method="cod")
        response = await manager.create_shipment(order.id)

        payload = fake_gateway.last_payload
        assert payload["sub_total"] == 900
        assert payload["shipping_charges"] == 0
        assert payload["payment_method"] == "COD"
        assert payload["pickup_location"] == "Primary"
        assert payload["billing_phone"] == "9876543210"
        assert payload["billing_state"] == "Karnataka"
        assert payload["order_items"][0]["sku"] == "PUZ-01"
        assert len(payload["order_id"]) <= 20 and payload["order_id"].isalnum()

        assert response["success"] is True
        assert response["shiprocket"] == {
            "orderId": "SR1001",
            "shipmentId": "SH2001",
            "status": "NEW",
            "awbCode": None,
            "courierName": None,
        }
        assert response["autoAwb"] is None
        assert order.status == OrderStatus.CONFIRMED
        assert shipment_state(order) == "ORDER_CREATED"

    async def test_second_create_rejected_without_gateway_call(self, manager, fake_gateway, shipping_settings, make_order):
        order = make_order()
        await manager.create_shipment(order.id)
        with pytest.raises(InvalidStateError):
            await manager.create_shipment(order.id)
        assert fake_gateway.called("create_order") == 1

    async def test_shipped_order_rejected(self, manager, fake_gateway, shipping_settings, make_order):
        order = make_order(status=OrderStatus.SHIPPED)
        with pytest.raises(InvalidStateError):
            await manager.create_shipment(order.id)
        assert fake_gateway.calls == []

    async def test_disabled_integration(self, manager, db_session, shipping_settings, make_order):
        shipping_settings.enabled = False
        db_session.commit()
        with pytest.raises(ConfigurationError):
            await manager.create_shipment(make_order().id)

    async def test_missing_shipment_id_enriched_from_details(self, manager, fake_gateway, shipping_settings, make_order):
        fake_gateway.created = fake_gateway.created.copy(update={"courier_shipment_id": None})
        fake_gateway.details = fake_gateway.details.copy(update={"shipment_id": "SH9"})
        order = make_order()
        response = await manager.create_shipment(order.id)
        assert response["shiprocket"]["shipmentId"] == "SH9"
        assert fake_gateway.called("get_order_details") == 1

    async def test_awb_without_shipment_is_logged_not_linked(self, manager, fake_gateway, shipping_settings, make_order, caplog):
        fake_gateway.created = CreatedOrder(courier_order_id="SR1001", courier_shipment_id=None, status="NEW", awb_code="AWB9")
        fake_gateway.details = fake_gateway.details.copy(update={"shipment_id": None})
        order = make_order()
        with caplog.at_level(logging.WARNING, logger="app.services.shipment_lifecycle"):
            response = await manager.create_shipment(order.id)
        assert order.awb_code is None
        assert "warning" in response
        assert any("AWB9" in record.getMessage() for record in caplog.records)

    async def test_pickup_location_fallback_to_configured_name(self, manager, fake_gateway, shipping_settings, make_order):
        fake_gateway.fail["get_pickup_locations"] = AggregatorError("down")
        order = make_order()
        await manager.create_shipment(order.id)
        assert fake_gateway.last_payload["pickup_location"] == "Primary"

    async def test_auto_assign_picks_cheapest(self, manager, db_session, fake_gateway, shipping_settings, make_order):
        shipping_settings.auto_assign_courier = True
        db_session.commit()
        order = make_order(payment_method="cod")
        response = await manager.create_shipment(order.id)
        assert response["autoAwb"]["awbCode"] == "AWB0001"
        assert ("generate_awb", ("SH2001", 1)) in fake_gateway.calls  # 120 < 130 for COD
        assert order.status == OrderStatus.PROCESSING

    async def test_auto_assign_prefers_configured_courier(self, manager, db_session, fake_gateway, shipping_settings, make_order):
        shipping_settings.auto_assign_courier = True
        shipping_settings.preferred_courier_id = 2
        db_session.commit()
        await manager.create_shipment(make_order().id)
        assert ("generate_awb", ("SH2001", 2)) in fake_gateway.calls

    async def test_auto_assign_failure_is_partial_success(self, manager, db_session, fake_gateway, shipping_settings, make_order):
        shipping_settings.auto_assign_courier = True
        db_session.commit()
        fake_gateway.fail["generate_awb"] = AggregatorError("Courier not serviceable")
        order = make_order()
        response = await manager.create_shipment(order.id)
        assert response["success"] is True
        assert response["shiprocket"]["orderId"] == "SR1001"
        assert "error" in response["autoAwb"]
        assert order.courier_order_id == "SR1001"
        assert order.awb_code is None

    async def test_rate_shopping_failure_lets_aggregator_choose(self, manager, db_session, fake_gateway, shipping_settings, make_order):
        shipping_settings.auto_assign_courier = True
        db_session.commit()
        fake_gateway.fail["check_serviceability"] = AggregatorError("timeout")
        await manager.create_shipment(make_order().id)
        assert ("generate_awb", ("SH2001", None)) in fake_gateway.calls


class TestAssignAwb:
    async def test_second_assignment_rejected_and_awb_unchanged(self, manager, shipping_settings, make_order):
        order = make_order(status=OrderStatus.CONFIRMED, courier_order_id="SR1", courier_shipment_id="SH1", courier_status="NEW")
        first = await manager.assign_awb(order.id, courier_id=1)
        with pytest.raises(InvalidStateError) as exc:
            await manager.assign_awb(order.id, courier_id=2)
        assert exc.value.extra["awbCode"] == first["awb"]["code"]
        assert order.awb_code == first["awb"]["code"]
        assert order.status == OrderStatus.PROCESSING
        assert order.courier_status == "AWB_ASSIGNED"

    async def test_select_cheapest(self, manager, fake_gateway, shipping_settings, make_order):
        order = make_order(courier_order_id="SR1", courier_shipment_id="SH1", payment_method="prepaid")
        await manager.assign_awb(order.id, select_cheapest_courier=True)
        assert ("generate_awb", ("SH1", 2)) in fake_gateway.calls  # 90 < 100 when prepaid

    async def test_select_cheapest_without_couriers(self, manager, fake_gateway, shipping_settings, make_order):
        fake_gateway.quotes = []
        order = make_order(courier_order_id="SR1", courier_shipment_id="SH1")
        with pytest.raises(NotServiceableError):
            await manager.assign_awb(order.id, select_cheapest_courier=True)

    async def test_requires_shipment(self, manager, fake_gateway, shipping_settings, make_order):
        with pytest.raises(InvalidStateError):
            await manager.assign_awb(make_order().id, courier_id=1)
        assert fake_gateway.calls == []

    async def test_notifies_customer(self, manager, db_session, shipping_settings, make_order):
        order = make_order(courier_order_id="SR1", courier_shipment_id="SH1")
        await manager.assign_awb(order.id, courier_id=1)
        titles = [n.title for n in db_session.query(Notification).filter(Notification.order_id == order.id)]
        assert titles == ["Courier Assigned"]

    async def test_auto_pickup_after_awb(self, manager, db_session, fake_gateway, shipping_settings, make_order):
        shipping_settings.auto_schedule_pickup = True
        db_session.commit()
        order = make_order(courier_order_id="SR1", courier_shipment_id="SH1")
        response = await manager.assign_awb(order.id, courier_id=1)
        assert response["autoPickup"]["scheduledDate"] == "2026-10-19"
        assert order.status == OrderStatus.SHIPPED

    async def test_auto_pickup_failure_is_nested(self, manager, db_session, fake_gateway, shipping_settings, make_order):
        shipping_settings.auto_schedule_pickup = True
        db_session.commit()
        fake_gateway.fail["schedule_pickup"] = AggregatorError("No pickup slot")
        order = make_order(courier_order_id="SR1", courier_shipment_id="SH1")
        response = await manager.assign_awb(order.id, courier_id=1)
        assert response["success"] is True
        assert response["autoPickup"] == {"error": "No pickup slot"}
        assert order.awb_code == "AWB0001"


class TestPickupAndDocuments:
    async def test_schedule_pickup(self, manager, shipping_settings, make_order):
        order = make_order(status=OrderStatus.PROCESSING, courier_order_id="SR1", courier_shipment_id="SH1", awb_code="AWB1")
        response = await manager.schedule_pickup(order.id)
        assert response["pickup"] == {"scheduledDate": "2026-10-19", "tokenNumber": "PK123"}
        assert order.courier_status == "PICKUP_SCHEDULED"
        assert order.status == OrderStatus.SHIPPED
        assert shipment_state(order) == "PICKUP_SCHEDULED"

        with pytest.raises(InvalidStateError):
            await manager.schedule_pickup(order.id)

    async def test_pickup_requires_awb(self, manager, shipping_settings, make_order):
        order = make_order(courier_order_id="SR1", courier_shipment_id="SH1")
        with pytest.raises(InvalidStateError):
            await manager.schedule_pickup(order.id)

    async def test_pickup_blocked_for_cancelled(self, manager, shipping_settings, make_order):
        order = make_order(courier_order_id="SR1", courier_shipment_id="SH1", awb_code="AWB1", courier_status="CANCELED")
        with pytest.raises(InvalidStateError):
            await manager.schedule_pickup(order.id)

    async def test_label_cached_then_regenerated(self, manager, fake_gateway, shipping_settings, make_order):
        order = make_order(courier_order_id="SR1", courier_shipment_id="SH1", awb_code="AWB1")
        first = await manager.get_label(order.id)
        second = await manager.get_label(order.id)
        assert first["cached"] is False and second["cached"] is True
        assert fake_gateway.called("generate_label") == 1
        await manager.regenerate_label(order.id)
        assert fake_gateway.called("generate_label") == 2

    async def test_manifest(self, manager, shipping_settings, make_order):
        order = make_order(courier_order_id="SR1", courier_shipment_id="SH1", awb_code="AWB1")
        response = await manager.generate_manifest(order.id)
        assert response["manifestUrl"].endswith("SH1.pdf")


class TestCancel:
    async def test_dangerous_state_needs_force(self, manager, fake_gateway, shipping_settings, make_order):
        order = make_order(
            status=OrderStatus.SHIPPED, courier_order_id="SR1", courier_shipment_id="SH1", awb_code="AWB1", courier_status="IN_TRANSIT"
        )
        with pytest.raises(RequiresConfirmationError) as exc:
            await manager.cancel(order.id, mode="order")
        assert exc.value.status_code == 409
        assert exc.value.extra == {"requiresConfirmation": True, "currentStatus": "IN_TRANSIT"}
        assert fake_gateway.called("cancel_order") == 0

        response = await manager.cancel(order.id, mode="order", force=True)
        assert response["success"] is True
        assert order.status == OrderStatus.CANCELLED
        assert order.courier_status == "CANCELLED"

    async def test_delivered_cannot_be_cancelled(self, manager, shipping_settings, make_order):
        order = make_order(status=OrderStatus.DELIVERED, courier_order_id="SR1", awb_code="AWB1", courier_status="DELIVERED")
        with pytest.raises(InvalidStateError):
            await manager.cancel(order.id, mode="order", force=True)

    async def test_already_cancelled(self, manager, shipping_settings, make_order):
        order = make_order(courier_order_id="SR1", courier_status="CANCELLED")
        with pytest.raises(InvalidStateError):
            await manager.cancel(order.id)

    async def test_unknown_mode(self, manager, make_order):
        with pytest.raises(ValidationError):
            await manager.cancel(make_order().id, mode="everything")

    async def test_trackless_read_keeps_delivered_terminal(self, manager, fake_gateway, shipping_settings, make_order):
        # AWB answered with no scans: no status id, no status text
        fake_gateway.tracking = TrackingResult(awb="AWB1")
        order = make_order(status=OrderStatus.DELIVERED, courier_order_id="SR1", courier_shipment_id="SH1", awb_code="AWB1", courier_status="DELIVERED")
        await manager.track(order.id)
        assert order.courier_status == "DELIVERED"
        with pytest.raises(InvalidStateError):
            await manager.cancel(order.id, mode="order")
        assert fake_gateway.called("cancel_order") == 0

    async def test_trackless_read_keeps_cancel_guard(self, manager, fake_gateway, shipping_settings, make_order):
        fake_gateway.tracking = TrackingResult(awb="AWB1")
        order = make_order(status=OrderStatus.SHIPPED, courier_order_id="SR1", courier_shipment_id="SH1", awb_code="AWB1", courier_status="IN_TRANSIT")
        await manager.customer_tracking(order)
        assert order.courier_status == "IN_TRANSIT"
        with pytest.raises(RequiresConfirmationError):
            await manager.cancel(order.id, mode="shipment")
        assert fake_gateway.called("cancel_shipment") == 0

    async def test_shipment_cancel_loses_to_concurrent_awb(self, manager, db_session, fake_gateway, shipping_settings, make_order):
        order = make_order(
            status=OrderStatus.PROCESSING, courier_order_id="SR1", courier_shipment_id="SH1", awb_code="AWB-A", courier_status="AWB_ASSIGNED"
        )
        other = sessionmaker(bind=db_session.get_bind())()
        other.query(Order).filter(Order.id == order.id).update({Order.awb_code: "AWB-B"}, synchronize_session=False)
        other.commit()
        other.close()

        with pytest.raises(InvalidStateError) as exc:
            await manager.cancel(order.id, mode="shipment")
        assert exc.value.extra["awbCode"] == "AWB-B"
        assert order.awb_code == "AWB-B"
        assert order.courier_status == "AWB_ASSIGNED"
        assert db_session.query(Notification).filter(Notification.order_id == order.id).count() == 0

    async def test_shipment_cancel_allows_reassignment(self, manager, fake_gateway, shipping_settings, make_order):
        order = make_order(
            status=OrderStatus.SHIPPED,
            courier_order_id="SR1",
            courier_shipment_id="SH1",
            awb_code="AWB-OLD",
            courier_name="Delhivery",
            courier_status="PICKUP_SCHEDULED",
            pickup_token="PK1",
            label_url="https://labels/old.pdf",
        )
        response = await manager.cancel(order.id, mode="shipment")
        assert response["cancelledAwb"] == "AWB-OLD"
        assert order.awb_code is None
        assert order.courier_status == "NEW"
        assert order.pickup_token is None
        assert order.label_url is None
        assert order.courier_order_id == "SR1"
        assert order.status == OrderStatus.CONFIRMED

        reassigned = await manager.assign_awb(order.id, courier_id=2)
        assert reassigned["success"] is True
        assert order.awb_code == reassigned["awb"]["code"]


class TestSyncAndTrack:
    async def test_sync_adopts_awb_from_details(self, manager, fake_gateway, shipping_settings, make_order):
        fake_gateway.details = fake_gateway.details.copy(update={"awb_code": "AWB77", "status": "AWB ASSIGNED"})
        order = make_order(status=OrderStatus.PROCESSING, courier_order_id="SR1001", courier_shipment_id="SH2001")
        response = await manager.sync(order.id)
        assert response["updated"] is True
        assert order.awb_code == "AWB77"
        assert order.courier_status == "AWB_ASSIGNED"
        assert order.last_synced_at is not None

    async def test_sync_cancelled_details_do_not_link_awb(self, manager, fake_gateway, shipping_settings, make_order):
        fake_gateway.details = fake_gateway.details.copy(update={"awb_code": "AWB77", "status": "CANCELED"})
        order = make_order(status=OrderStatus.PROCESSING, courier_order_id="SR1001", courier_shipment_id="SH2001")
        await manager.sync(order.id)
        assert order.awb_code is None
        assert order.courier_status == "CANCELLED"
        assert order.status == OrderStatus.CANCELLED

    async def test_sync_after_shipment_cancel_keeps_awb_released(self, manager, fake_gateway, shipping_settings, make_order):
        order = make_order(
            status=OrderStatus.PROCESSING,
            courier_order_id="SR1001",
            courier_shipment_id="SH2001",
            awb_code="AWB-OLD",
            courier_status="AWB_ASSIGNED",
        )
        await manager.cancel(order.id, mode="shipment")
        # ShipRocket order details still report the released AWB
        fake_gateway.details = fake_gateway.details.copy(update={"awb_code": "AWB-OLD", "status": "AWB ASSIGNED"})

        await manager.sync(order.id)
        assert order.awb_code is None
        assert order.courier_status == "NEW"
        assert order.cancelled_awb_code == "AWB-OLD"

        reassigned = await manager.assign_awb(order.id, courier_id=2)
        assert reassigned["success"] is True
        assert order.awb_code == reassigned["awb"]["code"]

    async def test_sync_links_order_after_create_timed_out(self, manager, fake_gateway, shipping_settings, make_order):
        order = make_order()
        fake_gateway.fail["create_order"] = UnknownOutcomeError("ShipRocket did not answer in time", endpoint="/orders/create/adhoc")
        with pytest.raises(UnknownOutcomeError):
            await manager.create_shipment(order.id)
        assert order.courier_order_id is None

        del fake_gateway.fail["create_order"]
        fake_gateway.channel_orders[aggregator_order_id(order.id)] = OrderDetails(
            courier_order_id="SR5005", shipment_id="SH6006", status="NEW"
        )
        response = await manager.sync(order.id)
        assert response["updated"] is True
        assert order.courier_order_id == "SR5005"
        assert order.courier_shipment_id == "SH6006"
        assert order.status == OrderStatus.CONFIRMED
        assert fake_gateway.calls[-1] == ("find_order_by_channel_id", (aggregator_order_id(order.id),))

        with pytest.raises(InvalidStateError):
            await manager.create_shipment(order.id)
        assert fake_gateway.called("create_order") == 1

    async def test_sync_without_remote_order(self, manager, fake_gateway, shipping_settings, make_order):
        order = make_order()
        with pytest.raises(InvalidStateError):
            await manager.sync(order.id)
        assert order.courier_order_id is None
        assert fake_gateway.called("get_order_details") == 0

    async def test_sync_without_changes(self, manager, shipping_settings, make_order):
        order = make_order(courier_order_id="SR1001", courier_shipment_id="SH2001", courier_status="NEW")
        response = await manager.sync(order.id)
        assert response["updated"] is False

    async def test_track_persists_and_moves_status(self, manager, shipping_settings, make_order):
        order = make_order(status=OrderStatus.PROCESSING, courier_order_id="SR1", courier_shipment_id="SH1", awb_code="AWB1")
        response = await manager.track(order.id)
        assert response["tracking"]["awb"] == "AWB1"
        assert response["tracking"]["statusLabel"] == "IN_TRANSIT"
        assert response["tracking"]["orderStatus"] == "shipped"
        assert order.estimated_delivery_date == "2026-10-21"
        assert order.tracking_url == "https://shiprocket.co/tracking/AWB"

    async def test_customer_tracking_degrades_to_cached(self, manager, fake_gateway, shipping_settings, make_order):
        fake_gateway.fail["track_by_awb"] = AggregatorError("ShipRocket down")
        order = make_order(
            status=OrderStatus.SHIPPED, courier_order_id="SR1", awb_code="AWB1", courier_status="IN_TRANSIT",
            courier_name="Delhivery", estimated_delivery_date="2026-10-22",
        )
        response = await manager.customer_tracking(order)
        assert response["success"] is True
        tracking = response["tracking"]
        assert tracking["live"] is False
        assert tracking["statusLabel"] == "In Transit"
        assert tracking["estimatedDelivery"] == "2026-10-22"

    async def test_customer_tracking_without_awb(self, manager, make_order):
        order = make_order()
        response = await manager.customer_tracking(order)
        assert response["tracking"]["hasShipment"] is False
        assert response["tracking"]["message"] == "Shipment not yet created"


class TestServiceability:
    async def test_public_check(self, manager, shipping_settings):
        response = await manager.check_serviceability("560001", is_cod=True)
        assert response["available"] is True
        assert response["cheapest"]["id"] == 1
        assert response["fastest"]["id"] == 2
        assert response["fastest"]["deliveryText"] == "Express Delivery (1-2 days)"

    async def test_invalid_pincode(self, manager, fake_gateway):
        with pytest.raises(ValidationError):
            await manager.check_serviceability("12")
        assert fake_gateway.calls == []

    async def test_no_couriers(self, manager, fake_gateway, shipping_settings):
        fake_gateway.quotes = []
        response = await manager.check_serviceability("560001")
        assert response["available"] is False
        assert response["couriers"] == []


async def test_concurrent_writer_loses_conditional_update(manager, db_session, fake_gateway, shipping_settings, make_order):
    order = make_order(courier_order_id="SR1", courier_shipment_id="SH1")
    # Another process assigns an AWB after we loaded the order
    other = sessionmaker(bind=db_session.get_bind())()
    other.query(Order).filter(Order.id == order.id).update({Order.awb_code: "AWB-OTHER"}, synchronize_session=False)
    other.commit()
    other.close()
    assert order.awb_code is None  # our view is stale

    with pytest.raises(InvalidStateError) as exc:
        await manager.assign_awb(order.id, courier_id=1)
    assert exc.value.extra["awbCode"] == "AWB-OTHER"
    assert order.awb_code == "AWB-OTHER"
    assert fake_gateway.called("generate_awb") == 1
