"""
ShipRocket courier-aggregator client.

- Auth: POST /auth/login (email/password) -> token, sent as Bearer on every call. Tokens come from the shared TokenCache.
- Reads (serviceability, order details, tracking, pickup locations) use get_with_retry.
- State-changing calls (create order, assign AWB, pickup, label, manifest, cancel) are sent once; a timeout
  raises UnknownOutcomeError so the caller re-syncs instead of retrying.
- ShipRocket sometimes reports failure inside an HTTP 200 (status_code == 0 / status == 0); that is an AggregatorError too.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

import httpx

from app.config import settings
from app.exceptions import AggregatorError, AuthenticationError, ConfigurationError, UnknownOutcomeError
from app.services.http_client import get_with_retry, post_no_retry
from app.services.shiprocket_types import (
    AwbAssignment,
    CourierQuote,
    CreatedOrder,
    OrderDetails,
    PickupLocation,
    PickupResult,
    ServiceabilityResult,
    TrackingEvent,
    TrackingResult,
)
from app.services.shipping_settings import SettingsStore
from app.services.shipping_utils import (
    aggregator_order_id,
    calculate_order_weight,
    calculate_package_dimensions,
    clean_phone_number,
    format_order_date,
    normalize_state,
    split_name,
    truncate_address,
    truncate_city,
)
from app.services.token_cache import TokenCache

logger = logging.getLogger(__name__)


def _as_id(value: Any) -> Any:
    """ShipRocket wants numeric ids; we store them as strings."""
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return value


def _opt_str(value: Any) -> Optional[str]:
    if value is None or value == "" or value == 0:
        return None
    return str(value)


def _to_float(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def extract_error_message(data: Any, fallback: str) -> str:
    """Pull a human-readable message out of the aggregator's various error shapes."""
    if isinstance(data, str) and data.strip():
        return data.strip()
    if not isinstance(data, dict):
        return fallback
    if data.get("message"):
        return str(data["message"])
    if data.get("error"):
        return str(data["error"])
    errors = data.get("errors")
    if isinstance(errors, list) and errors:
        return ", ".join(str(e) for e in errors)
    if isinstance(errors, dict) and errors:
        parts = []
        for field, msgs in errors.items():
            if isinstance(msgs, list):
                parts.extend(f"{field}: {m}" for m in msgs)
            else:
                parts.append(f"{field}: {msgs}")
        return ", ".join(parts)
    return fallback


def parse_quote(raw: dict) -> Optional[CourierQuote]:
    courier_id = _to_int(raw.get("courier_company_id"))
    if courier_id is None:
        return None
    rating = raw.get("rating")
    return CourierQuote(
        courier_id=courier_id,
        courier_name=str(raw.get("courier_name") or ""),
        freight_charge=_to_float(raw.get("freight_charge")),
        cod_charges=_to_float(raw.get("cod_charges")),
        estimated_delivery_days=_opt_str(raw.get("estimated_delivery_days")),
        etd=_opt_str(raw.get("etd")),
        rating=_to_float(rating) if rating is not None else None,
        is_surface=bool(raw.get("is_surface")),
    )


def parse_tracking(data: dict, awb_fallback: str = "") -> TrackingResult:
    tracking = data.get("tracking_data")
    if not isinstance(tracking, dict):
        raise AggregatorError("No tracking data in response", endpoint="track")
    tracks = tracking.get("shipment_track") or []
    track = tracks[0] if tracks and isinstance(tracks[0], dict) else {}
    events = [
        TrackingEvent(
            date=_opt_str(a.get("date")),
            status=_opt_str(a.get("status")),
            activity=_opt_str(a.get("activity")),
            location=_opt_str(a.get("location")),
            status_label=_opt_str(a.get("sr-status-label")),
        )
        for a in (tracking.get("shipment_track_activities") or [])
        if isinstance(a, dict)
    ]
    return TrackingResult(
        awb=str(track.get("awb_code") or awb_fallback),
        courier_name=str(track.get("courier_name") or ""),
        courier_id=_to_int(track.get("courier_company_id")),
        current_status=_opt_str(track.get("current_status")),
        current_status_id=_to_int(tracking.get("shipment_status_id")) or None,
        events=events,
        etd=str(track.get("edd") or tracking.get("etd") or ""),
        delivered_date=_opt_str(track.get("delivered_date")),
        track_url=str(tracking.get("track_url") or ""),
    )


def parse_order_details(body: dict, courier_order_id: str) -> OrderDetails:
    """Order body from /orders/show or one row of /orders; only the first shipment is used."""
    shipments = body.get("shipments") or []
    shipment = shipments[0] if shipments and isinstance(shipments[0], dict) else {}
    return OrderDetails(
        courier_order_id=str(body.get("id") or courier_order_id),
        shipment_id=_opt_str(shipment.get("id")),
        status=_opt_str(shipment.get("status") or body.get("status")),
        status_code=_to_int(shipment.get("status_code") or body.get("status_code")),
        awb_code=_opt_str(shipment.get("awb_code") or shipment.get("awb")),
        courier_id=_to_int(shipment.get("courier_company_id")),
        courier_name=_opt_str(shipment.get("courier")),
    )


class ShipRocketClient:
    """
    Typed wrapper around the ShipRocket external API.
    One instance per request is fine; the token lives in the injected TokenCache.
    """

    def __init__(
        self,
        email: str,
        password: str,
        token_cache: TokenCache,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        on_token_refresh: Optional[Callable[[str, datetime], None]] = None,
    ):
        self.email = (email or "").strip()
        self._password = password or ""
        self.token_cache = token_cache
        self.base_url = (base_url or settings.SHIPROCKET_API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.SHIPROCKET_TIMEOUT_SEC
        self.max_retries = max_retries if max_retries is not None else settings.SHIPROCKET_MAX_RETRIES
        self.transport = transport
        self.on_token_refresh = on_token_refresh

    def __repr__(self) -> str:
        return f"ShipRocketClient(email={self.email!r}, base_url={self.base_url!r})"

    # ---- auth ----

    async def login(self) -> str:
        """POST /auth/login. Raises AuthenticationError on rejected credentials."""
        if not self.email or not self._password:
            raise ConfigurationError("ShipRocket credentials are not configured")
        url = f"{self.base_url}/auth/login"
        try:
            resp = await post_no_retry(
                url,
                json={"email": self.email, "password": self._password},
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
                transport=self.transport,
            )
        except httpx.HTTPError as e:
            logger.warning("ShipRocket login request failed: %s", type(e).__name__)
            raise AggregatorError("Could not reach ShipRocket for login", endpoint="/auth/login") from e
        data = self._json(resp, "/auth/login")
        if resp.status_code >= 400:
            message = extract_error_message(data, f"Authentication failed: {resp.status_code}")
            logger.warning("ShipRocket login rejected status=%s message=%s", resp.status_code, message)
            raise AuthenticationError(message)
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise AuthenticationError("ShipRocket login response did not include a token")
        return str(token)

    async def get_token(self) -> str:
        return await self.token_cache.get_valid_token(self.login, key=self.email, on_refresh=self.on_token_refresh)

    # ---- transport ----

    @staticmethod
    def _json(resp: httpx.Response, endpoint: str) -> Any:
        try:
            return resp.json()
        except ValueError:
            if resp.status_code >= 400:
                return {}
            raise AggregatorError("Malformed response from ShipRocket", endpoint=endpoint, http_status=resp.status_code)

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> dict:
        token = await self.get_token()
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {token}"}
        url = f"{self.base_url}{endpoint}"
        try:
            if method == "GET":
                resp = await get_with_retry(
                    url,
                    params=params,
                    headers=headers,
                    timeout=self.timeout,
                    max_retries=self.max_retries,
                    transport=self.transport,
                )
            else:
                logger.debug("ShipRocket %s %s payload keys=%s", method, endpoint, sorted((json or {}).keys()))
                resp = await post_no_retry(url, json=json, headers=headers, timeout=self.timeout, transport=self.transport)
        except httpx.TimeoutException as e:
            if method != "GET":
                logger.warning("ShipRocket %s %s timed out; outcome unknown", method, endpoint)
                raise UnknownOutcomeError(
                    "ShipRocket did not answer in time; the change may or may not have been applied. Run sync to check.",
                    endpoint=endpoint,
                ) from e
            logger.warning("ShipRocket GET %s timed out", endpoint)
            raise AggregatorError("ShipRocket request timed out", endpoint=endpoint) from e
        except httpx.HTTPError as e:
            logger.warning("ShipRocket %s %s failed: %s", method, endpoint, e)
            raise AggregatorError("Could not reach ShipRocket", endpoint=endpoint) from e

        if resp.status_code == 401:
            # Token revoked or expired early: force a fresh login next time
            self.token_cache.invalidate()
            raise AuthenticationError("ShipRocket session expired or was rejected")

        data = self._json(resp, endpoint)
        if resp.status_code >= 400:
            message = extract_error_message(data, f"API request failed: {resp.status_code}")
            logger.warning("ShipRocket %s %s error status=%s message=%s", method, endpoint, resp.status_code, message)
            raise AggregatorError(message, endpoint=endpoint, http_status=resp.status_code)
        if not isinstance(data, dict):
            raise AggregatorError("Malformed response from ShipRocket", endpoint=endpoint, http_status=resp.status_code)
        if data.get("status_code") == 0 or data.get("status") == 0:
            message = extract_error_message(data, "ShipRocket API returned an error")
            logger.warning("ShipRocket %s %s returned error envelope: %s", method, endpoint, message)
            raise AggregatorError(message, endpoint=endpoint, http_status=resp.status_code)
        return data

    # ---- pickup locations ----

    async def get_pickup_locations(self) -> List[PickupLocation]:
        data = await self._request("GET", "/settings/company/pickup")
        rows = (data.get("data") or {}).get("shipping_address") or []
        locations = []
        for row in rows:
            if not isinstance(row, dict) or not row.get("pickup_location"):
                continue
            locations.append(
                PickupLocation(
                    id=_to_int(row.get("id")),
                    pickup_location=str(row["pickup_location"]),
                    address=_opt_str(row.get("address")),
                    city=_opt_str(row.get("city")),
                    state=_opt_str(row.get("state")),
                    pin_code=_opt_str(row.get("pin_code")),
                    phone=_opt_str(row.get("phone")),
                    email=_opt_str(row.get("email")),
                )
            )
        return locations

    # ---- serviceability ----

    async def check_serviceability(
        self,
        pickup_pincode: str,
        delivery_pincode: str,
        weight_kg: float,
        is_cod: bool = False,
        declared_value: Optional[float] = None,
    ) -> ServiceabilityResult:
        """No couriers for a route is a normal outcome (available=False), not an error."""
        params = {
            "pickup_postcode": pickup_pincode,
            "delivery_postcode": delivery_pincode,
            "weight": str(weight_kg),
            "cod": "1" if is_cod else "0",
        }
        if declared_value:
            params["declared_value"] = str(declared_value)
        data = await self._request("GET", "/courier/serviceability/", params=params)
        body = data.get("data")
        raw = body.get("available_courier_companies") if isinstance(body, dict) else None
        couriers = [q for q in (parse_quote(r) for r in (raw or []) if isinstance(r, dict)) if q is not None]
        return ServiceabilityResult(available=len(couriers) > 0, couriers=couriers)

    # ---- orders ----

    async def create_order(self, payload: dict) -> CreatedOrder:
        data = await self._request("POST", "/orders/create/adhoc", json=payload)
        order_id = _opt_str(data.get("order_id"))
        if not order_id:
            raise AggregatorError(
                extract_error_message(data, "ShipRocket did not return an order id"), endpoint="/orders/create/adhoc"
            )
        return CreatedOrder(
            courier_order_id=order_id,
            courier_shipment_id=_opt_str(data.get("shipment_id")),
            status=_opt_str(data.get("status")),
            awb_code=_opt_str(data.get("awb_code")),
            courier_name=_opt_str(data.get("courier_name")),
        )

    async def get_order_details(self, courier_order_id: str) -> OrderDetails:
        data = await self._request("GET", f"/orders/show/{courier_order_id}")
        body = data.get("data")
        if not isinstance(body, dict):
            raise AggregatorError("Malformed order details response", endpoint="/orders/show")
        return parse_order_details(body, courier_order_id)

    async def find_order_by_channel_id(self, channel_order_id: str) -> Optional[OrderDetails]:
        """
        Look up an aggregator order by the order_id we sent on create.
        Recovers the link after a create whose response never arrived; None when ShipRocket has no such order.
        """
        data = await self._request("GET", "/orders", params={"search": channel_order_id})
        rows = data.get("data") or []
        if not isinstance(rows, list):
            raise AggregatorError("Malformed order list response", endpoint="/orders")
        for row in rows:
            if isinstance(row, dict) and str(row.get("channel_order_id") or "") == channel_order_id and row.get("id"):
                return parse_order_details(row, str(row["id"]))
        return None

    async def cancel_order(self, courier_order_ids: List[str]) -> dict:
        return await self._request("POST", "/orders/cancel", json={"ids": [_as_id(i) for i in courier_order_ids]})

    async def cancel_shipment(self, awb_codes: List[str]) -> dict:
        return await self._request("POST", "/orders/cancel/shipment/awbs", json={"awbs": list(awb_codes)})

    # ---- AWB, pickup, documents ----

    async def generate_awb(self, shipment_id: str, courier_id: Optional[int] = None) -> AwbAssignment:
        body: dict[str, Any] = {"shipment_id": _as_id(shipment_id)}
        if courier_id:
            body["courier_id"] = courier_id
        data = await self._request("POST", "/courier/assign/awb", json=body)
        response = data.get("response")
        assigned = response.get("data") if isinstance(response, dict) else None
        if not isinstance(assigned, dict):
            assigned = data.get("data") if isinstance(data.get("data"), dict) else data
        # A 200 without an AWB is a failure
        if not assigned.get("awb_code"):
            message = extract_error_message(data, "AWB generation failed - no AWB code in response")
            logger.warning("ShipRocket assign AWB returned no awb_code for shipment %s: %s", shipment_id, message)
            raise AggregatorError(message, endpoint="/courier/assign/awb")
        when = assigned.get("assigned_date_time")
        if isinstance(when, dict):
            when = when.get("date")
        return AwbAssignment(
            awb_code=str(assigned["awb_code"]),
            courier_id=_to_int(assigned.get("courier_company_id")) or 0,
            courier_name=str(assigned.get("courier_name") or ""),
            assigned_at=str(when) if when else datetime.now(timezone.utc).isoformat(),
        )

    async def schedule_pickup(self, shipment_ids: List[str]) -> PickupResult:
        data = await self._request("POST", "/courier/generate/pickup", json={"shipment_id": [_as_id(i) for i in shipment_ids]})
        pickup = data.get("response") if isinstance(data.get("response"), dict) else data
        if not pickup.get("pickup_scheduled_date"):
            raise AggregatorError(
                extract_error_message(data, "Failed to schedule pickup - no pickup date in response"),
                endpoint="/courier/generate/pickup",
            )
        return PickupResult(
            scheduled_date=str(pickup["pickup_scheduled_date"]),
            pickup_token=str(pickup.get("pickup_token_number") or ""),
        )

    async def generate_label(self, shipment_ids: List[str]) -> str:
        data = await self._request("POST", "/courier/generate/label", json={"shipment_id": [_as_id(i) for i in shipment_ids]})
        label_url = data.get("label_url")
        if not label_url:
            not_created = data.get("not_created") or []
            if not_created:
                raise AggregatorError(
                    f"Failed to generate label: {', '.join(str(n) for n in not_created)}", endpoint="/courier/generate/label"
                )
            raise AggregatorError(
                extract_error_message(data, "Failed to generate label - no URL in response"), endpoint="/courier/generate/label"
            )
        return str(label_url)

    async def generate_manifest(self, shipment_ids: List[str]) -> str:
        data = await self._request("POST", "/manifests/generate", json={"shipment_id": [_as_id(i) for i in shipment_ids]})
        manifest_url = data.get("manifest_url")
        if not manifest_url:
            raise AggregatorError(
                extract_error_message(data, "Failed to generate manifest - no URL in response"), endpoint="/manifests/generate"
            )
        return str(manifest_url)

    # ---- tracking ----

    async def track_by_awb(self, awb_code: str) -> TrackingResult:
        data = await self._request("GET", f"/courier/track/awb/{awb_code}")
        return parse_tracking(data, awb_fallback=awb_code)

    async def track_by_shipment_id(self, shipment_id: str) -> TrackingResult:
        data = await self._request("GET", f"/courier/track/shipment/{shipment_id}")
        return parse_tracking(data)


def get_shiprocket_client(
    store: SettingsStore,
    token_cache: TokenCache,
    *,
    require_enabled: bool = True,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ShipRocketClient:
    """
    Build a client from the saved settings.
    Seeds the process cache with the token persisted by an earlier process, and persists fresh logins back.
    """
    row = store.require(require_enabled=require_enabled)
    email, password = store.credentials(row)
    if not email or not password:
        raise ConfigurationError("ShipRocket credentials are not configured")
    token, expires_at = store.cached_token(row)
    token_cache.seed(token, expires_at, key=email)
    return ShipRocketClient(email, password, token_cache, transport=transport, on_token_refresh=store.save_token)


def resolve_pickup_location(
    locations: List[PickupLocation], pickup_pincode: Optional[str], configured_name: Optional[str]
) -> Optional[str]:
    """
    Registered location whose pincode matches ours; else the first registered one; else the configured name.
    """
    if locations:
        for loc in locations:
            if pickup_pincode and loc.pin_code == pickup_pincode:
                return loc.pickup_location
        return locations[0].pickup_location
    return configured_name or None


def build_order_payload(
    order: Any,
    items: List[Any],
    *,
    pickup_location: str,
    package: dict,
) -> dict:
    """
    Build the /orders/create/adhoc payload from an Order and its items.
    sub_total is the product value only (total - shipping_charges) and shipping_charges is sent as 0:
    shipping was already collected by the store, so COD must not collect it again.
    package: default length/breadth/height/weight from settings.
    """
    address = order.shipping_address or {}
    first_name, last_name = split_name(address.get("fullName"))
    default_weight = float(package["weight"])
    quantities = [(int(it.quantity or 0), float(it.weight) if it.weight is not None else None) for it in items]
    item_count = sum(q for q, _ in quantities)
    dimensions = calculate_package_dimensions(item_count, package["length"], package["breadth"], package["height"])

    total = float(order.total or 0)
    shipping_charges = float(order.shipping_charges or 0)

    return {
        "order_id": aggregator_order_id(order.id),
        "order_date": format_order_date(order.created_at),
        "pickup_location": pickup_location,
        "billing_customer_name": first_name,
        "billing_last_name": last_name,
        "billing_address": truncate_address(address.get("address")),
        "billing_address_2": truncate_address(address.get("address2")),
        "billing_city": truncate_city(address.get("city")),
        "billing_pincode": str(address.get("pincode") or ""),
        "billing_state": normalize_state(address.get("state")),
        "billing_country": "India",
        "billing_email": address.get("email") or "",
        "billing_phone": clean_phone_number(address.get("phone")),
        "shipping_is_billing": True,
        "order_items": [
            {
                "name": it.name or "Product",
                "sku": (it.sku or it.product_id or "")[:20],
                "units": int(it.quantity or 0),
                "selling_price": float(it.price or 0),
                "discount": 0,
                "tax": 0,
                "hsn": 9503,
            }
            for it in items
        ],
        "payment_method": "COD" if is_cod_order(order) else "Prepaid",
        "sub_total": round(total - shipping_charges, 2),
        "shipping_charges": 0,
        "total_discount": float(order.discount_amount or 0),
        "length": dimensions["length"],
        "breadth": dimensions["breadth"],
        "height": dimensions["height"],
        "weight": calculate_order_weight(quantities, default_weight),
    }


def is_cod_order(order: Any) -> bool:
    return str(order.payment_method or "").lower() == "cod"
