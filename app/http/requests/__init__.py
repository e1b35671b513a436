from app.http.requests.schemas import (
    AssignAwbRequest,
    CancelShipmentRequest,
    ConnectionTestRequest,
    PackageDimensions,
    PickupLocationUpdate,
    ServiceabilityRequest,
    ShippingSettingsUpdate,
)
