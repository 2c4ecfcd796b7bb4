"""Booking service tools.

Reads run automatically; creating or changing a booking waits for human
confirmation.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from chatagent.config import Settings
from chatagent.tools.base import Tool, ToolContext
from chatagent.tools.registry import ToolRegistry

LOGGER = logging.getLogger(__name__)

_BOOKING_ITEMS_SCHEMA: dict[str, Any] = {
    "type": "array",
    "description": "Booking items, each with material_Product (material ID) and quantity.",
    "items": {
        "type": "object",
        "properties": {
            "material_Product": {"type": "string"},
            "quantity": {"type": "number"},
        },
        "required": ["material_Product", "quantity"],
    },
}


class BookingApiClient:
    """Authenticated JSON client for the booking OData service."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        auth_header_name: str = "x-approuter-authorization",
        timeout_seconds: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._auth_header_name = auth_header_name
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> BookingApiClient:
        return cls(
            base_url=settings.booking_api_base_url,
            token=settings.booking_api_token,
            auth_header_name=settings.booking_auth_header_name,
            timeout_seconds=settings.request_timeout_seconds,
        )

    async def request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        headers = {"Accept": "application/json"}
        if self._token:
            headers[self._auth_header_name] = self._token
        clean_params = {key: str(value) for key, value in (params or {}).items() if value is not None}

        async with httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout_seconds) as client:
            response = await client.request(
                method,
                f"/{endpoint.lstrip('/')}",
                headers=headers,
                params=clean_params or None,
                json=json_body,
            )
        if response.status_code >= 400:
            raise RuntimeError(f"Booking API request failed with status: {response.status_code}")
        if response.status_code == 204 or not response.content:
            return None
        return response.json()


def _booking_path(booking_id: str, is_active_entity: bool) -> str:
    return f"Bookings(ID={booking_id},IsActiveEntity={str(is_active_entity).lower()})"


class GetBookingInformationTool(Tool):
    name = "getBookingInformation"
    description = "Retrieve booking information from the booking API."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "bookingId": {"type": "string", "description": "The ID of the booking to retrieve."},
            "isActiveEntity": {"type": "boolean", "description": "Whether the booking is active or a draft."},
        },
        "required": ["bookingId", "isActiveEntity"],
        "additionalProperties": False,
    }

    def __init__(self, client: BookingApiClient) -> None:
        self._client = client

    async def run(self, context: ToolContext, **kwargs: Any) -> Any:
        LOGGER.info("Fetching booking %s", kwargs["bookingId"])
        return await self._client.request(
            "GET",
            _booking_path(kwargs["bookingId"], kwargs["isActiveEntity"]),
            params={"$expand": "*"},
        )


class GetAllBookingsTool(Tool):
    name = "getAllBookings"
    description = "Retrieve bookings from the booking API, optionally filtered by status."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "limit": {"type": "integer", "description": "Maximum number of bookings to retrieve."},
            "offset": {"type": "integer", "description": "Number of bookings to skip."},
            "status": {"type": "string", "description": "Filter bookings by status."},
        },
        "additionalProperties": False,
    }

    def __init__(self, client: BookingApiClient) -> None:
        self._client = client

    async def run(self, context: ToolContext, **kwargs: Any) -> Any:
        params: dict[str, Any] = {
            "$top": kwargs.get("limit", 10),
            "$skip": kwargs.get("offset", 0),
            "$expand": "*",
        }
        if kwargs.get("status"):
            params["$filter"] = f"status eq '{kwargs['status']}'"
        return await self._client.request("GET", "Bookings", params=params)


class GetBookingTypesTool(Tool):
    name = "getBookingTypes"
    description = "Retrieve all booking types and their descriptions, to help the user pick one."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {},
        "additionalProperties": False,
    }

    def __init__(self, client: BookingApiClient) -> None:
        self._client = client

    async def run(self, context: ToolContext, **kwargs: Any) -> Any:
        return await self._client.request("GET", "BookingTypes")


class _MasterDataLookupTool(Tool):
    """Paged, searchable read of one master-data entity set.

    Subclasses name the entity set and, optionally, one argument that maps to
    an equality ``$filter`` on an entity field.
    """

    entity_set: str
    noun: str
    filter_argument: str | None = None
    filter_field: str | None = None
    filter_description: str = ""

    def __init__(self, client: BookingApiClient) -> None:
        self._client = client
        properties: dict[str, Any] = {
            "limit": {"type": "integer", "description": f"Maximum number of {self.noun} to retrieve."},
            "offset": {"type": "integer", "description": f"Number of {self.noun} to skip."},
            "search": {"type": "string", "description": f"Search term to filter {self.noun}."},
        }
        if self.filter_argument:
            properties[self.filter_argument] = {"type": "string", "description": self.filter_description}
        self.parameters_schema = {"type": "object", "properties": properties, "additionalProperties": False}

    async def run(self, context: ToolContext, **kwargs: Any) -> Any:
        params: dict[str, Any] = {"$top": kwargs.get("limit", 10), "$skip": kwargs.get("offset", 0)}
        if kwargs.get("search"):
            params["$search"] = kwargs["search"]
        if self.filter_argument and kwargs.get(self.filter_argument):
            params["$filter"] = f"{self.filter_field} eq '{kwargs[self.filter_argument]}'"
        return await self._client.request("GET", self.entity_set, params=params)


class GetCustomersTool(_MasterDataLookupTool):
    name = "getCustomers"
    description = "Retrieve customers (soldTo) that can make bookings."
    entity_set = "Customers"
    noun = "customers"


class GetShipToAddressesTool(_MasterDataLookupTool):
    name = "getShipToAddresses"
    description = "Retrieve shipping addresses (shipTo) that can be used for bookings."
    entity_set = "BusinessPartners"
    noun = "shipping addresses"
    filter_argument = "customerId"
    filter_field = "soldTo_ID"
    filter_description = "Only addresses of this customer (soldTo) ID."


class GetMaterialsTool(_MasterDataLookupTool):
    name = "getMaterials"
    description = "Retrieve materials that can be added to bookings."
    entity_set = "Materials"
    noun = "materials"
    filter_argument = "category"
    filter_field = "category"
    filter_description = "Only materials of this category."


class CreateBookingTool(Tool):
    name = "createBooking"
    description = "Create a new booking in the booking system. Requires user confirmation."
    requires_confirmation = True
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "soldTo_ID": {"type": "string", "description": "ID of the customer making the booking."},
            "shipTo_ID": {"type": "string", "description": "Shipping address ID."},
            "bookingType": {"type": "string", "description": "ID of the booking type."},
            "requestedDeliveryDate": {"type": "string", "description": "Delivery date (YYYY-MM-DD)."},
            "bookingItems": _BOOKING_ITEMS_SCHEMA,
            "isActiveEntity": {"type": "boolean"},
        },
        "required": [
            "soldTo_ID",
            "shipTo_ID",
            "bookingType",
            "requestedDeliveryDate",
            "bookingItems",
            "isActiveEntity",
        ],
        "additionalProperties": False,
    }

    def __init__(self, client: BookingApiClient) -> None:
        self._client = client

    async def run(self, context: ToolContext, **kwargs: Any) -> dict[str, Any]:
        body = {
            "soldTo_ID": kwargs["soldTo_ID"],
            "shipTo_ID": kwargs["shipTo_ID"],
            "type_code": kwargs["bookingType"],
            "requestedDelivery": kwargs["requestedDeliveryDate"],
            "IsActiveEntity": kwargs["isActiveEntity"],
            "items": kwargs["bookingItems"],
        }
        LOGGER.info("Creating booking for customer %s", kwargs["soldTo_ID"])
        created = await self._client.request("POST", "Bookings", json_body=body) or {}
        return {
            "message": f"Booking successfully created for customer ID: {kwargs['soldTo_ID']}",
            "bookingId": created.get("ID") or created.get("id") or "Unknown",
            "details": created,
        }


class UpdateBookingTool(Tool):
    name = "updateBooking"
    description = "Update an existing booking in the booking system. Requires user confirmation."
    requires_confirmation = True
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "bookingId": {"type": "string", "description": "ID of the booking to update."},
            "soldTo_ID": {"type": "string"},
            "shipTo_ID": {"type": "string"},
            "bookingType": {"type": "string"},
            "requestedDeliveryDate": {"type": "string"},
            "bookingItems": _BOOKING_ITEMS_SCHEMA,
            "isActiveEntity": {"type": "boolean"},
        },
        "required": ["bookingId"],
        "additionalProperties": False,
    }

    _FIELD_MAP = {
        "soldTo_ID": "soldTo_ID",
        "shipTo_ID": "shipTo_ID",
        "bookingType": "type_code",
        "requestedDeliveryDate": "requestedDelivery",
        "bookingItems": "items",
    }

    def __init__(self, client: BookingApiClient) -> None:
        self._client = client

    async def run(self, context: ToolContext, **kwargs: Any) -> dict[str, Any]:
        booking_id = kwargs["bookingId"]
        is_active_entity = kwargs.get("isActiveEntity", True)
        changes = {api_name: kwargs[arg] for arg, api_name in self._FIELD_MAP.items() if kwargs.get(arg)}
        if not changes:
            raise ValueError(f"No fields to update for booking {booking_id}")

        await self._client.request("PATCH", _booking_path(booking_id, is_active_entity), json_body=changes)
        return {"message": f"Booking {booking_id} successfully updated", "bookingId": booking_id}


def build_booking_registry(client: BookingApiClient) -> ToolRegistry:
    return ToolRegistry(
        [
            GetBookingInformationTool(client),
            GetAllBookingsTool(client),
            GetBookingTypesTool(client),
            GetCustomersTool(client),
            GetShipToAddressesTool(client),
            GetMaterialsTool(client),
            CreateBookingTool(client),
            UpdateBookingTool(client),
        ]
    )
