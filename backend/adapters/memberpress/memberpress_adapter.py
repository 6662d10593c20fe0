"""
MemberPress REST adapter.

Wraps the ``/wp-json/mp/v1`` endpoints the sync engine needs: transaction and
subscription listing, transaction updates, refunds, cancellations, membership
periods and member lookups. All calls authenticate with the static
``MEMBERPRESS-API-KEY`` header.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)

API_KEY_HEADER = "MEMBERPRESS-API-KEY"
PER_PAGE = 100


# Custom Exceptions
class MemberPressError(Exception):
    """Base exception for MemberPress adapter errors."""

    pass


class MemberPressAuthError(MemberPressError):
    """Raised when no API key is configured."""

    pass


class MemberPressTransportError(MemberPressError):
    """Raised when MemberPress cannot be reached (network error, timeout)."""

    pass


class MemberPressAPIError(MemberPressError):
    """Raised when MemberPress answers with a non-success status or unusable body."""

    def __init__(self, message: str, status_code: int | None = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _to_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0.00")


# Dataclasses
@dataclass
class MemberPressTransaction:
    """MemberPress transaction (read view)."""

    id: int
    status: str
    total: Decimal
    created_at: str | None
    expires_at: str | None
    gateway: str
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "MemberPressTransaction":
        """Create transaction from API response data."""
        return cls(
            id=_to_int(data.get("id")),
            status=str(data.get("status") or ""),
            total=_to_decimal(data.get("total", "0.00")),
            created_at=data.get("created_at"),
            expires_at=data.get("expires_at"),
            gateway=str(data.get("gateway") or "unknown"),
            raw=data,
        )


@dataclass
class MemberPressSubscription:
    """MemberPress recurring subscription (read view)."""

    id: int
    status: str
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "MemberPressSubscription":
        """Create subscription from API response data."""
        return cls(
            id=_to_int(data.get("id")),
            status=str(data.get("status") or ""),
            raw=data,
        )


@dataclass
class MemberPressMembership:
    """MemberPress membership product with its billing period."""

    id: int
    title: str
    period_unit: str
    period_count: int

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "MemberPressMembership":
        """
        Create membership from API response data.

        Current MemberPress responses carry ``period`` (count) and
        ``period_type`` (unit, e.g. ``months``); older ones carry ``period``
        as the unit and ``period_count`` as the count.
        """
        if data.get("period_type"):
            unit = str(data["period_type"])
            count = _to_int(data.get("period"), 1)
        else:
            period = data.get("period")
            unit = period if isinstance(period, str) and period.strip() else "month"
            count = _to_int(data.get("period_count"), 1)
        membership_id = _to_int(data.get("id"))
        return cls(
            id=membership_id,
            title=str(data.get("title") or f"Membership #{membership_id}"),
            period_unit=unit,
            period_count=count,
        )


@dataclass
class MemberPressMember:
    """MemberPress member with the ids of their active memberships."""

    id: int
    email: str
    username: str
    active_memberships: list[int] = field(default_factory=list)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "MemberPressMember":
        """Create member from API response data."""
        active = []
        for item in data.get("active_memberships") or []:
            value = item.get("id") if isinstance(item, dict) else item
            membership_id = _to_int(value, -1)
            if membership_id >= 0:
                active.append(membership_id)
        return cls(
            id=_to_int(data.get("id")),
            email=str(data.get("email") or ""),
            username=str(data.get("username") or ""),
            active_memberships=active,
        )


class MemberPressAdapter:
    """
    MemberPress API adapter for membership access control.

    One instance (and one underlying ``httpx.AsyncClient``) is created at
    process start and shared by every request.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        read_timeout: float | None = None,
        write_timeout: float | None = None,
        probe_timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize MemberPress adapter.

        Args:
            base_url: REST root, e.g. https://site/wp-json/mp/v1 (defaults to settings)
            api_key: MemberPress developer API key (defaults to settings)
            read_timeout: Timeout for list/read calls, seconds
            write_timeout: Timeout for refund/cancel/update calls, seconds
            probe_timeout: Timeout for membership and connectivity checks, seconds
            client: Shared HTTP client; one is created when omitted
        """
        self.base_url = (base_url or settings.memberpress_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.memberpress_api_key
        self.read_timeout = read_timeout or settings.memberpress_read_timeout
        self.write_timeout = write_timeout or settings.memberpress_write_timeout
        self.probe_timeout = probe_timeout or settings.memberpress_probe_timeout
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None

        if not self.api_key:
            logger.warning(
                "MemberPress API key not configured. Set memberpress_api_key in settings."
            )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def aclose(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._owns_client:
            await self._client.aclose()

    def _get_headers(self) -> dict[str, str]:
        """Get HTTP headers for API requests."""
        if not self.api_key:
            raise MemberPressAuthError(
                "MemberPress API key not configured. Set memberpress_api_key in settings."
            )

        return {
            "Accept": "application/json",
            API_KEY_HEADER: self.api_key,
        }

    async def _send(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        url = f"{self.base_url}/{endpoint}"
        headers = self._get_headers()

        logger.info(f"Making {method} request to {endpoint}")
        try:
            return await self._client.request(
                method,
                url,
                headers=headers,
                params=params,
                json=data,
                timeout=timeout or self.read_timeout,
            )
        except httpx.RequestError as e:
            logger.error(f"MemberPress request error on {method} {endpoint}: {e}")
            raise MemberPressTransportError(f"Request failed: {e}")

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """
        Make HTTP request to the MemberPress API.

        Args:
            method: HTTP method (GET, POST, PUT)
            endpoint: API endpoint path relative to the REST root
            params: Query string parameters
            data: JSON request body
            timeout: Per-call timeout override, seconds

        Returns:
            Decoded JSON body (None for an empty body)

        Raises:
            MemberPressTransportError: If MemberPress cannot be reached
            MemberPressAPIError: If MemberPress answers with anything but 200
        """
        response = await self._send(method, endpoint, params=params, data=data, timeout=timeout)

        try:
            body = response.json() if response.content else None
        except ValueError:
            body = None

        if response.status_code != 200:
            error_detail = ""
            if isinstance(body, dict):
                error_detail = body.get("message") or body.get("error") or ""
            error_detail = error_detail or f"HTTP {response.status_code}"
            logger.error(f"MemberPress API error on {method} {endpoint}: {error_detail}")
            raise MemberPressAPIError(error_detail, status_code=response.status_code, body=body)

        return body

    async def list_transactions(
        self,
        member_id: int,
        membership_id: int,
        status: str | None = "complete",
    ) -> list[MemberPressTransaction]:
        """
        List a member's transactions for one membership.

        Args:
            member_id: MemberPress member (WordPress user) id
            membership_id: MemberPress membership id
            status: Transaction status filter; None for all

        Returns:
            List of MemberPressTransaction objects (empty when none match)
        """
        params: dict[str, Any] = {
            "member": member_id,
            "membership": membership_id,
            "per_page": PER_PAGE,
        }
        if status:
            params["status"] = status

        response = await self._make_request("GET", "transactions", params=params)
        if not isinstance(response, list):
            return []
        return [
            MemberPressTransaction.from_api_response(item)
            for item in response
            if isinstance(item, dict)
        ]

    async def update_transaction(self, transaction_id: int, **fields: Any) -> dict[str, Any]:
        """
        Update fields (``status``, ``expires_at``) on a transaction.

        Raises:
            MemberPressError: If the update is not accepted
        """
        logger.info(f"Updating transaction {transaction_id}: {sorted(fields)}")
        response = await self._make_request(
            "PUT",
            f"transactions/{transaction_id}",
            data=fields,
            timeout=self.write_timeout,
        )
        return response if isinstance(response, dict) else {}

    async def refund_transaction(
        self,
        transaction_id: int,
        amount: str | None = None,
        send_notification: bool = True,
    ) -> dict[str, Any]:
        """
        Refund a transaction through the MemberPress refund endpoint.

        MemberPress marks the transaction refunded, cancels the linked
        subscription, revokes access, updates its reports and emails the
        member.

        Args:
            transaction_id: Transaction to refund
            amount: Partial refund amount ("25.00"); None refunds in full
            send_notification: Ask MemberPress to email the member

        Returns:
            Refund response body

        Raises:
            MemberPressError: If the refund is rejected or the body is empty
        """
        payload: dict[str, Any] = {"send_notification": send_notification}
        if amount is not None and amount != "":
            payload["amount"] = amount

        logger.info(f"Refunding transaction {transaction_id} (amount={amount or 'full'})")
        response = await self._make_request(
            "POST",
            f"transactions/{transaction_id}/refund",
            data=payload,
            timeout=self.write_timeout,
        )
        if not response:
            raise MemberPressAPIError("Empty refund response", status_code=200)
        return response if isinstance(response, dict) else {"response": response}

    async def list_subscriptions(
        self,
        member_id: int,
        membership_id: int,
        status: str | None = "active",
    ) -> list[MemberPressSubscription]:
        """List a member's subscriptions for one membership."""
        params: dict[str, Any] = {
            "member": member_id,
            "membership": membership_id,
            "per_page": PER_PAGE,
        }
        if status:
            params["status"] = status

        response = await self._make_request("GET", "subscriptions", params=params)
        if not isinstance(response, list):
            return []
        return [
            MemberPressSubscription.from_api_response(item)
            for item in response
            if isinstance(item, dict)
        ]

    async def cancel_subscription(
        self,
        subscription_id: int,
        send_notification: bool = True,
    ) -> dict[str, Any]:
        """
        Cancel a recurring subscription.

        Access stays valid until the end of the paid period; the response
        carries ``status`` and ``expires_at``.

        Raises:
            MemberPressError: If the cancellation is rejected or the body is empty
        """
        logger.info(f"Cancelling subscription {subscription_id}")
        response = await self._make_request(
            "POST",
            f"subscriptions/{subscription_id}/cancel",
            data={"send_notification": send_notification},
            timeout=self.write_timeout,
        )
        if not response:
            raise MemberPressAPIError("Empty cancellation response", status_code=200)
        return response if isinstance(response, dict) else {"response": response}

    async def get_membership(self, membership_id: int) -> MemberPressMembership:
        """Fetch a membership, including its billing period."""
        response = await self._make_request(
            "GET",
            f"memberships/{membership_id}",
            timeout=self.probe_timeout,
        )
        if not isinstance(response, dict):
            raise MemberPressAPIError("Unexpected membership response", status_code=200)
        response.setdefault("id", membership_id)
        return MemberPressMembership.from_api_response(response)

    async def get_membership_name(self, membership_id: int) -> str:
        """Membership title, or ``Membership #<id>`` when it cannot be fetched."""
        try:
            membership = await self.get_membership(membership_id)
        except MemberPressError:
            return f"Membership #{membership_id}"
        return membership.title

    async def get_member(self, member_id: int) -> MemberPressMember:
        """Fetch a member with their active memberships."""
        response = await self._make_request("GET", f"members/{member_id}")
        if not isinstance(response, dict):
            raise MemberPressAPIError("Unexpected member response", status_code=200)
        return MemberPressMember.from_api_response(response)

    async def find_member_by_email(self, email: str) -> MemberPressMember | None:
        """
        Look a member up by email address.

        Returns:
            The member whose email matches case-insensitively, or None
        """
        response = await self._make_request(
            "GET",
            "members",
            params={"search": email, "per_page": PER_PAGE},
        )
        if not isinstance(response, list):
            return None

        wanted = email.strip().lower()
        for item in response:
            if isinstance(item, dict) and str(item.get("email", "")).strip().lower() == wanted:
                return MemberPressMember.from_api_response(item)
        return None

    async def probe(self) -> tuple[bool, bool]:
        """
        Check connectivity and credentials against ``/me``.

        Returns:
            Tuple of (MemberPress reachable, API key accepted)
        """
        if not self.api_key:
            return False, False
        try:
            response = await self._send("GET", "me", timeout=self.probe_timeout)
        except MemberPressTransportError:
            return False, False
        return True, response.status_code == 200


# Factory function for easy instantiation
def create_memberpress_adapter(
    base_url: str | None = None,
    api_key: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> MemberPressAdapter:
    """
    Create a MemberPress adapter instance.

    Args:
        base_url: REST root (defaults to settings)
        api_key: API key (defaults to settings)
        client: Shared HTTP client

    Returns:
        MemberPressAdapter instance
    """
    return MemberPressAdapter(base_url=base_url, api_key=api_key, client=client)
