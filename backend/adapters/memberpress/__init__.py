"""MemberPress adapter for membership access control."""

from .memberpress_adapter import (
    MemberPressAdapter,
    MemberPressAPIError,
    MemberPressAuthError,
    MemberPressError,
    MemberPressMember,
    MemberPressMembership,
    MemberPressSubscription,
    MemberPressTransaction,
    MemberPressTransportError,
    create_memberpress_adapter,
)

__all__ = [
    "MemberPressAdapter",
    "MemberPressMember",
    "MemberPressMembership",
    "MemberPressSubscription",
    "MemberPressTransaction",
    "MemberPressError",
    "MemberPressAPIError",
    "MemberPressAuthError",
    "MemberPressTransportError",
    "create_memberpress_adapter",
]
