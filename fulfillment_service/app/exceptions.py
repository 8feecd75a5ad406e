from __future__ import annotations

from .models.coupon import CouponReason


class FulfillmentError(Exception):
    """Base exception for all fulfillment-service errors."""


class NotFoundError(FulfillmentError):
    """A referenced entity does not exist."""


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id: str) -> None:
        super().__init__(f"order not found: {order_id}")
        self.order_id = order_id


class PlanNotFoundError(NotFoundError):
    def __init__(self, plan_id: str) -> None:
        super().__init__(f"plan not found: {plan_id}")
        self.plan_id = plan_id


class CredentialNotFoundError(NotFoundError):
    def __init__(self, credential_id: str) -> None:
        super().__init__(f"credential not found: {credential_id}")
        self.credential_id = credential_id


class InvalidTransitionError(FulfillmentError):
    """The order is not in a state that allows the requested transition."""

    def __init__(self, order_id: str, current: str, target: str) -> None:
        super().__init__(
            f"order {order_id} cannot move from {current} to {target}"
        )
        self.order_id = order_id
        self.current = current
        self.target = target


class InvalidOrderError(FulfillmentError):
    """Checkout input cannot form an order (empty cart, inactive plan, ship mismatch...)."""


class CouponRejectedError(FulfillmentError):
    """A coupon code supplied with an order failed validation."""

    def __init__(self, reason: CouponReason) -> None:
        super().__init__(f"coupon rejected: {reason}")
        self.reason = reason


class DuplicateCouponCodeError(FulfillmentError):
    def __init__(self, code: str) -> None:
        super().__init__(f"coupon code already exists: {code}")
        self.code = code


class CredentialInUseError(FulfillmentError):
    """Deleting an assigned credential is not allowed."""

    def __init__(self, credential_id: str) -> None:
        super().__init__(f"credential is assigned and cannot be deleted: {credential_id}")
        self.credential_id = credential_id


class ConsistencyViolationError(FulfillmentError):
    """Order and credential pool disagree about an assignment.

    Internal invariant failure: the transition that detected it is blocked.
    """

    def __init__(self, order_id: str, detail: str) -> None:
        super().__init__(f"consistency violation on order {order_id}: {detail}")
        self.order_id = order_id
        self.detail = detail


class FulfillmentInProgressError(FulfillmentError):
    """Another request currently holds the fulfillment lease for this order."""

    def __init__(self, order_id: str) -> None:
        super().__init__(f"fulfillment already in progress for order {order_id}")
        self.order_id = order_id
