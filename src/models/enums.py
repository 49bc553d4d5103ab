import enum


# ── Transactions ─────────────────────────────────────────────────────────────


class TransactionKind(str, enum.Enum):
    ORDER = "order"
    CUSTOMIZATION_REQUEST = "customization_request"


# ── Disputes ─────────────────────────────────────────────────────────────────


class DisputeCategory(str, enum.Enum):
    # Design phase: customer vs designer
    DESIGN_GHOSTING = "design_ghosting"
    DESIGN_QUALITY_MISMATCH = "design_quality_mismatch"
    DESIGN_COPYRIGHT_INFRINGEMENT = "design_copyright_infringement"
    # Shipping phase: customer vs shop
    SHIPPING_NOT_RECEIVED = "shipping_not_received"
    SHIPPING_DAMAGED = "shipping_damaged"
    SHIPPING_WRONG_ITEM = "shipping_wrong_item"
    SHIPPING_PRINT_QUALITY = "shipping_print_quality"
    SHIPPING_LATE_DELIVERY = "shipping_late_delivery"
    SHIPPING_INCOMPLETE_ORDER = "shipping_incomplete_order"


class DisputeStage(str, enum.Enum):
    NEGOTIATION = "negotiation"
    ADMIN_REVIEW = "admin_review"
    RESOLVED = "resolved"


class DisputeStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


class OfferStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class OfferDecision(str, enum.Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class ResolutionOutcome(str, enum.Enum):
    REFUNDED = "refunded"
    PARTIAL_REFUND = "partial_refund"
    RELEASED = "released"
    DISMISSED = "dismissed"
    WITHDRAWN = "withdrawn"


class SettlementAction(str, enum.Enum):
    ACCEPT_OFFER = "accept_offer"
    ACCEPT_DISPUTE = "accept_dispute"
    ADMIN_RESOLUTION = "admin_resolution"


# ── Event outbox ─────────────────────────────────────────────────────────────


class EventStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
