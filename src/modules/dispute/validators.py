"""Filing validators — category/phase match, description length and evidence limits."""

from __future__ import annotations

from collections.abc import Sequence

from src.config import settings
from src.exceptions import ValidationException
from src.models.enums import DisputeCategory, TransactionKind
from src.modules.dispute.constants import (
    CATEGORIES_BY_KIND,
    IMAGE_CONTENT_TYPES,
    VIDEO_CONTENT_TYPE_PREFIX,
)
from src.modules.dispute.domain import EvidenceFile, TransactionRef


def is_image(content_type: str) -> bool:
    return content_type.lower() in IMAGE_CONTENT_TYPES


def is_video(content_type: str) -> bool:
    return content_type.lower().startswith(VIDEO_CONTENT_TYPE_PREFIX)


def validate_evidence_file(content_type: str, size_bytes: int, field: str = "file") -> list[dict]:
    """Return per-field errors for a single evidence file (empty if acceptable)."""
    if is_image(content_type):
        if size_bytes > settings.dispute_max_image_bytes:
            return [{
                "field": field,
                "message": f"Image exceeds {settings.dispute_max_image_bytes // (1024 * 1024)}MB",
            }]
        return []
    if is_video(content_type):
        if size_bytes > settings.dispute_max_video_bytes:
            return [{
                "field": field,
                "message": f"Video exceeds {settings.dispute_max_video_bytes // (1024 * 1024)}MB",
            }]
        return []
    return [{
        "field": field,
        "message": f"Unsupported evidence type '{content_type}'. Images must be JPG, PNG or WEBP; videos video/*",
    }]


def split_evidence(
    evidence: Sequence[EvidenceFile],
) -> tuple[tuple[EvidenceFile, ...], EvidenceFile | None]:
    """Validate uploaded evidence and split it into images and the optional video.

    Raises :class:`ValidationException` listing every violation.
    """
    details: list[dict] = []
    images: list[EvidenceFile] = []
    videos: list[EvidenceFile] = []

    for index, item in enumerate(evidence):
        field = f"evidence.{index}"
        details.extend(validate_evidence_file(item.content_type, item.size_bytes, field))
        if is_image(item.content_type):
            images.append(item)
        elif is_video(item.content_type):
            videos.append(item)

    if len(images) > settings.dispute_max_evidence_images:
        details.append({
            "field": "evidence",
            "message": f"Maximum {settings.dispute_max_evidence_images} images allowed per dispute",
        })
    if len(videos) > settings.dispute_max_evidence_videos:
        details.append({
            "field": "evidence",
            "message": f"Maximum {settings.dispute_max_evidence_videos} video allowed per dispute",
        })

    if details:
        raise ValidationException("Evidence does not meet the upload limits", details=details)

    return tuple(images), (videos[0] if videos else None)


def validate_category(category: DisputeCategory, transaction: TransactionRef) -> None:
    """Design categories need a customization request; shipping categories need an order."""
    if category in CATEGORIES_BY_KIND[transaction.kind]:
        return
    expected = "an order" if transaction.kind == TransactionKind.CUSTOMIZATION_REQUEST else "a customization request"
    raise ValidationException(
        f"Category '{category.value}' requires {expected}",
        details=[{"field": "category", "message": f"not valid for a {transaction.kind.value}"}],
    )


def validate_description(description: str) -> str:
    """Return the stripped description, requiring the configured minimum length."""
    cleaned = (description or "").strip()
    if len(cleaned) < settings.dispute_description_min_length:
        raise ValidationException(
            f"Description must be at least {settings.dispute_description_min_length} characters",
            details=[{"field": "description", "message": "too short"}],
        )
    return cleaned
