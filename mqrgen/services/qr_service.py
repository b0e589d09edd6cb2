import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from ..errors import RenderError, ValidationError
from ..records import Account, GeneratedQr
from ..utils.plan_checker import can_generate, ensure_allowed
from ..utils.timeutils import utcnow
from .usage_tracker import increment_qr

logger = logging.getLogger(__name__)

MAX_BULK_ITEMS = 1000
MAX_CONTENT_LENGTH = 2953  # byte-mode capacity of a version 40-L symbol
QR_TYPES = ("url", "text", "email", "phone", "sms", "wifi", "vcard")

Renderer = Callable[[str, dict], str]


@dataclass(frozen=True)
class BulkResult:
    account: Account
    results: List[GeneratedQr]
    errors: List[dict] = field(default_factory=list)
    requested: int = 0

    @property
    def generated(self) -> int:
        return len(self.results)


def _clean_content(content) -> str:
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("Content is required", field="content")
    if len(content) > MAX_CONTENT_LENGTH:
        raise ValidationError(f"Content cannot exceed {MAX_CONTENT_LENGTH} characters", field="content")
    return content.strip()


def _clean_type(qr_type) -> str:
    qr_type = (qr_type or "text").lower()
    if qr_type not in QR_TYPES:
        raise ValidationError(f"type must be one of {', '.join(QR_TYPES)}", field="type")
    return qr_type


def generate_qr(
    accounts,
    render: Renderer,
    account: Account,
    content,
    title: Optional[str] = None,
    qr_type: Optional[str] = None,
    styling: Optional[dict] = None,
    now: Optional[datetime] = None,
):
    """Gate, render and count one QR code. Returns ``(GeneratedQr, account)``."""
    now = now or utcnow()
    content = _clean_content(content)
    qr_type = _clean_type(qr_type)
    ensure_allowed(can_generate(accounts, account, 1, now))

    image = render(content, styling or {})
    account = increment_qr(accounts, account, 1, now)
    return GeneratedQr(title=title or "QR Code", content=content, type=qr_type, image=image, created_at=now), account


def generate_bulk(
    accounts,
    render: Renderer,
    account: Account,
    items,
    styling: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> BulkResult:
    """
    Render a batch of QR codes.

    The whole batch is gated up front; usage grows by the number actually
    rendered. Rows with empty content or content the renderer rejects are
    reported in ``errors`` with their 1-based row number.
    """
    now = now or utcnow()
    if not isinstance(items, list) or not items:
        raise ValidationError("Data array is required", field="data")
    if len(items) > MAX_BULK_ITEMS:
        raise ValidationError(f"Maximum {MAX_BULK_ITEMS} QR codes allowed per request", field="data")
    ensure_allowed(can_generate(accounts, account, len(items), now))

    results, errors = [], []
    for row, item in enumerate(items, start=1):
        if isinstance(item, dict):
            content, title = item.get("content"), item.get("title")
        else:
            content, title = item, None
        try:
            content = _clean_content(content)
            image = render(content, styling or {})
        except (ValidationError, RenderError) as exc:
            errors.append({"row": row, "error": exc.message})
            continue
        results.append(GeneratedQr(
            title=title or f"Bulk QR {row}",
            content=content,
            type="text",
            image=image,
            created_at=now,
        ))

    if results:
        account = increment_qr(accounts, account, len(results), now)
    logger.info(
        "Bulk generation for account %s: %d rendered, %d failed",
        account.id, len(results), len(errors),
    )
    return BulkResult(account=account, results=results, errors=errors, requested=len(items))
