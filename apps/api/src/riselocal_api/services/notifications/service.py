"""High-level notification service for redemption emails."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from riselocal_api.core.settings import get_settings
from riselocal_api.domain.redemptions import RedeemedRedemption, VerifiedRedemption
from riselocal_api.models.deal import Deal
from riselocal_api.models.user import User
from riselocal_api.models.vendor import Vendor
from riselocal_api.observability.redemptions import get_redemption_store

from .backend import EmailBackend, InMemoryEmailBackend, SMTPEmailBackend
from .templates import RenderedTemplate, render_redemption_verified, render_vendor_redemption_alert

# Scheduled sends outlive the per-request service instance.
_scheduled_deliveries: set[asyncio.Task[None]] = set()


@dataclass
class NotificationEvent:
    """Representation of a notification that was sent."""

    recipient: str
    subject: str
    body_text: str
    body_html: str | None
    event_type: str
    metadata: dict[str, Any]


@dataclass
class _Contact:
    email: str
    display_name: Optional[str]


@dataclass
class _DealContext:
    deal_title: str
    vendor_name: str
    vendor_email: Optional[str]


class NotificationService:
    """Coordinates notification delivery via pluggable backends.

    Callers invoke this only after the redemption is committed. Recipients and
    templates are resolved inline. With ``deliver_in_background`` the backend
    send is scheduled on the running loop and its outcome is only logged and
    counted; otherwise delivery errors propagate to the caller.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        backend: Optional[EmailBackend] = None,
        *,
        deliver_in_background: bool = False,
    ) -> None:
        self._db = db_session
        self._backend = backend or self._build_default_backend()
        self._deliver_in_background = deliver_in_background
        self._events: list[NotificationEvent] = []
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def sent_events(self) -> list[NotificationEvent]:
        """Expose events (useful for tests when using in-memory backend)."""
        return self._events

    async def drain(self) -> None:
        """Wait for scheduled deliveries to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def use_in_memory_backend(self) -> InMemoryEmailBackend:
        """Replace backend with in-memory implementation (useful for tests)."""
        backend = InMemoryEmailBackend()
        self._backend = backend
        return backend

    async def send_redemption_verified(self, redemption: VerifiedRedemption) -> bool:
        """Email the customer once a vendor has accepted their code."""

        if self._backend is None or not get_settings().redemption_notifications_enabled:
            return False

        contact = await self._resolve_user_contact(redemption.user_id)
        context = await self._resolve_deal_context(redemption.deal_id)
        if contact is None or context is None:
            return False

        template = render_redemption_verified(
            contact_name=contact.display_name,
            deal_title=context.deal_title,
            vendor_name=context.vendor_name,
            code=redemption.code,
            verified_at=redemption.verified_at,
        )
        await self._deliver(
            contact,
            template,
            event_type="redemption_verified",
            metadata={"redemption_id": str(redemption.id), "deal_id": str(redemption.deal_id)},
        )
        return True

    async def send_deal_redeemed(self, redemption: RedeemedRedemption) -> bool:
        """Let the vendor know a customer redeemed one of their deals."""

        settings = get_settings()
        if self._backend is None or not settings.redemption_notifications_enabled:
            return False

        context = await self._resolve_deal_context(redemption.deal_id)
        if context is None:
            return False

        recipients = [context.vendor_email] if context.vendor_email else []
        recipients.extend(email for email in settings.vendor_notification_recipients if email not in recipients)
        if not recipients:
            logger.info("Skipping vendor redemption alert; no recipients", deal_id=str(redemption.deal_id))
            return False

        customer = await self._resolve_user_contact(redemption.user_id)
        template = render_vendor_redemption_alert(
            vendor_name=context.vendor_name,
            deal_title=context.deal_title,
            customer_label=(customer.display_name if customer and customer.display_name else "A customer"),
            redeemed_at=redemption.redeemed_at,
            source=redemption.source,
        )
        for email in recipients:
            await self._deliver(
                _Contact(email=email, display_name=context.vendor_name),
                template,
                event_type="deal_redeemed",
                metadata={"redemption_id": str(redemption.id), "deal_id": str(redemption.deal_id)},
            )
        return True

    def _build_default_backend(self) -> Optional[EmailBackend]:
        settings = get_settings()
        if not settings.smtp_host or not settings.smtp_sender_email:
            return None

        return SMTPEmailBackend(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            sender_email=settings.smtp_sender_email,
        )

    async def _resolve_user_contact(self, user_id: Optional[UUID]) -> Optional[_Contact]:
        if user_id is None:
            return None

        result = await self._db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if not user or not user.email:
            return None
        return _Contact(email=user.email, display_name=user.display_name)

    async def _resolve_deal_context(self, deal_id: UUID) -> Optional[_DealContext]:
        stmt = (
            select(Deal.title, Vendor.name, Vendor.contact_email)
            .join(Vendor, Vendor.id == Deal.vendor_id)
            .where(Deal.id == deal_id)
        )
        row = (await self._db.execute(stmt)).one_or_none()
        if row is None:
            return None
        title, vendor_name, vendor_email = row
        return _DealContext(deal_title=title, vendor_name=vendor_name, vendor_email=vendor_email)

    async def _deliver(
        self,
        contact: _Contact,
        template: RenderedTemplate,
        *,
        event_type: str,
        metadata: dict[str, Any],
    ) -> None:
        """Send using active backend and record emitted event."""
        if self._backend is None:
            return

        send = self._backend.send_email(
            contact.email,
            template.subject,
            template.text_body,
            body_html=template.html_body,
        )
        if self._deliver_in_background:
            task = asyncio.get_running_loop().create_task(
                self._deliver_detached(send, event_type=event_type, metadata=metadata)
            )
            self._pending.add(task)
            _scheduled_deliveries.add(task)
            task.add_done_callback(self._pending.discard)
            task.add_done_callback(_scheduled_deliveries.discard)
        else:
            try:
                await send
            except Exception:
                get_redemption_store().record_notification(event_type, delivered=False)
                raise
            get_redemption_store().record_notification(event_type, delivered=True)
        self._events.append(
            NotificationEvent(
                recipient=contact.email,
                subject=template.subject,
                body_text=template.text_body,
                body_html=template.html_body,
                event_type=event_type,
                metadata=metadata,
            )
        )

    async def _deliver_detached(
        self,
        send: Awaitable[None],
        *,
        event_type: str,
        metadata: dict[str, Any],
    ) -> None:
        try:
            await send
        except Exception as exc:  # noqa: BLE001 - nobody awaits a scheduled delivery
            get_redemption_store().record_notification(event_type, delivered=False)
            logger.bind(event_type=event_type, **metadata).exception("Scheduled notification failed", error=str(exc))
            return
        get_redemption_store().record_notification(event_type, delivered=True)
