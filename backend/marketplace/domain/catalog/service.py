"""Read-only view of provider services used to snapshot order prices."""

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.domain.catalog.db_models import Design, ProviderService, ServiceDesign
from marketplace.domain.errors import NotFound, ValidationFailed


@dataclass(frozen=True)
class DesignSnapshot:
    title: str
    description: str | None
    image_url: str
    video_url: str | None
    design_type: str
    source: str
    tags: list[str] | None
    color: str | None
    author_id: str | None
    author_name: str | None

    @classmethod
    def of(cls, design: Design) -> "DesignSnapshot":
        return cls(
            title=design.title,
            description=design.description,
            image_url=design.image_url,
            video_url=design.video_url,
            design_type=design.design_type,
            source=design.source,
            tags=list(design.tags) if design.tags else None,
            color=design.color,
            author_id=design.author_id,
            author_name=design.author_name,
        )

    def as_order_columns(self) -> dict:
        return {
            "design_title": self.title,
            "design_description": self.description,
            "design_image_url": self.image_url,
            "design_video_url": self.video_url,
            "design_type": self.design_type,
            "design_source": self.source,
            "design_tags": self.tags,
            "design_color": self.color,
            "design_author_id": self.author_id,
            "design_author_name": self.author_name,
        }


@dataclass(frozen=True)
class ServiceQuote:
    service_id: str
    provider_id: str
    design_id: str | None
    price_cents: int
    duration_minutes: int
    design: DesignSnapshot | None = None


async def quote_service(
    session: AsyncSession,
    *,
    service_id: str,
    provider_id: str,
    design_id: str | None = None,
) -> ServiceQuote:
    """Price a service (plus an optional design add-on) for a new order.

    The design must exist and be active; it is copied into the quote so the
    order keeps what the client saw. The add-on price only applies when the
    provider has an active service/design link with a custom price; an
    unlinked design is booked at the base service price.
    """

    service = await session.get(ProviderService, service_id)
    if service is None or not service.is_active:
        raise NotFound(detail="Service not found")
    if service.provider_id != provider_id:
        raise ValidationFailed(detail="Service does not belong to the provider")

    price_cents = service.price_cents
    duration_minutes = service.duration_minutes
    snapshot = None
    if design_id:
        design = await session.get(Design, design_id)
        if design is None or not design.is_active:
            raise NotFound(detail="Design not found")
        snapshot = DesignSnapshot.of(design)
        link = await session.scalar(
            select(ServiceDesign).where(
                ServiceDesign.service_id == service_id,
                ServiceDesign.design_id == design_id,
                ServiceDesign.is_active.is_(True),
            )
        )
        if link is not None:
            price_cents += link.custom_price_cents or 0
            duration_minutes += link.additional_minutes or 0

    return ServiceQuote(
        service_id=service.service_id,
        provider_id=service.provider_id,
        design_id=design_id,
        price_cents=price_cents,
        duration_minutes=duration_minutes,
        design=snapshot,
    )
