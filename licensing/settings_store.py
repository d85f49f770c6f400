from decimal import Decimal
from flask import current_app
from extensions import db
from models import GlobalSettings, DurationPrice, DurationType
from licensing.activity_log import ActivityLogger
from licensing.exceptions import ValidationError
from licensing.pricing import MAX_AMOUNT, MAX_WHOLE_NUMBER, parse_amount
from utils import money, is_number
import logging


logger = logging.getLogger(__name__)

SETTINGS_ID = 1
DEFAULT_TIER_DAYS = (1, 7, 30)
DEFAULT_TIER_PRICES = (Decimal("10"), Decimal("50"), Decimal("200"))


class SettingsStore:
    """Typed, versioned singleton holding pricing configuration."""

    @staticmethod
    def get_or_create() -> GlobalSettings:
        settings = db.session.get(GlobalSettings, SETTINGS_ID)
        created = False
        if settings is None:
            default_price = Decimal(str(current_app.config.get("DEFAULT_PRICE_PER_DAY", 10)))
            settings = GlobalSettings(id=SETTINGS_ID, price_per_day=default_price, version=1,
                                      updated_by="system")
            db.session.add(settings)
            for position, (days, price) in enumerate(zip(DEFAULT_TIER_DAYS, DEFAULT_TIER_PRICES)):
                settings.duration_prices.append(
                    DurationPrice(position=position, duration=days, price=price, type=DurationType.DAYS.value)
                )
            created = True
        elif not settings.duration_prices:
            # Seed tiers from pricePerDay (x1, x7, x30)
            for position, days in enumerate(DEFAULT_TIER_DAYS):
                settings.duration_prices.append(
                    DurationPrice(position=position, duration=days,
                                  price=settings.price_per_day * days, type=DurationType.DAYS.value)
                )
            created = True

        if created:
            db.session.commit()
            logger.info("Initialized global settings (version %s)", settings.version)
        return settings

    @staticmethod
    def price_per_day() -> Decimal:
        return Decimal(SettingsStore.get_or_create().price_per_day)

    @staticmethod
    def clean_tiers(raw_tiers):
        """Keep well-formed tiers only: duration > 0, price >= 0, type hours|days."""
        if not isinstance(raw_tiers, list):
            raise ValidationError("durationPricing must be a list")
        tiers = []
        for item in raw_tiers:
            if not isinstance(item, dict):
                continue
            duration = item.get("duration")
            price = item.get("price")
            tier_type = item.get("type") or DurationType.DAYS.value
            if not is_number(duration) or duration <= 0 or int(duration) != duration:
                continue
            if duration > MAX_WHOLE_NUMBER:
                continue
            if not is_number(price) or price < 0 or price > MAX_AMOUNT:
                continue
            if tier_type not in (DurationType.HOURS.value, DurationType.DAYS.value):
                continue
            tiers.append((int(duration), Decimal(str(price)), tier_type))
        return tiers

    @staticmethod
    def update(payload, actor, ip_address=None):
        """Apply pricePerDay / durationPricing changes. Returns (settings, changed)."""
        settings = SettingsStore.get_or_create()
        changes = []

        if "pricePerDay" in payload:
            new_price = parse_amount(payload.get("pricePerDay"), "pricePerDay")
            if new_price is None:
                raise ValidationError("pricePerDay must be a number")
            if Decimal(settings.price_per_day) != new_price:
                old_price = settings.price_per_day
                settings.price_per_day = new_price
                changes.append(("price_per_day_updated",
                                f"Price per day changed from {money(old_price)} to {money(new_price)}"))

        if "durationPricing" in payload:
            tiers = SettingsStore.clean_tiers(payload.get("durationPricing"))
            current = [(t.duration, Decimal(t.price), t.type) for t in settings.duration_prices]
            if tiers != current:
                settings.duration_prices.clear()
                db.session.flush()
                for position, (duration, price, tier_type) in enumerate(tiers):
                    settings.duration_prices.append(
                        DurationPrice(position=position, duration=duration, price=price, type=tier_type)
                    )
                changes.append(("duration_pricing_updated",
                                f"Duration pricing updated ({len(tiers)} tiers)"))

        if not changes:
            return settings, False

        settings.version = (settings.version or 0) + 1
        settings.updated_by = actor
        db.session.commit()
        ActivityLogger.log_many(
            ActivityLogger.entry(action, details, actor=actor, ip_address=ip_address)
            for action, details in changes
        )
        logger.info("Settings updated by %s, now version %s", actor, settings.version)
        return settings, True
