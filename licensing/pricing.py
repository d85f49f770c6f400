from collections import namedtuple
from decimal import Decimal, InvalidOperation
import math

from models import DurationType
from licensing.exceptions import ValidationError
from utils import parse_datetime, utcnow


PriceQuote = namedtuple("PriceQuote", ["duration", "duration_type", "days", "price"])

# Whole-number inputs (durations, device counts, minutes) and money stay inside
# what the Integer and Numeric(20, 2) columns and datetime arithmetic can hold.
MAX_WHOLE_NUMBER = 1_000_000
MAX_AMOUNT = Decimal("1000000000000")


def parse_positive_int(value, field, maximum=MAX_WHOLE_NUMBER):
    """None/'' -> None; positive whole numbers up to `maximum` pass; anything else is a 400."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a positive whole number")
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{field} must be a positive whole number")
    if not number.is_finite() or number <= 0 or number != number.to_integral_value():
        raise ValidationError(f"{field} must be a positive whole number")
    if number > maximum:
        raise ValidationError(f"{field} must be at most {maximum}")
    return int(number)


def parse_amount(value, field, allow_zero=True):
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'zero or more' if allow_zero else 'greater than zero'}")
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{field} must be at most {MAX_AMOUNT}")
    return amount


def normalize_duration_type(value):
    if value in (None, ""):
        return DurationType.DAYS.value
    if value not in (DurationType.HOURS.value, DurationType.DAYS.value):
        raise ValidationError("durationType must be 'hours' or 'days'")
    return value


class KeyPricing:
    """
    Price a key request.

    An explicit (duration, price) pair is taken as is. Otherwise the price is
    days x pricePerDay, with days taken from expiryDate, else duration, else 1.
    Duration tiers from the settings are not consulted on this path.
    """

    @staticmethod
    def resolve(duration=None, duration_type=None, price=None, expiry_date=None,
                price_per_day=Decimal("10"), now=None) -> PriceQuote:
        now = now or utcnow()
        duration = parse_positive_int(duration, "duration")
        duration_type = normalize_duration_type(duration_type)
        price = parse_amount(price, "price")
        price_per_day = Decimal(str(price_per_day))

        # Zero price counts as "not supplied"
        if duration and price:
            days = duration if duration_type == DurationType.DAYS.value else math.ceil(duration / 24)
            return PriceQuote(duration, duration_type, days, price)

        if expiry_date:
            try:
                expiry = parse_datetime(expiry_date)
            except ValueError as e:
                raise ValidationError(str(e))
            days = (expiry.date() - now.date()).days
            if days < 1:
                raise ValidationError("Expiry date must be in the future")
            return PriceQuote(days, DurationType.DAYS.value, days, days * price_per_day)

        if duration:
            if duration_type == DurationType.HOURS.value:
                days = math.ceil(duration / 24)
            else:
                days = duration
            return PriceQuote(duration, duration_type, days, days * price_per_day)

        return PriceQuote(1, DurationType.DAYS.value, 1, price_per_day)

