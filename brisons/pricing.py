from .errors import ValidationError


def money(value):
    return round(float(value), 2)


def promo_discount(subtotal, promo_code, promo_codes):
    """Discount for ``promo_code`` as a percentage of the subtotal."""
    if not promo_code:
        return 0.0
    percent = promo_codes.get(promo_code.strip().upper())
    if percent is None:
        raise ValidationError(f"Invalid promo code '{promo_code}'")
    return money(subtotal * percent / 100)


def price_order(line_totals, config, promo_code=None):
    subtotal = money(sum(line_totals))
    tax = money(subtotal * config["TAX_RATE"])
    shipping_fee = 0.0 if subtotal >= config["FREE_SHIPPING_THRESHOLD"] else money(config["SHIPPING_FEE"])
    discount = promo_discount(subtotal, promo_code, config.get("PROMO_CODES") or {})
    return {
        "subtotal": subtotal,
        "tax": tax,
        "shipping_fee": shipping_fee,
        "discount": discount,
        "total_amount": money(subtotal + tax + shipping_fee - discount),
    }
