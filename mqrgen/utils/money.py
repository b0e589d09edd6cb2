CURRENCY_SYMBOLS = {"INR": "₹", "USD": "$", "EUR": "€"}


def format_minor_units(amount: int, currency: str = "INR") -> str:
    """Render an integer minor-unit amount for display, e.g. 59900 -> ₹599.00."""
    symbol = CURRENCY_SYMBOLS.get(currency, f"{currency} ")
    sign = "-" if amount < 0 else ""
    major, minor = divmod(abs(int(amount)), 100)
    return f"{sign}{symbol}{major:,}.{minor:02d}"
