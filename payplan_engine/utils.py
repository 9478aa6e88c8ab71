from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, localcontext

CENT = Decimal("0.01")
ZERO = Decimal("0")

# Largest magnitude accepted for any amount, rate or count.
MAX_MAGNITUDE = Decimal("1e15")
# Enough digits to quantize the product of two bounded values to cents.
MONEY_PRECISION = 50


def to_decimal(v) -> Decimal:
    """Coerce ints, floats, strings and None to Decimal (None -> 0)."""
    if v is None or v == "":
        return ZERO
    if isinstance(v, Decimal):
        d = v
    else:
        try:
            d = Decimal(str(v).strip())
        except InvalidOperation:
            raise ValueError(f"not a number: {v!r}")
    if not d.is_finite():
        raise ValueError(f"not a finite number: {v!r}")
    if abs(d) >= MAX_MAGNITUDE:
        raise ValueError(f"out of range (must be below {MAX_MAGNITUDE:,f}): {v!r}")
    return d


def to_money(v) -> Decimal:
    d = v if isinstance(v, Decimal) else to_decimal(v)
    with localcontext() as ctx:
        ctx.prec = MONEY_PRECISION
        return d.quantize(CENT, rounding=ROUND_HALF_UP)


def money(v) -> str:
    try:
        return f"${to_decimal(v):,.0f}"
    except ValueError:
        return "$0"


def fmt_number(v) -> str:
    """Print a rate or count the way the plan editor shows it (25, 2.5, 10.5)."""
    d = to_decimal(v).normalize()
    return f"{d:f}"
