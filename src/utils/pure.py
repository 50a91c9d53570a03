import math
from typing import List, Literal, Optional


def generate_markdown_table(
    headers: Optional[List[str]],
    rows: List[List[str]],
    aligns: Optional[List[Literal["l", "c", "r"]]] = None,
) -> str:
    """
    Generate a Markdown table.

    Args:
        headers: List of column headers, or None to use first row as headers.
        rows: List of rows, each a list of strings.
        aligns: List of alignments ('l', 'c', 'r') for each column.
                Defaults to all center ('c').

    Returns:
        str: Markdown formatted table.
    """
    if not rows:
        return ""

    if not headers:
        headers, rows = rows[0], rows[1:]

    headers = list(map(str, headers))
    # pipes inside a cell would split it into two columns
    rows = [[str(cell).replace("|", "\\|") for cell in row] for row in rows]

    num_cols = len(headers)
    if aligns is None:
        aligns = ["c"] * num_cols
    elif len(aligns) != num_cols:
        raise ValueError("Length of aligns must match number of headers.")

    align_map = {
        "l": ":---",
        "c": ":---:",
        "r": "---:",
    }

    header_line = "| " + " | ".join(headers) + " |"
    align_line = "| " + " | ".join(align_map[a] for a in aligns) + " |"
    row_lines = ["| " + " | ".join(row) + " |" for row in rows]

    return "\n".join([header_line, align_line, *row_lines])


def format_price(amount: float) -> str:
    """Roubles grouped by thousands, kopecks only when present, e.g. '12 500 ₽'."""
    rounded = round(amount)
    if abs(amount - rounded) < 0.005:
        body = f"{rounded:,}"
    else:
        body = f"{amount:,.2f}"
    return body.replace(",", " ") + " ₽"


def format_phone(digits: str) -> str:
    """Render an 11-digit 7XXXXXXXXXX number as +7 (XXX) XXX-XX-XX; '_' for missing digits."""
    d = "".join(ch for ch in digits if ch.isdigit())
    if d.startswith("8"):
        d = "7" + d[1:]
    s = d[:11].ljust(11, "_")
    return f"+7 ({s[1:4]}) {s[4:7]}-{s[7:9]}-{s[9:11]}"


def delivery_cost_for_distance(distance_km: float, rate_per_km: int) -> int:
    """Delivery surcharge: every started kilometre is billed at the full rate."""
    if distance_km < 0:
        raise ValueError("Distance cannot be negative.")
    return math.ceil(distance_km) * rate_per_km


def pluralize_items(n: int) -> str:
    return f"{n} item" if n == 1 else f"{n} items"
