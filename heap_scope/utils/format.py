_UNITS = ["B", "KB", "MB", "GB", "TB", "PB"]


def format_bytes(num_bytes: float) -> str:
    """Human readable binary size, e.g. ``1536 -> "1.50 KB"``."""
    if num_bytes == 0:
        return "0 B"
    sign = "-" if num_bytes < 0 else ""
    v = abs(num_bytes)
    i = 0
    while v >= 1024 and i < len(_UNITS) - 1:
        v /= 1024
        i += 1
    if v >= 100:
        text = f"{v:.0f}"
    elif v >= 10:
        text = f"{v:.1f}"
    else:
        text = f"{v:.2f}"
    return f"{sign}{text} {_UNITS[i]}"


def format_delta(value: float, precision: int = 2) -> str:
    sign = "+" if value > 0 else ""
    return f"{sign}{value:.{precision}f}"
