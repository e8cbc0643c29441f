import typing as t

_BYTE_UNITS = ["B", "KiB", "MiB", "GiB", "TiB"]

MB = 1024 * 1024


def format_bytes(size: float):
    unit = 0
    while size >= 1024 and unit < len(_BYTE_UNITS) - 1:
        size /= 1024
        unit += 1
    if unit == 0:
        return f"{int(size)} {_BYTE_UNITS[unit]}"
    return f"{size:.1f} {_BYTE_UNITS[unit]}"


def format_columns(data: t.Mapping[str, t.Any], prefix=""):
    """Align the values of `data` in a column after its keys."""
    if not data:
        return ""
    width = max(len(key) for key in data)
    return "\n".join(
        f"{prefix}{key:<{width}}\t{value}" for key, value in data.items()
    )


def format_speed(bytes_per_second: float):
    if bytes_per_second >= MB:
        return f"{bytes_per_second / MB:.1f} MB/s"
    return f"{bytes_per_second / 1024:.1f} KB/s"


def format_download(name: str, done: int, total: int, elapsed: float):
    """Progress text for a download, e.g. `Downloading x.zip • 1.0/2.0 MB • 3.4 MB/s`."""
    speed = done / elapsed if elapsed > 0 else 0.0
    return (
        f"Downloading {name} • {done / MB:.1f}/{total / MB:.1f} MB"
        f" • {format_speed(speed)}"
    )
