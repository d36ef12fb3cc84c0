"""Terminal output helpers. User-facing text goes through print(), diagnostics through logging."""

PREFIX = "[ralph]"
WIDTH = 60


def say(message: str) -> None:
    print(f"{PREFIX} {message}")


def warn(message: str) -> None:
    print(f"{PREFIX} WARNING: {message}")


def separator(char: str = "=") -> None:
    print(char * WIDTH)


def section(title: str) -> None:
    print()
    separator()
    print(f"{PREFIX} {title}")
    separator()


def format_duration(seconds: float) -> str:
    """Format seconds as human-readable duration."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    secs = seconds % 60
    if minutes < 60:
        return f"{minutes}m {secs:.0f}s"
    hours = minutes // 60
    mins = minutes % 60
    return f"{hours}h {mins}m"


def header(title: str) -> None:
    print(f"--- {title} ---")
