"""Formatting of second counts for display."""


def format_time(seconds: int) -> str:
    """Format seconds as ``M:SS``; negative values get a leading ``-``."""
    sign = "-" if seconds < 0 else ""
    minutes, secs = divmod(abs(int(seconds)), 60)
    return f"{sign}{minutes}:{secs:02d}"


def format_clock(seconds: int, overtime: bool = False) -> str:
    """Format the main timer display as ``MM:SS``, prefixed with ``-`` in overtime."""
    minutes, secs = divmod(abs(int(seconds)), 60)
    prefix = "-" if overtime else ""
    return f"{prefix}{minutes:02d}:{secs:02d}"


def describe_overtime(name: str, overtime: int) -> str:
    """Wording for the end-of-turn notice.

    Args:
        name: Name of the person whose turn ended.
        overtime: Signed seconds, positive when the turn ran over.

    Returns:
        Sentence with minutes and seconds of the difference.
    """
    minutes, secs = divmod(abs(overtime), 60)
    if overtime > 0:
        return f"{name} stayed {minutes} min {secs} s past their time"
    return f"{name} finished {minutes} min {secs} s early"
