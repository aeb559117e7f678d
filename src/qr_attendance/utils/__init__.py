from .time import format_countdown, format_relative_time, seconds_remaining

__all__ = ["format_countdown", "format_relative_time", "seconds_remaining"]
