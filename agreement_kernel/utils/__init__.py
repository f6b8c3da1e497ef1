"""Utility modules for the agreement kernel."""

from agreement_kernel.utils.json_safe import to_json_safe

__all__ = [
    "to_json_safe",
]
