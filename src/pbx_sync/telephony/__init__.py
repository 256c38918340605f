"""Telephony server integration (Asterisk CLI)."""
from .asterisk import (
    AsteriskCLI,
    CommandResult,
    TelephonyError,
    parse_endpoints,
)

__all__ = ["AsteriskCLI", "CommandResult", "TelephonyError", "parse_endpoints"]
