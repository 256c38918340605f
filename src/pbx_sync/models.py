"""Records exchanged between the extension database and pjsip.conf.

Unset numeric fields are stored as 0 and unset strings as "", matching
what the database returns for empty columns. The ``effective_*``
properties apply the same defaults the config generator uses.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

DEFAULT_CONTEXT = "from-internal"
DEFAULT_TRUNK_CONTEXT = "from-trunk"
DEFAULT_TRANSPORT = "transport-udp"
DEFAULT_CODECS = ("ulaw", "alaw", "g722")
DEFAULT_MAX_CONTACTS = 1
DEFAULT_DIRECT_MEDIA = "no"
DEFAULT_QUALIFY_FREQUENCY = 60
DEFAULT_SIP_PORT = 5060


def parse_codecs(value: Optional[str]) -> list[str]:
    """Split a comma-separated codec list, dropping blanks."""
    if not value:
        return []
    return [c.strip() for c in value.split(",") if c.strip()]


@dataclass
class ExtensionRecord:
    """An extension as stored in the database."""
    number: str
    name: str = ""
    secret: str = ""
    context: str = ""
    transport: str = ""
    caller_id: str = ""
    max_contacts: int = 0
    codecs: list[str] = field(default_factory=list)
    direct_media: str = ""
    qualify_frequency: int = 0
    voicemail_enabled: bool = False
    enabled: bool = True
    email: str = ""
    notes: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def effective_context(self) -> str:
        return self.context or DEFAULT_CONTEXT

    @property
    def effective_transport(self) -> str:
        return self.transport or DEFAULT_TRANSPORT

    @property
    def effective_max_contacts(self) -> int:
        return self.max_contacts if self.max_contacts > 0 else DEFAULT_MAX_CONTACTS

    @property
    def effective_direct_media(self) -> str:
        return self.direct_media or DEFAULT_DIRECT_MEDIA

    @property
    def effective_qualify_frequency(self) -> int:
        return self.qualify_frequency if self.qualify_frequency > 0 else DEFAULT_QUALIFY_FREQUENCY

    @property
    def effective_codecs(self) -> list[str]:
        return list(self.codecs) if self.codecs else list(DEFAULT_CODECS)

    def to_dict(self, include_secret: bool = False) -> dict:
        data = {
            "number": self.number,
            "name": self.name,
            "context": self.context,
            "transport": self.transport,
            "caller_id": self.caller_id,
            "max_contacts": self.max_contacts,
            "codecs": list(self.codecs),
            "direct_media": self.direct_media,
            "qualify_frequency": self.qualify_frequency,
            "voicemail_enabled": self.voicemail_enabled,
            "enabled": self.enabled,
        }
        if include_secret:
            data["secret"] = self.secret
        return data


@dataclass
class TrunkRecord:
    """A SIP trunk as stored in the database."""
    name: str
    host: str
    port: int = DEFAULT_SIP_PORT
    username: str = ""
    secret: str = ""
    transport: str = ""
    codecs: list[str] = field(default_factory=list)
    context: str = ""
    direct_media: str = ""
    qualify_frequency: int = 0
    from_domain: str = ""
    from_user: str = ""
    language: str = ""
    enabled: bool = True
    priority: int = 1
    prefix: str = "9"
    strip_digits: int = 1
    max_channels: int = 10

    @property
    def effective_context(self) -> str:
        return self.context or DEFAULT_TRUNK_CONTEXT

    @property
    def effective_transport(self) -> str:
        return self.transport or DEFAULT_TRANSPORT

    @property
    def effective_codecs(self) -> list[str]:
        return list(self.codecs) if self.codecs else list(DEFAULT_CODECS)
