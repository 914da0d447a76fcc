"""
Address helpers shared by the Gmail normalizer and the signal detector.
"""

from __future__ import annotations

import re

_NAMED_ADDRESS = re.compile(r"^(.+?)\s*<(.+?)>$")


def parse_address(header_value: str) -> tuple[str, str]:
    """
    Split an RFC 5322 address header into (display name, address).

    Examples:
        >>> parse_address('"Jane Doe" <jane@example.com>')
        ('Jane Doe', 'jane@example.com')

        >>> parse_address("ops@example.com")
        ('', 'ops@example.com')
    """
    value = (header_value or "").strip()
    match = _NAMED_ADDRESS.match(value)
    if match:
        return match.group(1).replace('"', "").strip(), match.group(2).strip()
    return "", value


def extract_domain(email_address: str) -> str:
    """
    Lowercase domain of an address, or "" when there is no ``@``.

    Examples:
        >>> extract_domain("Alerts@Mail.Adobe.com")
        'mail.adobe.com'

        >>> extract_domain("invalid")
        ''
    """
    if not email_address or "@" not in email_address:
        return ""
    return email_address.rsplit("@", 1)[1].strip().lower()
