"""
Message template formatting for queue notifications.

Templates use named placeholders in braces, e.g. ``{CustomerName}``.
Substitution is literal: every occurrence of a known placeholder is replaced,
unknown placeholders stay verbatim and no escaping is applied.
"""
from typing import Any, Mapping


# Placeholders understood by the default templates
PLACEHOLDERS = (
    "CustomerName",
    "RestaurantName",
    "Minutes",
    "Remaining",
    "Position",
    "PartySize",
    "Timeout",
    "Code",
    "QueueName",
    "WaitTime",
)


def format_message(template: str, replacements: Mapping[str, Any]) -> str:
    """
    Substitute ``{Key}`` placeholders in a template.
    
    Args:
        template: Template string with {Placeholder} markers
        replacements: Placeholder name -> value; None renders as empty text
        
    Returns:
        Formatted message
        
    Example:
        >>> format_message("Hi {CustomerName}, {CustomerName}!", {"CustomerName": "Ana"})
        'Hi Ana, Ana!'
    """
    message = template
    for key, value in replacements.items():
        placeholder = "{" + key + "}"
        message = message.replace(placeholder, "" if value is None else str(value))
    return message


def build_replacements(entry, business_name: str, **extra: Any) -> dict:
    """
    Standard replacement values for a queue entry.
    
    Args:
        entry: QueueEntry being notified
        business_name: Merchant display name
        **extra: Additional placeholder values (Minutes, Remaining, Timeout...)
    """
    replacements = {
        "CustomerName": entry.customer_name,
        "RestaurantName": business_name,
        "Position": entry.position,
        "PartySize": entry.party_size,
        "WaitTime": entry.estimated_wait_time,
    }
    if entry.verification_code:
        replacements["Code"] = entry.verification_code
    replacements.update(extra)
    return replacements
