"""
Message objects and wrappers exchanged with the provider.

A wrapper delivered to the bot looks like:

    {
        "author": "..user id..",
        "link": "..message hash..",
        "objectinfo": {"link": "..hash of the inner object.."},
        "object": {
            "_t": "tradle.Message",
            "_s": "..signature..",
            "object": {"_t": "tradle.SimpleMessage", "message": "hey"},
        },
        "metadata": {"message": {"inbound": true}},
    }
"""

import copy
from typing import Any

from botcore.errors import ValidationError

TYPE = "_t"
SIG = "_s"
SIMPLE_MESSAGE = "tradle.SimpleMessage"

_JSON_SCALARS = (str, int, float, bool, type(None))


def create_simple_message(message: str) -> dict[str, Any]:
    return {TYPE: SIMPLE_MESSAGE, "message": message}


def has_undefined_values(obj: Any) -> bool:
    """True when some nested value would not survive a JSON round trip."""
    stack = [obj]
    while stack:
        value = stack.pop()
        if isinstance(value, dict):
            if any(not isinstance(k, str) for k in value):
                return True
            stack.extend(value.values())
        elif isinstance(value, (list, tuple)):
            stack.extend(value)
        elif not isinstance(value, _JSON_SCALARS):
            return True
    return False


def validate_object(obj: Any) -> None:
    if has_undefined_values(obj):
        raise ValidationError("object may not have undefined for any nested values")


def normalize_outbound(obj: str | dict[str, Any]) -> dict[str, Any]:
    """
    Turn the object handed to send() into the object that gets queued.

    Strings become simple messages. Signatures are stripped because signing
    happens on the provider side.
    """
    if isinstance(obj, str):
        return create_simple_message(obj)

    if not isinstance(obj, dict):
        raise ValidationError('expected object or string "object"')

    validate_object(obj)
    obj = copy.deepcopy(obj)
    obj.pop(SIG, None)
    return obj


def validate_wrapper(wrapper: Any) -> None:
    if not isinstance(wrapper, dict):
        raise ValidationError("expected message wrapper object")
    if not isinstance(wrapper.get("author"), str) or not wrapper["author"]:
        raise ValidationError('expected string "author"')
    if not isinstance(wrapper.get("object"), dict):
        raise ValidationError('expected object "object"')
    validate_object(wrapper)


def mark_inbound(wrapper: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of the wrapper flagged as an inbound message."""
    marked = copy.deepcopy(wrapper)
    metadata = marked.setdefault("metadata", {})
    message_meta = metadata.setdefault("message", {})
    message_meta["inbound"] = True
    return marked


def wrapper_link(wrapper: dict[str, Any]) -> str | None:
    objectinfo = wrapper.get("objectinfo") or {}
    return objectinfo.get("link") or wrapper.get("link")
