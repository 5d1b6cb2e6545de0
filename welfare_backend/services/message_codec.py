"""
Encoding and decoding of conversation message lists.

Messages travel and persist as a JSON text blob; readers always get the
structured list back, in the original chat order.
"""

import json
from typing import Any, Dict, List, Union

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from welfare_backend.schemas import ChatMessage
from welfare_backend.services.errors import ValidationError

_MESSAGES_ADAPTER = TypeAdapter(List[ChatMessage])


def _describe(exc: PydanticValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"messages.{location}: {first.get('msg')}" if location else f"messages: {first.get('msg')}"


def normalize_messages(messages: Union[str, List[Any]]) -> List[Dict[str, Any]]:
    """
    Validate a message list (or its JSON encoding) and return plain dicts.

    Only the keys the caller supplied are kept, so a decoded list compares
    equal to the one that was saved.

    Raises:
        ValidationError: if the payload is not a well-formed message list
    """
    if isinstance(messages, (bytes, str)):
        try:
            messages = json.loads(messages)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"messages is not valid JSON: {exc.msg}", field="messages") from exc

    if not isinstance(messages, list):
        raise ValidationError("messages must be a list of message objects", field="messages")

    try:
        parsed = _MESSAGES_ADAPTER.validate_python(messages)
    except PydanticValidationError as exc:
        raise ValidationError(_describe(exc), field="messages") from exc

    return [message.model_dump(by_alias=True, exclude_unset=True) for message in parsed]


def encode_messages(messages: Union[str, List[Any]]) -> str:
    """Validate and serialize messages to the stored text form."""
    return json.dumps(normalize_messages(messages), ensure_ascii=False)


def decode_messages(chat_data: str) -> List[Dict[str, Any]]:
    """Decode the stored text form back into a list of message dicts."""
    if not chat_data:
        return []
    return json.loads(chat_data)
