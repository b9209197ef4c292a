"""Utilities to build multimodal input payloads for the Responses API."""

from typing import Any, Dict, List, Sequence

from models.session_models import MessageRole, SessionMessage
from services.openai.extraction_prompts import DEFAULT_USER_TEXT
from utils.media_validation import to_image_data_url


def _text_message(role: str, text: str) -> Dict[str, Any]:
    content_type = "output_text" if role == MessageRole.ASSISTANT.value else "input_text"
    return {"type": "message", "role": role, "content": [{"type": content_type, "text": text}]}


def _is_user_text(message: SessionMessage) -> bool:
    return message.role == MessageRole.USER and not message.has_image and bool(message.content.strip())


def build_first_user_message(history: Sequence[SessionMessage], images: Sequence[bytes]) -> Dict[str, Any]:
    """Combine the user's opening texts and every image into one message."""
    opening: List[str] = []
    for message in history:
        if message.role == MessageRole.ASSISTANT:
            break
        if _is_user_text(message):
            opening.append(message.content)
    text = "\n\n".join(opening) if opening else DEFAULT_USER_TEXT

    content: List[Dict[str, Any]] = [{"type": "input_text", "text": text}]
    for image in images:
        content.append({"type": "input_image", "image_url": to_image_data_url(image)})
    return {"type": "message", "role": MessageRole.USER.value, "content": content}


def build_follow_up_messages(history: Sequence[SessionMessage]) -> List[Dict[str, Any]]:
    """Replay the conversation after the first assistant answer (refinements)."""
    messages: List[Dict[str, Any]] = []
    replaying = False
    for message in history:
        if message.role == MessageRole.ASSISTANT:
            replaying = True
            messages.append(_text_message(MessageRole.ASSISTANT.value, message.content))
        elif replaying and _is_user_text(message):
            messages.append(_text_message(MessageRole.USER.value, message.content))
    return messages


def build_inputs(
    system_prompt: str,
    history: Sequence[SessionMessage],
    images: Sequence[bytes],
) -> List[Dict[str, Any]]:
    """Build the Responses API input array for one extraction request."""
    inputs: List[Dict[str, Any]] = [_text_message(MessageRole.SYSTEM.value, system_prompt)]
    inputs.append(build_first_user_message(history, images))
    inputs.extend(build_follow_up_messages(history))
    return inputs
