"""Session domain models for chat-driven receipt intake."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from models.transaction import Transaction


class SessionStatus(str, Enum):
	"""Observable status of a user's intake session."""

	IDLE = "idle"
	AWAITING_INPUT = "awaiting_input"
	PROCESSING = "processing"
	AWAITING_CONFIRMATION = "awaiting_confirmation"


class MessageRole(str, Enum):
	USER = "user"
	ASSISTANT = "assistant"
	SYSTEM = "system"


@dataclass
class SessionMessage:
	"""One entry of the conversation log handed to the extraction service."""

	role: MessageRole
	content: str
	has_image: bool = False
	image_index: Optional[int] = None
	created_at: float = field(default_factory=lambda: time.time())


@dataclass
class SessionState:
	"""In-memory state of a single user's intake conversation.

	`session_id` changes on every reset, so holders of a stale reference can
	tell that the session they started working on no longer exists.
	"""

	user_id: str
	session_id: str = field(default_factory=lambda: uuid4().hex)
	status: SessionStatus = SessionStatus.IDLE
	messages: List[SessionMessage] = field(default_factory=list)
	images: List[bytes] = field(default_factory=list)
	transactions: List[Transaction] = field(default_factory=list)
	processing_attempts: int = 0
	last_error: Optional[str] = None
	last_updated: float = field(default_factory=lambda: time.time())

	def has_material(self) -> bool:
		"""Return True when there is at least one image or user-authored text."""
		if self.images:
			return True
		return any(
			msg.role == MessageRole.USER and not msg.has_image and msg.content.strip()
			for msg in self.messages
		)
