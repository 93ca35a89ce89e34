"""Domain-level exceptions for the points engine."""

from __future__ import annotations


class GamificationError(Exception):
	"""Base class for points engine errors."""

	reason: str = "unknown"

	def __init__(self, reason: str | None = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason


class ProfileVersionConflict(GamificationError):
	"""The stored profile moved on since it was read."""

	reason = "version_conflict"


class AwardConflictError(GamificationError):
	"""Raised when an award keeps losing the version race."""

	reason = "award_conflict"


class IdempotencyConflictError(GamificationError):
	"""Idempotency key already used for a different activity."""

	reason = "idempotency_conflict"


class DuplicateActivityError(GamificationError):
	reason = "duplicate_activity"


class StoreUnavailableError(GamificationError):
	"""Persistence failed; nothing was credited."""

	reason = "store_unavailable"
