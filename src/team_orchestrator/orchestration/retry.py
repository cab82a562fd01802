"""Bounded retry with exponential backoff for async provider calls."""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from ..errors import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
	max_attempts: int = 3
	initial_delay: float = 1.0
	max_delay: float = 30.0
	exponential_base: float = 2.0
	jitter: bool = True
	timeout: Optional[float] = None

	def delay_for(self, attempt: int) -> float:
		"""Delay before retry number `attempt` (0-based)."""
		delay = min(self.initial_delay * (self.exponential_base ** attempt), self.max_delay)
		if self.jitter and delay > 0:
			delay *= random.uniform(0.5, 1.0)
		return delay


class RetriesExhausted(ProviderError):
	"""Every attempt failed. `last_error` holds the final failure."""

	def __init__(self, attempts: int, last_error: BaseException):
		self.attempts = attempts
		self.last_error = last_error
		super().__init__(f"Gave up after {attempts} attempts: {last_error}")


async def retry_async(
	func: Callable[[], Awaitable[T]],
	policy: RetryPolicy,
	retry_on: tuple[type[BaseException], ...] = (ProviderError, asyncio.TimeoutError),
	label: str = "call",
) -> T:
	"""
	Await func() until it succeeds or the policy runs out.

	Each attempt is bounded by policy.timeout when set. Exceptions outside
	retry_on propagate immediately.
	"""
	last_error: Optional[BaseException] = None

	for attempt in range(policy.max_attempts):
		try:
			if policy.timeout:
				return await asyncio.wait_for(func(), timeout=policy.timeout)
			return await func()
		except retry_on as e:
			last_error = e
			if attempt < policy.max_attempts - 1:
				delay = policy.delay_for(attempt)
				logger.warning(
					f"{label} failed (attempt {attempt + 1}/{policy.max_attempts}): "
					f"{e or type(e).__name__}; retrying in {delay:.1f}s"
				)
				await asyncio.sleep(delay)

	raise RetriesExhausted(policy.max_attempts, last_error)
