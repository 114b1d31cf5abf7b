from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Generic, Optional, Protocol
import logging
import time

from matchrelay.core.exceptions import (
	ArtifactUnavailable,
	ConfigurationMissing,
	PermanentSourceMissing,
	TransientDeliveryFailure,
)
from matchrelay.models.outbox import OutboxItem, RefT
from matchrelay.monitoring.metrics import delivery_attempts, sweep_duration, sweeps
from matchrelay.services.outbox_store import OutboxStore
from matchrelay.services.transports import DeliveryResult

logger = logging.getLogger(__name__)

Deliver = Callable[[Any], DeliveryResult]


class ArtifactResolver(Protocol):
	def resolve(self, item: OutboxItem) -> Any:
		...


@dataclass
class SweepReport:
	channel: str
	configured: bool = True
	considered: int = 0
	claimed: int = 0
	sent: int = 0
	failed: int = 0
	skipped: int = 0
	released: int = 0

	def as_dict(self) -> Dict[str, Any]:
		return asdict(self)


class RetryDriver(Generic[RefT]):
	"""
	Drains one outbox.

	Every eligible item is claimed first, then its artifact is resolved and
	handed to the transport. The store lock is taken once per store call and
	never held across the network call.
	"""

	def __init__(
			self,
			store: OutboxStore,
			resolver: ArtifactResolver,
			transport_factory: Callable[[], Deliver],
			max_attempts: int,
			claim_timeout_seconds: Optional[float] = None
	):
		self.store = store
		self.resolver = resolver
		self.transport_factory = transport_factory
		self.max_attempts = max_attempts
		self.claim_timeout_seconds = claim_timeout_seconds

	@property
	def channel(self) -> str:
		return self.store.channel.name

	def run_sweep(self) -> SweepReport:
		report = SweepReport(channel=self.channel)

		try:
			deliver = self.transport_factory()
		except ConfigurationMissing as e:
			# retrying an unconfigured channel would only spin
			logger.info(f"{self.channel} delivery not configured ({e}); nothing to do")
			report.configured = False
			return report

		started = time.monotonic()
		sweeps.labels(channel=self.channel).inc()

		if self.claim_timeout_seconds:
			report.released = self.store.release_stale_claims(self.claim_timeout_seconds)

		for item in self.store.get_all():
			if not item.is_eligible(self.max_attempts):
				continue
			report.considered += 1

			if not self.store.try_mark_sending(item.key, self.max_attempts):
				report.skipped += 1
				continue
			report.claimed += 1

			if self._deliver(item, deliver):
				report.sent += 1
			else:
				report.failed += 1

		sweep_duration.labels(channel=self.channel).observe(time.monotonic() - started)
		if report.considered:
			logger.info(
				f"{self.channel} sweep: {report.sent} sent, {report.failed} failed, "
				f"{report.skipped} skipped of {report.considered} eligible"
			)
		return report

	def _deliver(self, item: OutboxItem, deliver: Deliver) -> bool:
		key = item.key

		try:
			artifact = self.resolver.resolve(item)
		except PermanentSourceMissing as e:
			# TODO: stop retrying once a missing source record is confirmed to be final
			logger.error(f"{self.channel} item {key}: {e}")
			return self._fail(item, str(e), "source_missing")
		except ArtifactUnavailable as e:
			logger.warning(f"{self.channel} item {key}: {e}")
			return self._fail(item, str(e), "artifact_unavailable")
		except Exception as e:
			logger.exception(f"Resolving {self.channel} item {key} failed")
			return self._fail(item, f"{type(e).__name__}: {e}", "error")

		try:
			result = deliver(artifact)
		except TransientDeliveryFailure as e:
			result = DeliveryResult.failure(str(e))
		except Exception as e:
			logger.exception(f"Delivering {self.channel} item {key} failed")
			result = DeliveryResult.failure(f"{type(e).__name__}: {e}")

		if not result.success:
			logger.warning(f"{self.channel} item {key} attempt {item.attempts + 1} failed: {result.error_message}")
			return self._fail(item, result.error_message or "Delivery failed", "failed")

		self.store.mark_sent(key)
		delivery_attempts.labels(channel=self.channel, outcome="sent").inc()
		logger.info(f"Delivered {self.channel} item {key}")
		return True

	def _fail(self, item: OutboxItem, error: str, outcome: str) -> bool:
		self.store.mark_failed(item.key, error)
		delivery_attempts.labels(channel=self.channel, outcome=outcome).inc()
		return False
