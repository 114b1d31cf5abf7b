"""
Error taxonomy for the delivery outbox.

Everything here is absorbed at the driver/store boundary: the only signal
that reaches the outside is an item's ``status`` and ``last_error``.
"""


class OutboxError(Exception):
	"""Base class for outbox errors"""


class TransientDeliveryFailure(OutboxError):
	"""Network error or non-success response from a transport"""


class ArtifactUnavailable(OutboxError):
	"""The artifact for an item could not be resolved or rebuilt"""


class PermanentSourceMissing(ArtifactUnavailable):
	"""
	The canonical record needed to rebuild an artifact does not exist.

	Retrying cannot fix this, but the item still consumes retry budget until
	its attempts cap like any other failure.
	"""

	def __init__(self, path):
		self.path = path
		super().__init__(f"Finished JSON not found: {path}")


class CorruptPersistedState(OutboxError):
	"""A store file could not be parsed; handled by quarantine and reset"""


class ConfigurationMissing(OutboxError):
	"""Channel credentials or endpoint are blank; the sweep is skipped"""
