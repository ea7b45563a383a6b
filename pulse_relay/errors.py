"""Error taxonomy for the ingestion and uplink pipeline.

None of these escape a component boundary: the BLE layer turns them into
status text, the uplink turns them into reconnection, and disposal only logs.
"""


class PulseRelayError(Exception):
    """Base class for pulse-relay errors."""


class MalformedPayload(PulseRelayError, ValueError):
    """Heart rate characteristic payload is empty or truncated."""


class BluetoothError(PulseRelayError):
    """Failure in the BLE scan/connect layer."""


class ScanError(BluetoothError):
    """Scanner could not be started or stopped."""


class ConnectError(BluetoothError):
    """Connecting or subscribing to a peripheral failed."""


class ConnectTimeout(ConnectError):
    """Peripheral did not connect within the timeout."""


class ServiceNotFound(ConnectError):
    """Connected peripheral does not expose the heart rate service."""


class CharacteristicNotFound(ConnectError):
    """Heart rate service lacks the measurement characteristic."""


class ConnectFailed(ConnectError):
    """Any other connection failure."""


class UplinkError(PulseRelayError):
    """Failure on the telemetry uplink."""


class TransportError(UplinkError):
    """Transport closed or refused the operation."""


class SendTimeout(UplinkError):
    """Frame was not accepted by the transport in time."""


class DisposalError(UplinkError):
    """Error while closing the uplink. Logged, never raised to callers."""
