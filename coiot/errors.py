"""CoIoT error taxonomy.

Decoders raise these; the protocol session catches them and turns them
into logged outcomes so that one bad device never stops the listener.
"""


class CoIoTError(Exception):
    """Base class for all CoIoT processing errors."""


class MalformedMessage(CoIoTError, ValueError):
    """Payload cannot be decoded at all; the batch is aborted."""


class UnknownSensorId(CoIoTError, KeyError):
    """A status reading refers to a sensor id missing from the schema."""

    def __init__(self, sensor_id: str):
        super().__init__(sensor_id)
        self.sensor_id = sensor_id

    def __str__(self):
        return f"Unknown sensor id {self.sensor_id}"


class DuplicateSerial(CoIoTError):
    """Status with an already processed serial and unchanged payload."""

    def __init__(self, serial: int):
        super().__init__(f"Serial {serial} already processed")
        self.serial = serial


class SchemaNotReady(CoIoTError):
    """Status arrived before any device description is known."""


class TransportTimeout(CoIoTError):
    """An outstanding request got no response in time."""

    def __init__(self, uri: str, ip: str):
        super().__init__(f"Request {uri} to {ip} timed out")
        self.uri = uri
        self.ip = ip
