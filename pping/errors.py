# pping/errors.py


class PpingError(Exception):
    """Base class for everything the prober raises on purpose."""


class TransportError(PpingError):
    """The raw socket could not be created or bound."""


class EncodeError(PpingError):
    pass


class SendError(PpingError):
    """Transport failure or short write for a single probe."""


class ReadError(PpingError):
    """Socket-level receive failure; ends the receive loop."""


class ParseError(PpingError):
    pass


class NoTargetsError(PpingError):
    """No configured target answered its warm-up probe."""
