__all__ = [
    "HaystackError",
    "CallError",
    "UnsupportedNavError",
    "ConnectionClosedError",
    "ActionError",
]


class HaystackError(Exception):
    """
    Base class for errors raised by this package.
    """


class CallError(HaystackError):
    """
    Raised when the server answers a request with an error grid.
    """

    dis: str
    """Error message as reported by the server"""

    trace: str | None
    """Server-side stack trace, if provided"""

    def __init__(self, dis: str, trace: str | None = None):
        self.dis = dis
        self.trace = trace
        super().__init__(dis)


class UnsupportedNavError(CallError):
    """
    Raised when the server rejects a `nav` request, e.g. because it does not
    implement navigation or doesn't recognize the nav id. The node being
    expanded is left without children.
    """


class ConnectionClosedError(HaystackError):
    """
    Raised when a request is made on a connection which was closed, e.g.
    by stopping or destroying its connector.
    """


class ActionError(HaystackError):
    """
    Raised when an action is invoked with invalid parameters.

    Examples:

    - Point write level outside of 1-17
    - Value provided without a value type
    - Unknown value type or duration unit
    """
