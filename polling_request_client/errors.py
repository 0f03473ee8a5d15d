from typing import Any, Dict


class RequestError(Exception):
    """Base class for every failure a polling run can report.

    Carries the same three fields the callers already render: a domain
    string, a numeric code and a human-readable message.
    """

    domain: str = "polling_request_client"
    code: int = 0
    default_message: str = "Something went wrong"

    def __init__(self, message: str = ""):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_error_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "code": self.code,
            "message": self.message,
            "type": type(self).__name__,
        }


class ConfigurationError(RequestError):
    code = 1
    default_message = "Request configuration is incomplete"


class TransportError(RequestError):
    code = 2
    default_message = "Network request failed"


class EmptyResponseError(RequestError):
    code = 3
    default_message = "Response contained no data"


class DecodingError(RequestError):
    code = 4
    default_message = "Response could not be decoded"


class TimeoutExhaustedError(RequestError):
    code = 5
    default_message = "Polling timed out"


class RunInProgressError(RequestError):
    code = 6
    default_message = "A polling run is already in progress"
