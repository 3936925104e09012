class PolicyWatcherException(Exception):
    def __init__(self, message: str | None = None):
        self.message = message
        super().__init__(message)


class TransportError(PolicyWatcherException):
    pass


class TransportConnectionError(TransportError):
    def __init__(self, endpoint: str, reason: str | None = None):
        self.endpoint = endpoint
        message = f"Failed to open pubsub connection. endpoint={endpoint}"
        if reason:
            message = f"{message} reason={reason}"
        super().__init__(message)


class UnsupportedEndpointScheme(TransportConnectionError):
    def __init__(self, endpoint: str, scheme: str | None = None):
        self.scheme = scheme
        super().__init__(endpoint, reason=f"no transport registered for scheme {scheme!r}")


class ReceiveError(TransportError):
    pass


class SendError(TransportError):
    pass


class ShutdownError(TransportError):
    pass


class WatcherConnectionError(PolicyWatcherException):
    def __init__(self, endpoint: str, reason: str | None = None):
        self.endpoint = endpoint
        super().__init__(f"Failed to connect watcher. endpoint={endpoint} reason={reason}")


class NotConnectedError(PolicyWatcherException):
    def __init__(self, endpoint: str | None = None):
        self.endpoint = endpoint
        super().__init__("pubsub not connected, cannot dispatch update message")


class WatcherClosedError(PolicyWatcherException):
    def __init__(self, endpoint: str | None = None):
        self.endpoint = endpoint
        super().__init__(f"Watcher is closed and cannot be reconnected. endpoint={endpoint}")
