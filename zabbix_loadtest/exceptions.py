"""Error types raised by the load test tool."""


class LoadTestError(Exception):
    pass


class ConfigurationError(LoadTestError):
    pass


class TransportError(LoadTestError):
    """Network, timeout, HTTP status or decoding failure talking to the API."""
    pass


class ZabbixAPIError(LoadTestError):
    """Error reported by the API in the response envelope."""

    def __init__(self, code, message, data=None, method=None):
        self.code = code
        self.message = message
        self.data = data
        self.method = method
        text = f"{message} - {data}" if data else f"{message}"
        if method:
            text = f"{method}: {text}"
        super().__init__(f"Zabbix API error {code}: {text}")


class ProvisioningError(LoadTestError):
    pass


class LoadGenerationError(LoadTestError):
    """One or more load workers stopped on an error."""

    def __init__(self, message, stats=None):
        super().__init__(message)
        self.stats = stats or {}
