"""Error taxonomy for the proxy. Every error carries the HTTP status it maps to."""


class ProxyError(Exception):
    """Base class for all proxy errors"""

    status_code = 500
    message = "Internal Server Error"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.message)
        self.detail = detail or self.message


class ConfigurationError(ProxyError):
    """Missing endpoint or unresolvable region. Fatal at startup."""


class CredentialsUnavailable(ProxyError):
    """No credential source yielded valid credentials"""


class SigningError(ProxyError):
    """Canonical request construction or signature computation failed"""


class UpstreamProxyError(ProxyError):
    """Network / TLS failure talking to the upstream endpoint"""

    message = "Proxy error occurred"


class PayloadTooLarge(ProxyError):
    status_code = 413
    message = "Payload Too Large"
