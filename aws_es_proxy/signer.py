"""
Request Signer
Builds the Sig-V4 headers for an inbound request using botocore's signer.
"""

import hashlib
import logging
from dataclasses import dataclass
from urllib.parse import parse_qsl, quote

from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials
from botocore.exceptions import BotoCoreError

from aws_es_proxy.config import SERVICE, ProxyConfig
from aws_es_proxy.credentials import CredentialProvider, CredentialSet
from aws_es_proxy.errors import SigningError

logger = logging.getLogger(__name__)

# Inbound headers that take part in the signature when present. They are
# forwarded unchanged, so the upstream sees exactly what was signed.
PASSTHROUGH_HEADERS = (
    "accept",
    "accept-encoding",
    "accept-language",
    "content-type",
    "upgrade-insecure-requests",
)

# Characters left unescaped in the canonical query string (RFC 3986 unreserved)
UNRESERVED = "-_.~"

# Headers owned by the signer; inbound copies are dropped before merging
SIGNATURE_HEADERS = frozenset({"host", "x-amz-date", "authorization", "x-amz-content-sha256", "x-amz-security-token"})


@dataclass(frozen=True)
class SignedHeaderSet:
    host: str
    amz_date: str
    content_sha256: str
    authorization: str
    security_token: str | None = None

    def as_headers(self) -> dict[str, str]:
        headers = {
            "Host": self.host,
            "X-Amz-Date": self.amz_date,
            "X-Amz-Content-SHA256": self.content_sha256,
            "Authorization": self.authorization,
        }
        if self.security_token:
            headers["X-Amz-Security-Token"] = self.security_token
        return headers

    def apply(self, headers) -> list[tuple[str, str]]:
        """Return a new header list: `headers` minus any stale auth headers, plus this set"""
        items = headers.items() if hasattr(headers, "items") else headers
        merged = [(k, v) for k, v in items if k.lower() not in SIGNATURE_HEADERS]
        merged.extend(self.as_headers().items())
        return merged


def _lookup(headers, name: str) -> str | None:
    """All values of a header, comma-joined the way Sig-V4 canonicalises repeats"""
    if hasattr(headers, "getlist"):
        values = headers.getlist(name)
    else:
        items = headers.items() if hasattr(headers, "items") else headers
        values = [value for key, value in items if key.lower() == name]
    return ",".join(values) if values else None


def canonical_target(path: str) -> str:
    """
    Re-encode the query string RFC 3986 style (`h=index,docs.count` becomes
    `h=index%2Cdocs.count`). botocore signs the query as given, so the form
    that is signed must also be the form that is forwarded.
    """
    path, sep, query = path.partition("?")
    if not sep:
        return path
    pairs = parse_qsl(query, keep_blank_values=True)
    if not pairs:
        return path
    return path + "?" + "&".join(f"{quote(k, safe=UNRESERVED)}={quote(v, safe=UNRESERVED)}" for k, v in pairs)


def sign_request(
    method: str,
    path: str,
    headers,
    body: bytes,
    credentials: CredentialSet,
    region: str,
    service: str,
    host: str,
    scheme: str = "https",
) -> SignedHeaderSet:
    """
    Sign one request.

    Args:
        method: HTTP verb
        path: request target (path plus optional query string); pass it through
            canonical_target first and forward that same value
        headers: inbound headers; only PASSTHROUGH_HEADERS are read
        body: the exact bytes that will be forwarded
        credentials: snapshot from the CredentialProvider
        region, service: signing scope
        host: upstream Host header value

    Returns:
        SignedHeaderSet to merge onto the forwarded request. `headers` is not modified.
    """
    path = canonical_target(path)
    body = body or b""
    content_sha256 = hashlib.sha256(body).hexdigest()

    canonical_headers = {"Host": host, "X-Amz-Content-SHA256": content_sha256}
    for name in PASSTHROUGH_HEADERS:
        value = _lookup(headers, name)
        if value is not None:
            canonical_headers[name] = value

    try:
        aws_request = AWSRequest(method=method, url=f"{scheme}://{host}{path}", headers=canonical_headers, data=body)
        creds = Credentials(credentials.access_key, credentials.secret_key, credentials.token)
        SigV4Auth(creds, service, region).add_auth(aws_request)
    except (BotoCoreError, ValueError, TypeError) as exc:
        raise SigningError(f"failed to sign {method} {path}: {exc}") from exc

    signed = aws_request.headers
    return SignedHeaderSet(
        host=host,
        amz_date=signed["X-Amz-Date"],
        content_sha256=content_sha256,
        authorization=signed["Authorization"],
        security_token=signed.get("X-Amz-Security-Token"),
    )


class RequestSigner:
    """Signs requests for one upstream with whatever credentials are current"""

    def __init__(self, provider: CredentialProvider, region: str, host: str, service: str = SERVICE, scheme: str = "https"):
        self.provider = provider
        self.region = region
        self.host = host
        self.service = service
        self.scheme = scheme

    @classmethod
    def from_config(cls, config: ProxyConfig, provider: CredentialProvider) -> "RequestSigner":
        scheme = config.target.split("://", 1)[0]
        return cls(provider, region=config.region, host=config.host, service=config.service, scheme=scheme)

    async def sign(self, method: str, path: str, headers, body: bytes) -> SignedHeaderSet:
        credentials = await self.provider.resolve()
        signed = sign_request(method, path, headers, body, credentials, self.region, self.service, self.host, self.scheme)
        logger.debug(f"Signed {method} {path} ({len(body or b'')} bytes, sha256={signed.content_sha256})")
        return signed
