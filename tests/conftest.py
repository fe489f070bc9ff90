"""Shared fixtures and helpers for the proxy tests."""

import hashlib
import hmac
import re
from urllib.parse import parse_qsl, quote

import httpx
import pytest

from aws_es_proxy.config import ProxyConfig
from aws_es_proxy.credentials import CredentialSet
from aws_es_proxy.errors import CredentialsUnavailable

ACCESS_KEY = "AKIDEXAMPLE"
SECRET_KEY = "wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY"
SESSION_TOKEN = "FQoGZXIvYXdzEXAMPLETOKEN"

AUTH_RE = re.compile(r"AWS4-HMAC-SHA256 Credential=(?P<credential>[^,]+), SignedHeaders=(?P<signed>[^,]+), Signature=(?P<signature>[0-9a-f]+)")


class FakeProvider:
    """Stand-in CredentialProvider that counts resolve() calls"""

    def __init__(self, credentials: CredentialSet | None = None, error: Exception | None = None):
        self.credentials = credentials or CredentialSet(ACCESS_KEY, SECRET_KEY)
        self.error = error
        self.calls = 0

    async def resolve(self) -> CredentialSet:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.credentials


class Upstream:
    """Callable for httpx.MockTransport: records requests and answers with a canned response"""

    def __init__(self, status=200, content=b"{}", headers=None, error=None):
        self.status = status
        self.content = content
        self.headers = headers or {"Content-Type": "application/json"}
        self.error = error
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error(f"cannot reach {request.url.host}", request=request)
        # A ByteStream body stays unread, like a real connection, so aiter_raw() works
        headers = dict(self.headers)
        if not any(k.lower() == "content-length" for k in headers):
            headers["Content-Length"] = str(len(self.content))
        return httpx.Response(self.status, headers=headers, stream=httpx.ByteStream(self.content))


def parse_authorization(value: str) -> dict[str, str]:
    match = AUTH_RE.match(value)
    assert match, f"unexpected Authorization header: {value}"
    return match.groupdict()


def _header_values(headers) -> dict[str, list[str]]:
    if hasattr(headers, "multi_items"):
        items = headers.multi_items()
    elif hasattr(headers, "items"):
        items = headers.items()
    else:
        items = headers
    values: dict[str, list[str]] = {}
    for name, value in items:
        values.setdefault(name.lower(), []).append(value)
    return values


def canonical_query(query: str) -> str:
    """Decode, RFC 3986 encode and sort the query parameters"""
    pairs = [(quote(k, safe="-_.~"), quote(v, safe="-_.~")) for k, v in parse_qsl(query, keep_blank_values=True)]
    return "&".join(f"{k}={v}" for k, v in sorted(pairs))


def _hmac(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def verify_signature(headers, method: str, path: str, body: bytes, credentials: CredentialSet, region: str, service: str = "es") -> bool:
    """
    Recompute the Sig-V4 signature from forwarded headers and compare it to the
    Authorization header. Written out step by step so a signer that encodes the
    request differently from the documented algorithm fails here.
    """
    values = _header_values(headers)
    auth = parse_authorization(values["authorization"][0])
    signed_names = auth["signed"].split(";")
    amz_date = values["x-amz-date"][0]
    date = amz_date[:8]

    payload_hash = hashlib.sha256(body).hexdigest()
    if values["x-amz-content-sha256"][0] != payload_hash:
        return False

    uri, _, query = path.partition("?")
    canonical_headers = "".join(f"{name}:{','.join(' '.join(v.split()) for v in values[name])}\n" for name in signed_names)
    canonical_request = "\n".join(
        [
            method.upper(),
            quote(uri or "/", safe="/-_.~"),
            canonical_query(query),
            canonical_headers,
            auth["signed"],
            payload_hash,
        ]
    )

    scope = f"{date}/{region}/{service}/aws4_request"
    if auth["credential"] != f"{credentials.access_key}/{scope}":
        return False
    string_to_sign = "\n".join(["AWS4-HMAC-SHA256", amz_date, scope, hashlib.sha256(canonical_request.encode("utf-8")).hexdigest()])

    key = _hmac(f"AWS4{credentials.secret_key}".encode("utf-8"), date)
    for part in (region, service, "aws4_request"):
        key = _hmac(key, part)
    signature = hmac.new(key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature, auth["signature"])


@pytest.fixture
def credentials() -> CredentialSet:
    return CredentialSet(ACCESS_KEY, SECRET_KEY)


@pytest.fixture
def session_credentials() -> CredentialSet:
    return CredentialSet(ACCESS_KEY, SECRET_KEY, SESSION_TOKEN)


@pytest.fixture
def provider(credentials) -> FakeProvider:
    return FakeProvider(credentials)


@pytest.fixture
def failing_provider() -> FakeProvider:
    return FakeProvider(error=CredentialsUnavailable("token has expired"))


@pytest.fixture
def config() -> ProxyConfig:
    return ProxyConfig.from_options("search-prod.us-west-2.es.amazonaws.com", limit="1kb")
