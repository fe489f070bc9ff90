"""
HTTP Front-End
Quart application that captures the raw body, answers health checks, gates
on Basic-Auth, then signs and forwards everything else upstream.
"""

import logging
import secrets

from quart import Quart, Response, request
from starlette.middleware.gzip import GZipMiddleware
from werkzeug.exceptions import RequestEntityTooLarge

from aws_es_proxy.config import ProxyConfig
from aws_es_proxy.credentials import CredentialProvider
from aws_es_proxy.errors import PayloadTooLarge, ProxyError
from aws_es_proxy.forwarder import ProxyForwarder
from aws_es_proxy.signer import RequestSigner, canonical_target

logger = logging.getLogger(__name__)

BASIC_AUTH_CHALLENGE = 'Basic realm="aws-es-proxy"'
GZIP_MINIMUM_SIZE = 1024


def request_target() -> str:
    """Path plus query string exactly as the client sent them"""
    path = request.scope.get("raw_path") or request.path.encode()
    if isinstance(path, bytes):
        path = path.decode("latin-1")
    query = request.scope.get("query_string", b"")
    if query:
        path += "?" + query.decode("latin-1")
    return path


def is_authorized(config: ProxyConfig) -> bool:
    auth = request.authorization
    if auth is None or auth.type != "basic" or auth.username is None or auth.password is None:
        return False
    user_ok = secrets.compare_digest(auth.username.encode(), config.auth_user.encode())
    password_ok = secrets.compare_digest(auth.password.encode(), config.auth_password.encode())
    return user_ok and password_ok


async def read_body(limit: int) -> bytes:
    try:
        body = await request.get_data()
    except RequestEntityTooLarge as exc:
        raise PayloadTooLarge(f"request body exceeds {limit} bytes") from exc
    if len(body) > limit:
        raise PayloadTooLarge(f"request body of {len(body)} bytes exceeds {limit} bytes")
    return body


def create_app(config: ProxyConfig, provider: CredentialProvider, signer: RequestSigner, forwarder: ProxyForwarder) -> Quart:
    """Wire the request pipeline around single shared provider / signer / forwarder instances"""
    app = Quart(__name__, static_folder=None)
    app.config["MAX_CONTENT_LENGTH"] = config.limit
    # Upstream responses are streamed; the httpx timeout bounds them instead
    app.config["RESPONSE_TIMEOUT"] = None
    app.asgi_app = GZipMiddleware(app.asgi_app, minimum_size=GZIP_MINIMUM_SIZE)

    # ─── STARTUP/SHUTDOWN HOOKS ──────────────────────────────────────────────

    @app.before_serving
    async def startup():
        await forwarder.start()

    @app.after_serving
    async def shutdown():
        await forwarder.stop()

    # ─── REQUEST PIPELINE ────────────────────────────────────────────────────

    @app.before_request
    async def handle_all_requests():
        body = await read_body(config.limit)

        if config.health_path and request.path == config.health_path:
            return Response("ok", status=200, content_type="text/plain")

        await provider.resolve()

        if config.basic_auth_enabled and not is_authorized(config):
            logger.warning(f"Rejected unauthenticated {request.method} {request.path}")
            return Response("Unauthorized", status=401, content_type="text/plain", headers={"WWW-Authenticate": BASIC_AUTH_CHALLENGE})

        target = canonical_target(request_target())
        signed = await signer.sign(request.method, target, request.headers, body)
        return await forwarder.forward(request.method, target, signed.apply(request.headers), body)

    # ─── ERROR HANDLERS ──────────────────────────────────────────────────────

    @app.errorhandler(ProxyError)
    async def proxy_error(error: ProxyError):
        if error.status_code >= 500:
            logger.error(f"{type(error).__name__} on {request.method} {request.path}: {error.detail}")
        else:
            logger.warning(f"{type(error).__name__} on {request.method} {request.path}: {error.detail}")
        return Response(error.message, status=error.status_code, content_type="text/plain")

    return app
