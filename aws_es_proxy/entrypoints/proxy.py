#!/usr/bin/env python3
"""
aws-es-proxy - entry module for the signing proxy
Run with: python -m aws_es_proxy [options] <aws-es-cluster-endpoint>
"""

import argparse
import asyncio
import logging
import os
import sys

import pyfiglet

from aws_es_proxy import __version__
from aws_es_proxy.config import DEFAULT_BIND_ADDRESS, DEFAULT_LIMIT, DEFAULT_PORT, DEFAULT_TIMEOUT, ProxyConfig
from aws_es_proxy.credentials import CredentialProvider
from aws_es_proxy.errors import ConfigurationError, CredentialsUnavailable
from aws_es_proxy.forwarder import ProxyForwarder
from aws_es_proxy.identity import IdentityValidator
from aws_es_proxy.server import create_app
from aws_es_proxy.signer import RequestSigner

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    env = os.environ
    parser = argparse.ArgumentParser(prog="aws-es-proxy", usage="%(prog)s [options] <aws-es-cluster-endpoint>", description="Sign requests with AWS Sig-V4 and proxy them to an Elasticsearch / OpenSearch domain")
    parser.add_argument("endpoint", nargs="?", default=env.get("ENDPOINT"), help="cluster endpoint (or ENDPOINT)")
    parser.add_argument("-b", "--bind-address", default=env.get("BIND_ADDRESS", DEFAULT_BIND_ADDRESS), help="the ip address to bind to")
    parser.add_argument("-p", "--port", default=env.get("PORT", DEFAULT_PORT), help="the port to bind to")
    parser.add_argument("-r", "--region", default=env.get("REGION"), help="the region of the Elasticsearch cluster")
    parser.add_argument("-u", "--user", default=env.get("AUTH_USER"), help="the username to access the proxy")
    parser.add_argument("-a", "--password", default=env.get("AUTH_PASSWORD"), help="the password to access the proxy")
    parser.add_argument("-s", "--silent", action="store_true", help="remove figlet banner")
    parser.add_argument("-H", "--health-path", default=env.get("HEALTH_PATH"), help="URI path for health check")
    parser.add_argument("-l", "--limit", default=env.get("LIMIT", DEFAULT_LIMIT), help="request limit")
    parser.add_argument("-t", "--timeout", default=env.get("TIMEOUT", DEFAULT_TIMEOUT), help="upstream timeout in seconds")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def print_credentials_help(error: Exception, profile: str | None):
    print(f"Failed to load AWS credentials: {error}", file=sys.stderr)
    if "SSO" in str(error):
        print("\nTo authenticate with AWS SSO, run:", file=sys.stderr)
        print(f"aws sso login --profile {profile or 'default'}", file=sys.stderr)
        print("\nOr if you need to configure SSO:", file=sys.stderr)
        print("aws configure sso", file=sys.stderr)


async def serve(config: ProxyConfig, silent: bool = False):
    """Validate credentials, then bind and serve until cancelled"""
    provider = CredentialProvider(profile=config.profile)
    await IdentityValidator(provider).validate(config.region)

    signer = RequestSigner.from_config(config, provider)
    forwarder = ProxyForwarder(config.target, timeout=config.timeout)
    app = create_app(config, provider, signer, forwarder)

    if not silent:
        print(pyfiglet.figlet_format("AWS ES Proxy!", font="speed"))

    base_url = f"http://{config.bind_address}:{config.port}"
    logger.info(f"AWS ES cluster available at {base_url}")
    logger.info(f"OpenSearch Dashboards available at {base_url}/_dashboards")
    if config.health_path:
        logger.info(f"Health endpoint enabled at {base_url}{config.health_path}")
    if config.basic_auth_enabled:
        logger.info(f"Basic authentication enabled for user {config.auth_user}")

    await app.run_task(host=config.bind_address, port=config.port, debug=False)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%H:%M:%S")

    try:
        config = ProxyConfig.from_options(
            args.endpoint,
            region=args.region,
            bind_address=args.bind_address,
            port=args.port,
            limit=args.limit,
            health_path=args.health_path,
            auth_user=args.user,
            auth_password=args.password,
            profile=os.environ.get("AWS_PROFILE"),
            timeout=args.timeout,
        )
    except ConfigurationError as exc:
        print(exc, file=sys.stderr)
        parser.print_help(sys.stderr)
        return 1

    try:
        asyncio.run(serve(config, silent=args.silent))
    except CredentialsUnavailable as exc:
        print_credentials_help(exc, config.profile)
        return 1
    except KeyboardInterrupt:
        print("\nProxy stopped")
    return 0


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()
