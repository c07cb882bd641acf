import argparse
import asyncio
import json
import os
import logging
from logging.config import dictConfig
from typing import Any, Optional

import aiohttp
import sentry_sdk
from sentry_sdk.integrations.aiohttp import AioHttpIntegration

from social.graze.jwtclient.app.config import Settings
from social.graze.jwtclient.client.exceptions import JwtClientException, ResponseError
from social.graze.jwtclient.client.jwt_client import create_client

logger = logging.getLogger(__name__)


def configure_logging(settings: Optional[Settings] = None):
    logging_config_file = os.getenv("LOGGING_CONFIG_FILE", "")

    if len(logging_config_file) > 0:
        with open(logging_config_file) as fl:
            dictConfig(json.load(fl))
        return

    logging.basicConfig()
    level = settings.log_level if settings is not None else "INFO"
    if settings is not None and settings.debug:
        level = "DEBUG"
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jwtclient",
        description="Perform an HTTP request with JWT bearer authentication.",
    )
    parser.add_argument("url", help="The URL to request.")
    parser.add_argument("--method", default="GET", help="HTTP method (default: GET).")
    parser.add_argument("--username", help="Username to sign in with before the request.")
    parser.add_argument("--password", help="Password to sign in with before the request.")
    parser.add_argument("--json", dest="json_body", help="JSON request body.")
    parser.add_argument(
        "--refresh-url",
        help="Refresh token retrieval URL (overrides JWT_REFRESH_TOKEN_RETRIEVAL_URL).",
    )
    parser.add_argument(
        "--login-url",
        help="Login URL for url login mode (overrides JWT_LOGIN_URL).",
    )
    return parser


def _format_body(body: Any) -> str:
    if isinstance(body, (dict, list)):
        return json.dumps(body, indent=2)
    if isinstance(body, bytes):
        return f"<{len(body)} bytes>"
    return str(body)


async def realMain(args: argparse.Namespace, settings: Settings) -> int:
    request_kwargs = {}
    if args.json_body is not None:
        request_kwargs["json"] = json.loads(args.json_body)

    login_action_info = None
    if args.login_url:
        login_action_info = {
            "url": args.login_url,
            "usernameField": settings.login_username_field,
            "passwordField": settings.login_password_field,
        }

    async with await create_client(
        settings,
        refresh_token_retrieval_url=args.refresh_url,
        login_action_info=login_action_info,
    ) as client:
        try:
            if args.username is not None:
                await client.login(args.username, args.password or "")

            async with client.request(
                args.method.upper(), args.url, **request_kwargs
            ) as (_, chain_response):
                print(f"status {chain_response.status}")
                print(_format_body(chain_response.body))
        except ResponseError as e:
            logger.error("%s", e)
            if e.response is not None:
                print(f"status {e.response.status}")
                print(_format_body(e.response.body))
            return 1
        except (JwtClientException, aiohttp.ClientError):
            logger.exception("Request failed")
            return 1

    return 0


def invoke() -> None:
    settings = Settings()  # type: ignore
    configure_logging(settings)

    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            integrations=[AioHttpIntegration()],
        )

    args = build_parser().parse_args()
    raise SystemExit(asyncio.run(realMain(args, settings)))


if __name__ == "__main__":
    invoke()
