"""
Local authorization code listener for the interactive browser flow.

Starts a short-lived HTTP server on a free localhost port, sends the user
to the identity provider's authorize endpoint with that server as the
redirect URI, and waits for the provider to redirect back with either a
code or an error.
"""

import asyncio
import functools
import logging
import secrets
import threading
import webbrowser
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable, Dict, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import click

from m365broker.auth.cloud import get_authority
from m365broker.auth.exceptions import AuthorizationCodeError
from m365broker.auth.models import Session

logger = logging.getLogger(__name__)

_SUCCESS_PAGE = b"""<html><body>
<h3>You have logged in.</h3><p>You can close this window and return to the terminal.</p>
</body></html>"""

_ERROR_PAGE = b"""<html><body>
<h3>Sign-in failed.</h3><p>Return to the terminal for details.</p>
</body></html>"""


@dataclass
class AuthorizationCodeResponse:
    """Code delivered to the redirect URI."""

    code: str
    redirect_uri: str


def build_authorize_url(session: Session, resource: str, redirect_uri: str, state: str) -> str:
    """Authorize endpoint URL for the session's app, tenant and cloud."""
    query = urlencode({
        "client_id": session.app_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "scope": f"{resource}/.default",
        "response_mode": "query",
        "prompt": "select_account",
        "state": state,
    })
    return f"{get_authority(session.tenant, session.cloud_type)}/oauth2/v2.0/authorize?{query}"


class _CallbackServer(HTTPServer):
    def __init__(self, address):
        super().__init__(address, _CallbackHandler)
        self.result: Optional[Dict[str, str]] = None
        self.done = threading.Event()


class _CallbackHandler(BaseHTTPRequestHandler):
    """Captures the redirect from the identity provider."""

    server: _CallbackServer

    def log_message(self, format, *args):
        logger.debug(f"Callback server: {format % args}")

    def do_GET(self):
        params = {k: v[0] for k, v in parse_qs(urlparse(self.path).query).items()}

        if "code" not in params and "error" not in params:
            # favicon and other stray requests
            self.send_response(404)
            self.end_headers()
            return

        self.send_response(200)
        self.send_header("Content-Type", "text/html")
        self.end_headers()
        self.wfile.write(_SUCCESS_PAGE if "code" in params else _ERROR_PAGE)

        self.server.result = params
        self.server.done.set()


class AuthServer:
    """Obtains an authorization code through the system browser."""

    def __init__(
        self,
        timeout: float = 300.0,
        host: str = "localhost",
        open_browser: Optional[Callable[[str], Any]] = None,
        notify: Optional[Callable[[str], None]] = None,
    ):
        self._timeout = timeout
        self._host = host
        self._open_browser = open_browser or webbrowser.open
        self._notify = notify or functools.partial(click.echo, err=True)

    async def get_authorization_code(
        self, session: Session, resource: str, debug: bool = False
    ) -> AuthorizationCodeResponse:
        """
        Run the browser sign-in and return the authorization code.

        Args:
            session: Session providing app id, tenant and cloud
            resource: Resource the code will be redeemed for
            debug: Emit diagnostic log records

        Returns:
            The code and the redirect URI it was delivered to

        Raises:
            AuthorizationCodeError: Provider returned an error, state did not
                                    match, or no answer arrived in time
        """
        server = _CallbackServer((self._host, 0))
        redirect_uri = f"http://localhost:{server.server_address[1]}"
        state = secrets.token_urlsafe(16)
        url = build_authorize_url(session, resource, redirect_uri, state)

        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()

        try:
            if debug:
                logger.debug(f"Listening for authorization code on {redirect_uri}")
            self._notify(f"Opening the browser to sign in. If it doesn't open, go to: {url}")
            self._open_browser(url)

            loop = asyncio.get_running_loop()
            completed = await loop.run_in_executor(None, server.done.wait, self._timeout)
        finally:
            server.shutdown()
            server.server_close()

        if not completed or server.result is None:
            raise AuthorizationCodeError("timeout", "Timed out waiting for the browser sign-in to complete")

        result = server.result
        if "error" in result:
            raise AuthorizationCodeError(result["error"], result.get("error_description"))
        if result.get("state") != state:
            raise AuthorizationCodeError("invalid_state", "The sign-in response did not match the request")

        return AuthorizationCodeResponse(code=result["code"], redirect_uri=redirect_uri)
