import asyncio
import base64
import logging
import ssl
from typing import Optional

import websockets

from .config import (
    CP_PASSWORD,
    CP_USERNAME,
    OCPP_SUBPROTOCOL,
    RECONNECT_DELAY_SEC,
    TLS_CA_CERT,
    TLS_CLIENT_CERT,
    TLS_CLIENT_KEY,
)


def basic_auth_header(username: str, password: str) -> dict:
    token = base64.b64encode(f"{username}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


def build_ssl_context(url: str) -> Optional[ssl.SSLContext]:
    if not url.startswith("wss://"):
        return None
    context = ssl.create_default_context(cafile=TLS_CA_CERT)
    if TLS_CLIENT_CERT:
        context.load_cert_chain(TLS_CLIENT_CERT, TLS_CLIENT_KEY)
    return context


class ReconnectingClient:
    """Keep a charge point connected to its central system.

    After every close, clean or not, the client waits `reconnect_delay`
    seconds and connects again, until :meth:`stop` is called.
    """

    def __init__(
        self,
        cp,
        url: str,
        *,
        username: Optional[str] = CP_USERNAME,
        password: Optional[str] = CP_PASSWORD,
        subprotocol: str = OCPP_SUBPROTOCOL,
        reconnect_delay: float = RECONNECT_DELAY_SEC,
        ssl_context: Optional[ssl.SSLContext] = None,
        connect=websockets.connect,
    ):
        self.cp = cp
        self.url = url
        self.username = username
        self.password = password
        self.subprotocol = subprotocol
        self.reconnect_delay = reconnect_delay
        self.ssl_context = ssl_context
        self._connect = connect
        self._stopping = False

    def stop(self):
        self._stopping = True

    def _connect_kwargs(self) -> dict:
        kwargs = {"subprotocols": [self.subprotocol]}
        if self.username:
            kwargs["additional_headers"] = basic_auth_header(self.username, self.password or "")
        if self.ssl_context is not None:
            kwargs["ssl"] = self.ssl_context
        return kwargs

    async def run_forever(self):
        while not self._stopping:
            try:
                logging.info(f"Connecting to CSMS: {self.url} (protocol {self.subprotocol})")
                async with self._connect(self.url, **self._connect_kwargs()) as ws:
                    await self.cp.run(ws)
                    logging.info(
                        f"WebSocket closed, code: {ws.close_code}, "
                        f"reason: {ws.close_reason or 'No reason provided'}"
                    )
            except Exception as e:
                logging.error(f"OCPP connection error: {e}")
            if self._stopping:
                break
            logging.info(f"Reconnecting to CSMS in {self.reconnect_delay}s...")
            await asyncio.sleep(self.reconnect_delay)
