"""
Dev server for devpipe.

Static HTTP serving of the build root with WebSocket live reload. After
each HTML regeneration the pipeline calls ``notify_reload`` and every
connected browser refreshes.
"""

from __future__ import annotations

import asyncio
import functools
import json
import threading
from http import HTTPStatus
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Optional

import websockets
from websockets.asyncio.server import serve as ws_serve, ServerConnection

from devpipe.build.config import ServerOptions
from devpipe.build.errors import ErrorKind, StageError
from devpipe.core.utils import log


# =============================================================================
# Injected Client Script
# =============================================================================

# The WebSocket port placeholder is replaced at runtime via str.replace().
LIVE_RELOAD_SCRIPT = """
<script>
(function() {
  var wsPort = __DEVPIPE_WS_PORT__;
  var reconnectDelay = 500;
  var maxReconnectDelay = 5000;

  function connect() {
    var ws;
    try {
      ws = new WebSocket('ws://' + location.hostname + ':' + wsPort + '/ws');
    } catch (e) {
      scheduleReconnect();
      return;
    }

    ws.onopen = function() {
      reconnectDelay = 500;
      console.log('[devpipe] Live reload connected');
    };

    ws.onmessage = function(event) {
      var msg;
      try {
        msg = JSON.parse(event.data);
      } catch (e) {
        return;
      }
      if (msg.type === 'reload') {
        location.reload();
      }
    };

    ws.onclose = scheduleReconnect;
  }

  function scheduleReconnect() {
    setTimeout(function() {
      reconnectDelay = Math.min(reconnectDelay * 1.5, maxReconnectDelay);
      connect();
    }, reconnectDelay);
  }

  connect();
})();
</script>
"""


def inject_reload_client(html: str, ws_port: int) -> str:
    """Insert the live reload client before </body> (or </html>, or at the end)."""
    script = LIVE_RELOAD_SCRIPT.replace("__DEVPIPE_WS_PORT__", str(ws_port))
    if "</body>" in html:
        return html.replace("</body>", script + "\n</body>", 1)
    if "</html>" in html:
        return html.replace("</html>", script + "\n</html>", 1)
    return html + script


# =============================================================================
# Script-Injecting HTTP Handler
# =============================================================================


class InjectingHandler(SimpleHTTPRequestHandler):
    """HTTP handler that injects the live reload script into HTML responses."""

    ws_port: Optional[int] = None  # None disables injection
    quiet: bool = True

    def __init__(self, *args, directory: str | None = None, **kwargs):
        super().__init__(*args, directory=directory, **kwargs)

    def log_message(self, format, *args):
        """Suppress default HTTP logging unless verbose."""
        if not self.quiet:
            super().log_message(format, *args)

    def end_headers(self):
        # Never let the browser cache build output during development
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def do_GET(self):
        """Serve files, injecting the reload script into HTML."""
        f_path = Path(self.translate_path(self.path))

        if f_path.is_dir():
            index = f_path / "index.html"
            if index.exists():
                f_path = index

        if self.ws_port is None or not (f_path.is_file() and f_path.suffix in (".html", ".htm")):
            super().do_GET()
            return

        try:
            content = f_path.read_bytes().decode("utf-8", errors="replace")
        except OSError:
            self.send_error(HTTPStatus.NOT_FOUND, "File not found")
            return

        encoded = inject_reload_client(content, self.ws_port).encode("utf-8")

        self.send_response(HTTPStatus.OK)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        self.wfile.write(encoded)


# =============================================================================
# WebSocket Broadcast Server
# =============================================================================


class ReloadBroadcaster:
    """Manages WebSocket connections and broadcasts reload messages."""

    def __init__(self):
        self._clients: set[ServerConnection] = set()
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)

    def set_loop(self, loop: Optional[asyncio.AbstractEventLoop]) -> None:
        self._loop = loop

    async def handler(self, websocket: ServerConnection) -> None:
        """Handle a new WebSocket connection."""
        with self._lock:
            self._clients.add(websocket)
        log.dim(f"Browser connected ({self.client_count} open)")

        try:
            async for _ in websocket:
                pass  # Clients never send anything meaningful
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            with self._lock:
                self._clients.discard(websocket)
            log.dim(f"Browser disconnected ({self.client_count} open)")

    def broadcast(self, message: dict) -> bool:
        """Broadcast a message to all connected clients.

        Thread-safe: can be called from the watchdog/debouncer thread.
        Returns False when there was nobody to send to.
        """
        if self._loop is None:
            return False

        with self._lock:
            clients = set(self._clients)

        if not clients:
            return False

        data = json.dumps(message)

        async def _send_all():
            await asyncio.gather(*(self._safe_send(client, data) for client in clients))

        asyncio.run_coroutine_threadsafe(_send_all(), self._loop)
        return True

    @staticmethod
    async def _safe_send(client: ServerConnection, data: str) -> None:
        try:
            await client.send(data)
        except websockets.exceptions.ConnectionClosed:
            pass  # Cleaned up by handler()

    def notify_reload(self) -> bool:
        """Send a full page reload message."""
        return self.broadcast({"type": "reload"})


# =============================================================================
# Notification Debouncer
# =============================================================================


class NotificationDebouncer:
    """Coalesces reload notifications that arrive within ``delay`` seconds."""

    def __init__(self, broadcaster: ReloadBroadcaster, delay: float = 0.05):
        self.broadcaster = broadcaster
        self.delay = delay
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def schedule(self) -> None:
        """Schedule a reload notification."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        self.broadcaster.notify_reload()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


# =============================================================================
# Dev Server
# =============================================================================


class DevServer:
    """HTTP server rooted at the build directory, plus live reload."""

    def __init__(self, options: ServerOptions):
        self.options = options
        self.broadcaster = ReloadBroadcaster()
        self.notifier = NotificationDebouncer(self.broadcaster)
        self._httpd: Optional[ThreadingHTTPServer] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._ws_ready = threading.Event()
        self._ws_error: Optional[BaseException] = None
        self._ws_stop: Optional[asyncio.Future] = None
        self._ws_thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._httpd is not None

    @property
    def port(self) -> int:
        """Bound HTTP port (differs from options.port when that is 0)."""
        if self._httpd is not None:
            return self._httpd.server_address[1]
        return self.options.port

    @property
    def url(self) -> str:
        return f"http://{self.options.host}:{self.port}"

    def start(self) -> None:
        """Start serving. Calling it again is a no-op.

        Raises:
            StageError: STARTUP if a port cannot be bound.
        """
        if self.running:
            return

        ws_port = self.options.ws_port if self.options.livereload else None
        handler_cls = type("DevpipeHandler", (InjectingHandler,), {"ws_port": ws_port})
        handler_factory = functools.partial(handler_cls, directory=str(self.options.root))

        try:
            httpd = ThreadingHTTPServer((self.options.host, self.options.port), handler_factory)
        except OSError as e:
            raise StageError(
                ErrorKind.STARTUP,
                f"Could not bind HTTP server on port {self.options.port}: {e}",
            ) from e
        httpd.daemon_threads = True
        self._httpd = httpd
        threading.Thread(target=httpd.serve_forever, daemon=True).start()
        log.success(f"HTTP server: {self.url} (root: {self.options.root})")

        if self.options.livereload:
            self._start_ws_server()

    def _start_ws_server(self) -> None:
        loop = asyncio.new_event_loop()
        self._loop = loop
        self._ws_error = None
        self._ws_ready.clear()
        self.broadcaster.set_loop(loop)

        async def run_ws_server():
            async with ws_serve(
                self.broadcaster.handler,
                self.options.host,
                self.options.ws_port,
                process_request=_ws_process_request,
            ):
                self._ws_stop = loop.create_future()
                self._ws_ready.set()
                await self._ws_stop  # Resolved by stop()

        def ws_thread_target():
            asyncio.set_event_loop(loop)
            try:
                loop.run_until_complete(run_ws_server())
            except OSError as e:
                self._ws_error = e
                self._ws_ready.set()
            finally:
                loop.close()

        self._ws_thread = threading.Thread(target=ws_thread_target, daemon=True)
        self._ws_thread.start()
        self._ws_ready.wait(timeout=5)

        if self._ws_error is not None:
            self.stop()
            raise StageError(
                ErrorKind.STARTUP,
                f"Could not bind live reload server on port {self.options.ws_port}: {self._ws_error}",
            )
        log.success(f"Live reload: ws://{self.options.host}:{self.options.ws_port}/ws")

    def notify_reload(self) -> None:
        """Ask connected browsers to refresh (debounced)."""
        if self.options.livereload and self.running:
            self.notifier.schedule()

    def stop(self) -> None:
        self.notifier.cancel()
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd.server_close()
            self._httpd = None
        if self._ws_stop is not None and self._loop is not None:
            # Leaving the ws_serve block closes the listener and its clients
            self._loop.call_soon_threadsafe(_resolve, self._ws_stop)
        if self._ws_thread is not None:
            self._ws_thread.join(timeout=5)
        self.broadcaster.set_loop(None)
        self._ws_stop = None
        self._ws_thread = None
        self._loop = None


async def _ws_process_request(connection, request):
    """Only accept WebSocket connections on /ws path."""
    if request.path != "/ws":
        return connection.respond(HTTPStatus.NOT_FOUND, "Not found\n")
    return None


def _resolve(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)
