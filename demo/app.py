# app.py
import os
import sys
import time
from http.server import BaseHTTPRequestHandler, HTTPServer

START_DELAY = int(os.environ.get("STARTUP_DELAY_SECONDS", "2"))
START_TIME = time.time()


class Handler(BaseHTTPRequestHandler):
    def _write(self, code: int, body: str):
        self.send_response(code)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.end_headers()
        self.wfile.write(body.encode("utf-8"))

    def do_GET(self):
        if self.path == "/readyz":
            if time.time() - START_TIME >= START_DELAY:
                self._write(200, "ready\n")
            else:
                self._write(503, "starting\n")
        else:
            self._write(200, f"hello from {os.environ.get('HOSTNAME', 'demo')}\n")

    def log_message(self, format, *args):
        # one line per request on stdout, so `kubectl logs` shows it
        print(f"{self.command} {self.path} {format % args}", flush=True)


def main():
    port = int(os.environ.get("PORT", "8080"))
    server = HTTPServer(("", port), Handler)
    print(f"listening on {port}", flush=True)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    main()
