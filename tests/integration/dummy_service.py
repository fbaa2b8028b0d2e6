"""
Stand-in for a Java service.

Behaviour is driven by environment variables:
  DUMMY_PORT         serve GET /health on this port
  DUMMY_READY_AFTER  seconds before the health endpoint starts answering
  DUMMY_EXIT_AFTER   exit on its own after this many seconds
  DUMMY_EXIT_CODE    exit code used with DUMMY_EXIT_AFTER (default 3)
"""
import http.server
import os
import signal
import sys
import threading
import time


class Handler(http.server.BaseHTTPRequestHandler):
    def do_GET(self):
        body = b'{"status":"UP"}'
        self.send_response(200)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


def serve(port, delay):
    time.sleep(delay)
    server = http.server.HTTPServer(("127.0.0.1", port), Handler)
    print(f"INFO listening on {port}", flush=True)
    server.serve_forever()


def on_term(signum, frame):
    print("INFO Dummy service shutting down", flush=True)
    sys.exit(0)


def main():
    signal.signal(signal.SIGTERM, on_term)
    print("INFO Dummy service starting...", flush=True)
    print(f"APP_ENV: {os.environ.get('APP_ENV')}", flush=True)
    print("WARNING disk almost full", flush=True)

    port = int(os.environ.get("DUMMY_PORT", "0"))
    if port:
        ready_after = float(os.environ.get("DUMMY_READY_AFTER", "0"))
        threading.Thread(target=serve, args=(port, ready_after), daemon=True).start()

    exit_after = os.environ.get("DUMMY_EXIT_AFTER")
    if exit_after:
        time.sleep(float(exit_after))
        print("ERROR Dummy service crashing", flush=True)
        sys.exit(int(os.environ.get("DUMMY_EXIT_CODE", "3")))

    while True:
        time.sleep(0.1)


if __name__ == "__main__":
    main()
