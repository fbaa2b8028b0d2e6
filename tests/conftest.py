# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Shared fixtures: service factories, a throwaway health endpoint and the
dummy service script used for process supervision tests.
"""
import http.server
import json
import os
import sys
import threading
import time

import pytest

from vtx.MODELS.configuration import GlobalConfig
from vtx.MODELS.service import Service, ServiceDependency

DUMMY_SERVICE = os.path.join(os.path.dirname(__file__), "integration", "dummy_service.py")


def make_service(name, deps=(), **kwargs):
    """
    Builds a Service. ``deps`` items are names (hard edges) or dicts of
    ServiceDependency fields.
    """
    dependencies = []
    for dep in deps:
        if isinstance(dep, str):
            dependencies.append(ServiceDependency(service_name=dep))
        else:
            dependencies.append(ServiceDependency(**dep))
    return Service(name=name, dependencies=dependencies, **kwargs)


def dummy_command():
    return [sys.executable, "-u", DUMMY_SERVICE]


def wait_for(predicate, timeout=10.0, interval=0.05):
    """Polls ``predicate`` until it is truthy; returns its last value."""
    deadline = time.monotonic() + timeout
    result = predicate()
    while not result and time.monotonic() < deadline:
        time.sleep(interval)
        result = predicate()
    return result


class _HealthHandler(http.server.BaseHTTPRequestHandler):
    def do_GET(self):
        server = self.server
        server.hits += 1
        server.last_auth = self.headers.get("Authorization")
        body = json.dumps({"status": server.body_status}).encode()
        self.send_response(server.status_code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def health_server():
    """
    An HTTP server on a free local port. Set ``status_code`` and
    ``body_status`` to control its answers.
    """
    server = http.server.ThreadingHTTPServer(("127.0.0.1", 0), _HealthHandler)
    server.status_code = 200
    server.body_status = "UP"
    server.hits = 0
    server.last_auth = None
    server.url = f"http://127.0.0.1:{server.server_address[1]}"
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def settings(tmp_path):
    return GlobalConfig(
        projects_dir=str(tmp_path),
        stop_timeout=5,
        health_timeout=1,
        health_startup_grace=60,
    )
