import sys
import threading
import time

from vtx.MANAGERS.registry import ServiceRegistry
from vtx.MANAGERS.service_orchestrator import Orchestrator
from vtx.MODELS.configuration import GlobalConfig
from vtx.MODELS.service import Service, ServiceDependency, ServiceStatus
from vtx.PARSERS.fleet_parser import FleetParser


def test_stress_orchestration(tmp_path):
    """
    Starts 30 services in dependency chains of three while other threads
    keep polling status, then stops them all.
    """
    services = []
    for i in range(30):
        deps = []
        if i % 3:
            deps = [ServiceDependency(service_name=f"service_{i - 1}", retry_interval=0.05)]
        services.append(Service(
            name=f"service_{i}",
            command=[sys.executable, "-c", "import time; time.sleep(60)"],
            dependencies=deps,
        ))

    orchestrator = Orchestrator(
        ServiceRegistry(services),
        settings=GlobalConfig(projects_dir=str(tmp_path), stop_timeout=5),
    )
    stop_polling = threading.Event()
    polls = []

    def poll_status():
        while not stop_polling.is_set():
            polls.append(len(orchestrator.status()))

    pollers = [threading.Thread(target=poll_status) for _ in range(4)]
    for t in pollers:
        t.start()

    try:
        start_time = time.time()
        report = orchestrator.start_all()
        print(f"Started 30 services in {time.time() - start_time:.2f}s")
        assert report.succeeded
        assert all(s.status in (ServiceStatus.STARTING, ServiceStatus.RUNNING) for s in services)
    finally:
        stop_polling.set()
        for t in pollers:
            t.join(timeout=5)
        orchestrator.stop_all()

    assert polls and all(n == 30 for n in polls)
    assert all(s.status == ServiceStatus.STOPPED for s in services)


def test_large_config_parsing():
    parser = FleetParser(context={})

    # Generate a large fleet file
    content = "services:\n"
    for i in range(1000):
        content += f"  service_{i}:\n"
        content += f"    port: {10000 + i}\n"
        content += "    envVars:\n"
        content += f"      VAR_{i}: VALUE_{i}\n"

    start_time = time.time()
    fleet = parser.parse_from_string(content)
    end_time = time.time()

    assert len(fleet.services) == 1000
    assert end_time - start_time < 5.0
