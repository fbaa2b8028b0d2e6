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
Command Line Interface for vtx.
"""
import json
import logging
import os
import time

import click

from ..exceptions import AlreadyRunningError, DependencyTimeoutError, VtxError
from ..MANAGERS.log_aggregator import LogAggregator
from ..MANAGERS.service_orchestrator import FleetReport, Orchestrator
from ..PARSERS.fleet_parser import FleetParser

DEFAULT_FLEET_FILE = "vtx.yml"
DEFAULT_LOG_DIR = ".vtx/logs"


def _echo_report(report: FleetReport) -> None:
    click.echo(f"{'SERVICE':25} {'RESULT':16} MESSAGE")
    click.echo("-" * 60)
    for name in report.order:
        outcome = report.outcomes.get(name)
        if outcome is None:
            continue
        click.echo(f"{name:25} {outcome.status.value:16} {outcome.message}")


def _wait_for_interrupt() -> None:
    while True:
        time.sleep(1)


def _orchestrator(ctx) -> Orchestrator:
    orchestrator = ctx.obj.get("orchestrator")
    if orchestrator is None:
        raise click.ClickException(f"{ctx.obj['file']} not found.")
    return orchestrator


@click.group()
@click.option("--file", "-f", default=DEFAULT_FLEET_FILE, help="Fleet file path")
@click.option("--log-dir", default=None, help="Directory for per-service log files")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, file, log_dir, verbose):
    """
    vtx - local orchestrator for a fleet of Java services.

    Starts services in dependency order, waits on their health endpoints and
    supervises the processes.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["file"] = file
    if os.path.exists(file):
        try:
            fleet = FleetParser().parse(file, log_dir=log_dir)
        except VtxError as e:
            raise click.ClickException(str(e))
        if not fleet.settings.log_dir:
            fleet.settings.log_dir = DEFAULT_LOG_DIR
        ctx.obj["fleet"] = fleet
        ctx.obj["orchestrator"] = Orchestrator.from_fleet(fleet)


@cli.command()
@click.option("--profile", "-p", default=None, help="Start only this profile's services")
@click.option("--all", "start_all", is_flag=True, help="Ignore the default profile and start every service")
@click.argument("services", nargs=-1)
@click.pass_context
def up(ctx, profile, start_all, services):
    """Start services and supervise them until interrupted."""
    orchestrator = _orchestrator(ctx)
    if not profile and not services and not start_all:
        default = orchestrator.config_store.default_profile()
        profile = default.name if default else None
    try:
        if profile:
            report = orchestrator.start_profile(profile)
        elif services:
            for name in services:
                # an earlier name may already have started this one as a dependency
                try:
                    result = orchestrator.start_one(name)
                except AlreadyRunningError as e:
                    click.echo(str(e))
                    continue
                click.echo(result.message)
            report = None
        else:
            report = orchestrator.start_all()
    except DependencyTimeoutError as e:
        if e.report is not None:
            _echo_report(e.report)
        orchestrator.shutdown()
        raise click.ClickException(str(e))
    except VtxError as e:
        orchestrator.shutdown()
        raise click.ClickException(str(e))

    if report is not None:
        _echo_report(report)
    orchestrator.monitor.start()
    click.echo("Running... Press Ctrl+C to stop.")
    try:
        _wait_for_interrupt()
    except KeyboardInterrupt:
        click.echo("\nStopping services...")
        _echo_report(orchestrator.shutdown())


@cli.command()
@click.pass_context
def ps(ctx):
    """List configured services"""
    orchestrator = _orchestrator(ctx)
    click.echo(f"{'SERVICE':25} {'ORDER':6} {'PORT':6} {'ENABLED':8} DEPENDS ON")
    click.echo("-" * 70)
    for service in orchestrator.registry.list():
        deps = ", ".join(d.service_name for d in service.dependencies)
        click.echo(f"{service.name:25} {service.order:<6} {service.port or '-':<6} {str(service.is_enabled):8} {deps}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print JSON")
@click.pass_context
def deps(ctx, as_json):
    """Show dependencies and dependents of every service"""
    overview = _orchestrator(ctx).dependency_overview()
    if as_json:
        click.echo(json.dumps(overview, indent=2))
        return
    for name, info in overview.items():
        click.echo(name)
        for dep in info["dependencies"]:
            flags = dep["type"]
            if dep["healthCheck"]:
                flags += ", health"
            click.echo(f"  -> {dep['serviceName']} ({flags}, timeout {dep['timeout']:g}s)")
        for dependent in info["dependentOn"]:
            click.echo(f"  <- {dependent}")


@cli.command()
@click.pass_context
def validate(ctx):
    """Validate the dependency configuration"""
    result = _orchestrator(ctx).validate()
    for warning in result.warnings:
        click.echo(f"warning: {warning}")
    for error in result.errors:
        click.echo(f"error: {error}")
    if not result.valid:
        ctx.exit(1)
    click.echo("Dependency configuration is valid.")


@cli.command()
@click.pass_context
def order(ctx):
    """Print the startup order"""
    try:
        startup = _orchestrator(ctx).startup_order()
    except VtxError as e:
        raise click.ClickException(str(e))
    for position, name in enumerate(startup.startup_order, 1):
        click.echo(f"{position:3}. {name}")


@cli.command()
@click.argument("service")
@click.pass_context
def health(ctx, service):
    """Probe a service's health endpoint once"""
    try:
        result = _orchestrator(ctx).check_health(service)
    except VtxError as e:
        raise click.ClickException(str(e))
    click.echo(result.message)


@cli.command()
@click.pass_context
def profiles(ctx):
    """List profiles"""
    for profile in _orchestrator(ctx).config_store.profiles():
        marker = "*" if profile.is_default else " "
        click.echo(f"{marker} {profile.name:20} {', '.join(profile.services)}")


@cli.command()
@click.argument("services", nargs=-1)
@click.pass_context
def logs(ctx, services):
    """Tail service log files"""
    orchestrator = _orchestrator(ctx)
    if not services:
        services = orchestrator.registry.names()
    aggregator = LogAggregator(orchestrator.settings.log_dir or DEFAULT_LOG_DIR)
    try:
        aggregator.tail_logs(list(services), emit=lambda name, line: click.echo(f"{name} | {line}"))
    except KeyboardInterrupt:
        pass


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == "__main__":
    main()
