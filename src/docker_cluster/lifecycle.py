import time
from collections.abc import Callable

from rich.console import Console
from rich.markup import escape

from .errors import InstanceGone, RuntimeCallFailure, StartFailure
from .gateway import RuntimeGateway, is_kill_signal
from .health import HealthEvaluator
from .models import Configuration, HealthOutcome, InstanceObservation, Slot
from .ports import allocate_ports
from .settings import AppSettings, get_settings

console = Console()
err_console = Console(stderr=True)


class SlotLifecycle:
    """
    Stop-then-start protocol for a single slot.
    Every decision re-reads the engine; nothing is remembered between polls.
    """

    def __init__(
        self,
        gateway: RuntimeGateway,
        health: HealthEvaluator | None = None,
        settings: AppSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.health = health or HealthEvaluator(gateway, self.settings.HEALTH_CHECK_TIMEOUT)
        self.clock = clock
        self.sleep = sleep

    def _is_running(self, instance: InstanceObservation) -> bool:
        return any(o.id == instance.id for o in self.gateway.list_running(instance.name))

    def stop(self, instance: InstanceObservation, timeout: float) -> None:
        """Graceful stop, forced kill once the timeout passes, then remove regardless."""
        console.print(f"   [dim]Stopping '{instance.name}' ({instance.short_id})...[/dim]")
        try:
            signal = self.gateway.stop(instance.id)
        except InstanceGone:
            console.print(f"   [dim]'{instance.name}' is already gone[/dim]")
            return

        deadline = self.clock() + timeout
        while self.clock() < deadline:
            if not self._is_running(instance):
                break
            self.sleep(self.settings.POLL_INTERVAL)
        else:
            if self._is_running(instance):
                if is_kill_signal(signal):
                    console.print(f"[orange1]⚠️  '{instance.name}' still running after {signal}[/orange1]")
                else:
                    console.print(
                        f"[bold orange1]⚠️  '{instance.name}' did not stop within {timeout:g}s, killing...[/bold orange1]"
                    )
                    try:
                        self.gateway.kill(instance.id)
                    except InstanceGone:
                        console.print(f"   [dim]'{instance.name}' is already gone[/dim]")
                        return
                    self.sleep(self.settings.KILL_WAIT)

        try:
            self.gateway.remove(instance.id)
        except RuntimeCallFailure as e:
            err_console.print(f"[bold red]❌ Removing {instance.name} failed:[/bold red] {escape(str(e))}")
            return
        console.print(f"   [dim]Removed '{instance.name}'[/dim]")

    def start(self, config: Configuration, slot: Slot, image_id: str) -> str:
        """Run a fresh instance for the slot and wait for it to become healthy."""
        ports = allocate_ports(slot.index, config.ports)
        flags = " ".join(p.flag for p in ports)
        console.print(f"   [dim]Starting '{slot.name}' as {slot.hostname} {flags}...[/dim]")

        try:
            container_id = self.gateway.run(
                slot.name,
                slot.hostname,
                image_id,
                command=config.command,
                ports=ports,
                extra=config.run_options.engine_kwargs,
            )
        except RuntimeCallFailure as e:
            raise StartFailure(slot.name, "run", str(e)) from e

        deadline = self.clock() + config.timeout
        while True:
            current = [o for o in self.gateway.list_running(slot.name) if o.name == slot.name]
            if not current:
                raise StartFailure(slot.name, "start", "instance exited while starting")

            instance = current[0]
            if instance.status.running:
                outcome = self.health.evaluate(instance, config.healthcheck, budget=deadline - self.clock())
                if outcome is HealthOutcome.HEALTHY:
                    console.print(f"[bold green]✅ '{slot.name}' is up ({instance.status.text})[/bold green]")
                    return container_id
                if outcome is HealthOutcome.FAILED:
                    raise StartFailure(slot.name, "health", "instance disappeared during health check")

            if self.clock() >= deadline:
                raise StartFailure(
                    slot.name, "health", f"not healthy within {config.timeout}s (last status: {instance.status.text})"
                )
            self.sleep(self.settings.POLL_INTERVAL)
