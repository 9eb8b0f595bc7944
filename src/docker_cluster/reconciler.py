import re

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .errors import ConfigError, RuntimeCallFailure
from .gateway import RuntimeGateway
from .lifecycle import SlotLifecycle
from .models import Configuration, InstanceObservation, Slot
from .ports import allocate_ports

console = Console()
err_console = Console(stderr=True)


class Reconciler:
    """Rolling, health-gated replacement of the instances `<prefix>.1 .. <prefix>.N`."""

    def __init__(self, gateway: RuntimeGateway, lifecycle: SlotLifecycle | None = None):
        self.gateway = gateway
        self.lifecycle = lifecycle or SlotLifecycle(gateway)

    def rollout(self, config: Configuration) -> None:
        """
        One full pass over the cluster.
        Raises StartFailure on the first slot that cannot come up; later slots are left untouched.
        """
        if not config.name:
            raise ConfigError("--name is required")
        prefix = config.name

        image_id = None
        if config.count > 0:
            if not config.image:
                raise ConfigError("--image is required when --count is greater than 0")
            image_id = self.gateway.resolve_image(config.image)
            console.print(f"[blue]⚙️  Rolling out {config.image} ({image_id[:19]}) to {config.count} x '{prefix}'[/blue]")

        # port overflow in any slot must surface before the first engine mutation
        for slot in self.slots(config):
            allocate_ports(slot.index, config.ports)

        desired = {slot.name for slot in self.slots(config)}
        for instance in self.measure_actual_state(prefix):
            if instance.name not in desired:
                console.print(f"[yellow]⚠️  '{instance.name}' is outside the cluster size {config.count}[/yellow]")
                self.lifecycle.stop(instance, config.timeout)

        try:
            for name in self.gateway.prune(f"{prefix}.", slot_name_pattern(prefix)):
                console.print(f"   [dim]Pruned stopped container '{name}'[/dim]")
        except RuntimeCallFailure as e:
            err_console.print(f"[orange1]Warning: prune failed:[/orange1] {escape(str(e))}")

        for slot in self.slots(config):
            occupant = self.occupant(slot)
            deviation = self.calculate_deviation(config, image_id, occupant)
            if deviation is None:
                console.print(f"[dim green]✓ '{slot.name}' already runs the desired image[/dim green]")
                continue
            self.converge(config, slot, image_id, occupant, deviation)

    def slots(self, config: Configuration) -> list[Slot]:
        return [Slot(index=i, prefix=config.name, base_hostname=config.hostname) for i in range(1, config.count + 1)]

    def measure_actual_state(self, prefix: str) -> list[InstanceObservation]:
        """Running instances of this cluster."""
        slot_name = slot_name_pattern(prefix)
        return [i for i in self.gateway.list_running(f"{prefix}.") if slot_name.fullmatch(i.name)]

    def occupant(self, slot: Slot) -> InstanceObservation | None:
        for instance in self.gateway.list_all(slot.name):
            if instance.name == slot.name:
                return instance
        return None

    def calculate_deviation(
        self, config: Configuration, image_id: str, actual: InstanceObservation | None
    ) -> str | None:
        if not actual:
            return "Container missing"

        if not actual.status.running:
            return f"Status deviation (Actual: {actual.status.text})"

        if actual.image != image_id:
            return f"Image mismatch (Actual: {actual.image[:19]} != Desired: {image_id[:19]})"

        if config.force:
            return "Forced restart"

        return None

    def converge(
        self,
        config: Configuration,
        slot: Slot,
        image_id: str,
        actual: InstanceObservation | None,
        deviation_reason: str,
    ):
        console.print(f"[bold yellow]⚠️  {slot.name}:[/bold yellow] {escape(deviation_reason)}")

        if actual:
            self.lifecycle.stop(actual, config.timeout)

        self.lifecycle.start(config, slot, image_id)

    def instance_table(self, prefix: str) -> Table:
        table = Table(title=f"Instances of '{prefix}'")
        table.add_column("NAME")
        table.add_column("CONTAINER ID")
        table.add_column("IMAGE")
        table.add_column("STATUS")
        for instance in self.gateway.list_all(f"{prefix}."):
            table.add_row(instance.name, instance.short_id, instance.image[:19], instance.status.text)
        return table


def slot_name_pattern(prefix: str) -> re.Pattern:
    """`<prefix>.<number>`; `<prefix>.<other>` belongs to another cluster."""
    return re.compile(rf"{re.escape(prefix)}\.\d+")
