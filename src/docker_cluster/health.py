from rich.console import Console

from .errors import ExecTimeout, InstanceGone
from .gateway import RuntimeGateway
from .models import HealthOutcome, HealthSpec, InstanceObservation

console = Console()

# Fetched from inside the container so the check sees the service the way its peers do.
URL_CHECK_SCRIPT = (
    'if command -v curl >/dev/null 2>&1; then exec curl --fail --silent --output /dev/null "$0"; '
    'else exec wget -q -O /dev/null "$0"; fi'
)


class HealthEvaluator:
    def __init__(self, gateway: RuntimeGateway, check_timeout: float = 10.0):
        self.gateway = gateway
        self.check_timeout = check_timeout

    def evaluate(
        self, instance: InstanceObservation, spec: HealthSpec | None, budget: float | None = None
    ) -> HealthOutcome:
        """
        Decide whether a running instance is ready.
        Without an explicit check the engine's own health annotation is used; an instance
        without one is healthy as soon as it runs.
        """
        if spec is None:
            if not instance.status.health_annotated or instance.status.healthy:
                return HealthOutcome.HEALTHY
            return HealthOutcome.NOT_YET_HEALTHY

        timeout = self.check_timeout if budget is None else max(0.0, min(self.check_timeout, budget))
        try:
            exit_code = self.gateway.exec(instance.id, self.check_command(spec), timeout=timeout)
        except ExecTimeout:
            console.print(f"   [dim]Health check on {instance.name} timed out after {timeout:g}s[/dim]")
            return HealthOutcome.NOT_YET_HEALTHY
        except InstanceGone:
            return HealthOutcome.FAILED

        return HealthOutcome.HEALTHY if exit_code == 0 else HealthOutcome.NOT_YET_HEALTHY

    @staticmethod
    def check_command(spec: HealthSpec) -> list[str]:
        if spec.kind == "url":
            return ["sh", "-c", URL_CHECK_SCRIPT, spec.value]
        return ["sh", "-c", spec.value]
