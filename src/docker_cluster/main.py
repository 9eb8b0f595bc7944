import sys

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from .arguments import load_configuration
from .errors import ClusterError, StartFailure
from .gateway import RuntimeGateway
from .lifecycle import SlotLifecycle
from .one_off import run_one_off
from .reconciler import Reconciler
from .settings import AppSettings, get_settings

console = Console()
err_console = Console(stderr=True)


def main(argv: list[str] | None = None, settings: AppSettings | None = None, gateway: RuntimeGateway | None = None) -> int:
    settings = settings or get_settings()
    argv = sys.argv[1:] if argv is None else argv

    try:
        config = load_configuration(argv, settings)
        gateway = gateway or RuntimeGateway.from_settings(settings)

        if config.one_off:
            return run_one_off(gateway, config)

        console.print(
            Panel.fit(
                f"[bold]docker-cluster[/bold]\n"
                f"Cluster: [blue]{config.name}[/blue] x {config.count}\n"
                f"Image: [blue]{config.image or '-'}[/blue]",
                title="Rollout",
            )
        )
        reconciler = Reconciler(gateway, SlotLifecycle(gateway, settings=settings))
        reconciler.rollout(config)
        console.print(reconciler.instance_table(config.name))
        return 0

    except StartFailure as e:
        err_console.print(f"[bold red]❌ Rollout aborted at {e.slot_name} ({e.phase}):[/bold red] {escape(e.detail)}")
        err_console.print("[dim red]Remaining slots were not processed.[/dim red]")
        return 1
    except ClusterError as e:
        err_console.print(f"[bold red]❌ {type(e).__name__}:[/bold red] {escape(str(e))}")
        return 1
    except KeyboardInterrupt:
        err_console.print("\n[bold orange1]🛑 Interrupted. Re-run the same command to resume the rollout.[/bold orange1]")
        return 130


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()
