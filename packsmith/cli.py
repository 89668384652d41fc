"""packsmith CLI — the command line front end of the reconciliation engine."""

import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from packsmith import __version__
from packsmith.config import SOURCE_ROOT_ENV, load_settings
from packsmith.errors import (
    ActionNotAllowedError,
    MetadataError,
    PackSmithError,
    WriteFailure,
)

console = Console()

ACTION_CHOICES = ["install", "upgrade", "reinstall", "repair", "expansions", "migrate", "alongside", "force", "cancel"]


def _setup_logging(verbose: bool) -> None:
    logger = logging.getLogger("packsmith")
    logger.handlers.clear()
    logger.addHandler(RichHandler(console=Console(stderr=True), show_path=False))
    logger.setLevel(logging.INFO if verbose else logging.WARNING)


def _locator(ctx: click.Context):
    from packsmith.registry.collections import ResourceLocator

    settings = ctx.obj["settings"]
    if settings.source_root is None:
        console.print(f"[red]No source distribution.[/] Pass --source or set {SOURCE_ROOT_ENV}.")
        ctx.exit(1)
    try:
        return ResourceLocator.from_settings(settings)
    except PackSmithError as e:
        console.print(f"[red]{e}[/]")
        ctx.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("--source", "-s", default=None, help=f"Source distribution root (default: ${SOURCE_ROOT_ENV})")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True), help="YAML settings override")
@click.option("--verbose", "-v", is_flag=True, help="Log each package as it is synced")
@click.pass_context
def main(ctx: click.Context, source: str | None, config_path: str | None, verbose: bool):
    """packsmith — install, upgrade and repair agent resource packages.

    Compares what a project directory already holds with what the source
    distribution offers, then installs, upgrades, repairs or leaves it alone.
    User-modified files are backed up before anything overwrites them.
    """
    _setup_logging(verbose)
    settings = load_settings(config_path)
    if source:
        settings.source_root = Path(source)
    ctx.obj = {"settings": settings}


# ── Status ───────────────────────────────────────────────────────────


@main.command()
@click.argument("directory", default=".")
@click.pass_context
def status(ctx: click.Context, directory: str):
    """Show what is installed in DIRECTORY."""
    from packsmith.sync.manifest import ManifestStore
    from packsmith.sync.state import StateDetector, normalize_root

    settings = ctx.obj["settings"]
    root = normalize_root(directory, settings)

    try:
        state = StateDetector(ManifestStore(settings), settings).detect(root)
    except PackSmithError as e:
        console.print(f"[red]{e}[/]")
        ctx.exit(1)

    lines = [f"Root:  {root}", f"State: [cyan]{state.kind.value}[/]"]
    manifest = state.manifest
    if manifest is not None:
        lines.append(f"Version: {manifest.version}")
        install_type = manifest.install_type.value
        if manifest.selected_resource:
            install_type += f" ({manifest.selected_resource})"
        lines.append(f"Install type: {install_type}")
        lines.append(f"Installed at: {manifest.installed_at}")
        lines.append(f"IDEs: {', '.join(sorted(manifest.ides_configured)) or '-'}")
        lines.append(f"Files: {len(manifest.files)}")
    elif state.has_other_files:
        lines.append("Other files present")

    if settings.source_root is not None:
        from packsmith.sync.reconcile import Reconciler

        try:
            assessment = Reconciler(_locator(ctx), settings).assess(root)
        except PackSmithError as e:
            console.print(f"[red]{e}[/]")
            ctx.exit(1)
        lines.append(f"Available: {assessment.available_version}")
        if assessment.integrity is not None:
            lines.append(f"Integrity: {assessment.integrity.summary()}")
        lines.append(f"Actions: {', '.join(a.value for a in assessment.actions)}")
        lines.append(f"Recommended: [green]{assessment.recommended.value}[/]")

    console.print(Panel("\n".join(lines), title="packsmith status"))

    if state.expansion_packs:
        table = Table(title=f"Expansion Packs ({len(state.expansion_packs)} found)")
        table.add_column("Pack", style="cyan")
        table.add_column("Version")
        table.add_column("Files", justify="right")
        for pack_id, pack in state.expansion_packs.items():
            if pack.manifest is None:
                table.add_row(pack_id, "[yellow]no manifest[/]", "-")
            else:
                table.add_row(pack_id, pack.manifest.version, str(len(pack.manifest.files)))
        console.print(table)


# ── Check ────────────────────────────────────────────────────────────


@main.command()
@click.argument("directory", default=".")
@click.pass_context
def check(ctx: click.Context, directory: str):
    """Verify installed files against their manifests.

    Exits with status 1 when any file is missing or modified.
    """
    from packsmith.sync.integrity import IntegrityChecker
    from packsmith.sync.manifest import ManifestStore
    from packsmith.sync.provenance import ProvenanceResolver
    from packsmith.sync.state import StateDetector, normalize_root

    settings = ctx.obj["settings"]
    root = normalize_root(directory, settings)
    try:
        state = StateDetector(ManifestStore(settings), settings).detect(root)
    except PackSmithError as e:
        console.print(f"[red]{e}[/]")
        ctx.exit(1)

    manifests = []
    if state.manifest is not None:
        manifests.append(state.manifest)
    manifests += [p.manifest for p in state.expansion_packs.values() if p.manifest is not None]
    if not manifests:
        console.print(f"[yellow]Nothing installed in {root}.[/]")
        return

    provenance = ProvenanceResolver(_locator(ctx), settings) if settings.source_root else None
    checker = IntegrityChecker(provenance, settings)

    console.print(f"\n[bold blue]packsmith[/] — Checking: {root}\n")
    failed = False
    for manifest in manifests:
        label = settings.package_dir_name(manifest.package_id)
        report = checker.check(root, manifest)
        if report.has_issues:
            failed = True
            console.print(f"  [red]x[/] {label} {manifest.version}: {report.summary()}")
        else:
            console.print(f"  [green]v[/] {label} {manifest.version}: {report.summary()}")
        for path in report.missing:
            console.print(f"    [red]missing[/]  {path}")
        for path in report.modified:
            console.print(f"    [yellow]modified[/] {path}")
        for path in report.unverified:
            console.print(f"    [dim]unverified[/] {path}")

    if failed:
        ctx.exit(1)


# ── Install ──────────────────────────────────────────────────────────


@main.command()
@click.argument("directory", default=".")
@click.option("--full", "full", is_flag=True, help="Install the entire core collection")
@click.option("--agent", default=None, help="Install a single agent and its dependencies")
@click.option("--team", default=None, help="Install a team, its agents and their dependencies")
@click.option("--expansion-pack", "-e", "packs", multiple=True, help="Expansion pack id to install")
@click.option("--action", "-a", default=None, type=click.Choice(ACTION_CHOICES), help="Action (default: recommended)")
@click.option("--pack-action", multiple=True, help="Per-pack action as ID=ACTION")
@click.option("--ide", "ides", multiple=True, help="IDE to record as configured")
@click.option("--skip-modified", is_flag=True, help="Leave modified files alone instead of backing them up")
@click.pass_context
def install(
    ctx: click.Context,
    directory: str,
    full: bool,
    agent: str | None,
    team: str | None,
    packs: tuple,
    action: str | None,
    pack_action: tuple,
    ides: tuple,
    skip_modified: bool,
):
    """Install, upgrade or repair packsmith resources in DIRECTORY."""
    from packsmith.models.installation import InstallType
    from packsmith.sync.file_sync import ConflictPolicy
    from packsmith.sync.reconcile import Action, InstallRequest, PackAction, Reconciler
    from packsmith.sync.state import normalize_root

    if sum(bool(x) for x in (full, agent, team)) > 1:
        raise click.UsageError("--full, --agent and --team are mutually exclusive")

    install_type = None
    if agent:
        install_type = InstallType.SINGLE_AGENT
    elif team:
        install_type = InstallType.TEAM
    elif full:
        install_type = InstallType.FULL
    elif packs:
        install_type = InstallType.EXPANSION_ONLY

    pack_actions = {}
    for item in pack_action:
        pack_id, _, value = item.partition("=")
        try:
            pack_actions[pack_id] = PackAction(value)
        except ValueError:
            raise click.BadParameter(f"expected ID=ACTION, got {item!r}", param_hint="--pack-action") from None

    settings = ctx.obj["settings"]
    root = normalize_root(directory, settings)
    reconciler = Reconciler(_locator(ctx), settings)
    request = InstallRequest(
        install_type=install_type,
        resource_id=agent or team,
        expansion_packs=list(packs),
        ides=set(ides),
        conflict_policy=ConflictPolicy.SKIP if skip_modified else ConflictPolicy.BACKUP,
        pack_actions=pack_actions,
    )

    console.print(f"\n[bold blue]packsmith[/] — Reconciling: {root}\n")

    try:
        result = reconciler.reconcile(root, Action(action) if action else None, request)
    except ActionNotAllowedError as e:
        console.print(f"[red]{e}[/]")
        assessment = reconciler.assess(root)
        console.print(f"  Available: {', '.join(a.value for a in assessment.actions)}")
        ctx.exit(1)
    except WriteFailure as e:
        console.print(f"[red]{e}[/]")
        for path in e.completed:
            console.print(f"  [dim]written[/] {path}")
        ctx.exit(1)
    except PackSmithError as e:
        console.print(f"[red]{e}[/]")
        ctx.exit(1)

    if result.cancelled:
        console.print(f"[yellow]Cancelled ({result.state.kind.value}); nothing changed.[/]")
        return

    table = Table(title=f"{result.action.value.capitalize()} ({len(result.packages)} packages)")
    table.add_column("Package", style="cyan")
    table.add_column("Action")
    table.add_column("Version")
    table.add_column("Written", justify="right", style="green")
    table.add_column("Unchanged", justify="right")
    table.add_column("Backed up", justify="right", style="yellow")
    table.add_column("Skipped", justify="right")

    for outcome in result.packages:
        sync = outcome.sync
        table.add_row(
            settings.package_dir_name(outcome.package_id),
            outcome.action,
            outcome.version or "-",
            str(len(sync.written)) if sync else "-",
            str(len(sync.unchanged)) if sync else "-",
            str(len(sync.backups)) if sync else "-",
            str(len(sync.skipped)) if sync else "-",
        )
    console.print(table)

    for outcome in result.packages:
        if outcome.sync:
            for target, backup in outcome.sync.backups.items():
                console.print(f"  [yellow]![/] {target} backed up to {backup}")
            for target in outcome.sync.skipped:
                console.print(f"  [yellow]![/] {target} modified, left as is")
        for path in outcome.kept:
            console.print(f"  [yellow]![/] {path} no longer installed but modified, left in place")
        for path in outcome.unrestored:
            console.print(f"  [red]x[/] {path} could not be restored: no source file")
    for warning in result.warnings:
        console.print(f"  [yellow]![/] {warning}")


# ── Listing ──────────────────────────────────────────────────────────


@main.command(name="list-agents")
@click.pass_context
def list_agents(ctx: click.Context):
    """List the agents and teams available in the source distribution."""
    from packsmith.config import AGENT_KIND, TEAM_KIND
    from packsmith.registry.metadata import load_descriptor

    locator = _locator(ctx)
    core = locator.core()

    table = Table(title=f"Core {locator.core_version()}")
    table.add_column("Id", style="cyan")
    table.add_column("Kind")
    table.add_column("Dependencies", justify="right")

    for kind, suffix, ids in (
        (AGENT_KIND, ".md", locator.available_agents()),
        (TEAM_KIND, ".yaml", locator.available_teams()),
    ):
        for resource_id in ids:
            try:
                descriptor = load_descriptor(core.path / kind / f"{resource_id}{suffix}", kind, core.name)
            except MetadataError:
                table.add_row(resource_id, kind, "[red]unreadable[/]")
                continue
            count = sum(len(refs) for refs in descriptor.dependencies.values()) + len(descriptor.agents)
            table.add_row(resource_id, kind, str(count))

    console.print(table)


@main.command(name="list-packs")
@click.pass_context
def list_packs(ctx: click.Context):
    """List the expansion packs available in the source distribution."""
    packs = _locator(ctx).expansion_packs()

    if not packs:
        console.print("[yellow]No expansion packs available.[/]")
        return

    table = Table(title=f"Expansion Packs ({len(packs)} available)")
    table.add_column("Id", style="cyan")
    table.add_column("Name")
    table.add_column("Version")
    table.add_column("Description")

    for pack in packs:
        table.add_row(pack.id, pack.name, pack.version, pack.description[:60])

    console.print(table)


if __name__ == "__main__":
    main()
