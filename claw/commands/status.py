"""
claw status - Show story progress and checkpoint state for a feature.
"""

from datetime import datetime

from rich.console import Console
from rich.table import Table

from claw.features.store import FeatureStore
from claw.lib.config import WorkspaceConfig
from claw.lib.validate import ValidationError
from claw.lib.vault import Vault
from claw.workflow.checkpoint import SESSION_ICONS, STORY_ICONS, CheckpointStore
from claw.workflow.dependencies import DependencyManager


def story_table(feature) -> Table:
    table = Table(title=f"{feature.title} ({feature.status})", title_justify="left")
    table.add_column("ID", style="bold")
    table.add_column("Story")
    table.add_column("Status")
    table.add_column("After")
    table.add_column("Iter", justify="right")
    table.add_column("PR")
    for s in feature.stories:
        table.add_row(
            s.id,
            s.title,
            f"{STORY_ICONS.get(s.status, '❓')} {s.status}",
            ", ".join(s.blocked_by) or "-",
            str(s.iterations),
            f"#{s.pr}" if s.pr else "-",
        )
    return table


def cmd_status(args, workspace: WorkspaceConfig, console: Console | None = None) -> int:
    console = console or Console()
    vault = Vault(workspace.vault_path)
    features = FeatureStore(vault, workspace.project_path)
    checkpoints = CheckpointStore(vault, workspace.project_path)

    try:
        feature = features.load_feature(args.feature)
    except ValidationError as e:
        print(f"ERROR: {e}")
        return 2
    if feature is None:
        print(f"ERROR: Feature '{args.feature}' not found")
        return 2

    console.print(story_table(feature))

    scheduler = DependencyManager()
    scheduler.build_from_stories(feature.stories)
    ready = [n.id for n in scheduler.get_ready_stories()]
    console.print(f"Ready: {', '.join(ready) or 'none'}")
    for cycle in scheduler.detect_circular_dependencies():
        console.print(f"[red]Circular dependency: {' -> '.join(cycle)}[/red]")

    cp = checkpoints.load(feature.id)
    if cp is None:
        console.print("[dim]No checkpoint[/dim]")
        return 0

    status = cp.status.value if cp.status else "unknown"
    s = cp.session_state
    console.print(f"\n{SESSION_ICONS.get(status, '❓')} Checkpoint: [bold]{status}[/bold] "
                  f"({s['stories_completed']} completed, {s['stories_blocked']} blocked, "
                  f"{s['total_iterations']} iterations)")
    if s.get("blocker_reason"):
        console.print(f"  Blocker: {s['blocker_reason']}")
    if s.get("pending_question"):
        console.print(f"  Pending question: {s['pending_question']}")

    remaining = checkpoints.get_remaining_time(cp, now=datetime.now())
    if remaining is not None:
        console.print(f"  Time left in budget: {remaining:.2f}h")
    if checkpoints.is_resumable(cp):
        console.print(f"  Resume with: claw resume {feature.id}")
    else:
        console.print(f"  Not resumable (use claw resume {feature.id} --force)")
    return 0
