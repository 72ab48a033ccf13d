"""
claw resume - Continue a feature from its checkpoint.
"""

import logging

from claw.lib.config import WorkspaceConfig
from claw.lib.validate import ValidationError
from claw.commands.run import SessionEnvironment, exit_code, notify_session_end
from claw.workflow.session import ResumeError, resume_session

logger = logging.getLogger(__name__)


def resume_overrides(args, env: SessionEnvironment) -> dict:
    """Budget flags the operator passed explicitly. Unset flags keep checkpoint values."""
    overrides = {
        "max_hours": args.hours,
        "max_stories": args.stories,
        "stop_on_blocker": args.stop_on_blocker,
        "pause_between_stories": False if args.no_pause else None,
        "model": args.model,
        "iterate_until_green": args.retry,
        "max_iterations": args.max_retries,
        "create_pr_per_story": args.pr_per_story,
        "create_pr_on_complete": args.pr_on_complete,
    }
    overrides.update(env.agent_overrides())
    return overrides


def cmd_resume(args, workspace: WorkspaceConfig) -> int:
    env = SessionEnvironment(workspace, assume_yes=args.yes)
    if not env.check_agent():
        return 2

    env.start_hotkeys()
    try:
        state = resume_session(
            env.checkpoints,
            env.features,
            args.feature,
            env.make_runner,
            overrides=resume_overrides(args, env),
            force=args.force,
        )
    except ResumeError as e:
        print(f"ERROR: {e}")
        return 1
    except ValidationError as e:
        print(f"ERROR: {e}")
        return 2
    finally:
        env.listener.stop()

    notify_session_end(state)
    return exit_code(state)
