"""
Run report generation.

Renders a Markdown summary of a WorkflowState for operators: one row per
stage plus the error of the stage that halted the run.
"""

import logging
from datetime import datetime
from pathlib import Path

from jinja2 import Environment, FileSystemLoader

from forklift_orchestrator.models.workflow import STAGE_ORDER, WorkflowState
from forklift_orchestrator.util.redact import redact_sensitive

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"


def _environment() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    env.filters["redact"] = lambda value: redact_sensitive(str(value)) if value else value
    return env


def render_report(state: WorkflowState, generated_at: datetime | None = None) -> str:
    """
    Render the Markdown run report.

    Args:
        state: Workflow state returned by Orchestrator.run
        generated_at: Timestamp printed in the header (defaults to now)

    Returns:
        Markdown text

    Example:
        >>> state = orchestrator.run(request)
        >>> print(render_report(state))
        # Migration workflow: vm-batch-1
        ...
    """
    summary = state.to_dict()
    begun = {record["stage"] for record in summary["stages"]}
    not_started = [stage.value for stage in STAGE_ORDER if stage.value not in begun]

    failed = state.failed_stage
    template = _environment().get_template("report.md.j2")
    return template.render(
        request=summary["request"],
        outcome=summary["outcome"],
        stages=summary["stages"],
        not_started=not_started,
        failed=failed.to_dict() if failed else None,
        error_message=getattr(failed.error, "message", str(failed.error)) if failed else None,
        suggestion=getattr(failed.error, "suggestion", None) if failed else None,
        generated_at=(generated_at or datetime.now()).isoformat(timespec="seconds"),
    )


def write_report(state: WorkflowState, path: Path) -> Path:
    """Render the report and write it to `path`."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_report(state))
    logger.info(f"Wrote run report to {path}")
    return path
