"""
Post-Write Steps

Best-effort consistency steps that run after a primary quote write has
committed (result replacement, DIP reconciliation, checklist progress).

Each step is isolated: a failure is logged, the session is rolled back so the
next step starts clean, and the remaining steps still run. The primary write
is never rolled back and the caller never sees the failure.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from sqlalchemy.orm import Session


logger = logging.getLogger(__name__)


@dataclass
class PostWriteStep:
    """A named best-effort step."""
    name: str
    run: Callable[[], Any]


@dataclass
class PostWriteReport:
    """Outcome of each step, keyed by step name."""
    results: Dict[str, Any] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)


def run_post_write_steps(db: Session, steps: List[PostWriteStep], context: str = "") -> PostWriteReport:
    """Run steps in order, isolating each one."""
    report = PostWriteReport()
    for step in steps:
        try:
            report.results[step.name] = step.run()
        except Exception as e:
            db.rollback()
            report.errors[step.name] = str(e)
            logger.warning(f"Non-fatal: post-write step '{step.name}' failed {context}: {e}")
    return report
