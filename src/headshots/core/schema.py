"""Best-effort maintenance of the ``lora_models.trigger_word`` column.

The service only holds an anonymous key, so it cannot run DDL directly.  It
tries, in order:

1. the ``add_trigger_word_column()`` Postgres function, if deployed;
2. creating that function through an ``exec_sql(sql)`` helper, then calling
   it again;
3. giving up, reporting the SQL an operator has to run by hand.

Once the column exists, the known Better Than Headshots model gets its
trigger word.  Failures are collected in a :class:`MigrationReport` rather
than raised, because the caller is an operator endpoint that always wants to
see what happened.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from headshots.core.errors import UpstreamUnavailableError
from headshots.core.store import SupabaseStore
from headshots.core.trigger_words import KNOWN_HEADSHOTS_TRIGGER

logger = logging.getLogger(__name__)

UNDEFINED_FUNCTION = "42883"
ADD_COLUMN_FUNCTION = "add_trigger_word_column"
EXEC_SQL_FUNCTION = "exec_sql"

KNOWN_HEADSHOTS_REPLICATE_ID = (
    "thomisont/betterthanheadshots-tjt:"
    "dd5079e7b7dcb7f898913226632c39419fe81762f08f960fb869cb954891d7da"
)

CREATE_FUNCTION_SQL = """
CREATE OR REPLACE FUNCTION add_trigger_word_column()
RETURNS text AS $$
BEGIN
  ALTER TABLE IF EXISTS public.lora_models
  ADD COLUMN IF NOT EXISTS trigger_word TEXT;
  RETURN 'Column added';
END;
$$ LANGUAGE plpgsql;
""".strip()

MANUAL_SQL = "ALTER TABLE public.lora_models ADD COLUMN IF NOT EXISTS trigger_word TEXT;"


@dataclass
class MigrationReport:
    """Outcome of :func:`ensure_trigger_word_column`.

    Attributes:
        success: Whether the column exists and the known model was updated.
        column_added: Whether this run created the column.
        steps: Human-readable log of each attempt, in order.
        error: Final error message when ``success`` is ``False``.
        manual_sql: SQL to run by hand when every automatic strategy failed.
        updated_models: Rows updated with the known trigger word.
    """

    success: bool = False
    column_added: bool = False
    steps: list[str] = field(default_factory=list)
    error: str | None = None
    manual_sql: str | None = None
    updated_models: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "column_added": self.column_added,
            "steps": self.steps,
            "error": self.error,
            "manual_sql": self.manual_sql,
            "updated_models": self.updated_models,
        }


def _missing_function(error: UpstreamUnavailableError, name: str) -> bool:
    return error.code == UNDEFINED_FUNCTION or f"function {name}" in str(error)


def _add_column(store: SupabaseStore, report: MigrationReport) -> bool:
    """Run the fallback chain; return ``True`` once the column was added."""
    try:
        store.rpc(ADD_COLUMN_FUNCTION)
        report.steps.append(f"{ADD_COLUMN_FUNCTION}() succeeded")
        return True
    except UpstreamUnavailableError as e:
        if not _missing_function(e, ADD_COLUMN_FUNCTION):
            report.error = f"Failed to add column: {e}"
            return False
        report.steps.append(f"{ADD_COLUMN_FUNCTION}() is not deployed")

    try:
        store.rpc(EXEC_SQL_FUNCTION, {"sql": CREATE_FUNCTION_SQL})
        report.steps.append(f"Created {ADD_COLUMN_FUNCTION}() through {EXEC_SQL_FUNCTION}()")
    except UpstreamUnavailableError as e:
        if _missing_function(e, EXEC_SQL_FUNCTION):
            report.steps.append(f"{EXEC_SQL_FUNCTION}() is not deployed")
            report.error = "Could not add column. Manual database update required."
            report.manual_sql = MANUAL_SQL
        else:
            report.error = f"Failed to create stored procedure: {e}"
        return False

    try:
        store.rpc(ADD_COLUMN_FUNCTION)
    except UpstreamUnavailableError as e:
        report.error = f"Failed to add column after creating stored procedure: {e}"
        return False
    report.steps.append(f"{ADD_COLUMN_FUNCTION}() succeeded on retry")
    return True


def ensure_trigger_word_column(store: SupabaseStore) -> MigrationReport:
    """Make sure ``lora_models.trigger_word`` exists and seed the known model.

    Args:
        store: Data store to operate on.

    Returns:
        A report describing every attempt.  Upstream errors are recorded in
        the report, not raised.
    """
    report = MigrationReport()

    try:
        exists = store.column_exists("lora_models", "trigger_word")
    except UpstreamUnavailableError as e:
        report.error = f"Failed to check if column exists: {e}"
        return report

    if exists:
        report.steps.append("trigger_word column already exists")
    else:
        logger.info("Adding trigger_word column to lora_models")
        if not _add_column(store, report):
            logger.warning(f"trigger_word migration stopped: {report.error}")
            return report
        report.column_added = True

    try:
        report.updated_models = store.set_trigger_word_by_replicate_id(
            KNOWN_HEADSHOTS_REPLICATE_ID, KNOWN_HEADSHOTS_TRIGGER
        )
    except UpstreamUnavailableError as e:
        report.error = f"Column ready but failed to set trigger word: {e}"
        return report

    report.steps.append(
        f"Set trigger word {KNOWN_HEADSHOTS_TRIGGER} on {len(report.updated_models)} model(s)"
    )
    report.success = True
    return report
