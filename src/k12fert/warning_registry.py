"""
Warning registry for deferred collection, aggregation, and output.

Implements a collect-aggregate-flush pattern for warnings generated
inside refit loops (one fit per excluded group and outcome). Instead of
emitting a warning for every failed cell, which floods the console when
a handful of provinces are degenerate, the registry buffers them and
emits aggregated summaries after the loop completes.

Three verbosity levels control output behavior:

- ``quiet``   : Emit only fit-failure summaries.
- ``default`` : Emit one aggregated summary per warning category.
- ``verbose`` : Emit every individual warning record.

``get_diagnostics()`` always returns the full record set regardless of
verbosity, so callers can inspect failures post-hoc via
``LeaveOneOutResult.diagnostics``.
"""

import time
import warnings
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from .warnings_categories import FitFailureWarning

_VALID_VERBOSE_LEVELS = frozenset({'quiet', 'default', 'verbose'})

# Categories emitted even in quiet mode.
_CRITICAL_CATEGORIES = frozenset({FitFailureWarning})


@dataclass
class WarningRecord:
    """Single warning record captured by the registry."""

    category: type
    message: str
    group: Any = None
    outcome: Any = None
    context: dict = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class WarningRegistry:
    """
    Centralized warning collector for refit loops.

    Buffers warnings during (group, outcome) iteration and emits
    aggregated summaries (or individual records) when ``flush()`` is
    called.

    Parameters
    ----------
    verbose : str, default ``'default'``
        Output verbosity level. One of ``'quiet'``, ``'default'``,
        ``'verbose'``. Case-insensitive.

    Raises
    ------
    ValueError
        If *verbose* is not one of the three valid levels.
    """

    def __init__(self, verbose: str = 'default') -> None:
        normalized = verbose.lower() if isinstance(verbose, str) else verbose
        if normalized not in _VALID_VERBOSE_LEVELS:
            raise ValueError(
                f"Invalid verbose level {verbose!r}. "
                f"Must be one of {sorted(_VALID_VERBOSE_LEVELS)}."
            )
        self._verbose: str = normalized
        self._records: list[WarningRecord] = []
        self._flushed: bool = False

    def __len__(self) -> int:
        return len(self._records)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def collect(
        self,
        category: type,
        message: str,
        group: Any = None,
        outcome: Any = None,
        context: dict | None = None,
    ) -> None:
        """
        Buffer a warning record without emitting it.

        Parameters
        ----------
        category : type
            Warning class (subclass of :class:`K12FertWarning`).
        message : str
            Human-readable warning text.
        group : hashable or None
            Excluded group (or restriction name), if applicable.
        outcome : str or None
            Outcome column of the failed fit, if applicable.
        context : dict or None
            Auxiliary numeric context (e.g. ``{'nobs': 12}``).
        """
        self._records.append(
            WarningRecord(
                category=category,
                message=message,
                group=group,
                outcome=outcome,
                context=context if context is not None else {},
            )
        )

    def sort(self, key) -> None:
        """
        Reorder buffered records in place (stable).

        Records collected from worker threads arrive in completion order;
        sorting by cell position makes summaries and diagnostics
        reproducible.
        """
        self._records.sort(key=key)

    def flush(self, total_cells: int | None = None) -> None:
        """
        Aggregate and emit buffered warnings, then mark as flushed.

        Subsequent calls are no-ops. An empty registry produces no output.

        Parameters
        ----------
        total_cells : int or None
            Total number of (group, outcome) cells processed. Used in
            aggregated summary messages to report M/T ratios.
        """
        if self._flushed:
            return
        self._flushed = True

        if not self._records:
            return

        if self._verbose == 'quiet':
            self._flush_quiet(total_cells)
        elif self._verbose == 'default':
            self._flush_default(total_cells)
        else:  # verbose
            self._flush_verbose()

    def get_diagnostics(self) -> list[dict]:
        """
        Return structured diagnostic data for all collected warnings.

        Returns
        -------
        list of dict
            Each dict contains:

            - ``category`` : str, warning class name.
            - ``message`` : str, representative message text.
            - ``count`` : int, number of occurrences.
            - ``affected_cells`` : list of (group, outcome) tuples.
            - ``context_summary`` : dict, min/max of numeric context fields.
        """
        if not self._records:
            return []

        diagnostics = []
        for cat, records in self._aggregate_by_category().items():
            diagnostics.append({
                'category': cat.__name__,
                'message': records[0].message,
                'count': len(records),
                'affected_cells': self._affected(records),
                'context_summary': self._summarize_context(records),
            })
        return diagnostics

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _aggregate_by_category(self) -> dict[type, list[WarningRecord]]:
        """Group records by warning category, preserving insertion order."""
        grouped: dict[type, list[WarningRecord]] = defaultdict(list)
        for rec in self._records:
            grouped[rec.category].append(rec)
        return dict(grouped)

    @staticmethod
    def _affected(records: list[WarningRecord]) -> list[tuple]:
        return [
            (r.group, r.outcome)
            for r in records
            if r.group is not None or r.outcome is not None
        ]

    def _format_summary(
        self,
        category: type,
        records: list[WarningRecord],
        total_cells: int | None,
    ) -> str:
        """Build an aggregated summary string for one category."""
        affected = self._affected(records)
        n_affected = len(affected)

        if total_cells is not None and total_cells > 0 and n_affected > 0:
            ratio_str = f"{n_affected}/{total_cells} (group, outcome) cells"
        elif n_affected > 0:
            ratio_str = f"{n_affected} (group, outcome) cells"
        else:
            ratio_str = f"{len(records)} occurrences"

        shown = ', '.join(f"{g}/{o}" for g, o in affected[:5])
        if n_affected > 5:
            shown += ', ...'
        suffix = f"; first affected: {shown}" if shown else ""

        return (
            f"[{category.__name__}] {records[0].message} "
            f"({ratio_str}{suffix})"
        )

    @staticmethod
    def _summarize_context(records: list[WarningRecord]) -> dict:
        """
        Compute min/max summaries for numeric context fields.

        Non-numeric values are skipped.
        """
        all_keys: set[str] = set()
        for r in records:
            all_keys.update(r.context.keys())

        summary: dict[str, Any] = {}
        for key in sorted(all_keys):
            values = [
                r.context.get(key) for r in records
                if isinstance(r.context.get(key), (int, float))
            ]
            if values:
                summary[f'{key}_min'] = min(values)
                summary[f'{key}_max'] = max(values)
        return summary

    # ------------------------------------------------------------------
    # Flush strategies
    # ------------------------------------------------------------------

    def _flush_quiet(self, total_cells: int | None) -> None:
        """Emit only critical-category warnings (aggregated)."""
        for cat, records in self._aggregate_by_category().items():
            if cat in _CRITICAL_CATEGORIES:
                msg = self._format_summary(cat, records, total_cells)
                warnings.warn(msg, cat, stacklevel=3)

    def _flush_default(self, total_cells: int | None) -> None:
        """Emit one aggregated summary per category."""
        for cat, records in self._aggregate_by_category().items():
            msg = self._format_summary(cat, records, total_cells)
            warnings.warn(msg, cat, stacklevel=3)

    def _flush_verbose(self) -> None:
        """Emit every individual warning record."""
        for rec in self._records:
            warnings.warn(rec.message, rec.category, stacklevel=3)
