"""
Export report builder.

Aggregates the per-run statistics of the orchestrator into the summary
dictionary returned with an ExportResult, the progress lines shown at the end
of a run, and a console-friendly text report.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from ..models import ProgressLevel

FAILURE_SAMPLE_SIZE = 3


def format_duration(seconds: float) -> str:
    """Format duration in human-readable format."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = int(seconds % 60)
        return f"{hours}h {minutes}m {secs}s"


class ExportReport:
    """Builds export summaries from orchestrator statistics."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger('yuque_exporter.orchestrator.report')

    def build_summary(self, stats: Dict[str, Any], duration: float) -> Dict[str, Any]:
        """
        Build the summary dictionary of an export run.

        Args:
            stats: Orchestrator statistics (documents, folders, assets,
                images, formats, failures)
            duration: Run duration in seconds

        Returns:
            Summary dictionary
        """
        failures: List[Dict[str, str]] = stats.get('failures', [])
        processed = stats.get('documents_succeeded', 0) + stats.get('documents_failed', 0)

        summary = {
            'documents_total': stats.get('documents_total', 0),
            'documents_succeeded': stats.get('documents_succeeded', 0),
            'documents_failed': stats.get('documents_failed', 0),
            'documents_skipped': stats.get('documents_skipped', 0),
            'folders_created': stats.get('folders_created', 0),
            'assets_downloaded': stats.get('assets_downloaded', 0),
            'assets_failed': stats.get('assets_failed', 0),
            'images_embedded': stats.get('images_embedded', 0),
            'images_failed': stats.get('images_failed', 0),
            'formats': {fmt: dict(counts) for fmt, counts in stats.get('formats', {}).items()},
            'failure_sample': [dict(failure) for failure in failures[:FAILURE_SAMPLE_SIZE]],
            'failures_remaining': max(len(failures) - FAILURE_SAMPLE_SIZE, 0),
            'duration_seconds': round(duration, 3),
            'duration_formatted': format_duration(duration),
        }
        if processed:
            summary['success_rate'] = summary['documents_succeeded'] / processed

        self.logger.debug(
            f"Summary: {summary['documents_succeeded']} succeeded, "
            f"{summary['documents_failed']} failed in {summary['duration_formatted']}"
        )
        return summary

    @staticmethod
    def summary_events(summary: Dict[str, Any]) -> List[Tuple[str, ProgressLevel]]:
        """
        Progress lines closing a run: the success/failure tally, up to three
        failure reasons, then ``... and K more``.
        """
        failed = summary.get('documents_failed', 0)
        level = ProgressLevel.ERROR if failed else ProgressLevel.SUCCESS
        events = [(f"Export finished: {summary.get('documents_succeeded', 0)} succeeded, {failed} failed", level)]

        for failure in summary.get('failure_sample', []):
            events.append((f"  {failure.get('title') or failure.get('id')}: {failure.get('error')}",
                           ProgressLevel.ERROR))

        remaining = summary.get('failures_remaining', 0)
        if remaining:
            events.append((f"  ... and {remaining} more", ProgressLevel.ERROR))
        return events

    def format_console_report(self, summary: Dict[str, Any], source_name: str = '') -> str:
        """
        Format a summary for console display.

        Args:
            summary: Dictionary from ``build_summary``
            source_name: Optional knowledge base name for the header

        Returns:
            Formatted console string
        """
        sections = []

        sections.append("=" * 60)
        sections.append(f"EXPORT REPORT{f': {source_name}' if source_name else ''}")
        sections.append("=" * 60)
        sections.append("")

        sections.append("Summary:")
        sections.append(f"  Documents:   {summary.get('documents_succeeded', 0)} succeeded, "
                        f"{summary.get('documents_failed', 0)} failed, "
                        f"{summary.get('documents_skipped', 0)} skipped")
        sections.append(f"  Folders:     {summary.get('folders_created', 0)}")
        sections.append(f"  Assets:      {summary.get('assets_downloaded', 0)} downloaded, "
                        f"{summary.get('assets_failed', 0)} failed")
        sections.append(f"  Images:      {summary.get('images_embedded', 0)} embedded, "
                        f"{summary.get('images_failed', 0)} failed")
        sections.append(f"  Duration:    {summary.get('duration_formatted', '0s')}")

        if 'success_rate' in summary:
            sections.append(f"  Success:     {summary['success_rate'] * 100:.1f}%")

        formats = summary.get('formats', {})
        if formats:
            sections.append("")
            sections.append("Formats:")
            sections.append("-" * 60)
            for fmt, counts in formats.items():
                sections.append(
                    f"  {fmt.upper():<6} {counts.get('rendered', 0)} rendered, "
                    f"{counts.get('failed', 0)} failed, {counts.get('skipped', 0)} skipped"
                )

        sample = summary.get('failure_sample', [])
        if sample:
            sections.append("")
            sections.append("Failures:")
            sections.append("-" * 60)
            for failure in sample:
                sections.append(f"  {failure.get('title') or failure.get('id')}: {failure.get('error')}")
            if summary.get('failures_remaining'):
                sections.append(f"  ... and {summary['failures_remaining']} more")

        sections.append("=" * 60)
        return "\n".join(sections)


__all__ = ['ExportReport', 'format_duration', 'FAILURE_SAMPLE_SIZE']
