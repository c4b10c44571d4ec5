"""Report execution package."""

from fairshare.reports.executor import ReportExecutor

__all__ = ["ReportExecutor"]
