"""Run summaries and failure reports."""

from .report_sink import ReportSink

__all__ = ['ReportSink']
