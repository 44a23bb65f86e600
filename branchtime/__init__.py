"""branchtime - Branch lead-time reports from git history and GitHub pull requests."""

from branchtime.log import JSONFormatter, ReportContextFilter, report_context, setup_logging

__version__ = "0.1.0"
__all__ = ["setup_logging", "report_context", "ReportContextFilter", "JSONFormatter", "__version__"]
