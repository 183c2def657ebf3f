"""Background office jobs: payload models, runner and handlers."""

from snt_ledger.jobs.payloads import JOB_TYPES, parse_payload
from snt_ledger.jobs.runner import JobContext, JobRunner

__all__ = ["JOB_TYPES", "JobContext", "JobRunner", "parse_payload"]
