from .automations import process_due_automation_jobs_job, schedule_trigger_event_job
from .maintenance import fail_stale_processing_jobs_job

__all__ = [
    "fail_stale_processing_jobs_job",
    "process_due_automation_jobs_job",
    "schedule_trigger_event_job",
]
