from sms_delivery.jobs.scheduler import JobRun, JobScheduler, RecurringJob

__all__ = ["JobRun", "JobScheduler", "RecurringJob"]
