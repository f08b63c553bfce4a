# capbook/queueing/__init__.py
"""
Verification job pipeline on RQ.

  dispatcher  -> stamps the job id on the company and enqueues
  tasks       -> RQ entry point; builds the processor per job
  processor   -> one attempt: lookup, classify, commit, side effects
  classifier  -> retry vs terminal decision for a failed lookup
  worker/dlq  -> worker process and dead-letter copy of exhausted jobs
"""
