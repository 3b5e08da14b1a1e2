"""
Worker scheduling subsystem.

Components:
- task_models.py: data structures (Task, TaskOutput, TaskResult, TaskDef)
- registry.py: validation/indexing of the registered workers
- executor.py: runs a worker and classifies the outcome
- reporter.py: delivers results back to the server
- task_scheduler.py: per-worker poll loop with a concurrency budget
- manager.py: TaskManager, lifecycle and live reconfiguration
- events.py: lifecycle events for optional listeners
- worker.py: FunctionWorker and the worker_task decorator
"""
