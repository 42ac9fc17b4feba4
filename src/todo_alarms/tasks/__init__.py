"""
Task subsystem.

Components:
- task_models.py: data structures (Task, SubTask, AlarmKey, AlarmState) + JSON mapping
- task_store.py: in-memory tree, mutations, persistence through a key-value port
- alarm_scheduler.py: alarm reconciliation and delivery resolution
- task_api.py: TaskTracker composition used by the CLI and other shells
"""
