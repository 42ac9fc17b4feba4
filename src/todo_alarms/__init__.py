"""
todo-alarms: a two-level task list with one-shot alarms.

Components:
- tasks/task_store.py: in-memory task tree + full-snapshot persistence
- tasks/alarm_scheduler.py: keeps notification requests in sync with the tree
- tasks/task_api.py: TaskTracker, the API a UI shell calls
- storage/, notify/: substrate and notification adapters
"""
