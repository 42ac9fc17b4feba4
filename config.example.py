# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "TODO_ALARMS_APP_NAME": "App display name (default: todo-alarms).",
    "TODO_ALARMS_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    # Paths (gitignored)
    "TODO_ALARMS_DATA_DIR": "Local data directory (default: .local/todo-alarms).",
    "TODO_ALARMS_STORE_DIR": "Where the task snapshot lives (default: <data_dir>/store).",
    # Notifications
    "TODO_ALARMS_NOTIFICATIONS_ENABLED": "Allow alarms to be scheduled (true/false, default: true).",
    "TODO_ALARMS_CONSOLE_SINK_ENABLED": "Print fired alarms to the console (true/false, default: true).",
    "TODO_ALARMS_WEBHOOK_URL": "Optional URL that receives fired alarms as JSON POSTs.",
    "TODO_ALARMS_WEBHOOK_TIMEOUT_SECONDS": "Webhook request timeout (default: 5.0).",
}
