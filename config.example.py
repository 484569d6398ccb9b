# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets. Use:
- .env (local, gitignored)
- config_local.py (local safe overrides, gitignored)

This file exists to make the repo self-documenting even without opening .env.
"""

ENV_VARS = {
    # App / logging
    "TWODO_APP_NAME": "App display name (default: twodo).",
    "TWODO_LOG_LEVEL": "Console logging level (default: INFO).",
    "TWODO_LOG_FILE_LEVEL": "Log file level (default: DEBUG).",
    "TWODO_LOG_FILE": "Log file path (default: <data_dir>/<app_name>.log).",
    # Connectors
    "TWODO_CONSOLE_ENABLED": "Run the interactive console (true/false, default: true).",
    "TWODO_MATRIX_ENABLED": "Also post alerts into a Matrix room (true/false, default: false).",
    # Backend
    "TWODO_BACKEND": "local (SQLite + in-process bus) or supabase (default: local).",
    "TWODO_TASKS_DB_PATH": "SQLite path for the local backend (default: <data_dir>/tasks.sqlite3).",
    # Identity for the local backend
    "TWODO_USER_ID": "Local user id (default: local-user).",
    "TWODO_USER_NAME": "Local display name, used in nudges (default: Me).",
    "TWODO_USER_EMAIL": "Local e-mail (optional).",
    "TWODO_PARTNER_ID": "Partner user id; empty => no partner linked.",
    "TWODO_PARTNER_NAME": "Partner display name (optional).",
    # Supabase
    "TWODO_SUPABASE_URL": "Project URL (VITE_SUPABASE_URL is accepted too).",
    "TWODO_SUPABASE_ANON_KEY": "Anon key (VITE_SUPABASE_ANON_KEY is accepted too).",
    "TWODO_SUPABASE_EMAIL": "Account e-mail for password sign-in.",
    "TWODO_SUPABASE_PASSWORD": "Account password for password sign-in.",
    "TWODO_HTTP_TIMEOUT_SECONDS": "REST timeout in seconds (default: 10).",
    "TWODO_REALTIME_HEARTBEAT_SECONDS": "Realtime socket heartbeat in seconds (default: 30).",
    # Watchdog / milestones
    "TWODO_WATCHDOG_INTERVAL_SECONDS": "Deadline check interval; 0 disables it (default: 60).",
    "TWODO_WEEK_START": "First day of the milestone week, name or 0..6 Monday=0 (default: sunday).",
    # Matrix
    "TWODO_MATRIX_HOMESERVER": "Matrix homeserver URL.",
    "TWODO_MATRIX_USER_ID": "Matrix user ID used to post alerts.",
    "TWODO_MATRIX_PASSWORD": "Password for first login (session stored locally).",
    "TWODO_MATRIX_ROOM_ID": "Room that receives the alerts.",
    # Paths (gitignored)
    "TWODO_DATA_DIR": "Local data directory (default: .local/twodo).",
    "TWODO_MATRIX_STORE_PATH": "Matrix session store path (default: <data_dir>/matrix_store).",
}
