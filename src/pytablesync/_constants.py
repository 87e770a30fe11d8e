"""Internal constants shared across the library."""

USER_AGENT = "pytablesync"
DEFAULT_TOPIC_PREFIX = "tables"

# Remote store table names, keyed by the entity kind they carry.
TABLE_SESSIONS = "sessions"
TABLE_GUESTS = "guests"
TABLE_VOTES = "votes"
TABLE_SESSION_TOPICS = "session_topics"
TABLE_QUESTION_POOL = "question_pool"
TABLE_PICKED_QUESTIONS = "picked_questions"

# ------------------------------------------------------------------
# Timing defaults (seconds)
# ------------------------------------------------------------------

PUSH_ACK_TIMEOUT = 10.0
PUSH_ERROR_DEBOUNCE = 0.1
PUSH_ERROR_THRESHOLD = 3
RECOVERY_INTERVAL = 30.0

POLL_INTERVAL = 1.0
FULL_RELOAD_INTERVAL = 30.0
POLL_OVERLAP = 1.0
POLL_ERROR_THRESHOLD = 5
BACKOFF_BASE = 2.0
BACKOFF_CAP = 30.0

REQUEST_TIMEOUT = 10.0
