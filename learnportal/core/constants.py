"""Global constants for the learnportal application."""

# Collection names
USERS_COLLECTION = "users"
GROUPS_COLLECTION = "groups"
ANNOUNCEMENTS_COLLECTION = "announcements"
NOTIFICATION_JOBS_COLLECTION = "notification_jobs"
SETTINGS_COLLECTION = "settings"

# Settings documents
AUTO_APPROVE_SETTING = "autoApproveUsers"

# Maximum number of values accepted by an "in" / "array_contains_any" clause
MAX_FILTER_VALUES = 30

# Roles, most privileged first
ROLE_SUPER_ADMIN = "super_admin"
ROLE_ADMIN = "admin"
ROLE_GROUP_ADMIN = "group_admin"
ROLE_STUDENT = "student"
ROLES = (ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_GROUP_ADMIN, ROLE_STUDENT)
ADMIN_ROLES = (ROLE_SUPER_ADMIN, ROLE_ADMIN)
STAFF_ROLES = (ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_GROUP_ADMIN)
DEFAULT_ROLE = ROLE_STUDENT

# Membership operations
MEMBERSHIP_ADD = "add"
MEMBERSHIP_REMOVE = "remove"

# Credential policy
PASSWORD_MIN_LENGTH = 12
PASSWORD_SYMBOLS = "!@#$%^&*"  # nosec B105

# Announcements
DEFAULT_ANNOUNCEMENT_TITLE = "New Announcement"
UNKNOWN_GROUP_NAME = "Unknown Group"

# Notification job states
JOB_PENDING = "pending"
JOB_RUNNING = "running"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"
JOB_UNKNOWN = "unknown"

# Email-related constants
SMTP_AUTH_ERROR_CODE = 534
DEFAULT_MAIL_TIMEOUT = 30

# Self-service account emails
OTP_ATTEMPTS_COLLECTION = "otpAttempts"
OTP_LENGTH = 6
OTP_MAX_ATTEMPTS = 5  # per address and window, for sends and for wrong guesses
OTP_ATTEMPT_WINDOW_MINUTES = 60
OTP_TTL_MINUTES = 10
PASSWORD_RESET_PATH = "/reset-password"
