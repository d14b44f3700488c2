import os

# Lambda sets AWS_REGION automatically; local dev may rely on AWS_DEFAULT_REGION.
AWS_REGION = (
    os.environ.get("AWS_REGION")
    or os.environ.get("AWS_DEFAULT_REGION")
    or "us-east-1"
)

CHECKPOINT_TABLE = os.environ.get("CHECKPOINT_TABLE")
CHECKPOINT_PK_ATTR = os.environ.get("CHECKPOINT_PK_ATTR", "pk")
CHECKPOINT_SK_ATTR = os.environ.get("CHECKPOINT_SK_ATTR")  # optional; set only if the table uses a sort key
CHECKPOINT_SK_VALUE = os.environ.get("CHECKPOINT_SK_VALUE", "CHECKPOINT")
# Optional GSI with workflow_id as its partition key; without it workflow lookups scan.
CHECKPOINT_WORKFLOW_INDEX = os.environ.get("CHECKPOINT_WORKFLOW_INDEX") or None

CREDENTIALS_TABLE = os.environ.get("CREDENTIALS_TABLE") or CHECKPOINT_TABLE
CREDENTIALS_PK_ATTR = os.environ.get("CREDENTIALS_PK_ATTR", CHECKPOINT_PK_ATTR)
CREDENTIALS_SK_ATTR = os.environ.get("CREDENTIALS_SK_ATTR", CHECKPOINT_SK_ATTR or "") or None
CREDENTIALS_SK_VALUE = os.environ.get("CREDENTIALS_SK_VALUE", "CREDENTIALS")

GOOGLE_OAUTH_SECRET_NAME = os.environ.get("GOOGLE_OAUTH_SECRET_NAME", "cadence/google_oauth")

# When set, the executor invokes the delivery Lambda instead of delivering in-process.
DELIVERY_LAMBDA_ARN = os.environ.get("DELIVERY_LAMBDA_ARN")
TRIGGER_QUEUE_URL = os.environ.get("TRIGGER_QUEUE_URL")

DEFAULT_TIMEZONE = os.environ.get("DEFAULT_TIMEZONE", "UTC")

MAX_SEND_ATTEMPTS = int(os.environ.get("MAX_SEND_ATTEMPTS", "3"))
RETRY_BASE_SECONDS = float(os.environ.get("RETRY_BASE_SECONDS", "30"))
RETRY_MAX_SECONDS = float(os.environ.get("RETRY_MAX_SECONDS", "600"))

# Waiters re-check the clock at least this often so wall-clock jumps are noticed.
MAX_WAIT_SLICE_SECONDS = float(os.environ.get("MAX_WAIT_SLICE_SECONDS", "300"))

# A fired checkpoint untouched for this long is treated as orphaned by a dead worker.
FIRED_STALE_SECONDS = float(os.environ.get("FIRED_STALE_SECONDS", "900"))
RECOVERY_INTERVAL_SECONDS = float(os.environ.get("RECOVERY_INTERVAL_SECONDS", "300"))

# Retries for the completed/failed write that closes a fired checkpoint.
FINISH_WRITE_ATTEMPTS = int(os.environ.get("FINISH_WRITE_ATTEMPTS", "5"))
FINISH_RETRY_SECONDS = float(os.environ.get("FINISH_RETRY_SECONDS", "1"))

# A workflow claim still planning after this long may be taken over by a redelivery.
WORKFLOW_CLAIM_LEASE_SECONDS = float(os.environ.get("WORKFLOW_CLAIM_LEASE_SECONDS", "120"))

HTTP_CONNECT_TIMEOUT = float(os.environ.get("HTTP_CONNECT_TIMEOUT", "5"))
HTTP_READ_TIMEOUT = float(os.environ.get("HTTP_READ_TIMEOUT", "25"))

TOKEN_EXPIRY_SKEW_SECONDS = int(os.environ.get("TOKEN_EXPIRY_SKEW_SECONDS", "60"))


def require_env() -> None:
    missing = []
    if not CHECKPOINT_TABLE:
        missing.append("CHECKPOINT_TABLE")
    if not TRIGGER_QUEUE_URL:
        missing.append("TRIGGER_QUEUE_URL")
    if missing:
        raise RuntimeError("Missing required environment variables: " + ", ".join(missing))
