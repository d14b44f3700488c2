import os
from botocore.config import Config

MODEL_ID = os.environ.get("MODEL_ID", "amazon.nova-lite-v1:0")
BEDROCK_REGION = os.environ.get("BEDROCK_REGION", os.environ.get("AWS_REGION", "us-east-1"))

# Planning is skipped (empty plan) when disabled or when no model is configured.
PLANNER_ENABLED = os.environ.get("PLANNER_ENABLED", "true").strip().lower() not in ("0", "false", "no", "off")

MAX_PLAN_TIMES = 24
MAX_INTENT_CHARS = int(os.environ.get("MAX_INTENT_CHARS", "2000"))

SYSTEM_PROMPT = "Return strict JSON only."

INFERENCE_CONFIG = {
    "temperature": 0.2,
    "topP": 0.9,
    "maxTokens": 500
}

# One attempt, short timeouts: the planner fails open instead of retrying.
BOTO_CONFIG = Config(
    connect_timeout=3,
    read_timeout=10,
    retries={"total_max_attempts": 1, "mode": "standard"},
)
