import boto3
from .config import BEDROCK_REGION, BOTO_CONFIG

_bedrock = None


def bedrock_client():
    global _bedrock
    if _bedrock is None:
        _bedrock = boto3.client("bedrock-runtime", region_name=BEDROCK_REGION, config=BOTO_CONFIG)
    return _bedrock
