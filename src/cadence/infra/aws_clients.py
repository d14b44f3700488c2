from __future__ import annotations

import boto3

from .config import AWS_REGION, CHECKPOINT_TABLE, CREDENTIALS_TABLE

_ddb = None
_secrets = None
_lambda = None
_sqs = None


def ddb():
    global _ddb
    if _ddb is None:
        _ddb = boto3.resource("dynamodb", region_name=AWS_REGION)
    return _ddb


def secrets():
    global _secrets
    if _secrets is None:
        _secrets = boto3.client("secretsmanager", region_name=AWS_REGION)
    return _secrets


def lambda_client():
    global _lambda
    if _lambda is None:
        _lambda = boto3.client("lambda", region_name=AWS_REGION)
    return _lambda


def sqs():
    global _sqs
    if _sqs is None:
        _sqs = boto3.client("sqs", region_name=AWS_REGION)
    return _sqs


def checkpoint_table():
    if not CHECKPOINT_TABLE:
        raise RuntimeError("CHECKPOINT_TABLE is not set")
    return ddb().Table(CHECKPOINT_TABLE)


def credentials_table():
    if not CREDENTIALS_TABLE:
        raise RuntimeError("CREDENTIALS_TABLE is not set")
    return ddb().Table(CREDENTIALS_TABLE)
