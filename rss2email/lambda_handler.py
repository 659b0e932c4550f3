"""Main Lambda handler for rss2email."""

import json
import os
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

import boto3
from botocore.exceptions import ClientError

from .config import Config
from .dedup import Deduplicator
from .feedlist import FeedList
from .fetcher import Fetcher
from .logging_config import create_execution_logger, setup_structured_logging
from .processor import Processor

METRICS_NAMESPACE = "rss2email"

setup_structured_logging(os.getenv("LOG_LEVEL", "INFO"))


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    Run one poll cycle: mail out every unseen item of every listed feed.

    Args:
        event: Lambda event data
        context: Lambda context object

    Returns:
        Response dictionary with status and metrics
    """
    execution_id = f"lambda_{datetime.now(UTC).strftime('%Y%m%d_%H%M%S_%f')}"
    main_logger = create_execution_logger("main", execution_id)

    main_logger.log_cycle_start(
        lambda_request_id=getattr(context, "aws_request_id", "unknown"),
        lambda_function_name=getattr(context, "function_name", "unknown"),
    )

    metrics: dict[str, Any] = {
        "feeds_processed": 0,
        "items_found": 0,
        "items_seen": 0,
        "messages_sent": 0,
        "errors": [],
    }
    aws_region = "us-east-1"

    try:
        config = Config.from_env()
        aws_region = config.aws_region

        if config.smtp_secret_name and not config.smtp.password:
            password = get_smtp_password(
                config.smtp_secret_name, config.aws_region, execution_id
            )
            config = replace(config, smtp=replace(config.smtp, password=password))

        main_logger.info(
            "Configuration initialized",
            path=str(config.feeds_path),
            delivery="smtp" if config.smtp.is_configured else "sendmail",
        )

        fetcher = Fetcher(execution_id=execution_id)
        feedlist = FeedList(config.feeds_path, fetcher=fetcher, execution_id=execution_id)
        deduplicator = Deduplicator(
            table_name=config.dynamodb_table,
            aws_region=config.aws_region,
            execution_id=execution_id,
        )
        processor = Processor(
            config,
            feedlist,
            deduplicator,
            fetcher=fetcher,
            execution_id=execution_id,
        )

        metrics = processor.run()

        send_cloudwatch_metrics(metrics, aws_region, execution_id)
        main_logger.log_cycle_end(metrics, success=True)

        return {
            "statusCode": 200,
            "body": json.dumps(
                {
                    "message": "rss2email execution completed",
                    "execution_id": execution_id,
                    "metrics": metrics,
                }
            ),
        }

    except Exception as e:
        error_msg = f"Critical error in Lambda handler: {str(e)}"
        main_logger.error(error_msg, error=str(e))
        metrics["errors"].append(error_msg)

        send_cloudwatch_metrics(metrics, aws_region, execution_id)
        main_logger.log_cycle_end(metrics, success=False)

        return {
            "statusCode": 500,
            "body": json.dumps(
                {
                    "message": "rss2email execution failed",
                    "execution_id": execution_id,
                    "error": error_msg,
                    "metrics": metrics,
                }
            ),
        }


def get_smtp_password(secret_name: str, aws_region: str, execution_id: str) -> str:
    """
    Retrieve the SMTP password from AWS Secrets Manager.

    The secret may be a plain string or a JSON object holding a "password" or
    "smtp_password" key. Secret values are never logged.

    Args:
        secret_name: Name of the secret in Secrets Manager
        aws_region: AWS region for Secrets Manager client
        execution_id: Execution ID for logging context

    Returns:
        The SMTP password

    Raises:
        ValueError: If secret name or region is empty
        RuntimeError: If the secret cannot be retrieved or holds no password
    """
    secrets_logger = create_execution_logger("secrets_manager", execution_id)

    if not secret_name or not secret_name.strip():
        raise ValueError("Secret name cannot be empty")

    if not aws_region or not aws_region.strip():
        raise ValueError("AWS region cannot be empty")

    try:
        secrets_logger.info(f"Retrieving SMTP password from Secrets Manager: {secret_name}")
        secrets_client = boto3.client("secretsmanager", region_name=aws_region)
        response = secrets_client.get_secret_value(SecretId=secret_name)

        secret_value = response.get("SecretString", "")
        if not secret_value or not secret_value.strip():
            raise ValueError(f"Secret {secret_name} contains no string value")

        try:
            secret_data = json.loads(secret_value)
        except json.JSONDecodeError:
            return secret_value.strip()

        if not isinstance(secret_data, dict):
            raise ValueError(f"JSON secret {secret_name} must be an object")

        for key in ["password", "smtp_password"]:
            value = secret_data.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()

        for value in secret_data.values():
            if isinstance(value, str) and value.strip():
                secrets_logger.info("Using first available value from JSON secret")
                return value.strip()

        raise ValueError(f"No password found in JSON secret {secret_name}")

    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        secrets_logger.error(
            f"AWS Secrets Manager error retrieving {secret_name}: {error_code}"
        )
        raise RuntimeError(f"Failed to retrieve secret {secret_name}") from e
    except ValueError as e:
        secrets_logger.error(f"Invalid secret format for {secret_name}: {e}")
        raise RuntimeError(f"Invalid secret format for {secret_name}") from e


def send_cloudwatch_metrics(
    metrics: dict[str, Any], aws_region: str, execution_id: str
) -> None:
    """
    Send custom metrics to CloudWatch. Failures are logged, never raised.

    Args:
        metrics: Dictionary containing execution metrics
        aws_region: AWS region for CloudWatch client
        execution_id: Execution ID for logging context
    """
    metrics_logger = create_execution_logger("cloudwatch_metrics", execution_id)

    total_errors = len(metrics["errors"])
    execution_success = total_errors == 0
    status = "Success" if execution_success else "Failure"

    counts = [
        ("FeedsProcessed", metrics["feeds_processed"]),
        ("ItemsFound", metrics["items_found"]),
        ("ItemsSeen", metrics["items_seen"]),
        ("MessagesSent", metrics["messages_sent"]),
        ("Errors", total_errors),
    ]
    metric_data = [
        {
            "MetricName": name,
            "Value": value,
            "Unit": "Count",
            "Dimensions": [{"Name": "ExecutionId", "Value": execution_id}],
        }
        for name, value in counts
    ]
    metric_data.append(
        {
            "MetricName": "ExecutionSuccess",
            "Value": 1 if execution_success else 0,
            "Unit": "Count",
            "Dimensions": [{"Name": "Status", "Value": status}],
        }
    )

    try:
        cloudwatch = boto3.client("cloudwatch", region_name=aws_region)
        cloudwatch.put_metric_data(Namespace=METRICS_NAMESPACE, MetricData=metric_data)
        metrics_logger.info(
            "Successfully sent metrics to CloudWatch",
            metrics_sent=len(metric_data),
            namespace=METRICS_NAMESPACE,
            execution_success=execution_success,
        )
    except Exception as e:
        metrics_logger.error(f"Failed to send CloudWatch metrics: {e}", error=str(e))
