"""
Module: metrics.py
Description: CloudWatch custom metrics publishing and queue age lookup.

Publishes operational counters for destructive queue operations and
reads the SQS ApproximateAgeOfOldestMessage metric, which the SQS API
itself does not expose.

Key Components:
- MetricsClient: CloudWatch metrics client
- put_metric(): Publish individual metrics
- get_oldest_message_age(): Latest oldest-message age of a queue
- Graceful error handling for metrics failures

Dependencies: boto3, datetime, typing, logger
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import boto3

from mailflow_queues.utils.logger import get_logger

logger = get_logger(__name__)


class MetricsClient:
    """CloudWatch metrics client."""

    def __init__(self, namespace: str = "Mailflow", region_name: Optional[str] = None):
        """
        Initialize metrics client.

        Args:
            namespace: CloudWatch metrics namespace
            region_name: AWS region (default session region if omitted)
        """
        self.namespace = namespace
        self.cloudwatch = boto3.client('cloudwatch', region_name=region_name)

        logger.info(
            "Metrics client initialized",
            namespace=namespace
        )

    def put_metric(
        self,
        metric_name: str,
        value: float,
        unit: str = 'Count',
        dimensions: Optional[dict] = None
    ) -> None:
        """
        Publish a metric to CloudWatch.

        Args:
            metric_name: Name of the metric
            value: Metric value
            unit: Metric unit (Count, Seconds, etc.)
            dimensions: Optional metric dimensions
        """
        try:
            metric_data = {
                'MetricName': metric_name,
                'Value': value,
                'Unit': unit
            }

            if dimensions:
                metric_data['Dimensions'] = [
                    {'Name': k, 'Value': v}
                    for k, v in dimensions.items()
                ]

            self.cloudwatch.put_metric_data(
                Namespace=self.namespace,
                MetricData=[metric_data]
            )

            logger.debug(
                "Metric published to CloudWatch",
                metric_name=metric_name,
                value=value,
                unit=unit,
                dimensions=dimensions,
                namespace=self.namespace
            )

        except Exception as e:
            # Don't fail the queue operation if metrics fail
            logger.warning(
                "Failed to publish metric",
                metric_name=metric_name,
                value=value,
                error=str(e),
                namespace=self.namespace
            )

    def get_oldest_message_age(self, queue_name: str, lookback_minutes: int = 15) -> Optional[int]:
        """
        Read the most recent ApproximateAgeOfOldestMessage datapoint of a queue.

        Args:
            queue_name: SQS queue name
            lookback_minutes: How far back to look for a datapoint

        Returns:
            Age in seconds, or None when no datapoint exists or the lookup fails
        """
        now = datetime.now(timezone.utc)
        try:
            response = self.cloudwatch.get_metric_statistics(
                Namespace='AWS/SQS',
                MetricName='ApproximateAgeOfOldestMessage',
                Dimensions=[{'Name': 'QueueName', 'Value': queue_name}],
                StartTime=now - timedelta(minutes=lookback_minutes),
                EndTime=now,
                Period=60,
                Statistics=['Maximum']
            )
        except Exception as e:
            logger.warning(
                "Failed to read oldest message age",
                queue_name=queue_name,
                error=str(e)
            )
            return None

        datapoints = response.get('Datapoints', [])
        if not datapoints:
            return None
        latest = max(datapoints, key=lambda point: point['Timestamp'])
        return int(latest['Maximum'])
