from __future__ import annotations

import argparse
from typing import Optional

import boto3

PRICING_ERROR_CODES = ("NO_SHIPPING_RATE", "MISSING_EXCHANGE_RATE")


def _alarm_name(prefix: str, name: str, store_id: Optional[str]) -> str:
    if store_id:
        return f"{prefix}-{store_id}-{name}"
    return f"{prefix}-{name}"


def _alarm_actions(topic_arn: Optional[str]) -> list[str]:
    if not topic_arn:
        return []
    return [topic_arn]


def main() -> None:
    parser = argparse.ArgumentParser(description="Create CloudWatch alarms for storefront pricing")
    parser.add_argument("--alarm-prefix", default="storefront-pricing", help="Alarm name prefix")
    parser.add_argument(
        "--namespace",
        default="StorefrontPricing",
        help="CloudWatch namespace for custom metrics",
    )
    parser.add_argument("--sns-topic-arn", help="SNS topic ARN for alarm actions")
    parser.add_argument("--store-id", required=True, help="Store ID the pricing alarms watch")
    parser.add_argument(
        "--pricing-failure-threshold",
        type=int,
        default=10,
        help="Failed pricing runs per period before alarming, per error code",
    )
    parser.add_argument(
        "--pricing-failure-period",
        type=int,
        default=300,
        help="Period in seconds for pricing failure alarms",
    )
    parser.add_argument(
        "--coupon-rejection-threshold",
        type=int,
        default=50,
        help="Usage-limit coupon rejections per period before alarming",
    )
    parser.add_argument(
        "--queue-depth-threshold",
        type=int,
        default=100,
        help="Queue depth threshold for the usage backlog alarm",
    )
    parser.add_argument(
        "--queue-depth-period",
        type=int,
        default=300,
        help="Period in seconds for queue depth alarm",
    )
    parser.add_argument(
        "--queue-depth-evaluation-periods",
        type=int,
        default=3,
        help="Evaluation periods for queue depth alarm",
    )
    parser.add_argument(
        "--sqs-queue-name",
        help="Usage SQS queue name for backlog alarm (required for queue depth alarm)",
    )
    parser.add_argument(
        "--worker-error-threshold",
        type=int,
        default=5,
        help="Worker error count threshold",
    )
    parser.add_argument(
        "--worker-error-period",
        type=int,
        default=300,
        help="Period in seconds for worker error alarm",
    )

    args = parser.parse_args()

    cloudwatch = boto3.client("cloudwatch")
    alarm_actions = _alarm_actions(args.sns_topic_arn)

    for error_code in PRICING_ERROR_CODES:
        cloudwatch.put_metric_alarm(
            AlarmName=_alarm_name(args.alarm_prefix, f"pricing-{error_code.lower()}", args.store_id),
            AlarmDescription=f"Triggers when checkout pricing keeps failing with {error_code}.",
            Namespace=args.namespace,
            MetricName="PricingFailed",
            Dimensions=[
                {"Name": "store_id", "Value": args.store_id},
                {"Name": "error_code", "Value": error_code},
            ],
            Statistic="Sum",
            Period=args.pricing_failure_period,
            EvaluationPeriods=1,
            Threshold=args.pricing_failure_threshold,
            ComparisonOperator="GreaterThanOrEqualToThreshold",
            TreatMissingData="notBreaching",
            AlarmActions=alarm_actions,
            OKActions=alarm_actions,
        )

    cloudwatch.put_metric_alarm(
        AlarmName=_alarm_name(args.alarm_prefix, "coupon-usage-limit", args.store_id),
        AlarmDescription="Triggers when many shoppers hit exhausted coupons.",
        Namespace=args.namespace,
        MetricName="CouponRejected",
        Dimensions=[
            {"Name": "store_id", "Value": args.store_id},
            {"Name": "reason", "Value": "USAGE_LIMIT_REACHED"},
        ],
        Statistic="Sum",
        Period=args.pricing_failure_period,
        EvaluationPeriods=1,
        Threshold=args.coupon_rejection_threshold,
        ComparisonOperator="GreaterThanOrEqualToThreshold",
        TreatMissingData="notBreaching",
        AlarmActions=alarm_actions,
        OKActions=alarm_actions,
    )

    if args.sqs_queue_name:
        cloudwatch.put_metric_alarm(
            AlarmName=_alarm_name(args.alarm_prefix, "usage-queue-backlog", None),
            AlarmDescription="Triggers on sustained backlog of unrecorded order completions.",
            Namespace="AWS/SQS",
            MetricName="ApproximateNumberOfMessagesVisible",
            Dimensions=[{"Name": "QueueName", "Value": args.sqs_queue_name}],
            Statistic="Average",
            Period=args.queue_depth_period,
            EvaluationPeriods=args.queue_depth_evaluation_periods,
            DatapointsToAlarm=args.queue_depth_evaluation_periods,
            Threshold=args.queue_depth_threshold,
            ComparisonOperator="GreaterThanOrEqualToThreshold",
            TreatMissingData="notBreaching",
            AlarmActions=alarm_actions,
            OKActions=alarm_actions,
        )

    cloudwatch.put_metric_alarm(
        AlarmName=_alarm_name(args.alarm_prefix, "usage-worker-errors", None),
        AlarmDescription="Triggers on elevated usage worker error rate.",
        Namespace=args.namespace,
        MetricName="WorkerError",
        Dimensions=[],
        Statistic="Sum",
        Period=args.worker_error_period,
        EvaluationPeriods=1,
        Threshold=args.worker_error_threshold,
        ComparisonOperator="GreaterThanOrEqualToThreshold",
        TreatMissingData="notBreaching",
        AlarmActions=alarm_actions,
        OKActions=alarm_actions,
    )


if __name__ == "__main__":
    main()
