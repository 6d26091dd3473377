from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import boto3

JOB_TYPE_ATTRIBUTE = "job_type"


@dataclass
class SqsMessage:
    receipt_handle: str
    body: Dict[str, Any]
    receive_count: int = 1
    job_type: Optional[str] = None


class SqsAdapter:
    def __init__(self, queue_url: str, *, wait_seconds: int = 5) -> None:
        self.queue_url = queue_url
        self.wait_seconds = wait_seconds
        self.client = boto3.client("sqs")

    def send(self, payload: Dict[str, Any], *, job_type: Optional[str] = None) -> str:
        kwargs: Dict[str, Any] = {"QueueUrl": self.queue_url, "MessageBody": json.dumps(payload, default=str)}
        if job_type:
            kwargs["MessageAttributes"] = {
                JOB_TYPE_ATTRIBUTE: {"DataType": "String", "StringValue": job_type}
            }
        response = self.client.send_message(**kwargs)
        return response.get("MessageId", "")

    def receive(self) -> Optional[SqsMessage]:
        response = self.client.receive_message(
            QueueUrl=self.queue_url,
            AttributeNames=["ApproximateReceiveCount"],
            MessageAttributeNames=[JOB_TYPE_ATTRIBUTE],
            MaxNumberOfMessages=1,
            WaitTimeSeconds=self.wait_seconds,
        )
        messages = response.get("Messages", [])
        if not messages:
            return None
        message = messages[0]
        try:
            body = json.loads(message.get("Body") or "{}")
        except json.JSONDecodeError:
            body = {}
        attributes = message.get("Attributes", {})
        job_type = message.get("MessageAttributes", {}).get(JOB_TYPE_ATTRIBUTE, {}).get("StringValue")
        return SqsMessage(
            receipt_handle=message["ReceiptHandle"],
            body=body if isinstance(body, dict) else {},
            receive_count=int(attributes.get("ApproximateReceiveCount", "1")),
            job_type=job_type,
        )

    def delete(self, receipt_handle: str) -> None:
        self.client.delete_message(QueueUrl=self.queue_url, ReceiptHandle=receipt_handle)
