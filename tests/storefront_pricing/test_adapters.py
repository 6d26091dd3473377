from moto import mock_aws

from storefront_pricing.adapters.queue.sqs import SqsAdapter


@mock_aws
def test_sqs_adapter_send_receive_delete() -> None:
    import boto3

    client = boto3.client("sqs", region_name="us-east-1")
    response = client.create_queue(QueueName="test-queue")
    queue_url = response["QueueUrl"]

    adapter = SqsAdapter(queue_url, wait_seconds=0)
    assert adapter.send({"job_id": "123"}, job_type="usage")
    message = adapter.receive()
    assert message is not None
    assert message.body["job_id"] == "123"
    assert message.job_type == "usage"
    assert message.receive_count == 1
    adapter.delete(message.receipt_handle)
    assert adapter.receive() is None


@mock_aws
def test_sqs_adapter_tolerates_non_json_body() -> None:
    import boto3

    client = boto3.client("sqs", region_name="us-east-1")
    queue_url = client.create_queue(QueueName="test-queue")["QueueUrl"]
    client.send_message(QueueUrl=queue_url, MessageBody="not json")

    message = SqsAdapter(queue_url, wait_seconds=0).receive()

    assert message is not None
    assert message.body == {}
    assert message.job_type is None
