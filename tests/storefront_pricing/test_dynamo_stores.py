import boto3
import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from storefront_pricing.persistence.dynamo_stores import (
    DynamoStoreConfigs,
    InMemoryStoreConfigs,
    StoreConfigRecord,
)


@pytest.fixture()
def dynamo_table_name() -> str:
    return "store-configs"


@pytest.fixture()
def dynamodb_table(dynamo_table_name: str, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    with mock_aws():
        resource = boto3.resource("dynamodb", region_name="us-east-1")
        table = resource.create_table(
            TableName=dynamo_table_name,
            KeySchema=[
                {"AttributeName": "store_id", "KeyType": "HASH"},
                {"AttributeName": "config_version", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "store_id", "AttributeType": "S"},
                {"AttributeName": "config_version", "AttributeType": "N"},
            ],
            ProvisionedThroughput={"ReadCapacityUnits": 5, "WriteCapacityUnits": 5},
        )
        table.meta.client.get_waiter("table_exists").wait(TableName=dynamo_table_name)
        yield table


def test_get_latest_returns_none_when_missing(dynamo_table_name: str, dynamodb_table):
    stores = DynamoStoreConfigs(dynamo_table_name)
    assert stores.get_latest("store-unknown") is None


def test_get_latest_returns_latest_config_version(dynamo_table_name: str, dynamodb_table):
    stores = DynamoStoreConfigs(dynamo_table_name)
    stores.put(StoreConfigRecord(store_id="store-a", config_version=1, config={"k": "v1"}))
    stores.put(StoreConfigRecord(store_id="store-a", config_version=2, config={"k": "v2"}))

    latest = stores.get_latest("store-a")

    assert latest is not None
    assert latest.config_version == 2
    assert latest.config == {"k": "v2"}
    pinned = stores.get("store-a", 1)
    assert pinned is not None
    assert pinned.config == {"k": "v1"}


def test_get_latest_isolated_by_store(dynamo_table_name: str, dynamodb_table):
    stores = DynamoStoreConfigs(dynamo_table_name)
    stores.put(StoreConfigRecord(store_id="store-a", config_version=1, config={"k": "v1"}))
    stores.put(StoreConfigRecord(store_id="store-b", config_version=3, config={"k": "b3"}))
    stores.put(StoreConfigRecord(store_id="store-b", config_version=2, config={"k": "b2"}))

    latest_a = stores.get_latest("store-a")
    latest_b = stores.get_latest("store-b")

    assert latest_a is not None
    assert latest_b is not None
    assert latest_a.config_version == 1
    assert latest_b.config_version == 3


def test_versions_are_never_overwritten(dynamo_table_name: str, dynamodb_table):
    stores = DynamoStoreConfigs(dynamo_table_name)
    stores.put(StoreConfigRecord(store_id="store-a", config_version=1, config={"k": "v1"}))

    with pytest.raises(ClientError) as excinfo:
        stores.put(StoreConfigRecord(store_id="store-a", config_version=1, config={"k": "other"}))

    assert excinfo.value.response["Error"]["Code"] == "ConditionalCheckFailedException"
    assert stores.get("store-a", 1).config == {"k": "v1"}


def test_in_memory_store_configs():
    stores = InMemoryStoreConfigs()
    assert stores.get_latest("store-a") is None
    stores.put(StoreConfigRecord(store_id="store-a", config_version=2, config={"k": "v2"}))
    stores.put(StoreConfigRecord(store_id="store-a", config_version=1, config={"k": "v1"}))

    assert stores.get_latest("store-a").config_version == 2
    assert stores.get("store-a", 1).config == {"k": "v1"}
    assert stores.get("store-a", 5) is None
