import boto3
from typing import Optional, Dict, Any, List
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError
from caption_service.settings import settings
import logging

log = logging.getLogger(__name__)

# -------------------------
# DynamoDB Service
# -------------------------
class DynamoDBService:
    """Owns the session records and caption job records."""

    def __init__(self):
        session = boto3.session.Session(region_name=settings.aws_region)
        kwargs = {
            "aws_access_key_id": settings.aws_access_key_id,
            "aws_secret_access_key": settings.aws_secret_access_key,
        }
        if settings.aws_endpoint_url:
            kwargs["endpoint_url"] = settings.aws_endpoint_url

        self.resource = session.resource("dynamodb", **kwargs)
        log.info("Initialized DynamoDB resource")

        # Ensure tables exist at initialization
        self.ensure_tables()

    # Refer here: https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/dynamodb/client/create_table.html
    def ensure_tables(self):
        self._ensure_table(
            settings.sessions_table,
            KeySchema=[{"AttributeName": "session_id", "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": "session_id", "AttributeType": "S"}],
            ProvisionedThroughput={"ReadCapacityUnits": 5, "WriteCapacityUnits": 5},
        )
        self._ensure_table(
            settings.jobs_table,
            KeySchema=[{"AttributeName": "job_id", "KeyType": "HASH"}],
            AttributeDefinitions=[
                {"AttributeName": "job_id", "AttributeType": "S"},
                {"AttributeName": "session_id", "AttributeType": "S"},
                {"AttributeName": "created_at", "AttributeType": "S"},
            ],
            GlobalSecondaryIndexes=[
                {
                    "IndexName": "SessionIndex",
                    "KeySchema": [
                        {"AttributeName": "session_id", "KeyType": "HASH"},
                        {"AttributeName": "created_at", "KeyType": "RANGE"},
                    ],
                    "Projection": {"ProjectionType": "ALL"},
                    "ProvisionedThroughput": {"ReadCapacityUnits": 5, "WriteCapacityUnits": 5},
                }
            ],
            ProvisionedThroughput={"ReadCapacityUnits": 5, "WriteCapacityUnits": 5},
        )

    def _ensure_table(self, name: str, **schema):
        try:
            table = self.resource.Table(name)
            table.load()
        except ClientError:
            table = self.resource.create_table(TableName=name, **schema)
            table.wait_until_exists()
            log.info(f"Created table {name}")

    def _update(self, table_name: str, key: Dict[str, str], fields: Dict[str, Any]):
        # status/state are DynamoDB reserved words, so every attribute goes through a name placeholder
        names = {f"#f{i}": k for i, k in enumerate(fields)}
        values = {f":v{i}": v for i, v in enumerate(fields.values())}
        expression = "SET " + ", ".join(f"#f{i} = :v{i}" for i in range(len(fields)))
        table = self.resource.Table(table_name)
        resp = table.update_item(
            Key=key,
            UpdateExpression=expression,
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
            ReturnValues="ALL_NEW",
        )
        return resp.get("Attributes")

    # ---- sessions ----

    def put_session(self, item: Dict[str, Any]):
        table = self.resource.Table(settings.sessions_table)
        table.put_item(Item=item)
        log.debug(f"Stored session record {item.get('session_id')}")

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        table = self.resource.Table(settings.sessions_table)
        resp = table.get_item(Key={"session_id": session_id})
        return resp.get("Item")

    def update_session(self, session_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._update(settings.sessions_table, {"session_id": session_id}, fields)

    def delete_session(self, session_id: str):
        table = self.resource.Table(settings.sessions_table)
        table.delete_item(Key={"session_id": session_id})
        log.debug(f"Deleted session record {session_id}")

    def scan_sessions(self) -> List[Dict[str, Any]]:
        table = self.resource.Table(settings.sessions_table)
        scan_kwargs = {}
        items = []
        while True:
            resp = table.scan(**scan_kwargs)
            items.extend(resp.get("Items", []))
            if not resp.get("LastEvaluatedKey"):
                return items
            scan_kwargs["ExclusiveStartKey"] = resp["LastEvaluatedKey"]

    # ---- caption jobs ----

    def put_job(self, item: Dict[str, Any]):
        table = self.resource.Table(settings.jobs_table)
        table.put_item(Item=item)
        log.debug(f"Stored job record {item.get('job_id')}")

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        table = self.resource.Table(settings.jobs_table)
        resp = table.get_item(Key={"job_id": job_id})
        return resp.get("Item")

    def update_job(self, job_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._update(settings.jobs_table, {"job_id": job_id}, fields)

    def query_jobs(self, session_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Jobs for a session, newest first."""
        table = self.resource.Table(settings.jobs_table)
        query_kwargs = {
            "IndexName": "SessionIndex",
            "KeyConditionExpression": Key("session_id").eq(session_id),
            "ScanIndexForward": False,
        }
        if limit:
            query_kwargs["Limit"] = limit
        resp = table.query(**query_kwargs)
        return resp.get("Items", [])

    def delete_job(self, job_id: str):
        table = self.resource.Table(settings.jobs_table)
        table.delete_item(Key={"job_id": job_id})
        log.debug(f"Deleted job record {job_id}")

    def close(self):
        log.info("Closed DynamoDB resource")
