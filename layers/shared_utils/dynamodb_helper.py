import boto3
import logging
import time
from typing import Dict, List, Optional, Any
from botocore.exceptions import ClientError
from decimal import Decimal
from exceptions import DynamoDBError, ValidationError
from retry_helper import calculate_backoff_delay

logger = logging.getLogger(__name__)


def floats_to_decimals(obj: Any) -> Any:
    if isinstance(obj, list):
        return [floats_to_decimals(i) for i in obj]
    if isinstance(obj, dict):
        return {k: floats_to_decimals(v) for k, v in obj.items()}
    if isinstance(obj, float):
        return Decimal(str(obj))
    return obj


def convert_decimals_to_native(obj: Any) -> Any:
    """Recursively converts Decimal objects to int or float."""
    if isinstance(obj, list):
        return [convert_decimals_to_native(i) for i in obj]
    if isinstance(obj, dict):
        return {k: convert_decimals_to_native(v) for k, v in obj.items()}
    if isinstance(obj, set):
        return {convert_decimals_to_native(i) for i in obj}
    if isinstance(obj, Decimal):
        if obj % 1 == 0:
            return int(obj)
        return float(obj)
    return obj


class DynamoDBHelper:
    """A streamlined DynamoDB helper for basic CRUD operations."""

    def __init__(self, table_name: str, region: str = None, table: Any = None):
        if not table_name:
            raise ValidationError("Table name cannot be empty")

        self.table_name = table_name
        self.region = region or 'us-east-1'
        self.max_retries = 3
        self.base_delay = 1.0

        if table is not None:
            self.table = table
            return

        try:
            self.dynamodb = boto3.resource('dynamodb', region_name=self.region)
            self.table = self.dynamodb.Table(table_name)
        except Exception as e:
            raise DynamoDBError(f"Failed to initialize DynamoDB helper: {e}")

    def _calculate_backoff_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay with jitter."""
        return calculate_backoff_delay(attempt, base_delay=self.base_delay)

    def _should_retry(self, error: ClientError, attempt: int) -> bool:
        """Determine if an error should be retried."""
        if attempt >= self.max_retries:
            return False

        retriable_errors = ['ProvisionedThroughputExceededException', 'ThrottlingException']
        return error.response['Error']['Code'] in retriable_errors

    def _sanitize_item(self, item: Dict[str, Any]) -> Dict[str, Any]:
        """Sanitize item data for DynamoDB with proper type conversion."""
        # Converts floats to Decimals and handles empty strings
        def clean_value(value):
            if value == '':
                return None
            return floats_to_decimals(value)

        return {k: clean_value(v) for k, v in item.items() if v is not None and v != ''}

    def _call_with_retry(self, operation_name: str, func, **kwargs) -> Dict[str, Any]:
        for attempt in range(self.max_retries + 1):
            try:
                return func(**kwargs)
            except ClientError as e:
                if self._should_retry(e, attempt):
                    time.sleep(self._calculate_backoff_delay(attempt))
                    continue
                logger.error(f"DynamoDB {operation_name} failed: {e.response['Error']}")
                raise DynamoDBError(f"DynamoDB {operation_name} failed on {self.table_name}: {e}")
        raise DynamoDBError(f"DynamoDB {operation_name} exhausted retries on {self.table_name}")

    def put_item(self, item: Dict[str, Any]) -> bool:
        """Put an item with proper sanitization and retry logic."""
        if not item:
            raise ValidationError("Item cannot be empty")

        sanitized_item = self._sanitize_item(item)
        self._call_with_retry("put_item", self.table.put_item, Item=sanitized_item)
        return True

    def get_item(self, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Get an item from the table with retry logic."""
        if not key:
            raise ValidationError("Key cannot be empty")

        response = self._call_with_retry("get_item", self.table.get_item, Key=key)
        item = response.get('Item')
        return convert_decimals_to_native(item) if item else None

    def update_item(self, key: Dict[str, Any], updates: Dict[str, Any],
                    remove: Optional[List[str]] = None) -> bool:
        """SET every attribute in `updates` (and REMOVE those in `remove`) on one item."""
        if not key:
            raise ValidationError("Key cannot be empty")
        if not updates and not remove:
            raise ValidationError("Nothing to update")

        names = {}
        values = {}
        set_parts = []
        for index, (attr, value) in enumerate(updates.items()):
            names[f"#a{index}"] = attr
            values[f":v{index}"] = floats_to_decimals(value)
            set_parts.append(f"#a{index} = :v{index}")

        expression = ""
        if set_parts:
            expression = "SET " + ", ".join(set_parts)
        if remove:
            remove_parts = []
            for index, attr in enumerate(remove):
                names[f"#r{index}"] = attr
                remove_parts.append(f"#r{index}")
            expression = f"{expression} REMOVE {', '.join(remove_parts)}".strip()

        kwargs = {
            "Key": key,
            "UpdateExpression": expression,
            "ExpressionAttributeNames": names,
        }
        if values:
            kwargs["ExpressionAttributeValues"] = values

        self._call_with_retry("update_item", self.table.update_item, **kwargs)
        return True

    def scan_items(self, filter_expression: Any = None) -> List[Dict[str, Any]]:
        """Scan the whole table (following pagination), optionally filtered."""
        items = []
        kwargs = {}
        if filter_expression is not None:
            kwargs["FilterExpression"] = filter_expression

        while True:
            response = self._call_with_retry("scan", self.table.scan, **kwargs)
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                break
            kwargs["ExclusiveStartKey"] = last_key

        return convert_decimals_to_native(items)
