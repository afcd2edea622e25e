"""Base repository class for DynamoDB operations."""

import os
from typing import Any, Generic, TypeVar

import boto3
import structlog
from botocore.exceptions import ClientError

from roomgate.models.base import BaseModel
from roomgate.utils.exceptions import (
    ConflictError,
    InfrastructureUnavailableError,
    NotFoundError,
)

logger = structlog.get_logger()

T = TypeVar("T", bound=BaseModel)


def is_condition_failure(error: ClientError) -> bool:
    """Check whether a ClientError is a failed ConditionExpression."""
    return error.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


class BaseRepository(Generic[T]):
    """Base repository for DynamoDB single-table design.

    Provides common CRUD operations. Status transitions use conditional
    single-item updates so concurrent writers resolve to one winner.
    """

    def __init__(
        self,
        model_class: type[T],
        table_name: str | None = None,
    ):
        """Initialize repository.

        Args:
            model_class: The Pydantic model class for this repository.
            table_name: DynamoDB table name. Defaults to TABLE_NAME env var.
        """
        self.model_class = model_class
        self.table_name = table_name or os.environ.get("TABLE_NAME", "roomgate-dev")
        self._dynamodb = None
        self._table = None

    @property
    def dynamodb(self):
        """Get DynamoDB resource (lazy initialization)."""
        if self._dynamodb is None:
            self._dynamodb = boto3.resource("dynamodb")
        return self._dynamodb

    @property
    def table(self):
        """Get DynamoDB table (lazy initialization)."""
        if self._table is None:
            self._table = self.dynamodb.Table(self.table_name)
        return self._table

    def _build_key(self, pk: str, sk: str) -> dict[str, str]:
        """Build key dictionary for DynamoDB operations."""
        return {"PK": pk, "SK": sk}

    def _store_error(self, operation: str, error: ClientError, **context: Any) -> InfrastructureUnavailableError:
        logger.error(f"DynamoDB {operation} failed", error=str(error), **context)
        return InfrastructureUnavailableError("dynamodb", original_error=str(error))

    def get(self, pk: str, sk: str) -> T | None:
        """Get an item by its primary key.

        Args:
            pk: Partition key value.
            sk: Sort key value.

        Returns:
            Model instance or None if not found.
        """
        try:
            response = self.table.get_item(Key=self._build_key(pk, sk), ConsistentRead=True)
        except ClientError as e:
            raise self._store_error("get_item", e, pk=pk, sk=sk) from e

        item = response.get("Item")
        if not item:
            return None
        return self.model_class.from_dynamodb(item)

    def get_or_raise(self, pk: str, sk: str, resource_type: str, resource_id: str) -> T:
        """Get an item or raise NotFoundError.

        Args:
            pk: Partition key value.
            sk: Sort key value.
            resource_type: Resource type name for error message.
            resource_id: Resource ID for error message.

        Returns:
            Model instance.

        Raises:
            NotFoundError: If item not found.
        """
        item = self.get(pk, sk)
        if not item:
            raise NotFoundError(resource_type, resource_id)
        return item

    def put(self, item: T, condition_expression: str | None = None) -> T:
        """Put an item into DynamoDB.

        Args:
            item: Model instance to save.
            condition_expression: Optional condition expression.

        Returns:
            The saved model instance.

        Raises:
            ConflictError: If the condition expression fails.
        """
        item.update_timestamp()

        db_item = item.to_dynamodb()
        db_item.update(item.get_keys())
        db_item.update(item.get_gsi_keys())

        kwargs: dict[str, Any] = {"Item": db_item}
        if condition_expression:
            kwargs["ConditionExpression"] = condition_expression

        try:
            self.table.put_item(**kwargs)
        except ClientError as e:
            if is_condition_failure(e):
                raise ConflictError("Item already exists") from e
            raise self._store_error("put_item", e, pk=db_item["PK"]) from e

        logger.debug(
            "Item saved",
            pk=db_item["PK"],
            sk=db_item["SK"],
            model=self.model_class.__name__,
        )
        return item

    def create(self, item: T) -> T:
        """Create a new item (fails if exists).

        Raises:
            ConflictError: If item already exists.
        """
        return self.put(item, condition_expression="attribute_not_exists(PK)")

    def update_attributes(
        self,
        pk: str,
        sk: str,
        update_expression: str,
        expression_values: dict[str, Any],
        expression_names: dict[str, str] | None = None,
        condition_expression: str | None = None,
    ) -> T:
        """Apply an UpdateExpression to one item and return the new state.

        Args:
            pk: Partition key value.
            sk: Sort key value.
            update_expression: DynamoDB UpdateExpression.
            expression_values: Expression attribute values.
            expression_names: Expression attribute names.
            condition_expression: Optional guard evaluated atomically with the write.

        Returns:
            The item after the update.

        Raises:
            ConflictError: If the condition expression fails.
        """
        kwargs: dict[str, Any] = {
            "Key": self._build_key(pk, sk),
            "UpdateExpression": update_expression,
            "ExpressionAttributeValues": expression_values,
            "ReturnValues": "ALL_NEW",
        }
        if expression_names:
            kwargs["ExpressionAttributeNames"] = expression_names
        if condition_expression:
            kwargs["ConditionExpression"] = condition_expression

        try:
            response = self.table.update_item(**kwargs)
        except ClientError as e:
            if is_condition_failure(e):
                raise ConflictError("Item was modified by another process") from e
            raise self._store_error("update_item", e, pk=pk, sk=sk) from e

        return self.model_class.from_dynamodb(response["Attributes"])

    def query(
        self,
        pk: str,
        sk_begins_with: str | None = None,
        index_name: str | None = None,
        limit: int | None = None,
        scan_forward: bool = True,
        filter_expression: str | None = None,
        expression_values: dict | None = None,
        expression_names: dict | None = None,
        last_key: dict | None = None,
    ) -> tuple[list[T], dict | None]:
        """Query items by partition key.

        Args:
            pk: Partition key value (of the index when index_name is set).
            sk_begins_with: Sort key prefix for begins_with condition.
            index_name: Optional GSI name ("GSI1", "GSI2", ...).
            limit: Maximum items to evaluate.
            scan_forward: Sort direction (True = ascending).
            filter_expression: Optional filter expression.
            expression_values: Extra expression attribute values.
            expression_names: Expression attribute names (for reserved words).
            last_key: Last evaluated key for pagination.

        Returns:
            Tuple of (items, last_evaluated_key).
        """
        pk_attr, sk_attr = ("PK", "SK") if not index_name else (f"{index_name}PK", f"{index_name}SK")

        key_condition = f"{pk_attr} = :pk"
        expr_values: dict[str, Any] = {":pk": pk}
        if sk_begins_with:
            key_condition += f" AND begins_with({sk_attr}, :sk_prefix)"
            expr_values[":sk_prefix"] = sk_begins_with

        if expression_values:
            expr_values.update(expression_values)

        kwargs: dict[str, Any] = {
            "KeyConditionExpression": key_condition,
            "ExpressionAttributeValues": expr_values,
            "ScanIndexForward": scan_forward,
        }
        if index_name:
            kwargs["IndexName"] = index_name
        if limit:
            kwargs["Limit"] = limit
        if filter_expression:
            kwargs["FilterExpression"] = filter_expression
        if expression_names:
            kwargs["ExpressionAttributeNames"] = expression_names
        if last_key:
            kwargs["ExclusiveStartKey"] = last_key

        try:
            response = self.table.query(**kwargs)
        except ClientError as e:
            raise self._store_error("query", e, pk=pk, index=index_name) from e

        items = [self.model_class.from_dynamodb(item) for item in response.get("Items", [])]
        return items, response.get("LastEvaluatedKey")

    def query_all(self, pk: str, **kwargs: Any) -> list[T]:
        """Query every page for a partition key.

        Filter expressions apply per page, so a single page can come back
        empty while later pages still hold matches.
        """
        results: list[T] = []
        last_key = None
        while True:
            items, last_key = self.query(pk, last_key=last_key, **kwargs)
            results.extend(items)
            if not last_key:
                return results
