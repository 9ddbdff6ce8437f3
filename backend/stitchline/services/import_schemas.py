from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any

from stitchline.time_utils import parse_flexible_date
from ..validation import NotFoundError
from . import ledger_service, return_service, sku_service
from .permission_service import Actor


def _to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"not a whole number: {value!r}")
        return int(value)
    text = str(value).strip().replace(",", "")
    if not text:
        return None
    return _to_int(float(text))


def _to_hundredths(value: Any) -> int | None:
    """Decimal text ("12.5", "1,250.00", "$4.99") -> integer hundredths."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return int(value) * 100
    if isinstance(value, int):
        return value * 100
    if isinstance(value, float):
        return int(round(value * 100))
    text = str(value).strip().replace("$", "").replace(",", "").replace("%", "")
    if not text:
        return None
    return int(round(float(text) * 100))


# Price -> cents, meters -> centimeters, percent -> basis points
_to_cents = _to_hundredths
_to_cm = _to_hundredths
_to_bps = _to_hundredths


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def _to_date(value: Any) -> date | str | None:
    """Parsed date, or the original text when it cannot be parsed."""
    try:
        return parse_flexible_date(value)
    except ValueError:
        return str(value)


def _lookup(raw_row: dict[str, Any]) -> dict[str, Any]:
    return {str(k).strip().lower(): v for k, v in raw_row.items() if k is not None}


def _pick(row: dict[str, Any], *aliases: str) -> Any:
    for alias in aliases:
        value = row.get(alias)
        if value not in (None, ""):
            return value
    return None


def _safe(convert, value: Any, field: str, errors: list[str]):
    try:
        return convert(value)
    except (TypeError, ValueError):
        errors.append(f"{field} must be a number")
        return None


def _required(errors: list[str], row: dict[str, Any], *fields: str) -> None:
    for field in fields:
        if row.get(field) in (None, ""):
            errors.append(f"{field} is required")


def _date_error(row: dict[str, Any], errors: list[str]) -> None:
    if isinstance(row.get("record_date"), str):
        errors.append(f"Invalid date: {row['record_date']}")


def _strip_internal(row: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in row.items() if not k.startswith("_") and v is not None}


@dataclass
class SchemaContext:
    actor: Actor
    row_number: int
    file_name: str | None


class BaseImportSchema:
    required_permission = "RUN_IMPORTS"

    def normalize_row(self, raw_row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def validate_row(self, normalized_row: dict[str, Any]) -> list[str]:
        raise NotImplementedError

    def check_references(self, normalized_row: dict[str, Any], state: dict[str, Any]) -> list[str]:
        """Read-only checks against stored data; `state` carries totals across rows."""
        return []

    def post_row(self, normalized_row: dict[str, Any], context: SchemaContext) -> dict[str, Any]:
        raise NotImplementedError


def _resolve_sku(normalized_row: dict[str, Any], errors: list[str]):
    code = normalized_row.get("sku")
    if not code:
        return None
    sku = sku_service.get_sku_by_code(code)
    if sku is None:
        errors.append(f"SKU '{sku_service.normalize_code(code)}' not found")
    return sku


def _require_sku_id(normalized_row: dict[str, Any]) -> int:
    errors: list[str] = []
    sku = _resolve_sku(normalized_row, errors)
    if sku is None:
        raise NotFoundError(errors[0] if errors else "SKU is required")
    return sku.id


class SkuSchema(BaseImportSchema):
    required_permission = "MANAGE_SKUS"

    TEMPLATE_HEADERS = (
        "SKU Code", "SKU Name", "Category", "Fabric Type", "Size", "Color", "Price", "Avg Consumption",
    )

    def normalize_row(self, raw_row: dict[str, Any]) -> dict[str, Any]:
        row = _lookup(raw_row)
        errors: list[str] = []
        return {
            "sku": _to_text(_pick(row, "sku code", "sku", "skucode", "code")),
            "product_name": _to_text(_pick(row, "sku name", "product name", "product_name", "name", "skuname")),
            "category": _to_text(_pick(row, "category")),
            "fabric_type": _to_text(_pick(row, "fabric type", "fabric_type", "fabrictype")),
            "size": _to_text(_pick(row, "size")),
            "color": _to_text(_pick(row, "color", "colour")),
            "price_cents": _safe(_to_cents, _pick(row, "price"), "price", errors),
            "barcode": _to_text(_pick(row, "barcode")),
            "avg_consumption_cm": _safe(
                _to_cm, _pick(row, "avg consumption", "avg_consumption", "avgconsumption"),
                "avg consumption", errors,
            ),
            "_errors": errors,
        }

    def validate_row(self, normalized_row: dict[str, Any]) -> list[str]:
        errors = list(normalized_row.get("_errors") or [])
        if not normalized_row.get("sku"):
            errors.append("SKU code is required")
        if not normalized_row.get("product_name"):
            errors.append("SKU name is required")
        return errors

    def check_references(self, normalized_row: dict[str, Any], state: dict[str, Any]) -> list[str]:
        code = sku_service.normalize_code(normalized_row.get("sku"))
        seen = state.setdefault("codes", set())
        errors = []
        if code in seen:
            errors.append(f"SKU code '{code}' appears more than once in this file")
        elif sku_service.get_sku_by_code(code) is not None:
            errors.append(f"SKU code '{code}' already exists")
        seen.add(code)
        return errors

    def post_row(self, normalized_row: dict[str, Any], context: SchemaContext) -> dict[str, Any]:
        sku = sku_service.create_sku(actor=context.actor, payload=_strip_internal(normalized_row))
        return {"entity_type": "sku", "entity_id": sku.id}


class FabricSchema(BaseImportSchema):
    def normalize_row(self, raw_row: dict[str, Any]) -> dict[str, Any]:
        row = _lookup(raw_row)
        errors: list[str] = []
        return {
            "sku": _to_text(_pick(row, "sku code", "sku")),
            "fabric_type": _to_text(_pick(row, "fabric type", "fabric_type")),
            "fabric_name": _to_text(_pick(row, "fabric name", "fabric_name")),
            "fabric_width_cm": _safe(_to_int, _pick(row, "fabric width", "width", "fabric_width_cm"), "fabric width", errors),
            "meters_received_cm": _safe(
                _to_cm, _pick(row, "meters received", "meters", "meters_received"), "meters received", errors,
            ),
            "remarks": _to_text(_pick(row, "remarks", "notes")),
            "record_date": _to_date(_pick(row, "date", "received date", "record_date")),
            "_errors": errors,
        }

    def validate_row(self, normalized_row: dict[str, Any]) -> list[str]:
        errors = list(normalized_row.get("_errors") or [])
        _required(errors, normalized_row, "sku", "fabric_type", "meters_received_cm")
        if (normalized_row.get("meters_received_cm") or 0) < 0:
            errors.append("meters received must be positive")
        _date_error(normalized_row, errors)
        return errors

    def check_references(self, normalized_row: dict[str, Any], state: dict[str, Any]) -> list[str]:
        errors: list[str] = []
        _resolve_sku(normalized_row, errors)
        return errors

    def post_row(self, normalized_row: dict[str, Any], context: SchemaContext) -> dict[str, Any]:
        payload = _strip_internal(normalized_row)
        payload["sku_id"] = _require_sku_id(payload)
        payload.pop("sku", None)
        record = ledger_service.create_record("fabric", actor=context.actor, payload=payload)
        return {"entity_type": "fabric", "entity_id": record.id}


class SalesSchema(BaseImportSchema):
    def normalize_row(self, raw_row: dict[str, Any]) -> dict[str, Any]:
        row = _lookup(raw_row)
        errors: list[str] = []
        return {
            "sku": _to_text(_pick(row, "sku code", "sku")),
            "quantity_sold": _safe(_to_int, _pick(row, "quantity", "quantity sold", "qty", "quantity_sold"), "quantity", errors),
            "platform_name": _to_text(_pick(row, "platform", "platform name", "platform_name", "panel")),
            "order_id": _to_text(_pick(row, "order id", "order_id", "orderid")),
            "unit_price_cents": _safe(_to_cents, _pick(row, "unit price", "price", "unit_price"), "unit price", errors),
            "total_amount_cents": _safe(_to_cents, _pick(row, "total amount", "total", "total_amount"), "total amount", errors),
            "record_date": _to_date(_pick(row, "date", "sale date", "record_date")),
            "_errors": errors,
        }

    def validate_row(self, normalized_row: dict[str, Any]) -> list[str]:
        errors = list(normalized_row.get("_errors") or [])
        _required(errors, normalized_row, "sku", "platform_name", "unit_price_cents")
        quantity = normalized_row.get("quantity_sold")
        if quantity is None or quantity <= 0:
            errors.append("quantity must be a positive number")
        _date_error(normalized_row, errors)
        return errors

    def check_references(self, normalized_row: dict[str, Any], state: dict[str, Any]) -> list[str]:
        errors: list[str] = []
        sku = _resolve_sku(normalized_row, errors)
        if sku is None:
            return errors
        remaining = state.setdefault("stock", {})
        if sku.id not in remaining:
            remaining[sku.id] = ledger_service.get_available("sales", sku.id)
        quantity = normalized_row.get("quantity_sold") or 0
        if quantity > remaining[sku.id]:
            errors.append(
                f"Insufficient stock for {sku.sku}. Available: {remaining[sku.id]}, Required: {quantity}"
            )
        else:
            remaining[sku.id] -= quantity
        return errors

    def post_row(self, normalized_row: dict[str, Any], context: SchemaContext) -> dict[str, Any]:
        payload = _strip_internal(normalized_row)
        payload["sku_id"] = _require_sku_id(payload)
        payload.pop("sku", None)
        record = ledger_service.create_record("sales", actor=context.actor, payload=payload)
        return {"entity_type": "sales", "entity_id": record.id}


class ReturnSchema(BaseImportSchema):
    def normalize_row(self, raw_row: dict[str, Any]) -> dict[str, Any]:
        row = _lookup(raw_row)
        errors: list[str] = []

        return_type = _to_text(_pick(row, "return type", "return_type", "type"))
        condition = _to_text(_pick(row, "condition", "return condition", "return_condition"))
        subtype = _to_text(_pick(row, "e-commerce subtype", "ecommerce subtype", "ecommerce_subtype", "subtype"))
        return {
            "sku": _to_text(_pick(row, "sku code", "sku")),
            "order_id": _to_text(_pick(row, "order id", "order_id", "orderid")),
            "quantity": _safe(_to_int, _pick(row, "quantity", "qty"), "quantity", errors),
            "return_type": return_type.lower() if return_type else None,
            "ecommerce_subtype": subtype.lower().replace(" ", "_") if subtype else None,
            "return_condition": condition.lower().replace(" ", "_") if condition else None,
            "return_source_panel": _to_text(_pick(row, "panel", "source panel", "return source panel", "platform")),
            "return_reason": _to_text(_pick(row, "reason", "return reason")),
            "record_date": _to_date(_pick(row, "date", "return date", "record_date")),
            "_errors": errors,
        }

    def validate_row(self, normalized_row: dict[str, Any]) -> list[str]:
        errors = list(normalized_row.get("_errors") or [])
        _required(errors, normalized_row, "sku", "order_id", "return_type", "return_condition", "return_source_panel")
        quantity = normalized_row.get("quantity")
        if quantity is None or quantity <= 0:
            errors.append("quantity must be a positive number")
        condition = normalized_row.get("return_condition")
        if condition and condition not in return_service.RETURN_CONDITIONS:
            errors.append(f"Unknown return condition: {condition}")
        _date_error(normalized_row, errors)
        return errors

    def check_references(self, normalized_row: dict[str, Any], state: dict[str, Any]) -> list[str]:
        errors: list[str] = []
        _resolve_sku(normalized_row, errors)
        order_id = normalized_row.get("order_id")
        seen = state.setdefault("order_ids", set())
        if order_id in seen:
            errors.append(f"Order ID '{order_id}' appears more than once in this file")
        elif return_service.order_id_exists(order_id):
            errors.append(f"A return with order ID '{order_id}' already exists")
        seen.add(order_id)
        return errors

    def post_row(self, normalized_row: dict[str, Any], context: SchemaContext) -> dict[str, Any]:
        payload = _strip_internal(normalized_row)
        payload["sku_id"] = _require_sku_id(payload)
        payload.pop("sku", None)
        ret = return_service.create_return(actor=context.actor, payload=payload)
        return {"entity_type": "return", "entity_id": ret.id}


SCHEMAS: dict[str, BaseImportSchema] = {
    "sku-import": SkuSchema(),
    "fabric-import": FabricSchema(),
    "sales-import": SalesSchema(),
    "return-import": ReturnSchema(),
}
