"""
Schema validation as FastAPI dependencies.

    @router.post("/items")
    def create(payload: ItemCreate = Depends(validate(ItemCreate))): ...

Each factory validates one request source with ``schema.model_validate``.
The parsed model is returned to the handler and also kept on
``request.state`` (``body``, ``query`` or ``params``). A mismatch raises
RequestValidationFailed (400); a schema that blows up raises InternalError.
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Type

import structlog
from fastapi import Request
from pydantic import BaseModel, ValidationError

from .errors import InternalError, RequestValidationFailed
from .i18n import translate
from .sanitize import deep_sanitize


log = structlog.get_logger()

BODY = ("body", "Validation failed", "validation_failed")
QUERY = ("query", "Query validation failed", "query_validation_failed")
PARAMS = ("params", "Parameters validation failed", "params_validation_failed")


def _details(exc: ValidationError, source: Optional[str] = None) -> List[Dict[str, Any]]:
    out = []
    for e in exc.errors(include_url=False):
        item = {
            "field": ".".join(str(p) for p in e.get("loc", ())),
            "message": e.get("msg", ""),
            "code": e.get("type", ""),
        }
        if source:
            item["source"] = source
        out.append(item)
    return out


async def _read_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return {}
    return json.loads(raw)


async def _source_data(request: Request, source: str) -> Any:
    if source == "body":
        return await _read_body(request)
    if source == "query":
        return dict(request.query_params)
    return deep_sanitize(dict(request.path_params))


def _run_schema(request: Request, schema: Type[BaseModel], data: Any) -> BaseModel:
    try:
        return schema.model_validate(data)
    except ValidationError:
        raise
    except Exception as e:
        log.exception("validation_internal_error", path=request.url.path, schema=schema.__name__)
        raise InternalError(translate(request, "validation_internal_error"), reason="validation_error") from e


def _single(schema: Type[BaseModel], source_info):
    source, error, message_key = source_info

    async def dependency(request: Request) -> BaseModel:
        try:
            data = await _source_data(request, source)
        except ValueError:
            raise RequestValidationFailed(
                error,
                message_key,
                [{"field": "", "message": "Malformed JSON body", "code": "json_invalid"}],
            )
        try:
            parsed = _run_schema(request, schema, data)
        except ValidationError as e:
            raise RequestValidationFailed(error, message_key, _details(e))
        setattr(request.state, source, parsed)
        return parsed

    dependency.__name__ = f"validate_{source}_{schema.__name__}"
    return dependency


def validate(schema: Type[BaseModel]):
    return _single(schema, BODY)


def validate_query(schema: Type[BaseModel]):
    return _single(schema, QUERY)


def validate_params(schema: Type[BaseModel]):
    return _single(schema, PARAMS)


@dataclass
class ValidatedRequest:
    body: Optional[BaseModel] = None
    query: Optional[BaseModel] = None
    params: Optional[BaseModel] = None


def validate_multiple(
    body: Optional[Type[BaseModel]] = None,
    query: Optional[Type[BaseModel]] = None,
    params: Optional[Type[BaseModel]] = None,
):
    """Validate several sources and report every error in one response.

    Nothing is written to ``request.state`` unless all sources pass.
    """
    plan = [(src, schema) for src, schema in ((BODY, body), (QUERY, query), (PARAMS, params)) if schema is not None]

    async def dependency(request: Request) -> ValidatedRequest:
        errors: List[Dict[str, Any]] = []
        parsed: Dict[str, BaseModel] = {}
        for (source, _, _), schema in plan:
            try:
                data = await _source_data(request, source)
            except ValueError:
                errors.append({"field": "", "message": "Malformed JSON body", "code": "json_invalid", "source": source})
                continue
            try:
                parsed[source] = _run_schema(request, schema, data)
            except ValidationError as e:
                errors.extend(_details(e, source))
        if errors:
            raise RequestValidationFailed("Validation failed", "validation_failed", errors)
        for source, model in parsed.items():
            setattr(request.state, source, model)
        return ValidatedRequest(**parsed)

    return dependency
