"""
Document payload codec.

Payloads are stored as opaque BSON bytes. Decoding goes through the pydantic
schema, so a payload either becomes a fully typed model or fails with a
DocumentDecodeError naming the context it was decoded in.
"""

from typing import Type, TypeVar
import logging

import bson
from bson.errors import BSONError
from pydantic import BaseModel, ValidationError

from waqf_engine.errors import DocumentDecodeError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def encode_doc_data(model: BaseModel) -> bytes:
    return bson.encode(model.model_dump(mode="json"))


def encode_raw(data: dict) -> bytes:
    return bson.encode(data)


def decode_raw(data: bytes, context: str) -> dict:
    try:
        return bson.decode(data)
    except (BSONError, TypeError, ValueError) as e:
        raise DocumentDecodeError(f"{context}: {e}")


def decode_doc_data(data: bytes, model_cls: Type[ModelT], context: str) -> ModelT:
    """Decode a BSON payload into model_cls or raise DocumentDecodeError."""
    raw = decode_raw(data, context)
    try:
        return model_cls.model_validate(raw)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise DocumentDecodeError(f"{context}: {details}")
