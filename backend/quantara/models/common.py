"""
backend/quantara/models/common.py

Purpose:
    Field types shared by the request models.

Dependencies:
    - bson.ObjectId
    - pydantic.AfterValidator
"""

from typing import Annotated

from bson import ObjectId
from pydantic import AfterValidator


def _check_object_id(value: str) -> str:
    if not ObjectId.is_valid(value):
        raise ValueError("Invalid ObjectId.")
    return value


# Hex id of a Mongo document, kept as str; services convert with ObjectId().
ObjectIdStr = Annotated[str, AfterValidator(_check_object_id)]
