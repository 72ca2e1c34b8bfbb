"""
Module: stock_kernel.selectors.base
Responsibility: common base for read-only queries over products and
    movements.  Selectors never add, flush or commit; they return DTOs
    (``MovementRecord``) or plain values, and the caller owns the session.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from stock_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    def __init__(self, session: Session):
        self.session = session
