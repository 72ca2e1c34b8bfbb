"""
BaseService -- session-bound writers inside the kernel.

A service receives the Session of the submission that is running and
writes with ``flush()`` only.  StockLedger opens that session, holds the
product lock around it and is the single place that commits or rolls back.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from stock_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    def __init__(self, session: Session):
        self.session = session
