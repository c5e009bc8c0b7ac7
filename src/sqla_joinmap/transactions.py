from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from .driver import Driver


logger = logging.getLogger(__name__)


class TransactionCounter:
    """Reference-counted transactions over a non-reentrant driver.

    Only the outermost ``begin``/``commit`` reach the driver, so composed
    operations (a delete cascading into child tables) can each open their own
    transaction. ``rollback`` at any depth rolls back and resets the count.

    Example:
        >>> counter = TransactionCounter(driver)
        >>> counter.begin(); counter.begin()
        >>> counter.commit()  # inner, nothing happens
        >>> counter.commit()  # outermost, driver.commit()
    """

    __slots__ = ("count", "driver")

    def __init__(self, driver: Driver) -> None:
        self.driver = driver
        self.count = 0

    @property
    def active(self) -> bool:
        return self.count > 0

    def begin(self) -> None:
        if self.count == 0:
            logger.debug("ORM: begin transaction")
            self.driver.begin_transaction()

        self.count += 1

    def commit(self) -> None:
        self.count -= 1
        if self.count == 0:
            logger.debug("ORM: commit transaction")
            self.driver.commit()
        elif self.count < 0:
            self.count = 0

    def rollback(self) -> None:
        if self.count > 0:
            logger.debug("ORM: roll back transaction")
            self.driver.rollback()

        self.count = 0

    @contextmanager
    def __call__(self) -> Iterator[None]:
        """Run a block inside a (possibly nested) transaction.

        The block's exception rolls back every level and is re-raised.
        """
        self.begin()
        try:
            yield
        except BaseException:
            self.rollback()
            raise

        self.commit()
