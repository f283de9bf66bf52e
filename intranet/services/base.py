import logging
from contextlib import contextmanager
from typing import Any, Iterator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from intranet.core.exceptions import AppException, IntegrityFailure


class BaseService:
    """
    Common plumbing for the service layer: the request-scoped session,
    a logger named after the concrete service and the commit/rollback idiom.
    """

    def __init__(self, db: Session):
        self.db = db
        self._logger = logging.getLogger(f"{self.__module__}.{self.__class__.__name__}")

    def log_info(self, message: str, **context: Any) -> None:
        self._logger.info(message, extra=context)

    def log_warning(self, message: str, exc_info: bool = False, **context: Any) -> None:
        self._logger.warning(message, exc_info=exc_info, extra=context)

    def log_error(self, message: str, exc_info: bool = True, **context: Any) -> None:
        self._logger.error(message, exc_info=exc_info, extra=context)

    @contextmanager
    def transaction(self, action: str, **context: Any) -> Iterator[Session]:
        """
        Commit everything done inside the block, or roll all of it back.
        Domain errors propagate unchanged; database errors surface as IntegrityFailure.
        """
        try:
            yield self.db
            self.db.commit()
        except AppException:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.log_error(f"{action} failed, transaction rolled back", action=action, **context)
            raise IntegrityFailure(f"Could not {action.replace('_', ' ')}") from exc
