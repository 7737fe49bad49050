"""
Connector lifecycle service.

The `LifecycleOrchestrator` owns the status state machine of every
connector and is the only component that mutates connector records:

    - create:  validate, then persist a `draft` record;
    - update:  validate, then replace the configuration and go back to `draft`;
    - test / deploy: validate (and, for deploy, require a session), move the
      record to `testing`, run the deployment driver in a background task,
      then settle the record to `deployed` or `error`;
    - delete:  cancel any in-flight operation and remove the record.

Every write is a compare-and-swap against the live record (re-read, change,
`store.update(..., expected_revision)`, retry on `StaleRecord`), so a test
finishing while the operator edits the connector never overwrites the edit.
Only one test/deploy may be in flight per connector; a second request fails
with `OperationInProgress`. The driver call is bounded by a watchdog of
`operation_timeout + watchdog_grace` seconds, and an abandoned or cancelled
operation always settles the record to `error`.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set

from connector_studio.core.config import Settings
from connector_studio.core.errors import DeploymentFailed, NotFound, OperationInProgress, StaleRecord, ValidationError
from connector_studio.db.connector_store import ConnectorStore
from connector_studio.models.connector import ConnectorConfig, ConnectorRecord, utcnow
from connector_studio.services.auth_service import Session, require_session
from connector_studio.services.deployment_driver import DeploymentDriver, DriverResult
from connector_studio.services.validator import normalize, validate

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 20


@dataclass
class OperationHandle:
    """An accepted test/deploy: the record as moved to `testing`, and the task settling it."""

    action: str
    record: ConnectorRecord
    task: "asyncio.Task[Optional[ConnectorRecord]]"


class LifecycleOrchestrator:
    """
    Example:
        >>> orchestrator = LifecycleOrchestrator(InMemoryConnectorStore(), driver, settings)
        >>> record = await orchestrator.create(config)
        >>> record = await orchestrator.deploy(record.id, session)
        >>> record.status
        'deployed'
    """

    def __init__(self, store: ConnectorStore, driver: DeploymentDriver, settings: Settings):
        self.store = store
        self.driver = driver
        self.settings = settings
        self._reserved: Set[str] = set()
        self._deleting: Set[str] = set()
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._followups: Dict[asyncio.Task, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    async def create(self, config: ConnectorConfig) -> ConnectorRecord:
        """
        Validates and persists a new connector in `draft`.

        Raises:
            ValidationError: The configuration is invalid; nothing is stored.
        """

        violations = validate(config)
        if violations:
            raise ValidationError(violations)

        now = utcnow()
        record = ConnectorRecord(**normalize(config), status="draft", created_at=now, updated_at=now)
        stored = await self.store.create(record)
        logger.info("Created connector %s (%s, %s)", stored.id, stored.name, stored.transport)
        return stored

    async def get(self, connector_id: str) -> ConnectorRecord:
        return await self.store.get(connector_id)

    async def list(self) -> List[ConnectorRecord]:
        return await self.store.list()

    async def update(self, connector_id: str, config: ConnectorConfig) -> ConnectorRecord:
        """
        Replaces the configuration of a connector and resets it to `draft`.

        Raises:
            ValidationError: The configuration is invalid; the record is unchanged.
            NotFound: No connector has this id.
        """

        violations = validate(config)
        if violations:
            raise ValidationError(violations)

        fields = normalize(config)
        record = await self._mutate(
            connector_id,
            lambda current: {**fields, "status": "draft", "diagnostic": None, "error_kind": None},
        )
        logger.info("Updated connector %s, status reset to draft", connector_id)
        return record

    async def delete(self, connector_id: str, session: Optional[Session] = None,
                     remove_remote: bool = False) -> None:
        """
        Deletes a connector from any status.

        An in-flight test or deploy is cancelled (its process is killed) and
        allowed to settle before the record is removed. No new test or deploy
        can start on the connector until the delete has finished.

        Args:
            connector_id (str): Connector to delete.
            session (Session): Required when `remove_remote` is set.
            remove_remote (bool): Also delete the published connector from the platform.

        Raises:
            NotFound: No connector has this id.
            AuthRequired: `remove_remote` without a valid session.
            DeploymentFailed: The platform refused to delete the connector.
            OperationInProgress: Another delete of this connector is running.
        """

        record = await self.store.get(connector_id)
        if remove_remote and record.platform_connector_id:
            require_session(session)

        if connector_id in self._deleting:
            raise OperationInProgress(connector_id)
        self._deleting.add(connector_id)
        try:
            await self._delete(connector_id, record, session, remove_remote)
        finally:
            self._deleting.discard(connector_id)
        logger.info("Deleted connector %s", connector_id)

    async def _delete(self, connector_id: str, record: ConnectorRecord, session: Optional[Session],
                      remove_remote: bool) -> None:
        task = self._in_flight.get(connector_id)
        if task is not None and not task.done():
            logger.info("Cancelling in-flight operation on %s before delete", connector_id)
            task.cancel()
            await asyncio.wait({task})
            record = await self.store.get(connector_id)

        if remove_remote:
            result = await self.driver.remove(record, session)
            if not result.success:
                raise DeploymentFailed(result.kind or "CommandFailed", result.diagnostic or "")
        else:
            self.driver.discard_artifacts(record)

        await self.store.delete(connector_id)

    # ------------------------------------------------------------------
    # Test / deploy
    # ------------------------------------------------------------------

    def is_busy(self, connector_id: str) -> bool:
        return connector_id in self._reserved or connector_id in self._deleting

    async def start_test(self, connector_id: str) -> OperationHandle:
        return await self._start("test", connector_id, None)

    async def start_deploy(self, connector_id: str, session: Optional[Session]) -> OperationHandle:
        return await self._start("deploy", connector_id, session)

    async def test(self, connector_id: str) -> ConnectorRecord:
        """Runs a connectivity test and returns the settled record."""

        return await self.wait(await self.start_test(connector_id))

    async def deploy(self, connector_id: str, session: Optional[Session]) -> ConnectorRecord:
        """Publishes the connector and returns the settled record."""

        return await self.wait(await self.start_deploy(connector_id, session))

    async def wait(self, handle: OperationHandle) -> ConnectorRecord:
        """
        Waits for an operation to settle.

        If the waiting caller is cancelled, the operation is cancelled too:
        its process is killed and the record settles to `error`.
        """

        try:
            settled = await asyncio.shield(handle.task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                handle.task.cancel()
                raise
            # The operation was cancelled before it started running.
            followup = self._followups.get(handle.task)
            if followup is not None:
                await followup
            return await self.store.get(handle.record.id)
        return settled if settled is not None else await self.store.get(handle.record.id)

    async def _start(self, action: str, connector_id: str, session: Optional[Session]) -> OperationHandle:
        if self.is_busy(connector_id):
            raise OperationInProgress(connector_id)
        self._reserved.add(connector_id)

        try:
            current = await self.store.get(connector_id)
            violations = validate(current.to_config())
            if violations:
                raise ValidationError(violations)
            if action == "deploy":
                require_session(session)

            record = await self._mutate(connector_id, _begin)
        except BaseException:
            self._reserved.discard(connector_id)
            raise

        task = asyncio.create_task(self._execute(action, record, session), name=f"{action}:{connector_id}")
        self._in_flight[connector_id] = task
        task.add_done_callback(lambda t: self._release(connector_id, action, t))
        logger.info("Started %s of connector %s", action, connector_id)
        return OperationHandle(action=action, record=record, task=task)

    async def _execute(self, action: str, record: ConnectorRecord,
                       session: Optional[Session]) -> Optional[ConnectorRecord]:
        try:
            result = await asyncio.wait_for(self._invoke(action, record, session),
                                            timeout=self.settings.watchdog_timeout)
        except asyncio.TimeoutError:
            logger.warning("%s of %s did not report back within %ss", action, record.id,
                           self.settings.watchdog_timeout)
            result = DriverResult.failed(
                "Timeout", f"The {action} did not complete within {self.settings.watchdog_timeout:g}s"
            )
        except asyncio.CancelledError:
            logger.info("%s of %s cancelled", action, record.id)
            return await asyncio.shield(
                self._settle(record.id, action, DriverResult.failed("Cancelled", f"The {action} was cancelled"))
            )
        except Exception as e:
            logger.exception("%s of %s failed unexpectedly", action, record.id)
            result = DriverResult.failed(type(e).__name__, str(e))

        return await self._settle(record.id, action, result)

    async def _invoke(self, action: str, record: ConnectorRecord, session: Optional[Session]) -> DriverResult:
        if action == "deploy":
            return await self.driver.deploy(record, session)
        return await self.driver.test(record)

    async def _settle(self, connector_id: str, action: Optional[str],
                      result: DriverResult) -> Optional[ConnectorRecord]:
        """Writes the outcome onto the live record; a deleted record makes this a no-op."""

        def finish(current: ConnectorRecord) -> dict:
            updates = {
                "status": "deployed" if result.success else "error",
                "diagnostic": result.diagnostic,
                "error_kind": None if result.success else result.kind,
            }
            if action is not None:
                updates["last_operation"] = action
            if action == "deploy" and result.success and result.platform_connector_id:
                updates["platform_connector_id"] = result.platform_connector_id
            return updates

        try:
            record = await self._mutate(connector_id, finish)
        except NotFound:
            logger.info("Connector %s was deleted during its %s; result dropped", connector_id, action)
            return None

        logger.info("%s of connector %s settled: %s", action or "operation", connector_id, record.status)
        return record

    def _release(self, connector_id: str, action: str, task: asyncio.Task) -> None:
        if task.cancelled():
            # Cancelled before its first step: the record is still in `testing`.
            result = DriverResult.failed("Cancelled", f"The {action} was cancelled")
            followup = asyncio.ensure_future(self._settle(connector_id, action, result))
            self._followups[task] = followup
            followup.add_done_callback(lambda f: self._free(connector_id, task, f))
            return
        self._free(connector_id, task, task)

    def _free(self, connector_id: str, task: asyncio.Task, finished: asyncio.Future) -> None:
        if self._in_flight.get(connector_id) is task:
            del self._in_flight[connector_id]
        self._followups.pop(task, None)
        self._reserved.discard(connector_id)
        if not finished.cancelled() and finished.exception() is not None:
            logger.error("Operation on %s ended with an error", connector_id, exc_info=finished.exception())

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def recover_interrupted(self) -> int:
        """
        Settles records left in `testing` by a previous process to `error`.

        Returns:
            int: Number of records recovered.
        """

        recovered = 0
        for record in await self.store.list():
            if record.status == "testing" and record.id not in self._reserved:
                result = DriverResult.failed("Cancelled", "Interrupted before completion")
                if await self._settle(record.id, record.last_operation, result) is not None:
                    recovered += 1
        if recovered:
            logger.warning("Recovered %d connector(s) stuck in testing", recovered)
        return recovered

    async def shutdown(self) -> None:
        """Cancels every in-flight operation and waits for them to settle."""

        tasks = [t for t in self._in_flight.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        followups = list(self._followups.values())
        if followups:
            await asyncio.gather(*followups, return_exceptions=True)

    async def _mutate(self, connector_id: str,
                      change: Callable[[ConnectorRecord], dict]) -> ConnectorRecord:
        """
        Compare-and-swap loop: re-read the live record, apply `change`, write it back.

        `change` receives the current record and returns the fields to replace;
        it is called again after every lost race.
        """

        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            current = await self.store.get(connector_id)
            updates = change(current)
            updates["updated_at"] = max(utcnow(), current.updated_at)
            candidate = current.model_copy(update=updates)
            try:
                return await self.store.update(candidate, expected_revision=current.revision)
            except StaleRecord:
                logger.debug("Lost write race on %s (attempt %d)", connector_id, attempt)
        raise StaleRecord(connector_id, current.revision)


def _begin(current: ConnectorRecord) -> dict:
    violations = validate(current.to_config())
    if violations:
        raise ValidationError(violations)
    return {"status": "testing", "diagnostic": None, "error_kind": None}
